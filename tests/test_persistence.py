import json
import tempfile
import unittest
from pathlib import Path
from unittest import mock

import requests

from asbuilt.errors import AssignmentExistsError, PersistenceError
from asbuilt.models.assignment_models import Assignment
from asbuilt.models.point_models import GeoPoint
from asbuilt.services.persistence import (
    ASSIGNMENTS_FILE,
    FileAssignmentClient,
    HttpAssignmentClient,
    InMemoryAssignmentClient,
    draft_key,
    safe_project_id,
)

PROJECT = "BA-2025-DEMO"


def _assignment(assignment_id="a-1", created_at=1714557600000):
    return Assignment(
        id=assignment_id,
        project_id=PROJECT,
        lv_position_id="lv-1",
        points=(GeoPoint(lat=48.14, lng=11.58),),
        created_at=created_at,
    )


def _response(status=200, body=None):
    resp = mock.Mock()
    resp.ok = 200 <= status < 300
    resp.status_code = status
    resp.text = json.dumps(body)
    resp.json.return_value = body
    return resp


class KeyTests(unittest.TestCase):
    def test_project_ids_are_sanitised(self):
        self.assertEqual(safe_project_id(" ../BA 2025/x "), "..BA2025x")
        self.assertEqual(draft_key(""), "no-project")
        self.assertEqual(draft_key("BA/1"), "BA_1")


class FileAssignmentClientTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.client = FileAssignmentClient(self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()

    def test_newest_first_and_existing_ids_are_rejected(self):
        self.client.save_sync(_assignment("a-1"))
        self.client.save_sync(_assignment("a-2"))
        with self.assertRaises(AssignmentExistsError):
            self.client.save_sync(_assignment("a-1", created_at=1714557700000))
        items = self.client.list_sync(PROJECT)
        self.assertEqual([a.id for a in items], ["a-2", "a-1"])
        self.assertEqual(items[1].created_at, 1714557600000)

    def test_file_layout(self):
        self.client.save_sync(_assignment())
        path = Path(self.tmp.name) / PROJECT / ASSIGNMENTS_FILE
        stored = json.loads(path.read_text(encoding="utf-8"))
        self.assertEqual(stored[0]["lvPosId"], "lv-1")
        self.assertEqual(stored[0]["projectId"], PROJECT)

    def test_corrupt_file_is_an_error(self):
        path = Path(self.tmp.name) / PROJECT / ASSIGNMENTS_FILE
        path.parent.mkdir(parents=True)
        path.write_text("{oops", encoding="utf-8")
        with self.assertRaises(PersistenceError):
            self.client.list_sync(PROJECT)

    def test_missing_project_is_an_error(self):
        with self.assertRaises(PersistenceError):
            self.client.list_sync("  ")


class HttpAssignmentClientTests(unittest.TestCase):
    def setUp(self):
        self.session = mock.Mock(spec=requests.Session)
        self.client = HttpAssignmentClient("http://api.local/", timeout=3, session=self.session)

    def test_save_posts_wire_format(self):
        a = _assignment()
        self.session.request.return_value = _response(body={"ok": True, "item": a.model_dump(mode="json", by_alias=True)})
        self.assertEqual(self.client.save_sync(a), a)
        method, url = self.session.request.call_args.args
        self.assertEqual((method, url), ("POST", "http://api.local/api/gps/assign"))
        self.assertEqual(self.session.request.call_args.kwargs["timeout"], 3)
        self.assertEqual(self.session.request.call_args.kwargs["json"]["lvPosId"], "lv-1")

    def test_list(self):
        a = _assignment()
        self.session.request.return_value = _response(body={"ok": True, "items": [a.model_dump(mode="json", by_alias=True)]})
        self.assertEqual(self.client.list_sync(PROJECT), [a])

    def test_transport_and_status_failures(self):
        self.session.request.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(PersistenceError):
            self.client.delete_sync("a-1", PROJECT)

        self.session.request.side_effect = None
        self.session.request.return_value = _response(status=500, body={"ok": False})
        with self.assertRaises(PersistenceError):
            self.client.delete_sync("a-1", PROJECT)

        self.session.request.return_value = _response(body={"ok": False, "error": "nope"})
        with self.assertRaises(PersistenceError):
            self.client.delete_sync("a-1", PROJECT)


class AsyncWrapperTests(unittest.IsolatedAsyncioTestCase):
    async def test_file_client_async_round(self):
        with tempfile.TemporaryDirectory() as tmp:
            client = FileAssignmentClient(tmp)
            await client.save(_assignment())
            self.assertEqual([a.id for a in await client.list(PROJECT)], ["a-1"])
            await client.delete("a-1", PROJECT)
            self.assertEqual(await client.list(PROJECT), [])

    async def test_in_memory_client_rejects_existing_id(self):
        client = InMemoryAssignmentClient()
        await client.save(_assignment())
        with self.assertRaises(AssignmentExistsError):
            await client.save(_assignment(created_at=1714557700000))
        self.assertEqual((await client.list(PROJECT))[0].created_at, 1714557600000)


if __name__ == "__main__":
    unittest.main()
