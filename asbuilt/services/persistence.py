# path: asbuilt-gps/asbuilt/services/persistence.py

"""Draft storage and assignment persistence clients.

Drafts live next to the editing client (one JSON file per project).
Assignments are owned by the server; the store talks to them through an
AssignmentClient. The core never retries a failed call.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol
import asyncio
import json
import logging
import os
import re
import tempfile
import threading

import requests
from pydantic import ValidationError as ModelValidationError

from asbuilt.config import ASBUILT_API_URL, DRAFTS_DIR, REQUEST_TIMEOUT_S
from asbuilt.errors import AssignmentExistsError, PersistenceError
from asbuilt.models.assignment_models import Assignment, Draft

logger = logging.getLogger(__name__)

DRAFT_FILE_PREFIX = "gpszuweisung_draft_v1_"
ASSIGNMENTS_FILE = "gps-assignments.json"


def draft_key(project_id: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]", "_", (project_id or "").strip() or "no-project")


def safe_project_id(value: Any) -> str:
    return re.sub(r"[^a-zA-Z0-9._-]", "", str(value or "").strip())


def _dump_assignment(assignment: Assignment) -> Dict[str, Any]:
    return assignment.model_dump(mode="json", by_alias=True, exclude_none=True)


def _write_json_atomic(path: Path, data: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=path.name, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(data)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


# ---------------------------------------------------------------------------
# Drafts
# ---------------------------------------------------------------------------

class DraftStorage(Protocol):
    def load(self, project_id: str) -> Optional[str]: ...

    def store(self, draft: Draft) -> None: ...

    def remove(self, project_id: str) -> None: ...


def serialize_draft(draft: Draft) -> str:
    return draft.model_dump_json(by_alias=True, exclude={"point_count", "path_length_m", "bbox"})


class MemoryDraftStorage:
    def __init__(self):
        self._items: Dict[str, str] = {}

    def load(self, project_id: str) -> Optional[str]:
        return self._items.get(draft_key(project_id))

    def store(self, draft: Draft) -> None:
        self._items[draft_key(draft.project_id)] = serialize_draft(draft)

    def remove(self, project_id: str) -> None:
        self._items.pop(draft_key(project_id), None)


class FileDraftStorage:
    """One JSON file per project. Last write wins across processes."""

    def __init__(self, directory: str | Path = DRAFTS_DIR):
        self.directory = Path(directory)

    def path_for(self, project_id: str) -> Path:
        return self.directory / f"{DRAFT_FILE_PREFIX}{draft_key(project_id)}.json"

    def load(self, project_id: str) -> Optional[str]:
        path = self.path_for(project_id)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def store(self, draft: Draft) -> None:
        _write_json_atomic(self.path_for(draft.project_id), serialize_draft(draft))

    def remove(self, project_id: str) -> None:
        self.path_for(project_id).unlink(missing_ok=True)


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------

class AssignmentClient(Protocol):
    async def list(self, project_id: str) -> List[Assignment]: ...

    async def save(self, assignment: Assignment) -> Assignment: ...

    async def delete(self, assignment_id: str, project_id: str) -> None: ...


class InMemoryAssignmentClient:
    def __init__(self):
        self.items: Dict[str, List[Assignment]] = {}
        self.calls: List[str] = []

    async def list(self, project_id: str) -> List[Assignment]:
        self.calls.append("list")
        return list(self.items.get(project_id, []))

    async def save(self, assignment: Assignment) -> Assignment:
        self.calls.append("save")
        items = self.items.setdefault(assignment.project_id, [])
        if any(a.id == assignment.id for a in items):
            raise AssignmentExistsError(f"Zuweisung {assignment.id} existiert bereits")
        items.insert(0, assignment)
        return assignment

    async def delete(self, assignment_id: str, project_id: str) -> None:
        self.calls.append("delete")
        self.items[project_id] = [a for a in self.items.get(project_id, []) if a.id != assignment_id]


class FileAssignmentClient:
    """Server side store: <root>/<projectId>/gps-assignments.json, newest first."""

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self._lock = threading.Lock()

    def _file(self, project_id: str) -> Path:
        safe = safe_project_id(project_id)
        if not safe or set(safe) == {"."}:
            raise PersistenceError("projectId fehlt")
        return self.root / safe / ASSIGNMENTS_FILE

    def _read(self, path: Path) -> List[Dict[str, Any]]:
        if not path.exists():
            return []
        try:
            items = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"{path} nicht lesbar: {e}") from e
        return items if isinstance(items, list) else []

    def list_sync(self, project_id: str) -> List[Assignment]:
        out = []
        for item in self._read(self._file(project_id)):
            try:
                out.append(Assignment.model_validate(item))
            except ModelValidationError as e:
                logger.warning("Skipping invalid stored assignment %s: %s", item.get("id"), e)
        return out

    def save_sync(self, assignment: Assignment) -> Assignment:
        path = self._file(assignment.project_id)
        with self._lock:
            items = self._read(path)
            if any(x.get("id") == assignment.id for x in items):
                raise AssignmentExistsError(f"Zuweisung {assignment.id} existiert bereits")
            items.insert(0, _dump_assignment(assignment))
            _write_json_atomic(path, json.dumps(items, indent=2, ensure_ascii=False))
        return assignment

    def delete_sync(self, assignment_id: str, project_id: str) -> None:
        path = self._file(project_id)
        with self._lock:
            items = [x for x in self._read(path) if x.get("id") != assignment_id]
            _write_json_atomic(path, json.dumps(items, indent=2, ensure_ascii=False))

    async def list(self, project_id: str) -> List[Assignment]:
        return await asyncio.to_thread(self.list_sync, project_id)

    async def save(self, assignment: Assignment) -> Assignment:
        return await asyncio.to_thread(self.save_sync, assignment)

    async def delete(self, assignment_id: str, project_id: str) -> None:
        await asyncio.to_thread(self.delete_sync, assignment_id, project_id)


class HttpAssignmentClient:
    """Thin requests client for the /api/gps endpoints."""

    def __init__(self, base_url: str = ASBUILT_API_URL, timeout: float = REQUEST_TIMEOUT_S,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _call(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}/api/gps{path}"
        try:
            resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise PersistenceError(f"{method} {url} fehlgeschlagen: {e}") from e
        if not resp.ok:
            raise PersistenceError(f"{method} {url} -> {resp.status_code}: {resp.text[:200]}")
        try:
            body = resp.json()
        except ValueError as e:
            raise PersistenceError(f"{method} {url}: ungültige JSON-Antwort") from e
        if not body.get("ok", False):
            raise PersistenceError(f"{method} {url}: {body.get('error') or 'Fehler'}")
        return body

    def list_sync(self, project_id: str) -> List[Assignment]:
        body = self._call("GET", "/list", params={"projectId": project_id})
        try:
            return [Assignment.model_validate(item) for item in body.get("items") or []]
        except ModelValidationError as e:
            raise PersistenceError(f"ungültige Zuweisung in der Listenantwort: {e}") from e

    def save_sync(self, assignment: Assignment) -> Assignment:
        body = self._call("POST", "/assign", json=_dump_assignment(assignment))
        try:
            return Assignment.model_validate(body.get("item"))
        except ModelValidationError as e:
            raise PersistenceError(f"ungültige Zuweisung in der Speicherantwort: {e}") from e

    def delete_sync(self, assignment_id: str, project_id: str) -> None:
        self._call("DELETE", "/delete", params={"id": assignment_id, "projectId": project_id})

    async def list(self, project_id: str) -> List[Assignment]:
        return await asyncio.to_thread(self.list_sync, project_id)

    async def save(self, assignment: Assignment) -> Assignment:
        return await asyncio.to_thread(self.save_sync, assignment)

    async def delete(self, assignment_id: str, project_id: str) -> None:
        await asyncio.to_thread(self.delete_sync, assignment_id, project_id)
