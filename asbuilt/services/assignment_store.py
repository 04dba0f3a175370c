# path: asbuilt-gps/asbuilt/services/assignment_store.py

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Set, Tuple
import logging
import time
import uuid

from pydantic import ValidationError as ModelValidationError

from asbuilt.errors import AssignmentEngineError, PersistenceError, ValidationError
from asbuilt.models.assignment_models import Assignment, Draft, LvPosition
from asbuilt.models.point_models import GeoPoint
from asbuilt.services.persistence import AssignmentClient, DraftStorage
from asbuilt.utils.projection import get_candidate

logger = logging.getLogger(__name__)

MAX_DRAFT_POINTS = 20_000


def now_ms() -> int:
    return int(time.time() * 1000)


class AssignmentStore:
    """Per-project draft plus a cached view of the saved assignments.

    One writer per project draft is assumed. Two writers on the same project
    overwrite each other's draft (last write wins).
    """

    def __init__(self, client: AssignmentClient, drafts: DraftStorage, max_points: int = MAX_DRAFT_POINTS):
        self.client = client
        self.drafts = drafts
        self.max_points = max_points
        self._assignments: Dict[str, List[Assignment]] = {}
        self._saving: Set[str] = set()

    # -- drafts -------------------------------------------------------------

    def load_draft(self, project_id: str) -> Draft:
        raw = self.drafts.load(project_id)
        if raw:
            try:
                draft = Draft.model_validate_json(raw)
                if draft.project_id == project_id:
                    return draft
                logger.warning("Stored draft belongs to %r, not %r; starting fresh", draft.project_id, project_id)
            except ModelValidationError as e:
                logger.warning("Discarding unreadable draft for %r: %s", project_id, e)
        return Draft(project_id=project_id)

    def _persist(self, draft: Draft) -> Draft:
        draft.saved_at = now_ms()
        self.drafts.store(draft)
        return draft

    def mutate_draft(self, project_id: str, point: GeoPoint) -> Draft:
        """Append one point (map click, GPS fix) and persist the draft."""
        draft = self.load_draft(project_id)
        if len(draft.points) >= self.max_points:
            raise ValidationError(f"Entwurf ist voll ({self.max_points} Punkte); Punkt verworfen")
        draft.points.append(point)
        return self._persist(draft)

    def extend_draft(self, project_id: str, points: Iterable[GeoPoint]) -> Tuple[Draft, int]:
        """Append imported points; whatever does not fit under the cap is rejected."""
        draft = self.load_draft(project_id)
        incoming = list(points)
        room = max(0, self.max_points - len(draft.points))
        draft.points.extend(incoming[:room])
        rejected = len(incoming) - min(room, len(incoming))
        if rejected:
            logger.warning("Draft %r at cap: rejected %d imported point(s)", project_id, rejected)
        return self._persist(draft), rejected

    def select_lv_position(self, project_id: str, lv_position_id: Optional[str]) -> Draft:
        draft = self.load_draft(project_id)
        draft.selected_lv_position_id = lv_position_id
        return self._persist(draft)

    def set_preferred_crs(self, project_id: str, crs: str) -> Draft:
        get_candidate(crs)
        draft = self.load_draft(project_id)
        draft.preferred_crs = crs
        return self._persist(draft)

    def clear_points(self, project_id: str) -> Draft:
        draft = self.load_draft(project_id)
        draft.points = []
        return self._persist(draft)

    def discard_draft(self, project_id: str) -> None:
        self.drafts.remove(project_id)

    def resume(self, assignment: Assignment) -> Draft:
        """Load a saved assignment into the project's draft for further editing.

        Points are copied; the saved assignment stays as it is.
        """
        draft = self.load_draft(assignment.project_id)
        draft.points = list(assignment.points[: self.max_points])
        draft.selected_lv_position_id = assignment.lv_position_id
        return self._persist(draft)

    # -- saved assignments -------------------------------------------------

    def assignments(self, project_id: str) -> List[Assignment]:
        return list(self._assignments.get(project_id, []))

    async def save(self, draft: Draft, lv_position_id: Optional[str] = None,
                   lv_position: Optional[LvPosition] = None) -> Assignment:
        lv_id = lv_position_id or (lv_position.id if lv_position else None) or draft.selected_lv_position_id
        if not draft.points:
            raise ValidationError("Keine Punkte vorhanden.")
        if not lv_id:
            raise ValidationError("Bitte LV-Position wählen.")

        live = self.load_draft(draft.project_id)
        if live.draft_id != draft.draft_id or draft.draft_id in self._saving:
            raise ValidationError("Entwurf wurde bereits gespeichert oder ersetzt")

        assignment = Assignment(
            id=str(uuid.uuid4()),
            project_id=draft.project_id,
            lv_position_id=lv_id,
            points=tuple(draft.points[: self.max_points]),
            created_at=now_ms(),
            lv_position=lv_position,
        )

        self._saving.add(draft.draft_id)
        try:
            saved = await self.client.save(assignment)
        except AssignmentEngineError:
            logger.error("Saving assignment for %r failed; draft kept", draft.project_id)
            raise
        except Exception as e:
            logger.error("Saving assignment for %r failed; draft kept: %s", draft.project_id, e)
            raise PersistenceError(f"Fehler beim Speichern: {e}") from e
        finally:
            self._saving.discard(draft.draft_id)

        if saved.lv_position is None and lv_position is not None:
            saved = saved.model_copy(update={"lv_position": lv_position})
        self._settle_draft(draft.project_id, list(assignment.points))
        cached = [a for a in self._assignments.get(draft.project_id, []) if a.id != saved.id]
        self._assignments[draft.project_id] = [saved] + cached
        logger.info("Saved assignment %s (%d points) for %r", saved.id, len(saved.points), saved.project_id)
        return saved

    def _settle_draft(self, project_id: str, submitted: List[GeoPoint]) -> None:
        # Points added while the save was in flight stay in a new draft.
        live = self.load_draft(project_id)
        if live.points[: len(submitted)] == submitted:
            remaining = live.points[len(submitted):]
        else:
            remaining = live.points
        if not remaining:
            self.discard_draft(project_id)
            return
        logger.info("Keeping %d point(s) added to %r during save", len(remaining), project_id)
        self._persist(Draft(
            project_id=project_id,
            points=remaining,
            selected_lv_position_id=live.selected_lv_position_id,
            preferred_crs=live.preferred_crs,
        ))

    async def list(self, project_id: str) -> List[Assignment]:
        try:
            items = await self.client.list(project_id)
        except AssignmentEngineError:
            raise
        except Exception as e:
            logger.error("Listing assignments for %r failed: %s", project_id, e)
            raise PersistenceError(f"Fehler beim Laden: {e}") from e
        items = sorted(items, key=lambda a: a.created_at, reverse=True)
        self._assignments[project_id] = items
        return list(items)

    async def delete(self, assignment_id: str, project_id: str) -> None:
        previous = self._assignments.get(project_id, [])
        self._assignments[project_id] = [a for a in previous if a.id != assignment_id]
        try:
            await self.client.delete(assignment_id, project_id)
        except Exception as e:
            self._assignments[project_id] = previous
            logger.error("Deleting assignment %s failed: %s", assignment_id, e)
            if isinstance(e, AssignmentEngineError):
                raise
            raise PersistenceError(f"Fehler beim Löschen: {e}") from e
