# path: asbuilt-gps/asbuilt/errors.py

from __future__ import annotations

from typing import List, Tuple


class AssignmentEngineError(Exception):
    pass


class IngestError(AssignmentEngineError, ValueError):
    """File is malformed, unsupported, or has no usable coordinate rows."""


class GeometryError(AssignmentEngineError, ValueError):
    """Reprojection produced a non-finite or implausible result."""


class ValidationError(AssignmentEngineError, ValueError):
    """A draft cannot be mutated or saved in its current state."""


class CrsResolutionError(AssignmentEngineError):
    def __init__(self, message: str, diagnostics: List[Tuple[str, int]] | None = None):
        super().__init__(message)
        self.diagnostics = list(diagnostics or [])


class PersistenceError(AssignmentEngineError):
    """Transport or storage failure. The local draft is kept."""


class AssignmentExistsError(PersistenceError):
    """An assignment with this id is already stored. Saved assignments are immutable."""
