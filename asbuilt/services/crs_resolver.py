# path: asbuilt-gps/asbuilt/services/crs_resolver.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple
import logging
import math

from asbuilt.config import DEFAULT_CRS
from asbuilt.errors import CrsResolutionError
from asbuilt.models.point_models import (
    CrsResolution,
    GeographicRecord,
    GeoPoint,
    ImportOutcome,
    RawRecord,
    is_plausible,
)
from asbuilt.services.format_ingest import parse
from asbuilt.utils.projection import (
    CRS_CANDIDATES,
    DETECTION_ORDER,
    PASSTHROUGH_CRS,
    get_candidate,
    reproject_many,
)

logger = logging.getLogger(__name__)

SAMPLE_SIZE = 10
# Share of records that must land in the plausibility window for a CRS to be
# accepted outright. Heuristic and tunable.
ACCEPT_RATIO = 0.6


@dataclass
class _Trial:
    crs: str
    accepted: List[Tuple[float, float, Optional[int]]] = field(default_factory=list)
    rejected: int = 0
    non_finite: int = 0

    @property
    def count(self) -> int:
        return len(self.accepted)


def acceptance_threshold(total: int) -> int:
    # epsilon keeps 0.6 * 10 from rounding up to 7
    return max(1, math.ceil(ACCEPT_RATIO * total - 1e-9))


def rank_candidates(sample: Sequence[Tuple[float, float]], pool: Sequence[str], preferred: str) -> List[str]:
    """Order candidate CRS ids by how many sample pairs they map into the window.

    Ties go to the candidate whose area of use holds more of the sample, then
    to the preferred CRS, then to pool order. Zero scores are dropped.
    """
    scored = []
    for idx, crs in enumerate(pool):
        area = get_candidate(crs).area_of_use
        results = [r for r in reproject_many(sample, crs) if r is not None]
        score = sum(1 for lat, lng in results if is_plausible(lat, lng))
        in_area = sum(1 for lat, lng in results if area.contains(lat, lng))
        scored.append((crs, score, in_area, idx))

    scored.sort(key=lambda s: (-s[1], -s[2], s[0] != preferred, s[3]))
    logger.debug("CRS sample scores: %s", [(s[0], s[1], s[2]) for s in scored])
    return [s[0] for s in scored if s[1] > 0]


def _trial(records: Sequence[RawRecord], pairs: Sequence[Tuple[float, float]], crs: str) -> _Trial:
    trial = _Trial(crs=crs)
    for rec, result in zip(records, reproject_many(pairs, crs)):
        if result is None:
            trial.non_finite += 1
            continue
        lat, lng = result
        if not is_plausible(lat, lng):
            trial.rejected += 1
            continue
        trial.accepted.append((lat, lng, rec.timestamp))
    return trial


def _resolution(trial: _Trial, confidence: str, diagnostics: List[Tuple[str, int]]) -> CrsResolution:
    return CrsResolution(
        crs=trial.crs,
        accepted=[GeoPoint(lat=lat, lng=lng, timestamp=ts) for lat, lng, ts in trial.accepted],
        confidence=confidence,
        diagnostics=diagnostics,
        rejected_count=trial.rejected,
        dropped_non_finite=trial.non_finite,
    )


def resolve(records: Sequence[RawRecord], preferred: str = DEFAULT_CRS) -> CrsResolution:
    """Find the CRS the records were most plausibly recorded in and reproject them.

    Returns full confidence when at least ACCEPT_RATIO of the records land in
    the plausibility window, partial confidence for the best non-empty match
    otherwise. Raises CrsResolutionError when no candidate yields anything.
    """
    get_candidate(preferred)
    total = len(records)
    if total == 0:
        raise CrsResolutionError("Keine Koordinaten zum Auflösen")

    if all(isinstance(r, GeographicRecord) and is_plausible(r.lat, r.lng) for r in records):
        trial = _Trial(crs=PASSTHROUGH_CRS, accepted=[(r.lat, r.lng, r.timestamp) for r in records])
        logger.info("Plausible WGS84 input, passing through (%d)", total)
        return _resolution(trial, "full", [(PASSTHROUGH_CRS, total)])

    pairs = [r.as_xy() for r in records]
    pool = list(DETECTION_ORDER)
    if any(isinstance(r, GeographicRecord) for r in records):
        pool.insert(0, PASSTHROUGH_CRS)

    ranked = rank_candidates(pairs[:SAMPLE_SIZE], pool, preferred)
    order = list(dict.fromkeys(ranked + [preferred] + [c.id for c in CRS_CANDIDATES]))

    threshold = acceptance_threshold(total)
    diagnostics: List[Tuple[str, int]] = []
    best: Optional[_Trial] = None
    for crs in order:
        trial = _trial(records, pairs, crs)
        diagnostics.append((crs, trial.count))
        if trial.count >= threshold:
            logger.info("CRS detected: %s (%d/%d)", crs, trial.count, total)
            return _resolution(trial, "full", diagnostics)
        if trial.count > 0 and (best is None or trial.count > best.count):
            best = trial

    if best is not None:
        logger.warning("Partial CRS match: %s (%d/%d)", best.crs, best.count, total)
        return _resolution(best, "partial", diagnostics)

    logger.warning("No CRS candidate yields plausible points: %s", diagnostics)
    raise CrsResolutionError("Koordinaten gefunden, aber CRS passt nicht", diagnostics)


def import_points(data: bytes, format_hint: str, preferred: str = DEFAULT_CRS) -> ImportOutcome:
    """Parse a survey file and resolve its coordinates to WGS84 points."""
    ingest = parse(data, format_hint)
    resolution = resolve(ingest.records, preferred)

    kept = len(resolution.accepted)
    if resolution.crs == PASSTHROUGH_CRS and resolution.confidence == "full":
        message = f"WGS84 direkt erkannt ({kept}/{len(ingest.records)})."
    elif resolution.confidence == "full":
        message = f"CRS auto-detektiert: {resolution.crs} ({kept}/{len(ingest.records)})."
    else:
        message = f"CRS gewählt (Teilmenge): {resolution.crs} ({kept}/{len(ingest.records)})."
    if ingest.truncated:
        message += f" Import gekürzt: {len(ingest.records)} von {ingest.total_found} Punkten übernommen."

    return ImportOutcome(
        format=ingest.format,
        crs=resolution.crs,
        confidence=resolution.confidence,
        points=resolution.accepted,
        total_found=ingest.total_found,
        truncated=ingest.truncated,
        skipped_rows=ingest.skipped_rows,
        rejected_count=resolution.rejected_count + resolution.dropped_non_finite,
        diagnostics=resolution.diagnostics,
        message=message,
    )
