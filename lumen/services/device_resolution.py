"""Per-request device identity resolution.

A request can carry the device identifier in four places. The first
non-empty one in ``SOURCE_PRECEDENCE`` wins; disagreements between sources
are recorded and logged but never fail the request. The winner is then
resolved through the journey resolver to the *effective* identifier that
route handlers read and write with.
"""

import logging
from dataclasses import asdict, dataclass, field
from itertools import combinations
from typing import Any, Optional

from sqlmodel import Session

from lumen.errors import DeviceUnidentified
from lumen.services.journey_service import JourneyResolution, resolve_journey_for_device

logger = logging.getLogger(__name__)

SOURCE_PRECEDENCE = ("header", "cookie", "query", "body")


def sanitize(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


@dataclass
class DeviceSources:
    header: Optional[str] = None
    cookie: Optional[str] = None
    query: Optional[str] = None
    body: Optional[str] = None

    def __post_init__(self):
        for name in SOURCE_PRECEDENCE:
            setattr(self, name, sanitize(getattr(self, name)))

    def present(self) -> list[tuple[str, str]]:
        """(source, value) pairs that carry a value, in precedence order."""
        return [(name, getattr(self, name)) for name in SOURCE_PRECEDENCE if getattr(self, name)]


@dataclass
class DeviceResolution:
    sources: DeviceSources
    source: Optional[str] = None
    resolved_device_id: Optional[str] = None
    conflicts: list[str] = field(default_factory=list)
    journey: Optional[JourneyResolution] = None
    effective_device_id: Optional[str] = None

    def require_device_id(self) -> str:
        """The raw identifier the client presented."""
        if not self.resolved_device_id:
            raise DeviceUnidentified()
        return self.resolved_device_id

    def require_effective_device_id(self) -> str:
        """The identifier business logic must use."""
        if not self.effective_device_id:
            raise DeviceUnidentified()
        return self.effective_device_id

    def to_debug_dict(self) -> dict:
        return {
            "sources": asdict(self.sources),
            "source": self.source,
            "resolved_device_id": self.resolved_device_id,
            "effective_device_id": self.effective_device_id,
            "conflicts": list(self.conflicts),
            "journey": asdict(self.journey) if self.journey else None,
        }


def find_conflicts(sources: DeviceSources) -> list[str]:
    """One entry per pair of present sources whose values differ."""
    return [
        f"{name_a} vs {name_b}: {value_a} ≠ {value_b}"
        for (name_a, value_a), (name_b, value_b) in combinations(sources.present(), 2)
        if value_a != value_b
    ]


def pick_device_id(sources: DeviceSources) -> tuple[Optional[str], Optional[str], list[str]]:
    """Apply source precedence. Returns (source, device_id, conflicts)."""
    present = sources.present()
    conflicts = find_conflicts(sources)
    if conflicts:
        logger.warning("Device id sources disagree: %s", "; ".join(conflicts))
    if not present:
        return None, None, conflicts
    source, device_id = present[0]
    return source, device_id, conflicts


def resolve_device(session: Session, sources: DeviceSources) -> DeviceResolution:
    source, device_id, conflicts = pick_device_id(sources)
    resolution = DeviceResolution(
        sources=sources,
        source=source,
        resolved_device_id=device_id,
        conflicts=conflicts,
    )
    if device_id is None:
        return resolution

    resolution.journey = resolve_journey_for_device(session, device_id)
    resolution.effective_device_id = (
        resolution.journey.effective_device_id if resolution.journey else device_id
    )
    return resolution
