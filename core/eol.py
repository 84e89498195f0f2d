"""
core/eol.py -- Reconcile the endoflife.date feed against stored framework versions.

Feed entries look like:

    {"cycle": "8.0", "releaseDate": "2023-11-14", "eol": "2026-11-10",
     "support": "2025-05-01", "lts": true, "latest": "8.0.11"}

`eol` and `support` are either an ISO date, `false` (no end scheduled) or
`true` (already ended). They are parsed once, at the boundary, into the
LifecycleDate variant On / Indefinite / Ended; nothing past parse_entry()
looks at the raw JSON.

diff_framework_versions() is pure: it classifies each entry as added,
updated or unchanged and returns the records to write. Writing them is the
caller's concern (core/pipeline.py + portfolio/store.py).
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any, Optional, Sequence, Union

from core.config import short_date, utc_now
from core.models import FrameworkType, FrameworkVersion, SupportStatus

logger = logging.getLogger("lifecycle.eol")


class FeedFormatError(ValueError):
    """The feed payload or one of its entries is not in the expected shape."""


# ---------------------------------------------------------------------------
# Lifecycle date variant
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class On:
    day: date


@dataclass(frozen=True)
class Indefinite:
    pass


@dataclass(frozen=True)
class Ended:
    pass


LifecycleDate = Union[On, Indefinite, Ended]


def _parse_iso_date(value: str) -> date:
    # The feed sends plain dates; tolerate a trailing time component.
    try:
        return date.fromisoformat(value[:10])
    except ValueError as exc:
        raise FeedFormatError(f"Unparseable date: {value!r}") from exc


def parse_lifecycle_date(raw: Any) -> LifecycleDate:
    """Map a feed `eol` / `support` value onto the variant.

    Absent (None) and false mean no end is scheduled. Any other type, or a
    string that is not a date, raises FeedFormatError.
    """
    if raw is None or raw is False:
        return Indefinite()
    if raw is True:
        return Ended()
    if isinstance(raw, str):
        return On(_parse_iso_date(raw))
    raise FeedFormatError(f"Unexpected lifecycle value: {raw!r}")


def _is_past(value: LifecycleDate, today: date) -> bool:
    match value:
        case Ended():
            return True
        case On(day=day):
            return day < today
        case Indefinite():
            return False
        case _:
            raise TypeError(f"Not a LifecycleDate: {value!r}")


def _concrete(value: LifecycleDate) -> Optional[date]:
    # Ended carries no date; status records that the end has passed.
    return value.day if isinstance(value, On) else None


# ---------------------------------------------------------------------------
# Feed entries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FeedEntry:
    cycle: str
    release_date: Optional[date]
    eol: LifecycleDate
    support: LifecycleDate
    lts: bool
    latest: Optional[str]


def parse_entry(raw: dict) -> Optional[FeedEntry]:
    """Parse one feed entry. Returns None for entries without a cycle."""
    if not isinstance(raw, dict):
        raise FeedFormatError(f"Feed entry is not an object: {raw!r}")

    cycle = raw.get("cycle")
    if cycle is None or cycle == "":
        return None
    if isinstance(cycle, bool) or not isinstance(cycle, (str, int, float)):
        raise FeedFormatError(f"Unexpected cycle value: {cycle!r}")

    release_date = None
    raw_release = raw.get("releaseDate")
    if isinstance(raw_release, str) and raw_release:
        try:
            release_date = _parse_iso_date(raw_release)
        except FeedFormatError:
            logger.debug("Ignoring unparseable releaseDate %r for cycle %s", raw_release, cycle)

    latest = raw.get("latest")
    return FeedEntry(
        cycle=str(cycle),
        release_date=release_date,
        eol=parse_lifecycle_date(raw.get("eol")),
        support=parse_lifecycle_date(raw.get("support")),
        # nodejs reports the LTS start date instead of true
        lts=bool(raw.get("lts")),
        latest=str(latest) if latest not in (None, "") else None,
    )


def parse_feed(payload: Any) -> list[FeedEntry]:
    """Parse a whole feed payload (a JSON array of entries)."""
    if not isinstance(payload, list):
        raise FeedFormatError(f"Feed payload must be a JSON array, got {type(payload).__name__}")
    entries = []
    for raw in payload:
        entry = parse_entry(raw)
        if entry is not None:
            entries.append(entry)
    return entries


# ---------------------------------------------------------------------------
# Mapping
# ---------------------------------------------------------------------------


def determine_status(eol: LifecycleDate, support: LifecycleDate, today: date) -> SupportStatus:
    if _is_past(eol, today):
        return SupportStatus.END_OF_LIFE
    if _is_past(support, today):
        return SupportStatus.MAINTENANCE
    return SupportStatus.ACTIVE


def display_name(framework: FrameworkType, version: str) -> str:
    match framework:
        case FrameworkType.DOTNET:
            return f".NET {version}" if "." in version else f".NET {version}.0"
        case FrameworkType.DOTNET_FRAMEWORK:
            return f".NET Framework {version}"
        case FrameworkType.PYTHON:
            return f"Python {version}"
        case FrameworkType.NODEJS:
            return f"Node.js {version}"
        case FrameworkType.R:
            return f"R {version}"
        case FrameworkType.JAVA:
            return f"Java {version}"
        case _:
            return f"{framework.value} {version}"


def framework_label(framework: FrameworkType) -> str:
    match framework:
        case FrameworkType.DOTNET:
            return ".NET"
        case FrameworkType.DOTNET_FRAMEWORK:
            return ".NET Framework"
        case FrameworkType.PYTHON:
            return "Python"
        case FrameworkType.NODEJS:
            return "Node.js"
        case FrameworkType.R:
            return "R"
        case FrameworkType.JAVA:
            return "Java"
        case _:
            return framework.value


def framework_version_id(framework: FrameworkType, version: str) -> str:
    return f"{framework.value}-{version}".lower()


def map_entry(entry: FeedEntry, framework: FrameworkType, now: Optional[datetime] = None) -> FrameworkVersion:
    now = now or utc_now()
    return FrameworkVersion(
        id=framework_version_id(framework, entry.cycle),
        framework=framework,
        version=entry.cycle,
        display_name=display_name(framework, entry.cycle),
        release_date=entry.release_date,
        eol_date=_concrete(entry.eol),
        active_support_end=_concrete(entry.support),
        status=determine_status(entry.eol, entry.support, now.date()),
        is_lts=entry.lts,
        latest_patch=entry.latest,
        last_updated=now,
    )


# ---------------------------------------------------------------------------
# Diff
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EolUpdateInfo:
    version: FrameworkVersion  # stored record with the feed's changes applied
    previous_eol_date: Optional[date]
    new_eol_date: Optional[date]
    previous_status: SupportStatus
    new_status: SupportStatus
    change_description: str


@dataclass(frozen=True)
class EolFetchError:
    framework: FrameworkType
    message: str


@dataclass
class EolRefreshResult:
    added: list[FrameworkVersion] = field(default_factory=list)
    updated: list[EolUpdateInfo] = field(default_factory=list)
    unchanged: list[str] = field(default_factory=list)
    errors: list[EolFetchError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def absorb(self, other: "EolRefreshResult") -> None:
        self.added.extend(other.added)
        self.updated.extend(other.updated)
        self.unchanged.extend(other.unchanged)
        self.errors.extend(other.errors)


def has_changes(existing: FrameworkVersion, candidate: FrameworkVersion) -> bool:
    return (
        existing.eol_date != candidate.eol_date
        or existing.active_support_end != candidate.active_support_end
        or existing.status != candidate.status
        or existing.is_lts != candidate.is_lts
        or existing.latest_patch != candidate.latest_patch
    )


def _date_text(value: Optional[date]) -> str:
    return short_date(value) if value is not None else "N/A"


def change_description(existing: FrameworkVersion, candidate: FrameworkVersion) -> str:
    """Human-readable summary of what changed, parts joined with "; "."""
    changes = []
    if existing.eol_date != candidate.eol_date:
        changes.append(f"EOL: {_date_text(existing.eol_date)} -> {_date_text(candidate.eol_date)}")
    if existing.active_support_end != candidate.active_support_end:
        changes.append(
            f"Active support: {_date_text(existing.active_support_end)} -> {_date_text(candidate.active_support_end)}"
        )
    if existing.status != candidate.status:
        changes.append(f"Status: {existing.status.value} -> {candidate.status.value}")
    if existing.is_lts != candidate.is_lts:
        changes.append("Now LTS" if candidate.is_lts else "No longer LTS")
    if existing.latest_patch != candidate.latest_patch:
        changes.append(f"Latest: {existing.latest_patch or 'N/A'} -> {candidate.latest_patch or 'N/A'}")
    return "; ".join(changes)


def apply_update(existing: FrameworkVersion, candidate: FrameworkVersion, now: Optional[datetime] = None) -> FrameworkVersion:
    """Stored identity, feed lifecycle fields."""
    return replace(
        existing,
        eol_date=candidate.eol_date,
        active_support_end=candidate.active_support_end,
        status=candidate.status,
        is_lts=candidate.is_lts,
        latest_patch=candidate.latest_patch,
        last_updated=now or utc_now(),
    )


def diff_framework_versions(
    framework: FrameworkType,
    payload: Any,
    stored: Sequence[FrameworkVersion],
    now: Optional[datetime] = None,
) -> EolRefreshResult:
    """Classify every feed entry for one framework family.

    Args:
        framework: The family the payload belongs to.
        payload:   Raw decoded feed JSON (must be a list).
        stored:    Versions currently stored for this family.
        now:       Reference time for status and last_updated.

    Raises FeedFormatError when the payload or an entry is malformed.
    """
    now = now or utc_now()
    entries = parse_feed(payload)
    result = EolRefreshResult()

    if not entries:
        result.unchanged.append(framework_label(framework))
        return result

    known = {v.version.lower(): v for v in stored if v.framework == framework}
    for entry in entries:
        candidate = map_entry(entry, framework, now)
        existing = known.get(candidate.version.lower())

        if existing is None:
            known[candidate.version.lower()] = candidate
            result.added.append(candidate)
            logger.info("Added new framework version: %s", candidate.display_name)
        elif has_changes(existing, candidate):
            updated = apply_update(existing, candidate, now)
            known[candidate.version.lower()] = updated
            result.updated.append(
                EolUpdateInfo(
                    version=updated,
                    previous_eol_date=existing.eol_date,
                    new_eol_date=candidate.eol_date,
                    previous_status=existing.status,
                    new_status=candidate.status,
                    change_description=change_description(existing, candidate),
                )
            )
            logger.info("Updated framework version: %s", candidate.display_name)
        else:
            result.unchanged.append(candidate.display_name)

    return result
