"""Incident lifecycle rules expressed over immutable snapshots.

Nothing in this module touches the database. Callers load an incident into an
``IncidentSnapshot``, ask for a transition, and persist the returned snapshot
together with the new timeline entries in a single transaction.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Iterable
from uuid import uuid4

from incidentdesk.core.errors import ValidationError


SEVERITIES = ("P1", "P2", "P3", "P4")
STATUSES = ("open", "acknowledged", "investigating", "resolved", "closed")
ENTRY_TYPES = ("note", "status", "assignment", "severity")

DEFAULT_SEVERITY = "P3"
DEFAULT_STATUS = "open"
RESOLVED_STATUS = "resolved"
CREATED_NOTE = "Incident created"
ASSIGNEES_UPDATED_NOTE = "Assignees updated"


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


# Marks a field the caller did not send, as opposed to one explicitly cleared.
UNSET: Any = _Unset()


@dataclass(frozen=True)
class TimelineEntry:
    entry_type: str
    text: str
    user_id: str
    occurred_at: datetime
    old_value: str | None = None
    new_value: str | None = None

    def __post_init__(self) -> None:
        if self.entry_type not in ENTRY_TYPES:
            raise ValueError(f"Unsupported timeline entry type: {self.entry_type}")
        if self.entry_type in {"status", "severity"} and (self.old_value is None or self.new_value is None):
            raise ValueError(f"{self.entry_type} entries require old and new values")


@dataclass(frozen=True)
class IncidentSnapshot:
    id: str
    org_id: str
    title: str
    severity: str
    status: str
    reporter_id: str
    created_at: datetime
    updated_at: datetime
    description: str | None = None
    assignees: tuple[str, ...] = ()
    timeline: tuple[TimelineEntry, ...] = ()
    tags: tuple[str, ...] | None = None
    affected_services: tuple[str, ...] | None = None
    resolved_at: datetime | None = None


@dataclass(frozen=True)
class IncidentChanges:
    # Every field defaults to UNSET; only fields the caller sent take part in the update.
    title: Any = UNSET
    description: Any = UNSET
    status: Any = UNSET
    severity: Any = UNSET
    assignees: Any = UNSET

    @classmethod
    def from_mapping(cls, payload: dict[str, Any]) -> "IncidentChanges":
        known = {name: payload[name] for name in ("title", "description", "status", "severity", "assignees") if name in payload}
        return cls(**known)


@dataclass(frozen=True)
class UpdateResult:
    incident: IncidentSnapshot
    entries: tuple[TimelineEntry, ...] = ()
    # Field name -> new value, used for audit details.
    changes: dict[str, Any] = field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return bool(self.changes)


def _require_severity(value: str) -> str:
    if value not in SEVERITIES:
        raise ValidationError(f"Unsupported severity: {value}", details={"allowed": list(SEVERITIES)})
    return value


def _require_status(value: str) -> str:
    if value not in STATUSES:
        raise ValidationError(f"Unsupported status: {value}", details={"allowed": list(STATUSES)})
    return value


def _normalize_labels(values: Iterable[str] | None) -> tuple[str, ...]:
    # Keep first occurrence order while dropping blanks and duplicates.
    if values is None:
        return ()
    seen: dict[str, None] = {}
    for raw in values:
        value = str(raw).strip()
        if value:
            seen.setdefault(value, None)
    return tuple(seen)


def _clean_description(value: Any) -> str | None:
    # Blank descriptions are stored as absent.
    if not isinstance(value, str):
        return None
    return value.strip() or None

def build_incident(
    *,
    org_id: str,
    reporter_id: str,
    title: str | None,
    now: datetime,
    description: str | None = None,
    severity: str | None = None,
    assignees: Iterable[str] | None = None,
    tags: Iterable[str] | None = None,
    affected_services: Iterable[str] | None = None,
    incident_id: str | None = None,
) -> IncidentSnapshot:
    """Construct a new incident with all defaults applied.

    Raises ``ValidationError`` when the title is missing or blank after
    trimming; no timeline entry exists for an incident that was never built.
    """
    cleaned_title = (title or "").strip()
    if not cleaned_title:
        raise ValidationError("Title is required")
    cleaned_description = _clean_description(description)
    created_entry = TimelineEntry(
        entry_type="note",
        text=CREATED_NOTE,
        user_id=reporter_id,
        occurred_at=now,
    )
    return IncidentSnapshot(
        id=incident_id or uuid4().hex,
        org_id=org_id,
        title=cleaned_title,
        description=cleaned_description,
        severity=_require_severity(severity or DEFAULT_SEVERITY),
        status=DEFAULT_STATUS,
        assignees=_normalize_labels(assignees),
        reporter_id=reporter_id,
        timeline=(created_entry,),
        tags=_normalize_labels(tags) if tags is not None else None,
        affected_services=_normalize_labels(affected_services) if affected_services is not None else None,
        created_at=now,
        updated_at=now,
    )


def apply_changes(
    incident: IncidentSnapshot,
    changes: IncidentChanges,
    *,
    acting_user_id: str,
    now: datetime,
) -> UpdateResult:
    """Apply a partial update and synthesize the matching timeline entries.

    Status, severity and assignee changes each yield exactly one entry when the
    requested value differs from the current one. Title and description are
    applied silently. Any status may follow any other status. A fresh move into
    ``resolved`` stamps ``resolved_at``; moving out of it again leaves the stamp
    in place.
    """
    updates: dict[str, Any] = {}
    entries: list[TimelineEntry] = []
    audit_changes: dict[str, Any] = {}

    if changes.status is not UNSET and changes.status is not None:
        new_status = _require_status(changes.status)
        if new_status != incident.status:
            updates["status"] = new_status
            audit_changes["status"] = new_status
            entries.append(
                TimelineEntry(
                    entry_type="status",
                    text=f"Status changed from {incident.status} to {new_status}",
                    user_id=acting_user_id,
                    occurred_at=now,
                    old_value=incident.status,
                    new_value=new_status,
                )
            )
            if new_status == RESOLVED_STATUS:
                updates["resolved_at"] = now
                audit_changes["resolved_at"] = now.isoformat()

    if changes.severity is not UNSET and changes.severity is not None:
        new_severity = _require_severity(changes.severity)
        if new_severity != incident.severity:
            updates["severity"] = new_severity
            audit_changes["severity"] = new_severity
            entries.append(
                TimelineEntry(
                    entry_type="severity",
                    text=f"Severity changed from {incident.severity} to {new_severity}",
                    user_id=acting_user_id,
                    occurred_at=now,
                    old_value=incident.severity,
                    new_value=new_severity,
                )
            )

    if changes.assignees is not UNSET and changes.assignees is not None:
        new_assignees = _normalize_labels(changes.assignees)
        if new_assignees != incident.assignees:
            updates["assignees"] = new_assignees
            audit_changes["assignees"] = list(new_assignees)
            entries.append(
                TimelineEntry(
                    entry_type="assignment",
                    text=ASSIGNEES_UPDATED_NOTE,
                    user_id=acting_user_id,
                    occurred_at=now,
                )
            )

    if changes.title is not UNSET and changes.title is not None:
        # Blank titles are ignored rather than rejected on update.
        new_title = str(changes.title).strip()
        if new_title and new_title != incident.title:
            updates["title"] = new_title
            audit_changes["title"] = new_title

    if changes.description is not UNSET:
        new_description = _clean_description(changes.description)
        if new_description != incident.description:
            updates["description"] = new_description
            audit_changes["description"] = new_description

    if not updates:
        return UpdateResult(incident=incident)

    updates["updated_at"] = now
    updates["timeline"] = incident.timeline + tuple(entries)
    return UpdateResult(incident=replace(incident, **updates), entries=tuple(entries), changes=audit_changes)


def append_note(
    incident: IncidentSnapshot,
    *,
    text: str | None,
    acting_user_id: str,
    now: datetime,
) -> UpdateResult:
    # Free-text notes are the only timeline entries not tied to a field change.
    cleaned = (text or "").strip()
    if not cleaned:
        raise ValidationError("Note text is required")
    entry = TimelineEntry(entry_type="note", text=cleaned, user_id=acting_user_id, occurred_at=now)
    return UpdateResult(
        incident=replace(incident, timeline=incident.timeline + (entry,), updated_at=now),
        entries=(entry,),
        changes={"note": cleaned},
    )
