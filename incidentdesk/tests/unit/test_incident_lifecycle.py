from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from incidentdesk.core.errors import ValidationError
from incidentdesk.domain.incidents import (
    CREATED_NOTE,
    IncidentChanges,
    append_note,
    apply_changes,
    build_incident,
)


T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
T1 = T0 + timedelta(hours=2)
T2 = T0 + timedelta(hours=5)


def _incident(**overrides):
    params = {"org_id": "org-1", "reporter_id": "user-1", "title": "Database down", "now": T0}
    params.update(overrides)
    return build_incident(**params)


def test_build_applies_defaults_and_seed_entry() -> None:
    incident = _incident(title="  Database down  ")
    assert incident.title == "Database down"
    assert incident.severity == "P3"
    assert incident.status == "open"
    assert incident.assignees == ()
    assert incident.resolved_at is None
    assert incident.created_at == incident.updated_at == T0
    assert len(incident.timeline) == 1
    seed = incident.timeline[0]
    assert (seed.entry_type, seed.text, seed.user_id) == ("note", CREATED_NOTE, "user-1")


@pytest.mark.parametrize("title", [None, "", "   "])
def test_build_rejects_blank_title(title) -> None:
    with pytest.raises(ValidationError):
        _incident(title=title)


def test_build_rejects_unknown_severity() -> None:
    with pytest.raises(ValidationError):
        _incident(severity="P0")


def test_build_dedupes_labels_in_order() -> None:
    incident = _incident(assignees=["u2", "u1", "u2", " "], tags=["db", "db", "prod"])
    assert incident.assignees == ("u2", "u1")
    assert incident.tags == ("db", "prod")
    assert incident.affected_services is None


def test_resolving_stamps_resolved_at_and_logs_status_entry() -> None:
    result = apply_changes(_incident(), IncidentChanges(status="resolved"), acting_user_id="user-2", now=T1)
    assert result.changed
    assert result.incident.status == "resolved"
    assert result.incident.resolved_at == T1
    assert result.incident.updated_at == T1
    assert len(result.entries) == 1
    entry = result.entries[0]
    assert (entry.entry_type, entry.old_value, entry.new_value) == ("status", "open", "resolved")
    assert entry.user_id == "user-2"
    assert result.incident.timeline[-1] == entry


def test_reopening_keeps_resolved_at() -> None:
    resolved = apply_changes(_incident(), IncidentChanges(status="resolved"), acting_user_id="u", now=T1).incident
    reopened = apply_changes(resolved, IncidentChanges(status="investigating"), acting_user_id="u", now=T2)
    assert reopened.incident.status == "investigating"
    assert reopened.incident.resolved_at == T1


def test_any_status_may_follow_any_other() -> None:
    closed = apply_changes(_incident(), IncidentChanges(status="closed"), acting_user_id="u", now=T1).incident
    back = apply_changes(closed, IncidentChanges(status="open"), acting_user_id="u", now=T2)
    assert back.incident.status == "open"
    assert back.incident.resolved_at is None


def test_severity_change_adds_entry() -> None:
    result = apply_changes(_incident(), IncidentChanges(severity="P1"), acting_user_id="u", now=T1)
    assert result.incident.severity == "P1"
    entry = result.entries[0]
    assert (entry.entry_type, entry.old_value, entry.new_value) == ("severity", "P3", "P1")


def test_assignee_change_adds_single_assignment_entry() -> None:
    result = apply_changes(_incident(), IncidentChanges(assignees=["u3", "u4"]), acting_user_id="u", now=T1)
    assert result.incident.assignees == ("u3", "u4")
    assert [entry.entry_type for entry in result.entries] == ["assignment"]


def test_combined_update_emits_one_entry_per_field() -> None:
    changes = IncidentChanges(status="acknowledged", severity="P2", assignees=["u9"], title="DB degraded")
    result = apply_changes(_incident(), changes, acting_user_id="u", now=T1)
    assert [entry.entry_type for entry in result.entries] == ["status", "severity", "assignment"]
    assert result.incident.title == "DB degraded"
    assert len(result.incident.timeline) == 4


def test_unchanged_values_are_a_no_op() -> None:
    incident = _incident(severity="P2")
    result = apply_changes(
        incident,
        IncidentChanges(status="open", severity="P2", assignees=[]),
        acting_user_id="u",
        now=T1,
    )
    assert not result.changed
    assert result.entries == ()
    assert result.incident is incident


def test_blank_title_on_update_is_ignored() -> None:
    result = apply_changes(_incident(), IncidentChanges(title="   "), acting_user_id="u", now=T1)
    assert not result.changed
    assert result.incident.title == "Database down"


def test_title_and_description_change_without_entries() -> None:
    result = apply_changes(
        _incident(description="old"),
        IncidentChanges.from_mapping({"title": "New title", "description": None}),
        acting_user_id="u",
        now=T1,
    )
    assert result.changed
    assert result.entries == ()
    assert result.incident.title == "New title"
    assert result.incident.description is None
    assert len(result.incident.timeline) == 1


def test_description_update_is_trimmed_like_creation() -> None:
    trimmed = apply_changes(
        _incident(description="old"), IncidentChanges(description="  new  "), acting_user_id="u", now=T1
    )
    assert trimmed.incident.description == "new"
    assert trimmed.changes == {"description": "new"}

    blank = apply_changes(_incident(description="old"), IncidentChanges(description="   "), acting_user_id="u", now=T1)
    assert blank.incident.description is None

    unchanged = apply_changes(
        _incident(description="old"), IncidentChanges(description=" old "), acting_user_id="u", now=T1
    )
    assert not unchanged.changed


def test_invalid_status_is_rejected() -> None:
    with pytest.raises(ValidationError):
        apply_changes(_incident(), IncidentChanges(status="done"), acting_user_id="u", now=T1)


def test_append_note_requires_text() -> None:
    with pytest.raises(ValidationError):
        append_note(_incident(), text="  ", acting_user_id="u", now=T1)
    result = append_note(_incident(), text=" paged DBA ", acting_user_id="u", now=T1)
    assert result.incident.timeline[-1].text == "paged DBA"
    assert result.incident.updated_at == T1
