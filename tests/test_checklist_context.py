# tests/test_checklist_context.py
import datetime

import pytest

from backend.checklist_context import (
    build_item_with_status,
    build_marshal_checklist,
    can_complete,
    determine_completion_context,
    is_completed_in_context,
    is_item_visible,
    is_relevant,
    parse_iso,
)
from backend.models import ChecklistCompletion, ContextType, ScopeKind

UTC = datetime.timezone.utc


def completion(item_id, context_type, context_id, owner, deleted=False, minute=0):
    return ChecklistCompletion(
        completion_id=f"{item_id}-{context_id}-{owner}-{minute}",
        item_id=item_id,
        context_type=context_type,
        context_id=context_id,
        context_owner_marshal_id=owner,
        actor_id=owner,
        actor_name=owner,
        completed_at=datetime.datetime(2025, 6, 1, 8, minute, tzinfo=UTC),
        is_deleted=deleted,
    )


def test_completion_context_for_shared_checkpoint_item(facts, ctx_for, lookup):
    item = facts.checklist_item("I2")
    assert determine_completion_context(item, ctx_for("M3b"), lookup) == (
        ContextType.CHECKPOINT, "C3", ScopeKind.ONE_PER_CHECKPOINT,
    )


def test_not_relevant_falls_back_to_personal(facts, ctx_for, lookup):
    item = facts.checklist_item("I3")
    assert not is_relevant(item, ctx_for("M1"), lookup)
    assert not can_complete(item, ctx_for("M1"), lookup)
    assert determine_completion_context(item, ctx_for("M1"), lookup) == (ContextType.PERSONAL, "M1", None)


def test_shared_completion_counts_for_everyone_in_context(facts, ctx_for, lookup):
    item = facts.checklist_item("I2")
    assert is_completed_in_context(item, ctx_for("M3a"), lookup, facts.completions)
    assert is_completed_in_context(item, ctx_for("M3b"), lookup, facts.completions)
    assert not is_completed_in_context(item, ctx_for("M2"), lookup, facts.completions)


def test_personal_completion_counts_only_for_owner(facts, ctx_for, lookup):
    item = facts.checklist_item("I1")
    done = [completion("I1", ContextType.PERSONAL, "M1", "M1")]
    assert is_completed_in_context(item, ctx_for("M1"), lookup, done)
    assert not is_completed_in_context(item, ctx_for("M2"), lookup, done)


def test_soft_deleted_completion_never_counts(facts, ctx_for, lookup):
    item = facts.checklist_item("I2")
    done = [completion("I2", ContextType.CHECKPOINT, "C3", "M3a", deleted=True)]
    assert not is_completed_in_context(item, ctx_for("M3b"), lookup, done)


def test_completion_lookup_order_independent(facts, ctx_for, lookup):
    item = facts.checklist_item("I2")
    done = [
        completion("I2", ContextType.CHECKPOINT, "C2", "M2", minute=1),
        completion("I2", ContextType.CHECKPOINT, "C3", "M3b", minute=5),
        completion("I2", ContextType.CHECKPOINT, "C3", "M3a", minute=2),
    ]
    forward = build_item_with_status(item, ctx_for("M3b"), lookup, done)
    backward = build_item_with_status(item, ctx_for("M3b"), lookup, list(reversed(done)))
    assert forward == backward
    assert forward.completed_by_actor_id == "M3a"


def test_item_with_status_fields(facts, ctx_for, lookup):
    row = build_item_with_status(facts.checklist_item("I2"), ctx_for("M3b"), lookup, facts.completions)
    assert row.is_completed
    assert row.can_complete is False
    # the item still applies; only this context is already done
    assert can_complete(facts.checklist_item("I2"), ctx_for("M3b"), lookup)
    assert row.completed_by_actor_name == "Jo Water"
    assert row.completion_context_type == ContextType.CHECKPOINT
    assert row.completion_context_id == "C3"
    assert row.matched_scope == ScopeKind.ONE_PER_CHECKPOINT
    assert row.context_owner_marshal_id == "M3a"

    open_row = build_item_with_status(facts.checklist_item("I1"), ctx_for("M3b"), lookup, [], marshal_name="Ray Water")
    assert open_row.can_complete is True
    assert open_row.context_owner_marshal_id == "M3b"
    assert open_row.context_owner_name == "Ray Water"


def test_marshal_checklist_has_one_row_per_context(facts, ctx_for, lookup):
    now = datetime.datetime(2025, 6, 1, 9, 0, tzinfo=UTC)
    rows = build_marshal_checklist(facts.checklist_items, ctx_for("M5"), lookup, facts.completions, now=now)
    assert [(r.item_id, r.completion_context_id) for r in rows] == [
        ("I1", "M5"),
        ("I2", "C1"),
        ("I2", "C2"),
        ("I3", "A1"),
    ]
    assert not any(r.is_completed for r in rows)


def test_area_lead_checklist(facts, ctx_for, lookup):
    now = datetime.datetime(2025, 6, 1, 9, 0, tzinfo=UTC)
    rows = build_marshal_checklist(facts.checklist_items, ctx_for("L1"), lookup, facts.completions, now=now)
    assert [(r.item_id, r.completion_context_id, r.is_completed) for r in rows] == [
        ("I1", "L1", False),
        ("I2", "C2", False),
        ("I2", "C3", True),
        ("I3", "A1", False),
        ("I5", "A1", False),
    ]


def test_visibility_window(facts):
    late = facts.checklist_item("I6")
    assert not is_item_visible(late, datetime.datetime(2025, 6, 1, tzinfo=UTC))
    assert is_item_visible(late, datetime.datetime(2030, 6, 1, tzinfo=UTC))
    assert is_item_visible(facts.checklist_item("I1"))


def test_visibility_window_bounds_are_inclusive(facts):
    item = facts.checklist_item("I1").model_copy(update={
        "visible_from": datetime.datetime(2025, 6, 1, 8, 0, tzinfo=UTC),
        "visible_until": datetime.datetime(2025, 6, 1, 10, 0),
    })
    assert is_item_visible(item, datetime.datetime(2025, 6, 1, 8, 0, tzinfo=UTC))
    assert is_item_visible(item, datetime.datetime(2025, 6, 1, 10, 0, tzinfo=UTC))
    assert not is_item_visible(item, datetime.datetime(2025, 6, 1, 10, 1, tzinfo=UTC))


def test_parse_iso():
    assert parse_iso("2025-06-01T08:00:00Z") == datetime.datetime(2025, 6, 1, 8, 0, tzinfo=UTC)
    assert parse_iso("2025-06-01T08:00:00").tzinfo is not None
    assert parse_iso("2025-06-01T10:00:00+02:00") == datetime.datetime(2025, 6, 1, 8, 0, tzinfo=UTC)
    assert parse_iso("") is None
    assert parse_iso(None) is None
    with pytest.raises(ValueError):
        parse_iso("not a date")
