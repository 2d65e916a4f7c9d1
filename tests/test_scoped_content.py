# tests/test_scoped_content.py
import datetime

from backend.models import Note, ScopeConfiguration, ScopeKind
from backend.scoped_content import contacts_for_marshal, notes_for_marshal


def test_notes_priority_beats_display_order(facts, ctx_for, lookup):
    notes = notes_for_marshal(facts.notes, ctx_for("M1"), lookup)
    assert [n.note_id for n in notes] == ["N3", "N1"]
    assert notes[0].matched_scope == ScopeKind.EVERYONE_AT_CHECKPOINTS


def test_pinned_notes_first_and_deleted_hidden(facts, ctx_for, lookup):
    notes = notes_for_marshal(facts.notes, ctx_for("M3a"), lookup)
    assert [n.note_id for n in notes] == ["N2", "N1"]


def test_newest_note_first_on_ties(ctx_for, lookup):
    everyone = [ScopeConfiguration(scope=ScopeKind.EVERYONE)]
    older = Note(id="old", scope_configurations=everyone, created_at=datetime.datetime(2025, 1, 1))
    newer = Note(id="new", scope_configurations=everyone, created_at=datetime.datetime(2025, 2, 1))
    assert [n.note_id for n in notes_for_marshal([older, newer], ctx_for("M1"), lookup)] == ["new", "old"]


def test_contacts_primary_then_role(facts, ctx_for, lookup):
    assert [c.contact_id for c in contacts_for_marshal(facts.contacts, ctx_for("M3a"), lookup)] == ["K1", "K2", "K3"]
    assert [c.contact_id for c in contacts_for_marshal(facts.contacts, ctx_for("M1"), lookup)] == ["K1", "K3"]
