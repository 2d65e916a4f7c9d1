# backend/scoped_content.py
"""
Notes and contacts filtered through the scope evaluator.

Unlike checklist items these have no completion context: a note or contact
is shown when any of its scope configurations admits the marshal.
"""

from typing import Iterable, List, Mapping

from .models import ContactForMarshal, EventContact, Location, MarshalContext, Note, NoteForMarshal
from .scope_evaluator import evaluate

# ---------------- CONFIG ----------------
PRIORITY_ORDER = {
    "Emergency": 0,
    "Urgent": 1,
    "High": 2,
    "Normal": 3,
    "Low": 4,
}
DEFAULT_PRIORITY_RANK = PRIORITY_ORDER["Normal"]
# ----------------------------------------


def _note_sort_key(row):
    note, _ = row
    created = note.created_at.timestamp() if note.created_at else float("-inf")
    return (
        0 if note.is_pinned else 1,
        PRIORITY_ORDER.get(note.priority, DEFAULT_PRIORITY_RANK),
        note.display_order,
        -created,
        note.id,
    )


def notes_for_marshal(
    notes: Iterable[Note], ctx: MarshalContext, checkpoint_lookup: Mapping[str, Location]
) -> List[NoteForMarshal]:
    """Pinned first, then priority, display order, newest first."""
    matched = []
    for note in notes:
        if note.is_deleted:
            continue
        match = evaluate(note.scope_configurations, ctx, checkpoint_lookup)
        if match.is_relevant:
            matched.append((note, match))

    return [
        NoteForMarshal(
            note_id=note.id,
            event_id=note.event_id,
            title=note.title,
            content=note.content,
            priority=note.priority,
            category=note.category,
            is_pinned=note.is_pinned,
            created_at=note.created_at,
            created_by_name=note.created_by_name,
            matched_scope=match.matched_scope,
        )
        for note, match in sorted(matched, key=_note_sort_key)
    ]


def contacts_for_marshal(
    contacts: Iterable[EventContact], ctx: MarshalContext, checkpoint_lookup: Mapping[str, Location]
) -> List[ContactForMarshal]:
    """Primary contacts first, then by role, then display order."""
    matched = []
    for contact in contacts:
        match = evaluate(contact.scope_configurations, ctx, checkpoint_lookup)
        if match.is_relevant:
            matched.append((contact, match))

    matched.sort(key=lambda row: (0 if row[0].is_primary else 1, row[0].role, row[0].display_order, row[0].id))
    return [
        ContactForMarshal(
            contact_id=c.id,
            role=c.role,
            name=c.name,
            phone=c.phone,
            email=c.email,
            notes=c.notes,
            is_primary=c.is_primary,
            matched_scope=match.matched_scope,
        )
        for c, match in matched
    ]
