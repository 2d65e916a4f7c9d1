# backend/checklist_context.py
"""
Checklist context helper.

Glue between scope evaluation and the completion ledger:
 - which context (Personal / Checkpoint / Area + id) a marshal would
   complete an item in
 - whether that context is already completed
 - the ChecklistItemWithStatus projection used by the HTTP layer

Personal completions count only for their owner. Shared completions count
for every marshal whose resolved context has the same type and id.
Soft-deleted completions never count.
"""

import datetime
import logging
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from dateutil import parser as du_parser

from .models import (
    ChecklistCompletion,
    ChecklistItem,
    ChecklistItemWithStatus,
    ContextType,
    Location,
    MarshalContext,
    ScopeKind,
    ScopeMatchResult,
)
from .scope_evaluator import all_relevant_contexts, evaluate, is_personal_context_type

log = logging.getLogger(__name__)

CheckpointLookup = Mapping[str, Location]


# ---------- Time helpers ----------
def ensure_utc(dt: Optional[datetime.datetime]) -> Optional[datetime.datetime]:
    """Attach UTC to naive datetimes; aware values are returned unchanged."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=datetime.timezone.utc)
    return dt


def parse_iso(value: Any) -> Optional[datetime.datetime]:
    """
    Timezone-aware ISO-8601 parsing. Naive values are taken as UTC.
    Blank input gives None; unparseable input raises ValueError.
    """
    if value is None:
        return None
    if isinstance(value, datetime.datetime):
        return ensure_utc(value)
    s = str(value).strip()
    if s == "":
        return None
    return ensure_utc(du_parser.isoparse(s))


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


# ---------- Relevance ----------
def is_relevant(item: ChecklistItem, ctx: MarshalContext, checkpoint_lookup: CheckpointLookup) -> bool:
    return evaluate(item.scope_configurations, ctx, checkpoint_lookup).is_relevant


def can_complete(item: ChecklistItem, ctx: MarshalContext, checkpoint_lookup: CheckpointLookup) -> bool:
    # Same rule set as is_relevant.
    return evaluate(item.scope_configurations, ctx, checkpoint_lookup).is_relevant


def determine_completion_context(
    item: ChecklistItem, ctx: MarshalContext, checkpoint_lookup: CheckpointLookup
) -> Tuple[ContextType, str, Optional[ScopeKind]]:
    """(context_type, context_id, winning scope); Personal + own id when not relevant."""
    match = evaluate(item.scope_configurations, ctx, checkpoint_lookup)
    if not match.is_relevant:
        return ContextType.PERSONAL, ctx.marshal_id, None
    return match.context_type, match.context_id, match.matched_scope


# ---------- Completion lookup ----------
def _matches_context(c: ChecklistCompletion, context_type: ContextType, context_id: str, marshal_id: str) -> bool:
    if is_personal_context_type(context_type):
        return c.context_type == ContextType.PERSONAL and c.context_owner_marshal_id == marshal_id
    return c.context_type == context_type and c.context_id == context_id


def find_completion(
    item: ChecklistItem,
    match: ScopeMatchResult,
    ctx: MarshalContext,
    completions: Iterable[ChecklistCompletion],
) -> Optional[ChecklistCompletion]:
    """Earliest non-deleted completion of ``item`` in the context of ``match``."""
    if match.is_relevant:
        context_type, context_id = match.context_type, match.context_id
    else:
        context_type, context_id = ContextType.PERSONAL, ctx.marshal_id

    hits = [
        c for c in completions
        if c.item_id == item.id and not c.is_deleted
        and _matches_context(c, context_type, context_id, ctx.marshal_id)
    ]
    if not hits:
        return None
    return min(hits, key=lambda c: (ensure_utc(c.completed_at), c.completion_id))


def is_completed_in_context(
    item: ChecklistItem,
    ctx: MarshalContext,
    checkpoint_lookup: CheckpointLookup,
    completions: Iterable[ChecklistCompletion],
) -> bool:
    match = evaluate(item.scope_configurations, ctx, checkpoint_lookup)
    return find_completion(item, match, ctx, completions) is not None


# ---------- Projection ----------
def build_item_with_status(
    item: ChecklistItem,
    ctx: MarshalContext,
    checkpoint_lookup: CheckpointLookup,
    completions: Iterable[ChecklistCompletion],
    match: Optional[ScopeMatchResult] = None,
    marshal_name: Optional[str] = None,
) -> ChecklistItemWithStatus:
    """
    Status row for one item in one context. ``match`` selects the context
    (one of all_relevant_contexts); by default the winning one is used.
    """
    if match is None:
        match = evaluate(item.scope_configurations, ctx, checkpoint_lookup)

    completion = find_completion(item, match, ctx, completions)

    if match.is_relevant:
        context_type, context_id = match.context_type, match.context_id
    else:
        context_type, context_id = ContextType.PERSONAL, ctx.marshal_id

    if is_personal_context_type(context_type):
        owner_id: Optional[str] = ctx.marshal_id
        owner_name = marshal_name
    elif completion is not None:
        owner_id = completion.context_owner_marshal_id or None
        owner_name = completion.context_owner_marshal_name or None
    else:
        owner_id, owner_name = None, None

    return ChecklistItemWithStatus(
        item_id=item.id,
        event_id=item.event_id,
        text=item.text,
        scope_configurations=item.scope_configurations,
        display_order=item.display_order,
        is_required=item.is_required,
        visible_from=item.visible_from,
        visible_until=item.visible_until,
        must_complete_by=item.must_complete_by,
        is_completed=completion is not None,
        can_complete=match.is_relevant and completion is None,
        completed_by_actor_name=completion.actor_name if completion else None,
        completed_by_actor_type=completion.actor_type if completion else None,
        completed_by_actor_id=completion.actor_id if completion else None,
        completed_at=completion.completed_at if completion else None,
        completion_context_type=context_type,
        completion_context_id=context_id,
        matched_scope=match.matched_scope,
        context_owner_marshal_id=owner_id,
        context_owner_name=owner_name,
    )


def is_item_visible(item: ChecklistItem, now: Optional[datetime.datetime] = None) -> bool:
    now = ensure_utc(now) or utcnow()
    start = ensure_utc(item.visible_from)
    end = ensure_utc(item.visible_until)
    if start is not None and now < start:
        return False
    if end is not None and now > end:
        return False
    return True


def build_marshal_checklist(
    items: Iterable[ChecklistItem],
    ctx: MarshalContext,
    checkpoint_lookup: CheckpointLookup,
    completions: Iterable[ChecklistCompletion],
    now: Optional[datetime.datetime] = None,
    marshal_name: Optional[str] = None,
) -> List[ChecklistItemWithStatus]:
    """
    Visible, relevant items ordered by display_order, one row per context
    the marshal can act in (a marshal at two checkpoints gets two rows for a
    one-per-checkpoint item).
    """
    completions = list(completions)
    rows: List[ChecklistItemWithStatus] = []
    for item in sorted(items, key=lambda i: (i.display_order, i.id)):
        if not is_item_visible(item, now):
            continue
        for match in all_relevant_contexts(item.scope_configurations, ctx, checkpoint_lookup):
            rows.append(build_item_with_status(
                item, ctx, checkpoint_lookup, completions, match=match, marshal_name=marshal_name,
            ))
    return rows
