# backend/routes.py
"""
HTTP surface over the scope engine.

Endpoints:
- GET  /events/{event_id}/marshals/{marshal_id}/checklist  -> checklist rows (one per context)
- POST /checklist-items/{event_id}/{item_id}/complete       -> record a completion
- POST /checklist-items/{event_id}/{item_id}/uncomplete     -> admin soft delete
- GET  /events/{event_id}/checklist-report                  -> per-item / per-context status
- GET  /events/{event_id}/marshals/{marshal_id}/notes       -> scoped notes
- GET  /events/{event_id}/marshals/{marshal_id}/contacts    -> scoped contacts
- GET  /events/{event_id}/incidents                         -> incidents visible to the caller
- POST /events/{event_id}/incidents                         -> report an incident
- POST /events/{event_id}/scope/evaluate                    -> preview a scope configuration list

Identity comes from headers (X-Person-Id, X-Marshal-Id, X-Admin-Email);
session issuance lives elsewhere.
"""

import datetime
import logging
import uuid
from typing import Any, Dict, List, Optional, Tuple

from fastapi import APIRouter, Header, HTTPException, Request, Response
from pydantic import BaseModel

from .checklist_context import (
    build_item_with_status,
    build_marshal_checklist,
    determine_completion_context,
    find_completion,
    can_complete,
    parse_iso,
    utcnow,
)
from .context_builder import MarshalContextBuilder, build_from_preloaded, build_many_from_preloaded
from .geometry import area_containing_point
from .incident_visibility import IncidentViewer, build_context_snapshot, filter_incidents_for_viewer
from .load_events import EventStore
from .models import (
    ACTOR_EVENT_ADMIN,
    ACTOR_MARSHAL,
    ChecklistItemWithStatus,
    ContactForMarshal,
    ContextType,
    EventFacts,
    Incident,
    NoteForMarshal,
    ScopeConfiguration,
    ScopeMatchResult,
)
from .scope_evaluator import all_relevant_contexts, evaluate, is_personal_context_type
from .scoped_content import contacts_for_marshal, notes_for_marshal

log = logging.getLogger("uvicorn.error")
router = APIRouter()

# ---------------- CONFIG ----------------
VALID_SEVERITIES = ("low", "medium", "high", "critical")
VALID_STATUSES = ("open", "acknowledged", "in_progress", "resolved", "closed")
# ----------------------------------------


# ---------- Request / Response Models ----------
class CompleteRequest(BaseModel):
    marshal_id: str
    context_type: Optional[ContextType] = None
    context_id: Optional[str] = None


class CreateIncidentRequest(BaseModel):
    title: Optional[str] = None
    description: str = ""
    severity: Optional[str] = None
    incident_time: Optional[datetime.datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    checkpoint_id: Optional[str] = None
    skip_checkpoint_auto_assign: bool = False


class ScopePreviewRequest(BaseModel):
    marshal_id: str
    scope_configurations: List[ScopeConfiguration] = []


# ---------- Helpers ----------
def _store(request: Request) -> EventStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        return EventStore()
    return store


def _require_event(store: EventStore, event_id: str) -> EventFacts:
    facts = store.get(event_id)
    if facts is None:
        raise HTTPException(status_code=404, detail=f"Event '{event_id}' not found")
    return facts


def _require_marshal(facts: EventFacts, marshal_id: str):
    marshal = facts.marshal(marshal_id)
    if marshal is None:
        raise HTTPException(status_code=404, detail=f"Marshal '{marshal_id}' not found")
    return marshal


def _require_item(facts: EventFacts, item_id: str):
    item = facts.checklist_item(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail=f"Checklist item '{item_id}' not found")
    return item


def _is_admin(facts: EventFacts, person_id: Optional[str]) -> bool:
    if not person_id:
        return False
    return any(r.person_id == person_id and r.is_admin for r in facts.roles)


def _person_lead_areas(facts: EventFacts, person_id: Optional[str]) -> frozenset:
    if not person_id:
        return frozenset()
    out = set()
    for r in facts.roles:
        if r.person_id == person_id and r.is_area_lead:
            out.update(r.area_ids)
    return frozenset(out)


def _match_summary(match: ScopeMatchResult) -> Dict[str, Any]:
    return {
        "is_relevant": match.is_relevant,
        "matched_scope": match.matched_scope.value if match.matched_scope else None,
        "winning_config": match.winning_config.to_wire() if match.winning_config else None,
        "specificity": match.specificity,
        "context_type": match.context_type.value if match.context_type else None,
        "context_id": match.context_id,
    }


def _resolve_requested_context(
    body: CompleteRequest, contexts: List[ScopeMatchResult], marshal_id: str
) -> ScopeMatchResult:
    """
    Pick the context a completion applies to: the explicit one from the
    request if it is one of the marshal's contexts, else the winning one.
    """
    if body.context_type is None and body.context_id is None:
        return contexts[0]
    if body.context_type is None or body.context_id is None:
        raise HTTPException(status_code=400, detail="context_type and context_id must be given together")

    for m in contexts:
        if is_personal_context_type(m.context_type) and is_personal_context_type(body.context_type):
            if body.context_id == marshal_id:
                return m
        elif m.context_type == body.context_type and m.context_id == body.context_id:
            return m
    raise HTTPException(
        status_code=400,
        detail=f"Context {body.context_type.value}:{body.context_id} does not apply to marshal '{marshal_id}'",
    )


# ---------- CHECKLIST ----------
@router.get(
    "/events/{event_id}/marshals/{marshal_id}/checklist",
    response_model=List[ChecklistItemWithStatus],
)
def get_marshal_checklist(event_id: str, marshal_id: str, request: Request, at: Optional[str] = None):
    store = _store(request)
    facts = _require_event(store, event_id)
    marshal = _require_marshal(facts, marshal_id)

    try:
        now = parse_iso(at) if at else None
    except (ValueError, OverflowError):
        raise HTTPException(status_code=400, detail=f"Invalid 'at' timestamp: {at}")

    ctx = MarshalContextBuilder(store).build(event_id, marshal_id)
    ledger = store.ledger(event_id)
    return build_marshal_checklist(
        facts.checklist_items,
        ctx,
        store.checkpoint_lookup(event_id),
        ledger.for_event() if ledger else [],
        now=now,
        marshal_name=marshal.name,
    )


@router.post("/checklist-items/{event_id}/{item_id}/complete", response_model=ChecklistItemWithStatus)
def complete_checklist_item(
    event_id: str,
    item_id: str,
    body: CompleteRequest,
    request: Request,
    x_admin_email: Optional[str] = Header(default=None),
):
    store = _store(request)
    facts = _require_event(store, event_id)
    item = _require_item(facts, item_id)
    marshal = _require_marshal(facts, body.marshal_id)

    ctx = MarshalContextBuilder(store).build(event_id, marshal.id)
    lookup = store.checkpoint_lookup(event_id)

    if not can_complete(item, ctx, lookup):
        log.warning("Marshal %s attempted to complete checklist item %s without permission", marshal.id, item_id)
        raise HTTPException(status_code=403, detail="Marshal may not complete this item")

    match = _resolve_requested_context(body, all_relevant_contexts(item.scope_configurations, ctx, lookup), marshal.id)
    ledger = store.ledger(event_id)
    if find_completion(item, match, ctx, ledger.for_item(item_id)) is not None:
        raise HTTPException(status_code=400, detail="Checklist item already completed in this context")

    admin_email = (x_admin_email or "").strip()
    if admin_email:
        actor_type, actor_id, actor_name = ACTOR_EVENT_ADMIN, admin_email, admin_email
    else:
        actor_type, actor_id, actor_name = ACTOR_MARSHAL, marshal.id, marshal.name

    try:
        ledger.record_completion(
            item_id=item.id,
            context_type=match.context_type,
            context_id=match.context_id,
            context_owner_marshal_id=marshal.id,
            context_owner_marshal_name=marshal.name,
            actor_type=actor_type,
            actor_id=actor_id,
            actor_name=actor_name,
        )
    except Exception as e:
        log.exception("Error completing checklist item %s: %s", item_id, e)
        raise HTTPException(status_code=500, detail="Server internal error while recording completion")

    return build_item_with_status(item, ctx, lookup, ledger.for_item(item_id), match=match, marshal_name=marshal.name)


@router.post("/checklist-items/{event_id}/{item_id}/uncomplete", status_code=204)
def uncomplete_checklist_item(
    event_id: str,
    item_id: str,
    body: CompleteRequest,
    request: Request,
    x_admin_email: Optional[str] = Header(default=None),
):
    admin_email = (x_admin_email or "").strip()
    if not admin_email:
        raise HTTPException(status_code=400, detail="X-Admin-Email header is required")

    store = _store(request)
    facts = _require_event(store, event_id)
    item = _require_item(facts, item_id)
    marshal = _require_marshal(facts, body.marshal_id)

    ctx = MarshalContextBuilder(store).build(event_id, marshal.id)
    lookup = store.checkpoint_lookup(event_id)

    if body.context_type is not None and body.context_id is not None:
        context_type, context_id = body.context_type, body.context_id
    else:
        context_type, context_id, _ = determine_completion_context(item, ctx, lookup)

    updated = store.ledger(event_id).uncomplete(
        item_id=item.id,
        context_type=context_type,
        context_id=context_id,
        context_owner_marshal_id=marshal.id,
        admin_email=admin_email,
    )
    if not updated:
        raise HTTPException(status_code=404, detail="Completion not found")
    return Response(status_code=204)


@router.get("/events/{event_id}/checklist-report")
def get_checklist_report(event_id: str, request: Request):
    store = _store(request)
    facts = _require_event(store, event_id)
    ledger = store.ledger(event_id)
    completions = ledger.for_event() if ledger else []
    lookup = store.checkpoint_lookup(event_id)

    preloaded = MarshalContextBuilder(store).preload(event_id)
    contexts = build_many_from_preloaded([m.id for m in facts.marshals], preloaded)

    by_item: List[Dict[str, Any]] = []
    for item in sorted(facts.checklist_items, key=lambda i: (i.display_order, i.id)):
        item_completions = [c for c in completions if c.item_id == item.id]

        shared: Dict[Tuple[str, str], bool] = {}
        relevant_marshals = 0
        for ctx in contexts.values():
            matches = all_relevant_contexts(item.scope_configurations, ctx, lookup)
            if matches:
                relevant_marshals += 1
            for m in matches:
                if is_personal_context_type(m.context_type):
                    continue
                key = (m.context_type.value, m.context_id)
                if key not in shared:
                    shared[key] = any(
                        c.context_type == m.context_type and c.context_id == m.context_id
                        for c in item_completions
                    )

        by_item.append({
            "item_id": item.id,
            "text": item.text,
            "scope_configurations": [c.to_wire() for c in item.scope_configurations],
            "is_required": item.is_required,
            "completion_count": len(item_completions),
            "relevant_marshal_count": relevant_marshals,
            "shared_contexts": [
                {"context_type": ct, "context_id": cid, "is_completed": done}
                for (ct, cid), done in sorted(shared.items())
            ],
        })

    by_marshal = [
        {
            "marshal_id": m.id,
            "marshal_name": m.name,
            "completion_count": sum(1 for c in completions if c.context_owner_marshal_id == m.id),
        }
        for m in facts.marshals
    ]

    return {
        "total_items": len(facts.checklist_items),
        "total_completions": len(completions),
        "completions_by_item": by_item,
        "completions_by_marshal": by_marshal,
    }


# ---------- NOTES / CONTACTS ----------
@router.get("/events/{event_id}/marshals/{marshal_id}/notes", response_model=List[NoteForMarshal])
def get_marshal_notes(event_id: str, marshal_id: str, request: Request):
    store = _store(request)
    facts = _require_event(store, event_id)
    _require_marshal(facts, marshal_id)
    ctx = MarshalContextBuilder(store).build(event_id, marshal_id)
    return notes_for_marshal(facts.notes, ctx, store.checkpoint_lookup(event_id))


@router.get("/events/{event_id}/marshals/{marshal_id}/contacts", response_model=List[ContactForMarshal])
def get_marshal_contacts(event_id: str, marshal_id: str, request: Request):
    store = _store(request)
    facts = _require_event(store, event_id)
    _require_marshal(facts, marshal_id)
    ctx = MarshalContextBuilder(store).build(event_id, marshal_id)
    return contacts_for_marshal(facts.contacts, ctx, store.checkpoint_lookup(event_id))


# ---------- INCIDENTS ----------
def _viewer_for(store: EventStore, facts: EventFacts, person_id: str, marshal_id: Optional[str]) -> IncidentViewer:
    if not marshal_id:
        linked = next((m for m in facts.marshals if m.person_id == person_id), None)
        marshal_id = linked.id if linked else None

    preloaded = MarshalContextBuilder(store).preload(facts.id)
    ctx = build_from_preloaded(marshal_id, preloaded) if marshal_id else None
    return IncidentViewer(
        person_id=person_id,
        marshal_id=marshal_id,
        is_admin=_is_admin(facts, person_id),
        assigned_location_ids=ctx.assigned_location_ids if ctx else frozenset(),
        area_lead_for_area_ids=(ctx.area_lead_for_area_ids if ctx else frozenset()) | _person_lead_areas(facts, person_id),
    )


@router.get("/events/{event_id}/incidents", response_model=List[Incident])
def get_incidents(
    event_id: str,
    request: Request,
    status: Optional[str] = None,
    severity: Optional[str] = None,
    x_person_id: Optional[str] = Header(default=None),
    x_marshal_id: Optional[str] = Header(default=None),
):
    if not x_person_id:
        raise HTTPException(status_code=401, detail="X-Person-Id header is required")
    if status and status.lower() not in VALID_STATUSES:
        raise HTTPException(status_code=400, detail=f"Invalid status. Valid values: {', '.join(VALID_STATUSES)}")

    store = _store(request)
    facts = _require_event(store, event_id)
    viewer = _viewer_for(store, facts, x_person_id, x_marshal_id)
    return filter_incidents_for_viewer(
        facts.incidents, viewer, store.areas_by_id(event_id), status=status, severity=severity,
    )


@router.post("/events/{event_id}/incidents", response_model=Incident, status_code=201)
def create_incident(
    event_id: str,
    body: CreateIncidentRequest,
    request: Request,
    x_person_id: Optional[str] = Header(default=None),
    x_marshal_id: Optional[str] = Header(default=None),
):
    if not x_person_id:
        raise HTTPException(status_code=401, detail="X-Person-Id header is required")
    if not body.description or not body.description.strip():
        raise HTTPException(status_code=400, detail="Description is required")

    severity = (body.severity or "medium").lower()
    if severity not in VALID_SEVERITIES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid severity. Valid values: {', '.join(VALID_SEVERITIES)}",
        )

    store = _store(request)
    facts = _require_event(store, event_id)

    reporter = facts.marshal(x_marshal_id) if x_marshal_id else None
    if reporter is None:
        reporter = next((m for m in facts.marshals if m.person_id == x_person_id), None)

    snapshot = build_context_snapshot(
        facts,
        reporter.id if reporter else None,
        checkpoint_id=body.checkpoint_id,
        skip_auto_assign=body.skip_checkpoint_auto_assign,
    )

    area_id, area_name = None, None
    cp = snapshot.checkpoint
    if cp is not None and cp.area_ids:
        area_id = cp.area_ids[0]
        area_name = cp.area_names[0] if cp.area_names else None
    elif body.latitude is not None and body.longitude is not None:
        area = area_containing_point(facts.areas, body.latitude, body.longitude)
        if area is not None:
            area_id, area_name = area.id, area.name

    now = utcnow()
    incident = Incident(
        id=str(uuid.uuid4()),
        event_id=event_id,
        title=body.title or "",
        description=body.description,
        severity=severity,
        incident_time=body.incident_time or now,
        created_at=now,
        latitude=body.latitude,
        longitude=body.longitude,
        context_snapshot=snapshot,
        reported_by_person_id=x_person_id,
        reported_by_name=reporter.name if reporter else x_person_id,
        reported_by_marshal_id=reporter.id if reporter else None,
        status="open",
        area_id=area_id,
        area_name=area_name,
    )

    try:
        store.add_incident(event_id, incident)
    except Exception as e:
        log.exception("Error creating incident for event %s: %s", event_id, e)
        raise HTTPException(status_code=500, detail="Server internal error while creating incident")

    log.info("Incident %s created for event %s by %s", incident.id, event_id, x_person_id)
    return incident


# ---------- SCOPE PREVIEW ----------
@router.post("/events/{event_id}/scope/evaluate")
def preview_scope(event_id: str, body: ScopePreviewRequest, request: Request):
    store = _store(request)
    facts = _require_event(store, event_id)
    _require_marshal(facts, body.marshal_id)

    ctx = MarshalContextBuilder(store).build(event_id, body.marshal_id)
    lookup = store.checkpoint_lookup(event_id)
    match = evaluate(body.scope_configurations, ctx, lookup)
    return {
        "marshal_id": body.marshal_id,
        "match": _match_summary(match),
        "contexts": [_match_summary(m) for m in all_relevant_contexts(body.scope_configurations, ctx, lookup)],
    }
