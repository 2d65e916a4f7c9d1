# backend/incident_visibility.py
"""
Incident visibility resolver.

Not driven by scope configurations. A viewer sees an incident when, in order:
  1. they are an event admin
  2. they reported it
  3. the incident's checkpoint snapshot names a checkpoint they are assigned
     to, or an area they lead
  4. the incident has no checkpoint snapshot, carries a raw position, and
     that position lies inside the polygon of an area they lead

Rule 4 admits area leads only; ordinary marshals working inside the area
do not see a bare geolocated incident.

The checkpoint snapshot is captured once when the incident is created
(build_context_snapshot) and is never recomputed from current checkpoint data.
"""

import logging
from enum import Enum
from typing import Iterable, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict

from .geometry import point_in_polygon
from .models import (
    Area,
    EventFacts,
    Incident,
    IncidentCheckpointSnapshot,
    IncidentContextSnapshot,
    IncidentMarshalSnapshot,
    MarshalContext,
    RoutePoint,
)

log = logging.getLogger(__name__)


class VisibilityReason(str, Enum):
    ADMIN = "admin"
    AUTHOR = "author"
    CHECKPOINT_ASSIGNMENT = "checkpoint_assignment"
    AREA_LEAD_OF_CHECKPOINT = "area_lead_of_checkpoint"
    AREA_LEAD_GEOGRAPHIC = "area_lead_geographic"


class IncidentViewer(BaseModel):
    model_config = ConfigDict(frozen=True)

    person_id: str
    marshal_id: Optional[str] = None
    is_admin: bool = False
    assigned_location_ids: frozenset = frozenset()
    area_lead_for_area_ids: frozenset = frozenset()


def viewer_from_context(
    ctx: Optional[MarshalContext], person_id: str, is_admin: bool = False
) -> IncidentViewer:
    if ctx is None:
        return IncidentViewer(person_id=person_id, is_admin=is_admin)
    return IncidentViewer(
        person_id=person_id,
        marshal_id=ctx.marshal_id,
        is_admin=is_admin,
        assigned_location_ids=ctx.assigned_location_ids,
        area_lead_for_area_ids=ctx.area_lead_for_area_ids,
    )


def resolve_visibility(
    incident: Incident, viewer: IncidentViewer, areas_by_id: Mapping[str, Area]
) -> Optional[VisibilityReason]:
    """Why ``viewer`` may see ``incident``, or None when they may not."""
    if viewer.is_admin:
        return VisibilityReason.ADMIN

    if viewer.person_id and incident.reported_by_person_id == viewer.person_id:
        return VisibilityReason.AUTHOR
    if viewer.marshal_id and incident.reported_by_marshal_id == viewer.marshal_id:
        return VisibilityReason.AUTHOR

    checkpoint = incident.context_snapshot.checkpoint
    if checkpoint is not None:
        if checkpoint.checkpoint_id in viewer.assigned_location_ids:
            return VisibilityReason.CHECKPOINT_ASSIGNMENT
        if viewer.area_lead_for_area_ids.intersection(checkpoint.area_ids):
            return VisibilityReason.AREA_LEAD_OF_CHECKPOINT
        return None

    if incident.has_position and viewer.area_lead_for_area_ids:
        pt = RoutePoint(lat=incident.latitude, lng=incident.longitude)
        for area_id in sorted(viewer.area_lead_for_area_ids):
            area = areas_by_id.get(area_id)
            if area is not None and point_in_polygon(pt, area.polygon):
                return VisibilityReason.AREA_LEAD_GEOGRAPHIC

    return None


def can_view_incident(
    incident: Incident, viewer: IncidentViewer, areas_by_id: Mapping[str, Area]
) -> bool:
    return resolve_visibility(incident, viewer, areas_by_id) is not None


def filter_incidents_for_viewer(
    incidents: Iterable[Incident],
    viewer: IncidentViewer,
    areas_by_id: Mapping[str, Area],
    status: Optional[str] = None,
    severity: Optional[str] = None,
) -> List[Incident]:
    status = status.lower() if status else None
    severity = severity.lower() if severity else None

    out: List[Incident] = []
    for inc in incidents:
        if not can_view_incident(inc, viewer, areas_by_id):
            continue
        if status and inc.status != status:
            continue
        if severity and inc.severity != severity:
            continue
        out.append(inc)
    return out


# ---------- Snapshot at creation ----------
def build_context_snapshot(
    facts: EventFacts,
    marshal_id: Optional[str],
    checkpoint_id: Optional[str] = None,
    skip_auto_assign: bool = False,
) -> IncidentContextSnapshot:
    """
    Freeze the checkpoint (and who was there) for a new incident.
    With no explicit checkpoint the reporter's first assignment is used,
    unless ``skip_auto_assign`` says the reporter chose "no checkpoint".
    """
    if not checkpoint_id and marshal_id and not skip_auto_assign:
        first = next((a for a in facts.assignments if a.marshal_id == marshal_id), None)
        if first is not None:
            checkpoint_id = first.location_id

    if not checkpoint_id:
        return IncidentContextSnapshot()

    location = next((loc for loc in facts.locations if loc.id == checkpoint_id), None)
    if location is None:
        log.debug("snapshot: checkpoint %s not found in event %s", checkpoint_id, facts.id)
        return IncidentContextSnapshot()

    area_names = {a.id: a.name for a in facts.areas}
    marshal_names = {m.id: m.name for m in facts.marshals}

    present: List[IncidentMarshalSnapshot] = []
    for a in facts.assignments:
        if a.location_id != checkpoint_id or a.marshal_id not in marshal_names:
            continue
        present.append(IncidentMarshalSnapshot(
            marshal_id=a.marshal_id,
            name=marshal_names[a.marshal_id],
            was_checked_in=a.is_checked_in,
            check_in_time=a.check_in_time,
            check_in_method=a.check_in_method,
        ))

    return IncidentContextSnapshot(
        checkpoint=IncidentCheckpointSnapshot(
            checkpoint_id=location.id,
            name=location.name,
            description=location.description,
            latitude=location.latitude,
            longitude=location.longitude,
            area_ids=location.area_ids,
            area_names=tuple(area_names[aid] for aid in location.area_ids if aid in area_names),
        ),
        marshals_present_at_checkpoint=tuple(present),
    )
