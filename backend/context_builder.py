# backend/context_builder.py
"""
Builds MarshalContext values from an event's facts.

Two ways in:
 - MarshalContextBuilder(store).build(event_id, marshal_id) for one actor
 - preload(event_id) once, then build_from_preloaded(...) per marshal,
   which is what the report and list endpoints use to avoid re-scanning
   the event bundle for every marshal.

Nothing here raises for missing data: an unknown event, marshal or person
link gives a context with empty sets.
"""

import logging
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict

from .models import Area, Assignment, EventFacts, Location, MarshalContext

log = logging.getLogger(__name__)


class PreloadedEventData(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_id: str = ""
    assignments_by_marshal: Dict[str, List[Assignment]] = {}
    locations_by_id: Dict[str, Location] = {}
    areas: List[Area] = []
    area_leads_by_marshal_id: Dict[str, frozenset] = {}


def preload_event(facts: Optional[EventFacts]) -> PreloadedEventData:
    if facts is None:
        return PreloadedEventData()

    assignments_by_marshal: Dict[str, List[Assignment]] = {}
    for a in facts.assignments:
        assignments_by_marshal.setdefault(a.marshal_id, []).append(a)

    lead_areas_by_person: Dict[str, set] = {}
    for role in facts.roles:
        if role.is_area_lead:
            lead_areas_by_person.setdefault(role.person_id, set()).update(role.area_ids)

    area_leads_by_marshal_id: Dict[str, frozenset] = {}
    for m in facts.marshals:
        if m.person_id and m.person_id in lead_areas_by_person:
            area_leads_by_marshal_id[m.id] = frozenset(lead_areas_by_person[m.person_id])

    return PreloadedEventData(
        event_id=facts.id,
        assignments_by_marshal=assignments_by_marshal,
        locations_by_id={loc.id: loc for loc in facts.locations},
        areas=list(facts.areas),
        area_leads_by_marshal_id=area_leads_by_marshal_id,
    )


def build_from_preloaded(marshal_id: str, preloaded: PreloadedEventData) -> MarshalContext:
    location_ids = {a.location_id for a in preloaded.assignments_by_marshal.get(marshal_id, [])}
    area_ids = set()
    for lid in location_ids:
        loc = preloaded.locations_by_id.get(lid)
        if loc is not None:
            area_ids.update(loc.area_ids)

    return MarshalContext(
        marshal_id=marshal_id,
        assigned_location_ids=frozenset(location_ids),
        assigned_area_ids=frozenset(area_ids),
        area_lead_for_area_ids=preloaded.area_leads_by_marshal_id.get(marshal_id, frozenset()),
    )


def build_many_from_preloaded(
    marshal_ids: Iterable[str], preloaded: PreloadedEventData
) -> Dict[str, MarshalContext]:
    return {mid: build_from_preloaded(mid, preloaded) for mid in marshal_ids}


class MarshalContextBuilder:
    """Builds contexts against an EventStore (anything with ``get(event_id)``)."""

    def __init__(self, store):
        self.store = store

    def preload(self, event_id: str) -> PreloadedEventData:
        facts = self.store.get(event_id)
        if facts is None:
            log.debug("preload: unknown event %s", event_id)
        return preload_event(facts)

    def build(self, event_id: str, marshal_id: str) -> MarshalContext:
        return build_from_preloaded(marshal_id, self.preload(event_id))
