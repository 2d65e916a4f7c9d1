# backend/models.py
"""
Typed value objects for the marshal scope engine.

Everything that the storage layer historically kept as JSON-encoded string
columns (checkpoint area lists, area polygons, scope configurations, incident
context snapshots) is decoded exactly once here, at validation time. The
engine modules only ever see these models.

Scope configurations:
 - ScopeKind / ItemType / ContextType are closed enums.
 - "all marshals / all checkpoints / all areas" sentinels are accepted on the
   wire but become ScopeConfiguration.match_all=True.
 - Unknown scope strings become ScopeKind.UNKNOWN (never matches).
"""

import datetime
import json
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# ---------------- CONFIG ----------------
ALL_MARSHALS = "ALL_MARSHALS"
ALL_CHECKPOINTS = "ALL_CHECKPOINTS"
ALL_AREAS = "ALL_AREAS"

# Lower number wins.
SPECIFICITY_MARSHAL = 1
SPECIFICITY_CHECKPOINT = 2
SPECIFICITY_AREA = 3
NO_MATCH = 2 ** 31 - 1

ROLE_AREA_LEAD = "EventAreaLead"
AREA_LEAD_ROLES = (ROLE_AREA_LEAD, "AreaLead")
ADMIN_ROLES = ("EventOwner", "EventAdministrator", "EventAdmin")

ACTOR_MARSHAL = "Marshal"
ACTOR_EVENT_ADMIN = "EventAdmin"
# ----------------------------------------


class ScopeKind(str, Enum):
    EVERYONE = "Everyone"
    SPECIFIC_PEOPLE = "SpecificPeople"
    EVERYONE_AT_CHECKPOINTS = "EveryoneAtCheckpoints"
    EVERYONE_IN_AREAS = "EveryoneInAreas"
    ONE_PER_CHECKPOINT = "OnePerCheckpoint"
    ONE_PER_AREA = "OnePerArea"
    ONE_LEAD_PER_AREA = "OneLeadPerArea"
    EVERY_AREA_LEAD = "EveryAreaLead"
    UNKNOWN = "Unknown"


class ItemType(str, Enum):
    MARSHAL = "Marshal"
    CHECKPOINT = "Checkpoint"
    AREA = "Area"


class ContextType(str, Enum):
    PERSONAL = "Personal"
    CHECKPOINT = "Checkpoint"
    AREA = "Area"


_SCOPE_VALUES = {k.value: k for k in ScopeKind}
_ITEM_TYPE_VALUES = {t.value: t for t in ItemType}

SENTINEL_FOR_ITEM_TYPE = {
    ItemType.MARSHAL: ALL_MARSHALS,
    ItemType.CHECKPOINT: ALL_CHECKPOINTS,
    ItemType.AREA: ALL_AREAS,
}


# ---------- Boundary decoding helpers ----------
def _decode_json_field(value: Any, default: Any) -> Any:
    """
    Accept either an already-decoded value or a JSON-encoded string.
    Empty strings and JSON null decode to the default.
    """
    if value is None:
        return default
    if isinstance(value, (bytes, bytearray)):
        value = value.decode("utf-8")
    if isinstance(value, str):
        s = value.strip()
        if s == "":
            return default
        decoded = json.loads(s)
        return default if decoded is None else decoded
    return value


def _ordered_unique(values: Any) -> Tuple[str, ...]:
    out: List[str] = []
    seen = set()
    for v in values or ():
        if v is None:
            continue
        sv = str(v)
        if sv not in seen:
            seen.add(sv)
            out.append(sv)
    return tuple(out)


# ---------- Scope language ----------
class ScopeConfiguration(BaseModel):
    """
    One policy clause attached to a checklist item, note or contact.

    ``ids`` is an ordered set of marshal, checkpoint or area ids depending on
    ``item_type``. ``match_all`` replaces the historic sentinel strings.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    scope: ScopeKind
    item_type: Optional[ItemType] = Field(default=None, alias="itemType")
    ids: Tuple[str, ...] = ()
    match_all: bool = Field(default=False, alias="matchAll")

    @model_validator(mode="before")
    @classmethod
    def _from_wire(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        d = dict(data)

        raw_scope = d.get("scope")
        if isinstance(raw_scope, ScopeKind):
            scope = raw_scope
        else:
            scope = _SCOPE_VALUES.get(str(raw_scope or "").strip(), ScopeKind.UNKNOWN)
        d["scope"] = scope

        raw_type = d.pop("itemType", d.get("item_type"))
        if isinstance(raw_type, ItemType):
            item_type = raw_type
        else:
            item_type = _ITEM_TYPE_VALUES.get(str(raw_type or "").strip())
        d["item_type"] = item_type

        ids = list(_ordered_unique(d.get("ids")))
        match_all = bool(d.pop("matchAll", d.get("match_all", False)))
        sentinel = SENTINEL_FOR_ITEM_TYPE.get(item_type) if item_type else None
        if sentinel and sentinel in ids:
            ids = [i for i in ids if i != sentinel]
            match_all = True
        d["ids"] = tuple(ids)
        d["match_all"] = match_all
        return d

    def is_empty(self) -> bool:
        return not self.match_all and not self.ids

    def to_wire(self) -> Dict[str, Any]:
        ids = list(self.ids)
        if self.match_all and self.item_type is not None:
            ids = [SENTINEL_FOR_ITEM_TYPE[self.item_type]] + ids
        return {
            "scope": self.scope.value,
            "itemType": self.item_type.value if self.item_type else None,
            "ids": ids,
        }


def _decode_scope_configurations(value: Any) -> List[Any]:
    decoded = _decode_json_field(value, [])
    if isinstance(decoded, dict):
        decoded = [decoded]
    return list(decoded)


class MarshalContext(BaseModel):
    """Facts about one actor, flattened for set-membership checks."""
    model_config = ConfigDict(frozen=True)

    marshal_id: str
    assigned_area_ids: FrozenSet[str] = frozenset()
    assigned_location_ids: FrozenSet[str] = frozenset()
    area_lead_for_area_ids: FrozenSet[str] = frozenset()


class ScopeMatchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    is_relevant: bool
    winning_config: Optional[ScopeConfiguration] = None
    specificity: int = NO_MATCH
    context_type: Optional[ContextType] = None
    context_id: Optional[str] = None

    @classmethod
    def no_match(cls) -> "ScopeMatchResult":
        return cls(is_relevant=False)

    @property
    def matched_scope(self) -> Optional[ScopeKind]:
        return self.winning_config.scope if self.winning_config else None


# ---------- Event facts ----------
class RoutePoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float


class Location(BaseModel):
    """A checkpoint. ``area_ids`` may arrive JSON-encoded."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    description: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    area_ids: Tuple[str, ...] = ()

    @field_validator("area_ids", mode="before")
    @classmethod
    def _decode_area_ids(cls, v):
        return _ordered_unique(_decode_json_field(v, []))


class Area(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    polygon: Tuple[RoutePoint, ...] = ()
    is_default: bool = False

    @field_validator("polygon", mode="before")
    @classmethod
    def _decode_polygon(cls, v):
        return tuple(_decode_json_field(v, []))


class Marshal(BaseModel):
    id: str
    name: str = ""
    person_id: Optional[str] = None


class Assignment(BaseModel):
    marshal_id: str
    location_id: str
    is_checked_in: bool = False
    check_in_time: Optional[datetime.datetime] = None
    check_in_method: Optional[str] = None


class EventRole(BaseModel):
    person_id: str
    role: str
    area_ids: Tuple[str, ...] = ()

    @field_validator("area_ids", mode="before")
    @classmethod
    def _decode_area_ids(cls, v):
        return _ordered_unique(_decode_json_field(v, []))

    @property
    def is_area_lead(self) -> bool:
        return self.role in AREA_LEAD_ROLES

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES


# ---------- Scoped content ----------
class ChecklistItem(BaseModel):
    id: str
    event_id: str = ""
    text: str = ""
    scope_configurations: List[ScopeConfiguration] = []
    display_order: int = 0
    is_required: bool = True
    visible_from: Optional[datetime.datetime] = None
    visible_until: Optional[datetime.datetime] = None
    must_complete_by: Optional[datetime.datetime] = None

    @field_validator("scope_configurations", mode="before")
    @classmethod
    def _decode_configs(cls, v):
        return _decode_scope_configurations(v)


class ChecklistCompletion(BaseModel):
    completion_id: str
    event_id: str = ""
    item_id: str
    context_type: ContextType = ContextType.PERSONAL
    context_id: str = ""
    context_owner_marshal_id: str = ""
    context_owner_marshal_name: str = ""
    actor_type: str = ACTOR_MARSHAL
    actor_id: str = ""
    actor_name: str = ""
    completed_at: datetime.datetime
    is_deleted: bool = False
    uncompleted_at: Optional[datetime.datetime] = None
    uncompleted_by_admin_email: Optional[str] = None


class Note(BaseModel):
    id: str
    event_id: str = ""
    title: str = ""
    content: str = ""
    scope_configurations: List[ScopeConfiguration] = []
    display_order: int = 0
    priority: str = "Normal"
    category: Optional[str] = None
    is_pinned: bool = False
    created_by_person_id: Optional[str] = None
    created_by_name: str = ""
    created_at: Optional[datetime.datetime] = None
    is_deleted: bool = False

    @field_validator("scope_configurations", mode="before")
    @classmethod
    def _decode_configs(cls, v):
        return _decode_scope_configurations(v)


class EventContact(BaseModel):
    id: str
    event_id: str = ""
    role: str = ""
    name: str = ""
    phone: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None
    scope_configurations: List[ScopeConfiguration] = []
    display_order: int = 0
    is_primary: bool = False

    @field_validator("scope_configurations", mode="before")
    @classmethod
    def _decode_configs(cls, v):
        return _decode_scope_configurations(v)


# ---------- Incidents ----------
class IncidentCheckpointSnapshot(BaseModel):
    """Checkpoint as it was when the incident was reported."""
    model_config = ConfigDict(frozen=True)

    checkpoint_id: str
    name: str = ""
    description: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    area_ids: Tuple[str, ...] = ()
    area_names: Tuple[str, ...] = ()


class IncidentMarshalSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    marshal_id: str
    name: str = ""
    was_checked_in: bool = False
    check_in_time: Optional[datetime.datetime] = None
    check_in_method: Optional[str] = None


class IncidentContextSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    checkpoint: Optional[IncidentCheckpointSnapshot] = None
    marshals_present_at_checkpoint: Tuple[IncidentMarshalSnapshot, ...] = ()


class IncidentUpdate(BaseModel):
    update_id: str
    timestamp: datetime.datetime
    author_person_id: str = ""
    author_name: str = ""
    note: str = ""
    status_change: Optional[str] = None


class Incident(BaseModel):
    id: str
    event_id: str = ""
    title: str = ""
    description: str = ""
    severity: str = "medium"
    incident_time: Optional[datetime.datetime] = None
    created_at: Optional[datetime.datetime] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    context_snapshot: IncidentContextSnapshot = IncidentContextSnapshot()
    reported_by_person_id: str = ""
    reported_by_name: str = ""
    reported_by_marshal_id: Optional[str] = None
    status: str = "open"
    updates: List[IncidentUpdate] = []
    area_id: Optional[str] = None
    area_name: Optional[str] = None

    @field_validator("context_snapshot", mode="before")
    @classmethod
    def _decode_snapshot(cls, v):
        return _decode_json_field(v, {})

    @property
    def has_position(self) -> bool:
        return self.latitude is not None and self.longitude is not None


# ---------- Event bundle ----------
class EventFacts(BaseModel):
    """Everything known about one event, as loaded from one JSON file."""
    id: str
    name: str = ""
    marshals: List[Marshal] = []
    locations: List[Location] = []
    areas: List[Area] = []
    assignments: List[Assignment] = []
    roles: List[EventRole] = []
    checklist_items: List[ChecklistItem] = []
    completions: List[ChecklistCompletion] = []
    notes: List[Note] = []
    contacts: List[EventContact] = []
    incidents: List[Incident] = []

    @field_validator("id")
    @classmethod
    def _id_not_empty(cls, v):
        if not v or not isinstance(v, str) or v.strip() == "":
            raise ValueError("id must be non-empty string")
        return v

    def marshal(self, marshal_id: str) -> Optional[Marshal]:
        for m in self.marshals:
            if m.id == marshal_id:
                return m
        return None

    def checklist_item(self, item_id: str) -> Optional[ChecklistItem]:
        for it in self.checklist_items:
            if it.id == item_id:
                return it
        return None


# ---------- Projections ----------
class ChecklistItemWithStatus(BaseModel):
    """
    One checklist row in one completion context. ``can_complete`` is true only
    while the item applies to the marshal and this context has no live
    completion yet; relevance alone is exposed by the checklist filter.
    """
    item_id: str
    event_id: str
    text: str
    scope_configurations: List[ScopeConfiguration]
    display_order: int
    is_required: bool
    visible_from: Optional[datetime.datetime] = None
    visible_until: Optional[datetime.datetime] = None
    must_complete_by: Optional[datetime.datetime] = None
    is_completed: bool
    can_complete: bool
    completed_by_actor_name: Optional[str] = None
    completed_by_actor_type: Optional[str] = None
    completed_by_actor_id: Optional[str] = None
    completed_at: Optional[datetime.datetime] = None
    completion_context_type: ContextType
    completion_context_id: str
    matched_scope: Optional[ScopeKind] = None
    context_owner_marshal_id: Optional[str] = None
    context_owner_name: Optional[str] = None


class NoteForMarshal(BaseModel):
    note_id: str
    event_id: str
    title: str
    content: str
    priority: str
    category: Optional[str] = None
    is_pinned: bool
    created_at: Optional[datetime.datetime] = None
    created_by_name: str
    matched_scope: Optional[ScopeKind] = None


class ContactForMarshal(BaseModel):
    contact_id: str
    role: str
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None
    notes: Optional[str] = None
    is_primary: bool
    matched_scope: Optional[ScopeKind] = None
