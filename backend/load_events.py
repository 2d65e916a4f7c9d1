# backend/load_events.py
"""
Event fact loader.

Reads every *.json file in the events folder (sorted, so load order is
deterministic) and validates each event bundle as EventFacts.

A file may contain:
 - a single event object
 - a list of event objects
 - a wrapper { "events": [ ... ] }

Read, parse and validation errors never raise; they are collected as
{"file", "error"} reports. Returns (VALID_EVENTS, INVALID_REPORTS).
"""
from pathlib import Path
import json
import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError

from .geometry import calculate_checkpoint_areas
from .ledger import CompletionLedger
from .models import Area, EventFacts, Incident, Location, ScopeKind

log = logging.getLogger("event_loader")
log.setLevel(logging.INFO)


# ---------------------------------------------------------
# Helper: Extract event objects from mixed JSON formats
# ---------------------------------------------------------
def _iter_event_objects_from_raw(raw: Any) -> List[Dict[str, Any]]:
    if raw is None:
        return []

    if isinstance(raw, list):
        return raw

    if isinstance(raw, dict):
        # wrapper { "events": [ ... ] }
        if "events" in raw and isinstance(raw["events"], list):
            return raw["events"]
        return [raw]

    return []


def _warn_unknown_scopes(facts: EventFacts, fname: str) -> int:
    """Log a data-quality warning for every configuration with an unknown scope kind."""
    count = 0
    scoped = (
        [("checklist item", i.id, i.scope_configurations) for i in facts.checklist_items]
        + [("note", n.id, n.scope_configurations) for n in facts.notes]
        + [("contact", c.id, c.scope_configurations) for c in facts.contacts]
    )
    for kind, owner_id, configs in scoped:
        for cfg in configs:
            if cfg.scope == ScopeKind.UNKNOWN:
                count += 1
                log.warning(
                    "Unknown scope kind on %s %s in event %s (%s); it will never match",
                    kind, owner_id, facts.id, fname,
                )
    return count


def _fill_checkpoint_areas(facts: EventFacts) -> EventFacts:
    """Checkpoints stored without area_ids get them from their coordinates."""
    if not any(not loc.area_ids for loc in facts.locations):
        return facts
    locations: List[Location] = []
    for loc in facts.locations:
        if not loc.area_ids:
            derived = calculate_checkpoint_areas(loc.latitude, loc.longitude, facts.areas)
            if derived:
                log.info(f"Checkpoint {loc.id} in event {facts.id} placed in areas {derived}")
                loc = loc.model_copy(update={"area_ids": tuple(derived)})
        locations.append(loc)
    return facts.model_copy(update={"locations": locations})


# ---------------------------------------------------------
# Main loader
# ---------------------------------------------------------
def load_events_from_folder(folder: Path) -> Tuple[Dict[str, EventFacts], List[Dict[str, Any]]]:
    """
    Loads all event JSON files from folder
    Returns:
        (VALID_EVENTS, INVALID_REPORTS)
    """
    valid: Dict[str, EventFacts] = {}
    invalid: List[Dict[str, Any]] = []
    sources: Dict[str, str] = {}

    folder = Path(folder)

    if not folder.exists() or not folder.is_dir():
        log.warning(f"Events folder does not exist: {folder}")
        return valid, invalid

    for f in sorted(folder.glob("*.json")):
        fname = f.name
        try:
            text = f.read_text(encoding="utf-8")
        except Exception as e:
            invalid.append({"file": fname, "error": f"read_error: {e}"})
            log.error(f"Failed to read {fname}: {e}")
            continue

        try:
            parsed = json.loads(text)
        except Exception as e:
            invalid.append({"file": fname, "error": f"json_parse_error: {e}"})
            log.error(f"JSON parse error in {fname}: {e}")
            continue

        for idx, raw_event in enumerate(_iter_event_objects_from_raw(parsed)):
            try:
                facts = EventFacts.model_validate(raw_event)
            except ValidationError as e:
                invalid.append({"file": fname, "index": idx, "error": f"validation_error: {e}"})
                log.error(f"Invalid event #{idx} in {fname}")
                continue
            except Exception as e:
                invalid.append({"file": fname, "index": idx, "error": f"unexpected_error: {e}"})
                log.exception(f"Unexpected error validating event in {fname}: {e}")
                continue

            if facts.id in valid:
                invalid.append({
                    "file": fname,
                    "index": idx,
                    "error": f"duplicate event id: {facts.id}",
                    "existing_from": sources.get(facts.id),
                })
                log.error(f"Duplicate event id {facts.id} in {fname}")
                continue

            facts = _fill_checkpoint_areas(facts)
            _warn_unknown_scopes(facts, fname)
            valid[facts.id] = facts
            sources[facts.id] = fname
            log.info(f"Loaded event {facts.id} from {fname}")

    log.info(f"Event loader: {len(valid)} valid, {len(invalid)} invalid")
    return valid, invalid


# ---------------------------------------------------------
# Store
# ---------------------------------------------------------
class EventStore:
    """
    Loaded event bundles plus one CompletionLedger per event, seeded from
    the bundle's stored completions.
    """

    def __init__(self, events: Optional[Dict[str, EventFacts]] = None):
        self._events: Dict[str, EventFacts] = dict(events or {})
        self._ledgers: Dict[str, CompletionLedger] = {
            eid: CompletionLedger(eid, facts.completions) for eid, facts in self._events.items()
        }

    @classmethod
    def from_folder(cls, folder: Path) -> Tuple["EventStore", List[Dict[str, Any]]]:
        valid, invalid = load_events_from_folder(folder)
        return cls(valid), invalid

    def __len__(self) -> int:
        return len(self._events)

    def event_ids(self) -> List[str]:
        return sorted(self._events)

    def events(self) -> Iterable[EventFacts]:
        return [self._events[eid] for eid in self.event_ids()]

    def get(self, event_id: str) -> Optional[EventFacts]:
        return self._events.get(event_id)

    def checkpoint_lookup(self, event_id: str) -> Dict[str, Location]:
        facts = self.get(event_id)
        if facts is None:
            return {}
        return {loc.id: loc for loc in facts.locations}

    def areas_by_id(self, event_id: str) -> Dict[str, Area]:
        facts = self.get(event_id)
        if facts is None:
            return {}
        return {a.id: a for a in facts.areas}

    def ledger(self, event_id: str) -> Optional[CompletionLedger]:
        return self._ledgers.get(event_id)

    def add_incident(self, event_id: str, incident: Incident) -> None:
        facts = self.get(event_id)
        if facts is None:
            raise KeyError(event_id)
        facts.incidents.append(incident)
