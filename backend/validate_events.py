# backend/validate_events.py
# Run from the project root:
#   python -m backend.validate_events [folder]
# Validates every .json event bundle and prints JSON errors with line/col,
# schema errors, and unknown scope kinds.

import json
from pathlib import Path
import sys

from pydantic import ValidationError

from .load_events import _iter_event_objects_from_raw
from .models import EventFacts, ScopeKind

EVENTS_DIR = Path(__file__).resolve().parent.joinpath("events")


def _print_parse_error(p: Path, txt: str, e: json.JSONDecodeError) -> None:
    print(f"{p.name}: JSON parse error: {e.msg} (line {e.lineno}, col {e.colno})")
    lines = txt.splitlines()
    ln = e.lineno - 1
    start = max(0, ln - 2)
    end = min(len(lines), ln + 2)
    print("---- context ----")
    for i in range(start, end):
        marker = ">>" if i == ln else "  "
        print(f"{marker} {i+1:4d}: {lines[i]}")
    print("-----------------")


def _unknown_scope_owners(facts: EventFacts):
    for kind, rows in (("item", facts.checklist_items), ("note", facts.notes), ("contact", facts.contacts)):
        for row in rows:
            if any(c.scope == ScopeKind.UNKNOWN for c in row.scope_configurations):
                yield f"{kind} {row.id}"


def validate_event_file(p: Path) -> bool:
    try:
        txt = p.read_text(encoding="utf-8")
    except OSError as e:
        print(f"{p.name}: ERROR reading file: {e}")
        return False
    try:
        raw = json.loads(txt)
    except json.JSONDecodeError as e:
        _print_parse_error(p, txt, e)
        return False

    ok = True
    for idx, raw_event in enumerate(_iter_event_objects_from_raw(raw)):
        try:
            facts = EventFacts.model_validate(raw_event)
        except ValidationError as e:
            print(f"{p.name}[{idx}]: schema errors:")
            for err in e.errors():
                loc = ".".join(str(x) for x in err.get("loc", ()))
                print(f"   {loc}: {err.get('msg')}")
            ok = False
            continue
        unknown = list(_unknown_scope_owners(facts))
        if unknown:
            print(f"{p.name}[{idx}] {facts.id}: WARNING unknown scope kind on {', '.join(unknown)}")
        print(f"{p.name}[{idx}] {facts.id}: OK")
    return ok


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    folder = Path(argv[0]) if argv else EVENTS_DIR
    if not folder.exists():
        print("Events folder not found:", folder.resolve())
        sys.exit(1)
    files = sorted(folder.glob("*.json"))
    if not files:
        print("No .json files found in:", folder.resolve())
        sys.exit(0)
    ok_count = 0
    bad_count = 0
    for f in files:
        if validate_event_file(f):
            ok_count += 1
        else:
            bad_count += 1
    print(f"\nSummary: {ok_count} OK, {bad_count} INVALID ({len(files)} files checked)")
    if bad_count:
        sys.exit(2)


if __name__ == "__main__":
    main()
