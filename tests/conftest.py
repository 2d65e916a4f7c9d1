# tests/conftest.py
# Ensure project root is on sys.path so `import backend` works reliably in pytest.
import json
import sys
from pathlib import Path

import pytest

# Resolve project root as the parent of the tests folder
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    # put project root at front so local packages take precedence
    sys.path.insert(0, str(ROOT))

from backend.context_builder import build_from_preloaded, preload_event  # noqa: E402
from backend.models import EventFacts  # noqa: E402

SAMPLE_EVENT = ROOT / "backend" / "events" / "sample_event.json"


@pytest.fixture
def facts():
    return EventFacts.model_validate(json.loads(SAMPLE_EVENT.read_text(encoding="utf-8")))


@pytest.fixture
def lookup(facts):
    return {loc.id: loc for loc in facts.locations}


@pytest.fixture
def areas_by_id(facts):
    return {a.id: a for a in facts.areas}


@pytest.fixture
def preloaded(facts):
    return preload_event(facts)


@pytest.fixture
def ctx_for(preloaded):
    """Build a MarshalContext for a marshal id of the sample event."""
    return lambda marshal_id: build_from_preloaded(marshal_id, preloaded)
