# tests/test_api.py
import pytest
from fastapi.testclient import TestClient
from backend.main import app

client = TestClient(app)

ADMIN = {"X-Admin-Email": "admin@example.com"}


@pytest.fixture(autouse=True)
def fresh_store():
    # completions and incidents are in memory; start every test from disk
    r = client.post("/events/reload")
    assert r.status_code == 200
    assert r.json()["invalid"] == []


def checklist(marshal_id, **params):
    r = client.get(f"/events/EV1/marshals/{marshal_id}/checklist", params=params)
    assert r.status_code == 200
    return r.json()


def complete(item_id, marshal_id, headers=None, **extra):
    return client.post(f"/checklist-items/EV1/{item_id}/complete", json={"marshal_id": marshal_id, **extra}, headers=headers or {})


def incidents_for(person_id, marshal_id=None, **params):
    headers = {"X-Person-Id": person_id}
    if marshal_id:
        headers["X-Marshal-Id"] = marshal_id
    r = client.get("/events/EV1/incidents", headers=headers, params=params)
    assert r.status_code == 200
    return [i["id"] for i in r.json()]


def test_root_and_event_list():
    r = client.get("/")
    assert r.status_code == 200
    assert r.json()["events_loaded"] == 1

    events = client.get("/events").json()
    assert events[0]["id"] == "EV1"
    assert events[0]["checkpoints"] == 3


def test_checklist_shows_shared_completion():
    rows = {r["item_id"]: r for r in checklist("M3b")}
    assert sorted(rows) == ["I1", "I2", "I3"]
    assert rows["I2"]["is_completed"] is True
    assert rows["I2"]["completed_by_actor_name"] == "Jo Water"
    assert rows["I2"]["completion_context_type"] == "Checkpoint"
    assert rows["I2"]["scope_configurations"][0]["itemType"] == "Checkpoint"


def test_checklist_time_override():
    assert "I6" in {r["item_id"] for r in checklist("M3b", at="2030-06-01T00:00:00Z")}
    r = client.get("/events/EV1/marshals/M3b/checklist", params={"at": "yesterday-ish"})
    assert r.status_code == 400


def test_checklist_unknown_marshal_or_event():
    assert client.get("/events/EV1/marshals/NOPE/checklist").status_code == 404
    assert client.get("/events/NOPE/marshals/M1/checklist").status_code == 404


def test_shared_area_completion_dedups_across_marshals():
    r = complete("I3", "M3b")
    assert r.status_code == 200
    body = r.json()
    assert body["is_completed"] is True
    assert body["completion_context_type"] == "Area"
    assert body["completion_context_id"] == "A1"

    m2_rows = {row["item_id"]: row for row in checklist("M2")}
    assert m2_rows["I3"]["is_completed"] is True
    assert complete("I3", "M2").status_code == 400


def test_complete_without_permission():
    assert complete("I5", "M1").status_code == 403
    assert complete("NOPE", "M1").status_code == 404
    assert complete("I1", "NOPE").status_code == 404


def test_complete_at_each_checkpoint_separately():
    r = complete("I2", "M5", context_type="Checkpoint", context_id="C2")
    assert r.status_code == 200
    assert r.json()["completion_context_id"] == "C2"

    rows = [(row["completion_context_id"], row["is_completed"]) for row in checklist("M5") if row["item_id"] == "I2"]
    assert rows == [("C1", False), ("C2", True)]

    assert complete("I2", "M5", context_type="Checkpoint", context_id="C3").status_code == 400
    assert complete("I2", "M5", context_type="Checkpoint").status_code == 400


def _i2_rows(marshal_id):
    return [
        (row["item_id"], row["completion_context_id"], row["is_completed"])
        for row in checklist(marshal_id) if row["item_id"] == "I2"
    ]


def test_completing_both_checkpoints_is_order_independent():
    for cid in ("C1", "C2"):
        assert complete("I2", "M5", context_type="Checkpoint", context_id=cid).status_code == 200
    forward = _i2_rows("M5")

    assert client.post("/events/reload").status_code == 200
    for cid in ("C2", "C1"):
        assert complete("I2", "M5", context_type="Checkpoint", context_id=cid).status_code == 200
    backward = _i2_rows("M5")

    assert forward == backward == [("I2", "C1", True), ("I2", "C2", True)]


def test_admin_completes_on_behalf_of_marshal():
    r = complete("I4", "M1", headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["completed_by_actor_type"] == "EventAdmin"
    assert r.json()["completed_by_actor_id"] == "admin@example.com"
    assert r.json()["context_owner_marshal_id"] == "M1"


def test_uncomplete_requires_admin_and_soft_deletes():
    url = "/checklist-items/EV1/I2/uncomplete"
    assert client.post(url, json={"marshal_id": "M3b"}).status_code == 400

    r = client.post(url, json={"marshal_id": "M3b"}, headers=ADMIN)
    assert r.status_code == 204
    rows = {row["item_id"]: row for row in checklist("M3a")}
    assert rows["I2"]["is_completed"] is False

    assert client.post(url, json={"marshal_id": "M3b"}, headers=ADMIN).status_code == 404


def test_checklist_report():
    report = client.get("/events/EV1/checklist-report").json()
    assert report["total_items"] == 7
    assert report["total_completions"] == 1

    items = {i["item_id"]: i for i in report["completions_by_item"]}
    assert items["I1"]["relevant_marshal_count"] == 6
    assert items["I7"]["relevant_marshal_count"] == 0
    assert items["I2"]["scope_configurations"][0]["ids"] == ["ALL_CHECKPOINTS"]
    assert items["I2"]["shared_contexts"] == [
        {"context_type": "Checkpoint", "context_id": "C1", "is_completed": False},
        {"context_type": "Checkpoint", "context_id": "C2", "is_completed": False},
        {"context_type": "Checkpoint", "context_id": "C3", "is_completed": True},
    ]

    by_marshal = {m["marshal_id"]: m["completion_count"] for m in report["completions_by_marshal"]}
    assert by_marshal["M3a"] == 1


def test_notes_and_contacts():
    notes = client.get("/events/EV1/marshals/M1/notes").json()
    assert [n["note_id"] for n in notes] == ["N3", "N1"]
    contacts = client.get("/events/EV1/marshals/M3a/contacts").json()
    assert [c["contact_id"] for c in contacts] == ["K1", "K2", "K3"]


def test_incident_list_visibility():
    assert client.get("/events/EV1/incidents").status_code == 401
    assert incidents_for("P3a") == ["INC1", "INC2"]
    assert incidents_for("P3b", "M3b") == ["INC1"]
    assert incidents_for("P2") == []
    assert incidents_for("PL") == ["INC1", "INC2"]
    assert incidents_for("PADMIN") == ["INC1", "INC2"]
    assert incidents_for("PADMIN", status="open") == ["INC1"]
    bad = client.get("/events/EV1/incidents", headers={"X-Person-Id": "PADMIN"}, params={"status": "lost"})
    assert bad.status_code == 400


def test_create_untagged_incident_is_auto_tagged():
    r = client.post(
        "/events/EV1/incidents",
        json={"description": "Cyclist on course"},
        headers={"X-Person-Id": "P3a", "X-Marshal-Id": "M3a"},
    )
    assert r.status_code == 201
    body = r.json()
    assert body["context_snapshot"]["checkpoint"]["checkpoint_id"] == "C3"
    assert body["area_id"] == "A1"
    assert body["severity"] == "medium"

    assert body["id"] in incidents_for("P3b")
    assert body["id"] not in incidents_for("P2")


def test_create_geographic_incident_is_lead_only():
    r = client.post(
        "/events/EV1/incidents",
        json={"description": "Fallen tree", "latitude": 51.05, "longitude": -1.05, "skip_checkpoint_auto_assign": True},
        headers={"X-Person-Id": "P3a"},
    )
    assert r.status_code == 201
    body = r.json()
    assert body["context_snapshot"]["checkpoint"] is None
    assert body["area_id"] == "A1"
    assert body["reported_by_marshal_id"] == "M3a"

    assert body["id"] in incidents_for("PL")
    assert body["id"] in incidents_for("P3a")
    assert body["id"] not in incidents_for("P3b")


def test_create_incident_validation():
    headers = {"X-Person-Id": "P1"}
    assert client.post("/events/EV1/incidents", json={"description": " "}, headers=headers).status_code == 400
    assert client.post("/events/EV1/incidents", json={"description": "x", "severity": "meh"}, headers=headers).status_code == 400
    assert client.post("/events/EV1/incidents", json={"description": "x"}).status_code == 401


def test_scope_preview():
    r = client.post("/events/EV1/scope/evaluate", json={
        "marshal_id": "M5",
        "scope_configurations": [
            {"scope": "Everyone", "itemType": None, "ids": []},
            {"scope": "OnePerCheckpoint", "itemType": "Checkpoint", "ids": ["ALL_CHECKPOINTS"]},
        ],
    })
    assert r.status_code == 200
    body = r.json()
    assert body["match"]["matched_scope"] == "OnePerCheckpoint"
    assert body["match"]["context_id"] == "C1"
    assert body["match"]["winning_config"]["ids"] == ["ALL_CHECKPOINTS"]
    assert [c["context_id"] for c in body["contexts"]] == ["C1", "C2"]
