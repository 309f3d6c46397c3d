import json

import pytest
from fastapi.testclient import TestClient

from dependencies import LedgerRegistry, get_registry
from database import get_db
from main import app


@pytest.fixture
def client(session_factory):
    registry = LedgerRegistry(session_factory, atomic_inserts=True)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_registry] = lambda: registry
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def create_user(client, name):
    res = client.post("/users/", json={"display_name": name})
    assert res.status_code == 201
    return res.json()["id"]


@pytest.fixture
def group(client):
    """Alice creates a trip, Bob and Carol join with the code."""
    alice = create_user(client, "Alice")
    bob = create_user(client, "Bob")
    carol = create_user(client, "Carol")

    res = client.post("/trips/", json={"name": "Lisbon", "created_by": alice})
    assert res.status_code == 201
    trip = res.json()

    for user_id in (bob, carol):
        res = client.post("/trips/join", json={"code": trip["join_code"].lower() + " ", "user_id": user_id})
        assert res.status_code == 200

    return {"trip": trip["id"], "code": trip["join_code"], "alice": alice, "bob": bob, "carol": carol}


def add_dinner(client, group, **overrides):
    payload = {
        "description": "Dinner",
        "amount": 30.0,
        "paid_by": group["alice"],
        "split_among": [group["alice"], group["bob"], group["carol"]],
    }
    payload.update(overrides)
    # stdlib json so non-finite amounts go over the wire as Infinity and NaN
    return client.post(
        f"/trips/{group['trip']}/expenses",
        content=json.dumps(payload),
        headers={"Content-Type": "application/json"},
    )


def balances(client, group):
    res = client.get(f"/trips/{group['trip']}/balances")
    assert res.status_code == 200
    return {b["user_name"]: b["balance"] for b in res.json()}


def test_read_root(client):
    assert client.get("/").status_code == 200


def test_join_code_shape(client, group):
    code = group["code"]
    assert len(code) == 6
    assert set(code) <= set("ABCDEFGHJKLMNPQRSTUVWXYZ23456789")


def test_members_in_join_order(client, group):
    res = client.get(f"/trips/{group['trip']}/members")

    assert res.status_code == 200
    members = res.json()
    assert [m["display_name"] for m in members] == ["Alice", "Bob", "Carol"]
    assert members[0]["role"] == "owner"
    assert {m["role"] for m in members[1:]} == {"editor"}


def test_join_twice(client, group):
    res = client.post("/trips/join", json={"code": group["code"], "user_id": group["bob"]})

    assert res.status_code == 400
    assert res.json()["detail"] == "You're already a member of this trip!"


def test_join_unknown_code(client, group):
    res = client.post("/trips/join", json={"code": "ZZZZZZ", "user_id": group["bob"]})

    assert res.status_code == 404


def test_dinner_scenario(client, group):
    res = add_dinner(client, group)
    assert res.status_code == 201
    expense_id = res.json()["id"]

    assert balances(client, group) == {"Alice": 20.0, "Bob": -10.0, "Carol": -10.0}

    res = client.get(f"/trips/{group['trip']}/expenses")
    expense = res.json()[0]
    assert expense["id"] == expense_id
    assert expense["paid_by_user"]["display_name"] == "Alice"
    bob_split = next(s for s in expense["splits"] if s["user_id"] == group["bob"])

    res = client.post(f"/trips/{group['trip']}/splits/{bob_split['id']}/settle")
    assert res.status_code == 200

    assert balances(client, group) == {"Alice": 10.0, "Bob": 0.0, "Carol": -10.0}


@pytest.mark.parametrize("overrides, detail", [
    ({"description": "   "}, "Description is required"),
    ({"amount": 0}, "Please enter a valid amount"),
    ({"amount": -5}, "Please enter a valid amount"),
    ({"amount": float("inf")}, "Please enter a valid amount"),
    ({"amount": float("nan")}, "Please enter a valid amount"),
    ({"split_among": []}, "Expense must be split among at least one member."),
])
def test_expense_validation(client, group, overrides, detail):
    res = add_dinner(client, group, **overrides)

    assert res.status_code == 400
    assert res.json()["detail"] == detail


def test_expense_for_non_member(client, group):
    outsider = create_user(client, "Dave")

    res = add_dinner(client, group, split_among=[group["alice"], outsider])

    assert res.status_code == 400


def test_delete_expense(client, group):
    expense_id = add_dinner(client, group).json()["id"]

    res = client.delete(f"/trips/{group['trip']}/expenses/{expense_id}")
    assert res.status_code == 200

    assert client.get(f"/trips/{group['trip']}/expenses").json() == []
    assert balances(client, group) == {"Alice": 0.0, "Bob": 0.0, "Carol": 0.0}

    res = client.delete(f"/trips/{group['trip']}/expenses/{expense_id}")
    assert res.status_code == 404


def test_settle_unknown_split(client, group):
    res = client.post(f"/trips/{group['trip']}/splits/missing/settle")

    assert res.status_code == 404


def test_unknown_trip(client):
    assert client.get("/trips/missing/expenses").status_code == 404
    assert client.get("/trips/missing/balances").status_code == 404


def test_change_feed(client, group):
    res = client.post(
        f"/trips/{group['trip']}/changes",
        json={"type": "INSERT", "table": "expenses", "record": {"trip_id": group["trip"]}},
    )
    assert res.json() == {"reloaded": True}

    res = client.post(
        f"/trips/{group['trip']}/changes",
        json={"type": "INSERT", "table": "activities", "record": {"trip_id": group["trip"]}},
    )
    assert res.json() == {"reloaded": False}


def test_store_failure_hides_store_text(client, group, broken_session_factory):
    app.dependency_overrides[get_registry] = lambda: LedgerRegistry(broken_session_factory)

    res = client.get(f"/trips/{group['trip']}/expenses")

    assert res.status_code == 500
    detail = res.json()["detail"]
    assert detail.endswith("Please try again.")
    assert "SQL" not in detail
    assert "sqlite" not in detail


def test_user_trips(client, group):
    res = client.post("/trips/", json={"name": "Porto", "created_by": group["bob"]})
    porto = res.json()

    res = client.get(f"/users/{group['bob']}/trips")

    assert res.status_code == 200
    trips = res.json()
    assert [t["name"] for t in trips] == ["Porto", "Lisbon"]
    assert [t["member_count"] for t in trips] == [1, 3]
    assert trips[0]["id"] == porto["id"]

    assert [t["name"] for t in client.get(f"/users/{group['alice']}/trips").json()] == ["Lisbon"]


def test_user_without_trips(client):
    dave = create_user(client, "Dave")

    assert client.get(f"/users/{dave}/trips").json() == []


def test_get_trip_with_members(client, group):
    res = client.get(f"/trips/{group['trip']}")

    assert res.status_code == 200
    trip = res.json()
    assert trip["name"] == "Lisbon"
    assert trip["join_code"] == group["code"]
    assert [m["display_name"] for m in trip["members"]] == ["Alice", "Bob", "Carol"]

    assert client.get("/trips/missing").status_code == 404


def test_user_by_device(client):
    res = client.post("/users/", json={"display_name": "Erin", "device_id": "device_abc123"})
    erin = res.json()

    res = client.get("/users/by-device/device_abc123")

    assert res.status_code == 200
    assert res.json()["id"] == erin["id"]
    assert res.json()["device_id"] == "device_abc123"
    assert client.get("/users/by-device/unknown").status_code == 404


def test_rename_user(client, group):
    res = client.patch(f"/users/{group['bob']}", json={"display_name": "  Robert "})

    assert res.status_code == 200
    assert res.json()["display_name"] == "Robert"
    names = [m["display_name"] for m in client.get(f"/trips/{group['trip']}/members").json()]
    assert names == ["Alice", "Robert", "Carol"]

    assert client.patch(f"/users/{group['bob']}", json={"display_name": " "}).status_code == 400
    assert client.patch("/users/missing", json={"display_name": "Zed"}).status_code == 404
