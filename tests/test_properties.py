from app.parkdesk.db import session_scope
from app.parkdesk.models import AuditEvent
from app.parkdesk.modules.properties.models import Lot, ManagerAssignment, Park


def _park(client, headers, **overrides):
    payload = {"name": "Lakeview", "city": "Austin", "state": "TX", "description": "Quiet park by the lake"}
    payload.update(overrides)
    return client.post("/parks", json=payload, headers=headers)


def _lot(client, headers, park_id, **overrides):
    payload = {"parkId": park_id, "nameOrNumber": "A1", "price": "45000"}
    payload.update(overrides)
    return client.post("/lots", json=payload, headers=headers)


def test_parks_list_and_detail(client, ids):
    r = client.get("/parks")
    assert r.status_code == 200
    assert r.json["totalCount"] == 3
    assert r.json["page"] == 1
    assert r.json["limit"] == 20
    assert [p["name"] for p in r.json["parks"]] == ["Elsewhere", "No Manager Acres", "Shady Pines"]

    park_id = next(p["id"] for p in r.json["parks"] if p["name"] == "Shady Pines")
    r = client.get(f"/parks/{park_id}")
    assert r.status_code == 200
    assert r.json["lotCount"] == 1
    assert [lot["id"] for lot in r.json["lots"]] == [ids["lot"]]

    assert client.get("/parks/9999").status_code == 404


def test_parks_filters_and_paging(client, login_as):
    headers = login_as("admin@example.com")
    assert _park(client, headers).status_code == 201
    assert _park(client, headers, name="Hill Country", city="Dallas", description=None).status_code == 201
    assert _park(client, headers, name="Bayou Bend", city="Houston", state="LA", description="Near the water").status_code == 201

    assert client.get("/parks?state=tx").json["totalCount"] == 2
    assert [p["name"] for p in client.get("/parks?city=Austin").json["parks"]] == ["Lakeview"]
    assert [p["name"] for p in client.get("/parks?q=lake").json["parks"]] == ["Lakeview"]

    r = client.get("/parks?limit=2&page=2")
    assert r.json["totalCount"] == 6
    assert r.json["limit"] == 2
    assert len(r.json["parks"]) == 2

    assert client.get("/parks?limit=500").json["limit"] == 100


def test_lots_list_filters(client, ids, login_as):
    headers = login_as("admin@example.com")
    park_id = _park(client, headers).json["id"]
    assert _lot(client, headers, park_id, nameOrNumber="A1", price="120000").status_code == 201
    assert _lot(client, headers, park_id, nameOrNumber="A2", price=310000, description="Corner lot").status_code == 201

    r = client.get("/lots")
    assert r.status_code == 200
    assert r.json["totalCount"] == 5

    r = client.get(f"/lots?parkId={park_id}")
    assert [lot["nameOrNumber"] for lot in r.json["lots"]] == ["A1", "A2"]
    assert r.json["lots"][0]["state"] == "TX"

    assert [x["nameOrNumber"] for x in client.get("/lots?price=100000-200000").json["lots"]] == ["A1"]
    assert [x["nameOrNumber"] for x in client.get("/lots?price=300000%2B").json["lots"]] == ["A2"]
    assert client.get("/lots?price=all").json["totalCount"] == 5
    assert [x["id"] for x in client.get("/lots?minPrice=40000&maxPrice=60000").json["lots"]] == [ids["lot"]]
    assert [x["nameOrNumber"] for x in client.get("/lots?q=corner").json["lots"]] == ["A2"]
    assert [x["nameOrNumber"] for x in client.get("/lots?q=shady").json["lots"]] == ["12"]
    assert client.get("/lots?state=TX").json["totalCount"] == 2

    assert client.get("/lots?minPrice=cheap").status_code == 400
    assert client.get("/lots?price=lots").status_code == 400


def test_park_admin_requires_permission(client, csrf, login_as):
    assert _park(client, csrf).status_code == 401

    headers = login_as("manager@example.com")
    r = _park(client, headers)
    assert r.status_code == 403

    headers = login_as("admin@example.com")
    r = client.post("/parks", json={"name": "  ", "city": 5}, headers=headers)
    assert r.status_code == 400
    assert "Park name is required" in r.json["errors"]


def test_retiring_a_park_hides_it_and_its_lots(app, client, ids, login_as):
    headers = login_as("admin@example.com")
    with session_scope(app) as s:
        park_id = s.query(Park).filter_by(name="Shady Pines").one().id

    assert client.delete(f"/parks/{park_id}", headers=headers).status_code == 204
    assert client.get(f"/parks/{park_id}").status_code == 404
    assert client.get(f"/lots/{ids['lot']}").status_code == 404
    assert client.get("/parks").json["totalCount"] == 2

    with session_scope(app) as s:
        # Rows stay for showing history.
        assert s.get(Park, park_id).is_active is False
        assert s.get(Lot, ids["lot"]).is_active is False
        assert s.query(AuditEvent).filter(AuditEvent.action == "park.deactivate").count() == 1


def test_manager_creates_and_retires_lots_in_own_park_only(app, client, ids, login_as):
    with session_scope(app) as s:
        own_park = s.query(Park).filter_by(name="Shady Pines").one().id
        other_park = s.query(Park).filter_by(name="Elsewhere").one().id

    headers = login_as("manager@example.com")
    r = _lot(client, headers, own_park, nameOrNumber="14")
    assert r.status_code == 201
    assert r.json["parkName"] == "Shady Pines"
    assert r.json["price"] == 45000.0
    new_lot = r.json["id"]

    assert _lot(client, headers, other_park).status_code == 403
    assert client.delete(f"/lots/{ids['other_lot']}", headers=headers).status_code == 403

    r = _lot(client, headers, own_park, nameOrNumber="", price="free")
    assert r.status_code == 400
    assert "Lot name or number is required" in r.json["errors"]
    assert _lot(client, headers, own_park, price=1e12).status_code == 400
    assert _lot(client, headers, 9999).status_code == 404

    assert client.delete(f"/lots/{new_lot}", headers=headers).status_code == 204
    assert client.get(f"/lots/{new_lot}").status_code == 404

    headers = login_as("tenant@example.com")
    assert _lot(client, headers, own_park).status_code == 403


def test_manager_assignment(app, client, ids, login_as):
    with session_scope(app) as s:
        orphan_park = s.query(Park).filter_by(name="No Manager Acres").one().id

    headers = login_as("manager@example.com")
    assert client.post(f"/parks/{orphan_park}/managers/{ids['manager']}", headers=headers).status_code == 403

    headers = login_as("admin@example.com")
    r = client.post(f"/parks/{orphan_park}/managers/{ids['manager']}", headers=headers)
    assert r.status_code == 201
    assert r.json == {"parkId": orphan_park, "userId": ids["manager"]}
    assert client.post(f"/parks/{orphan_park}/managers/{ids['manager']}", headers=headers).status_code == 200
    assert client.post(f"/parks/{orphan_park}/managers/{ids['tenant']}", headers=headers).status_code == 400
    assert client.post(f"/parks/{orphan_park}/managers/9999", headers=headers).status_code == 404

    with session_scope(app) as s:
        assert s.query(ManagerAssignment).filter_by(park_id=orphan_park).count() == 1

    assert client.delete(f"/parks/{orphan_park}/managers/{ids['manager']}", headers=headers).status_code == 204
    with session_scope(app) as s:
        assert s.query(ManagerAssignment).filter_by(park_id=orphan_park).count() == 0
        actions = {e.action for e in s.query(AuditEvent).all()}
        assert {"park.assign_manager", "park.unassign_manager"} <= actions
