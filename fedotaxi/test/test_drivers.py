import asyncio
from sqlalchemy import Float, func
from fedotaxi import db, matching
from conftest import QUITO

LAT, LON = QUITO


def test_driver_status_toggle(client, make_driver):
    d = make_driver(available=False)
    r = client.put("/api/drivers/status", json={"available": True}, headers=d["headers"])
    assert r.status_code == 200
    assert r.json()["available"] is True
    # unchanged value is a no-op
    r = client.put("/api/drivers/status", json={"available": True}, headers=d["headers"])
    assert r.json()["available"] is True


def test_driver_location_update(client, make_driver):
    d = make_driver(available=False)
    r = client.put("/api/drivers/location", json={"latitude": LAT, "longitude": LON}, headers=d["headers"])
    assert r.status_code == 200
    assert r.json()["currentLatitude"] == LAT
    r = client.put("/api/drivers/location", json={"latitude": LAT + 0.01, "longitude": LON}, headers=d["headers"])
    assert r.json()["currentLatitude"] == LAT + 0.01


def test_driver_location_rejects_invalid_coordinates(client, make_driver):
    d = make_driver(available=False)
    for lat, lon in [(0.0, 0.0), (95.0, LON), (LAT, -200.0)]:
        r = client.put("/api/drivers/location", json={"latitude": lat, "longitude": lon}, headers=d["headers"])
        assert r.status_code == 400


def test_passenger_cannot_use_driver_endpoints(client, make_passenger):
    p = make_passenger()
    assert client.put("/api/drivers/status", json={"available": True}, headers=p["headers"]).status_code == 403
    assert client.get("/api/drivers/me", headers=p["headers"]).status_code == 403


def test_nearby_drivers_ordered_by_distance(client, make_driver, make_passenger):
    far = make_driver(LAT + 0.1, LON)     # ~11 km
    near = make_driver(LAT + 0.01, LON)   # ~1 km
    make_driver(LAT + 0.5, LON)           # ~55 km, outside radius
    make_driver(LAT + 0.02, LON, available=False)
    p = make_passenger()
    r = client.get("/api/drivers/nearby", params={"latitude": LAT, "longitude": LON, "radius": 25}, headers=p["headers"])
    assert r.status_code == 200, r.text
    found = r.json()
    assert [d["id"] for d in found] == [near["id"], far["id"]]
    assert found[0]["distanceKm"] < found[1]["distanceKm"] < 25


def test_nearby_drivers_default_radius(client, make_driver, make_passenger):
    d = make_driver(LAT + 0.2, LON)       # ~22 km, inside the 25 km default
    p = make_passenger()
    r = client.get("/api/drivers/nearby", params={"latitude": LAT, "longitude": LON}, headers=p["headers"])
    assert [x["id"] for x in r.json()] == [d["id"]]


def test_nearby_drivers_validation(client, make_passenger):
    p = make_passenger()
    for params in [
        {"latitude": 0.0, "longitude": 0.0},
        {"latitude": LAT, "longitude": LON, "radius": 0},
        {"latitude": LAT, "longitude": LON, "radius": 51},
    ]:
        r = client.get("/api/drivers/nearby", params=params, headers=p["headers"])
        assert r.status_code == 400


def test_available_drivers(client, make_driver, make_passenger):
    a = make_driver(LAT, LON)
    make_driver(LAT, LON, available=False)
    make_driver(available=True)           # no location yet
    p = make_passenger()
    r = client.get("/api/drivers/available", headers=p["headers"])
    assert [d["id"] for d in r.json()] == [a["id"]]


def test_zone_availability_report(client, make_driver, make_passenger):
    make_driver(LAT + 0.01, LON)          # ~1 km
    make_driver(LAT + 0.1, LON)           # ~11 km
    make_driver(LAT + 0.3, LON)           # ~33 km
    p = make_passenger()
    r = client.get("/api/drivers/availability", params={"latitude": LAT, "longitude": LON}, headers=p["headers"])
    assert r.status_code == 200
    assert r.json() == [
        {"radiusKm": 5.0, "drivers": 1},
        {"radiusKm": 12.0, "drivers": 2},
        {"radiusKm": 25.0, "drivers": 2},
        {"radiusKm": 50.0, "drivers": 3},
    ]


def test_get_driver_by_id(client, make_driver, make_passenger):
    d = make_driver(LAT, LON)
    p = make_passenger()
    r = client.get("/api/drivers/%d" % d["id"], headers=p["headers"])
    assert r.status_code == 200
    assert r.json()["email"] == d["email"]
    assert client.get("/api/drivers/9999", headers=p["headers"]).status_code == 404


def test_admin_lists_drivers(client, admin_headers, make_driver, make_passenger):
    make_driver(LAT, LON)
    make_driver(available=False)
    p = make_passenger()
    assert len(client.get("/api/drivers", headers=admin_headers).json()) == 2
    assert client.get("/api/drivers", headers=p["headers"]).status_code == 403


def test_inactive_driver_not_matched(client, admin_headers, make_driver, make_passenger):
    d = make_driver(LAT, LON)
    client.put("/api/users/%d/status" % d["user_id"], params={"active": False}, headers=admin_headers)
    p = make_passenger()
    r = client.get("/api/drivers/nearby", params={"latitude": LAT, "longitude": LON}, headers=p["headers"])
    assert r.json() == []


def _broken_distance(lat, lon):
    # unknown SQL function, the database rejects the statement
    return func.no_such_distance(matching.drivers.c.current_latitude, type_=Float)


def test_nearby_drivers_bounding_box_fallback(client, make_driver, make_passenger, monkeypatch):
    monkeypatch.setattr(matching, "_distance_expr", _broken_distance)
    far = make_driver(LAT + 0.1, LON)           # ~11 km
    near = make_driver(LAT + 0.01, LON)         # ~1 km
    make_driver(LAT + 0.1, LON + 0.1)           # ~16 km, inside the 12 km box but not the circle
    make_driver(LAT + 0.5, LON)                 # outside the box
    p = make_passenger()
    r = client.get("/api/drivers/nearby", params={"latitude": LAT, "longitude": LON, "radius": 12}, headers=p["headers"])
    assert r.status_code == 200, r.text
    found = r.json()
    assert [d["id"] for d in found] == [near["id"], far["id"]]
    assert found[0]["distanceKm"] < found[1]["distanceKm"] <= 12


def _best_driver(lat, lon, radius_km=None):
    async def _find():
        async with db.get_conn() as conn:
            return await matching.find_best_driver(conn, lat, lon, radius_km)
    return asyncio.run(_find())


def test_find_best_driver_explicit_radius(client, make_driver):
    d = make_driver(LAT + 0.2, LON)             # ~22 km
    # below the first ring the whole escalation runs
    assert _best_driver(LAT, LON, 3)["id"] == d["id"]
    assert _best_driver(LAT, LON)["id"] == d["id"]
    # otherwise only the given radius is searched
    assert _best_driver(LAT, LON, 12) is None
    assert _best_driver(LAT, LON, 25)["id"] == d["id"]
    assert _best_driver(0.0, 0.0) is None
