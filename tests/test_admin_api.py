from conftest import ROOT_EMAIL

BOOKING = {
    "booking_date": "2030-03-05",
    "start_time": "09:00:00",
    "end_time": "11:00:00",
    "purpose": "Planning",
}


def test_health_and_index(client):
    assert client.get("/health").json() == {"status": "ok", "service": "roombook"}
    index = client.get("/api").json()
    assert index["endpoints"]["admin"] == "/api/admin"
    assert index["booking_workflow"]["updates"] == "only approved bookings"


def test_admin_login_and_profile(client, admin_headers):
    profile = client.get("/api/admin/profile", headers=admin_headers)
    assert profile.status_code == 200
    body = profile.json()
    assert body["email"] == ROOT_EMAIL
    assert body["role"] == "super_admin"
    assert "hashed_password" not in body and "password" not in body


def test_admin_login_wrong_password(client):
    response = client.post("/api/admin/login", json={"email": ROOT_EMAIL, "password": "nope"})
    assert response.status_code == 401


def test_register_admin_requires_super_admin(client, admin_headers):
    payload = {
        "username": "ops",
        "email": "ops@example.com",
        "password": "OpsPass1",
        "first_name": "Ops",
        "last_name": "Team",
    }
    created = client.post("/api/admin/register", json=payload, headers=admin_headers)
    assert created.status_code == 201
    assert created.json()["role"] == "admin"

    duplicate = client.post("/api/admin/register", json=payload, headers=admin_headers)
    assert duplicate.status_code == 409

    login = client.post("/api/admin/login", json={"email": "ops@example.com", "password": "OpsPass1"})
    ops_headers = {"Authorization": f"Bearer {login.json()['token']['access_token']}"}
    payload.update(username="ops2", email="ops2@example.com")
    refused = client.post("/api/admin/register", json=payload, headers=ops_headers)
    assert refused.status_code == 403


def test_admin_routes_reject_visitors(client, register_visitor):
    visitor_headers = register_visitor()
    assert client.get("/api/admin/bookings", headers=visitor_headers).status_code == 403
    assert client.get("/api/admin/bookings").status_code == 401
    bogus = {"Authorization": "Bearer not-a-token"}
    assert client.get("/api/admin/bookings", headers=bogus).status_code == 401


def test_room_crud(client, admin_headers, create_room):
    room = create_room("B-201", room_type="meeting_room", building="North", location="Level 2", amenities=["projector"])
    assert room["full_location"] == "North, Level 2"

    assert client.post(
        "/api/admin/rooms",
        json={"room_number": "B-201", "room_name": "Copy", "capacity": 2},
        headers=admin_headers,
    ).status_code == 409

    listed = client.get("/api/admin/rooms", params={"search": "B-2"}, headers=admin_headers).json()
    assert listed["total"] == 1 and listed["items"][0]["id"] == room["id"]

    updated = client.put(f"/api/admin/rooms/{room['id']}", json={"capacity": 12}, headers=admin_headers)
    assert updated.status_code == 200 and updated.json()["capacity"] == 12

    deleted = client.delete(f"/api/admin/rooms/{room['id']}", headers=admin_headers)
    assert deleted.status_code == 204
    assert client.get(f"/api/admin/rooms/{room['id']}", headers=admin_headers).status_code == 404


def test_room_update_ignores_nulls(client, admin_headers, create_room):
    room = create_room("B-202")

    response = client.put(
        f"/api/admin/rooms/{room['id']}",
        json={"room_name": None, "hourly_rate": None, "capacity": 6},
        headers=admin_headers,
    )

    assert response.status_code == 200
    body = response.json()
    assert body["room_name"] == "Room B-202"
    assert body["hourly_rate"] == "40.00"
    assert body["capacity"] == 6


def test_booked_room_is_protected(client, admin_headers, create_room, register_visitor):
    room = create_room("C-301")
    visitor_headers = register_visitor()
    booked = client.post("/api/visitor/bookings", json={"room_id": room["id"], **BOOKING}, headers=visitor_headers)
    assert booked.status_code == 201

    assert client.delete(f"/api/admin/rooms/{room['id']}", headers=admin_headers).status_code == 409
    renamed = client.put(f"/api/admin/rooms/{room['id']}", json={"room_name": "Renamed"}, headers=admin_headers)
    assert renamed.status_code == 409
    assert renamed.json()["code"] == "conflict"

    repriced = client.put(
        f"/api/admin/rooms/{room['id']}",
        json={"hourly_rate": "55.00", "is_available": False},
        headers=admin_headers,
    )
    assert repriced.status_code == 200
    booking = client.get(f"/api/visitor/bookings/{booked.json()['id']}", headers=visitor_headers).json()
    assert booking["total_cost"] == "80.00"


def test_replace_availability(client, admin_headers, create_room):
    room = create_room("D-401")
    windows = [
        {"day_of_week": "tuesday", "start_time": "08:00:00", "end_time": "18:00:00"},
        {"day_of_week": "monday", "start_time": "09:00:00", "end_time": "17:00:00"},
    ]
    response = client.put(f"/api/admin/rooms/{room['id']}/availability", json=windows, headers=admin_headers)
    assert response.status_code == 200
    assert [w["day_of_week"] for w in response.json()["windows"]] == ["monday", "tuesday"]

    bad = [{"day_of_week": "monday", "start_time": "17:00:00", "end_time": "09:00:00"}]
    assert client.put(f"/api/admin/rooms/{room['id']}/availability", json=bad, headers=admin_headers).status_code == 400


def test_approval_flow(client, admin_headers, create_room, register_visitor):
    room = create_room("E-501", requires_approval=True, hourly_rate="25.00")
    visitor_headers = register_visitor()
    created = client.post("/api/visitor/bookings", json={"room_id": room["id"], **BOOKING}, headers=visitor_headers)
    booking = created.json()
    assert booking["status"] == "pending_approval"
    assert booking["total_cost"] == "50.00"

    pending = client.get("/api/admin/bookings", params={"status": "pending_approval"}, headers=admin_headers).json()
    assert [b["id"] for b in pending["items"]] == [booking["id"]]

    approved = client.patch(f"/api/admin/bookings/{booking['id']}/approve", headers=admin_headers)
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"
    assert approved.json()["approved_by"] is not None

    again = client.patch(f"/api/admin/bookings/{booking['id']}/reject", json={"reason": "late"}, headers=admin_headers)
    assert again.status_code == 409
    assert again.json()["code"] == "invalid_transition"

    stats = client.get("/api/admin/dashboard/stats", headers=admin_headers).json()
    assert stats["total_rooms"] == 1
    assert stats["total_bookings"] == 1
    assert stats["pending_bookings"] == 0
    assert stats["approved_bookings"] == 1


def test_reject_with_reason(client, admin_headers, create_room, register_visitor):
    room = create_room("E-502", requires_approval=True)
    visitor_headers = register_visitor()
    booking = client.post("/api/visitor/bookings", json={"room_id": room["id"], **BOOKING}, headers=visitor_headers).json()

    rejected = client.patch(
        f"/api/admin/bookings/{booking['id']}/reject", json={"reason": "Room closed"}, headers=admin_headers
    )
    assert rejected.status_code == 200
    assert rejected.json()["status"] == "rejected"
    assert rejected.json()["cancellation_reason"] == "Room closed"
    assert client.patch("/api/admin/bookings/999/approve", headers=admin_headers).status_code == 404


def test_visitor_management(client, admin_headers, register_visitor):
    visitor_headers = register_visitor("student@example.com", student_id="S123", user_type="student")
    listed = client.get("/api/admin/visitors", params={"search": "S12"}, headers=admin_headers).json()
    assert listed["total"] == 1
    visitor = listed["items"][0]
    assert visitor["full_name"] == "Vera Visitor"
    assert "hashed_password" not in visitor

    deactivated = client.patch(f"/api/admin/visitors/{visitor['id']}/deactivate", headers=admin_headers)
    assert deactivated.json()["is_active"] is False
    assert client.get("/api/visitor/profile", headers=visitor_headers).status_code == 403
    login = client.post("/api/visitor/login", json={"email": "student@example.com", "password": "Passw0rd!"})
    assert login.status_code == 403

    client.patch(f"/api/admin/visitors/{visitor['id']}/activate", headers=admin_headers)
    assert client.get("/api/visitor/profile", headers=visitor_headers).status_code == 200
    assert client.get("/api/admin/visitors/999", headers=admin_headers).status_code == 404
