from datetime import datetime, timezone

from gates.rate_limit import RateLimiter
from gates.verification import RecaptchaVerifier
from state.repository import StoreUnavailable
from state.seed import snapshot_hash
from tests.fixtures import ORIGIN, two_volunteer_roster

ADMIN = {"X-Admin-Secret": "admin-pw"}


def youth_headers(username):
    return {"X-Youth-Secret": "youth-pw", "X-Youth-Username": username}


def booking_body(slot_key="2026-02-02-09:00", method="phone", **extra):
    body = {"slotKey": slot_key, "contactMethod": method, "name": "Jordan", "contactInfo": "555-0199"}
    body.update(extra)
    return body


def test_health_and_public_slots(make_client):
    client = make_client()
    assert client.get("/health").json()["ok"] is True
    data = client.get("/api/slots").json()
    assert "bookings" not in data
    slot = next(s for s in data["availableSlots"]["2026-02-02"] if s["slotKey"] == "2026-02-02-09:00")
    assert slot["isAvailable"] is True
    assert data["period"]["cutover"] == "2026-02-06"


def test_book_then_slot_closes(make_client, resend):
    client = make_client()
    res = client.post("/api/slots", json=booking_body(reminderEmail="me@example.com"), headers=ORIGIN)
    assert res.status_code == 200
    assert res.json()["assignedVolunteerName"] == "Avery"
    # confirmation email went out
    assert resend[1][0]["to"] == ["me@example.com"]

    again = client.post("/api/slots", json=booking_body(), headers=ORIGIN)
    assert again.status_code == 409
    assert again.json()["reason"] == "no_volunteer_available"
    slot = next(s for s in client.get("/api/slots").json()["availableSlots"]["2026-02-02"] if s["slotKey"] == "2026-02-02-09:00")
    assert slot["isAvailable"] is False


def test_booking_gates(make_client, store, siteverify):
    client = make_client(
        verifier=RecaptchaVerifier("secret", client=siteverify[0]),
        limiter=RateLimiter(max_requests=1, window_seconds=3600),
    )
    before = snapshot_hash(store)
    forbidden = client.post("/api/slots", json=booking_body(), headers={"Origin": "https://evil.example"})
    assert forbidden.status_code == 403
    invalid = client.post("/api/slots", json=booking_body("2026-01-31-10:00"), headers=ORIGIN)
    assert invalid.status_code == 400 and invalid.json()["reason"] == "invalid_slot"
    unverified = client.post("/api/slots", json=booking_body(recaptchaToken="bad"), headers=ORIGIN)
    assert unverified.status_code == 400 and unverified.json()["reason"] == "verification_failed"
    limited = client.post("/api/slots", json=booking_body(recaptchaToken="good"), headers=ORIGIN)
    assert limited.status_code == 429
    assert snapshot_hash(store) == before
    other_ip = client.post("/api/slots", json=booking_body(recaptchaToken="good"), headers={**ORIGIN, "X-Forwarded-For": "8.8.8.8"})
    assert other_ip.status_code == 200


def test_missing_contact_method(make_client):
    res = make_client().post("/api/slots", json=booking_body(method=None), headers=ORIGIN)
    assert res.status_code == 400 and res.json()["reason"] == "missing_contact_method"


def test_admin_view_and_actions(make_client):
    client = make_client(roster=two_volunteer_roster())
    assert client.put("/api/slots", json={"action": "clearAll"}).status_code == 401

    added = client.put(
        "/api/slots",
        json={"action": "addBooking", "booking": booking_body("2026-02-09-10:00"), "assignedVolunteer": "c"},
        headers=ADMIN,
    )
    assert added.status_code == 200 and added.json()["booking"]["assignedVolunteer"] == "c"
    clash = client.put(
        "/api/slots",
        json={"action": "addBooking", "booking": booking_body("2026-02-09-10:00"), "assignedVolunteer": "c"},
        headers=ADMIN,
    )
    assert clash.status_code == 409

    view = client.get("/api/slots", headers=ADMIN).json()
    assert view["bookedSlots"] == ["2026-02-09-10:00"]
    assert [v["id"] for v in view["volunteerSummary"]] == ["b", "c"]

    removed = client.put("/api/slots", json={"action": "removeBooking", "slotKey": "2026-02-09-10:00"}, headers=ADMIN)
    assert removed.status_code == 200
    client.put("/api/slots", json={"action": "replaceAll", "bookings": [booking_body("2026-02-10-10:00")]}, headers=ADMIN)
    assert client.put("/api/slots", json={"action": "clearDate", "date": "2026-02-10"}, headers=ADMIN).json()["removed"] == 1
    client.post("/api/slots", json=booking_body("2026-02-09-11:00"), headers=ORIGIN)
    cleared = client.delete("/api/slots", headers=ADMIN)
    assert cleared.json()["removed"] == 1


def test_youth_endpoints(make_client):
    client = make_client()
    assert client.get("/api/youth-volunteers").status_code == 401
    assert client.get("/api/youth-volunteers", headers={**youth_headers("kai"), "X-Youth-Secret": "nope"}).status_code == 401

    first = client.get("/api/youth-volunteers", headers=youth_headers("Kai")).json()
    assert first["volunteer"]["username"] == "kai"
    assert first["isAdmin"] is False

    res = client.post("/api/youth-volunteers", json={"action": "addSlot", "slotKey": "2026-02-02-09:00"}, headers=youth_headers("kai"))
    assert res.status_code == 200
    other = client.post(
        "/api/youth-volunteers",
        json={"action": "addSlot", "volunteerId": "lee", "slotKey": "2026-02-02-09:00"},
        headers=youth_headers("kai"),
    )
    assert other.status_code == 403
    assert client.post("/api/youth-volunteers", json={"action": "launch"}, headers=youth_headers("kai")).status_code == 400
    ghost = client.post(
        "/api/youth-volunteers",
        json={"action": "removeSlot", "volunteerId": "ghost", "slotKey": "2026-02-02-09:00"},
        headers=youth_headers("boss"),
    )
    assert ghost.status_code == 404 and ghost.json()["reason"] == "volunteer_not_found"

    booked = client.post("/api/slots", json=booking_body(method="discord", contactInfo="someone#1"), headers=ORIGIN)
    assert booked.json()["booking"]["assignedVolunteer"] == "kai"
    listing = client.get("/api/youth-volunteers", headers=youth_headers("boss")).json()
    assert listing["isAdmin"] is True
    kai = next(v for v in listing["volunteers"] if v["username"] == "kai")
    assert kai["bookings"][0]["slotKey"] == "2026-02-02-09:00"

    done = client.post(f"/api/bookings/{kai['bookings'][0]['id']}/complete", headers=youth_headers("kai"))
    assert done.status_code == 200 and done.json()["booking"]["completedBy"] == "kai"


def test_complete_requires_auth(make_client):
    client = make_client()
    booking = client.post("/api/slots", json=booking_body(), headers=ORIGIN).json()["booking"]
    assert client.post(f"/api/bookings/{booking['id']}/complete").status_code == 401
    assert client.post(f"/api/bookings/{booking['id']}/complete", headers=youth_headers("kai")).status_code == 403
    # a youth login that happens to match the roster id still cannot close a phone booking
    assert client.post(f"/api/bookings/{booking['id']}/complete", headers=youth_headers(booking["assignedVolunteer"])).status_code == 403
    assert client.post(f"/api/bookings/{booking['id']}/complete", headers=ADMIN).status_code == 200
    assert client.post("/api/bookings/missing/complete", headers=ADMIN).status_code == 404


def test_rate_limit_and_geo_endpoints(make_client):
    client = make_client(limiter=RateLimiter(max_requests=1, window_seconds=3600))
    status = client.get("/rate-limit", headers={"X-Real-IP": "2.2.2.2"})
    assert status.json()["allowed"] is True and status.json()["remaining"] == 1
    assert client.post("/rate-limit", headers={"X-Real-IP": "2.2.2.2"}).json()["remaining"] == 0
    blocked = client.post("/rate-limit", headers={"X-Real-IP": "2.2.2.2"})
    assert blocked.status_code == 429 and blocked.headers["X-RateLimit-Limit"] == "1"

    assert client.get("/geo-check").json()["allowed"] is True
    denied = client.get("/geo-check", headers={"X-Vercel-IP-Country": "MX"}).json()
    assert denied == {"allowed": False, "reason": "outside_us", "country": "MX", "region": ""}


def test_reminder_endpoint(make_client, resend):
    client = make_client(now=datetime(2026, 2, 2, 14, 30, tzinfo=timezone.utc))
    client.post("/api/slots", json=booking_body(method="zoom", contactInfo="video@example.com"), headers=ORIGIN)
    assert client.post("/reminders/send").status_code == 401
    assert client.post("/reminders/send", headers={"Authorization": "Bearer wrong"}).status_code == 401
    res = client.post("/reminders/send", headers={"Authorization": "Bearer cron-pw"})
    assert res.status_code == 200 and res.json()["remindersSent"] == 1
    assert client.post("/reminders/send", headers={"X-Vercel-Cron": "1"}).json()["remindersSent"] == 0
    assert resend[1][-1]["subject"].startswith("Reminder:")


def test_metrics_endpoint(make_client):
    client = make_client()
    client.post("/api/slots", json=booking_body(), headers=ORIGIN)
    assert client.get("/metrics").json()["bookings.created"] == 1


def test_store_outage_is_a_503(make_client, store, monkeypatch):
    client = make_client()

    def down(*args, **kwargs):
        raise StoreUnavailable("connection refused")

    monkeypatch.setattr(store, "get_versioned", down)
    res = client.post("/api/slots", json=booking_body(), headers=ORIGIN)
    assert res.status_code == 503
    assert res.json()["reason"] == "store_unavailable"
