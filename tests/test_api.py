"""HTTP surface with the scheduler and the current user overridden."""

import pytest
from fastapi.testclient import TestClient

from bam_booking.auth import RoleAuthorizer, User, create_access_token, decode_access_token, get_current_active_user
from bam_booking.errors import PersistenceUnavailable
from bam_booking.main import app, get_scheduler
from bam_booking.scheduler import BookingScheduler
from bam_booking.store import InMemoryReservationStore

from conftest import DAY, ROLES

USERS = {
    "alice": User(username="alice", full_name="Alice", role="student"),
    "bob": User(username="bob", full_name="Bob", role="student"),
    "teacher-1": User(username="teacher-1", full_name="Dr. Teacher", role="teacher"),
    "admin-1": User(username="admin-1", full_name="Admin", role="admin"),
}


class Session:
    """Lets a test switch who is calling."""

    def __init__(self):
        self.user = USERS["alice"]

    def as_(self, username):
        self.user = USERS[username]
        return self


@pytest.fixture
def session(scheduler):
    current = Session()
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    app.dependency_overrides[get_current_active_user] = lambda: current.user
    yield current
    app.dependency_overrides.clear()


@pytest.fixture
def client(session):
    return TestClient(app)


def booking(start, end, resource_id="bio-1", title="Lab session"):
    return {
        "resource_id": resource_id,
        "date": DAY.isoformat(),
        "slot_start": start,
        "slot_end": end,
        "title": title,
    }


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_users_me(client, session):
    session.as_("teacher-1")
    assert client.get("/api/users/me").json()["role"] == "teacher"


def test_create_booking(client):
    response = client.post("/api/bookings", json=booking(540, 600))

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "pending"
    assert body["requester_id"] == "alice"
    assert (body["slot_start"], body["slot_end"]) == (540, 600)


@pytest.mark.parametrize("start, end, code", [
    (495, 525, "misaligned"),
    (990, 1050, "out_of_bounds"),
    (600, 540, "invalid_interval"),
])
def test_bad_interval_is_400(client, start, end, code):
    response = client.post("/api/bookings", json=booking(start, end))
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == code


def test_unavailable_resource_is_409(client):
    response = client.post("/api/bookings", json=booking(540, 600, resource_id="bio-3"))
    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "resource_unavailable"


def test_end_to_end_over_http(client, session):
    a = client.post("/api/bookings", json=booking(540, 600)).json()

    session.as_("bob")
    clash = client.post("/api/bookings", json=booking(570, 600))
    assert clash.status_code == 409
    assert clash.json()["detail"]["code"] == "slot_conflict"
    assert clash.json()["detail"]["conflicting_ids"] == [a["id"]]

    session.as_("teacher-1")
    approved = client.post(f"/api/bookings/{a['id']}/approve")
    assert approved.status_code == 200
    assert approved.json()["status"] == "approved"

    session.as_("bob")
    touching = client.post("/api/bookings", json=booking(600, 630))
    assert touching.status_code == 201
    assert touching.json()["status"] == "pending"


def test_student_cannot_approve(client):
    a = client.post("/api/bookings", json=booking(540, 600)).json()

    response = client.post(f"/api/bookings/{a['id']}/approve")

    assert response.status_code == 403
    assert response.json()["detail"]["code"] == "forbidden"


def test_second_decision_is_409(client, session):
    a = client.post("/api/bookings", json=booking(540, 600)).json()
    session.as_("teacher-1")
    client.post(f"/api/bookings/{a['id']}/reject", json={"reason": "Calibration"})

    response = client.post(f"/api/bookings/{a['id']}/approve")

    assert response.status_code == 409
    assert response.json()["detail"]["code"] == "invalid_transition"


def test_reject_records_reason(client, session):
    a = client.post("/api/bookings", json=booking(540, 600)).json()
    session.as_("teacher-1")

    response = client.post(f"/api/bookings/{a['id']}/reject", json={"reason": "Calibration"})

    assert response.json()["status"] == "rejected"
    assert response.json()["rejection_reason"] == "Calibration"


def test_get_and_list_bookings(client, session):
    a = client.post("/api/bookings", json=booking(540, 600)).json()
    session.as_("bob")
    b = client.post("/api/bookings", json=booking(600, 660)).json()

    assert client.get(f"/api/bookings/{a['id']}").json()["id"] == a["id"]
    assert client.get("/api/bookings/missing").status_code == 404
    assert [r["id"] for r in client.get("/api/bookings").json()] == [a["id"], b["id"]]
    assert [r["id"] for r in client.get("/api/bookings", params={"mine": True}).json()] == [b["id"]]


def test_edit_and_cancel(client, session):
    a = client.post("/api/bookings", json=booking(540, 600)).json()

    edited = client.patch(f"/api/bookings/{a['id']}", json={"title": "Imaging"})
    assert edited.status_code == 200
    assert edited.json()["title"] == "Imaging"

    session.as_("bob")
    assert client.delete(f"/api/bookings/{a['id']}").status_code == 403

    session.as_("alice")
    assert client.delete(f"/api/bookings/{a['id']}").status_code == 204
    assert client.delete(f"/api/bookings/{a['id']}").status_code == 404


def test_slots_and_conflicts(client):
    a = client.post("/api/bookings", json=booking(540, 600)).json()

    slots = client.get("/api/resources/bio-1/slots", params={"date": DAY.isoformat()}).json()
    assert [s["blocked_by"] for s in slots if not s["available"]] == [[a["id"]], [a["id"]]]
    assert [s["start"] for s in slots if not s["available"]] == [540, 570]

    assert client.get("/api/resources/bio-1/conflicts", params={"date": DAY.isoformat()}).json() == []
    assert client.get("/api/conflicts").json() == []


def test_approval_queue_requires_staff(client, session):
    client.post("/api/bookings", json=booking(540, 600))
    assert client.get("/api/approvals").status_code == 403

    session.as_("teacher-1")
    queue = client.get("/api/approvals").json()
    assert len(queue) == 1
    assert queue[0]["fair_use"]["approved_count"] == 0


def test_resource_management(client, session):
    assert client.post("/api/resources", json={"id": "bio-9", "name": "Bioscope 9"}).status_code == 403

    session.as_("admin-1")
    assert client.post("/api/resources", json={"id": "bio-9", "name": "Bioscope 9"}).status_code == 201
    assert client.post("/api/resources", json={"id": "bio-9", "name": "Bioscope 9"}).status_code == 400
    assert client.put("/api/resources/bio-9/status", json={"status": "offline"}).status_code == 200
    assert client.put("/api/resources/nope/status", json={"status": "offline"}).status_code == 404

    statuses = {r["id"]: r["status"] for r in client.get("/api/resources").json()}
    assert statuses["bio-9"] == "offline"


def test_access_token_round_trip():
    token = create_access_token({"sub": "alice"})
    assert decode_access_token(token) == "alice"
    assert decode_access_token("not-a-token") is None


class UnreachableStore(InMemoryReservationStore):
    async def get_resource(self, resource_id):
        raise PersistenceUnavailable("database is locked")

    async def list(self, *args, **kwargs):
        raise PersistenceUnavailable("database is locked")


def test_unreachable_store_is_503(session):
    broken = BookingScheduler(UnreachableStore(), RoleAuthorizer(ROLES))
    app.dependency_overrides[get_scheduler] = lambda: broken
    client = TestClient(app)

    for response in (
        client.post("/api/bookings", json=booking(540, 600)),
        client.get("/api/bookings"),
    ):
        assert response.status_code == 503
        assert response.json() == {"detail": "Reservation store unavailable, please retry."}


def test_teachers_cannot_manage_resources(client, session):
    session.as_("teacher-1")

    assert client.post("/api/resources", json={"id": "bio-9", "name": "Bioscope 9"}).status_code == 403
    assert client.put("/api/resources/bio-1/status", json={"status": "offline"}).status_code == 403
