import pytest
from fastapi.testclient import TestClient

from conftest import ALICE, BOB, CHARLIE, OWNER, REGISTRY_ADDRESS
from copyright_registry import config
from copyright_registry.main import app, get_registry


@pytest.fixture
def client(registry):
    app.dependency_overrides[get_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()


def as_caller(address):
    return {"X-Caller-Address": address}


def register(client, address, author_id):
    resp = client.post("/authors", json={"author_id": author_id}, headers=as_caller(address))
    assert resp.status_code == 201
    return resp


def test_root_and_registry_info(client):
    assert client.get("/").json()["name"] == "Anonymous Copyright Registry API"

    info = client.get("/registry").json()
    assert info == {
        "owner": OWNER,
        "address": REGISTRY_ADDRESS,
        "total_works": 0,
        "pending_resolutions": 0,
        "fhe_backend": "mock",
    }


def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "healthy"
    assert body["components"]["fhe_backend"] == "healthy"
    assert body["components"]["event_store"] == "healthy"


def test_author_registration_flow(client):
    resp = register(client, ALICE, 123456)
    assert resp.json() == {"address": ALICE, "registered": True}

    assert client.get(f"/authors/{ALICE}/registered").json()["registered"] is True
    assert client.get(f"/authors/{ALICE}").json() == {
        "registered": True, "work_count": 0, "total_disputes": 0, "won_disputes": 0,
    }

    again = client.post("/authors", json={"author_id": 123456}, headers=as_caller(ALICE))
    assert again.status_code == 409
    assert again.json() == {"error": "AlreadyRegistered", "message": "Already registered"}


def test_missing_caller_header(client):
    resp = client.post("/authors", json={"author_id": 1})
    assert resp.status_code == 422


def test_invalid_caller_address(client):
    resp = client.post("/authors", json={"author_id": 1}, headers=as_caller("not-an-address"))
    assert resp.status_code == 422
    assert resp.json()["error"] == "InvalidAddress"


def test_author_id_must_fit_uint32(client):
    resp = client.post("/authors", json={"author_id": 2 ** 32}, headers=as_caller(ALICE))
    assert resp.status_code == 422


def test_work_lifecycle(client):
    register(client, ALICE, 111111)

    resp = client.post("/works", json={"content_hash": 42, "title": "Sunrise", "category": "Music"},
                       headers=as_caller(ALICE))
    assert resp.status_code == 201
    assert resp.json() == {"work_id": 1}

    work = client.get("/works/1").json()
    assert work["registrant"] == ALICE
    assert work["title"] == "Sunrise"
    assert work["verified"] is False
    assert client.get(f"/authors/{ALICE}/works").json()["work_ids"] == [1]
    assert client.get("/registry").json()["total_works"] == 1


def test_work_validation_errors(client):
    register(client, ALICE, 111111)

    no_title = client.post("/works", json={"content_hash": 1, "title": "", "category": "Art"},
                           headers=as_caller(ALICE))
    assert no_title.status_code == 422
    assert no_title.json()["error"] == "TitleRequired"

    unregistered = client.post("/works", json={"content_hash": 1, "title": "T", "category": "Art"},
                               headers=as_caller(CHARLIE))
    assert unregistered.status_code == 403
    assert unregistered.json()["error"] == "AuthorNotRegistered"

    assert client.get("/registry").json()["total_works"] == 0
    assert client.get("/works/1").status_code == 404


def test_verification_requires_owner(client, event_log):
    register(client, ALICE, 1)
    client.post("/works", json={"content_hash": 42, "title": "Sunrise", "category": "Music"},
                headers=as_caller(ALICE))

    denied = client.post("/works/1/verify", headers=as_caller(BOB))
    assert denied.status_code == 403
    assert denied.json()["error"] == "NotAuthorized"

    ok = client.post("/works/1/verify", headers=as_caller(OWNER))
    assert ok.status_code == 200
    assert ok.json()["verified"] is True

    events = client.get("/events", params={"name": "WorkVerified"}).json()
    assert [e["payload"] for e in events] == [{"work_id": 1, "verifier": OWNER}]


def test_dispute_and_resolution_over_http(client, backend):
    register(client, ALICE, 1)
    register(client, BOB, 2)
    client.post("/works", json={"content_hash": 42, "title": "Sunrise", "category": "Music"},
                headers=as_caller(ALICE))

    own = client.post("/works/1/disputes", json={"content_hash": 42}, headers=as_caller(ALICE))
    assert own.status_code == 409
    assert own.json()["error"] == "CannotDisputeOwnWork"

    filed = client.post("/works/1/disputes", json={"content_hash": 42}, headers=as_caller(BOB))
    assert filed.status_code == 201
    assert filed.json() == {"work_id": 1, "dispute_index": 0}
    assert client.get("/works/1/disputes").json() == {"work_id": 1, "dispute_count": 1}

    resolve = client.post("/works/1/disputes/0/resolve", headers=as_caller(OWNER))
    assert resolve.status_code == 202
    request_id = resolve.json()["request_id"]

    dispute = client.get("/works/1/disputes/0").json()
    assert dispute["pending"] is True
    assert dispute["resolved"] is False

    again = client.post("/works/1/disputes/0/resolve", headers=as_caller(OWNER))
    assert again.json()["error"] == "AlreadyPending"

    delivered = client.post("/gateway/callback", json={"request_id": request_id, "result": True})
    assert delivered.status_code == 200

    dispute = client.get("/works/1/disputes/0").json()
    assert dispute["resolved"] is True
    assert dispute["winner"] == BOB
    assert client.get(f"/authors/{BOB}").json()["won_disputes"] == 1

    replay = client.post("/gateway/callback", json={"request_id": request_id, "result": True})
    assert replay.status_code == 404
    assert replay.json()["error"] == "UnknownDecryptionRequest"


def test_invalid_dispute_index(client):
    register(client, ALICE, 1)
    client.post("/works", json={"content_hash": 42, "title": "Sunrise", "category": "Music"},
                headers=as_caller(ALICE))

    resp = client.get("/works/1/disputes/3")
    assert resp.status_code == 404
    assert resp.json()["error"] == "InvalidDisputeIndex"


def test_gateway_callback_token(client, monkeypatch):
    monkeypatch.setattr(config, "FHE_CALLBACK_TOKEN", "secret")

    resp = client.post("/gateway/callback", json={"request_id": "x", "result": True})
    assert resp.status_code == 401

    resp = client.post("/gateway/callback", json={"request_id": "x", "result": True},
                       headers={"X-Gateway-Token": "secret"})
    assert resp.status_code == 404


def test_fingerprint_upload(client):
    resp = client.post("/fingerprint", files={"file": ("work.txt", b"hello", "text/plain")})

    assert resp.status_code == 200
    body = resp.json()
    assert body["filename"] == "work.txt"
    assert body["file_size"] == 5
    assert body["content_hash"] == 0x2cf24dba


def test_fingerprint_upload_too_large(client, monkeypatch):
    monkeypatch.setattr(config, "MAX_UPLOAD_SIZE", 4)

    resp = client.post("/fingerprint", files={"file": ("work.txt", b"hello", "text/plain")})
    assert resp.status_code == 413


def test_events_listing(client):
    register(client, ALICE, 1)
    register(client, BOB, 2)

    events = client.get("/events").json()
    assert [e["name"] for e in events] == ["AuthorRegistered", "AuthorRegistered"]
    assert [e["sequence"] for e in client.get("/events", params={"after": 1}).json()] == [2]


def test_lifespan_closes_event_log(registry, monkeypatch):
    from copyright_registry import main

    closed = []
    monkeypatch.setattr(registry.event_log, "close", lambda: closed.append(True))
    monkeypatch.setattr(main, "build_registry", lambda: registry)

    with TestClient(app) as client:
        assert client.get("/registry").json()["owner"] == OWNER
        assert closed == []

    assert closed == [True]
    assert main.registry is None
