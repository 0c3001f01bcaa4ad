"""
Tests for the HTTP API.

Tests cover:
- Health checks and metrics
- Idempotent ingest via POST /messages
- Single-message get, replace and delete, with error mapping
- Conversation paging, unread and latest listings, mark-as-read
"""

import pytest

from chatdrop.storage import Base


NOW = 1_700_000_000_000


def message_body(contact_id=1, identity_id=10, status="NEW", text="Hello", created_on=NOW, **extra):
    body = {
        "contact_id": contact_id,
        "identity_id": identity_id,
        "direction": "INCOMING",
        "status": status,
        "message_type": "BOX_MESSAGE",
        "payload": {"kind": "text", "text": text},
        "created_on": created_on,
    }
    body.update(extra)
    return body


def ingest(client, **kwargs) -> int:
    """Helper to store a message via the API and return its id."""
    response = client.post("/messages", json=message_body(**kwargs))
    assert response.status_code == 200
    return response.json()["id"]


@pytest.fixture
def seeded_client(client):
    """
    Client with two conversations for identity 10:
    contact 1 has three NEW messages, contact 2 one READ message.
    """
    for i in range(3):
        ingest(client, contact_id=1, text=f"a{i}", created_on=NOW + i)
    ingest(client, contact_id=2, status="READ", text="b0", created_on=NOW + 10)
    return client


class TestHealth:
    """Test health checks and metrics."""

    def test_live(self, client):
        response = client.get("/health/live")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_ready(self, client):
        response = client.get("/health/ready")
        assert response.status_code == 200
        assert response.json()["status"] == "ready"

    def test_not_ready_without_schema(self, client, engine):
        Base.metadata.drop_all(bind=engine)

        response = client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"

    def test_metrics(self, seeded_client):
        response = seeded_client.get("/metrics")
        assert response.status_code == 200
        assert "repository_operations_total" in response.text
        assert "ingest_outcomes_total" in response.text

    def test_request_id_header(self, client):
        response = client.get("/health/live")
        assert "x-request-id" in response.headers


class TestIngest:
    """Test POST /messages."""

    def test_ingest_creates(self, client):
        response = client.post("/messages", json=message_body())

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["duplicate"] is False
        assert isinstance(data["id"], int)

    def test_ingest_duplicate(self, client):
        """Re-sending a stored message (same id) is acknowledged without a write."""
        message_id = ingest(client)

        response = client.post("/messages", json=message_body(id=message_id))

        assert response.status_code == 200
        assert response.json()["duplicate"] is True
        page = client.get("/identities/10/contacts/1/messages").json()
        assert page["available_range"] == 1

    def test_ingest_without_id_not_deduplicated(self, client):
        """Retrying a message that was sent without an id stores it again."""
        first = client.post("/messages", json=message_body()).json()
        second = client.post("/messages", json=message_body()).json()

        assert first["duplicate"] is False
        assert second["duplicate"] is False
        assert first["id"] != second["id"]
        page = client.get("/identities/10/contacts/1/messages").json()
        assert page["available_range"] == 2

    def test_ingest_colliding_id(self, client):
        """A different message under a taken id is a conflict."""
        message_id = ingest(client)

        response = client.post("/messages", json=message_body(id=message_id, text="other"))

        assert response.status_code == 409

    def test_ingest_type_mismatch(self, client):
        body = message_body(message_type="SHARE_NOTIFICATION")
        response = client.post("/messages", json=body)
        assert response.status_code == 422

    def test_ingest_share_notification(self, client):
        body = message_body(
            message_type="SHARE_NOTIFICATION",
            payload={"kind": "share_notification", "text": "file", "url": "http://drop/s", "key": "k"},
        )
        response = client.post("/messages", json=body)
        assert response.status_code == 200

        stored = client.get(f"/messages/{response.json()['id']}").json()
        assert stored["payload"]["url"] == "http://drop/s"


class TestSingleMessage:
    """Test get, replace and delete of one message."""

    def test_get(self, client):
        message_id = ingest(client, text="hi")

        response = client.get(f"/messages/{message_id}")

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == message_id
        assert data["payload"] == {"kind": "text", "text": "hi"}
        assert data["status"] == "NEW"

    def test_get_missing(self, client):
        response = client.get("/messages/999")
        assert response.status_code == 404
        assert "detail" in response.json()

    def test_replace(self, client):
        message_id = ingest(client)

        response = client.put(f"/messages/{message_id}", json=message_body(status="READ", text="edited"))

        assert response.status_code == 200
        stored = client.get(f"/messages/{message_id}").json()
        assert stored["status"] == "READ"
        assert stored["payload"]["text"] == "edited"

    def test_replace_back_to_new_rejected(self, client):
        message_id = ingest(client, status="READ")
        response = client.put(f"/messages/{message_id}", json=message_body(status="NEW"))
        assert response.status_code == 409

    def test_replace_missing(self, client):
        response = client.put("/messages/999", json=message_body())
        assert response.status_code == 404

    def test_replace_id_mismatch(self, client):
        message_id = ingest(client)
        response = client.put(f"/messages/{message_id}", json=message_body(id=message_id + 1))
        assert response.status_code == 422

    def test_delete(self, client):
        message_id = ingest(client)

        response = client.delete(f"/messages/{message_id}")

        assert response.status_code == 204
        assert client.get(f"/messages/{message_id}").status_code == 404
        assert client.delete(f"/messages/{message_id}").status_code == 404


class TestConversation:
    """Test conversation paging and mark-as-read."""

    def test_page(self, seeded_client):
        response = seeded_client.get("/identities/10/contacts/1/messages", params={"limit": 2})

        assert response.status_code == 200
        data = response.json()
        assert data["available_range"] == 3
        assert [m["payload"]["text"] for m in data["result"]] == ["a2", "a1"]

    def test_second_page(self, seeded_client):
        response = seeded_client.get(
            "/identities/10/contacts/1/messages", params={"limit": 2, "offset": 2}
        )
        data = response.json()
        assert data["available_range"] == 3
        assert [m["payload"]["text"] for m in data["result"]] == ["a0"]

    def test_offset_beyond_total(self, seeded_client):
        response = seeded_client.get("/identities/10/contacts/1/messages", params={"offset": 100})
        data = response.json()
        assert data["result"] == []
        assert data["available_range"] == 3

    @pytest.mark.parametrize("params", [{"limit": 0}, {"limit": 101}, {"offset": -1}])
    def test_invalid_window_rejected(self, client, params):
        response = client.get("/identities/10/contacts/1/messages", params=params)
        assert response.status_code == 422

    def test_mark_read(self, seeded_client):
        response = seeded_client.post("/identities/10/contacts/1/read")

        assert response.status_code == 200
        assert response.json()["updated"] == 3
        assert seeded_client.get("/identities/10/messages/new").json() == []

    def test_mark_read_nothing_new(self, seeded_client):
        response = seeded_client.post("/identities/10/contacts/2/read")
        assert response.status_code == 200
        assert response.json()["updated"] == 0


class TestIdentityListings:
    """Test unread and latest listings across conversations."""

    def test_new(self, seeded_client):
        response = seeded_client.get("/identities/10/messages/new")

        assert response.status_code == 200
        data = response.json()
        assert len(data) == 3
        assert {m["contact_id"] for m in data} == {1}

    def test_latest(self, seeded_client):
        response = seeded_client.get("/identities/10/messages/latest")

        assert response.status_code == 200
        data = response.json()
        assert [(m["contact_id"], m["payload"]["text"]) for m in data] == [(2, "b0"), (1, "a2")]

    def test_unknown_identity(self, seeded_client):
        assert seeded_client.get("/identities/99/messages/latest").json() == []
        assert seeded_client.get("/identities/99/messages/new").json() == []
