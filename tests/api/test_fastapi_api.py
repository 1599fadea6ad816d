import base64

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from rowqueue.exceptions import StoreUnavailable
from rowqueue.fastapi.deps import get_queue_manager
from rowqueue.fastapi.lifecycle import setup_rowqueue
from rowqueue.store.memory import MemoryItemStore


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode()


def _make_app(db_path: str) -> FastAPI:
    app = FastAPI()
    setup_rowqueue(app, db_path=db_path)
    return app


def test_deps_guard_raises_without_setup():
    class Dummy:
        pass

    d = Dummy()
    d.app = Dummy()
    d.app.state = Dummy()
    with pytest.raises(RuntimeError):
        get_queue_manager(d)  # no manager set


def test_enqueue_claim_list_and_finalize(tmp_db_path):
    app = _make_app(tmp_db_path)
    with TestClient(app) as client:
        r1 = client.post(
            "/api/v1/items",
            json={"routing_key": "a.b", "content": _b64(b"x"), "metadata": _b64(b"{}")},
        )
        assert r1.status_code == 202
        item_id = r1.json()["id"]
        assert item_id == 1

        c = client.post("/api/v1/items/claim", params={"routing_key": "a.b"})
        assert c.status_code == 200
        body = c.json()
        assert body["id"] == item_id and body["status"] == "in_progress"
        assert base64.b64decode(body["content"]) == b"x"

        assert client.post("/api/v1/items/claim", params={"routing_key": "a.b"}).status_code == 204

        s = client.post(
            "/api/v1/items/status", json={"ids": [item_id, 99], "status": "failed", "error": "boom"}
        )
        assert s.status_code == 204

        lst = client.get("/api/v1/items", params={"status": "failed"})
        assert lst.status_code == 200
        items = lst.json()["items"]
        assert [i["id"] for i in items] == [item_id]
        assert items[0]["error"] == "boom" and items[0]["completed_at"] is not None

        counts = client.get("/api/v1/items/_counts").json()
        assert counts == {"new": 0, "in_progress": 0, "completed": 0, "failed": 1}

        # Reset for retry, then claim again
        assert client.post("/api/v1/items/status", json={"ids": [item_id], "status": 0}).status_code == 204
        again = client.post("/api/v1/items/claim")
        assert again.status_code == 200 and again.json()["error"] is None

        assert client.get("/api/v1/items/_health").json()["status"] == "healthy"


def test_validation_errors(tmp_db_path):
    app = _make_app(tmp_db_path)
    with TestClient(app) as client:
        assert client.post("/api/v1/items", json={"routing_key": ""}).status_code == 422
        assert client.post("/api/v1/items", json={}).status_code == 422
        bad_status = client.post("/api/v1/items/status", json={"ids": [1], "status": "done"})
        assert bad_status.status_code == 400
        assert client.get("/api/v1/items", params={"status": "done"}).status_code == 400
        # Empty id list is accepted and does nothing
        assert client.post("/api/v1/items/status", json={"ids": [], "status": "done"}).status_code == 204


def test_store_failures_map_to_503():
    class DownStore(MemoryItemStore):
        async def claim(self, routing_key=None):
            raise StoreUnavailable("connection refused")

        async def query(self, *args, **kwargs):
            raise StoreUnavailable("connection refused")

    app = FastAPI()
    setup_rowqueue(app, store=DownStore())
    with TestClient(app) as client:
        assert client.post("/api/v1/items/claim").status_code == 503
        assert client.get("/api/v1/items").status_code == 503
        assert client.get("/api/v1/items/_counts").status_code == 503


def test_enqueue_link_follows_mount_prefix_and_escapes_key(tmp_db_path):
    app = FastAPI()
    setup_rowqueue(app, db_path=tmp_db_path, prefix="/q")
    with TestClient(app) as client:
        r = client.post("/q/items", json={"routing_key": "a b&c"})
        assert r.status_code == 202
        link = r.json()["links"]["self"]
        assert link.endswith("/q/items?routing_key=a+b%26c")

        listed = client.get(link)
        assert listed.status_code == 200
        assert [i["routing_key"] for i in listed.json()["items"]] == ["a b&c"]


def test_status_and_routing_key_strictness(tmp_db_path):
    app = _make_app(tmp_db_path)
    with TestClient(app) as client:
        item_id = client.post("/api/v1/items", json={"routing_key": "s"}).json()["id"]
        assert client.post("/api/v1/items/claim").json()["claimed_at"] is not None

        # JSON booleans are not status codes
        r = client.post("/api/v1/items/status", json={"ids": [item_id], "status": True})
        assert r.status_code == 422
        assert client.get("/api/v1/items").json()["items"][0]["status"] == "in_progress"

        assert client.post("/api/v1/items", json={"routing_key": "k" * 256}).status_code == 422
        assert client.post("/api/v1/items", json={"routing_key": "k" * 255}).status_code == 202
