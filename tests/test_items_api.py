from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from sendnotes.server.main import _cors_origins, app
from sendnotes.server.repositories import InMemoryItemRepository, get_repository
from sendnotes.settings import Settings
from sendnotes.utils import week_key

client = TestClient(app)

WEEK = "2024-06-03"


@pytest.fixture(autouse=True)
def fresh_repository():
    # Each test gets an empty store instead of the process-wide one.
    repo = InMemoryItemRepository()
    app.dependency_overrides[get_repository] = lambda: repo
    yield repo
    app.dependency_overrides.clear()


def create_item_payload(url="https://example.com/post", title="A good read", notes=None, week_of=WEEK, **extra):
    payload = {"url": url, "title": title, "notes": notes, **extra}
    if week_of is not None:
        payload["week_of"] = week_of
    return payload


def assert_item_shape(item: dict):
    for key in ["id", "url", "title", "notes", "category", "status", "week_of", "created_at", "updated_at"]:
        assert key in item
    assert isinstance(item["id"], str)
    assert item["status"] in ("active", "archived", "deleted")
    datetime.fromisoformat(item["created_at"])
    datetime.fromisoformat(item["updated_at"])


class TestHealth:
    def test_health_check(self):
        res = client.get("/")
        assert res.status_code == 200
        assert res.json()["message"] == "Healthy"

    @pytest.mark.parametrize(
        "configured, expected",
        [
            (["*"], ["*"]),
            ([], ["*"]),
            (["https://a.example", "*"], ["*"]),
            (["https://a.example", "https://b.example"], ["https://a.example", "https://b.example"]),
        ],
    )
    def test_cors_origins(self, configured, expected):
        settings = Settings(
            store_backend="memory",
            store_path=":memory:",
            remote_url="http://notes.test",
            remote_timeout=1.0,
            probe_interval=1.0,
            cors_allow_origins=configured,
        )
        assert _cors_origins(settings) == expected


class TestItemsCRUD:
    def test_create_item_keeps_client_week(self):
        res = client.post("/api/v1/items", json=create_item_payload())
        assert res.status_code == 201
        item = res.json()
        assert_item_shape(item)
        assert item["week_of"] == WEEK
        assert item["status"] == "active"

    def test_create_item_defaults_to_current_week(self):
        res = client.post("/api/v1/items", json=create_item_payload(url=None, notes="just a note", week_of=None))
        assert res.status_code == 201
        assert res.json()["week_of"] == week_key()

    def test_get_item_and_not_found(self):
        tid = client.post("/api/v1/items", json=create_item_payload(title="Read book")).json()["id"]

        res_get = client.get(f"/api/v1/items/{tid}")
        assert res_get.status_code == 200
        assert res_get.json()["title"] == "Read book"

        res_404 = client.get("/api/v1/items/does-not-exist")
        assert res_404.status_code == 404
        assert res_404.json()["detail"] == "Item not found"

    def test_patch_partial_update(self):
        tid = client.post("/api/v1/items", json=create_item_payload(notes="keep me")).json()["id"]

        res_patch = client.patch(f"/api/v1/items/{tid}", json={"title": "Renamed", "category": "Tools"})
        assert res_patch.status_code == 200
        patched = res_patch.json()
        assert patched["title"] == "Renamed"
        assert patched["category"] == "Tools"
        # untouched fields stay
        assert patched["notes"] == "keep me"

        res_nf = client.patch("/api/v1/items/does-not-exist", json={"title": "Nope"})
        assert res_nf.status_code == 404

    def test_delete_is_soft(self):
        tid = client.post("/api/v1/items", json=create_item_payload()).json()["id"]

        res_del = client.delete(f"/api/v1/items/{tid}")
        assert res_del.status_code == 204
        assert res_del.text == ""

        res_get = client.get(f"/api/v1/items/{tid}")
        assert res_get.status_code == 200
        assert res_get.json()["status"] == "deleted"

        res_del_missing = client.delete("/api/v1/items/does-not-exist")
        assert res_del_missing.status_code == 404
        assert res_del_missing.json()["detail"] == "Item not found"


class TestListAndTransitions:
    def seed_items(self, count=3, week_of=WEEK):
        ids = []
        for i in range(count):
            res = client.post("/api/v1/items", json=create_item_payload(title=f"Item {i}", week_of=week_of))
            assert res.status_code == 201
            ids.append(res.json()["id"])
        return ids

    def test_list_filters_by_status_and_week_newest_first(self):
        ids = self.seed_items(3)
        self.seed_items(1, week_of="2024-05-27")
        client.delete(f"/api/v1/items/{ids[0]}")

        res = client.get(f"/api/v1/items?week_of={WEEK}")
        assert res.status_code == 200
        items = res.json()
        assert {it["id"] for it in items} == set(ids[1:])
        created = [datetime.fromisoformat(it["created_at"]) for it in items]
        assert created == sorted(created, reverse=True)

        res_deleted = client.get(f"/api/v1/items?status=deleted&week_of={WEEK}")
        assert [it["id"] for it in res_deleted.json()] == [ids[0]]

    def test_transition_archives_one_week(self):
        self.seed_items(2)
        self.seed_items(1, week_of="2024-05-27")

        res = client.post(
            "/api/v1/items/transitions",
            json={"from_status": "active", "week_of": WEEK, "to_status": "archived"},
        )
        assert res.status_code == 200
        assert res.json() == {"count": 2}
        assert client.get(f"/api/v1/items?week_of={WEEK}").json() == []
        assert len(client.get("/api/v1/items?week_of=2024-05-27").json()) == 1
        assert len(client.get(f"/api/v1/items?status=archived&week_of={WEEK}").json()) == 2


class TestValidationErrors:
    def test_create_requires_url_or_notes(self):
        res = client.post("/api/v1/items", json={"title": "Only a title", "notes": "   "})
        assert res.status_code == 422
        body = res.json()
        assert body.get("error") == "ValidationError"
        assert body.get("message") == "Request validation failed"
        assert isinstance(body.get("detail"), list)

    def test_week_of_must_be_a_monday(self):
        res = client.post("/api/v1/items", json=create_item_payload(week_of="2024-06-05"))
        assert res.status_code == 422
        assert res.json().get("error") == "ValidationError"

    def test_unknown_status_filter(self):
        res = client.get("/api/v1/items?status=pending")
        assert res.status_code == 422
        assert res.json().get("error") == "ValidationError"
