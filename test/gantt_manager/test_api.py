"""
REST API tests using FastAPI's TestClient.

Covers the editor payload, task mutations through PUT /tasks/{id}, link CRUD,
batches and the mapping of domain errors onto HTTP status codes.
"""

import pytest

from gantt_helpers import add_link, add_task


class TestHealthAndMetrics:
    def test_health(self, client):
        response = client.get("/healthz")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database_connected"] is True

    def test_metrics(self, client, tree):
        response = client.get("/api/metrics")
        assert response.status_code == 200
        body = response.json()
        assert body["tasks"] == {"total_tasks": 6, "total_links": 3}
        assert "avg_query_time_ms" in body["performance"]
        assert body["system"]["memory_usage_mb"] > 0


class TestDataEndpoints:
    def test_get_data(self, client, tree):
        response = client.get("/data")
        assert response.status_code == 200
        body = response.json()
        assert len(body["tasks"]) == 6
        assert len(body["links"]) == 3
        release = next(t for t in body["tasks"] if t["id"] == tree["r"])
        assert release["type"] == "milestone"
        assert release["parent"] == 0

    def test_get_task(self, client, tree):
        response = client.get(f"/tasks/{tree['w']}")
        assert response.status_code == 200
        assert response.json()["text"] == "Wireframes"
        assert response.json()["progress"] == 50

    def test_get_missing_task(self, client):
        response = client.get("/tasks/999")
        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["code"] == "not_found"

    def test_create_task(self, client, task_store, tree):
        response = client.post("/tasks", json={"text": "New", "parent": str(tree["p"]), "duration": 2})
        assert response.status_code == 200
        new_id = response.json()["id"]
        task = task_store.get_one(new_id)
        assert task.parent == tree["p"]
        assert task.order == 2

    def test_create_task_under_missing_parent(self, client):
        response = client.post("/tasks", json={"text": "New", "parent": 99})
        assert response.status_code == 404

    def test_create_task_invalid_body(self, client):
        response = client.post("/tasks", json={"text": "New", "duration": -5})
        assert response.status_code == 422

    def test_list_tasks(self, client, tree):
        response = client.get("/tasks")
        assert response.status_code == 200
        assert len(response.json()) == 6


class TestTaskMutations:
    """PUT /tasks/{id} with update, move and copy operations."""

    def test_update_task(self, client, task_store):
        task_id = add_task(task_store, "Original Task", duration=3)

        response = client.put(f"/tasks/{task_id}", json={"text": "Updated Task", "progress": 45})

        assert response.status_code == 200
        assert response.json() == {"id": task_id, "success": True}
        task = task_store.get_one(task_id)
        assert task.text == "Updated Task"
        assert task.progress == 45
        assert task.duration == 3

    def test_move_task(self, client, task_store):
        a = add_task(task_store, "Parent A")
        b = add_task(task_store, "Parent B")
        child = add_task(task_store, "Child", a)

        response = client.put(
            f"/tasks/{child}",
            json={"operation": "move", "target": b, "mode": "child"},
        )

        assert response.status_code == 200
        assert task_store.get_one(child).parent == b

    def test_nested_copy(self, client, task_store, link_store):
        s = add_task(task_store, "Copy Source")
        c = add_task(task_store, "Source Child", s)
        e = add_task(task_store, "External")
        add_link(link_store, c, e)

        response = client.put(
            f"/tasks/{s}",
            json={"operation": "copy", "target": s, "mode": "after", "nested": True},
        )

        assert response.status_code == 200
        new_id = response.json()["id"]
        assert new_id != s
        new_child = task_store.children(new_id)[0]
        assert new_child.text == "Source Child"
        pairs = {(link.source, link.target) for link in link_store.get_all()}
        assert (c, e) in pairs
        assert (new_child.id, e) in pairs

    def test_move_into_descendant_returns_400(self, client, tree):
        response = client.put(
            f"/tasks/{tree['p']}",
            json={"operation": "move", "target": tree["w"], "mode": "child"},
        )
        assert response.status_code == 400
        assert response.json()["code"] == "cycle_error"

    def test_move_without_target_returns_400(self, client, tree):
        response = client.put(f"/tasks/{tree['w']}", json={"operation": "move", "mode": "child"})
        assert response.status_code == 400
        assert response.json()["code"] == "validation_error"

    def test_unknown_mode_returns_422(self, client, tree):
        response = client.put(
            f"/tasks/{tree['w']}",
            json={"operation": "move", "target": tree["b"], "mode": "sideways"},
        )
        assert response.status_code == 422

    def test_mutate_missing_task(self, client):
        response = client.put("/tasks/404", json={"text": "ghost"})
        assert response.status_code == 404

    def test_delete_task(self, client, task_store, link_store, tree):
        response = client.delete(f"/tasks/{tree['d']}")
        assert response.status_code == 200
        assert not task_store.exists(tree["w"])
        assert len(link_store.get_all()) == 1

    def test_delete_root_returns_400(self, client):
        response = client.delete("/tasks/0")
        assert response.status_code == 400


class TestLinkEndpoints:
    def test_create_link(self, client, link_store, tree):
        response = client.post("/links", json={"source": tree["w"], "target": tree["r"], "type": "2"})
        assert response.status_code == 200
        link = link_store.get_one(response.json()["id"])
        assert link.type.value == "ff"

    def test_create_link_with_missing_endpoint(self, client, tree):
        response = client.post("/links", json={"source": tree["w"], "target": 999})
        assert response.status_code == 400

    def test_update_link(self, client, link_store, tree):
        link_id = tree["links"]["w_m"]
        response = client.put(f"/links/{link_id}", json={"type": "sf"})
        assert response.status_code == 200
        assert link_store.get_one(link_id).type.value == "sf"

    def test_delete_link(self, client, link_store, tree):
        link_id = tree["links"]["w_m"]
        assert client.delete(f"/links/{link_id}").status_code == 200
        assert client.delete(f"/links/{link_id}").status_code == 404

    def test_list_links(self, client, tree):
        response = client.get("/links")
        assert [link["type"] for link in response.json()] == ["fs", "fs", "ss"]


class TestBatchEndpoint:
    def test_batch_with_tentative_ids(self, client, task_store, link_store):
        response = client.post("/batch", json={"items": [
            {"entity": "task", "action": "insert", "id": "t1", "data": {"text": "A"}},
            {"entity": "task", "action": "insert", "id": "t2", "data": {"text": "B", "parent": "t1"}},
            {"entity": "link", "action": "insert", "data": {"source": "t1", "target": "t2"}},
        ]})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert set(body["ids"]) == {"t1", "t2"}
        assert task_store.get_one(body["ids"]["t2"]).parent == body["ids"]["t1"]
        assert len(link_store.get_all()) == 1
        assert len(body["results"]) == 3

    def test_failed_batch_rolls_back(self, client, task_store, tree):
        response = client.post("/batch", json={"items": [
            {"entity": "task", "action": "insert", "id": "t1", "data": {"text": "A"}},
            {"entity": "task", "action": "delete", "id": 999},
        ]})

        assert response.status_code == 404
        assert len(task_store.get_all()) == 6

    @pytest.mark.parametrize("payload", [{"items": []}, {"items": [{"entity": "task"}]}])
    def test_malformed_batch(self, client, payload):
        assert client.post("/batch", json=payload).status_code == 422


class TestDatabaseUnavailable:
    def test_no_database_returns_503(self):
        from fastapi.testclient import TestClient

        from gantt_manager import api

        assert api.db_instance is None
        response = TestClient(api.app).get("/tasks")
        assert response.status_code == 503
