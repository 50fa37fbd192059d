"""
Shared fixtures for Gantt Manager tests.

Provides an isolated SQLite database per test, the stores and engine bound to
it, and a FastAPI TestClient whose database dependency points at that database.
"""

import pytest
from fastapi.testclient import TestClient

from gantt_manager.api import app, get_database
from gantt_manager.database import GanttDatabase
from gantt_manager.engine import HierarchyEngine
from gantt_manager.stores import LinkStore, TaskStore

from gantt_helpers import add_link, add_task


@pytest.fixture
def db(tmp_path):
    """Fresh database file inside the test's temporary directory."""
    database = GanttDatabase(str(tmp_path / "test.db"))
    yield database
    database.close()


@pytest.fixture
def task_store(db):
    return TaskStore(db)


@pytest.fixture
def link_store(db):
    return LinkStore(db)


@pytest.fixture
def engine(db):
    return HierarchyEngine(db)


@pytest.fixture
def client(db):
    """TestClient using the per-test database instead of the lifespan one."""
    app.dependency_overrides[get_database] = lambda: db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def tree(task_store, link_store):
    """
    Small project tree::

        Project (p)
          Design (d)
            Wireframes (w)
            Mockups (m)
          Build (b)
        Release (r)

    with links w->m (fs), m->b (fs) and b->r (ss).
    """
    p = add_task(task_store, "Project", type="project")
    d = add_task(task_store, "Design", p, duration=5)
    w = add_task(task_store, "Wireframes", d, duration=2, progress=50)
    m = add_task(task_store, "Mockups", d, duration=3)
    b = add_task(task_store, "Build", p, duration=10)
    r = add_task(task_store, "Release", type="milestone")
    links = {
        "w_m": add_link(link_store, w, m),
        "m_b": add_link(link_store, m, b),
        "b_r": add_link(link_store, b, r, "ss"),
    }
    return {"p": p, "d": d, "w": w, "m": m, "b": b, "r": r, "links": links}
