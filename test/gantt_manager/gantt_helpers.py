"""Small builders shared by the Gantt Manager test modules."""

from typing import Dict, List

from gantt_manager.models import ROOT_ID, LinkUpdate, TaskUpdate
from gantt_manager.stores import LinkStore, TaskStore


def add_task(store: TaskStore, text: str, parent: int = ROOT_ID, **fields) -> int:
    """Insert a task with the given text under ``parent``."""
    return store.add(TaskUpdate(text=text, parent=parent, **fields))


def add_link(store: LinkStore, source: int, target: int, link_type: str = "fs") -> int:
    return store.add(LinkUpdate(source=source, target=target, type=link_type))


def parents_by_id(store: TaskStore) -> Dict[int, int]:
    return {task.id: task.parent for task in store.get_all()}


def child_texts(store: TaskStore, parent: int) -> List[str]:
    return [task.text for task in store.children(parent)]


def orders(store: TaskStore, parent: int) -> List[int]:
    return [task.order for task in store.children(parent)]


def snapshot(task_store: TaskStore, link_store: LinkStore):
    """Full comparable state of both tables."""
    return (
        [t.model_dump() for t in task_store.get_all()],
        [link.model_dump() for link in link_store.get_all()],
    )
