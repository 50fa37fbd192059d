"""
YAML Gantt Importer

Imports a task tree with dependency links from YAML and exports the current
tree back into the same format. Tasks are addressed by a ``key`` inside the
file; keys are bound to durable ids through an IdentityResolver so links can
refer to tasks created earlier in the same import.

Format::

    tasks:
      - key: design
        text: Design
        duration: 5
        children:
          - key: wireframes
            text: Wireframes
    links:
      - source: wireframes
        target: build
        type: fs
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml

from .database import GanttDatabase
from .errors import GanttError, ValidationError
from .identity import IdentityResolver
from .models import ROOT_ID, LinkUpdate, Task, TaskUpdate, parse_model
from .stores import LinkStore, TaskStore

logger = logging.getLogger(__name__)

# Keys of a YAML task entry that are not task fields
_STRUCTURAL_KEYS = ("key", "children", "id")


def import_gantt(db: GanttDatabase, yaml_data: Dict[str, Any], parent: int = ROOT_ID) -> Dict[str, Any]:
    """
    Import tasks and links from parsed YAML.

    A malformed entry is skipped (together with its children) and reported in
    ``errors``; the rest of the file is still imported. Structural problems with
    the document itself raise ValidationError and nothing is written.

    Args:
        db: GanttDatabase instance
        yaml_data: Parsed YAML document
        parent: Task under which top-level entries are created

    Returns:
        Dict with import statistics and the key -> id bindings
    """
    if not isinstance(yaml_data, dict):
        raise ValidationError("Gantt YAML must be a mapping with 'tasks' and 'links'")

    tasks = yaml_data.get("tasks", [])
    links = yaml_data.get("links", [])
    if not isinstance(tasks, list):
        raise ValidationError("YAML 'tasks' must be a list")
    if not isinstance(links, list):
        raise ValidationError("YAML 'links' must be a list")

    task_store = TaskStore(db)
    link_store = LinkStore(db)
    resolver = IdentityResolver()
    stats: Dict[str, Any] = {
        "tasks_created": 0,
        "links_created": 0,
        "errors": [],
    }

    with db.transaction():
        if parent != ROOT_ID:
            task_store.get_one(parent)

        for task_data in tasks:
            _import_task(task_store, resolver, task_data, parent, stats)

        for link_data in links:
            try:
                link_id = _import_link(link_store, resolver, link_data)
                stats["links_created"] += 1
                logger.debug(f"Imported link {link_id}")
            except GanttError as e:
                stats["errors"].append(f"Failed to import link {link_data!r}: {e.message}")

    stats["ids"] = resolver.items()
    logger.info(
        f"Imported {stats['tasks_created']} tasks and {stats['links_created']} links "
        f"with {len(stats['errors'])} errors"
    )
    return stats


def _import_task(store: TaskStore, resolver: IdentityResolver, task_data: Any,
                 parent_id: int, stats: Dict[str, Any]) -> None:
    """Import one task entry and, recursively, its children."""
    if not isinstance(task_data, dict):
        stats["errors"].append(f"Task entry must be a mapping, got {type(task_data).__name__}")
        return

    label = task_data.get("key", task_data.get("text", "unnamed"))
    if "key" in task_data and resolver.is_bound(task_data["key"]):
        stats["errors"].append(f"Duplicate task key '{label}'")
        return

    try:
        fields = {k: v for k, v in task_data.items() if k not in _STRUCTURAL_KEYS}
        fields["parent"] = parent_id
        fields.pop("order", None)
        task_id = store.add(parse_model(TaskUpdate, fields))
        if "key" in task_data:
            resolver.bind(task_data["key"], task_id)
    except GanttError as e:
        stats["errors"].append(f"Failed to import task '{label}': {e.message}")
        return

    stats["tasks_created"] += 1

    children = task_data.get("children", [])
    if not isinstance(children, list):
        stats["errors"].append(f"Children of task '{label}' must be a list")
        return
    for child in children:
        _import_task(store, resolver, child, task_id, stats)


def _import_link(store: LinkStore, resolver: IdentityResolver, link_data: Any) -> int:
    if not isinstance(link_data, dict):
        raise ValidationError("Link entry must be a mapping")
    for endpoint in ("source", "target"):
        if endpoint not in link_data:
            raise ValidationError(f"Link entry is missing '{endpoint}'")
        if not resolver.is_bound(link_data[endpoint]):
            raise ValidationError(f"Link {endpoint} '{link_data[endpoint]}' does not name an imported task")

    data = resolver.resolve_fields(link_data, ("source", "target"))
    return store.add(parse_model(LinkUpdate, data))


def import_gantt_from_file(db: GanttDatabase, file_path: Union[str, Path],
                           parent: int = ROOT_ID) -> Dict[str, Any]:
    """
    Import a Gantt YAML file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValidationError: If the YAML cannot be parsed or is malformed
    """
    path = Path(file_path)
    if not path.exists():
        raise FileNotFoundError(f"YAML file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ValidationError(f"Invalid YAML format in {path}: {e}") from e

    return import_gantt(db, yaml_data or {}, parent=parent)


def export_gantt(db: GanttDatabase) -> Dict[str, Any]:
    """
    Export the task tree and links in the import format.

    Task keys are the durable ids, so exporting and re-importing into an empty
    database reproduces the tree shape and the links.
    """
    task_store = TaskStore(db)
    link_store = LinkStore(db)

    with db.read():
        all_tasks = task_store.get_all()
        all_links = link_store.get_all()

    by_parent: Dict[int, List[Task]] = {}
    for task in all_tasks:
        by_parent.setdefault(task.parent, []).append(task)
    for siblings in by_parent.values():
        siblings.sort(key=lambda t: (t.order, t.id))

    def build(parent_id: int) -> List[Dict[str, Any]]:
        entries = []
        for task in by_parent.get(parent_id, []):
            entry: Dict[str, Any] = {
                "key": task.id,
                "text": task.text,
                "duration": task.duration,
                "progress": task.progress,
                "type": task.type.value,
                "open": task.open,
            }
            if task.start_date:
                entry["start_date"] = task.start_date
            children = build(task.id)
            if children:
                entry["children"] = children
            entries.append(entry)
        return entries

    return {
        "tasks": build(ROOT_ID),
        "links": [
            {"source": link.source, "target": link.target, "type": link.type.value}
            for link in all_links
        ],
    }


def load_gantt_yaml(file_path: Union[str, Path]) -> Optional[Dict[str, Any]]:
    """Parse a Gantt YAML file without importing it."""
    with open(file_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f)
