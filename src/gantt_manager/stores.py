"""
Task and Link repositories.

Thin SQLite repositories over GanttDatabase. Every write runs inside
``GanttDatabase.transaction()``, so a call made on its own commits before it
returns and a call made from the mutation engine joins the engine's transaction.
"""

import logging
import sqlite3
from typing import Any, Dict, Iterable, List

from .database import GanttDatabase
from .errors import NotFound, ValidationError
from .models import ROOT_ID, Link, LinkType, LinkUpdate, Task, TaskType, TaskUpdate
from .monitoring import timed_query

logger = logging.getLogger(__name__)

# TaskUpdate field name -> tasks column
TASK_COLUMNS = {
    "text": "text",
    "start_date": "start_date",
    "duration": "duration",
    "progress": "progress",
    "parent": "parent",
    "order": "sortorder",
    "type": "type",
    "open": "open",
}

# Guard against corrupted parent pointers when walking a subtree
MAX_TREE_DEPTH = 10000


def _to_column_value(name: str, value: Any) -> Any:
    if name == "type":
        return value.value if hasattr(value, "value") else value
    if name == "open":
        return 1 if value else 0
    return value


class TaskStore:
    """
    Durable table of tasks.

    Sibling ``order`` values are kept contiguous (0..n-1) under every parent:
    ``add`` appends or inserts and renumbers, ``delete`` compacts the remaining
    siblings.
    """

    def __init__(self, db: GanttDatabase):
        self.db = db

    @staticmethod
    def _row_to_task(row: sqlite3.Row) -> Task:
        return Task(
            id=int(row["id"]),
            text=row["text"] or "",
            start_date=row["start_date"],
            duration=int(row["duration"] or 0),
            progress=row["progress"] or 0,
            parent=int(row["parent"]),
            order=int(row["sortorder"]),
            type=TaskType(row["type"]),
            open=bool(row["open"]),
        )

    def _require_parent(self, parent_id: int) -> None:
        if parent_id != ROOT_ID and not self.exists(parent_id):
            raise NotFound(f"Parent task {parent_id} not found")

    @timed_query("task_add")
    def add(self, update: TaskUpdate) -> int:
        """
        Insert a task and return its durable id.

        The task is appended as the last child of its parent unless ``order`` was
        supplied, in which case it is inserted at that sibling index.
        """
        values = update.changes()
        parent_id = values.get("parent", ROOT_ID)
        defaults = Task(id=0)
        position = values.get("order")

        with self.db.transaction() as cursor:
            self._require_parent(parent_id)
            # The full sibling list is only needed for an insert in the middle
            siblings = self.sibling_ids(parent_id) if position is not None else None
            append_at = len(siblings) if siblings is not None else self.child_count(parent_id)

            cursor.execute("""
                INSERT INTO tasks (text, start_date, duration, progress, parent, sortorder, type, open)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                values.get("text", defaults.text),
                values.get("start_date", defaults.start_date),
                values.get("duration", defaults.duration),
                values.get("progress", defaults.progress),
                parent_id,
                append_at,
                _to_column_value("type", values.get("type", defaults.type)),
                _to_column_value("open", values.get("open", defaults.open)),
            ))
            task_id = int(cursor.lastrowid)

            if siblings is not None and position < len(siblings):
                siblings.insert(position, task_id)
                self.renumber(siblings)

        logger.debug(f"Task added id={task_id} parent={parent_id}")
        return task_id

    @timed_query("task_get_one")
    def get_one(self, task_id: int) -> Task:
        with self.db.read() as cursor:
            cursor.execute("SELECT * FROM tasks WHERE id = ?", (task_id,))
            row = cursor.fetchone()
        if row is None:
            raise NotFound(f"Task {task_id} not found")
        return self._row_to_task(row)

    @timed_query("task_get_all")
    def get_all(self) -> List[Task]:
        with self.db.read() as cursor:
            cursor.execute("SELECT * FROM tasks ORDER BY parent, sortorder, id")
            return [self._row_to_task(row) for row in cursor.fetchall()]

    def exists(self, task_id: int) -> bool:
        with self.db.read() as cursor:
            cursor.execute("SELECT 1 FROM tasks WHERE id = ?", (task_id,))
            return cursor.fetchone() is not None

    def children(self, parent_id: int) -> List[Task]:
        """Direct children of ``parent_id`` in sibling order."""
        with self.db.read() as cursor:
            cursor.execute(
                "SELECT * FROM tasks WHERE parent = ? ORDER BY sortorder, id",
                (parent_id,)
            )
            return [self._row_to_task(row) for row in cursor.fetchall()]

    def sibling_ids(self, parent_id: int) -> List[int]:
        """Ids of the children of ``parent_id`` in sibling order."""
        with self.db.read() as cursor:
            cursor.execute(
                "SELECT id FROM tasks WHERE parent = ? ORDER BY sortorder, id",
                (parent_id,)
            )
            return [int(row["id"]) for row in cursor.fetchall()]

    def child_count(self, parent_id: int) -> int:
        with self.db.read() as cursor:
            cursor.execute("SELECT COUNT(*) FROM tasks WHERE parent = ?", (parent_id,))
            return int(cursor.fetchone()[0])

    @timed_query("task_descendants")
    def descendants(self, task_id: int) -> List[Task]:
        """
        All tasks below ``task_id`` in depth-first pre-order.

        The subtree is loaded with one recursive query and ordered in memory.
        Every task appears after its parent and siblings keep their order. A
        visited set stops the walk if stored parent pointers ever form a loop.
        """
        with self.db.read() as cursor:
            # UNION (not UNION ALL) drops repeated rows, so a parent loop terminates
            cursor.execute("""
                WITH RECURSIVE subtree(id) AS (
                    SELECT id FROM tasks WHERE parent = ?
                    UNION
                    SELECT t.id FROM tasks t JOIN subtree s ON t.parent = s.id
                )
                SELECT tasks.* FROM tasks JOIN subtree ON tasks.id = subtree.id
                ORDER BY tasks.sortorder, tasks.id
            """, (task_id,))
            rows = cursor.fetchall()

        by_parent: Dict[int, List[Task]] = {}
        for row in rows:
            task = self._row_to_task(row)
            by_parent.setdefault(task.parent, []).append(task)

        result: List[Task] = []
        visited = {task_id}
        stack = [(child, 1) for child in reversed(by_parent.get(task_id, []))]

        while stack:
            task, depth = stack.pop()
            if task.id in visited:
                logger.warning(f"Parent loop detected at task {task.id} below {task_id}")
                continue
            if depth > MAX_TREE_DEPTH:
                raise ValidationError(f"Subtree of task {task_id} exceeds depth {MAX_TREE_DEPTH}")
            visited.add(task.id)
            result.append(task)
            stack.extend((child, depth + 1) for child in reversed(by_parent.get(task.id, [])))

        return result

    @timed_query("task_update")
    def update(self, task_id: int, update: TaskUpdate) -> None:
        """
        Write the supplied fields of ``update``; absent fields stay unchanged.

        ``parent`` and ``order`` are rejected here: relocating a task needs the
        cycle and sibling-order handling of ``HierarchyEngine``.
        """
        values = update.changes()
        placement = sorted(name for name in ("parent", "order") if name in values)
        if placement:
            raise ValidationError(
                f"TaskStore.update cannot change {', '.join(placement)}; use a move instead",
                details={"fields": placement},
            )

        with self.db.transaction() as cursor:
            if not self.exists(task_id):
                raise NotFound(f"Task {task_id} not found")
            if not values:
                return

            assignments = [f"{TASK_COLUMNS[name]} = ?" for name in values]
            params = [_to_column_value(name, value) for name, value in values.items()]
            params.append(task_id)
            cursor.execute(f"UPDATE tasks SET {', '.join(assignments)} WHERE id = ?", params)

        logger.debug(f"Task updated id={task_id} fields={sorted(values)}")

    def set_parent(self, task_id: int, parent_id: int) -> None:
        """Rewrite a parent pointer that the caller has already validated."""
        with self.db.transaction() as cursor:
            cursor.execute("UPDATE tasks SET parent = ? WHERE id = ?", (parent_id, task_id))
            if cursor.rowcount == 0:
                raise NotFound(f"Task {task_id} not found")

    def renumber(self, ordered_ids: List[int]) -> None:
        """Assign sortorder 0..n-1 following ``ordered_ids``."""
        if not ordered_ids:
            return
        with self.db.transaction() as cursor:
            cursor.executemany(
                "UPDATE tasks SET sortorder = ? WHERE id = ?",
                [(index, task_id) for index, task_id in enumerate(ordered_ids)]
            )

    @timed_query("task_delete")
    def delete(self, task_id: int) -> List[int]:
        """
        Delete a task together with its descendants and incident links.

        Returns:
            Ids of all removed tasks, the requested one first
        """
        with self.db.transaction() as cursor:
            task = self.get_one(task_id)
            removed = [task_id] + [t.id for t in self.descendants(task_id)]

            placeholders = ",".join("?" for _ in removed)
            # Links also cascade through the foreign keys; deleting them here keeps
            # the behaviour independent of PRAGMA foreign_keys
            cursor.execute(
                f"DELETE FROM links WHERE source IN ({placeholders}) OR target IN ({placeholders})",
                removed + removed
            )
            cursor.execute(f"DELETE FROM tasks WHERE id IN ({placeholders})", removed)

            self.renumber(self.sibling_ids(task.parent))

        logger.debug(f"Task deleted id={task_id} cascaded={len(removed) - 1}")
        return removed


class LinkStore:
    """Durable table of directed dependency links between tasks."""

    def __init__(self, db: GanttDatabase):
        self.db = db

    @staticmethod
    def _row_to_link(row: sqlite3.Row) -> Link:
        return Link(
            id=int(row["id"]),
            source=int(row["source"]),
            target=int(row["target"]),
            type=LinkType(row["type"]),
        )

    def _require_endpoint(self, name: str, task_id: int) -> None:
        with self.db.read() as cursor:
            cursor.execute("SELECT 1 FROM tasks WHERE id = ?", (task_id,))
            if cursor.fetchone() is None:
                raise ValidationError(f"Link {name} task {task_id} does not exist")

    @timed_query("link_add")
    def add(self, update: LinkUpdate) -> int:
        """Insert a link; both endpoints must reference existing tasks."""
        values = update.changes()
        if "source" not in values or "target" not in values:
            raise ValidationError("Link requires both source and target")
        link_type = values.get("type", LinkType.FINISH_TO_START)

        with self.db.transaction() as cursor:
            self._require_endpoint("source", values["source"])
            self._require_endpoint("target", values["target"])
            cursor.execute(
                "INSERT INTO links (source, target, type) VALUES (?, ?, ?)",
                (values["source"], values["target"], link_type.value)
            )
            link_id = int(cursor.lastrowid)

        logger.debug(f"Link added id={link_id} {values['source']}->{values['target']} {link_type.value}")
        return link_id

    def get_one(self, link_id: int) -> Link:
        with self.db.read() as cursor:
            cursor.execute("SELECT * FROM links WHERE id = ?", (link_id,))
            row = cursor.fetchone()
        if row is None:
            raise NotFound(f"Link {link_id} not found")
        return self._row_to_link(row)

    @timed_query("link_get_all")
    def get_all(self) -> List[Link]:
        with self.db.read() as cursor:
            cursor.execute("SELECT * FROM links ORDER BY id")
            return [self._row_to_link(row) for row in cursor.fetchall()]

    def incident(self, task_ids: Iterable[int]) -> List[Link]:
        """Links with at least one endpoint among ``task_ids``."""
        ids = list(task_ids)
        if not ids:
            return []
        placeholders = ",".join("?" for _ in ids)
        with self.db.read() as cursor:
            cursor.execute(
                f"SELECT * FROM links WHERE source IN ({placeholders}) OR target IN ({placeholders}) ORDER BY id",
                ids + ids
            )
            return [self._row_to_link(row) for row in cursor.fetchall()]

    @timed_query("link_update")
    def update(self, link_id: int, update: LinkUpdate) -> None:
        values = update.changes()
        with self.db.transaction() as cursor:
            self.get_one(link_id)
            if not values:
                return
            for name in ("source", "target"):
                if name in values:
                    self._require_endpoint(name, values[name])

            params: Dict[str, Any] = {
                name: (value.value if name == "type" else value) for name, value in values.items()
            }
            assignments = ", ".join(f"{name} = :{name}" for name in params)
            params["id"] = link_id
            cursor.execute(f"UPDATE links SET {assignments} WHERE id = :id", params)

    @timed_query("link_delete")
    def delete(self, link_id: int) -> None:
        with self.db.transaction() as cursor:
            cursor.execute("DELETE FROM links WHERE id = ?", (link_id,))
            if cursor.rowcount == 0:
                raise NotFound(f"Link {link_id} not found")
        logger.debug(f"Link deleted id={link_id}")
