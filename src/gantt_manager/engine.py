"""
Hierarchy Mutation Engine

Implements update, move, copy (flat or nested) and delete of tasks in the
parent-pointer tree, rewriting parent pointers, sibling order and link
endpoints. Each operation runs in a single GanttDatabase transaction: cycle and
argument checks happen before the first write, and any failure rolls the tree
back to its previous state.

Sibling order policy: only the sibling lists of the parents an operation
touches are rewritten, always to contiguous 0..n-1 values.
"""

import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Tuple, Union

from .database import GanttDatabase
from .errors import CycleError, GanttError, NotFound, ValidationError
from .identity import IdentityResolver
from .models import (
    ROOT_ID,
    BatchItem,
    LinkUpdate,
    MoveMode,
    Operation,
    Task,
    TaskMutation,
    TaskUpdate,
    parse_model,
)
from .monitoring import performance_monitor
from .stores import LinkStore, TaskStore

logger = logging.getLogger(__name__)

# Id-valued fields rewritten through the resolver in batch payloads
TASK_REFERENCE_FIELDS = ("parent", "target")
LINK_REFERENCE_FIELDS = ("source", "target")


def _parse_enum(enum_cls, value: Any, label: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        choices = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Unknown {label} '{value}'. Valid options: {choices}")


class HierarchyEngine:
    """
    Structural mutations over the task tree.

    The engine keeps no state between calls: every operation re-reads the rows
    it needs inside its own transaction.
    """

    def __init__(self, db: GanttDatabase, tasks: Optional[TaskStore] = None,
                 links: Optional[LinkStore] = None):
        self.db = db
        self.tasks = tasks or TaskStore(db)
        self.links = links or LinkStore(db)
        # Mutations applied inside a caller's transaction, recorded once it commits
        self._pending_metrics: List[Tuple[str, float]] = []

    # ---- entry point ----

    def mutate(self, task_id: int, operation: Union[Operation, str],
               fields: Union[TaskMutation, Mapping[str, Any], None] = None) -> int:
        """
        Apply one mutation to ``task_id`` and return the affected task id.

        Args:
            task_id: Task the operation applies to
            operation: update, move, copy or delete
            fields: Partial task attributes plus ``target``, ``mode``, ``nested``

        Returns:
            The task's own id, or the id of the new root task for copy

        Raises:
            NotFound, ValidationError, CycleError, StoreError
        """
        op = _parse_enum(Operation, operation, "operation")
        joined = self.db.in_transaction
        started = time.perf_counter()

        try:
            mutation = parse_model(TaskMutation, fields)
            if op is Operation.UPDATE:
                result = self.update(task_id, mutation.task_update())
            elif op is Operation.MOVE:
                result = self.move(task_id, mutation.target, mutation.mode, order=mutation.order)
            elif op is Operation.COPY:
                result = self.copy(task_id, mutation.target, mutation.mode,
                                   nested=mutation.nested, order=mutation.order)
            else:
                result = self.delete(task_id)
        except GanttError as e:
            performance_monitor.record_rejection(op.value, e.code)
            logger.info(f"Mutation {op.value} on task {task_id} failed: {e.message}")
            raise

        elapsed_ms = (time.perf_counter() - started) * 1000
        if joined:
            self._pending_metrics.append((op.value, elapsed_ms))
            logger.debug(f"Mutation {op.value} on task {task_id} applied, affected task {result}")
        else:
            performance_monitor.record_mutation(op.value, elapsed_ms)
            logger.info(f"Mutation {op.value} on task {task_id} committed, affected task {result}")
        return result

    # ---- operations ----

    def update(self, task_id: int, update: TaskUpdate) -> int:
        """
        Apply a partial field change to one task.

        A supplied ``parent`` different from the current one (or an explicit
        ``order``) relocates the task as the child of that parent with the same
        validation as move; every other field is written as-is.
        """
        values = update.changes()
        new_parent = values.pop("parent", None)
        order = values.pop("order", None)

        with self.db.transaction():
            task = self.tasks.get_one(task_id)
            reparent = new_parent is not None and new_parent != task.parent
            if reparent or (order is not None and order != task.order):
                target = task.parent if new_parent is None else new_parent
                self._relocate(task, target, MoveMode.CHILD, order)
            if values:
                self.tasks.update(task_id, TaskUpdate.model_validate(values))

        return task_id

    def move(self, task_id: int, target: Optional[int], mode: Union[MoveMode, str, None],
             order: Optional[int] = None) -> int:
        """
        Relocate a task (and implicitly its subtree) relative to ``target``.

        ``child`` makes the task the last child of target (or the child at index
        ``order``); ``before``/``after`` place it next to target under target's
        parent. Links are untouched.
        """
        if task_id == ROOT_ID:
            raise ValidationError("The root task cannot be moved")
        target, mode = self._require_placement(target, mode)

        with self.db.transaction():
            task = self.tasks.get_one(task_id)
            self._relocate(task, target, mode, order)

        return task_id

    def copy(self, task_id: int, target: Optional[int], mode: Union[MoveMode, str, None],
             nested: bool = False, order: Optional[int] = None) -> int:
        """
        Duplicate a task relative to ``target``.

        Without ``nested`` only the task's own fields are copied. With ``nested``
        the whole subtree is duplicated depth-first, then every link touching the
        subtree is re-created against the new ids; endpoints outside the subtree
        are kept as they are.

        Returns:
            Id of the new top-level task
        """
        if task_id == ROOT_ID:
            raise ValidationError("The root task cannot be copied")
        target, mode = self._require_placement(target, mode)

        with self.db.transaction():
            source = self.tasks.get_one(task_id)
            descendants = self.tasks.descendants(task_id) if nested else []

            if nested:
                inner = {t.id for t in descendants}
                if target in inner or (target == task_id and mode is MoveMode.CHILD):
                    raise CycleError(
                        f"Cannot copy task {task_id} with its subtree into itself (target {target})",
                        details={"task_id": task_id, "target": target},
                    )

            parent_id, index, _ = self._resolve_position(target, mode, order, exclude=None)

            id_map: Dict[int, int] = {}
            id_map[source.id] = self.tasks.add(self._duplicate(source, parent_id, index))
            for task in descendants:
                # Pre-order guarantees the parent copy already exists
                id_map[task.id] = self.tasks.add(self._duplicate(task, id_map[task.parent]))

            copied_links = self._copy_links(id_map) if nested else 0

        logger.info(
            f"Copied task {task_id} as {id_map[task_id]}: "
            f"{len(id_map)} tasks, {copied_links} links"
        )
        return id_map[task_id]

    def delete(self, task_id: int) -> int:
        """Remove a task, its descendants and every link incident to them."""
        if task_id == ROOT_ID:
            raise ValidationError("The root task cannot be deleted")

        with self.db.transaction():
            removed = self.tasks.delete(task_id)

        logger.info(f"Deleted task {task_id} and {len(removed) - 1} descendants")
        return task_id

    def apply_batch(self, items: Sequence[Union[BatchItem, Mapping[str, Any]]],
                    resolver: Optional[IdentityResolver] = None) -> Tuple[Dict[str, int], List[int]]:
        """
        Execute task and link operations in order within one transaction.

        Ids created by ``insert`` items are bound to the item's tentative id so
        later items can reference them. Any failure rolls back the whole batch.

        Returns:
            (tentative id bindings, affected id per item)
        """
        resolver = resolver or IdentityResolver()
        results: List[int] = []
        self._pending_metrics.clear()

        try:
            with self.db.transaction():
                for raw in items:
                    item = parse_model(BatchItem, raw)
                    if item.entity == "task":
                        results.append(self._apply_task_item(item, resolver))
                    else:
                        results.append(self._apply_link_item(item, resolver))
        except GanttError:
            self._pending_metrics.clear()
            raise

        # Only a committed batch counts its mutations
        if not self.db.in_transaction:
            for op_name, elapsed_ms in self._pending_metrics:
                performance_monitor.record_mutation(op_name, elapsed_ms)
            self._pending_metrics.clear()

        logger.info(f"Batch of {len(results)} items committed, {len(resolver)} new ids bound")
        return resolver.items(), results

    # ---- helpers ----

    def _apply_task_item(self, item: BatchItem, resolver: IdentityResolver) -> int:
        data = resolver.resolve_fields(item.data, TASK_REFERENCE_FIELDS)
        if item.action == "insert":
            new_id = self.tasks.add(parse_model(TaskUpdate, data))
            if item.id is not None:
                resolver.bind(item.id, new_id)
            return new_id

        task_id = resolver.resolve(item.id)
        if item.action == "delete":
            return self.mutate(task_id, Operation.DELETE)
        return self.mutate(task_id, data.get("operation", Operation.UPDATE), data)

    def _apply_link_item(self, item: BatchItem, resolver: IdentityResolver) -> int:
        data = resolver.resolve_fields(item.data, LINK_REFERENCE_FIELDS)
        if item.action == "insert":
            new_id = self.links.add(parse_model(LinkUpdate, data))
            if item.id is not None:
                resolver.bind(item.id, new_id)
            return new_id

        link_id = resolver.resolve(item.id)
        if item.action == "delete":
            self.links.delete(link_id)
        else:
            self.links.update(link_id, parse_model(LinkUpdate, data))
        return link_id

    @staticmethod
    def _require_placement(target: Optional[int], mode: Union[MoveMode, str, None]) -> Tuple[int, MoveMode]:
        if target is None:
            raise ValidationError("A target task is required")
        if mode is None:
            raise ValidationError("A mode is required (child, before or after)")
        return target, _parse_enum(MoveMode, mode, "mode")

    def _subtree_ids(self, task_id: int) -> Set[int]:
        return {task_id} | {t.id for t in self.tasks.descendants(task_id)}

    def _resolve_position(self, target: int, mode: MoveMode, order: Optional[int],
                          exclude: Optional[int]) -> Tuple[int, int, List[int]]:
        """
        Work out where a task lands.

        Returns:
            (new parent id, sibling index, current sibling ids without ``exclude``)
        """
        if mode is MoveMode.CHILD:
            if target != ROOT_ID and not self.tasks.exists(target):
                raise NotFound(f"Target task {target} not found")
            siblings = [i for i in self.tasks.sibling_ids(target) if i != exclude]
            index = len(siblings) if order is None else min(order, len(siblings))
            return target, index, siblings

        if target == ROOT_ID:
            raise ValidationError(f"Mode '{mode.value}' requires a task target, not the root")
        anchor = self.tasks.get_one(target)
        siblings = [i for i in self.tasks.sibling_ids(anchor.parent) if i != exclude]
        index = siblings.index(target)
        if mode is MoveMode.AFTER:
            index += 1
        return anchor.parent, index, siblings

    def _relocate(self, task: Task, target: int, mode: MoveMode, order: Optional[int]) -> None:
        """Validate and apply a new (parent, index) for an existing task."""
        if target in self._subtree_ids(task.id):
            raise CycleError(
                f"Cannot move task {task.id} relative to {target}: target is inside its subtree",
                details={"task_id": task.id, "target": target},
            )

        parent_id, index, siblings = self._resolve_position(target, mode, order, exclude=task.id)
        siblings.insert(index, task.id)

        if parent_id != task.parent:
            self.tasks.set_parent(task.id, parent_id)
            self.tasks.renumber([i for i in self.tasks.sibling_ids(task.parent) if i != task.id])
        self.tasks.renumber(siblings)

        logger.debug(f"Task {task.id} placed under {parent_id} at index {index}")

    @staticmethod
    def _duplicate(task: Task, parent_id: int, order: Optional[int] = None) -> TaskUpdate:
        fields: Dict[str, Any] = {
            "text": task.text,
            "start_date": task.start_date,
            "duration": task.duration,
            "progress": task.progress,
            "type": task.type,
            "open": task.open,
            "parent": parent_id,
        }
        if order is not None:
            fields["order"] = order
        return TaskUpdate.model_validate(fields)

    def _copy_links(self, id_map: Dict[int, int]) -> int:
        """Re-create links touching the copied subtree against the new ids."""
        originals = self.links.incident(id_map.keys())
        for link in originals:
            self.links.add(LinkUpdate(
                source=id_map.get(link.source, link.source),
                target=id_map.get(link.target, link.target),
                type=link.type,
            ))
        return len(originals)
