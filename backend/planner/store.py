"""Persistence of goals and their task plans.

A plan (tasks plus dependency edges) is written inside one transaction: if
any insert fails, nothing for that goal is left behind.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple
from uuid import UUID

from django.db import DatabaseError, transaction

from .errors import GoalNotFound, InvalidStatusTransition, StorageError, TaskNotFound
from .graph import AssembledTask
from .models import Goal, Task, TaskDependency, TaskStatus

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    TaskStatus.PENDING.value: frozenset({TaskStatus.IN_PROGRESS.value, TaskStatus.COMPLETED.value}),
    TaskStatus.IN_PROGRESS.value: frozenset({TaskStatus.COMPLETED.value}),
    TaskStatus.COMPLETED.value: frozenset(),
}


@dataclass
class PersistedPlan:
    goal: Goal
    tasks: List[Task]
    dependencies: List[TaskDependency]

    @property
    def total_hours(self) -> float:
        return round(sum(t.estimated_hours for t in self.tasks), 1)

    @property
    def completed_count(self) -> int:
        return sum(1 for t in self.tasks if t.status == TaskStatus.COMPLETED)


class PlanStore:

    def create_goal_with_plan(self,
                              owner,
                              title: str,
                              description: str,
                              target_date: Optional[datetime],
                              tasks: Sequence[AssembledTask],
                              edges: Sequence[Tuple[UUID, UUID]]) -> PersistedPlan:
        """Create the goal row and its plan in a single transaction."""
        try:
            with transaction.atomic():
                goal = Goal.objects.create(
                    owner=owner,
                    title=title,
                    description=description or "",
                    target_date=target_date,
                )
                return self.create_plan(goal.id, tasks, edges)
        except DatabaseError as e:
            logger.exception("PlanStore.create_goal_with_plan, failed to create goal.")
            raise StorageError() from e

    def create_plan(self,
                    goal_id: UUID,
                    tasks: Sequence[AssembledTask],
                    edges: Sequence[Tuple[UUID, UUID]]) -> PersistedPlan:
        """Persist all tasks and dependency edges for a goal, or none of them.

        Raises:
            StorageError: if the goal is missing, already has a plan, an edge
                points outside the plan, or the database rejects a write.
        """
        known_ids = {t.id for t in tasks}
        for task_id, depends_on_task_id in edges:
            if task_id not in known_ids or depends_on_task_id not in known_ids:
                raise StorageError(f"Dependency {task_id} -> {depends_on_task_id} references a task outside the plan")

        try:
            with transaction.atomic():
                goal = Goal.objects.select_for_update().get(pk=goal_id)
                if goal.tasks.exists():
                    raise StorageError(f"Goal {goal_id} already has a task plan")

                rows = Task.objects.bulk_create([
                    Task(
                        id=t.id,
                        goal=goal,
                        title=t.draft.title,
                        description=t.draft.description,
                        estimated_hours=t.draft.estimated_hours,
                        priority=t.draft.priority,
                        status=TaskStatus.PENDING,
                        order_index=t.draft.order_index,
                    )
                    for t in tasks
                ])
                dependencies = TaskDependency.objects.bulk_create([
                    TaskDependency(task_id=task_id, depends_on_task_id=depends_on_task_id)
                    for task_id, depends_on_task_id in edges
                ])
        except Goal.DoesNotExist:
            raise StorageError(f"Goal {goal_id} does not exist")
        except DatabaseError as e:
            logger.exception(f"PlanStore.create_plan, rolled back plan for goal {goal_id}.")
            raise StorageError() from e

        logger.info(f"PlanStore.create_plan, goal {goal_id}: {len(rows)} tasks, {len(dependencies)} dependencies.")
        return PersistedPlan(
            goal=goal,
            tasks=sorted(rows, key=lambda t: t.order_index),
            dependencies=list(dependencies),
        )

    def get_plan(self, goal_id: UUID, owner=None) -> PersistedPlan:
        goals = Goal.objects.all()
        if owner is not None:
            goals = goals.filter(owner=owner)
        try:
            goal = goals.get(pk=goal_id)
        except Goal.DoesNotExist:
            raise GoalNotFound()
        return PersistedPlan(
            goal=goal,
            tasks=list(goal.tasks.order_by("order_index")),
            dependencies=list(
                TaskDependency.objects.filter(task__goal=goal)
                .order_by("task__order_index", "depends_on_task__order_index")
            ),
        )

    def update_task_status(self, task_id: UUID, new_status: str, owner=None) -> Task:
        """Move a task to ``new_status``.

        Raises:
            TaskNotFound: if there is no such task (for ``owner``, when given).
            InvalidStatusTransition: if the transition is not allowed.
        """
        with transaction.atomic():
            candidates = Task.objects.select_for_update()
            if owner is not None:
                candidates = candidates.filter(goal__owner=owner)
            try:
                task = candidates.get(pk=task_id)
            except Task.DoesNotExist:
                raise TaskNotFound()

            if new_status not in ALLOWED_TRANSITIONS[task.status]:
                raise InvalidStatusTransition(f"Cannot move a task from {task.status!r} to {new_status!r}")

            task.status = new_status
            task.save(update_fields=["status"])

        logger.info(f"PlanStore.update_task_status, task {task_id} -> {new_status}.")
        return task
