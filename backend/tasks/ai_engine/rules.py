# tasks/ai_engine/rules.py

import datetime
import functools
import logging
import math
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional

from .exceptions import InvalidTaskInputError
from .types import (
    PRIORITY_VALUES,
    TASK_FIELDS,
    ConflictResolution,
    Task,
    TaskPrediction,
    TaskPriority,
    TaskStage,
    Weather,
    WorkerContext,
)

# Configure logging for rule-engine auditing
logger = logging.getLogger(__name__)


class RuleBasedDecisionEngine:
    """
    Deterministic construction-site rules used whenever the primary decision
    path is unavailable.

    Every method is pure. The Task objects passed in are never modified.
    """

    PRIORITY_RANK = {
        TaskPriority.CRITICAL.value: 4,
        TaskPriority.HIGH.value: 3,
        TaskPriority.MEDIUM.value: 2,
        TaskPriority.LOW.value: 1,
    }

    # Ready work before held work; unlisted stages rank 3
    STAGE_RANK = {
        TaskStage.IN_PROGRESS.value: 5,
        TaskStage.NOT_STARTED.value: 4,
        TaskStage.BLOCKED.value: 2,
        TaskStage.COMPLETED.value: 1,
    }
    DEFAULT_STAGE_RANK = 3

    STAGE_PROGRESSION = (
        TaskStage.NOT_STARTED.value,
        TaskStage.IN_PROGRESS.value,
        TaskStage.COMPLETED.value,
    )

    UNAVAILABLE_STAGES = frozenset({TaskStage.COMPLETED.value, TaskStage.BLOCKED.value})

    HOURS_PER_DAY = 8
    DEFAULT_ESTIMATED_HOURS = 8

    RISK_ACTIONS = ("Review dependencies", "Assign resources")

    # Fields with dedicated merge rules in resolve_conflict
    _MERGED_FIELDS = frozenset({"id", "safety_notes", "stage", "priority"})

    # -----------------------------------------------------------------------
    # Prioritization
    # -----------------------------------------------------------------------

    def prioritize_tasks(
        self, tasks: List[Task], context: Optional[WorkerContext] = None
    ) -> List[Task]:
        """
        Returns a new list ordered by the construction tie-break chain.

        The sort is stable, so tasks the chain cannot distinguish keep their
        input order.
        """
        context = context or WorkerContext()
        key = functools.cmp_to_key(lambda a, b: self._compare(a, b, context))
        return sorted(tasks, key=key)

    def _compare(self, a: Task, b: Task, context: WorkerContext) -> int:
        # 1. Safety-critical work has absolute precedence
        a_critical = a.priority == TaskPriority.CRITICAL
        b_critical = b.priority == TaskPriority.CRITICAL
        if a_critical != b_critical:
            return -1 if a_critical else 1

        # 2. Use good-weather windows for weather-dependent work
        if context.weather == Weather.GOOD and a.weather_dependent != b.weather_dependent:
            return -1 if a.weather_dependent else 1

        # 3. Inspections depend on an external schedule
        if a.inspection_required != b.inspection_required:
            return -1 if a.inspection_required else 1

        # 4. Standard priority order
        priority_diff = self.PRIORITY_RANK.get(b.priority, 0) - self.PRIORITY_RANK.get(a.priority, 0)
        if priority_diff:
            return priority_diff

        # 5. Due date urgency
        if a.due_date and b.due_date:
            if a.due_date != b.due_date:
                return -1 if a.due_date < b.due_date else 1
        elif a.due_date:
            return -1
        elif b.due_date:
            return 1

        # 6. Stage readiness
        return self._stage_rank(b.stage) - self._stage_rank(a.stage)

    def _stage_rank(self, stage: str) -> int:
        return self.STAGE_RANK.get(stage, self.DEFAULT_STAGE_RANK)

    # -----------------------------------------------------------------------
    # Eligibility
    # -----------------------------------------------------------------------

    def is_task_available(self, task: Task, context: Optional[WorkerContext] = None) -> bool:
        """Whether the task can be worked on right now given the site context."""
        context = context or WorkerContext()

        if task.stage in self.UNAVAILABLE_STAGES:
            return False

        if task.weather_dependent and context.weather == Weather.POOR:
            return False

        if task.trade_required and context.crew is not None:
            if task.trade_required not in context.crew.skills:
                return False

        if task.materials_needed and context.materials is not None:
            available = set(context.materials.available)
            if not all(material.name in available for material in task.materials_needed):
                return False

        return True

    def select_next_task(
        self, prioritized_tasks: List[Task], context: Optional[WorkerContext] = None
    ) -> Optional[Task]:
        """First task of an already prioritized list that passes the eligibility filter."""
        for task in prioritized_tasks:
            if self.is_task_available(task, context):
                return task
        return None

    # -----------------------------------------------------------------------
    # Lifecycle prediction
    # -----------------------------------------------------------------------

    def predict_task_lifecycle(
        self, task: Task, now: Optional[datetime.datetime] = None
    ) -> TaskPrediction:
        if now is None:
            now = datetime.datetime.now(datetime.timezone.utc)

        estimated_hours = task.estimated_hours or self.DEFAULT_ESTIMATED_HOURS
        days = math.ceil(estimated_hours / self.HOURS_PER_DAY)

        if task.weather_dependent:
            days += 1
        if task.inspection_required:
            days += 2
        if task.priority == TaskPriority.CRITICAL:
            days = max(1, days - 1)

        risk_factors = []
        if task.weather_dependent:
            risk_factors.append("Weather dependent")
        if task.materials_needed:
            risk_factors.append("Material dependencies")
        if not task.assigned_to:
            risk_factors.append("No assigned worker")

        risk_count = len(risk_factors)
        return TaskPrediction(
            predicted_completion=now + datetime.timedelta(days=days),
            risk_factors=tuple(risk_factors),
            recommended_actions=self.RISK_ACTIONS if risk_factors else (),
            confidence_score=round(max(0.3, 1.0 - 0.2 * risk_count), 4),
            bottleneck_likelihood=0.25 * risk_count,
        )

    # -----------------------------------------------------------------------
    # Conflict resolution
    # -----------------------------------------------------------------------

    def resolve_conflict(
        self,
        local_update: Optional[Mapping[str, Any]],
        remote_update: Optional[Mapping[str, Any]],
        original_task: Optional[Task],
    ) -> ConflictResolution:
        """
        Merges two concurrent partial edits made against the same base record.

        Safety notes are never dropped and stage never regresses. A
        disagreement on priority is left for a human to decide.
        """
        local, remote = self.validate_conflict_input(local_update, remote_update, original_task)

        resolved = original_task.as_patch()
        reasoning: List[str] = []
        requires_manual_review = False

        # Safety updates take precedence
        local_notes = local.get("safety_notes")
        remote_notes = remote.get("safety_notes")
        if local_notes or remote_notes:
            resolved["safety_notes"] = local_notes or remote_notes
            reasoning.append("Safety notes preserved.")

        # Progress updates: keep the most advanced stage
        local_stage = local.get("stage")
        remote_stage = remote.get("stage")
        if local_stage and remote_stage:
            local_index = self.progression_index(local_stage)
            remote_index = self.progression_index(remote_stage)
            if local_index < 0 and remote_index < 0 and local_stage != remote_stage:
                requires_manual_review = True
                reasoning.append("Stage conflict requires review.")
            else:
                resolved["stage"] = local_stage if local_index > remote_index else remote_stage
                reasoning.append("Used most advanced stage.")
        elif local_stage or remote_stage:
            resolved["stage"] = local_stage or remote_stage

        local_priority = local.get("priority")
        remote_priority = remote.get("priority")
        if local_priority and remote_priority and local_priority != remote_priority:
            requires_manual_review = True
            reasoning.append("Priority conflict requires review.")
        elif local_priority or remote_priority:
            resolved["priority"] = local_priority or remote_priority

        # Everything else: one-sided edits apply, the device's local edit wins a tie
        for name in TASK_FIELDS:
            if name in self._MERGED_FIELDS:
                continue
            if name in local and name in remote and local[name] != remote[name]:
                resolved[name] = local[name]
                reasoning.append(f"Kept local {name}.")
            elif name in local:
                resolved[name] = local[name]
            elif name in remote:
                resolved[name] = remote[name]

        if requires_manual_review:
            logger.info(f"Conflict on task {original_task.id} flagged for manual review")

        return ConflictResolution(
            resolved_task=resolved,
            reasoning=" ".join(reasoning) if reasoning else "No conflicts detected",
            confidence=0.5 if requires_manual_review else 0.8,
            requires_manual_review=requires_manual_review,
        )

    def validate_conflict_input(
        self,
        local_update: Optional[Mapping[str, Any]],
        remote_update: Optional[Mapping[str, Any]],
        original_task: Optional[Task],
    ):
        """
        Raises InvalidTaskInputError for malformed conflict input.

        Returns the two updates as plain dicts.
        """
        if original_task is None:
            raise InvalidTaskInputError("original_task is required for conflict resolution.")
        if not isinstance(original_task, Task):
            raise InvalidTaskInputError(
                f"original_task must be a Task, got {type(original_task).__name__}."
            )
        if not original_task.id:
            raise InvalidTaskInputError("original_task requires a non-empty id.")

        return (
            self._validate_update(local_update, original_task, "local_update"),
            self._validate_update(remote_update, original_task, "remote_update"),
        )

    def _validate_update(
        self, update: Optional[Mapping[str, Any]], original_task: Task, label: str
    ) -> Dict[str, Any]:
        if update is None:
            return {}
        if not isinstance(update, Mapping):
            raise InvalidTaskInputError(f"{label} must be a mapping of task fields.")

        unknown = set(update) - set(TASK_FIELDS)
        if unknown:
            raise InvalidTaskInputError(f"{label} has unknown task fields: {sorted(unknown)}")

        if "id" in update and update["id"] != original_task.id:
            raise InvalidTaskInputError(f"{label} cannot change the task id.")

        cleaned = dict(update)
        for name in ("priority", "stage"):
            if isinstance(cleaned.get(name), Enum):
                cleaned[name] = cleaned[name].value

        priority = cleaned.get("priority")
        if priority and priority not in PRIORITY_VALUES:
            raise InvalidTaskInputError(f"{label} has invalid priority: {priority!r}")

        return cleaned

    def progression_index(self, stage: str) -> int:
        """Position in not-started -> in-progress -> completed, or -1 outside it."""
        try:
            return self.STAGE_PROGRESSION.index(stage)
        except ValueError:
            return -1
