# tasks/ai_engine/providers.py
"""
Primary decision provider contract.

A provider attempts a higher-quality decision than the rule engine. It may
be slow and it may fail; the orchestrator guards every call with a timeout.

Contract for every method:
- return the same shape as the matching RuleBasedDecisionEngine method;
- return None when there is no useful answer (not an error);
- raise only for genuine transport or logic failures.
"""

from typing import Any, List, Mapping, Optional, Protocol

from .types import ConflictResolution, Task, TaskPrediction, WorkerContext


class DecisionProvider(Protocol):
    def prioritize_tasks(
        self, tasks: List[Task], context: WorkerContext
    ) -> Optional[List[Task]]:
        ...

    def predict_task_lifecycle(
        self, task: Task, context: WorkerContext
    ) -> Optional[TaskPrediction]:
        ...

    def resolve_conflict(
        self,
        local_update: Mapping[str, Any],
        remote_update: Mapping[str, Any],
        original_task: Task,
    ) -> Optional[ConflictResolution]:
        ...


class NullDecisionProvider:
    """A permanently absent primary path: every call answers "no answer"."""

    is_configured = False

    def prioritize_tasks(self, tasks, context):
        return None

    def predict_task_lifecycle(self, task, context):
        return None

    def resolve_conflict(self, local_update, remote_update, original_task):
        return None

    def health_check(self):
        return {"is_configured": False, "provider": "null"}
