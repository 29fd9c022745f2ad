# tasks/ai_engine/__init__.py
"""
AI Engine Package
=================

Decision logic for construction task management: which task a crew
should do next, when a task is likely to finish, and how to merge two
concurrent offline edits of the same task.

Modules:
--------
- types: Task / WorkerContext records and decision value objects
- rules: Deterministic construction rules (the guaranteed fallback)
- cache: Bounded, expiring in-process decision cache
- orchestrator: Cache -> primary provider (with timeout) -> rules pipeline
- providers: Primary provider contract and the null provider
- external_provider: OpenAI-backed primary provider
- celery_tasks: Background prioritization and cache sweeping via Celery

Architecture:
-------------
All decisions flow through the TaskDecisionOrchestrator. Each result is
cached as an AIDecision carrying its provenance:

    AIDecision(
        decision=...,          # ordered ids / TaskPrediction / ConflictResolution
        reasoning=str,
        confidence=float,
        fallback_used=bool,    # True when the rule engine produced it
        timestamp=datetime,
    )

Usage:
------
    from tasks.ai_engine import TaskDecisionOrchestrator, Task, WorkerContext

    orchestrator = TaskDecisionOrchestrator()
    next_task = orchestrator.get_next_task(
        [Task(id="t-1", priority="high"), Task(id="t-2", priority="critical")],
        WorkerContext(weather="good"),
    )
"""

from .cache import DecisionCache
from .celery_tasks import run_task_prioritization, sweep_expired_decisions
from .exceptions import (
    InvalidTaskInputError,
    ProviderError,
    ProviderResponseError,
    ProviderUnavailableError,
    TaskEngineError,
)
from .external_provider import OpenAIDecisionProvider
from .orchestrator import TaskDecisionOrchestrator
from .providers import DecisionProvider, NullDecisionProvider
from .rules import RuleBasedDecisionEngine
from .types import (
    AIDecision,
    ConflictResolution,
    CrewAvailability,
    Material,
    MaterialAvailability,
    SafetyLevel,
    Task,
    TaskPrediction,
    TaskPriority,
    TaskStage,
    Weather,
    WorkerContext,
)

__all__ = [
    # Core classes
    "TaskDecisionOrchestrator",
    "RuleBasedDecisionEngine",
    "DecisionCache",
    "OpenAIDecisionProvider",
    "NullDecisionProvider",
    "DecisionProvider",
    # Records
    "AIDecision",
    "ConflictResolution",
    "CrewAvailability",
    "Material",
    "MaterialAvailability",
    "SafetyLevel",
    "Task",
    "TaskPrediction",
    "TaskPriority",
    "TaskStage",
    "Weather",
    "WorkerContext",
    # Errors
    "TaskEngineError",
    "InvalidTaskInputError",
    "ProviderError",
    "ProviderResponseError",
    "ProviderUnavailableError",
    # Celery tasks
    "run_task_prioritization",
    "sweep_expired_decisions",
]
