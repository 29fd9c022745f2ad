# tasks/ai_engine/orchestrator.py

import concurrent.futures
import copy
import functools
import logging
from collections.abc import Mapping
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from django.conf import settings

from .cache import DecisionCache
from .exceptions import InvalidTaskInputError
from .external_provider import OpenAIDecisionProvider
from .rules import RuleBasedDecisionEngine
from .types import AIDecision, ConflictResolution, Task, TaskPrediction, TaskPriority, WorkerContext

# Configure logging for pipeline auditing
logger = logging.getLogger(__name__)

DEFAULT_PRIMARY_TIMEOUT = 3.0  # seconds, keeps the field app responsive

OPERATION_PRIORITIZE = "prioritize_tasks"
OPERATION_PREDICT = "predict_task_lifecycle"
OPERATION_CONFLICT = "resolve_task_conflict"

PRIMARY_CONFIDENCE = 0.85
FALLBACK_CONFIDENCE = {
    OPERATION_PRIORITIZE: 0.7,
    OPERATION_CONFLICT: 0.65,
    OPERATION_PREDICT: 0.6,
}

REASONING_AI = {
    OPERATION_PRIORITIZE: "AI-powered construction prioritization",
    OPERATION_PREDICT: "AI lifecycle prediction",
    OPERATION_CONFLICT: "AI conflict resolution",
}
REASONING_FALLBACK = {
    OPERATION_PRIORITIZE: "Rule-based construction prioritization (AI unavailable)",
    OPERATION_PREDICT: "Rule-based prediction (AI unavailable)",
    OPERATION_CONFLICT: "Rule-based conflict resolution (AI unavailable)",
}


class TaskDecisionOrchestrator:
    """
    The public entry point for task decisions.

    Every operation follows the same pipeline:
      1. cache lookup (only a non-fallback entry short-circuits);
      2. primary provider raced against a timeout;
      3. rule-based fallback on timeout, error or no answer;
      4. cache store tagged with provenance.

    Primary-path failures are logged and absorbed. Only malformed input
    raises, and it does so before any cache or timeout logic runs.

    One instance is meant to live for the whole process (see
    TasksConfig.ready); its cache is the shared decision memory.
    """

    def __init__(
        self,
        provider: Optional[Any] = None,
        cache: Optional[DecisionCache] = None,
        rules_engine: Optional[RuleBasedDecisionEngine] = None,
        timeout: Optional[float] = None,
        skip_ai_init: bool = False,
    ):
        """
        Args:
            provider: Primary decision provider. Defaults to OpenAIDecisionProvider.
            cache: Decision cache. Defaults to a new DecisionCache.
            rules_engine: Fallback engine. Defaults to RuleBasedDecisionEngine.
            timeout: Primary path timeout in seconds (default: AI_PRIMARY_TIMEOUT or 3.0).
            skip_ai_init: Do not build a primary provider at all; always use the rules.
        """
        self.rules_engine = rules_engine or RuleBasedDecisionEngine()
        self.cache_manager = cache if cache is not None else DecisionCache()
        self.timeout = float(
            timeout if timeout is not None
            else getattr(settings, "AI_PRIMARY_TIMEOUT", DEFAULT_PRIMARY_TIMEOUT)
        )

        if skip_ai_init:
            self.ai_service = None
        else:
            self.ai_service = provider if provider is not None else OpenAIDecisionProvider()
        self.ai_available = self.ai_service is not None and getattr(
            self.ai_service, "is_configured", True
        )

    # -----------------------------------------------------------------------
    # Public operations
    # -----------------------------------------------------------------------

    def prioritize_tasks(
        self, tasks: Iterable[Task], context: Optional[WorkerContext] = None
    ) -> List[Task]:
        """Returns the caller's Task objects in recommended order."""
        tasks = self._validate_tasks(tasks)
        decision = self.decide_prioritization(tasks, context)
        return self._in_decided_order(tasks, decision)

    def get_next_task(
        self, tasks: Iterable[Task], context: Optional[WorkerContext] = None
    ) -> Optional[Task]:
        """Highest-priority task that can be worked on now, or None."""
        next_task, _ = self.decide_next_task(tasks, context)
        return next_task

    def predict_task_lifecycle(
        self, task: Task, context: Optional[WorkerContext] = None
    ) -> TaskPrediction:
        return self.decide_prediction(task, context).decision

    def resolve_task_conflict(
        self,
        local_update: Optional[Mapping],
        remote_update: Optional[Mapping],
        original_task: Task,
    ) -> ConflictResolution:
        # Cached resolutions are shared; hand out a private copy
        return self.decide_conflict(local_update, remote_update, original_task).decision.copy()

    def clear_expired_cache(self) -> int:
        return self.cache_manager.clear_expired()

    def health_check(self) -> Dict[str, Any]:
        provider_health = None
        if self.ai_service is not None and hasattr(self.ai_service, "health_check"):
            provider_health = self.ai_service.health_check()
        return {
            "orchestrator": "healthy",
            "rules_engine": "healthy",
            "ai_available": self.ai_available,
            "primary_timeout": self.timeout,
            "cache_entries": len(self.cache_manager),
            "provider": provider_health,
        }

    # -----------------------------------------------------------------------
    # Decisions with provenance
    # -----------------------------------------------------------------------

    def decide_prioritization(
        self, tasks: Iterable[Task], context: Optional[WorkerContext] = None
    ) -> AIDecision:
        """
        Prioritization decision whose payload is the ordered tuple of task ids.

        Ids rather than Task objects are cached so a cache hit never hands
        back stale copies of records that changed since the entry was made.
        """
        tasks = self._validate_tasks(tasks)
        context = self._validate_context(context)

        cache_key = self.cache_manager.prioritization_key(tasks, context)
        cached = self.cache_manager.get(cache_key)
        if cached is not None and not cached.fallback_used and self._covers(cached.decision, tasks):
            return cached

        generation = self.cache_manager.next_generation(cache_key)
        answer = None
        if tasks:
            answer = self._ask_primary(
                OPERATION_PRIORITIZE, "prioritize_tasks", copy.deepcopy(tasks), context
            )
        ordered_ids = self._validate_primary_ordering(answer, tasks) if answer is not None else None

        if ordered_ids is not None:
            decision = self._make_decision(OPERATION_PRIORITIZE, ordered_ids, fallback_used=False)
        else:
            ordered = self.rules_engine.prioritize_tasks(tasks, context)
            decision = self._make_decision(
                OPERATION_PRIORITIZE, tuple(task.id for task in ordered), fallback_used=True
            )

        self.cache_manager.put(cache_key, decision, generation=generation)
        return decision

    def decide_next_task(
        self, tasks: Iterable[Task], context: Optional[WorkerContext] = None
    ) -> Tuple[Optional[Task], AIDecision]:
        """Next eligible task together with the prioritization decision behind it."""
        tasks = self._validate_tasks(tasks)
        context = self._validate_context(context)
        decision = self.decide_prioritization(tasks, context)
        prioritized = self._in_decided_order(tasks, decision)
        return self.rules_engine.select_next_task(prioritized, context), decision

    def decide_prediction(
        self, task: Task, context: Optional[WorkerContext] = None
    ) -> AIDecision:
        self._validate_task(task)
        context = self._validate_context(context)

        cache_key = self.cache_manager.prediction_key(task)
        cached = self.cache_manager.get(cache_key)
        if cached is not None and not cached.fallback_used:
            return cached

        generation = self.cache_manager.next_generation(cache_key)
        answer = self._ask_primary(
            OPERATION_PREDICT, "predict_task_lifecycle", copy.deepcopy(task), context
        )
        if answer is not None and not isinstance(answer, TaskPrediction):
            logger.warning(
                f"Orchestrator: {OPERATION_PREDICT} primary path returned "
                f"{type(answer).__name__}; using rule-based fallback"
            )
            answer = None

        if answer is not None:
            decision = self._make_decision(OPERATION_PREDICT, answer, fallback_used=False)
        else:
            prediction = self.rules_engine.predict_task_lifecycle(task, now=self.cache_manager.now())
            decision = self._make_decision(OPERATION_PREDICT, prediction, fallback_used=True)

        self.cache_manager.put(cache_key, decision, generation=generation)
        return decision

    def decide_conflict(
        self,
        local_update: Optional[Mapping],
        remote_update: Optional[Mapping],
        original_task: Task,
    ) -> AIDecision:
        local, remote = self.rules_engine.validate_conflict_input(
            local_update, remote_update, original_task
        )

        cache_key = self.cache_manager.conflict_key(local, remote, original_task)
        cached = self.cache_manager.get(cache_key)
        if cached is not None and not cached.fallback_used:
            return cached

        generation = self.cache_manager.next_generation(cache_key)
        answer = self._ask_primary(
            OPERATION_CONFLICT,
            "resolve_conflict",
            copy.deepcopy(local),
            copy.deepcopy(remote),
            copy.deepcopy(original_task),
        )
        if answer is not None:
            answer = self._checked_resolution(answer, local, remote, original_task)

        if answer is not None:
            decision = self._make_decision(OPERATION_CONFLICT, answer, fallback_used=False)
        else:
            resolution = self.rules_engine.resolve_conflict(local, remote, original_task)
            decision = self._make_decision(OPERATION_CONFLICT, resolution, fallback_used=True)

        self.cache_manager.put(cache_key, decision, generation=generation)
        return decision

    # -----------------------------------------------------------------------
    # Primary path
    # -----------------------------------------------------------------------

    def _ask_primary(self, operation: str, method_name: str, *args: Any) -> Any:
        """
        Races one provider call against the timeout.

        Returns the provider's answer, or None on timeout, error or "no answer".
        The call runs on a throwaway thread; a losing call is abandoned and its
        eventual result discarded.
        """
        if self.ai_service is None:
            logger.warning(f"Orchestrator: {operation} has no primary provider; using rule-based fallback")
            return None

        call: Callable[..., Any] = getattr(self.ai_service, method_name)
        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"primary-{operation}"
        )
        try:
            future = executor.submit(call, *args)
        finally:
            # Let the worker thread exit once the call returns; never wait on it.
            # The thread is not a daemon and is joined at interpreter exit, so an
            # abandoned call can hold shutdown for up to the provider's own timeout.
            executor.shutdown(wait=False)

        try:
            answer = future.result(timeout=self.timeout)
        except concurrent.futures.TimeoutError:
            future.add_done_callback(functools.partial(self._discard_late_answer, operation))
            logger.warning(
                f"Orchestrator: {operation} primary path timed out after {self.timeout}s; "
                f"using rule-based fallback"
            )
            return None
        except Exception as e:
            logger.warning(
                f"Orchestrator: {operation} primary path failed ({type(e).__name__}: {e}); "
                f"using rule-based fallback"
            )
            return None

        if answer is None or (isinstance(answer, (list, tuple)) and not answer):
            logger.warning(f"Orchestrator: {operation} primary path gave no answer; using rule-based fallback")
            return None
        return answer

    @staticmethod
    def _discard_late_answer(operation: str, future: concurrent.futures.Future) -> None:
        if future.cancelled():
            return
        if future.exception() is not None:
            logger.debug(f"Orchestrator: late {operation} primary call failed after timeout")
        else:
            logger.debug(f"Orchestrator: discarded late {operation} primary answer")

    def _validate_primary_ordering(
        self, answer: Any, tasks: List[Task]
    ) -> Optional[Tuple[str, ...]]:
        """
        Coerces a primary ordering into a permutation of the input ids.

        Unknown and duplicate entries are dropped; input tasks the provider
        left out are appended in their original order.
        """
        if not isinstance(answer, (list, tuple)):
            logger.warning(
                f"Orchestrator: {OPERATION_PRIORITIZE} primary path returned "
                f"{type(answer).__name__}; using rule-based fallback"
            )
            return None

        known = {task.id for task in tasks}
        ordered: List[str] = []
        seen = set()
        for entry in answer:
            task_id = entry if isinstance(entry, str) else getattr(entry, "id", None)
            if task_id in known and task_id not in seen:
                ordered.append(task_id)
                seen.add(task_id)

        if not ordered:
            logger.warning(
                f"Orchestrator: {OPERATION_PRIORITIZE} primary ordering matched no input tasks; "
                f"using rule-based fallback"
            )
            return None

        missing = [task.id for task in tasks if task.id not in seen]
        if missing:
            logger.info(f"Orchestrator: primary ordering omitted {len(missing)} task(s); appended in input order")

        # Critical work always leads; the primary order holds within each group
        critical = {task.id for task in tasks if task.priority == TaskPriority.CRITICAL}
        repaired = ordered + missing
        return tuple(
            [task_id for task_id in repaired if task_id in critical]
            + [task_id for task_id in repaired if task_id not in critical]
        )

    def _checked_resolution(
        self,
        answer: Any,
        local: Dict[str, Any],
        remote: Dict[str, Any],
        original_task: Task,
    ) -> Optional[ConflictResolution]:
        """
        Holds a primary resolution to the merge rules the rule engine guarantees.

        Returns None (use the fallback) when the answer loses the safety note
        either side set or moves the stage behind the most advanced edit. A
        priority disagreement is always handed to a human.
        """
        reason = None
        if not isinstance(answer, ConflictResolution):
            reason = f"returned {type(answer).__name__}"
        else:
            resolved = answer.resolved_task
            expected_notes = local.get("safety_notes") or remote.get("safety_notes")
            if expected_notes and resolved.get("safety_notes") != expected_notes:
                reason = "did not preserve the safety notes"

            edited_stages = [s for s in (local.get("stage"), remote.get("stage")) if s]
            most_advanced = max(
                (self.rules_engine.progression_index(s) for s in edited_stages), default=-1
            )
            if most_advanced >= 0 and self.rules_engine.progression_index(
                resolved.get("stage", original_task.stage)
            ) < most_advanced:
                reason = "regressed the task stage"

        if reason is not None:
            logger.warning(
                f"Orchestrator: {OPERATION_CONFLICT} primary answer {reason}; "
                f"using rule-based fallback"
            )
            return None

        local_priority = local.get("priority")
        remote_priority = remote.get("priority")
        if local_priority and remote_priority and local_priority != remote_priority:
            if not answer.requires_manual_review or resolved.get("priority") != original_task.priority:
                logger.info(
                    f"Orchestrator: priority conflict on task {original_task.id} "
                    f"flagged for manual review"
                )
            answer = answer.copy()
            answer.resolved_task["priority"] = original_task.priority
            answer.requires_manual_review = True
        return answer

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    def _make_decision(self, operation: str, payload: Any, fallback_used: bool) -> AIDecision:
        return AIDecision(
            decision=payload,
            reasoning=REASONING_FALLBACK[operation] if fallback_used else REASONING_AI[operation],
            confidence=FALLBACK_CONFIDENCE[operation] if fallback_used else PRIMARY_CONFIDENCE,
            fallback_used=fallback_used,
            timestamp=self.cache_manager.now(),
        )

    @staticmethod
    def _in_decided_order(tasks: List[Task], decision: AIDecision) -> List[Task]:
        by_id = {task.id: task for task in tasks}
        return [by_id[task_id] for task_id in decision.decision]

    @staticmethod
    def _covers(ordered_ids: Tuple[str, ...], tasks: List[Task]) -> bool:
        # Guards against truncated-hash collisions between different task sets
        return len(ordered_ids) == len(tasks) and set(ordered_ids) == {task.id for task in tasks}

    def _validate_tasks(self, tasks: Optional[Iterable[Task]]) -> List[Task]:
        if tasks is None:
            raise InvalidTaskInputError("tasks is required.")
        tasks = list(tasks)
        seen = set()
        for task in tasks:
            self._validate_task(task)
            if task.id in seen:
                raise InvalidTaskInputError(f"Duplicate task id: {task.id}")
            seen.add(task.id)
        return tasks

    @staticmethod
    def _validate_task(task: Any) -> None:
        if not isinstance(task, Task):
            raise InvalidTaskInputError(f"Expected a Task, got {type(task).__name__}.")
        if not task.id or not isinstance(task.id, str):
            raise InvalidTaskInputError("Task id must be a non-empty string.")

    @staticmethod
    def _validate_context(context: Any) -> WorkerContext:
        if context is None:
            return WorkerContext()
        if isinstance(context, WorkerContext):
            return context
        if isinstance(context, Mapping):
            return WorkerContext.from_dict(dict(context))
        raise InvalidTaskInputError(f"Expected a WorkerContext, got {type(context).__name__}.")
