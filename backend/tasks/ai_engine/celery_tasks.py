# tasks/ai_engine/celery_tasks.py

import logging
from typing import Any, Dict, List, Optional

from celery import shared_task

from .exceptions import InvalidTaskInputError
from .types import Task, WorkerContext

# Configure logging for background worker monitoring
logger = logging.getLogger(__name__)


def _get_orchestrator():
    # Imported lazily so the worker resolves the instance built in TasksConfig.ready()
    from tasks.apps import get_orchestrator

    return get_orchestrator()


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    dont_autoretry_for=(InvalidTaskInputError,),
    retry_backoff=True,
    retry_backoff_max=600,  # Max backoff of 10 minutes
    max_retries=3,
    time_limit=30,          # Hard limit for the task process
    soft_time_limit=25      # Soft limit to allow cleanup
)
def run_task_prioritization(
    self,
    tasks_payload: List[Dict[str, Any]],
    context_payload: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Worker: order a batch of task records for a crew and pick the next one.

    Input is plain JSON (task dicts + context dict) so the job can be queued
    straight from the realtime feed; nothing is persisted here.
    """
    logger.info(f"Task prioritization started for {len(tasks_payload)} task(s)")

    tasks = [Task.from_dict(item) for item in tasks_payload]
    context = WorkerContext.from_dict(context_payload)

    orchestrator = _get_orchestrator()
    next_task, decision = orchestrator.decide_next_task(tasks, context)

    logger.info(
        f"Task prioritization finished (fallback_used={decision.fallback_used}, "
        f"next={next_task.id if next_task else None})"
    )
    return {
        "ordered_task_ids": list(decision.decision),
        "next_task_id": next_task.id if next_task else None,
        "reasoning": decision.reasoning,
        "confidence": decision.confidence,
        "fallback_used": decision.fallback_used,
    }


@shared_task(ignore_result=True)
def sweep_expired_decisions() -> int:
    """Periodic sweep of the decision cache held by this worker process."""
    removed = _get_orchestrator().clear_expired_cache()
    logger.debug(f"Decision cache sweep removed {removed} entries")
    return removed
