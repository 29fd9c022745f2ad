# tasks/apps.py

import logging

from django.apps import AppConfig, apps

logger = logging.getLogger(__name__)


class TasksConfig(AppConfig):
    """
    Owns the process-wide TaskDecisionOrchestrator.

    The orchestrator (and with it the decision cache) is built once when
    Django starts and lives until the process exits. It is only ever reset
    through its own cache operations.
    """

    name = 'tasks'
    verbose_name = 'Construction tasks'

    orchestrator = None

    def ready(self):
        from .ai_engine.orchestrator import TaskDecisionOrchestrator

        self.orchestrator = TaskDecisionOrchestrator()
        logger.info(
            f"Task decision orchestrator ready (ai_available={self.orchestrator.ai_available})"
        )


def get_orchestrator():
    return apps.get_app_config('tasks').orchestrator
