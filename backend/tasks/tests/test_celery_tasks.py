# tasks/tests/test_celery_tasks.py
"""
Celery task tests, executed synchronously with .apply() (no broker).
"""

import datetime
from unittest.mock import patch

from django.test import SimpleTestCase

from tasks.ai_engine.cache import DecisionCache
from tasks.ai_engine.celery_tasks import run_task_prioritization, sweep_expired_decisions
from tasks.ai_engine.exceptions import InvalidTaskInputError
from tasks.ai_engine.orchestrator import TaskDecisionOrchestrator
from tasks.ai_engine.providers import NullDecisionProvider
from tasks.ai_engine.types import Task
from tasks.apps import get_orchestrator


class FakeClock:
    def __init__(self):
        self.current = datetime.datetime(2024, 6, 1, 8, 0, tzinfo=datetime.timezone.utc)

    def __call__(self):
        return self.current


class TestCeleryTasks(SimpleTestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.orchestrator = TaskDecisionOrchestrator(
            provider=NullDecisionProvider(),
            cache=DecisionCache(clock=self.clock),
            timeout=1.0,
        )
        patcher = patch(
            "tasks.ai_engine.celery_tasks._get_orchestrator", return_value=self.orchestrator
        )
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_prioritization_job_returns_plain_json(self):
        tasks_payload = [
            {"id": "roof", "priority": "high", "weather_dependent": True},
            {"id": "trench", "priority": "critical", "stage": "blocked"},
            {"id": "drywall", "priority": "medium"},
        ]

        result = run_task_prioritization.apply(args=[tasks_payload, {"weather": "poor"}]).get()

        self.assertEqual(result["ordered_task_ids"], ["trench", "roof", "drywall"])
        self.assertEqual(result["next_task_id"], "drywall")
        self.assertTrue(result["fallback_used"])
        self.assertEqual(result["confidence"], 0.7)

    def test_prioritization_job_with_nothing_workable(self):
        result = run_task_prioritization.apply(args=[[{"id": "done", "stage": "completed"}]]).get()

        self.assertEqual(result["ordered_task_ids"], ["done"])
        self.assertIsNone(result["next_task_id"])

    def test_invalid_payload_raises(self):
        with self.assertRaises(InvalidTaskInputError):
            run_task_prioritization.apply(args=[[{"title": "no id"}]]).get()

    def test_non_numeric_time_of_day_is_an_input_error(self):
        # InvalidTaskInputError is excluded from autoretry
        with self.assertRaises(InvalidTaskInputError):
            run_task_prioritization.apply(args=[[{"id": "a"}], {"time_of_day": "dawn"}]).get()

    def test_sweep_removes_expired_decisions(self):
        with self.assertLogs("tasks.ai_engine.orchestrator", level="WARNING"):
            self.orchestrator.decide_prioritization([Task(id="a")])
        self.clock.current += datetime.timedelta(minutes=16)

        removed = sweep_expired_decisions.apply().get()

        self.assertEqual(removed, 1)
        self.assertEqual(len(self.orchestrator.cache_manager), 0)


class TestAppOrchestrator(SimpleTestCase):

    def test_app_builds_one_orchestrator(self):
        orchestrator = get_orchestrator()

        self.assertIsInstance(orchestrator, TaskDecisionOrchestrator)
        self.assertIs(orchestrator, get_orchestrator())
