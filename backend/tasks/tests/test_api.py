# tasks/tests/test_api.py
"""
HTTP surface tests for the decision endpoints.

The orchestrator is swapped for one with a null primary provider so every
response is a deterministic rule-based decision.
"""

from unittest.mock import patch

from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from tasks.ai_engine.cache import DecisionCache
from tasks.ai_engine.orchestrator import TaskDecisionOrchestrator
from tasks.ai_engine.providers import NullDecisionProvider


def task_payloads():
    return [
        {"id": "T3", "title": "Drywall", "priority": "medium", "stage": "in-progress"},
        {"id": "T2", "title": "Roofing", "priority": "high", "weather_dependent": True},
        {"id": "T1", "title": "Shore trench", "priority": "critical"},
    ]


class DecisionAPITestCase(APITestCase):

    def setUp(self):
        self.orchestrator = TaskDecisionOrchestrator(
            provider=NullDecisionProvider(), cache=DecisionCache(), timeout=1.0
        )
        patcher = patch("tasks.views.get_orchestrator", return_value=self.orchestrator)
        patcher.start()
        self.addCleanup(patcher.stop)


class TestPrioritizeEndpoint(DecisionAPITestCase):

    def test_orders_tasks_with_provenance(self):
        response = self.client.post(
            reverse("tasks-prioritize"),
            {"tasks": task_payloads(), "context": {"weather": "good"}},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([t["id"] for t in response.data["tasks"]], ["T1", "T2", "T3"])
        self.assertTrue(response.data["fallback_used"])
        self.assertEqual(response.data["confidence"], 0.7)
        self.assertIn("Rule-based", response.data["reasoning"])

    def test_unknown_priority_is_rejected(self):
        payload = task_payloads()
        payload[0]["priority"] = "urgent"

        response = self.client.post(reverse("tasks-prioritize"), {"tasks": payload}, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_duplicate_ids_are_rejected(self):
        payload = task_payloads()
        payload[1]["id"] = "T3"

        response = self.client.post(reverse("tasks-prioritize"), {"tasks": payload}, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("tasks", response.data)

    def test_unknown_task_field_is_rejected(self):
        payload = task_payloads()
        payload[0]["colour"] = "red"

        response = self.client.post(reverse("tasks-prioritize"), {"tasks": payload}, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_non_positive_hours_are_rejected(self):
        payload = task_payloads()
        payload[0]["estimated_hours"] = 0

        response = self.client.post(reverse("tasks-prioritize"), {"tasks": payload}, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_out_of_range_time_of_day_is_rejected(self):
        response = self.client.post(
            reverse("tasks-prioritize"),
            {"tasks": task_payloads(), "context": {"time_of_day": 24}},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class TestNextTaskEndpoint(DecisionAPITestCase):

    def test_skips_ineligible_tasks(self):
        payload = task_payloads()
        payload[2]["stage"] = "blocked"

        response = self.client.post(
            reverse("tasks-next"),
            {"tasks": payload, "context": {"weather": "poor"}},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["task"]["id"], "T3")

    def test_null_when_nothing_is_workable(self):
        payload = [{"id": "done", "stage": "completed"}]

        response = self.client.post(reverse("tasks-next"), {"tasks": payload}, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNone(response.data["task"])

    def test_missing_crew_skill_excludes_trade_work(self):
        payload = [
            {"id": "wiring", "priority": "high", "trade_required": "electrician"},
            {"id": "cleanup", "priority": "low"},
        ]

        response = self.client.post(
            reverse("tasks-next"),
            {"tasks": payload, "context": {"crew": {"available": True, "skills": ["plumber"]}}},
            format="json",
        )

        self.assertEqual(response.data["task"]["id"], "cleanup")


class TestPredictEndpoint(DecisionAPITestCase):

    def test_predicts_from_rules(self):
        response = self.client.post(
            reverse("tasks-predict"),
            {"task": {"id": "t", "estimated_hours": 16, "assigned_to": "crew-1"}},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        prediction = response.data["prediction"]
        self.assertEqual(prediction["risk_factors"], [])
        self.assertEqual(prediction["confidence_score"], 1.0)
        self.assertEqual(response.data["confidence"], 0.6)
        self.assertTrue(response.data["fallback_used"])

    def test_task_is_required(self):
        response = self.client.post(reverse("tasks-predict"), {}, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class TestResolveConflictEndpoint(DecisionAPITestCase):

    def test_merges_concurrent_edits(self):
        response = self.client.post(
            reverse("tasks-resolve-conflict"),
            {
                "original_task": {"id": "t", "stage": "not-started", "due_date": "2024-03-01"},
                "local_update": {"stage": "in-progress", "safety_notes": "Harness"},
                "remote_update": {"stage": "not-started", "assigned_to": "crew-2"},
            },
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        resolution = response.data["resolution"]
        self.assertEqual(resolution["resolved_task"]["stage"], "in-progress")
        self.assertEqual(resolution["resolved_task"]["safety_notes"], "Harness")
        self.assertEqual(resolution["resolved_task"]["assigned_to"], "crew-2")
        self.assertEqual(resolution["resolved_task"]["due_date"], "2024-03-01")
        self.assertFalse(resolution["requires_manual_review"])
        self.assertEqual(response.data["confidence"], 0.65)

    def test_priority_disagreement_requires_review(self):
        response = self.client.post(
            reverse("tasks-resolve-conflict"),
            {
                "original_task": {"id": "t"},
                "local_update": {"priority": "high"},
                "remote_update": {"priority": "low"},
            },
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data["resolution"]["requires_manual_review"])

    def test_changing_id_is_rejected(self):
        response = self.client.post(
            reverse("tasks-resolve-conflict"),
            {
                "original_task": {"id": "t"},
                "local_update": {"id": "other"},
                "remote_update": {},
            },
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("detail", response.data)

    def test_unknown_update_field_is_rejected(self):
        response = self.client.post(
            reverse("tasks-resolve-conflict"),
            {
                "original_task": {"id": "t"},
                "local_update": {"colour": "red"},
                "remote_update": {},
            },
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_original_task_is_required(self):
        response = self.client.post(
            reverse("tasks-resolve-conflict"),
            {"local_update": {}, "remote_update": {}},
            format="json",
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
