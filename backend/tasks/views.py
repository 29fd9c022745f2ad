# tasks/views.py

import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from .ai_engine.exceptions import InvalidTaskInputError
from .apps import get_orchestrator
from .serializers import (
    ConflictRequestSerializer,
    PredictionRequestSerializer,
    TaskBatchSerializer,
)

logger = logging.getLogger(__name__)


def _provenance(decision):
    return {
        "reasoning": decision.reasoning,
        "confidence": decision.confidence,
        "fallback_used": decision.fallback_used,
    }


class DecisionView(APIView):
    """
    Base for the decision endpoints.

    Engine input errors surface as 400s. Primary-path failures never reach
    this layer; they are absorbed by the orchestrator's fallback.
    """

    request_serializer_class = None

    def post(self, request):
        serializer = self.request_serializer_class(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            payload = self.decide(serializer, get_orchestrator())
        except InvalidTaskInputError as e:
            logger.info(f"{type(self).__name__}: rejected input: {e}")
            return Response({"detail": str(e)}, status=status.HTTP_400_BAD_REQUEST)
        return Response(payload)

    def decide(self, serializer, orchestrator):
        raise NotImplementedError


class PrioritizeTasksView(DecisionView):
    """POST: order the submitted tasks for the crew."""

    request_serializer_class = TaskBatchSerializer

    def decide(self, serializer, orchestrator):
        tasks = serializer.build_tasks()
        decision = orchestrator.decide_prioritization(tasks, serializer.build_context())
        by_id = {task.id: task for task in tasks}
        return {
            "tasks": [by_id[task_id].to_dict() for task_id in decision.decision],
            **_provenance(decision),
        }


class NextTaskView(DecisionView):
    """POST: the task the crew should pick up now (null when nothing is workable)."""

    request_serializer_class = TaskBatchSerializer

    def decide(self, serializer, orchestrator):
        next_task, decision = orchestrator.decide_next_task(
            serializer.build_tasks(), serializer.build_context()
        )
        return {
            "task": next_task.to_dict() if next_task else None,
            **_provenance(decision),
        }


class PredictTaskView(DecisionView):
    """POST: completion date and risk factors for one task."""

    request_serializer_class = PredictionRequestSerializer

    def decide(self, serializer, orchestrator):
        decision = orchestrator.decide_prediction(
            serializer.build_task(), serializer.build_context()
        )
        return {"prediction": decision.decision.to_dict(), **_provenance(decision)}


class ResolveConflictView(DecisionView):
    """POST: merge two concurrent edits of the same task."""

    request_serializer_class = ConflictRequestSerializer

    def decide(self, serializer, orchestrator):
        decision = orchestrator.decide_conflict(
            serializer.validated_data["local_update"],
            serializer.validated_data["remote_update"],
            serializer.build_original_task(),
        )
        return {"resolution": decision.decision.to_dict(), **_provenance(decision)}


prioritize_view = PrioritizeTasksView.as_view()
next_task_view = NextTaskView.as_view()
predict_view = PredictTaskView.as_view()
resolve_conflict_view = ResolveConflictView.as_view()
