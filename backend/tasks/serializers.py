# tasks/serializers.py

import logging
from collections.abc import Mapping

from rest_framework import serializers

from .ai_engine.types import SafetyLevel, Task, TaskPriority, Weather, WorkerContext

logger = logging.getLogger(__name__)


class MaterialSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=255)
    quantity = serializers.FloatField(required=False, allow_null=True)
    unit = serializers.CharField(max_length=32, required=False, allow_null=True, allow_blank=True)


class TaskSerializer(serializers.Serializer):
    """
    The minimal task record the decision engine works on.

    Used with partial=True for conflict edits, in which case only the
    fields the device actually changed end up in validated_data.
    """

    id = serializers.CharField(max_length=64)
    title = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")
    priority = serializers.ChoiceField(
        choices=[p.value for p in TaskPriority], default=TaskPriority.MEDIUM.value
    )
    # Free-form: stages unknown to the rule engine still round-trip
    stage = serializers.CharField(max_length=32, default="not-started")
    due_date = serializers.DateField(required=False, allow_null=True)
    weather_dependent = serializers.BooleanField(default=False)
    inspection_required = serializers.BooleanField(default=False)
    trade_required = serializers.CharField(max_length=64, required=False, allow_null=True, allow_blank=True)
    materials_needed = MaterialSerializer(many=True, required=False)
    estimated_hours = serializers.FloatField(required=False, allow_null=True)
    assigned_to = serializers.CharField(max_length=64, required=False, allow_null=True, allow_blank=True)
    safety_notes = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    completion_notes = serializers.CharField(required=False, allow_null=True, allow_blank=True)

    def to_internal_value(self, data):
        if isinstance(data, Mapping):
            unknown = sorted(set(data) - set(self.fields))
            if unknown:
                raise serializers.ValidationError({name: "Unknown task field." for name in unknown})
        return super().to_internal_value(data)

    def validate_estimated_hours(self, value):
        if value is not None and value <= 0:
            raise serializers.ValidationError("estimated_hours must be positive.")
        return value


class CrewSerializer(serializers.Serializer):
    available = serializers.BooleanField(default=True)
    skills = serializers.ListField(child=serializers.CharField(max_length=64), default=list)


class MaterialAvailabilitySerializer(serializers.Serializer):
    available = serializers.ListField(child=serializers.CharField(max_length=255), default=list)
    pending = serializers.ListField(child=serializers.CharField(max_length=255), default=list)


class WorkerContextSerializer(serializers.Serializer):
    weather = serializers.ChoiceField(choices=[w.value for w in Weather], required=False, allow_null=True)
    crew = CrewSerializer(required=False, allow_null=True)
    materials = MaterialAvailabilitySerializer(required=False, allow_null=True)
    safety_level = serializers.ChoiceField(
        choices=[s.value for s in SafetyLevel], required=False, allow_null=True
    )
    time_of_day = serializers.IntegerField(min_value=0, max_value=23, required=False, allow_null=True)
    equipment_available = serializers.ListField(
        child=serializers.CharField(max_length=64), required=False, allow_null=True
    )
    current_location = serializers.CharField(max_length=255, required=False, allow_null=True, allow_blank=True)


def _build_context(validated_data) -> WorkerContext:
    return WorkerContext.from_dict(validated_data.get("context"))


class TaskBatchSerializer(serializers.Serializer):
    """Request body for prioritization and next-task recommendations."""

    tasks = TaskSerializer(many=True)
    context = WorkerContextSerializer(required=False)

    def validate_tasks(self, value):
        ids = [item["id"] for item in value]
        if len(ids) != len(set(ids)):
            raise serializers.ValidationError("Task ids must be unique.")
        return value

    def build_tasks(self):
        return [Task.from_dict(item) for item in self.validated_data["tasks"]]

    def build_context(self) -> WorkerContext:
        return _build_context(self.validated_data)


class PredictionRequestSerializer(serializers.Serializer):
    task = TaskSerializer()
    context = WorkerContextSerializer(required=False)

    def build_task(self) -> Task:
        return Task.from_dict(self.validated_data["task"])

    def build_context(self) -> WorkerContext:
        return _build_context(self.validated_data)


class ConflictRequestSerializer(serializers.Serializer):
    """Two concurrent partial edits plus the record they were both made against."""

    local_update = serializers.DictField()
    remote_update = serializers.DictField()
    original_task = TaskSerializer()

    def _validate_update(self, value):
        serializer = TaskSerializer(data=value, partial=True)
        serializer.is_valid(raise_exception=True)
        return dict(serializer.validated_data)

    def validate_local_update(self, value):
        return self._validate_update(value)

    def validate_remote_update(self, value):
        return self._validate_update(value)

    def build_original_task(self) -> Task:
        return Task.from_dict(self.validated_data["original_task"])
