import math

from django.utils import timezone
from rest_framework import serializers

from .models import Goal, Priority, Task, TaskDependency, TaskStatus


class TaskDraftSerializer(serializers.Serializer):
    """One task as proposed by the model, before validation."""

    title = serializers.CharField(max_length=255)
    description = serializers.CharField(allow_blank=True, required=False, default="")
    estimated_hours = serializers.FloatField()
    priority = serializers.ChoiceField(choices=Priority.choices)
    dependencies = serializers.ListField(child=serializers.IntegerField(), required=False, default=list)

    def to_internal_value(self, data):
        # the model's schema is typed; reject values DRF would otherwise coerce
        if isinstance(data, dict):
            errors = {}
            for field in ("title", "description"):
                if field in data and not isinstance(data[field], str):
                    errors[field] = ["Must be a string."]
            hours = data.get("estimated_hours")
            if "estimated_hours" in data and (isinstance(hours, bool) or not isinstance(hours, (int, float))):
                errors["estimated_hours"] = ["Must be a number."]
            dependencies = data.get("dependencies")
            if isinstance(dependencies, list) and any(
                isinstance(d, bool) or not isinstance(d, (int, float)) for d in dependencies
            ):
                errors["dependencies"] = ["Must be a list of integers."]
            if errors:
                raise serializers.ValidationError(errors)
        return super().to_internal_value(data)

    def validate_estimated_hours(self, value: float):
        if not math.isfinite(value) or value <= 0:
            raise serializers.ValidationError('estimated_hours must be a positive number')
        return value


class GenerateTasksSerializer(serializers.Serializer):
    """Body of the generate-tasks call: ``{goalTitle, goalDescription?, targetDate?}``."""

    goalTitle = serializers.CharField(max_length=255)
    goalDescription = serializers.CharField(allow_blank=True, allow_null=True, required=False, default="")
    targetDate = serializers.DateTimeField(allow_null=True, required=False, default=None)


class GoalInputSerializer(serializers.Serializer):
    title = serializers.CharField(max_length=255)
    description = serializers.CharField(allow_blank=True, allow_null=True, required=False, default="")
    targetDate = serializers.DateTimeField(allow_null=True, required=False, default=None)

    def validate_targetDate(self, value):
        if value is not None and value < timezone.now():
            raise serializers.ValidationError('Target date cannot be in the past')
        return value


class StatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=TaskStatus.choices)


class GoalSerializer(serializers.ModelSerializer):
    class Meta:
        model = Goal
        fields = ["id", "title", "description", "target_date", "created_at"]


class TaskSerializer(serializers.ModelSerializer):
    goal_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = Task
        fields = [
            "id",
            "goal_id",
            "title",
            "description",
            "estimated_hours",
            "priority",
            "status",
            "order_index",
        ]


class TaskDependencySerializer(serializers.ModelSerializer):
    task_id = serializers.UUIDField(read_only=True)
    depends_on_task_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = TaskDependency
        fields = ["task_id", "depends_on_task_id"]
