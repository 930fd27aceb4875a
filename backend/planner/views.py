# views.py
import logging

from django.http import HttpResponse
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from .errors import InvalidInput, PlanningError
from .models import Goal
from .pipeline import PlanningPipeline
from .serializers import (
    GenerateTasksSerializer,
    GoalInputSerializer,
    GoalSerializer,
    StatusUpdateSerializer,
    TaskDependencySerializer,
    TaskSerializer,
)
from .store import PersistedPlan, PlanStore

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


def error_response(exc: PlanningError) -> Response:
    """Return the ``{"error", "code"}`` body for a pipeline error."""
    return Response({"error": exc.message, "code": exc.code}, status=exc.http_status)


def invalid_input_response(errors) -> Response:
    first = next(iter(errors.values()), ["Invalid input"])
    message = first[0] if isinstance(first, list) and first else str(first)
    return Response(
        {"error": str(message), "code": InvalidInput.code, "fields": errors},
        status=status.HTTP_400_BAD_REQUEST,
    )


def plan_payload(plan: PersistedPlan) -> dict:
    return {
        "goal": GoalSerializer(plan.goal).data,
        "tasks": TaskSerializer(plan.tasks, many=True).data,
        "dependencies": TaskDependencySerializer(plan.dependencies, many=True).data,
        "summary": {
            "task_count": len(plan.tasks),
            "completed_count": plan.completed_count,
            "total_hours": plan.total_hours,
        },
    }


class CorsAPIView(APIView):
    """Answers pre-flight requests and adds CORS headers to every response."""

    def dispatch(self, request, *args, **kwargs):
        if request.method == "OPTIONS":
            response = HttpResponse(status=status.HTTP_200_OK)
        else:
            response = super().dispatch(request, *args, **kwargs)
        for header, value in CORS_HEADERS.items():
            response[header] = value
        return response


class GenerateTasks(CorsAPIView):
    """
    POST /api/generate-tasks/
    Accepts {goalTitle, goalDescription?, targetDate?} and returns the raw
    task drafts proposed by the model as {tasks: [...]}.
    """

    def post(self, request):
        serializer = GenerateTasksSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_input_response(serializer.errors)
        data = serializer.validated_data

        try:
            tasks = PlanningPipeline().generate_drafts(
                data["goalTitle"], data["goalDescription"], data["targetDate"]
            )
        except PlanningError as e:
            logger.error(f"Error in generate-tasks: {e.code}: {e.message}")
            return error_response(e)
        return Response({"tasks": tasks}, status=status.HTTP_200_OK)


class GoalList(CorsAPIView):
    """
    GET  /api/goals/  lists the user's goals, newest first.
    POST /api/goals/  creates a goal from {title, description?, targetDate?}
    and generates, validates and stores its task plan.
    """

    def get(self, request):
        goals = Goal.objects.filter(owner=request.user)
        return Response(GoalSerializer(goals, many=True).data, status=status.HTTP_200_OK)

    def post(self, request):
        serializer = GoalInputSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_input_response(serializer.errors)
        data = serializer.validated_data

        try:
            plan = PlanningPipeline().run(
                owner=request.user,
                title=data["title"],
                description=data["description"],
                target_date=data["targetDate"],
            )
        except PlanningError as e:
            logger.error(f"Error generating tasks: {e.code}: {e.message}")
            return error_response(e)
        return Response(plan_payload(plan), status=status.HTTP_201_CREATED)


class GoalDetail(CorsAPIView):
    """
    GET /api/goals/<goal_id>/
    Returns the goal with its tasks in order, dependency edges and a summary.
    """

    def get(self, request, goal_id):
        try:
            plan = PlanStore().get_plan(goal_id, owner=request.user)
        except PlanningError as e:
            return error_response(e)
        return Response(plan_payload(plan), status=status.HTTP_200_OK)


class TaskStatusUpdate(CorsAPIView):
    """
    PATCH /api/tasks/<task_id>/status/
    Accepts {status} and applies the transition if it is allowed.
    """

    def patch(self, request, task_id):
        serializer = StatusUpdateSerializer(data=request.data)
        if not serializer.is_valid():
            return invalid_input_response(serializer.errors)

        try:
            task = PlanStore().update_task_status(task_id, serializer.validated_data["status"], owner=request.user)
        except PlanningError as e:
            return error_response(e)
        return Response(TaskSerializer(task).data, status=status.HTTP_200_OK)
