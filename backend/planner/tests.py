import json
import uuid
from datetime import datetime, timedelta, timezone as dt_timezone
from unittest.mock import Mock, patch

import requests
from django.conf import settings
from django.contrib.auth import get_user_model
from django.db import DatabaseError
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework.test import APITestCase

from .errors import (
    CyclicDependency,
    EmptyPlan,
    InvalidInput,
    InvalidPlan,
    InvalidStatusTransition,
    QuotaExceeded,
    RateLimited,
    StorageError,
    TaskNotFound,
    UpstreamError,
)
from .graph import IdentityMap, assemble_plan, detect_circular_dependencies
from .model_client import TOOL_NAME, ModelClient, ModelFailure, ModelSuccess
from .models import Goal, Task, TaskDependency
from .pipeline import PlanningPipeline
from .prompts import build_prompt
from .store import PlanStore
from .validation import validate_plan

PLANNER_TEST_SETTINGS = {
    "AI_GATEWAY_URL": "https://gateway.test/v1/chat/completions",
    "AI_API_KEY": "test-key",
    "AI_MODEL": "test-model",
    "AI_TIMEOUT": 5.0,
}

LAUNCH_DRAFTS = [
    {"title": "Define MVP scope", "description": "List the must-have features", "estimated_hours": 6,
     "priority": "critical", "dependencies": []},
    {"title": "Design app screens", "description": "Wireframes for the core flows", "estimated_hours": 16,
     "priority": "high", "dependencies": []},
    {"title": "Build and submit the app", "description": "Implement and ship to the stores", "estimated_hours": 80,
     "priority": "high", "dependencies": [0, 1]},
]


def draft(title="Task", hours=2, priority="medium", dependencies=None):
    return {"title": title, "description": "", "estimated_hours": hours,
            "priority": priority, "dependencies": dependencies or []}


def completion(tasks):
    """Chat-completions payload carrying a create_task_plan tool call."""
    return {"choices": [{"message": {"tool_calls": [{
        "type": "function",
        "function": {"name": TOOL_NAME, "arguments": json.dumps({"tasks": tasks})},
    }]}}]}


def fake_response(status_code=200, body=None):
    response = Mock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.json.return_value = body
    response.text = json.dumps(body)
    return response


class StubClient:
    def __init__(self, result):
        self.result = result
        self.prompts = []

    def generate_plan(self, prompt, timeout=None):
        self.prompts.append(prompt)
        return self.result


class PromptBuilderTests(SimpleTestCase):
    def test_omits_absent_description_and_date(self):
        prompt = build_prompt("Launch a mobile app in 8 weeks")
        self.assertIn("Goal: Launch a mobile app in 8 weeks", prompt.user)
        self.assertNotIn("Description", prompt.user)
        self.assertNotIn("Target Date", prompt.user)

    def test_blank_description_is_omitted(self):
        prompt = build_prompt("Run a marathon", description="   ")
        self.assertNotIn("Description", prompt.user)

    def test_includes_optional_fields_when_present(self):
        prompt = build_prompt("Run a marathon", "First one ever", "2027-04-01T09:00:00+00:00")
        self.assertIn("Description: First one ever", prompt.user)
        self.assertIn("Target Date: 2027-04-01", prompt.user)

    def test_system_prompt_is_fixed(self):
        self.assertEqual(build_prompt("A").system, build_prompt("B", "desc").system)

    def test_empty_title_is_rejected(self):
        with self.assertRaises(InvalidInput):
            build_prompt("   ")

    def test_unparseable_date_is_rejected(self):
        with self.assertRaises(InvalidInput):
            build_prompt("Goal", target_date="next tuesday")


@patch("planner.model_client.requests.post")
class ModelClientTests(SimpleTestCase):
    def setUp(self):
        self.model_client = ModelClient("https://gateway.test/v1", "secret", "test-model", timeout=5)
        self.prompt = build_prompt("Launch a mobile app in 8 weeks")

    def test_success_returns_tasks(self, post):
        post.return_value = fake_response(200, completion(LAUNCH_DRAFTS))
        result = self.model_client.generate_plan(self.prompt)

        self.assertIsInstance(result, ModelSuccess)
        self.assertEqual(result.tasks, LAUNCH_DRAFTS)
        post.assert_called_once()
        kwargs = post.call_args.kwargs
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer secret")
        self.assertEqual(kwargs["json"]["tool_choice"], {"type": "function", "function": {"name": TOOL_NAME}})
        self.assertEqual(kwargs["timeout"], 5)

    def test_caller_timeout_overrides_default(self, post):
        post.return_value = fake_response(200, completion([]))
        self.model_client.generate_plan(self.prompt, timeout=1.5)
        self.assertEqual(post.call_args.kwargs["timeout"], 1.5)

    def test_rate_limited(self, post):
        post.return_value = fake_response(429, {"error": "slow down"})
        result = self.model_client.generate_plan(self.prompt)
        self.assertIsInstance(result, ModelFailure)
        self.assertIsInstance(result.error, RateLimited)
        post.assert_called_once()

    def test_quota_exceeded(self, post):
        post.return_value = fake_response(402, {"error": "no credits"})
        result = self.model_client.generate_plan(self.prompt)
        self.assertIsInstance(result.error, QuotaExceeded)

    def test_other_status_is_upstream_error(self, post):
        post.return_value = fake_response(503, {"error": "unavailable"})
        result = self.model_client.generate_plan(self.prompt)
        self.assertIsInstance(result.error, UpstreamError)

    def test_missing_tool_call_is_upstream_error(self, post):
        post.return_value = fake_response(200, {"choices": [{"message": {"content": "Here is a plan..."}}]})
        result = self.model_client.generate_plan(self.prompt)
        self.assertIsInstance(result.error, UpstreamError)

    def test_non_json_arguments_is_upstream_error(self, post):
        body = completion([])
        body["choices"][0]["message"]["tool_calls"][0]["function"]["arguments"] = "{not json"
        post.return_value = fake_response(200, body)
        result = self.model_client.generate_plan(self.prompt)
        self.assertIsInstance(result.error, UpstreamError)

    def test_malformed_function_is_upstream_error(self, post):
        for function in (None, TOOL_NAME):
            post.return_value = fake_response(200, {"choices": [{"message": {"tool_calls": [{"function": function}]}}]})
            result = self.model_client.generate_plan(self.prompt)
            self.assertIsInstance(result, ModelFailure)
            self.assertIsInstance(result.error, UpstreamError)

    def test_timeout_is_upstream_error(self, post):
        post.side_effect = requests.exceptions.Timeout()
        result = self.model_client.generate_plan(self.prompt)
        self.assertIsInstance(result.error, UpstreamError)

    def test_missing_api_key_makes_no_request(self, post):
        result = ModelClient("https://gateway.test/v1", "", "test-model").generate_plan(self.prompt)
        self.assertIsInstance(result.error, UpstreamError)
        post.assert_not_called()


class PlanValidatorTests(SimpleTestCase):
    def test_order_index_matches_position(self):
        planned = validate_plan([draft("a"), draft("b"), draft("c")])
        self.assertEqual([p.order_index for p in planned], [0, 1, 2])
        self.assertEqual([p.title for p in planned], ["a", "b", "c"])

    def test_dependencies_are_normalized(self):
        planned = validate_plan([
            draft("a", dependencies=[1, 1, 0, 7, -1]),
            draft("b", dependencies=[2]),
            draft("c", dependencies=[0, 1, 1]),
        ])
        self.assertEqual(planned[0].dependencies, (1,))
        self.assertEqual(planned[1].dependencies, (2,))
        self.assertEqual(planned[2].dependencies, (0, 1))

    def test_title_is_trimmed(self):
        planned = validate_plan([draft("  Write tests  ")])
        self.assertEqual(planned[0].title, "Write tests")

    def test_negative_hours_rejected(self):
        with self.assertRaises(InvalidPlan):
            validate_plan([draft("a"), draft("b", hours=-1)])

    def test_zero_and_infinite_hours_rejected(self):
        for hours in (0, float("inf"), float("nan")):
            with self.assertRaises(InvalidPlan):
                validate_plan([draft("a", hours=hours)])

    def test_string_hours_rejected(self):
        for hours in ("3", True):
            with self.assertRaises(InvalidPlan):
                validate_plan([draft("a", hours=hours)])

    def test_non_string_title_or_description_rejected(self):
        with self.assertRaises(InvalidPlan):
            validate_plan([dict(draft("a"), title=5)])
        with self.assertRaises(InvalidPlan):
            validate_plan([dict(draft("a"), description=None)])

    def test_string_dependency_index_rejected(self):
        with self.assertRaises(InvalidPlan):
            validate_plan([draft("a"), draft("b", dependencies=["0"])])

    def test_blank_title_rejected(self):
        with self.assertRaises(InvalidPlan):
            validate_plan([draft("   ")])

    def test_unknown_priority_rejected(self):
        with self.assertRaises(InvalidPlan):
            validate_plan([draft("a", priority="urgent")])

    def test_non_integer_dependency_rejected(self):
        with self.assertRaises(InvalidPlan):
            validate_plan([draft("a"), draft("b", dependencies=["first"])])

    def test_empty_batch_gives_empty_plan(self):
        self.assertEqual(validate_plan([]), [])

    def test_non_list_rejected(self):
        with self.assertRaises(InvalidPlan):
            validate_plan({"tasks": []})


class GraphAssemblerTests(SimpleTestCase):
    def test_edges_point_into_dependent_task(self):
        assembled = assemble_plan(validate_plan(LAUNCH_DRAFTS))
        ids = [t.id for t in assembled.tasks]

        self.assertEqual(len(set(ids)), 3)
        self.assertEqual(sorted(assembled.edges), sorted([(ids[2], ids[0]), (ids[2], ids[1])]))

    def test_forward_reference_is_allowed_when_acyclic(self):
        assembled = assemble_plan(validate_plan([draft("a", dependencies=[2]), draft("b"), draft("c")]))
        ids = [t.id for t in assembled.tasks]
        self.assertEqual(assembled.edges, [(ids[0], ids[2])])

    def test_two_task_cycle_is_rejected(self):
        with self.assertRaises(CyclicDependency) as ctx:
            assemble_plan(validate_plan([draft("a", dependencies=[1]), draft("b", dependencies=[0])]))
        self.assertEqual(ctx.exception.cycles, [[0, 1, 0]])

    def test_three_task_cycle_is_rejected(self):
        planned = validate_plan([
            draft("a", dependencies=[2]),
            draft("b", dependencies=[0]),
            draft("c", dependencies=[1]),
        ])
        with self.assertRaises(CyclicDependency):
            assemble_plan(planned)

    def test_detect_circular_dependencies_on_plain_graph(self):
        self.assertEqual(detect_circular_dependencies({1: [2], 2: [3], 3: []}), [])
        self.assertEqual(detect_circular_dependencies({1: [2], 2: [3], 3: [1]}), [[1, 2, 3, 1]])

    def test_identity_map_rejects_out_of_range_index(self):
        identities = IdentityMap(2)
        self.assertEqual(identities.resolve(1), identities.resolve(1))
        with self.assertRaises(InvalidPlan):
            identities.resolve(2)


class PlanStoreTests(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="alice", password="pw")
        self.goal = Goal.objects.create(owner=self.user, title="Launch a mobile app in 8 weeks")
        self.assembled = assemble_plan(validate_plan(LAUNCH_DRAFTS))
        self.store = PlanStore()

    def test_create_plan_persists_tasks_and_edges(self):
        plan = self.store.create_plan(self.goal.id, self.assembled.tasks, self.assembled.edges)

        self.assertEqual([t.order_index for t in plan.tasks], [0, 1, 2])
        self.assertTrue(all(t.status == "pending" for t in plan.tasks))
        edges = TaskDependency.objects.filter(task__goal=self.goal)
        self.assertEqual(edges.count(), 2)
        for edge in edges:
            self.assertEqual(edge.task.goal_id, self.goal.id)
            self.assertEqual(edge.depends_on_task.goal_id, self.goal.id)
            self.assertEqual(edge.task.order_index, 2)

    def test_failure_after_task_insert_leaves_nothing(self):
        with patch.object(TaskDependency.objects, "bulk_create", side_effect=DatabaseError("disk full")):
            with self.assertRaises(StorageError):
                self.store.create_plan(self.goal.id, self.assembled.tasks, self.assembled.edges)

        self.assertEqual(Task.objects.filter(goal=self.goal).count(), 0)
        self.assertEqual(TaskDependency.objects.filter(task__goal=self.goal).count(), 0)

    def test_edge_outside_plan_is_rejected(self):
        stray = assemble_plan(validate_plan([draft("x")])).tasks[0].id
        edges = [(self.assembled.tasks[0].id, stray)]
        with self.assertRaises(StorageError):
            self.store.create_plan(self.goal.id, self.assembled.tasks, edges)
        self.assertFalse(Task.objects.filter(goal=self.goal).exists())

    def test_goal_gets_only_one_plan(self):
        self.store.create_plan(self.goal.id, self.assembled.tasks, self.assembled.edges)
        again = assemble_plan(validate_plan(LAUNCH_DRAFTS))
        with self.assertRaises(StorageError):
            self.store.create_plan(self.goal.id, again.tasks, again.edges)
        self.assertEqual(Task.objects.filter(goal=self.goal).count(), 3)

    def test_commit_waits_a_bounded_time_for_the_lock(self):
        timeout = settings.DATABASES["default"]["OPTIONS"]["timeout"]
        self.assertGreater(timeout, 0)

    def test_status_transitions(self):
        plan = self.store.create_plan(self.goal.id, self.assembled.tasks, self.assembled.edges)
        first, second, _ = plan.tasks

        self.assertEqual(self.store.update_task_status(first.id, "in_progress").status, "in_progress")
        self.assertEqual(self.store.update_task_status(first.id, "completed").status, "completed")
        self.assertEqual(self.store.update_task_status(second.id, "completed").status, "completed")

        with self.assertRaises(InvalidStatusTransition):
            self.store.update_task_status(first.id, "pending")
        with self.assertRaises(InvalidStatusTransition):
            self.store.update_task_status(first.id, "in_progress")

    def test_unknown_or_foreign_task_is_not_found(self):
        plan = self.store.create_plan(self.goal.id, self.assembled.tasks, self.assembled.edges)
        bob = get_user_model().objects.create_user(username="bob", password="pw")

        with self.assertRaises(TaskNotFound):
            self.store.update_task_status(uuid.uuid4(), "completed")
        with self.assertRaises(TaskNotFound):
            self.store.update_task_status(plan.tasks[0].id, "completed", owner=bob)


class PlanningPipelineTests(TestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="alice", password="pw")

    def test_launch_scenario(self):
        client = StubClient(ModelSuccess(tasks=LAUNCH_DRAFTS))
        plan = PlanningPipeline(client=client).run(self.user, "Launch a mobile app in 8 weeks")

        self.assertEqual(plan.goal.owner, self.user)
        self.assertEqual([t.order_index for t in plan.tasks], [0, 1, 2])
        self.assertEqual(len(plan.dependencies), 2)
        last = plan.tasks[2]
        self.assertTrue(all(d.task_id == last.id for d in plan.dependencies))
        self.assertEqual(plan.total_hours, 102.0)
        self.assertIn("Goal: Launch a mobile app in 8 weeks", client.prompts[0].user)

    def test_rate_limit_creates_nothing(self):
        client = StubClient(ModelFailure(RateLimited()))
        with self.assertRaises(RateLimited):
            PlanningPipeline(client=client).run(self.user, "Launch a mobile app in 8 weeks")
        self.assertEqual(Goal.objects.count(), 0)
        self.assertEqual(Task.objects.count(), 0)

    def test_invalid_plan_never_reaches_store(self):
        store = Mock(spec=PlanStore)
        client = StubClient(ModelSuccess(tasks=[draft("a"), draft("b", hours=-1)]))
        with self.assertRaises(InvalidPlan):
            PlanningPipeline(client=client, store=store).run(self.user, "Goal")
        store.create_goal_with_plan.assert_not_called()

    def test_cycle_never_reaches_store(self):
        store = Mock(spec=PlanStore)
        client = StubClient(ModelSuccess(tasks=[draft("a", dependencies=[1]), draft("b", dependencies=[0])]))
        with self.assertRaises(CyclicDependency):
            PlanningPipeline(client=client, store=store).run(self.user, "Goal")
        store.create_goal_with_plan.assert_not_called()

    def test_empty_plan_is_reported(self):
        client = StubClient(ModelSuccess(tasks=[]))
        with self.assertRaises(EmptyPlan):
            PlanningPipeline(client=client).run(self.user, "Goal")
        self.assertEqual(Goal.objects.count(), 0)

    def test_storage_failure_leaves_no_goal(self):
        client = StubClient(ModelSuccess(tasks=LAUNCH_DRAFTS))
        with patch.object(TaskDependency.objects, "bulk_create", side_effect=DatabaseError("disk full")):
            with self.assertRaises(StorageError):
                PlanningPipeline(client=client).run(self.user, "Launch a mobile app in 8 weeks")
        self.assertEqual(Goal.objects.count(), 0)
        self.assertEqual(Task.objects.count(), 0)
        self.assertEqual(TaskDependency.objects.count(), 0)

    def test_past_target_date_rejected_before_model_call(self):
        client = StubClient(ModelSuccess(tasks=LAUNCH_DRAFTS))
        past = datetime.now(dt_timezone.utc) - timedelta(days=1)
        with self.assertRaises(InvalidInput):
            PlanningPipeline(client=client).run(self.user, "Goal", target_date=past)
        self.assertEqual(client.prompts, [])
        self.assertEqual(Goal.objects.count(), 0)

    def test_requires_authenticated_owner(self):
        client = StubClient(ModelSuccess(tasks=LAUNCH_DRAFTS))
        with self.assertRaises(InvalidInput):
            PlanningPipeline(client=client).run(None, "Goal")
        self.assertEqual(client.prompts, [])


@override_settings(PLANNER=PLANNER_TEST_SETTINGS)
@patch("planner.model_client.requests.post")
class PlannerAPITests(APITestCase):
    def setUp(self):
        self.user = get_user_model().objects.create_user(username="alice", password="pw")
        self.client.force_authenticate(self.user)

    def test_preflight_is_answered_without_auth(self, post):
        self.client.force_authenticate(None)
        response = self.client.options("/api/generate-tasks/")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.content, b"")
        self.assertEqual(response["Access-Control-Allow-Origin"], "*")
        self.assertEqual(response["Access-Control-Allow-Headers"], "authorization, x-client-info, apikey, content-type")

    def test_generate_tasks_returns_drafts(self, post):
        post.return_value = fake_response(200, completion(LAUNCH_DRAFTS))
        response = self.client.post("/api/generate-tasks/", {"goalTitle": "Launch a mobile app in 8 weeks"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"tasks": LAUNCH_DRAFTS})
        self.assertEqual(response["Access-Control-Allow-Origin"], "*")

    def test_generate_tasks_error_statuses(self, post):
        for upstream, expected in ((429, 429), (402, 402), (500, 500)):
            post.return_value = fake_response(upstream, {"error": "x"})
            response = self.client.post("/api/generate-tasks/", {"goalTitle": "Goal"}, format="json")
            self.assertEqual(response.status_code, expected)
            self.assertIn("error", response.json())

    def test_generate_tasks_blank_title(self, post):
        response = self.client.post("/api/generate-tasks/", {"goalTitle": "  "}, format="json")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "invalid_input")
        post.assert_not_called()

    def test_create_goal_runs_pipeline(self, post):
        post.return_value = fake_response(200, completion(LAUNCH_DRAFTS))
        target = (datetime.now(dt_timezone.utc) + timedelta(weeks=8)).isoformat()
        response = self.client.post(
            "/api/goals/",
            {"title": "Launch a mobile app in 8 weeks", "description": "iOS first", "targetDate": target},
            format="json",
        )
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual([t["order_index"] for t in body["tasks"]], [0, 1, 2])
        self.assertEqual(len(body["dependencies"]), 2)
        self.assertEqual(body["summary"], {"task_count": 3, "completed_count": 0, "total_hours": 102.0})

        detail = self.client.get(f"/api/goals/{body['goal']['id']}/")
        self.assertEqual(detail.status_code, 200)
        self.assertEqual(len(detail.json()["tasks"]), 3)

        listing = self.client.get("/api/goals/")
        self.assertEqual([g["id"] for g in listing.json()], [body["goal"]["id"]])

    def test_create_goal_rate_limited(self, post):
        post.return_value = fake_response(429, {"error": "slow down"})
        response = self.client.post("/api/goals/", {"title": "Goal"}, format="json")
        self.assertEqual(response.status_code, 429)
        self.assertEqual(response.json()["code"], "rate_limited")
        self.assertEqual(Goal.objects.count(), 0)

    def test_create_goal_with_cycle_is_generic_failure(self, post):
        post.return_value = fake_response(200, completion([draft("a", dependencies=[1]), draft("b", dependencies=[0])]))
        response = self.client.post("/api/goals/", {"title": "Goal"}, format="json")
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["code"], "cyclic_dependency")
        self.assertEqual(Task.objects.count(), 0)

    def test_past_target_date_rejected(self, post):
        past = (datetime.now(dt_timezone.utc) - timedelta(days=1)).isoformat()
        response = self.client.post("/api/goals/", {"title": "Goal", "targetDate": past}, format="json")
        self.assertEqual(response.status_code, 400)
        post.assert_not_called()

    def test_task_status_update(self, post):
        post.return_value = fake_response(200, completion(LAUNCH_DRAFTS))
        body = self.client.post("/api/goals/", {"title": "Goal"}, format="json").json()
        task_id = body["tasks"][0]["id"]

        response = self.client.patch(f"/api/tasks/{task_id}/status/", {"status": "completed"}, format="json")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "completed")

        response = self.client.patch(f"/api/tasks/{task_id}/status/", {"status": "pending"}, format="json")
        self.assertEqual(response.status_code, 409)

        response = self.client.patch(f"/api/tasks/{task_id}/status/", {"status": "done"}, format="json")
        self.assertEqual(response.status_code, 400)

    def test_other_users_goal_is_not_found(self, post):
        post.return_value = fake_response(200, completion(LAUNCH_DRAFTS))
        body = self.client.post("/api/goals/", {"title": "Goal"}, format="json").json()

        bob = get_user_model().objects.create_user(username="bob", password="pw")
        self.client.force_authenticate(bob)
        self.assertEqual(self.client.get(f"/api/goals/{body['goal']['id']}/").status_code, 404)

    def test_requires_authentication(self, post):
        self.client.force_authenticate(None)
        response = self.client.post("/api/goals/", {"title": "Goal"}, format="json")
        self.assertIn(response.status_code, (401, 403))
        self.assertEqual(response["Access-Control-Allow-Origin"], "*")
