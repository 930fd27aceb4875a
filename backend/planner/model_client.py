"""Structured-output client for the AI gateway.

One call, one attempt. The response is classified into a ``ModelSuccess`` or
a ``ModelFailure`` wrapping one of ``RateLimited``, ``QuotaExceeded`` or
``UpstreamError``; nothing is raised across this boundary and nothing is
retried, the caller decides what to do with a failure.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import requests
from django.conf import settings

from .errors import PlanningError, QuotaExceeded, RateLimited, UpstreamError
from .models import Priority
from .prompts import Prompt

logger = logging.getLogger(__name__)

TOOL_NAME = "create_task_plan"

TASK_PLAN_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "tasks": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "title": {"type": "string", "description": "Clear, action-oriented task title"},
                    "description": {"type": "string", "description": "Detailed description of the task"},
                    "estimated_hours": {"type": "number", "description": "Estimated hours to complete"},
                    "priority": {
                        "type": "string",
                        "enum": list(Priority.values),
                        "description": "Task priority level",
                    },
                    "dependencies": {
                        "type": "array",
                        "items": {"type": "integer"},
                        "description": "Array of 0-based task indices this task depends on",
                    },
                },
                "required": ["title", "description", "estimated_hours", "priority", "dependencies"],
                "additionalProperties": False,
            },
        },
    },
    "required": ["tasks"],
    "additionalProperties": False,
}


@dataclass(frozen=True)
class ModelSuccess:
    tasks: List[Dict[str, Any]]


@dataclass(frozen=True)
class ModelFailure:
    error: PlanningError


ModelResult = Union[ModelSuccess, ModelFailure]


class ModelClient:
    def __init__(self, url: str, api_key: str, model: str, timeout: float = 60.0):
        self.url = url
        self.api_key = api_key
        self.model = model
        self.timeout = timeout

    @classmethod
    def from_settings(cls) -> "ModelClient":
        config = settings.PLANNER
        return cls(
            url=config["AI_GATEWAY_URL"],
            api_key=config["AI_API_KEY"],
            model=config["AI_MODEL"],
            timeout=config["AI_TIMEOUT"],
        )

    def build_request(self, prompt: Prompt) -> Dict[str, Any]:
        return {
            "model": self.model,
            "messages": prompt.as_messages(),
            "tools": [
                {
                    "type": "function",
                    "function": {
                        "name": TOOL_NAME,
                        "description": "Create a comprehensive task breakdown for a goal",
                        "parameters": TASK_PLAN_SCHEMA,
                    },
                }
            ],
            "tool_choice": {"type": "function", "function": {"name": TOOL_NAME}},
        }

    def generate_plan(self, prompt: Prompt, timeout: Optional[float] = None) -> ModelResult:
        """POST the prompt to the gateway and classify the outcome."""
        if not self.api_key:
            logger.error("ModelClient.generate_plan, no API key configured for the AI gateway.")
            return ModelFailure(UpstreamError("AI gateway API key is not configured"))

        logger.info(f"ModelClient.generate_plan, calling {self.url!r} with model {self.model!r}.")
        try:
            response = requests.post(
                self.url,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                json=self.build_request(prompt),
                timeout=timeout if timeout is not None else self.timeout,
            )
        except requests.exceptions.Timeout:
            logger.error("ModelClient.generate_plan, request timed out.")
            return ModelFailure(UpstreamError("AI Gateway request timed out"))
        except requests.exceptions.RequestException as e:
            logger.error(f"ModelClient.generate_plan, request failed: {e}")
            return ModelFailure(UpstreamError())

        if response.status_code == 429:
            logger.warning("ModelClient.generate_plan, rate limited by the AI gateway.")
            return ModelFailure(RateLimited())
        if response.status_code == 402:
            logger.warning("ModelClient.generate_plan, AI gateway credits exhausted.")
            return ModelFailure(QuotaExceeded())
        if not response.ok:
            logger.error(f"AI Gateway error: {response.status_code} {response.text[:500]!r}")
            return ModelFailure(UpstreamError())

        try:
            tasks = parse_tool_call(response.json())
        except UpstreamError as e:
            logger.error(f"ModelClient.generate_plan, malformed response: {e.message}")
            return ModelFailure(e)
        except ValueError:
            logger.error("ModelClient.generate_plan, response body is not JSON.")
            return ModelFailure(UpstreamError("AI Gateway returned a non-JSON response"))

        logger.info(f"ModelClient.generate_plan, received {len(tasks)} task drafts.")
        return ModelSuccess(tasks=tasks)


def parse_tool_call(data: Any) -> List[Dict[str, Any]]:
    """Extract the task drafts from a chat-completions payload.

    Only the forced ``create_task_plan`` tool call is accepted; free text in
    the message content is ignored.
    """
    try:
        tool_call = data["choices"][0]["message"]["tool_calls"][0]
        function = tool_call["function"]
    except (KeyError, IndexError, TypeError):
        raise UpstreamError("No tool call in AI response")

    if not isinstance(function, dict):
        raise UpstreamError("No tool call in AI response")

    if function.get("name") != TOOL_NAME:
        raise UpstreamError(f"Unexpected tool call in AI response: {function.get('name')!r}")

    arguments = function.get("arguments")
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments)
        except ValueError:
            raise UpstreamError("Tool call arguments are not valid JSON")

    if not isinstance(arguments, dict) or not isinstance(arguments.get("tasks"), list):
        raise UpstreamError("Tool call arguments do not contain a task list")
    return arguments["tasks"]
