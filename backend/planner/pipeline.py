"""Goal to task-plan pipeline.

goal -> prompt -> model call -> validation -> graph assembly -> persistence,
run sequentially for one submission. Every stage fails fast with a
``PlanningError`` subclass; nothing is retried here.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from django.utils import timezone

from .errors import EmptyPlan, InvalidInput
from .graph import assemble_plan
from .model_client import ModelClient, ModelFailure
from .prompts import build_prompt
from .store import PersistedPlan, PlanStore
from .validation import validate_plan

logger = logging.getLogger(__name__)


class PlanningPipeline:
    def __init__(self, client: Optional[ModelClient] = None, store: Optional[PlanStore] = None):
        self.client = client or ModelClient.from_settings()
        self.store = store or PlanStore()

    def generate_drafts(self,
                        title: str,
                        description: Optional[str] = None,
                        target_date: Optional[datetime] = None,
                        timeout: Optional[float] = None) -> List[Dict[str, Any]]:
        """Ask the model for raw task drafts, without validating or saving them."""
        prompt = build_prompt(title, description, target_date)
        result = self.client.generate_plan(prompt, timeout=timeout)
        if isinstance(result, ModelFailure):
            raise result.error
        return result.tasks

    def run(self,
            owner,
            title: str,
            description: Optional[str] = None,
            target_date: Optional[datetime] = None,
            timeout: Optional[float] = None) -> PersistedPlan:
        """Create a goal for ``owner`` and persist the plan generated for it.

        ``timeout`` bounds the model call. The commit is bounded by the
        database lock timeout (``DATABASE_TIMEOUT``); if it is aborted the
        transaction rolls back. The goal is only written together with a
        valid plan, so a failed run leaves nothing behind.
        """
        if owner is None or not getattr(owner, "is_authenticated", False):
            raise InvalidInput("An authenticated user is required")
        if target_date is not None and timezone.is_naive(target_date):
            target_date = timezone.make_aware(target_date)
        if target_date is not None and target_date < timezone.now():
            raise InvalidInput("Target date cannot be in the past")

        logger.info(f"PlanningPipeline.run, generating plan for goal {title!r}.")
        drafts = self.generate_drafts(title, description, target_date, timeout=timeout)

        planned = validate_plan(drafts)
        if not planned:
            logger.warning(f"PlanningPipeline.run, model returned no tasks for goal {title!r}.")
            raise EmptyPlan()

        assembled = assemble_plan(planned)
        logger.info(f"PlanningPipeline.run, assembled {len(assembled.tasks)} tasks and {len(assembled.edges)} dependencies.")

        return self.store.create_goal_with_plan(
            owner=owner,
            title=title.strip(),
            description=(description or "").strip(),
            target_date=target_date,
            tasks=assembled.tasks,
            edges=assembled.edges,
        )
