"""Prompt construction for goal decomposition.

Turns a goal into the system/user message pair sent to the model. Optional
goal fields are left out of the user message entirely when absent.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from .errors import InvalidInput

SYSTEM_PROMPT = """You are an expert project planner and task breakdown specialist. Your role is to analyze goals and create comprehensive, actionable task plans.

When given a goal, you must:
1. Break it down into clear, specific, actionable tasks
2. Estimate realistic time requirements for each task (in hours)
3. Assign appropriate priority levels (low, medium, high, critical)
4. Identify task dependencies (which tasks must be completed before others)
5. Order tasks logically based on dependencies and priority

Each task should:
- Have a clear, action-oriented title
- Include detailed description of what needs to be done
- Have realistic time estimate
- Be appropriately prioritized
- List any prerequisite tasks (by their 0-based order index)"""

CLOSING_INSTRUCTION = (
    "Please break this goal down into a comprehensive task plan with estimated timelines and dependencies."
)


@dataclass(frozen=True)
class Prompt:
    system: str
    user: str

    def as_messages(self) -> List[Dict[str, str]]:
        return [
            {"role": "system", "content": self.system},
            {"role": "user", "content": self.user},
        ]


def _ensure_datetime(value: Any) -> datetime:
    """Normalize a target date given as datetime, date or ISO-8601 string."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.strip())
        except ValueError:
            raise InvalidInput(f"Invalid target date: {value!r}")
    raise InvalidInput(f"Invalid target date type: {type(value).__name__}")


def build_prompt(title: str,
                 description: Optional[str] = None,
                 target_date: Union[datetime, date, str, None] = None) -> Prompt:
    """Build the prompt pair for a goal.

    Raises:
        InvalidInput: if the title is empty after trimming or the target date
            cannot be parsed.
    """
    title = (title or "").strip()
    if not title:
        raise InvalidInput("Goal title is required")

    lines = [f"Goal: {title}"]
    description = (description or "").strip()
    if description:
        lines.append(f"Description: {description}")
    if target_date is not None and target_date != "":
        lines.append(f"Target Date: {_ensure_datetime(target_date).date().isoformat()}")
    lines.append(CLOSING_INSTRUCTION)

    return Prompt(system=SYSTEM_PROMPT, user="\n\n".join(lines))
