"""Daily message allowance per user."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from sqlalchemy import func
from sqlmodel import select

from agent_runner.core.config import settings
from agent_runner.core.database import get_session
from agent_runner.core.errors import RateLimitExceededError
from agent_runner.models import MessageRole, Task, TaskMessage

logger = logging.getLogger(__name__)


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    total: int
    reset_at: datetime


class RateLimitService:
    """Counts tasks and follow-ups a user sent today (UTC).

    Every task stores its prompt as the first user message, so counting user
    messages on live tasks covers both new tasks and follow-ups.
    """

    @staticmethod
    def check(user_id: str, now: datetime | None = None) -> RateLimitResult:
        now = now or datetime.now(UTC)
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        reset_at = day_start + timedelta(days=1)
        total = settings.max_messages_per_day

        with get_session() as session:
            statement = (
                select(func.count())
                .select_from(TaskMessage)
                .join(Task, Task.id == TaskMessage.task_id)
                .where(
                    Task.user_id == user_id,
                    Task.deleted_at.is_(None),
                    TaskMessage.role == MessageRole.USER.value,
                    TaskMessage.created_at >= day_start,
                )
            )
            used = session.execute(statement).scalar() or 0

        remaining = max(total - used, 0)
        return RateLimitResult(
            allowed=used < total,
            remaining=remaining,
            total=total,
            reset_at=reset_at,
        )

    @staticmethod
    def enforce(user_id: str) -> RateLimitResult:
        """Raise :class:`RateLimitExceededError` when the allowance is used up."""
        result = RateLimitService.check(user_id)
        if not result.allowed:
            logger.info(f"Rate limit reached for user {user_id}")
            raise RateLimitExceededError(
                remaining=result.remaining,
                total=result.total,
                reset_at=result.reset_at,
            )
        return result
