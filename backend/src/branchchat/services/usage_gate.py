"""Daily message quota for free-plan users."""

import logging
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from branchchat.config import settings
from branchchat.errors import QuotaExceeded

logger = logging.getLogger(__name__)

CONSTRAINED_PLANS = {"free"}


def usage_day(now: datetime | None = None) -> date:
    """Calendar day in the usage reference timezone."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(ZoneInfo(settings.usage_timezone)).date()


def is_constrained(plan_type: str | None) -> bool:
    return plan_type in CONSTRAINED_PLANS and not settings.disable_daily_limit


def is_daily_limit_reached(message_count: int, limit: int | None = None) -> bool:
    if limit is None:
        limit = settings.free_plan_daily_limit
    return message_count >= limit


class UsageGate:
    """Rejects turns once a constrained user has used up today's quota.

    Only reads the counter; the increment happens when the turn is persisted.
    """

    def __init__(self, db):
        self.db = db

    async def check(self, user_id: str, plan_type: str | None, now: datetime | None = None):
        if not is_constrained(plan_type):
            return
        usage = await self.db.get_usage(user_id, usage_day(now))
        if is_daily_limit_reached(usage.message_count):
            logger.info(f"User {user_id} hit the daily limit ({usage.message_count} messages on {usage.day})")
            raise QuotaExceeded("Daily message limit reached")
