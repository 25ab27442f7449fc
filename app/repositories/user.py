import logging

from app.core.config import settings
from database.connection import get_db, with_retry

logger = logging.getLogger(__name__)


class UserRepository:

    @staticmethod
    @with_retry()
    def get_plan(user_id: str) -> str:
        """Get the stored plan name for a user.

        Missing users and empty plan values resolve to the default plan,
        so callers always receive a plan name.

        Raises:
            postgrest.exceptions.APIError, httpx.HTTPError: If the lookup fails
            RuntimeError: If Supabase is not configured
        """
        db = get_db()
        result = (
            db.table(settings.users_table)
            .select(settings.plan_column)
            .eq("id", user_id)
            .maybe_single()
            .execute()
        )
        row = result.data if result else None
        if not row:
            logger.warning(f"No plan recorded for user {user_id}, using default plan")
            return settings.default_plan
        return row.get(settings.plan_column) or settings.default_plan
