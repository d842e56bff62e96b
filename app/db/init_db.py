import asyncio
import logging

from app.db.session import AsyncSessionLocal
from app.services import settings as settings_service

logger = logging.getLogger(__name__)


async def init_db() -> None:
    """
    Make sure the permission settings row exists, seeded from the environment.
    """
    async with AsyncSessionLocal() as session:
        record = await settings_service.get_permission_settings_record(session, create_if_missing=True)
        await session.commit()
        logger.info(
            "Permission settings ready override_limit=%s allow_lo_override=%s",
            record.override_limit,
            record.allow_loan_officer_manager_override,
        )


if __name__ == "__main__":
    asyncio.run(init_db())
