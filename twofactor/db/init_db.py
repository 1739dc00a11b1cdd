import asyncio
import logging

from sqlalchemy import select

from twofactor.core.security import get_password_hash
from twofactor.core.settings import settings
from twofactor.db.session import AsyncSessionLocal
from twofactor.models.user import User

logger = logging.getLogger(__name__)


async def init_db() -> None:
    """
    Seed the database with a demo account when SEED_USER_EMAIL is configured.
    """
    if not settings.seed_user_email or not settings.seed_user_password:
        logger.info("No seed user configured; skipping database seed")
        return

    async with AsyncSessionLocal() as session:
        stmt = select(User).where(User.email == settings.seed_user_email)
        result = await session.execute(stmt)
        user = result.scalar_one_or_none()

        if user:
            logger.info("Seed user already exists")
            return

        session.add(
            User(
                email=settings.seed_user_email,
                name=settings.seed_user_name,
                hashed_password=get_password_hash(settings.seed_user_password),
                is_active=True,
                token_version=0,
            )
        )
        await session.commit()
        logger.info("Seed user created")


if __name__ == "__main__":
    asyncio.run(init_db())
