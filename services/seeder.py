# services/seeder.py
from __future__ import annotations

from passlib.context import CryptContext

from models import User, ROLE_ADMIN
from services import config
from services.settings_provider import seed_settings_if_empty

pwd_ctx = CryptContext(schemes=["bcrypt"], deprecated="auto")


async def seed_admin(logger=print) -> None:
    if await User.exists():
        return
    await User.create(
        username=config.ADMIN_USERNAME,
        full_name="Administrator",
        hashed_password=pwd_ctx.hash(config.ADMIN_PASSWORD),
        role=ROLE_ADMIN,
    )
    logger(f"[seed] created admin user {config.ADMIN_USERNAME!r}")


async def seed_if_empty(logger=print) -> None:
    """Greenfield database: first admin, default settings and tariff schedule."""
    await seed_admin(logger=logger)
    await seed_settings_if_empty(logger=logger)
