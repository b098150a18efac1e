"""
Bootstrap script for creating the initial platform admin.

Idempotent for the user and role rows; a new API token is minted on every run.
Run via: python -m opphub.cli.bootstrap

Reads configuration from environment variables:
  OPPHUB_BOOTSTRAP_ADMIN_EMAIL - Admin email (required)
  OPPHUB_BOOTSTRAP_ROLES       - Comma-separated platform roles (default: admin)
  DATABASE_URL                 - PostgreSQL connection URL
"""

import asyncio
import logging
import os
import sys

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from opphub.auth.api_tokens import create_api_token
from opphub.auth.builtin_roles import PLATFORM_ADMIN_ROLE, is_platform_role
from opphub.db.models import PlatformRoleAssignment, User
from opphub.db.session import close_db, get_db_session, init_db

# Use stdlib logging — structlog isn't configured yet during bootstrap
logger = logging.getLogger("opphub.bootstrap")
logging.basicConfig(level=logging.INFO, format="%(message)s")


def parse_roles(raw: str) -> list[str]:
    """Split the roles variable; unknown names are rejected."""
    roles = [r.strip() for r in raw.split(",") if r.strip()] or [PLATFORM_ADMIN_ROLE]
    unknown = [r for r in roles if not is_platform_role(r)]
    if unknown:
        raise ValueError(f"Unknown platform roles: {', '.join(unknown)}")
    return roles


async def seed_admin(session: AsyncSession, admin_email: str, roles: list[str]) -> str:
    """Ensure the user and its platform roles exist; return a new raw API token."""
    result = await session.execute(select(User).where(User.email == admin_email))
    if result.scalar_one_or_none():
        logger.info("User %s already exists, skipping user creation", admin_email)
    else:
        session.add(User(email=admin_email, display_name="Admin", is_active=True))
        logger.info("Created user: %s", admin_email)

    for role in roles:
        result = await session.execute(
            select(PlatformRoleAssignment).where(
                PlatformRoleAssignment.provider_name == "local",
                PlatformRoleAssignment.email == admin_email,
                PlatformRoleAssignment.role_name == role,
            )
        )
        if result.scalar_one_or_none():
            logger.info("Role %s already assigned to %s, skipping", role, admin_email)
            continue
        session.add(
            PlatformRoleAssignment(provider_name="local", email=admin_email, role_name=role)
        )
        logger.info("Assigned %s role to %s", role, admin_email)

    _, raw_token = await create_api_token(session, admin_email, description="bootstrap")
    return raw_token


async def bootstrap() -> None:
    admin_email = os.environ.get("OPPHUB_BOOTSTRAP_ADMIN_EMAIL", "").strip()
    database_url = os.environ.get("DATABASE_URL", "").strip()

    if not admin_email:
        logger.error("OPPHUB_BOOTSTRAP_ADMIN_EMAIL is required")
        sys.exit(1)

    if not database_url:
        logger.error("DATABASE_URL is required")
        sys.exit(1)

    try:
        roles = parse_roles(os.environ.get("OPPHUB_BOOTSTRAP_ROLES", ""))
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    # Ensure async driver
    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)

    await init_db(database_url)
    logger.info("Connected to database")

    try:
        async with get_db_session() as session:
            raw_token = await seed_admin(session, admin_email, roles)
    finally:
        await close_db()

    logger.info("API token: %s", raw_token)
    logger.warning("IMPORTANT: Save this token now. It will not be shown again.")
    logger.info("Bootstrap complete")


if __name__ == "__main__":
    asyncio.run(bootstrap())
