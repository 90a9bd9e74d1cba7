"""
Script to create all database tables.

This script creates all tables defined in the models.
Run this after starting PostgreSQL with Docker.
"""
import asyncio
from releasehub.database import engine
from releasehub.models.base import Base
# Import all models to register them with Base
from releasehub.models.tenant import Tenant  # noqa: F401
from releasehub.models.application import Application, Version  # noqa: F401
from releasehub.models.environment import Environment  # noqa: F401
from releasehub.models.deployment import Deployment, DeploymentEvent  # noqa: F401
from releasehub.models.webhook import Webhook, WebhookEvent  # noqa: F401


async def create_all_tables():
    """Create all tables in the database."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    print("All tables created successfully!")


async def drop_all_tables():
    """Drop all tables in the database (for testing)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    print("All tables dropped!")


async def main():
    """Main entry point."""
    print("Creating database tables...")
    await create_all_tables()
    print("Done!")


if __name__ == "__main__":
    asyncio.run(main())
