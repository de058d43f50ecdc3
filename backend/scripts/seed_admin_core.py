"""
Seed the permission catalogue, system roles, their default data-access rules
and (optionally) a bootstrap super admin.

Safe to run repeatedly: only missing rows are inserted.

Usage:
    alembic upgrade head
    python -m scripts.seed_admin_core

The super admin is created when ADMIN_EMAIL, ADMIN_USERNAME and
ADMIN_PASSWORD are all set.
"""
import asyncio
import os

from clickgate.database import AsyncSessionLocal, engine
from clickgate.models import Base
from clickgate.services.seed import ensure_super_admin, seed_rbac


async def seed_admin_core() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as session:
        async with session.begin():
            report = await seed_rbac(session)

            print("Seeding RBAC data...")
            print(f"  Permissions created: {len(report.permissions_created)}")
            print(f"  Roles created: {', '.join(report.roles_created) or 'none'}")
            print(f"  Role-permission links created: {report.links_created}")
            print(f"  Default data-access rules created: {report.rules_created}")

            email = os.getenv("ADMIN_EMAIL")
            username = os.getenv("ADMIN_USERNAME")
            password = os.getenv("ADMIN_PASSWORD")
            if email and username and password:
                user, created = await ensure_super_admin(
                    session, email=email, username=username, password=password
                )
                state = "created" if created else "already exists"
                print(f"  Super admin {user.email} {state}")
            else:
                print("  ADMIN_EMAIL/ADMIN_USERNAME/ADMIN_PASSWORD not set, skipping super admin")

    await engine.dispose()
    print("\nRBAC seeding completed.")


if __name__ == "__main__":
    asyncio.run(seed_admin_core())
