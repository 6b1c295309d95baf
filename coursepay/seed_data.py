"""
Database seeding script for local development.

Creates an ADMIN, an INSTRUCTOR with one paid course, and a STUDENT, then
prints a bearer token for each so the payment endpoints can be called
directly. Credentials are issued by the auth service in real deployments.

    python -m coursepay.seed_data
"""

import asyncio
from decimal import Decimal

from sqlalchemy import select

from coursepay.app.core.jwt import create_access_token
from coursepay.app.db.session import AsyncSessionLocal, Base, engine
from coursepay.app.models.course import Course
from coursepay.app.models.enums import UserRole
from coursepay.app.models.user import User

# Register every mapped table before create_all
from coursepay.app.models import (  # noqa: F401
    audit_log,
    enrollment,
    instructor_earning,
    notification,
    order,
    settlement_batch,
    transaction,
)

SEED_USERS = [
    ("admin", "admin@coursepay.local", "Quản trị viên", UserRole.ADMIN),
    ("instructor", "instructor@coursepay.local", "Nguyễn Văn A", UserRole.INSTRUCTOR),
    ("student", "student@coursepay.local", "Trần Thị B", UserRole.STUDENT),
]


async def seed_data():
    """
    Seed the demo users and course.

    Skips seeding when the admin user already exists.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting seeding...")

        result = await db.execute(select(User).where(User.username == "admin"))
        if result.scalar_one_or_none():
            print("ℹ️  ADMIN user already exists, skipping seeding")
            return

        users = {}
        for username, email, full_name, role in SEED_USERS:
            user = User(email=email, username=username, full_name=full_name, role=role, is_active=True)
            db.add(user)
            users[username] = user
        await db.flush()

        course = Course(
            instructor_id=users["instructor"].id,
            title="Lập trình Python cơ bản",
            price=Decimal("500000.00"),
        )
        db.add(course)
        await db.commit()

        print(f"✅ Created course {course.id}: {course.title} ({course.price} VND)")
        print("\n🎉 Seeding completed successfully!")
        print("\nBearer tokens:")
        for username, user in users.items():
            token = create_access_token(data={"sub": user.username, "user_id": user.id, "role": user.role.value})
            print(f"  - {user.role.value.upper():<10} {username}: {token}")

    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(seed_data())
