"""Seed the database with a demo franqueadora.

Run with: python -m scripts.seed
Creates one franqueadora with a published policy, two academies, a teacher,
two students, opening balances and a week of open slots.
"""

import asyncio
from datetime import UTC, datetime, time, timedelta

from sqlalchemy import select

from trainerbook.core.database import async_session_factory, engine
from trainerbook.models import (
    Academy,
    AcademyPolicyOverride,
    Base,
    Booking,
    BookingSource,
    BookingStatus,
    ConnectionStatus,
    FranchisorPolicy,
    Franqueadora,
    PolicyStatus,
    TeacherStudent,
    User,
    UserRole,
)
from trainerbook.services.ledger import BalanceLedger

ACADEMIES = [
    {"name": "Centro", "capacity_per_slot": 3},
    # Smaller floor, one class at a time and a stricter notice rule
    {"name": "Jardins", "capacity_per_slot": 1, "overrides": {"student_min_booking_notice_minutes": 120}},
]

POLICY = {
    "late_cancel_threshold_minutes": 240,
    "teacher_max_daily_classes": 8,
    "max_future_booking_days": 21,
    "max_cancel_per_month": 4,
}

# Open slots published per academy per day, UTC
SLOT_HOURS = [7, 9, 12, 18]


async def seed():
    # Create tables (in dev; production uses migrations)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_factory() as db:
        # Check if already seeded
        result = await db.execute(select(Franqueadora).where(Franqueadora.name == "TrainerBook Demo"))
        if result.scalar_one_or_none():
            print("Database already seeded, skipping.")
            return

        franqueadora = Franqueadora(name="TrainerBook Demo")
        db.add(franqueadora)
        await db.flush()

        db.add(FranchisorPolicy(franqueadora_id=franqueadora.id, status=PolicyStatus.PUBLISHED, **POLICY))

        academies = []
        for academy_data in ACADEMIES:
            overrides = academy_data.get("overrides")
            academy = Academy(
                franqueadora_id=franqueadora.id,
                name=academy_data["name"],
                capacity_per_slot=academy_data["capacity_per_slot"],
            )
            db.add(academy)
            await db.flush()
            if overrides:
                db.add(AcademyPolicyOverride(academy_id=academy.id, overrides=overrides))
            academies.append(academy)

        teacher = User(email="teacher@trainerbook.io", name="Test Teacher", role=UserRole.TEACHER)
        student = User(email="student@example.com", name="Test Student", role=UserRole.STUDENT)
        portfolio_student = User(email="portfolio@example.com", name="Portfolio Student", role=UserRole.STUDENT)
        db.add_all([teacher, student, portfolio_student])
        await db.flush()

        db.add(
            TeacherStudent(
                teacher_id=teacher.id,
                student_id=portfolio_student.id,
                is_portfolio=True,
                connection_status=ConnectionStatus.APPROVED,
            )
        )

        ledger = BalanceLedger(db)
        await ledger.grant_student_classes(student.id, franqueadora.id, 10, meta={"reason": "seed"})
        await ledger.grant_student_classes(portfolio_student.id, franqueadora.id, 5, meta={"reason": "seed"})
        await ledger.grant_professor_hours(teacher.id, franqueadora.id, 20, meta={"reason": "seed"})

        today = datetime.now(UTC).date()
        total_slots = 0
        for day_offset in range(1, 8):
            day = today + timedelta(days=day_offset)
            for academy in academies:
                for hour in SLOT_HOURS:
                    start_at = datetime.combine(day, time(hour), tzinfo=UTC)
                    db.add(
                        Booking(
                            source=BookingSource.TEACHER,
                            teacher_id=teacher.id,
                            academy_id=academy.id,
                            start_at=start_at,
                            end_at=start_at + timedelta(hours=1),
                            status_canonical=BookingStatus.AVAILABLE,
                            cancellable_until=start_at - timedelta(minutes=POLICY["late_cancel_threshold_minutes"]),
                        )
                    )
                    total_slots += 1

        await db.commit()

        print(f"Seeded: {franqueadora.name} (id {franqueadora.id})")
        print(f"  {len(academies)} academies")
        print(f"  {total_slots} open slots over the next 7 days")
        print("  3 test users:")
        print(f"    teacher    {teacher.email} (id {teacher.id}, 20 hours)")
        print(f"    student    {student.email} (id {student.id}, 10 classes)")
        print(f"    portfolio  {portfolio_student.email} (id {portfolio_student.id}, 5 classes)")


if __name__ == "__main__":
    asyncio.run(seed())
