#!/usr/bin/env python3
"""
Seed the database with a demo admin, teacher, groups, students and parents
"""

import asyncio
import sys

from sqlalchemy import delete

from danceschool.core.auth import get_password_hash
from danceschool.core.database import AsyncSessionLocal, create_tables, close_db
from danceschool.models import (
    User, Group, Student, Parent, Schedule, Attendance, Update, Comment,
    group_parents, group_teachers
)
from danceschool.services import roster

GROUPS = [
    ("Väikesed tantsijad", "Tallinn, Pärnu mnt 10", "Lapsed 4-6 aastat"),
    ("Hip-hop algajad", "Tallinn, Narva mnt 5", "Lapsed 7-10 aastat"),
    ("Noored tantsijad", "Tartu, Riia 2", "Noored 11-14 aastat"),
]

STUDENTS = [
    # first name, last name, age, group index, parent name, parent email
    ("Mia", "Tamm", 5, 0, "Jüri Tamm", "juri.tamm@example.com"),
    ("Emma", "Tamm", 8, 1, "Jüri Tamm", "juri.tamm@example.com"),
    ("Sofia", "Saar", 6, 0, "Kati Saar", "kati.saar@example.com"),
    ("Oliver", "Mägi", 9, 1, "Mart Mägi", "mart.magi@example.com"),
    ("Robin", "Kask", 12, 2, "Liis Kask", "liis.kask@example.com"),
    ("Lisete", "Kask", 13, 2, "Liis Kask", " LIIS.KASK@example.com"),
]


async def clear_data(session):
    for model in (Comment, Update, Attendance, Schedule):
        await session.execute(delete(model))
    await session.execute(delete(group_parents))
    await session.execute(delete(group_teachers))
    for model in (Student, Parent, Group, User):
        await session.execute(delete(model))
    await session.commit()


async def seed():
    print("🌱 Seeding dance school data")
    print("=" * 50)

    await create_tables()

    async with AsyncSessionLocal() as session:
        try:
            await clear_data(session)
            print("✅ Existing data cleared")

            admin = User(
                name="Admin",
                email="admin@tantsukool.ee",
                hashed_password=get_password_hash("admin123"),
                role="admin",
            )
            teacher = User(
                name="Anna Õpetaja",
                email="anna@tantsukool.ee",
                hashed_password=get_password_hash("teacher123"),
                role="teacher",
            )
            session.add_all([admin, teacher])

            groups = [Group(name=name, location=location, description=description)
                      for name, location, description in GROUPS]
            session.add_all(groups)
            teacher.assigned_groups = groups[:2]
            await session.flush()
            print(f"✅ Created {len(groups)} groups and 2 users")

            for first_name, last_name, age, group_index, parent_name, parent_email in STUDENTS:
                student = Student(
                    first_name=first_name,
                    last_name=last_name,
                    age=age,
                    parent_email=roster.normalize_email(parent_email),
                )
                session.add(student)
                await session.flush()
                await roster.assign_parent_to_student(session, student, parent_email, parent_name)
                await roster.attach_student_to_group(session, student, groups[group_index].id)

            await session.commit()
            print(f"✅ Enrolled {len(STUDENTS)} students")

        except Exception as e:
            await session.rollback()
            print(f"❌ Seeding failed: {e}")
            return False

    await close_db()

    print("\n" + "=" * 50)
    print("🎉 Seeding complete!")
    print("   Admin:   admin@tantsukool.ee / admin123")
    print("   Teacher: anna@tantsukool.ee / teacher123")
    return True


if __name__ == "__main__":
    print("⚠️  This will DELETE all existing data and insert demo records")

    confirm = input("\n✅ Continue? (y/N): ").strip().lower()
    if confirm not in ['y', 'yes']:
        print("❌ Seeding cancelled")
        sys.exit(0)

    if not asyncio.run(seed()):
        sys.exit(1)
