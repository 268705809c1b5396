"""
CBT Exam Engine - Demo Seeder
Seeds an admin account, a class of students and an active demo exam
"""
import argparse
import asyncio

from sqlalchemy import select

from cbt.core.database import async_session_maker, init_db
from cbt.core.security import get_password_hash
from cbt.models.catalog import Exam, Question
from cbt.models.student import Admin, Student


DEMO_CLASS = "JSS1"

DEMO_STUDENTS = [
    {"admission_number": "JSS1-001", "first_name": "Amina", "last_name": "Bello"},
    {"admission_number": "JSS1-002", "first_name": "Chidi", "last_name": "Okafor"},
    {"admission_number": "JSS1-003", "first_name": "Tunde", "middle_name": "Ade", "last_name": "Bakare"},
]

DEMO_EXAMS = {
    "Mathematics": {
        "duration_minutes": 30,
        "questions": [
            {"text": "What is 2 + 2?", "options": ["3", "4", "5", "6"], "answer": "B"},
            {"text": "What is 9 x 3?", "options": ["27", "12", "93", "18"], "answer": "A"},
            {"text": "What is 15 - 7?", "options": ["9", "7", "8", "6"], "answer": "C"},
            {"text": "What is 36 / 6?", "options": ["5", "7", "8", "6"], "answer": "D"},
        ],
    },
    "English": {
        "duration_minutes": 20,
        "questions": [
            {"text": "Pick the noun.", "options": ["run", "quickly", "table", "blue"], "answer": "C"},
            {"text": "Plural of 'child'?", "options": ["childs", "children", "childes", "child"], "answer": "B"},
        ],
    },
}


async def seed_demo(admin_username: str, admin_password: str, student_password: str) -> None:
    """Insert demo data unless it is already present."""
    await init_db()

    async with async_session_maker() as session:
        existing = await session.execute(select(Admin).where(Admin.username == admin_username))
        if existing.scalar_one_or_none() is None:
            session.add(Admin(username=admin_username, hashed_password=get_password_hash(admin_password)))
            print(f"Created admin: {admin_username}")

        for data in DEMO_STUDENTS:
            existing = await session.execute(
                select(Student).where(Student.admission_number == data["admission_number"])
            )
            if existing.scalar_one_or_none():
                continue
            session.add(Student(
                hashed_password=get_password_hash(student_password),
                class_level=DEMO_CLASS,
                **data,
            ))
            print(f"Created student: {data['admission_number']}")

        for subject, exam_data in DEMO_EXAMS.items():
            existing = await session.execute(
                select(Exam).where(Exam.subject == subject, Exam.class_level == DEMO_CLASS)
            )
            if existing.scalar_one_or_none():
                continue

            exam = Exam(
                subject=subject,
                class_level=DEMO_CLASS,
                duration_minutes=exam_data["duration_minutes"],
                is_active=True,
            )
            session.add(exam)
            await session.flush()
            print(f"Created exam: {subject} ({DEMO_CLASS})")

            for q in exam_data["questions"]:
                a, b, c, d = q["options"]
                session.add(Question(
                    exam_id=exam.id,
                    text=q["text"],
                    option_a=a,
                    option_b=b,
                    option_c=c,
                    option_d=d,
                    correct_answer=q["answer"],
                ))
            print(f"  Added {len(exam_data['questions'])} questions")

        await session.commit()
        print("\nDemo seeding complete!")


def main() -> None:
    parser = argparse.ArgumentParser(description="Seed demo data for the CBT exam engine")
    parser.add_argument("--admin-username", default="admin")
    parser.add_argument("--admin-password", default="admin123")
    parser.add_argument("--student-password", default="pass1234")
    args = parser.parse_args()
    asyncio.run(seed_demo(args.admin_username, args.admin_password, args.student_password))


if __name__ == "__main__":
    main()
