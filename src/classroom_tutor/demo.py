"""
Demo classroom used by ``classroom-tutor serve`` and ``chat``.

Seeds an ``InMemoryStore`` with one teacher, one student, one learning
tutor, one assessment tutor and a room binding them, and returns the bearer
tokens that identify the two people.
"""

from dataclasses import dataclass, field
from datetime import date

from classroom_tutor.models import Author, BotType, Room, TutorProfile, UserRole
from classroom_tutor.store import InMemoryStore

DEMO_ROOM_ID = "demo-room"
DEMO_TUTOR_ID = "demo-tutor"
DEMO_ASSESSOR_ID = "demo-assessor"
DEMO_STUDENT_ID = "demo-student"
DEMO_TEACHER_ID = "demo-teacher"


@dataclass
class DemoClassroom:
    room: Room
    tutor: TutorProfile
    assessor: TutorProfile
    student: Author
    teacher: Author
    tokens: dict[str, str] = field(default_factory=dict)


def seed_demo(store: InMemoryStore, *, country_code: str = "GB") -> DemoClassroom:
    teacher = store.add_author(Author(id=DEMO_TEACHER_ID, role=UserRole.TEACHER, display_name="Ms Rivera"))
    student = store.add_author(
        Author(
            id=DEMO_STUDENT_ID,
            role=UserRole.STUDENT,
            country_code=country_code,
            birthdate=date(2011, 3, 14),
            display_name="Sam",
        )
    )
    tutor = store.add_tutor(
        TutorProfile(
            id=DEMO_TUTOR_ID,
            name="Biology Buddy",
            system_prompt="You help secondary school students understand biology. Ask guiding questions.",
            welcome_message="Hi! What are we learning about today?",
        )
    )
    assessor = store.add_tutor(
        TutorProfile(
            id=DEMO_ASSESSOR_ID,
            name="Quiz Master",
            system_prompt="Ask the student short questions about photosynthesis, one at a time.",
            bot_type=BotType.ASSESSMENT,
            assessment_criteria="Understands inputs and outputs of photosynthesis.",
        )
    )
    room = store.add_room(
        Room(
            id=DEMO_ROOM_ID,
            teacher_id=teacher.id,
            member_ids={student.id},
            tutor_ids={tutor.id, assessor.id},
            name="Year 8 Biology",
        )
    )
    return DemoClassroom(
        room=room,
        tutor=tutor,
        assessor=assessor,
        student=student,
        teacher=teacher,
        tokens={"demo-student-token": student.id, "demo-teacher-token": teacher.id},
    )
