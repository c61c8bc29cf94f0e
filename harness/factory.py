"""
Realistic test data for every platform resource, generated with Faker.

Each `create_*` builds a random but valid fixture and then deep-merges the
caller's overrides over it, so a test only spells out the fields it cares
about. Results are pydantic models from `harness.models`; call `to_payload()`
to get the request body.
"""
import random
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from faker import Faker

from .models import (
    NewUser,
    ROLES,
    TestArticle,
    TestCourse,
    TestEvent,
    TestNotification,
    TestUser,
)

EMAIL_DOMAIN = "yggdrasil.test"
DEFAULT_PASSWORD = "TestPassword123!"

COURSE_TITLES = [
    "Introduction to Programming",
    "Advanced JavaScript",
    "Database Design",
    "Machine Learning Fundamentals",
    "Web Development Bootcamp",
    "Data Structures and Algorithms",
    "Software Engineering Principles",
    "Mobile App Development",
    "Cloud Computing Essentials",
    "Cybersecurity Fundamentals",
]
COURSE_CATEGORIES = [
    "programming", "web-development", "mobile-development", "data-science",
    "artificial-intelligence", "cybersecurity", "cloud-computing", "devops",
    "database", "design", "project-management", "soft-skills", "other",
]
EVENT_TITLES = [
    "Programming Lecture",
    "Database Workshop",
    "Team Meeting",
    "Final Exam",
    "Project Presentation",
    "Office Hours",
    "Study Group",
    "Code Review Session",
    "Guest Speaker",
    "Career Fair",
]
ARTICLE_TITLES = [
    "New Course Announcements",
    "Campus Events This Week",
    "Registration Deadlines",
    "System Maintenance Notice",
    "Student Achievement Awards",
    "Faculty Spotlight",
    "Research Opportunities",
    "Career Services Update",
    "Library Hours Change",
    "Exam Schedule Released",
]
NOTIFICATION_TITLES = [
    "Course Enrollment Confirmed",
    "Assignment Due Soon",
    "New Message Received",
    "Event Reminder",
    "Grade Posted",
    "System Update",
    "Meeting Invitation",
    "Deadline Approaching",
    "New Announcement",
    "Profile Update Required",
]


def deep_merge(base: dict, overrides: Optional[dict]) -> dict:
    """Return `base` with `overrides` merged in; nested dicts merge, everything else replaces."""
    merged = dict(base)
    for key, value in (overrides or {}).items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def object_id() -> str:
    """A random 24-hex string shaped like a MongoDB ObjectId."""
    return uuid.uuid4().hex[:24]


class TestDataFactory:
    __test__ = False

    def __init__(self, seed: Optional[int] = None, locale: str = "en_US"):
        self.fake = Faker(locale)
        self.random = random.Random(seed)
        if seed is not None:
            self.fake.seed_instance(seed)

    def unique_email(self, first_name: str = "test", last_name: str = "user") -> str:
        local = f"{first_name}.{last_name}".lower().replace(" ", "").replace("'", "")
        return f"{local}.{uuid.uuid4().hex[:10]}@{EMAIL_DOMAIN}"

    # ─── Users ──────────────────────────────────────────────────────────────

    def create_user(self, role: str = "student", overrides: Optional[dict] = None) -> NewUser:
        """A registration fixture with a unique email."""
        first_name = self.fake.first_name()
        last_name = self.fake.last_name()
        base = {
            "email": self.unique_email(first_name, last_name),
            "password": DEFAULT_PASSWORD,
            "role": role,
            "profile": {"firstName": first_name, "lastName": last_name},
            "isActive": True,
        }
        return NewUser.model_validate(deep_merge(base, overrides))

    def create_registered_user(self, role: str = "student", overrides: Optional[dict] = None) -> TestUser:
        """A user that looks registered (has an id) without calling any service."""
        fixture = self.create_user(role, overrides)
        return TestUser(id=(overrides or {}).get("id") or object_id(), **fixture.model_dump())

    # ─── Courses ────────────────────────────────────────────────────────────

    def create_course(self, instructor_id: Optional[str] = None, overrides: Optional[dict] = None) -> TestCourse:
        weeks = self.random.randint(4, 16)
        hours_per_week = self.random.randint(2, 8)
        start_date = datetime.now(timezone.utc) + timedelta(days=7)
        base = {
            "title": self.random.choice(COURSE_TITLES),
            "code": self.fake.bothify("??####").upper(),
            "description": self.fake.paragraph(nb_sentences=3),
            "credits": self.random.randint(1, 6),
            "level": self.random.choice(["beginner", "intermediate", "advanced"]),
            "category": self.random.choice(COURSE_CATEGORIES),
            "duration": {
                "weeks": weeks,
                "hoursPerWeek": hours_per_week,
                "totalHours": weeks * hours_per_week,
            },
            "schedule": [
                {
                    "dayOfWeek": 1,
                    "startTime": "09:00",
                    "endTime": "11:00",
                    "location": f"Room {self.random.randint(100, 999)}",
                    "type": "lecture",
                },
                {
                    "dayOfWeek": 3,
                    "startTime": "14:00",
                    "endTime": "16:00",
                    "location": f"Lab {self.random.randint(1, 20)}",
                    "type": "practical",
                },
            ],
            "capacity": self.random.randint(10, 50),
            "visibility": "public",
            "startDate": start_date,
            "endDate": start_date + timedelta(days=90),
            "id": object_id(),
            "instructorId": instructor_id,
            "status": "draft",
        }
        merged = deep_merge(base, overrides)
        # an overridden start date drags the default end date along
        if overrides and "startDate" in overrides and "endDate" not in overrides:
            merged["endDate"] = _as_datetime(overrides["startDate"]) + timedelta(days=90)
        return TestCourse.model_validate(merged)

    # ─── Events ─────────────────────────────────────────────────────────────

    def create_event(self, organizer_id: Optional[str] = None, overrides: Optional[dict] = None) -> TestEvent:
        overrides = overrides or {}
        start_date = _as_datetime(
            overrides.get("startDate")
            or self.fake.future_datetime(end_date="+30d", tzinfo=timezone.utc)
        )
        base = {
            "title": self.random.choice(EVENT_TITLES),
            "description": self.fake.paragraph(nb_sentences=2),
            "startDate": start_date,
            "endDate": start_date + timedelta(hours=1),
            "type": self.random.choice(
                ["class", "exam", "assignment", "meeting", "workshop", "presentation", "consultation"]
            ),
            "category": self.random.choice(["academic", "administrative", "social", "personal"]),
            "location": f"{self.fake.building_number()} {self.fake.street_name()}",
            "organizer": organizer_id,
            "visibility": "public",
            "status": "scheduled",
            "id": object_id(),
        }
        return TestEvent.model_validate(deep_merge(base, overrides))

    def create_calendar_event(self, organizer_id: Optional[str] = None, overrides: Optional[dict] = None) -> TestEvent:
        return self.create_event(organizer_id, overrides)

    # ─── News ───────────────────────────────────────────────────────────────

    def create_article(self, author_id: Optional[str] = None, overrides: Optional[dict] = None) -> TestArticle:
        base = {
            "title": self.random.choice(ARTICLE_TITLES),
            "content": "\n\n".join(self.fake.paragraphs(nb=5)),
            "excerpt": self.fake.paragraph(nb_sentences=1),
            "author": author_id,
            "category": self.random.choice(["announcement", "academic", "administrative", "events", "general"]),
            "tags": self.random.sample(["important", "urgent", "deadline", "event", "course", "system"],
                                       k=self.random.randint(1, 3)),
            "status": "published",
            "priority": self.random.choice(["low", "normal", "high", "urgent"]),
            "visibility": "public",
            "publishedAt": self.fake.past_datetime(start_date="-7d", tzinfo=timezone.utc),
            "targetAudience": ["student", "teacher"],
            "id": object_id(),
        }
        return TestArticle.model_validate(deep_merge(base, overrides))

    # ─── Notifications ──────────────────────────────────────────────────────

    def create_notification(self, recipient_ids: list, overrides: Optional[dict] = None) -> TestNotification:
        base = {
            "title": self.random.choice(NOTIFICATION_TITLES),
            "message": self.fake.paragraph(nb_sentences=2),
            "type": self.random.choice(["info", "warning", "error", "success"]),
            "category": self.random.choice(["system", "course", "assignment", "event", "news", "social", "personal"]),
            "recipients": list(recipient_ids),
            "priority": self.random.choice(["low", "medium", "high", "urgent"]),
            "id": object_id(),
        }
        return TestNotification.model_validate(deep_merge(base, overrides))

    # ─── Scenarios ──────────────────────────────────────────────────────────

    def create_course_scenario(self, student_count: int = 5) -> dict[str, Any]:
        """A teacher, enrolled students, and a course with its events, news and notifications."""
        instructor = self.create_registered_user("teacher")
        students = [self.create_registered_user("student") for _ in range(student_count)]
        student_ids = [s.id for s in students]
        course = self.create_course(instructor.id, {"enrolledStudents": student_ids})

        events = [
            self.create_event(instructor.id, {
                "title": "Course Introduction",
                "type": "class",
                "courseId": course.id,
                "attendees": [instructor.id, *student_ids],
            }),
            self.create_event(instructor.id, {
                "title": "Midterm Exam",
                "type": "exam",
                "courseId": course.id,
                "attendees": student_ids,
            }),
        ]
        articles = [
            self.create_article(instructor.id, {
                "title": f"{course.title} - Course Materials Available",
                "category": "academic",
                "targetAudience": ["student"],
            }),
        ]
        notifications = [
            self.create_notification(student_ids, {
                "title": "Welcome to the Course",
                "category": "course",
                "sender": instructor.id,
            }),
        ]
        return {
            "instructor": instructor,
            "students": students,
            "course": course,
            "events": events,
            "articles": articles,
            "notifications": notifications,
        }

    def create_registration_scenarios(self) -> dict[str, dict]:
        """Registration bodies: one valid, three that the auth service must reject or flag."""
        base = self.create_user("student").to_payload()
        return {
            "validUser": {
                "email": self.unique_email("valid", "user"),
                "password": "ValidPassword123!",
                "role": "student",
                "profile": {"firstName": "Valid", "lastName": "User"},
            },
            "invalidEmail": {**base, "email": "invalid-email"},
            "weakPassword": {**base, "password": "123"},
            "duplicateEmail": {**base, "email": self.unique_email("duplicate", "user")},
        }

    def generate_bulk_data(
        self,
        users: int = 10,
        courses: int = 5,
        events: int = 15,
        articles: int = 8,
        notifications: int = 20,
    ) -> dict[str, list]:
        """A consistent data set: courses taught by teachers, events inside courses."""
        people = [self.create_registered_user(self.random.choice(ROLES)) for _ in range(users)]
        # guarantee the roles the relations below need
        people.append(self.create_registered_user("teacher"))
        people.append(self.create_registered_user("student"))
        teachers = [u for u in people if u.role == "teacher"]
        students = [u for u in people if u.role == "student"]
        authors = [u for u in people if u.role != "student"]

        course_list = []
        for _ in range(courses):
            enrolled = self.random.sample(students, k=self.random.randint(1, min(10, len(students))))
            course_list.append(self.create_course(
                self.random.choice(teachers).id,
                {"enrolledStudents": [s.id for s in enrolled]},
            ))

        event_list = []
        for _ in range(events if course_list else 0):
            course = self.random.choice(course_list)
            event_list.append(self.create_event(
                self.random.choice(teachers).id,
                {"courseId": course.id, "attendees": course.enrolled_students},
            ))

        article_list = [self.create_article(self.random.choice(authors).id) for _ in range(articles)]

        notification_list = []
        for _ in range(notifications):
            recipients = self.random.sample(people, k=self.random.randint(1, min(5, len(people))))
            notification_list.append(self.create_notification(
                [r.id for r in recipients],
                {"sender": self.random.choice(people).id},
            ))

        return {
            "users": people,
            "courses": course_list,
            "events": event_list,
            "articles": article_list,
            "notifications": notification_list,
        }


def _as_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
