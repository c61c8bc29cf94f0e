"""
Pydantic models for harness identities and the payloads sent to each service.

Attributes are snake_case in Python and camelCase on the wire; both spellings
are accepted on input. `to_payload()` emits the JSON body a service's create
endpoint expects, leaving out fields that only the harness keeps locally.
"""
from datetime import datetime
from typing import Any, ClassVar, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

Role = Literal["admin", "staff", "teacher", "student"]

ROLES: tuple[str, ...] = ("student", "teacher", "staff", "admin")
# A partial order: admin above staff above both teacher and student, which
# are not ranked against each other.
ROLE_RANK = {"student": 0, "teacher": 0, "staff": 1, "admin": 2}

SlotType = Literal["lecture", "practical", "exam", "project"]
CourseLevel = Literal["beginner", "intermediate", "advanced"]
CourseStatus = Literal["draft", "published", "archived"]
CourseVisibility = Literal["public", "private", "restricted"]

EventType = Literal[
    "class", "exam", "assignment", "meeting", "workshop",
    "presentation", "consultation", "break", "holiday", "other",
]
EventCategory = Literal["academic", "administrative", "social", "personal", "system"]
EventVisibility = Literal["public", "private", "restricted", "course-only"]
EventStatus = Literal["scheduled", "confirmed", "cancelled", "completed", "in-progress"]

ArticleStatus = Literal["draft", "review", "scheduled", "published", "archived", "rejected"]
ArticlePriority = Literal["low", "normal", "high", "urgent", "emergency"]
ArticleVisibility = Literal["public", "students", "faculty", "staff", "admin", "custom"]

NotificationType = Literal["info", "warning", "error", "success"]
NotificationPriority = Literal["low", "medium", "high", "urgent"]

ARTICLE_TRANSITIONS: dict[str, frozenset] = {
    "draft": frozenset({"review", "scheduled", "published", "archived"}),
    "review": frozenset({"draft", "scheduled", "published", "rejected"}),
    "scheduled": frozenset({"draft", "published"}),
    "published": frozenset({"archived"}),
    "rejected": frozenset({"draft"}),
    "archived": frozenset(),
}


def can_transition(current: str, target: str) -> bool:
    """Whether an article may move from `current` to `target` status."""
    return target in ARTICLE_TRANSITIONS.get(current, frozenset())


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    local_fields: ClassVar[frozenset] = frozenset()

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude_none=True,
            exclude=set(self.local_fields),
        )


class UserProfile(WireModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    first_name: str
    last_name: str
    department: Optional[str] = None
    student_id: Optional[str] = None
    phone: Optional[str] = None
    bio: Optional[str] = None


class NewUser(WireModel):
    """A registration fixture that has not reached the auth service yet."""
    __test__ = False

    email: str
    password: str
    role: Role = "student"
    profile: UserProfile
    is_active: bool = True

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(
            mode="json", by_alias=True, exclude_none=True, include={"email", "password", "role", "profile"}
        )


class TestUser(NewUser):
    """A registered identity. `id` is assigned by the auth service and never changes."""
    __test__ = False
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, validate_assignment=True)

    id: str = Field(frozen=True)

    @property
    def rank(self) -> int:
        return ROLE_RANK[self.role]


class AuthTokens(WireModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None


# ─── Courses ────────────────────────────────────────────────────────────────

class CourseDuration(WireModel):
    weeks: int = Field(gt=0)
    hours_per_week: int = Field(gt=0)
    total_hours: int = Field(gt=0)


class ScheduleSlot(WireModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: str = Field(pattern=r"^\d{2}:\d{2}$")
    end_time: str = Field(pattern=r"^\d{2}:\d{2}$")
    location: Optional[str] = None
    type: SlotType = "lecture"

    @model_validator(mode="after")
    def check_times(self):
        if self.start_time >= self.end_time:
            raise ValueError(f"schedule slot must end after it starts ({self.start_time}-{self.end_time})")
        return self


class TestCourse(WireModel):
    __test__ = False
    local_fields: ClassVar[frozenset] = frozenset(
        {"id", "instructor_id", "enrolled_students", "status", "resources"}
    )

    title: str
    code: str
    description: str
    credits: int = Field(ge=0)
    level: CourseLevel
    category: str
    duration: CourseDuration
    schedule: list[ScheduleSlot] = Field(min_length=1)
    capacity: int = Field(gt=0)
    prerequisites: list[str] = []
    tags: list[str] = []
    visibility: CourseVisibility = "public"
    start_date: datetime
    end_date: datetime

    id: Optional[str] = None
    instructor_id: Optional[str] = None
    enrolled_students: list[str] = []
    status: CourseStatus = "draft"
    resources: list[str] = []

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date >= self.end_date:
            raise ValueError("course startDate must be before endDate")
        return self


# ─── Events ─────────────────────────────────────────────────────────────────

class TestEvent(WireModel):
    __test__ = False
    local_fields: ClassVar[frozenset] = frozenset({"id"})

    title: str
    description: str
    start_date: datetime
    end_date: datetime
    type: EventType = "class"
    category: EventCategory = "academic"
    location: Optional[str] = None
    attendees: list[str] = []
    organizer: Optional[str] = None
    course_id: Optional[str] = None
    visibility: EventVisibility = "public"
    is_recurring: bool = False
    status: EventStatus = "scheduled"

    id: Optional[str] = None

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date >= self.end_date:
            raise ValueError("event startDate must be before endDate")
        return self


# ─── News ───────────────────────────────────────────────────────────────────

class TestArticle(WireModel):
    __test__ = False
    local_fields: ClassVar[frozenset] = frozenset({"id", "read_by", "notification_sent"})

    title: str
    content: str
    excerpt: Optional[str] = None
    author: Optional[str] = None
    category: str = "general"
    tags: list[str] = []
    status: ArticleStatus = "published"
    priority: ArticlePriority = "normal"
    visibility: ArticleVisibility = "public"
    is_featured: bool = False
    is_pinned: bool = False
    published_at: Optional[datetime] = None
    scheduled_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    metadata: dict[str, Any] = {}
    target_audience: list[Role] = []

    id: Optional[str] = None
    read_by: list[str] = []
    notification_sent: bool = False

    def can_transition_to(self, target: str) -> bool:
        return can_transition(self.status, target)


# ─── Notifications ──────────────────────────────────────────────────────────

class TestNotification(WireModel):
    __test__ = False
    local_fields: ClassVar[frozenset] = frozenset({"id", "delivered_at"})

    title: str
    message: str
    type: NotificationType = "info"
    category: str = "system"
    recipients: list[str] = Field(min_length=1)
    sender: Optional[str] = None
    priority: NotificationPriority = "medium"
    scheduled_for: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    read_by: list[str] = []
    is_read: bool = False
    metadata: dict[str, Any] = {}

    id: Optional[str] = None
