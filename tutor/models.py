import json
from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    TEACHER = "teacher"
    STUDENT = "student"


class SummaryStatus(str, Enum):
    NOT_STARTED = "not_started"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class User:
    id: int
    email: str
    name: str
    role: str  # admin | teacher | student
    teacher_code: str | None
    created_at: str


@dataclass
class PendingTranscript:
    id: int
    teacher_id: int
    teacher_code: str | None
    course_code: str
    course_name: str
    lesson_title: str
    raw_transcript: str
    captured_at: str
    metadata: dict | None
    processed: bool
    created_at: str

    @classmethod
    def from_row(cls, row) -> "PendingTranscript":
        data = dict(row)
        data["metadata"] = json.loads(data["metadata"]) if data["metadata"] else None
        data["processed"] = bool(data["processed"])
        return cls(**data)


@dataclass
class Lesson:
    id: int
    lesson_code: str
    title: str
    raw_transcript: str
    summary: str | None
    summary_status: str
    position: int
    course_id: int
    created_at: str
