from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TranscriptMetadata(BaseModel):
    duration: Optional[float] = None
    source: Optional[str] = None


class TranscriptUpload(BaseModel):
    """Transcript submission from the capture client (camelCase on the wire)."""

    model_config = ConfigDict(populate_by_name=True)

    teacher_code: Optional[str] = Field(
        default=None, alias="teacherCode", pattern=r"^TEACH\d{3}$"
    )
    course_code: str = Field(alias="courseCode", pattern=r"^[A-Z0-9]{7}$")
    course_name: str = Field(alias="courseName", min_length=1, max_length=200)
    lesson_title: str = Field(alias="lessonTitle", min_length=1, max_length=200)
    transcript: str = Field(min_length=10, max_length=100_000)
    captured_at: datetime = Field(alias="capturedAt")
    metadata: Optional[TranscriptMetadata] = None


class ProcessTranscriptRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    course_id: int = Field(alias="courseId", gt=0)
    custom_title: Optional[str] = Field(
        default=None, alias="customTitle", min_length=1, max_length=200
    )


class UserCreate(BaseModel):
    email: str = Field(min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+$")
    name: str = Field(min_length=1, max_length=100)
    role: str = Field(pattern=r"^(admin|teacher|student)$")


class CourseCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)


class EnrollRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    course_code: str = Field(alias="courseCode", pattern=r"^[A-Z0-9]{7}$")


class ChatSessionCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    lesson_id: int = Field(alias="lessonId", gt=0)
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)


class CourseUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)


class LessonCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1, max_length=200)
    raw_transcript: str = Field(alias="rawTranscript", min_length=1, max_length=100_000)
    summary: Optional[str] = Field(default=None, max_length=50_000)
    position: Optional[int] = Field(default=None, ge=0)


class LessonUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    raw_transcript: Optional[str] = Field(
        default=None, alias="rawTranscript", min_length=1, max_length=100_000
    )
    summary: Optional[str] = Field(default=None, max_length=50_000)
    position: Optional[int] = Field(default=None, ge=0)


class UserUpdate(BaseModel):
    email: Optional[str] = Field(
        default=None, min_length=3, max_length=254, pattern=r"^[^@\s]+@[^@\s]+$"
    )
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    role: Optional[str] = Field(default=None, pattern=r"^(admin|teacher|student)$")


class ChatSessionRename(BaseModel):
    name: str = Field(min_length=1, max_length=100)
