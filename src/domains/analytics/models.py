# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Backend record models for the analytics domain.

The backend returns loosely shaped rows; every collection the analytics
engine reads is validated into one of these frozen models first. Unknown
columns are ignored so schema additions on the backend side never break
the loader.

Collections:
- Student, Teacher, ClassRecord (critical)
- ProgressEntry, AttendanceEntry, Assignment, Submission,
  JuzRevision, SabaqPara, Communication (optional)
"""

from datetime import date, datetime
from enum import Enum
from typing import Annotated

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator

from src.utils.datetime import as_utc_datetime, ensure_utc


class RecordModel(BaseModel):
    """Base for backend records: immutable, tolerant of extra columns."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)


class StudentStatus(str, Enum):
    """Enrollment status of a student."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class AttendanceStatus(str, Enum):
    """Recorded presence status for one session."""

    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"
    EXCUSED = "excused"
    EARLY_DEPARTURE = "early_departure"


class MemorizationQuality(str, Enum):
    """Teacher's quality rating of a recitation."""

    EXCELLENT = "excellent"
    GOOD = "good"
    AVERAGE = "average"
    NEEDS_WORK = "needsWork"
    HORRIBLE = "horrible"


def _coerce_quality(value: object) -> object:
    # Ratings outside the known scale are treated as unrated.
    if value is None or isinstance(value, MemorizationQuality):
        return value
    try:
        return MemorizationQuality(value)
    except ValueError:
        return None


QualityRating = Annotated[MemorizationQuality | None, BeforeValidator(_coerce_quality)]


class Student(RecordModel):
    """A madrassah student."""

    id: str
    name: str
    section: str | None = None
    status: StudentStatus = StudentStatus.ACTIVE
    enrollment_date: date | None = None
    status_start_date: date | None = None
    current_juz: int | None = None
    completed_juz: tuple[int, ...] = ()

    @field_validator("completed_juz", mode="before")
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return () if value is None else value

    @property
    def is_active(self) -> bool:
        return self.status == StudentStatus.ACTIVE


class Teacher(RecordModel):
    """A teacher profile."""

    id: str
    name: str
    section: str | None = None
    role: str = "teacher"


class TimeSlot(RecordModel):
    """Weekly schedule slot of a class."""

    days: tuple[str, ...] = ()
    start_time: str | None = None
    end_time: str | None = None
    teacher_ids: tuple[str, ...] = ()

    @field_validator("days", "teacher_ids", mode="before")
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return () if value is None else value

    @property
    def duration_hours(self) -> float | None:
        """Length of the slot in hours, None if times are missing or invalid."""
        start = _parse_clock(self.start_time)
        end = _parse_clock(self.end_time)
        if start is None or end is None or end <= start:
            return None
        return (end - start) / 60


def _parse_clock(value: str | None) -> int | None:
    """Parse ``HH:MM`` (or ``HH:MM:SS``) into minutes after midnight."""
    if not value:
        return None
    parts = value.split(":")
    try:
        hours = int(parts[0])
        minutes = int(parts[1]) if len(parts) > 1 else 0
    except ValueError:
        return None
    return hours * 60 + minutes


class ClassRecord(RecordModel):
    """A scheduled class with enrolled students."""

    id: str
    name: str
    capacity: int | None = None
    current_students: tuple[str, ...] = ()
    teacher_ids: tuple[str, ...] = ()
    time_slots: tuple[TimeSlot, ...] = ()
    days_of_week: tuple[str, ...] = ()
    status: str | None = None

    @field_validator("current_students", "teacher_ids", "time_slots", "days_of_week", mode="before")
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return () if value is None else value

    @property
    def is_active(self) -> bool:
        return self.status is None or self.status == "active"


class ProgressEntry(RecordModel):
    """A dated memorization (sabaq) record for one student."""

    id: str
    student_id: str
    created_at: datetime
    session_date: date | None = Field(default=None, alias="date")
    pages_memorized: float | None = None
    verses_memorized: int | None = None
    current_surah: int | None = None
    current_juz: int | None = None
    start_ayat: int | None = None
    end_ayat: int | None = None
    memorization_quality: QualityRating = None
    mistake_count: int | None = None
    contributor_id: str | None = None
    teacher_id: str | None = None

    @field_validator("created_at")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @property
    def occurred_at(self) -> datetime:
        """When the lesson happened: the lesson date if set, else creation time."""
        return as_utc_datetime(self.session_date) if self.session_date else self.created_at

    @property
    def recorded_by(self) -> str | None:
        return self.teacher_id or self.contributor_id


class AttendanceEntry(RecordModel):
    """A presence record for one student in one session."""

    id: str
    student_id: str
    class_id: str | None = None
    teacher_id: str | None = None
    session_date: date | None = Field(default=None, alias="date")
    created_at: datetime
    status: AttendanceStatus
    notes: str | None = None
    late_reason: str | None = None

    @field_validator("created_at")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @property
    def occurred_at(self) -> datetime:
        return as_utc_datetime(self.session_date) if self.session_date else self.created_at

    @property
    def is_excused_absence(self) -> bool:
        if self.status == AttendanceStatus.EXCUSED:
            return True
        if self.status != AttendanceStatus.ABSENT:
            return False
        text = f"{self.notes or ''} {self.late_reason or ''}".lower()
        return "excused" in text


class Assignment(RecordModel):
    """A teacher assignment given to a set of students."""

    id: str
    teacher_id: str
    student_ids: tuple[str, ...] = ()
    created_at: datetime
    due_date: datetime | None = None

    @field_validator("student_ids", mode="before")
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return () if value is None else value

    @field_validator("created_at", "due_date")
    @classmethod
    def _to_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value)


class Submission(RecordModel):
    """A student's submission for an assignment."""

    id: str
    assignment_id: str
    student_id: str
    status: str = "pending"
    created_at: datetime
    submitted_at: datetime | None = None
    graded_at: datetime | None = None

    @field_validator("created_at", "submitted_at", "graded_at")
    @classmethod
    def _to_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value)

    @property
    def is_submitted(self) -> bool:
        return self.status in ("submitted", "graded") or self.submitted_at is not None


class JuzRevision(RecordModel):
    """A dhor (older juz) revision record."""

    id: str
    student_id: str
    revision_date: date
    juz_revised: int | None = None
    memorization_quality: QualityRating = None
    teacher_id: str | None = None

    @property
    def occurred_at(self) -> datetime:
        return as_utc_datetime(self.revision_date)


class SabaqPara(RecordModel):
    """A sabaq para (recent lesson) revision record."""

    id: str
    student_id: str
    revision_date: date
    juz_number: int | None = None
    quality_rating: QualityRating = None
    teacher_id: str | None = None

    @property
    def occurred_at(self) -> datetime:
        return as_utc_datetime(self.revision_date)


class Communication(RecordModel):
    """A message sent by a staff member."""

    id: str
    sender_id: str
    created_at: datetime = Field(description="When the message was sent")

    @field_validator("created_at")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)
