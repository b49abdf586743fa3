"""Data models for calendar event processing - agendum_lite."""

from datetime import date, datetime, time
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class RuleCategory(str, Enum):
    """Categories a normalization rule can target."""

    TEACHERS = "teachers"
    PROMOS = "promos"
    SUBJECTS = "subjects"


class SourceScope(str, Enum):
    """Which calendars a view considers before the rest of the filter pipeline."""

    SERVICE = "service"
    MAIN = "main"
    VISIBLE = "visible"
    ALL = "all"


class CoreSessionType(str, Enum):
    """Teaching session types that receive ordinals."""

    CM = "CM"
    TD = "TD"
    TP = "TP"


# Parser output


class RawEvent(BaseModel):
    """Event as produced by the ICS parser, before any derivation."""

    model_config = ConfigDict(frozen=True)

    uid: str = ""
    summary: str = ""
    description: str = ""
    location: str = ""
    start: str = ""
    end: str = ""


class NormalizedEvent(RawEvent):
    """Raw event plus parser-derived subject/type/time fields."""

    subject: str = ""
    type_: str = ""
    start_iso: str = ""
    end_iso: str = ""
    duration_hours: float = 0.0
    teachers: tuple[str, ...] = ()
    promos: tuple[str, ...] = ()
    cleaned_description: str = ""

    @field_validator("teachers", "promos", mode="before")
    @classmethod
    def _coerce_string_list(cls, value: object) -> object:
        """Treat missing lists as empty, the way persisted legacy events are stored."""
        if value is None:
            return ()
        return value


class ParseDiagnostics(BaseModel):
    """Counters reported by the parser alongside its events."""

    model_config = ConfigDict(frozen=True)

    calendars_parsed: int = 0
    parser_errors: int = 0
    skipped_events_without_uid: int = 0
    parser_error_messages: tuple[str, ...] = ()


class ParseResult(BaseModel):
    """Result of ``parse(text)``."""

    model_config = ConfigDict(frozen=True)

    events: tuple[NormalizedEvent, ...] = ()
    diagnostics: ParseDiagnostics = Field(default_factory=ParseDiagnostics)

    @property
    def is_fatal(self) -> bool:
        """Structural errors and zero usable events."""
        return self.diagnostics.parser_errors > 0 and len(self.events) == 0


# Calendars


class RemoteSource(BaseModel):
    """Sync state of a network-sourced calendar."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    source_url: str
    last_synced_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    last_manual_refresh_at: Optional[datetime] = None
    last_error: Optional[str] = None
    last_warning: Optional[str] = None


class Calendar(BaseModel):
    """One imported calendar and its events."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: str
    name: str
    color: str
    visible: bool = True
    include_in_stats: bool = True
    events: tuple[NormalizedEvent, ...] = ()
    remote: Optional[RemoteSource] = None

    @field_validator("visible", "include_in_stats", mode="before")
    @classmethod
    def _default_flags(cls, value: object) -> object:
        return True if value is None else value

    @field_validator("events", mode="before")
    @classmethod
    def _default_events(cls, value: object) -> object:
        return () if value is None else value


# Normalization rules


class HiddenRules(BaseModel):
    """Values suppressed per category."""

    model_config = ConfigDict(frozen=True)

    teachers: dict[str, bool] = Field(default_factory=dict)
    promos: dict[str, bool] = Field(default_factory=dict)
    subjects: dict[str, bool] = Field(default_factory=dict)


class NormalizationRules(BaseModel):
    """User-defined rename and hide maps for teachers, promos and subjects."""

    model_config = ConfigDict(frozen=True)

    teachers: dict[str, str] = Field(default_factory=dict)
    promos: dict[str, str] = Field(default_factory=dict)
    subjects: dict[str, str] = Field(default_factory=dict)
    hidden: HiddenRules = Field(default_factory=HiddenRules)

    def rename_map(self, category: RuleCategory) -> dict[str, str]:
        """Return the rename map for a category."""
        return getattr(self, RuleCategory(category).value)

    def hide_map(self, category: RuleCategory) -> dict[str, bool]:
        """Return the hide map for a category."""
        return getattr(self.hidden, RuleCategory(category).value)


# Derived views


class EnrichedEvent(NormalizedEvent):
    """Display-ready event: normalized values plus owning calendar context."""

    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    start_ts: Optional[float] = None
    end_ts: Optional[float] = None
    color: str = ""
    stats_included: bool = True
    calendar_name: str = ""
    calendar_id: str = ""
    is_visible: bool = True
    extracted_teacher: str = ""
    promo: str = ""
    is_duplicate: bool = False


class FilterState(BaseModel):
    """Filter bar state; replaced wholesale on each edit."""

    model_config = ConfigDict(frozen=True)

    date_start: Optional[date] = None
    date_end: Optional[date] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    days: tuple[int, ...] = ()
    source: SourceScope = SourceScope.SERVICE

    @field_validator("date_start", "date_end", "start_time", "end_time", mode="before")
    @classmethod
    def _blank_is_unset(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("days")
    @classmethod
    def _validate_days(cls, value: tuple[int, ...]) -> tuple[int, ...]:
        for day in value:
            if day < 1 or day > 7:
                raise ValueError(f"day must be in 1..7 (1=Monday), got {day}")
        return value


class SessionOrdinalInfo(BaseModel):
    """Sequence number of one occurrence within its session series."""

    model_config = ConfigDict(frozen=True)

    type: CoreSessionType
    ordinal: int

    @property
    def label(self) -> str:
        """Display label such as ``CM3``."""
        return f"{self.type.value}{self.ordinal}"


class TeacherOption(BaseModel):
    """Teacher name with the number of service events it appears in."""

    model_config = ConfigDict(frozen=True)

    name: str
    count: int
