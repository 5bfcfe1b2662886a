from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Protocol, Sequence

from core.types import (
    ActorRef,
    AuditEventType,
    CheckResult,
    ConfigCategory,
    ConfigScope,
    ReviewStatus,
    ReviewType,
    TrainingLabelValue,
    WebUser,
)


@dataclass(slots=True)
class WebUserRecord:
    id: str
    email: str
    created_at: datetime


@dataclass(slots=True)
class TelegramUserRecord:
    telegram_user_id: int
    username: str | None
    first_seen_at: datetime
    last_seen_at: datetime


@dataclass(slots=True)
class MessageInput:
    message_id: int
    chat_id: int
    user_id: int
    message_text: str | None
    user_name: str | None = None
    content_hash: str | None = None
    timestamp: datetime | None = None


@dataclass(slots=True)
class Message:
    message_id: int
    chat_id: int
    user_id: int
    user_name: str | None
    timestamp: datetime
    message_text: str | None
    content_hash: str | None


@dataclass(slots=True)
class MessageEdit:
    id: int
    message_id: int
    edit_version: int
    old_text: str | None
    new_text: str | None
    edited_at: datetime


@dataclass(slots=True)
class MessageTranslation:
    id: int
    message_id: int
    translated_text: str
    detected_language: str | None
    translated_at: datetime


@dataclass(slots=True)
class DetectionInput:
    """What a detector reports; the verdict is always derived from `checks`."""
    message_id: int
    checks: Sequence[CheckResult]
    actor: ActorRef
    edit_version: int = 0
    detection_source: str = "auto"
    reason: str | None = None
    used_for_training: bool = True


@dataclass(slots=True)
class DetectionResult:
    id: int
    message_id: int
    edit_version: int
    detected_at: datetime
    detection_source: str
    net_confidence: int
    is_spam: bool
    check_results: list[CheckResult]
    reason: str | None
    actor: ActorRef
    used_for_training: bool


@dataclass(slots=True)
class ReviewInput:
    type: ReviewType
    chat_id: int
    message_id: int = 0
    context: dict[str, Any] | None = None
    reported_by_user_id: int | None = None


@dataclass(slots=True)
class Review:
    id: int
    type: ReviewType
    chat_id: int
    message_id: int
    status: ReviewStatus
    reported_at: datetime
    reviewed_at: datetime | None
    reviewer: WebUser | None
    context: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class AuditEvent:
    id: int
    event_type: AuditEventType
    timestamp: datetime
    actor: ActorRef
    target: ActorRef | None
    value: str | None


@dataclass(slots=True)
class TrainingLabel:
    message_id: int
    label: TrainingLabelValue
    labeled_at: datetime
    reason: str | None
    actor: ActorRef | None
    audit_log_id: int | None


@dataclass(slots=True)
class StopWord:
    id: int
    word: str
    is_active: bool
    added_date: datetime
    notes: str | None
    actor: ActorRef


class UserStore(Protocol):
    def add_web_user(self, user_id: str, email: str) -> None: ...

    def fetch_web_user(self, user_id: str) -> WebUserRecord | None: ...

    def delete_web_user(self, user_id: str) -> None: ...

    def upsert_telegram_user(self, telegram_user_id: int, *, username: str | None) -> None: ...

    def fetch_telegram_user(self, telegram_user_id: int) -> TelegramUserRecord | None: ...


class MessageStore(Protocol):
    def record(self, data: MessageInput) -> None: ...

    def fetch(self, message_id: int) -> Message | None: ...

    def record_edit(self, message_id: int, *, old_text: str | None, new_text: str | None) -> int: ...

    def fetch_edits(self, message_id: int) -> Sequence[MessageEdit]: ...

    def record_translation(self, message_id: int, *, text: str, language: str | None) -> int: ...

    def fetch_translations(self, message_id: int) -> Sequence[MessageTranslation]: ...

    def delete(self, message_id: int) -> None: ...


class DetectionStore(Protocol):
    def record(self, data: DetectionInput) -> DetectionResult: ...

    def fetch_for_message(self, message_id: int) -> Sequence[DetectionResult]: ...

    def set_used_for_training(self, result_id: int, used: bool) -> None: ...


class ConfigStore(Protocol):
    def load(self, scope: ConfigScope) -> Mapping[ConfigCategory, dict | None] | None: ...

    def save(self, scope: ConfigScope, category: ConfigCategory | str, document: dict) -> None: ...

    def clear(self, scope: ConfigScope, category: ConfigCategory | str) -> None: ...

    def scopes(self) -> Sequence[ConfigScope]: ...


class ReviewStore(Protocol):
    def create(self, data: ReviewInput) -> int: ...

    def fetch(self, review_id: int) -> Review | None: ...

    def fetch_pending(self, chat_id: int | None = None, review_type: ReviewType | None = None) -> Sequence[Review]: ...

    def resolve(self, review_id: int, *, reviewer: WebUser | None, status: ReviewStatus) -> bool: ...


class AuditLogStore(Protocol):
    def append(
        self,
        event_type: AuditEventType,
        *,
        actor: ActorRef,
        target: ActorRef | None = None,
        value: str | None = None,
    ) -> int: ...

    def fetch_recent(self, limit: int = 100) -> Sequence[AuditEvent]: ...


class TrainingLabelStore(Protocol):
    def upsert(
        self,
        message_id: int,
        label: TrainingLabelValue,
        *,
        actor: ActorRef | None = None,
        reason: str | None = None,
        audit_log_id: int | None = None,
    ) -> None: ...

    def fetch(self, message_id: int) -> TrainingLabel | None: ...

    def remove(self, message_id: int) -> None: ...

    def export_rows(self) -> Sequence[tuple[str, TrainingLabelValue]]: ...


class StopWordStore(Protocol):
    def add(self, word: str, *, actor: ActorRef, notes: str | None = None) -> int: ...

    def deactivate(self, word: str) -> None: ...

    def fetch_active(self) -> Sequence[StopWord]: ...
