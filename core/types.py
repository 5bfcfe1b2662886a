from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Union


# ───────────────────────────────
#  Actor identity
# ───────────────────────────────
@dataclass(frozen=True, slots=True)
class WebUser:
    """Web-admin account; ids are opaque strings issued by the identity store."""
    id: str


@dataclass(frozen=True, slots=True)
class TelegramUser:
    id: int


@dataclass(frozen=True, slots=True)
class System:
    """Automated process such as auto-detection or a scheduled job."""
    identifier: str


ActorRef = Union[WebUser, TelegramUser, System]


# ───────────────────────────────
#  Configuration scope
# ───────────────────────────────
@dataclass(frozen=True, slots=True)
class GlobalDefault:
    def __repr__(self) -> str:
        return "GLOBAL_DEFAULT"


GLOBAL_DEFAULT = GlobalDefault()


@dataclass(frozen=True, slots=True)
class ChatScope:
    chat_id: int

    def __post_init__(self) -> None:
        if isinstance(self.chat_id, bool) or not isinstance(self.chat_id, int):
            raise TypeError(f"chat_id must be int, got {type(self.chat_id).__name__}")
        if self.chat_id == 0:
            raise ValueError("chat id 0 is reserved for the global default scope; use GLOBAL_DEFAULT")


ConfigScope = Union[GlobalDefault, ChatScope]


class ConfigCategory(str, Enum):
    MODERATION = "moderation"
    SPAM_DETECTION = "spamDetection"
    WELCOME = "welcome"
    NOTIFICATIONS = "notifications"
    BACKGROUND_JOBS = "backgroundJobs"
    LOG = "log"
    URL_FILTER = "urlFilter"
    SERVICE_MESSAGE_DELETION = "serviceMessageDeletion"


# ───────────────────────────────
#  Detection
# ───────────────────────────────
class CheckCode(IntEnum):
    STOP_WORDS = 0
    CAS = 1
    SIMILARITY = 2
    BAYES = 3
    SPACING = 4
    INVISIBLE_CHARS = 5
    OPENAI = 6
    THREAT_INTEL = 7
    URL_BLOCKLIST = 8
    IMAGE_SPAM = 9
    VIDEO_SPAM = 10
    FILE_SCANNING = 11
    UNKNOWN = 99


class CheckOutcome(IntEnum):
    CLEAN = 0
    SPAM = 1
    REVIEW = 2


@dataclass(frozen=True, slots=True)
class CheckResult:
    code: CheckCode
    outcome: CheckOutcome
    confidence: int  # signed: positive = spam evidence, negative = ham evidence
    reason: str | None = None
    processing_time_ms: float | None = None


@dataclass(frozen=True, slots=True)
class Verdict:
    net_confidence: int
    is_spam: bool


# ───────────────────────────────
#  Reviews, labels, audit
# ───────────────────────────────
class ReviewType(IntEnum):
    REPORT = 0
    IMPERSONATION_ALERT = 1
    EXAM_FAILURE = 2


class ReviewStatus(IntEnum):
    PENDING = 0
    REVIEWED = 1
    DISMISSED = 2


class TrainingLabelValue(IntEnum):
    SPAM = 0
    HAM = 1


class AuditEventType(IntEnum):
    DATA_EXPORTED = 0
    MESSAGE_EXPORTED = 1
    SYSTEM_CONFIG_CHANGED = 2
    USER_EMAIL_VERIFICATION_SENT = 3
    USER_EMAIL_VERIFIED = 4
    USER_LOGIN = 5
    USER_LOGIN_FAILED = 6
    USER_LOGOUT = 7
    USER_PASSWORD_RESET = 8
    USER_PASSWORD_RESET_REQUESTED = 9
    USER_INVITE_CREATED = 10
    USER_INVITE_REVOKED = 11
    USER_DELETED = 12
    USER_REGISTERED = 13
    USER_STATUS_CHANGED = 14
    USER_EMAIL_CHANGED = 15
    USER_PASSWORD_CHANGED = 16
    USER_PERMISSION_CHANGED = 17
    USER_TOTP_RESET = 18
    USER_TOTP_ENABLED = 19


class NotificationChannel(IntEnum):
    TELEGRAM_DM = 0
    EMAIL = 1
    WEB_PUSH = 2


class NotificationEvent(IntEnum):
    SPAM_DETECTED = 0
    SPAM_AUTO_DELETED = 1
    USER_BANNED = 2
    MESSAGE_REPORTED = 3
    MALWARE_DETECTED = 4
    CHAT_ADMIN_CHANGED = 5
    CHAT_HEALTH_WARNING = 6
    BACKUP_FAILED = 7
