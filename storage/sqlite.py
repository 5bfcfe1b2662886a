from __future__ import annotations

import contextlib
import json
import sqlite3
from datetime import datetime
from threading import RLock
from typing import Any, Iterable, Mapping, Sequence

from core.actors import ACTOR, PLAIN, TARGET, decode, decode_optional, encode, encode_optional
from core.aggregator import UnknownCheckPolicy, aggregate, check_results_from_json, check_results_to_json
from core.errors import ConstraintViolation
from core.resolver import ConfigResolver, parse_category
from core.types import (
    GLOBAL_DEFAULT,
    ActorRef,
    AuditEventType,
    ChatScope,
    CheckResult,
    ConfigCategory,
    ConfigScope,
    GlobalDefault,
    ReviewStatus,
    ReviewType,
    TrainingLabelValue,
    WebUser,
)

from .interfaces import (
    AuditEvent,
    AuditLogStore,
    ConfigStore,
    DetectionInput,
    DetectionResult,
    DetectionStore,
    Message,
    MessageEdit,
    MessageInput,
    MessageStore,
    MessageTranslation,
    Review,
    ReviewInput,
    ReviewStore,
    StopWord,
    StopWordStore,
    TelegramUserRecord,
    TrainingLabel,
    TrainingLabelStore,
    UserStore,
    WebUserRecord,
)

# the global row lives under chat id 0; nothing above this module sees that number
GLOBAL_CHAT_ID = 0

CATEGORY_COLUMNS: dict[ConfigCategory, str] = {
    ConfigCategory.MODERATION: "moderation_config",
    ConfigCategory.SPAM_DETECTION: "spam_detection_config",
    ConfigCategory.WELCOME: "welcome_config",
    ConfigCategory.NOTIFICATIONS: "notification_config",
    ConfigCategory.BACKGROUND_JOBS: "background_jobs_config",
    ConfigCategory.LOG: "log_config",
    ConfigCategory.URL_FILTER: "url_filter_config",
    ConfigCategory.SERVICE_MESSAGE_DELETION: "service_message_deletion_config",
}

REQUIRED_CONTEXT_KEYS: dict[ReviewType, tuple[str, ...]] = {
    ReviewType.REPORT: (),
    ReviewType.IMPERSONATION_ALERT: ("suspectedUserId", "targetUserId", "riskLevel"),
    ReviewType.EXAM_FAILURE: ("userId", "score", "passingThreshold"),
}


class Storage:
    """
    Entry point for interacting with SQLite-backed repositories. Keeps a single
    connection guarded by an RLock; operations are small and executed serially.
    """

    def __init__(self, *, conn: sqlite3.Connection):
        self._conn = conn
        self._lock = RLock()
        self.users: UserStore = _UserStore(conn, self._lock)
        self.messages: MessageStore = _MessageStore(conn, self._lock)
        self.detections: DetectionStore = _DetectionStore(conn, self._lock)
        self.configs: ConfigStore = _ConfigStore(conn, self._lock)
        self.reviews: ReviewStore = _ReviewStore(conn, self._lock)
        self.audit: AuditLogStore = _AuditLogStore(conn, self._lock)
        self.training: TrainingLabelStore = _TrainingLabelStore(conn, self._lock)
        self.stop_words: StopWordStore = _StopWordStore(conn, self._lock)
        self.logs = _LogStore(conn, self._lock)
        self.config_resolver = ConfigResolver(self.configs)

    @property
    def connection(self) -> sqlite3.Connection:
        return self._conn

    @property
    def lock(self) -> RLock:
        return self._lock

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class _SQLiteRepoBase:
    def __init__(self, conn: sqlite3.Connection, lock: RLock):
        self._conn = conn
        self._lock = lock

    @contextlib.contextmanager
    def _cursor(self) -> Iterable[sqlite3.Cursor]:
        with self._lock:
            cur = self._conn.cursor()
            # an outer transaction (e.g. a migration step) owns commit/rollback
            owns = not self._conn.in_transaction
            try:
                if owns:
                    cur.execute("BEGIN")
                yield cur
                if owns:
                    cur.execute("COMMIT")
            except sqlite3.IntegrityError as exc:
                if owns:
                    self._rollback()
                raise _constraint_violation(exc) from exc
            except Exception:
                if owns:
                    self._rollback()
                raise
            finally:
                cur.close()

    def _rollback(self) -> None:
        if self._conn.in_transaction:
            self._conn.execute("ROLLBACK")


def _constraint_violation(exc: sqlite3.IntegrityError) -> ConstraintViolation:
    message = str(exc)
    kind, _, detail = message.partition(" constraint failed")
    detail = detail.lstrip(": ").strip()
    if kind == "CHECK" and detail:
        constraint = detail
    elif detail:
        constraint = f"{kind}({detail})"
    else:
        constraint = kind
    return ConstraintViolation(message, constraint=constraint)


# ───────────────────────────────
#  Users
# ───────────────────────────────
class _UserStore(_SQLiteRepoBase, UserStore):
    def add_web_user(self, user_id: str, email: str) -> None:
        with self._cursor() as cur:
            cur.execute("INSERT INTO users(id, email) VALUES (?, ?)", (user_id, email))

    def fetch_web_user(self, user_id: str) -> WebUserRecord | None:
        with self._cursor() as cur:
            cur.execute("SELECT id, email, created_at FROM users WHERE id = ?", (user_id,))
            row = cur.fetchone()

        if not row:
            return None
        return WebUserRecord(id=row["id"], email=row["email"], created_at=_parse_dt(row["created_at"]))

    def delete_web_user(self, user_id: str) -> None:
        with self._cursor() as cur:
            cur.execute("DELETE FROM users WHERE id = ?", (user_id,))

    def upsert_telegram_user(self, telegram_user_id: int, *, username: str | None) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO telegram_users(telegram_user_id, username)
                VALUES (?, ?)
                ON CONFLICT(telegram_user_id) DO UPDATE SET
                    username = excluded.username,
                    last_seen_at = CURRENT_TIMESTAMP
                """,
                (telegram_user_id, username),
            )

    def fetch_telegram_user(self, telegram_user_id: int) -> TelegramUserRecord | None:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT telegram_user_id, username, first_seen_at, last_seen_at
                FROM telegram_users
                WHERE telegram_user_id = ?
                """,
                (telegram_user_id,),
            )
            row = cur.fetchone()

        if not row:
            return None
        return TelegramUserRecord(
            telegram_user_id=row["telegram_user_id"],
            username=row["username"],
            first_seen_at=_parse_dt(row["first_seen_at"]),
            last_seen_at=_parse_dt(row["last_seen_at"]),
        )


# ───────────────────────────────
#  Messages
# ───────────────────────────────
class _MessageStore(_SQLiteRepoBase, MessageStore):
    def record(self, data: MessageInput) -> None:
        payload = {
            "message_id": data.message_id,
            "chat_id": data.chat_id,
            "user_id": data.user_id,
            "user_name": data.user_name,
            "timestamp": _format_dt(data.timestamp) if data.timestamp else None,
            "message_text": data.message_text,
            "content_hash": data.content_hash,
        }
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO messages(message_id, chat_id, user_id, user_name, timestamp, message_text, content_hash)
                VALUES (:message_id, :chat_id, :user_id, :user_name,
                        COALESCE(:timestamp, CURRENT_TIMESTAMP), :message_text, :content_hash)
                ON CONFLICT(message_id) DO UPDATE SET
                    user_name = excluded.user_name,
                    message_text = excluded.message_text,
                    content_hash = excluded.content_hash
                """,
                payload,
            )

    def fetch(self, message_id: int) -> Message | None:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT message_id, chat_id, user_id, user_name, timestamp, message_text, content_hash
                FROM messages
                WHERE message_id = ?
                """,
                (message_id,),
            )
            row = cur.fetchone()

        if not row:
            return None
        return Message(
            message_id=row["message_id"],
            chat_id=row["chat_id"],
            user_id=row["user_id"],
            user_name=row["user_name"],
            timestamp=_parse_dt(row["timestamp"]),
            message_text=row["message_text"],
            content_hash=row["content_hash"],
        )

    def record_edit(self, message_id: int, *, old_text: str | None, new_text: str | None) -> int:
        """Store the next edit version and make `new_text` the current text."""
        with self._cursor() as cur:
            cur.execute(
                "SELECT COALESCE(MAX(edit_version), 0) + 1 FROM message_edits WHERE message_id = ?",
                (message_id,),
            )
            version = int(cur.fetchone()[0])
            cur.execute(
                """
                INSERT INTO message_edits(message_id, edit_version, old_text, new_text)
                VALUES (?, ?, ?, ?)
                """,
                (message_id, version, old_text, new_text),
            )
            cur.execute("UPDATE messages SET message_text = ? WHERE message_id = ?", (new_text, message_id))
            return version

    def fetch_edits(self, message_id: int) -> Sequence[MessageEdit]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT id, message_id, edit_version, old_text, new_text, edited_at
                FROM message_edits
                WHERE message_id = ?
                ORDER BY edit_version ASC
                """,
                (message_id,),
            )
            rows = cur.fetchall()

        return [
            MessageEdit(
                id=row["id"],
                message_id=row["message_id"],
                edit_version=row["edit_version"],
                old_text=row["old_text"],
                new_text=row["new_text"],
                edited_at=_parse_dt(row["edited_at"]),
            )
            for row in rows
        ]

    def record_translation(self, message_id: int, *, text: str, language: str | None) -> int:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO message_translations(message_id, translated_text, detected_language)
                VALUES (?, ?, ?)
                """,
                (message_id, text, language),
            )
            return int(cur.lastrowid)

    def fetch_translations(self, message_id: int) -> Sequence[MessageTranslation]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT id, message_id, translated_text, detected_language, translated_at
                FROM message_translations
                WHERE message_id = ?
                ORDER BY id ASC
                """,
                (message_id,),
            )
            rows = cur.fetchall()

        return [
            MessageTranslation(
                id=row["id"],
                message_id=row["message_id"],
                translated_text=row["translated_text"],
                detected_language=row["detected_language"],
                translated_at=_parse_dt(row["translated_at"]),
            )
            for row in rows
        ]

    def delete(self, message_id: int) -> None:
        # edits, translations, detection results and labels go with it
        with self._cursor() as cur:
            cur.execute("DELETE FROM messages WHERE message_id = ?", (message_id,))


# ───────────────────────────────
#  Detection results
# ───────────────────────────────
class _DetectionStore(_SQLiteRepoBase, DetectionStore):
    _COLUMNS = """
        id, message_id, edit_version, detected_at, detection_source, net_confidence,
        is_spam, check_results, reason, web_user_id, telegram_user_id,
        system_identifier, used_for_training
    """

    def record(self, data: DetectionInput) -> DetectionResult:
        checks = list(data.checks)
        for check in checks:
            if not isinstance(check, CheckResult):
                raise TypeError(f"expected CheckResult, got {type(check).__name__}")
        if data.edit_version < 0:
            raise ValueError("edit_version must be >= 0")

        # is_spam is never taken from the caller
        verdict = aggregate(checks)
        actor = encode(data.actor)

        with self._cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO detection_results (
                    message_id, edit_version, detection_source, net_confidence, is_spam,
                    check_results, reason, used_for_training,
                    {", ".join(PLAIN.names)}
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    data.message_id,
                    data.edit_version,
                    data.detection_source,
                    verdict.net_confidence,
                    int(verdict.is_spam),
                    check_results_to_json(checks),
                    data.reason,
                    int(data.used_for_training),
                    *actor,
                ),
            )
            cur.execute(f"SELECT {self._COLUMNS} FROM detection_results WHERE id = ?", (cur.lastrowid,))
            row = cur.fetchone()

        return _detection_from_row(row)

    def fetch_for_message(self, message_id: int, edit_version: int | None = None) -> Sequence[DetectionResult]:
        sql = f"SELECT {self._COLUMNS} FROM detection_results WHERE message_id = ?"
        params: list[Any] = [message_id]
        if edit_version is not None:
            sql += " AND edit_version = ?"
            params.append(edit_version)
        sql += " ORDER BY detected_at ASC, id ASC"

        with self._cursor() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()

        return [_detection_from_row(row) for row in rows]

    def set_used_for_training(self, result_id: int, used: bool) -> None:
        with self._cursor() as cur:
            cur.execute(
                "UPDATE detection_results SET used_for_training = ? WHERE id = ?",
                (int(used), result_id),
            )


def _detection_from_row(row: sqlite3.Row) -> DetectionResult:
    return DetectionResult(
        id=row["id"],
        message_id=row["message_id"],
        edit_version=row["edit_version"],
        detected_at=_parse_dt(row["detected_at"]),
        detection_source=row["detection_source"],
        net_confidence=row["net_confidence"],
        is_spam=bool(row["is_spam"]),
        check_results=check_results_from_json(row["check_results"], UnknownCheckPolicy.REJECT),
        reason=row["reason"],
        actor=decode(row["web_user_id"], row["telegram_user_id"], row["system_identifier"]),
        used_for_training=bool(row["used_for_training"]),
    )


# ───────────────────────────────
#  Configuration
# ───────────────────────────────
def _chat_key(scope: ConfigScope) -> int:
    if isinstance(scope, GlobalDefault):
        return GLOBAL_CHAT_ID
    if isinstance(scope, ChatScope):
        return scope.chat_id
    raise TypeError(f"expected GLOBAL_DEFAULT or ChatScope, got {scope!r}")


class _ConfigStore(_SQLiteRepoBase, ConfigStore):
    def load(self, scope: ConfigScope) -> Mapping[ConfigCategory, dict | None] | None:
        columns = ", ".join(CATEGORY_COLUMNS.values())
        with self._cursor() as cur:
            cur.execute(f"SELECT {columns} FROM configs WHERE chat_id = ?", (_chat_key(scope),))
            row = cur.fetchone()

        if not row:
            return None
        return {
            category: json.loads(row[column]) if row[column] is not None else None
            for category, column in CATEGORY_COLUMNS.items()
        }

    def save(self, scope: ConfigScope, category: ConfigCategory | str, document: dict) -> None:
        if not isinstance(document, Mapping):
            raise TypeError("config documents must be JSON objects; use clear() to disable a category")
        column = CATEGORY_COLUMNS[parse_category(category)]
        payload = json.dumps(dict(document), sort_keys=True)
        chat_id = _chat_key(scope)

        with self._cursor() as cur:
            cur.execute(
                f"UPDATE configs SET {column} = ?, updated_at = CURRENT_TIMESTAMP WHERE chat_id = ?",
                (payload, chat_id),
            )
            if cur.rowcount == 0:
                cur.execute(f"INSERT INTO configs(chat_id, {column}) VALUES (?, ?)", (chat_id, payload))

    def clear(self, scope: ConfigScope, category: ConfigCategory | str) -> None:
        """
        Null one category. For a chat this means "fall back to global"; a chat
        row left with nothing in it is removed. On the global row a null
        category means the category is disabled everywhere it is not overridden.
        """
        column = CATEGORY_COLUMNS[parse_category(category)]
        chat_id = _chat_key(scope)

        with self._cursor() as cur:
            cur.execute(
                f"UPDATE configs SET {column} = NULL, updated_at = CURRENT_TIMESTAMP WHERE chat_id = ?",
                (chat_id,),
            )
            if chat_id != GLOBAL_CHAT_ID:
                empty = " AND ".join(f"{name} IS NULL" for name in CATEGORY_COLUMNS.values())
                cur.execute(f"DELETE FROM configs WHERE chat_id = ? AND {empty}", (chat_id,))

    def scopes(self) -> Sequence[ConfigScope]:
        with self._cursor() as cur:
            cur.execute("SELECT chat_id FROM configs ORDER BY chat_id ASC")
            rows = cur.fetchall()

        return [GLOBAL_DEFAULT if row["chat_id"] == GLOBAL_CHAT_ID else ChatScope(row["chat_id"]) for row in rows]


# ───────────────────────────────
#  Reviews
# ───────────────────────────────
def _validate_context(review_type: ReviewType, context: Mapping[str, Any] | None) -> dict[str, Any]:
    context = dict(context or {})
    missing = [key for key in REQUIRED_CONTEXT_KEYS[review_type] if context.get(key) is None]
    if missing:
        raise ValueError(f"{review_type.name} review context is missing: {', '.join(missing)}")
    return context


class _ReviewStore(_SQLiteRepoBase, ReviewStore):
    _COLUMNS = "id, type, chat_id, message_id, status, reported_at, reviewed_at, web_user_id, context"

    def create(self, data: ReviewInput) -> int:
        review_type = ReviewType(data.type)
        context = _validate_context(review_type, data.context)

        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO reports(type, chat_id, message_id, reported_by_user_id, status, context)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    int(review_type),
                    data.chat_id,
                    data.message_id,
                    data.reported_by_user_id,
                    int(ReviewStatus.PENDING),
                    json.dumps(context, sort_keys=True) if context else None,
                ),
            )
            return int(cur.lastrowid)

    def fetch(self, review_id: int) -> Review | None:
        with self._cursor() as cur:
            cur.execute(f"SELECT {self._COLUMNS} FROM reports WHERE id = ?", (review_id,))
            row = cur.fetchone()

        return _review_from_row(row) if row else None

    def fetch_pending(self, chat_id: int | None = None, review_type: ReviewType | None = None) -> Sequence[Review]:
        sql = f"SELECT {self._COLUMNS} FROM reports WHERE status = ?"
        params: list[Any] = [int(ReviewStatus.PENDING)]
        if chat_id is not None:
            sql += " AND chat_id = ?"
            params.append(chat_id)
        if review_type is not None:
            sql += " AND type = ?"
            params.append(int(review_type))
        sql += " ORDER BY reported_at ASC, id ASC"

        with self._cursor() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()

        return [_review_from_row(row) for row in rows]

    def resolve(self, review_id: int, *, reviewer: WebUser | None, status: ReviewStatus) -> bool:
        status = ReviewStatus(status)
        if status is ReviewStatus.PENDING:
            raise ValueError("a review is resolved as REVIEWED or DISMISSED")
        reviewer_id = reviewer.id if reviewer is not None else None

        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE reports
                SET status = ?, reviewed_at = CURRENT_TIMESTAMP, web_user_id = ?, reviewed_by = ?
                WHERE id = ? AND status = ?
                """,
                (int(status), reviewer_id, reviewer_id, review_id, int(ReviewStatus.PENDING)),
            )
            return cur.rowcount == 1


def _review_from_row(row: sqlite3.Row) -> Review:
    return Review(
        id=row["id"],
        type=ReviewType(row["type"]),
        chat_id=row["chat_id"],
        message_id=row["message_id"],
        status=ReviewStatus(row["status"]),
        reported_at=_parse_dt(row["reported_at"]),
        reviewed_at=_parse_dt(row["reviewed_at"]) if row["reviewed_at"] else None,
        reviewer=WebUser(row["web_user_id"]) if row["web_user_id"] else None,
        context=json.loads(row["context"]) if row["context"] else {},
    )


# ───────────────────────────────
#  Audit log (append-only)
# ───────────────────────────────
class _AuditLogStore(_SQLiteRepoBase, AuditLogStore):
    def append(
        self,
        event_type: AuditEventType,
        *,
        actor: ActorRef,
        target: ActorRef | None = None,
        value: str | None = None,
    ) -> int:
        event_type = AuditEventType(event_type)
        encoded_actor = encode(actor)
        encoded_target = encode_optional(target)

        with self._cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO audit_log(event_type, value, {", ".join(ACTOR.names)}, {", ".join(TARGET.names)})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (int(event_type), value, *encoded_actor, *encoded_target),
            )
            return int(cur.lastrowid)

    def fetch_recent(self, limit: int = 100) -> Sequence[AuditEvent]:
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT id, event_type, timestamp, value,
                       {", ".join(ACTOR.names)}, {", ".join(TARGET.names)}
                FROM audit_log
                ORDER BY id DESC
                LIMIT ?
                """,
                (limit,),
            )
            rows = cur.fetchall()

        return [
            AuditEvent(
                id=row["id"],
                event_type=AuditEventType(row["event_type"]),
                timestamp=_parse_dt(row["timestamp"]),
                actor=decode(*(row[name] for name in ACTOR.names)),
                target=decode_optional(*(row[name] for name in TARGET.names)),
                value=row["value"],
            )
            for row in rows
        ]


# ───────────────────────────────
#  Training labels
# ───────────────────────────────
class _TrainingLabelStore(_SQLiteRepoBase, TrainingLabelStore):
    def upsert(
        self,
        message_id: int,
        label: TrainingLabelValue,
        *,
        actor: ActorRef | None = None,
        reason: str | None = None,
        audit_log_id: int | None = None,
    ) -> None:
        label = TrainingLabelValue(label)
        encoded = encode_optional(actor)

        with self._cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO training_labels(message_id, label, reason, audit_log_id, {", ".join(PLAIN.names)})
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(message_id) DO UPDATE SET
                    label = excluded.label,
                    reason = excluded.reason,
                    audit_log_id = excluded.audit_log_id,
                    web_user_id = excluded.web_user_id,
                    telegram_user_id = excluded.telegram_user_id,
                    system_identifier = excluded.system_identifier,
                    labeled_at = CURRENT_TIMESTAMP
                """,
                (message_id, int(label), reason, audit_log_id, *encoded),
            )

    def fetch(self, message_id: int) -> TrainingLabel | None:
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT message_id, label, labeled_at, reason, audit_log_id, {", ".join(PLAIN.names)}
                FROM training_labels
                WHERE message_id = ?
                """,
                (message_id,),
            )
            row = cur.fetchone()

        if not row:
            return None
        return TrainingLabel(
            message_id=row["message_id"],
            label=TrainingLabelValue(row["label"]),
            labeled_at=_parse_dt(row["labeled_at"]),
            reason=row["reason"],
            actor=decode_optional(*(row[name] for name in PLAIN.names)),
            audit_log_id=row["audit_log_id"],
        )

    def remove(self, message_id: int) -> None:
        with self._cursor() as cur:
            cur.execute("DELETE FROM training_labels WHERE message_id = ?", (message_id,))

    def export_rows(self) -> Sequence[tuple[str, TrainingLabelValue]]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT m.message_text, l.label
                FROM training_labels l
                JOIN messages m ON m.message_id = l.message_id
                WHERE m.message_text IS NOT NULL AND TRIM(m.message_text) <> ''
                ORDER BY l.message_id ASC
                """
            )
            rows = cur.fetchall()

        return [(row["message_text"], TrainingLabelValue(row["label"])) for row in rows]


# ───────────────────────────────
#  Stop words
# ───────────────────────────────
class _StopWordStore(_SQLiteRepoBase, StopWordStore):
    def add(self, word: str, *, actor: ActorRef, notes: str | None = None) -> int:
        word = word.strip().lower()
        if not word:
            raise ValueError("stop word must not be empty")
        encoded = encode(actor)

        with self._cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO stop_words(word, notes, {", ".join(PLAIN.names)})
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(word) DO UPDATE SET
                    is_active = 1,
                    notes = excluded.notes,
                    web_user_id = excluded.web_user_id,
                    telegram_user_id = excluded.telegram_user_id,
                    system_identifier = excluded.system_identifier
                """,
                (word, notes, *encoded),
            )
            cur.execute("SELECT id FROM stop_words WHERE word = ?", (word,))
            return int(cur.fetchone()["id"])

    def deactivate(self, word: str) -> None:
        with self._cursor() as cur:
            cur.execute("UPDATE stop_words SET is_active = 0 WHERE word = ?", (word.strip().lower(),))

    def fetch_active(self) -> Sequence[StopWord]:
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT id, word, is_active, added_date, notes, {", ".join(PLAIN.names)}
                FROM stop_words
                WHERE is_active = 1
                ORDER BY word ASC
                """
            )
            rows = cur.fetchall()

        return [
            StopWord(
                id=row["id"],
                word=row["word"],
                is_active=bool(row["is_active"]),
                added_date=_parse_dt(row["added_date"]),
                notes=row["notes"],
                actor=decode(*(row[name] for name in PLAIN.names)),
            )
            for row in rows
        ]


class _LogStore(_SQLiteRepoBase):
    def ready(self) -> bool:
        """log_events only exists once the initial migration has run."""
        with self._lock:
            row = self._conn.execute(
                "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'log_events'"
            ).fetchone()
        return row is not None

    def write(self, level: str, logger: str, message: str, context: dict | None = None) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO log_events(level, logger, message, context)
                VALUES (?, ?, ?, ?)
                """,
                (
                    level,
                    logger,
                    message,
                    json.dumps(context) if context else None,
                ),
            )


def _parse_dt(raw: str | datetime | None) -> datetime:
    if raw is None:
        return datetime.fromtimestamp(0)
    if isinstance(raw, datetime):
        return raw
    # SQLite returns ISO8601 strings
    return datetime.fromisoformat(raw)


def _format_dt(dt: datetime) -> str:
    return dt.isoformat(sep=" ", timespec="seconds")
