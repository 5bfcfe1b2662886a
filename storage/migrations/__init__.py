from __future__ import annotations

from .base import Migration, Step
from . import (
    v20250114_initial_schema,
    v20250302_actor_attribution,
    v20250302_audit_log_exclusive_arc,
    v20250519_deduplicate_training_samples,
    v20250611_detection_check_codes,
    v20250820_job_schedules_to_cron,
    v20250904_notification_channels,
    v20251002_training_labels,
    v20251103_audit_event_renumbering,
    v20251201_unified_reviews,
)

MIGRATIONS: tuple[Migration, ...] = tuple(
    sorted(
        (
            v20250114_initial_schema.MIGRATION,
            v20250302_actor_attribution.MIGRATION,
            v20250302_audit_log_exclusive_arc.MIGRATION,
            v20250519_deduplicate_training_samples.MIGRATION,
            v20250611_detection_check_codes.MIGRATION,
            v20250820_job_schedules_to_cron.MIGRATION,
            v20250904_notification_channels.MIGRATION,
            v20251002_training_labels.MIGRATION,
            v20251103_audit_event_renumbering.MIGRATION,
            v20251201_unified_reviews.MIGRATION,
        ),
        key=lambda migration: migration.version,
    )
)

_versions = [migration.version for migration in MIGRATIONS]
if len(set(_versions)) != len(_versions):
    raise RuntimeError(f"duplicate migration versions: {_versions}")

LATEST_VERSION = MIGRATIONS[-1].version

__all__ = ["LATEST_VERSION", "MIGRATIONS", "Migration", "Step"]
