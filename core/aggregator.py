"""
core/aggregator.py
────────────────────────────────────────────────────────
Detection result aggregation.

• `aggregate` sums signed per-check confidences into a verdict;
  a net of exactly zero is not spam.
• `normalize_check_code` turns legacy string names into CheckCode values
  through an explicit alias table, never through a blind int() cast.
• JSON helpers keep the ordered check list stable in storage.
"""

from __future__ import annotations

import json
import re
from enum import Enum
from typing import Any, Iterable, Mapping, Sequence

from core.errors import AmbiguousLegacyValueError, UnknownCheckCodeError
from core.types import CheckCode, CheckOutcome, CheckResult, Verdict
from utils.logger import get_logger

LOGGER = get_logger(__name__)


class UnknownCheckPolicy(str, Enum):
    REJECT = "reject"
    TAG = "tag"


# Names written by older detector builds, matched exactly
LEGACY_CHECK_NAMES: dict[str, CheckCode] = {
    "StopWords": CheckCode.STOP_WORDS,
    "CAS": CheckCode.CAS,
    "Cas": CheckCode.CAS,
    "Similarity": CheckCode.SIMILARITY,
    "Bayes": CheckCode.BAYES,
    "Spacing": CheckCode.SPACING,
    "InvisibleChars": CheckCode.INVISIBLE_CHARS,
    "OpenAI": CheckCode.OPENAI,
    "ThreatIntel": CheckCode.THREAT_INTEL,
    "UrlBlocklist": CheckCode.URL_BLOCKLIST,
    "UrlFilter": CheckCode.URL_BLOCKLIST,
    "UrlFiltering": CheckCode.URL_BLOCKLIST,
    "ImageSpam": CheckCode.IMAGE_SPAM,
    "VideoSpam": CheckCode.VIDEO_SPAM,
    "FileScanning": CheckCode.FILE_SCANNING,
}

_OUTCOME_NAMES: dict[str, CheckOutcome] = {
    "clean": CheckOutcome.CLEAN,
    "spam": CheckOutcome.SPAM,
    "review": CheckOutcome.REVIEW,
}

# ASCII only: str.isdigit() also accepts superscripts and non-Latin digits
_DECIMAL_RE = re.compile(r"[0-9]+")


def aggregate(checks: Iterable[CheckResult]) -> Verdict:
    net = sum(int(check.confidence) for check in checks)
    return Verdict(net_confidence=net, is_spam=net > 0)


def is_spam(net_confidence: int) -> bool:
    return net_confidence > 0


def _coerce_policy(policy: UnknownCheckPolicy | str) -> UnknownCheckPolicy:
    return policy if isinstance(policy, UnknownCheckPolicy) else UnknownCheckPolicy(str(policy).lower())


def normalize_check_code(
    raw: str | int | CheckCode,
    policy: UnknownCheckPolicy | str = UnknownCheckPolicy.REJECT,
) -> CheckCode:
    if isinstance(raw, CheckCode):
        return raw

    candidate: int | None = None
    if isinstance(raw, int) and not isinstance(raw, bool):
        candidate = raw
    elif isinstance(raw, str):
        name = raw.strip()
        if name in LEGACY_CHECK_NAMES:
            return LEGACY_CHECK_NAMES[name]
        # already-normalized rows store the integer code as text
        if _DECIMAL_RE.fullmatch(name):
            candidate = int(name)

    if candidate is not None and candidate != CheckCode.UNKNOWN:
        try:
            return CheckCode(candidate)
        except ValueError:
            pass

    if _coerce_policy(policy) is UnknownCheckPolicy.TAG:
        LOGGER.warning("Unrecognised check code %r tagged as UNKNOWN", raw)
        return CheckCode.UNKNOWN
    raise UnknownCheckCodeError(f"unrecognised check code: {raw!r}", values=[raw])


def _normalize_outcome(raw: Any) -> CheckOutcome:
    candidate: int | None = None
    if isinstance(raw, str):
        key = raw.strip().lower()
        if key in _OUTCOME_NAMES:
            return _OUTCOME_NAMES[key]
        if _DECIMAL_RE.fullmatch(key):
            candidate = int(key)
    elif isinstance(raw, int) and not isinstance(raw, bool):
        candidate = raw

    if candidate is not None:
        try:
            return CheckOutcome(candidate)
        except ValueError:
            pass
    raise AmbiguousLegacyValueError(f"unrecognised check outcome: {raw!r}", values=[raw])


def signed_confidence(outcome: CheckOutcome, confidence: int | float | None) -> int:
    magnitude = abs(int(round(confidence or 0)))
    if outcome is CheckOutcome.SPAM:
        return magnitude
    if outcome is CheckOutcome.CLEAN:
        return -magnitude
    return 0


# ───────────────────────────────
#  JSON round-trip
# ───────────────────────────────
def check_result_to_dict(check: CheckResult) -> dict[str, Any]:
    return {
        "checkCode": int(check.code),
        "outcome": int(check.outcome),
        "confidence": int(check.confidence),
        "reason": check.reason,
        "processingTimeMs": check.processing_time_ms,
    }


def check_results_to_json(checks: Sequence[CheckResult]) -> str:
    return json.dumps([check_result_to_dict(check) for check in checks], ensure_ascii=False)


def _stored_code(raw: Any, policy: UnknownCheckPolicy | str) -> CheckCode:
    # rows tagged earlier keep the UNKNOWN code verbatim
    if isinstance(raw, int) and not isinstance(raw, bool) and raw == CheckCode.UNKNOWN:
        return CheckCode.UNKNOWN
    return normalize_check_code(raw, policy)


def check_results_from_json(
    payload: str | None,
    policy: UnknownCheckPolicy | str = UnknownCheckPolicy.REJECT,
) -> list[CheckResult]:
    if not payload:
        return []
    return [
        CheckResult(
            code=_stored_code(item["checkCode"], policy),
            outcome=_normalize_outcome(item.get("outcome", CheckOutcome.REVIEW)),
            confidence=int(item.get("confidence", 0)),
            reason=item.get("reason"),
            processing_time_ms=item.get("processingTimeMs"),
        )
        for item in json.loads(payload)
    ]


def legacy_check_results(
    payload: str | Mapping[str, Any] | None,
    policy: UnknownCheckPolicy | str = UnknownCheckPolicy.REJECT,
) -> list[CheckResult]:
    """
    Convert the legacy {"Checks": [{"CheckName", "Result", "Confidence", ...}]}
    document. Legacy confidences are unsigned; the outcome supplies the sign.
    """
    if payload is None or payload == "":
        return []
    document = json.loads(payload) if isinstance(payload, str) else payload
    results: list[CheckResult] = []
    for item in document.get("Checks") or []:
        outcome = _normalize_outcome(item.get("Result", "Review"))
        results.append(
            CheckResult(
                code=normalize_check_code(item.get("CheckName"), policy),
                outcome=outcome,
                confidence=signed_confidence(outcome, item.get("Confidence")),
                reason=item.get("Details") or item.get("Reason"),
                processing_time_ms=item.get("ProcessingTimeMs"),
            )
        )
    return results


__all__ = [
    "LEGACY_CHECK_NAMES",
    "UnknownCheckPolicy",
    "aggregate",
    "check_results_from_json",
    "check_results_to_json",
    "is_spam",
    "legacy_check_results",
    "normalize_check_code",
    "signed_confidence",
]
