"""
Safety gate: keyword classifier, content filter, moderation and the
safety-response flow.
"""

from classroom_tutor.safety.audit import AuditLog, build_audit_log
from classroom_tutor.safety.classifier import SafetyClassifier, normalize_text
from classroom_tutor.safety.content_filter import ContentFilter, is_self_harm_text
from classroom_tutor.safety.helplines import (
    HELPLINES,
    Helpline,
    format_helplines,
    get_helplines,
    normalize_country_code,
)
from classroom_tutor.safety.messages import (
    kind_filter_message,
    kind_moderation_message,
    safety_response_message,
)
from classroom_tutor.safety.moderation import (
    ModerationAdapter,
    build_moderation_flag,
    detect_jailbreak,
    determine_severity,
)
from classroom_tutor.safety.notifier import (
    LoggingNotifier,
    TeacherAlert,
    TeacherNotifier,
    WebhookNotifier,
    build_notifier,
)
from classroom_tutor.safety.responder import SafetyResponder, SafetyResponse
from classroom_tutor.safety.types import (
    ConcernType,
    FilterResult,
    FindingSource,
    ModerationResult,
    SafetyFinding,
    Severity,
)

__all__ = [
    "AuditLog",
    "build_audit_log",
    "SafetyClassifier",
    "normalize_text",
    "ContentFilter",
    "is_self_harm_text",
    "HELPLINES",
    "Helpline",
    "format_helplines",
    "get_helplines",
    "normalize_country_code",
    "kind_filter_message",
    "kind_moderation_message",
    "safety_response_message",
    "ModerationAdapter",
    "build_moderation_flag",
    "detect_jailbreak",
    "determine_severity",
    "LoggingNotifier",
    "TeacherAlert",
    "TeacherNotifier",
    "WebhookNotifier",
    "build_notifier",
    "SafetyResponder",
    "SafetyResponse",
    "ConcernType",
    "FilterResult",
    "FindingSource",
    "ModerationResult",
    "SafetyFinding",
    "Severity",
]
