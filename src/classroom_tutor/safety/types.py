"""Result types shared by the safety gate stages."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ConcernType(str, Enum):
    """Crisis categories, in classifier priority order."""

    SELF_HARM = "self_harm"
    ABUSE = "abuse"
    BULLYING = "bullying"
    DEPRESSION = "depression"
    FAMILY_ISSUES = "family_issues"
    AGE_INAPPROPRIATE_RELATIONSHIP = "age_inappropriate_relationship"
    UNDERAGE_SUBSTANCE_USE = "underage_substance_use"
    SEXUAL_CONTENT = "sexual_content"

    @property
    def display_name(self) -> str:
        return " ".join(word.capitalize() for word in self.value.split("_"))


class FindingSource(str, Enum):
    KEYWORD = "keyword"
    AI_MODERATION = "ai-moderation"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def concern_level(self) -> int:
        return {Severity.LOW: 2, Severity.MEDIUM: 3, Severity.HIGH: 5}[self]


@dataclass
class SafetyFinding:
    """Output of the safety classifier."""

    concern: bool
    concern_type: Optional[ConcernType] = None
    source: FindingSource = FindingSource.KEYWORD
    severity: Optional[Severity] = None
    categories: list[str] = field(default_factory=list)
    matched_phrase: Optional[str] = None

    @classmethod
    def clear(cls) -> "SafetyFinding":
        return cls(concern=False)


@dataclass
class FilterResult:
    """Output of the content filter."""

    blocked: bool
    reason: Optional[str] = None
    flagged_patterns: list[str] = field(default_factory=list)
    cleaned_content: Optional[str] = None


@dataclass
class ModerationResult:
    """Output of the moderation adapter."""

    flagged: bool
    categories: list[str] = field(default_factory=list)
    category_scores: dict[str, float] = field(default_factory=dict)
    severity: Severity = Severity.LOW
    jailbreak_detected: bool = False
    reason: Optional[str] = None
    service_failed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "flagged": self.flagged,
            "categories": list(self.categories),
            "severity": self.severity.value,
            "jailbreak_detected": self.jailbreak_detected,
            "reason": self.reason,
        }
