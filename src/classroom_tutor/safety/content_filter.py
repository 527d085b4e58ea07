"""
Deterministic content filter.

Blocks personal information, contact with outside platforms, violent
threats, sexual content, external links and embedded images. Crisis
language is deliberately not matched here: the safety classifier owns it and
the orchestrator skips this filter once a concern is found.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Iterable, Optional

from classroom_tutor.safety.types import FilterResult

logger = logging.getLogger(__name__)

_PLATFORMS = r"(?:snapchat|instagram|tiktok|facebook|whatsapp|discord|telegram|kik|twitter|youtube|twitch)"
_NAME = r"[A-Z][a-z]+"


class RuleScope(str, Enum):
    """Who a rule applies to."""

    PERSONAL = "personal"
    """Minors, or everyone in strict mode."""
    MINORS = "minors"
    ALWAYS = "always"


@dataclass(frozen=True)
class FilterRule:
    pattern: re.Pattern[str]
    reason: str
    replacement: str
    scope: RuleScope = RuleScope.ALWAYS
    skip_if_educational: bool = False


def _rule(
    regex: str,
    reason: str,
    replacement: str,
    scope: RuleScope = RuleScope.ALWAYS,
    *,
    ignore_case: bool = True,
    skip_if_educational: bool = False,
) -> FilterRule:
    flags = re.IGNORECASE if ignore_case else 0
    return FilterRule(re.compile(regex, flags), reason, replacement, scope, skip_if_educational)


PERSONAL_INFO_RULES = [
    _rule(r"\b\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b", "phone number", "[PHONE REMOVED]", RuleScope.PERSONAL),
    _rule(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b", "email address", "[EMAIL REMOVED]", RuleScope.PERSONAL),
    _rule(
        r"\b(?:my|i live at|address is|i'm at)\s+\d+\s+[\w\s]+?(?:street|st|avenue|ave|road|rd|lane|ln|drive|dr|court|ct|place|pl)\b",
        "physical address",
        "[ADDRESS REMOVED]",
        RuleScope.PERSONAL,
    ),
    _rule(r"\b(?:i'm|i am|im)\s+home\s+alone\b", "home alone status", "[SAFETY INFO REMOVED]", RuleScope.PERSONAL),
    _rule(
        r"\b(?:my\s+)?(?:mom|dad|mother|father|parents?)\s+(?:is|are)\s+(?:at work|gone|away|not home)\b",
        "parent absence",
        "[FAMILY INFO REMOVED]",
        RuleScope.PERSONAL,
    ),
    _rule(
        r"\b(?i:my school is|i go to|i attend|student at)\s+[A-Z][\w ]*?(?i:elementary|middle|high|primary|secondary|school|academy|prep)\b",
        "school name",
        "[SCHOOL REMOVED]",
        RuleScope.PERSONAL,
        ignore_case=False,
    ),
    _rule(
        rf"\b{_NAME}(?:\s+{_NAME})*\s+(?:Elementary|Middle|High|Primary|Secondary)\s+School\b",
        "school name",
        "[SCHOOL REMOVED]",
        RuleScope.PERSONAL,
        ignore_case=False,
    ),
    _rule(
        rf"\b(?i:my teacher(?:'s)?(?:\s+name)?\s+is|my teacher|teacher is)\s+(?:(?i:mrs?\.?|miss|ms\.?)\s*)?{_NAME}\b",
        "teacher name",
        "[TEACHER NAME REMOVED]",
        RuleScope.PERSONAL,
        ignore_case=False,
    ),
    _rule(
        rf"\b(?i:mrs?\.?|miss|ms\.?)\s+{_NAME}\s+(?i:is|teaches|said)\b",
        "teacher name",
        "[TEACHER NAME REMOVED]",
        RuleScope.PERSONAL,
        ignore_case=False,
    ),
    _rule(
        r"\b(?:i take|i'm on|medication for|prescribed)\s+[\w\s]+?\s(?:for|because)\b",
        "medical information",
        "[MEDICAL INFO REMOVED]",
        RuleScope.PERSONAL,
    ),
    _rule(
        rf"\b(?i:my full name is|my name is)\s+{_NAME}\s+{_NAME}(?:\s+{_NAME})?\b",
        "full name",
        "[NAME REMOVED]",
        RuleScope.PERSONAL,
        ignore_case=False,
    ),
    _rule(
        r"\b(?:password|passcode|pin)\s*(?:is|:)\s*[\"']?[\w@#$%^&*]+[\"']?",
        "password",
        "[PASSWORD REMOVED]",
        RuleScope.PERSONAL,
    ),
    _rule(
        rf"\b(?i:i live in|i'm from|my city is|my town is)\s+{_NAME}(?:\s+{_NAME})?\b",
        "location information",
        "[LOCATION REMOVED]",
        RuleScope.PERSONAL,
        ignore_case=False,
    ),
    _rule(
        r"\b(?:birthday|birthdate|born on|i was born)\s+(?:is\s+)?(?:on\s+)?(?:january|february|march|april|may|june|july|august|september|october|november|december|\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4})\b",
        "birthdate",
        "[BIRTHDATE REMOVED]",
        RuleScope.PERSONAL,
    ),
    _rule(
        r"\b(?:my age is|i am|i'm)\s+\d{1,3}\s*(?:years?\s*old)?\b",
        "age information",
        "[AGE REMOVED]",
        RuleScope.PERSONAL,
    ),
]

PLATFORM_RULES = [
    _rule(
        rf"\b(?:my|i have a?|i'm on|check my|follow my|see my)\s+{_PLATFORMS}\b",
        "social media mention",
        "[SOCIAL MEDIA REMOVED]",
        RuleScope.MINORS,
    ),
    _rule(
        rf"(?:\bmy username is|\bmy handle is|@[A-Za-z0-9_]+\s+on)\s*{_PLATFORMS}?",
        "social media username",
        "[USERNAME REMOVED]",
        RuleScope.MINORS,
    ),
    _rule(
        rf"\b(?:can you|do you have|are you on|what's your)\s+{_PLATFORMS}\b",
        "social media inquiry",
        "[SOCIAL MEDIA REMOVED]",
        RuleScope.MINORS,
    ),
]

VIOLENCE_RULES = [
    _rule(
        r"\b(?:kill|hurt|harm|hit|punch|fight|beat up)\s+(?:you|someone|them|him|her|everyone)\b",
        "violence threats",
        "[INAPPROPRIATE CONTENT REMOVED]",
    ),
    _rule(
        r"\b(?:i'll|i will|going to|gonna)\s+(?:kill|hurt|harm|hit|punch|fight|beat up)\s+(?:you|someone|them|him|her)\b",
        "violence threats",
        "[INAPPROPRIATE CONTENT REMOVED]",
    ),
]

_SEXUAL = ("sexual content", "[INAPPROPRIATE CONTENT REMOVED]")

SEXUAL_CONTENT_RULES = [
    _rule(r"\b(?:kiss|kisses|kissing|kissed)\b", *_SEXUAL, skip_if_educational=True),
    _rule(r"\b(?:make out|making out|french kiss|french kissing)\b", *_SEXUAL),
    _rule(r"\b(?:sex|sexual|sexuality|intercourse|intimate|intimacy)\b", *_SEXUAL, skip_if_educational=True),
    _rule(r"\b(?:masturbate|masturbation|touching myself|pleasure myself)\b", *_SEXUAL),
    _rule(r"\b(?:dick|cock|pussy|boobs|tits)\b", *_SEXUAL),
    _rule(r"\b(?:penis|vagina|breasts)\b", *_SEXUAL, skip_if_educational=True),
    _rule(r"\b(?:horny|aroused|turns? me on|sexual feelings|sexual urges)\b", *_SEXUAL),
    _rule(r"\b(?:virginity|lose my virginity|losing virginity)\b", *_SEXUAL, skip_if_educational=True),
    _rule(r"\b(?:hook up|hooking up|one night stand|sexual encounter|rizz me up|rizz)\b", *_SEXUAL),
    _rule(r"\b(?:naked|nude|nudity|undress|take off clothes|get naked)\b", *_SEXUAL, skip_if_educational=True),
    _rule(r"\b(?:birth control|contraception|pregnancy|getting pregnant)\b", *_SEXUAL, skip_if_educational=True),
]

BASE64_IMAGE_RULE = _rule(r"data:image/[^;]+;base64,\S+", "embedded image", "[IMAGE REMOVED]")

_EDUCATIONAL_INDICATORS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"\b(?:biology|chemistry|physics|science|health|PE|dance|history|literature)\s+(?:class|lesson|assignment|homework|project)",
        r"\bfor\s+(?:my|our)\s+(?:class|school|education|learning)",
        r"\bstudying\s+(?:biology|chemistry|physics|science|health|anatomy|physiology)",
        r"\b(?:teacher|professor|instructor)\s+(?:asked|assigned|taught)",
        r"\bin\s+(?:science|biology|health|PE|dance)\s+we",
        r"\b(?:reproductive|digestive|circulatory|respiratory|nervous)\s+system",
        r"\bhuman\s+(?:anatomy|body|physiology)",
        r"\bscientific\s+(?:explanation|process|method)",
        r"\beducational\s+purposes?",
        r"\bacademic\s+(?:research|study|work)",
        r"\blearning\s+about",
    )
]

_SELF_HARM_AUDIT_EXCLUSIONS = (
    "kill myself", "want to die", "end my life", "suicide", "suicidal", "hurt myself",
    "harm myself", "cut myself", "hate myself", "better off without me", "no point living",
    "disappear forever",
)


def has_educational_context(text: str) -> bool:
    return any(p.search(text) for p in _EDUCATIONAL_INDICATORS)


def is_self_harm_text(text: str) -> bool:
    """Crisis wording that must never land in the filtered-content audit."""
    lowered = text.lower()
    return any(k in lowered for k in _SELF_HARM_AUDIT_EXCLUSIONS)


def is_under_13(birthdate: Optional[date], today: Optional[date] = None) -> bool:
    """Missing birthdates count as under 13."""
    if birthdate is None:
        return True
    today = today or date.today()
    age = today.year - birthdate.year
    if (today.month, today.day) < (birthdate.month, birthdate.day):
        age -= 1
    return age < 13


class ContentFilter:
    """
    Rule engine over the message text.

    Args:
        strict_mode: Apply personal-information rules to adults too
        allowed_link_domains: Hosts exempt from the external-link rule
    """

    def __init__(self, strict_mode: bool = True, allowed_link_domains: Iterable[str] = ()):
        self.strict_mode = strict_mode
        self.allowed_link_domains = [d.lower() for d in allowed_link_domains]
        self.rules: list[FilterRule] = [
            *PERSONAL_INFO_RULES,
            *PLATFORM_RULES,
            *VIOLENCE_RULES,
            *SEXUAL_CONTENT_RULES,
            self._link_rule(),
            BASE64_IMAGE_RULE,
        ]

    def _link_rule(self) -> FilterRule:
        if self.allowed_link_domains:
            hosts = "|".join(re.escape(d) for d in self.allowed_link_domains)
            regex = rf"https?://(?!(?:www\.)?(?:{hosts})(?:[/:?#]|$|\s))\S+"
        else:
            regex = r"https?://\S+"
        return _rule(regex, "external link", "[LINK REMOVED]", RuleScope.MINORS)

    def _applies(self, rule: FilterRule, is_minor: bool, educational: bool) -> bool:
        if educational and rule.skip_if_educational:
            return False
        if rule.scope == RuleScope.PERSONAL:
            return self.strict_mode or is_minor
        if rule.scope == RuleScope.MINORS:
            return is_minor
        return True

    def check(self, text: str, is_minor: bool = True) -> FilterResult:
        if not text or not text.strip() or text.strip().lower() == "/assess":
            return FilterResult(blocked=False, cleaned_content=text)

        educational = has_educational_context(text)
        cleaned = text
        flagged: list[str] = []

        for rule in self.rules:
            if not self._applies(rule, is_minor, educational):
                continue
            if rule.pattern.search(text):
                flagged.append(rule.reason)
                cleaned = rule.pattern.sub(rule.replacement, cleaned)

        if not flagged:
            return FilterResult(blocked=False, cleaned_content=text)

        reasons = list(dict.fromkeys(flagged))
        logger.info(f"Content filter blocked message: {', '.join(reasons)}")
        return FilterResult(
            blocked=True,
            reason=f"Contains: {', '.join(reasons)}",
            flagged_patterns=reasons,
            cleaned_content=cleaned,
        )
