"""
Moderation service adapter.

Runs a local jailbreak scan, then asks an OpenAI-compatible ``/moderations``
endpoint to classify the text. Service failures fail open unless
``fail_closed`` is configured, and the teacher channel is alerted either way.
"""

import logging
import re
from typing import Optional

import httpx

from classroom_tutor.config import ModerationConfig
from classroom_tutor.models import FlagRecord
from classroom_tutor.safety.notifier import TeacherAlert, TeacherNotifier
from classroom_tutor.safety.types import ModerationResult, Severity

logger = logging.getLogger(__name__)

ASSESS_COMMAND = "/assess"
JAILBREAK_CATEGORY = "jailbreak_attempt"
FAILED_OPEN_REASON = "Moderation check failed - defaulting to safe"
FAILED_CLOSED_REASON = "Moderation service unavailable - message held for safety"

_I = re.IGNORECASE

JAILBREAK_PATTERNS = [
    # instruction overrides with explicit intent
    re.compile(r"ignore\s+(previous|all|any)\s+(instructions?|rules?|guidelines?)\s*(and|to)\s*(be\s+)?(evil|harmful|malicious|uncensored)", _I),
    re.compile(r"forget\s+(everything|all|your)\s+(rules?|instructions?|guidelines?)\s*(and|to)\s*(be\s+)?(evil|harmful|malicious)", _I),
    re.compile(r"disregard\s+(all|any|the)\s+(safety|content)\s*(rules?|restrictions)", _I),
    # role manipulation
    re.compile(r"you\s+are\s+now\s+(a|an|the|my|playing)\s*(evil|harmful|malicious|uncensored|unfiltered|jailbroken)\s*(ai|assistant|bot)?", _I),
    re.compile(r"pretend\s+(you('re|\s+are)|to\s+be)\s*(evil|bad|harmful|uncensored|unfiltered|without\s+rules)", _I),
    re.compile(r"act\s+as\s+(if|though)\s+you\s*(have\s+no|don't\s+have)\s*(safety\s+)?rules", _I),
    re.compile(r"from\s+now\s+on\s+you('re|\s+are)\s*(evil|harmful|uncensored|unfiltered|jailbroken)", _I),
    re.compile(r"roleplay\s+as\s*(a|an)\s*(evil|bad|harmful|uncensored|unfiltered)", _I),
    re.compile(r"switch\s+to\s*(developer|jailbreak|uncensored|unfiltered)\s*mode", _I),
    # prompt exposure
    re.compile(r"(show|tell|reveal)\s+me\s+your\s+(system\s+)?prompt\s*(so\s+i\s+can|to)\s*(bypass|override|ignore)", _I),
    re.compile(r"what\s+are\s+your\s+(secret|hidden)\s+(instructions?|prompt)", _I),
    # boundary testing
    re.compile(r"say\s+something\s+(racist|sexist|homophobic|transphobic)", _I),
    re.compile(r"(can\s+you\s+say|repeat\s+after\s+me)\s+.*\b(fuck|shit|cunt|bitch)\b", _I),
    # DAN and friends
    re.compile(r"\bDAN\b.*mode", _I),
    re.compile(r"\bjail\s*break(\s*(mode|prompt|attempt))?\b", _I),
    re.compile(r"do\s+anything\s+now", _I),
    re.compile(r"no\s+filters?\s+mode", _I),
    re.compile(r"developer\s+mode\s*(enabled|on|activated)", _I),
    re.compile(r"unlock\s+(full|all)\s+(capabilities?|potential)", _I),
    # blatant academic circumvention
    re.compile(r"give\s+me\s+(all|the)\s+(test|exam)\s+answers", _I),
    re.compile(r"write\s+(my|the)\s+(entire|whole|complete)\s+(essay|paper|assignment)\s+for\s+me", _I),
    re.compile(r"do\s+(all\s+)?my\s+(homework|assignment)\s+for\s+me", _I),
    re.compile(r"complete\s+(the|this)\s+(entire|whole)\s+(test|exam|assignment)\s+for\s+me", _I),
    re.compile(r"just\s+give\s+me\s+the\s+answer\s*(without\s+explaining|no\s+explanation)", _I),
    re.compile(r"don't\s+explain.*just\s+(give|tell)\s+me\s+the\s+answer", _I),
]

EDUCATIONAL_WHITELIST = [
    re.compile(p, _I)
    for p in (
        r"step\s+by\s+step",
        r"how\s+(do|can)\s+i\s+(answer|solve|approach|tackle|work\s+through)",
        r"explain\s+(how|why|what|the)",
        r"help\s+me\s+(understand|learn|study|with)",
        r"teach\s+me\s+(how|about|the)",
        r"(guide|walk)\s+me\s+through",
        r"break\s+(it|this)\s+down",
        r"show\s+me\s+(how|the\s+steps|an\s+example)",
        r"what\s+(are|is)\s+the\s+(steps|process|method|approach)",
        r"can\s+you\s+(explain|help|show|teach|guide)",
        r"give\s+me\s+(an\s+example|hints?|tips?|guidance)",
        r"how\s+to\s+(solve|answer|approach|work\s+out)",
        r"what\s+does\s+.*\s+mean",
        r"i\s+(still\s+)?don't\s+understand",
        r"i'm\s+(still\s+)?confused\s+about",
        r"can\s+you\s+clarify",
        r"(in|for\s+my)\s+(biology|chemistry|physics|science|health|history|literature)\s+(class|assignment|homework|project|essay)",
        r"(reproductive|digestive|circulatory|respiratory|nervous)\s+system",
        r"human\s+(anatomy|body|physiology)",
        r"educational\s+purposes?",
    )
]

PERSONAL_RELATIONSHIP_PATTERNS = [
    re.compile(p, _I)
    for p in (
        r"confused.*about.*boy",
        r"confused.*should.*be",
        r"older.*younger.*boy",
        r"like.*them.*both",
    )
]

COMMAND_PATTERNS = [
    re.compile(r"^![\w]+"),
    re.compile(r"^/[\w]+"),
    re.compile(r"\[INST\]", _I),
    re.compile(r"\{\{.*\}\}"),
    re.compile(r"<\|.*\|>"),
]

HIGH_SEVERITY_CATEGORIES = (
    "sexual/minors",
    "self-harm/intent",
    "violence/graphic",
    "harassment/threatening",
)

SELF_HARM_CATEGORIES = ("self-harm", "self-harm/intent", "self-harm/instructions")

CATEGORY_DESCRIPTIONS = {
    "harassment": "Harassment or bullying content",
    "harassment/threatening": "Threatening harassment",
    "hate": "Hate speech",
    "hate/threatening": "Threatening hate speech",
    "self-harm": "Self-harm content",
    "self-harm/intent": "Intent to self-harm",
    "self-harm/instructions": "Self-harm instructions",
    "sexual": "Sexual content",
    "sexual/minors": "Sexual content involving minors",
    "violence": "Violent content",
    "violence/graphic": "Graphic violence",
}


def detect_jailbreak(text: str) -> list[str]:
    """
    Return the matched jailbreak fragments (empty when none).

    Educational phrasing and questions about personal relationships are
    exempt; ``/assess`` is the only command syntax that is allowed.
    """
    if any(p.search(text) for p in EDUCATIONAL_WHITELIST):
        return []
    if any(p.search(text) for p in PERSONAL_RELATIONSHIP_PATTERNS):
        return []

    matches = []
    for pattern in JAILBREAK_PATTERNS:
        match = pattern.search(text)
        if match:
            matches.append(match.group(0))

    if text.strip().lower() != ASSESS_COMMAND:
        stripped = text.strip()
        for pattern in COMMAND_PATTERNS:
            match = pattern.search(stripped)
            if match:
                matches.append(f"Command pattern: {match.group(0)}")
    return matches


def determine_severity(
    categories: dict[str, bool],
    scores: dict[str, float],
    jailbreak_detected: bool,
) -> Severity:
    for category in HIGH_SEVERITY_CATEGORIES:
        if categories.get(category) or scores.get(category, 0.0) > 0.7:
            return Severity.HIGH

    flagged_count = sum(1 for v in categories.values() if v)
    max_score = max(scores.values(), default=0.0)
    if flagged_count >= 2 or max_score > 0.5 or jailbreak_detected:
        return Severity.MEDIUM
    return Severity.LOW


def format_reason(categories: dict[str, bool], jailbreak_matches: list[str]) -> str:
    reasons = [
        CATEGORY_DESCRIPTIONS[name]
        for name, flagged in categories.items()
        if flagged and name in CATEGORY_DESCRIPTIONS
    ]
    if jailbreak_matches:
        reasons.append("Attempted to bypass safety guidelines")
    return "; ".join(reasons) if reasons else "Content flagged for review"


def flag_concern_type(result: ModerationResult) -> Optional[str]:
    """Concern type recorded for a moderation flag; None for self-harm."""
    categories = set(result.categories)
    if result.jailbreak_detected:
        return JAILBREAK_CATEGORY
    if categories & set(SELF_HARM_CATEGORIES):
        return None
    if categories & {"harassment", "harassment/threatening"}:
        return "bullying"
    if categories & {"violence", "violence/graphic"}:
        return "violence"
    return "inappropriate_content"


def build_moderation_flag(
    result: ModerationResult,
    *,
    message_id: str,
    author_id: str,
    room_id: str,
    teacher_id: str,
) -> Optional[FlagRecord]:
    concern_type = flag_concern_type(result)
    if concern_type is None:
        return None
    return FlagRecord(
        message_id=message_id,
        author_id=author_id,
        room_id=room_id,
        teacher_id=teacher_id,
        concern_type=concern_type,
        concern_level=result.severity.concern_level,
        explanation=f"AI Moderation: {result.reason}",
        source="ai-moderation",
    )


class ModerationAdapter:
    """
    Client for an OpenAI-compatible moderation endpoint.

    Example:
        ```python
        adapter = ModerationAdapter(ModerationConfig(api_key="sk-..."))
        result = await adapter.moderate("some text", author_id="s1", room_id="r1")
        ```
    """

    def __init__(
        self,
        config: ModerationConfig,
        client: Optional[httpx.AsyncClient] = None,
        notifier: Optional[TeacherNotifier] = None,
    ):
        self.config = config
        self._client = client
        self.notifier = notifier

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Content-Type": "application/json"}
            if self.config.api_key:
                headers["Authorization"] = f"Bearer {self.config.api_key.get_secret_value()}"
            self._client = httpx.AsyncClient(
                base_url=self.config.base_url,
                headers=headers,
                timeout=httpx.Timeout(self.config.timeout),
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _call_service(self, text: str) -> dict:
        response = await self._get_client().post(
            "/moderations",
            json={"model": self.config.model, "input": text},
        )
        response.raise_for_status()
        results = response.json().get("results") or []
        if not results:
            raise ValueError("Moderation response contained no results")
        return results[0]

    async def moderate(
        self,
        text: str,
        *,
        author_id: Optional[str] = None,
        room_id: Optional[str] = None,
    ) -> ModerationResult:
        if text.strip().lower() == ASSESS_COMMAND:
            return ModerationResult(flagged=False)

        jailbreak = detect_jailbreak(text)
        if jailbreak:
            logger.info(f"Jailbreak patterns detected for {author_id}: {jailbreak}")

        if not self.config.enabled:
            return self._local_result(jailbreak)

        try:
            raw = await self._call_service(text)
        except (httpx.HTTPError, ValueError, KeyError) as e:
            return await self._service_failed(e, jailbreak, author_id, room_id)

        categories = {k: v is True for k, v in (raw.get("categories") or {}).items()}
        scores = {k: float(v or 0.0) for k, v in (raw.get("category_scores") or {}).items()}
        flagged_categories = [k for k, v in categories.items() if v]
        if jailbreak:
            flagged_categories.append(JAILBREAK_CATEGORY)

        flagged = bool(raw.get("flagged")) or bool(jailbreak)
        severity = determine_severity(categories, scores, bool(jailbreak)) if flagged else Severity.LOW
        result = ModerationResult(
            flagged=flagged,
            categories=flagged_categories,
            category_scores=scores,
            severity=severity,
            jailbreak_detected=bool(jailbreak),
            reason=format_reason(categories, jailbreak),
        )
        logger.info(
            f"Moderation complete: flagged={flagged} severity={severity.value} "
            f"categories={len(flagged_categories)} jailbreak={bool(jailbreak)}"
        )
        return result

    def _local_result(self, jailbreak: list[str]) -> ModerationResult:
        if not jailbreak:
            return ModerationResult(flagged=False)
        return ModerationResult(
            flagged=True,
            categories=[JAILBREAK_CATEGORY],
            severity=Severity.MEDIUM,
            jailbreak_detected=True,
            reason=format_reason({}, jailbreak),
        )

    async def _service_failed(
        self,
        error: Exception,
        jailbreak: list[str],
        author_id: Optional[str],
        room_id: Optional[str],
    ) -> ModerationResult:
        logger.warning(f"Moderation service failed: {error}")

        if self.config.alert_on_failure and self.notifier is not None and room_id and author_id:
            await self.notifier.notify(
                TeacherAlert(
                    kind="moderation_unavailable",
                    room_id=room_id,
                    author_id=author_id,
                    explanation=f"Moderation unavailable ({type(error).__name__})",
                )
            )

        if jailbreak:
            result = self._local_result(jailbreak)
            result.service_failed = True
            return result

        if self.config.fail_closed:
            return ModerationResult(
                flagged=True,
                categories=["moderation_unavailable"],
                severity=Severity.MEDIUM,
                reason=FAILED_CLOSED_REASON,
                service_failed=True,
            )
        return ModerationResult(flagged=False, reason=FAILED_OPEN_REASON, service_failed=True)
