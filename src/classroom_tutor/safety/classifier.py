"""
Keyword safety classifier.

Pure and synchronous. Categories are checked in priority order and the first
category with a whole-phrase match wins, so a message mentioning both
self-harm and a school address is reported as self-harm.
"""

import logging
import re
from typing import Mapping, Optional

from classroom_tutor.safety.keywords import CONCERN_KEYWORDS
from classroom_tutor.safety.types import ConcernType, FindingSource, SafetyFinding

logger = logging.getLogger(__name__)

_APOSTROPHES = str.maketrans({"’": "'", "‘": "'", "ʼ": "'"})


def normalize_text(text: str) -> str:
    return " ".join(text.translate(_APOSTROPHES).lower().split())


def _compile(phrases: list[str]) -> re.Pattern[str]:
    alternatives = sorted({normalize_text(p) for p in phrases}, key=len, reverse=True)
    body = "|".join(re.escape(p) for p in alternatives)
    return re.compile(rf"(?<![\w'])(?:{body})(?![\w'])")


class SafetyClassifier:
    """
    Detects crisis-level concerns by phrase matching.

    ``classify`` never raises: any unexpected failure is logged and reported
    as no concern, leaving moderation and the LLM layers to catch the message.
    """

    def __init__(self, keywords: Optional[Mapping[ConcernType, list[str]]] = None):
        source = keywords if keywords is not None else CONCERN_KEYWORDS
        self._patterns: list[tuple[ConcernType, re.Pattern[str]]] = [
            (concern, _compile(phrases)) for concern, phrases in source.items() if phrases
        ]

    def classify(self, text: str) -> SafetyFinding:
        try:
            if not text or text.strip().startswith("/"):
                return SafetyFinding.clear()

            normalized = normalize_text(text)
            for concern, pattern in self._patterns:
                match = pattern.search(normalized)
                if match:
                    logger.info(f"Safety concern detected: {concern.value}")
                    return SafetyFinding(
                        concern=True,
                        concern_type=concern,
                        source=FindingSource.KEYWORD,
                        categories=[concern.value],
                        matched_phrase=match.group(0),
                    )
            return SafetyFinding.clear()
        except Exception as e:
            logger.error(f"Safety classifier failed, reporting no concern: {e}")
            return SafetyFinding.clear()
