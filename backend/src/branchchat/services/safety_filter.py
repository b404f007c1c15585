"""Fast local safety gate and moderation score evaluation.

The fast gate runs before any network call. Hard rules can be replaced at
deploy time through ``settings.moderation_fast_gate_rules`` (a JSON list of
regex strings); category rules and the spam heuristic are fixed.
"""

import json
import logging
import re
from dataclasses import dataclass

from branchchat.config import settings

logger = logging.getLogger(__name__)

DEFAULT_HARD_RULES = [
    r"(?i)\b(kill yourself|suicide|self harm|bomb making|how to make explosives)\b",
    r"(?i)\b(child porn|underage|lolita)\b",
    r"(?i)\b(porn|xxx|nude|onlyfans|sex chat)\b",
    r"(?i)\b(nigger|faggot|kike|chink)s?\b",
]

# Bare "cp" and "die" are left out; they match ordinary text
DEFAULT_CATEGORY_RULES = [
    r"(?i)\b(cut myself|overdose)\b",
    r"(?i)\b(hack|phish|carding|drugs|meth|cocaine|darkweb)\b",
]

SPAM_KEYWORDS = ["free money", "crypto scam", "investment return"]

URL_PATTERN = re.compile(r"https?://\S+", re.IGNORECASE)

# Scored against the moderation API's per-category output
CRITICAL_CATEGORIES = [
    "sexual/minors",
    "self-harm/intent",
    "self-harm/instructions",
    "violence/graphic",
    "illicit/violent",
]
CRITICAL_THRESHOLD = 0.2
DEFAULT_THRESHOLD = 0.5


@dataclass
class SafetyVerdict:
    """Outcome of a safety check."""

    blocked: bool
    reason: str
    category: str | None = None
    rule: str | None = None


def compile_rules(rules: list[str]) -> list[re.Pattern]:
    """Compile rule strings. A leading ``(?i)`` makes a rule case-insensitive."""
    return [re.compile(rule) for rule in rules]


def get_configured_hard_rules() -> list[str]:
    """Hard rules from configuration, or the defaults when unset or invalid."""
    raw = settings.moderation_fast_gate_rules
    if not raw:
        return DEFAULT_HARD_RULES
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring fast gate rule override: not valid JSON")
        return DEFAULT_HARD_RULES
    if isinstance(parsed, list) and all(isinstance(entry, str) for entry in parsed):
        try:
            compile_rules(parsed)
        except re.error as e:
            logger.warning(f"Ignoring fast gate rule override: {e}")
            return DEFAULT_HARD_RULES
        return parsed
    logger.warning("Ignoring fast gate rule override: expected a list of strings")
    return DEFAULT_HARD_RULES


def count_urls(text: str) -> int:
    if not text:
        return 0
    return len(URL_PATTERN.findall(text))


def evaluate_fast_gate(text: str) -> SafetyVerdict:
    """Check text against local pattern rules. No network access."""
    if not text:
        return SafetyVerdict(blocked=False, reason="empty")

    for rule in compile_rules(get_configured_hard_rules()):
        if rule.search(text):
            return SafetyVerdict(blocked=True, reason="fast_gate_hard", rule=rule.pattern)

    for rule in compile_rules(DEFAULT_CATEGORY_RULES):
        if rule.search(text):
            return SafetyVerdict(blocked=True, reason="fast_gate_category", rule=rule.pattern)

    if count_urls(text) >= 2:
        lower = text.lower()
        if any(keyword in lower for keyword in SPAM_KEYWORDS):
            return SafetyVerdict(blocked=True, reason="fast_gate_spam")

    return SafetyVerdict(blocked=False, reason="ok")


def evaluate_moderation_result(
    result: dict | None,
    critical_threshold: float = CRITICAL_THRESHOLD,
    default_threshold: float = DEFAULT_THRESHOLD,
) -> SafetyVerdict:
    """Apply the blocking policy to a moderation API result.

    ``result`` has the moderation API shape: ``flagged`` plus
    ``category_scores`` mapping category name to a 0-1 score.
    """
    if not result:
        return SafetyVerdict(blocked=False, reason="no_result")

    if result.get("flagged"):
        return SafetyVerdict(blocked=True, reason="flagged")

    scores = result.get("category_scores") or {}
    for category in CRITICAL_CATEGORIES:
        score = scores.get(category)
        if isinstance(score, (int, float)) and score >= critical_threshold:
            return SafetyVerdict(blocked=True, reason="critical_threshold", category=category)

    for category, score in scores.items():
        if category in CRITICAL_CATEGORIES:
            continue
        if isinstance(score, (int, float)) and score >= default_threshold:
            return SafetyVerdict(blocked=True, reason="default_threshold", category=category)

    return SafetyVerdict(blocked=False, reason="ok")
