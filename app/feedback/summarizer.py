"""Rule-based conversation summarizer: sentiment, topics, action items and risk."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from statistics import mean
from typing import Iterable, List, Optional, Protocol, Sequence, Tuple

from app.conversations.schemas import ActionItem, FeedbackSummary

logger = logging.getLogger(__name__)

POSITIVE_THRESHOLD = 0.2
NEGATIVE_THRESHOLD = -0.2
DEFAULT_RISK_THRESHOLD = -0.5

_POSITIVE = {
    "good", "great", "awesome", "love", "thanks", "helpful", "happy", "excited",
    "welcoming", "collaborative", "manageable", "wonderful", "fantastic", "enjoy",
    "enjoying", "smooth", "supportive", "productive", "appreciated", "proud", "fine",
}
_NEGATIVE = {
    "bad", "terrible", "angry", "hate", "upset", "stressed", "stress", "tired",
    "frustrated", "frustrating", "overwhelmed", "anxious", "worried", "awful",
    "exhausted", "drowning", "struggling", "unfair", "tight", "intense", "heavy",
    "difficult", "hard", "miserable", "unhappy", "toxic", "burnout", "blocked",
}
_NEGATORS = {"not", "no", "never", "isn't", "wasn't", "don't", "didn't", "hardly", "nothing"}

_TOKEN = re.compile(r"[a-z]+(?:'[a-z]+)?")

# Safety or distress language always raises risk to high.
DISTRESS_PATTERNS: Tuple[Tuple[str, re.Pattern[str]], ...] = tuple(
    (label, re.compile(pattern, re.I))
    for label, pattern in (
        ("can't cope", r"\b(?:can'?t|cannot|can not|unable to) cope\b"),
        ("drowning", r"\bdrowning\b"),
        ("overwhelmed", r"\boverwhelmed\b"),
        ("anxiety", r"\banxi(?:ous|ety)\b"),
        ("panic", r"\bpanic(?:king)?\b"),
        ("burnout", r"\bburn(?:ed|t)[ -]?out\b|\bburnout\b"),
        ("breakdown", r"\bbreak(?:ing)? ?down\b"),
        ("depression", r"\bdepress(?:ed|ion)\b"),
        ("hopeless", r"\bhopeless\b"),
        ("self-harm", r"\bself[- ]harm\b|\bhurt(?:ing)? myself\b|\bsuicid(?:e|al)\b"),
        ("harassment", r"\bharass(?:ed|ment|ing)?\b|\bbull(?:ied|ying)\b"),
        ("unsafe", r"\bunsafe\b|\bnot safe\b"),
        ("can't sleep", r"\b(?:can'?t|cannot) sleep\b"),
    )
)

TOPIC_PATTERNS: Tuple[Tuple[str, re.Pattern[str]], ...] = tuple(
    (tag, re.compile(pattern, re.I))
    for tag, pattern in (
        ("workload", r"\bworkload\b|\boverload(?:ed)?\b|\btoo much\b|\bheavy\b|\bbusy\b|\bsprint\b|\bmeetings?\b"),
        ("deadlines", r"\bdeadlines?\b|\bdue date\b|\btimeline\b|\btight\b"),
        ("mental_health", r"\banxi(?:ous|ety)\b|\bdepress|\bmental health\b|\boverwhelmed\b|\bdrowning\b|\bcope\b"),
        ("stress", r"\bstress(?:ed|ful)?\b|\bpressure\b|\boverwhelmed\b|\bburn(?:ed|t)?[ -]?out\b"),
        ("team_collaboration", r"\bteam(?:mates?)?\b|\bcollaborat\w*|\bcolleagues?\b|\bpm\b"),
        ("management", r"\bmanag(?:er|ers|ement)\b|\bboss\b|\bleadership\b"),
        ("compensation", r"\bsalary\b|\bpay\b|\bcompensation\b|\braise\b|\bbonus\b"),
        ("career_growth", r"\bpromotion\b|\bcareer\b|\bgrowth\b|\blearn(?:ing)?\b|\bdevelop(?:ment)?\b"),
        ("onboarding", r"\bfirst (?:day|week)\b|\bonboarding\b|\bnew hire\b|\bsettl(?:e|ing) in\b"),
        ("tooling", r"\blaptop\b|\baccess\b|\baws\b|\baccounts?\b|\btools?\b|\bsoftware\b|\bvpn\b"),
        ("culture", r"\bculture\b|\bwelcoming\b|\bvalues\b|\binclusive\b"),
        ("work_life_balance", r"\bweekends?\b|\bovertime\b|\blate nights?\b|\bwork[- ]life\b|\bvacation\b|\btime off\b"),
        ("recognition", r"\brecogni[sz](?:ed|ion)\b|\bappreciated\b|\bcredit\b"),
    )
)

_ACTIONS = {
    "deadlines": ("Follow up on deadline concerns", "high", 0.9),
    "workload": ("Review workload distribution", "medium", 0.8),
    "stress": ("Check in on stress levels", "medium", 0.75),
    "tooling": ("Follow up on access and tooling request", "medium", 0.85),
    "management": ("Discuss management feedback with the HR partner", "medium", 0.7),
    "compensation": ("Review compensation concerns", "medium", 0.7),
    "work_life_balance": ("Review working hours and time off", "medium", 0.7),
    "career_growth": ("Discuss growth opportunities", "low", 0.6),
    "team_collaboration": ("Check team capacity", "low", 0.6),
}
MAX_ACTION_ITEMS = 3


def _normalise(text: str) -> str:
    return (text or "").replace("’", "'").lower()


class SentimentClassifier(Protocol):
    """Anything that maps text onto a score in ``[-1, 1]``."""

    def score(self, text: str) -> float: ...


@dataclass
class LexiconSentimentClassifier:
    """Deterministic word-list classifier with simple negation handling."""

    positive: frozenset = field(default_factory=lambda: frozenset(_POSITIVE))
    negative: frozenset = field(default_factory=lambda: frozenset(_NEGATIVE))

    def score(self, text: str) -> float:
        tokens = _TOKEN.findall(_normalise(text))
        positives = negatives = 0
        for index, token in enumerate(tokens):
            polarity = 1 if token in self.positive else -1 if token in self.negative else 0
            if not polarity:
                continue
            if any(t in _NEGATORS for t in tokens[max(0, index - 2):index]):
                polarity = -polarity
            if polarity > 0:
                positives += 1
            else:
                negatives += 1
        if not positives and not negatives:
            return 0.0
        return round((positives - negatives) / (positives + negatives), 2)


def detect_distress(text: str) -> List[str]:
    """Return the distress signals found in ``text`` (empty when none)."""

    normalised = _normalise(text)
    return [label for label, pattern in DISTRESS_PATTERNS if pattern.search(normalised)]


def extract_tags(texts: Iterable[str]) -> List[str]:
    found: List[str] = []
    for text in texts:
        normalised = _normalise(text)
        for tag, pattern in TOPIC_PATTERNS:
            if tag not in found and pattern.search(normalised):
                found.append(tag)
    return found


def classify(scores: Sequence[float]) -> Tuple[str, Optional[float]]:
    """Map per-message scores onto a sentiment label and mean score."""

    if not scores:
        return "neutral", None
    average = round(mean(scores), 2)
    if average >= POSITIVE_THRESHOLD:
        return "positive", average
    if average <= NEGATIVE_THRESHOLD:
        return "negative", average
    if any(s >= POSITIVE_THRESHOLD for s in scores) and any(s <= NEGATIVE_THRESHOLD for s in scores):
        return "mixed", average
    return "neutral", average


class Summarizer:
    """Compute a :class:`FeedbackSummary` from a conversation's messages.

    Risk is ``high`` when any employee message carries a distress signal, or
    when the mean score is at or below ``risk_threshold`` and the template has
    escalation enabled. A negative conversation without those signals is
    ``moderate``; everything else is ``low``. When the classifier raises, the
    summary is returned with ``status="unavailable"`` and keyword-based risk
    only, so callers can still persist the message that triggered it.
    """

    def __init__(
        self,
        classifier: Optional[SentimentClassifier] = None,
        *,
        risk_threshold: float = DEFAULT_RISK_THRESHOLD,
    ) -> None:
        self._classifier = classifier or LexiconSentimentClassifier()
        self._risk_threshold = risk_threshold

    def summarize(self, messages: Sequence, *, escalation_enabled: bool = True) -> FeedbackSummary:
        employee_texts = [m.content for m in messages if m.sender_type == "employee"]
        agent_count = sum(1 for m in messages if m.sender_type == "agent")
        signals = [signal for text in employee_texts for signal in detect_distress(text)]
        tags = extract_tags(employee_texts)

        try:
            scores = [self._clamp(self._classifier.score(text)) for text in employee_texts]
        except Exception:
            logger.exception("Sentiment classifier failed; summary marked unavailable")
            return FeedbackSummary(
                risk_level="high" if signals else "low",
                tags=tags,
                status="unavailable",
                summary="Summary unavailable.",
            )

        sentiment, score = classify(scores)
        if sentiment == "positive" and "positive_feedback" not in tags:
            tags.append("positive_feedback")

        if signals or (
            escalation_enabled and score is not None and score <= self._risk_threshold
        ):
            risk = "high"
        elif sentiment == "negative":
            risk = "moderate"
        else:
            risk = "low"

        return FeedbackSummary(
            sentiment=sentiment,
            sentiment_score=score,
            risk_level=risk,
            tags=tags,
            action_items=self._action_items(employee_texts[-2:], signals),
            engagement_score=self._engagement(employee_texts, agent_count),
            summary=self._describe(len(employee_texts), sentiment, risk, tags),
        )

    @staticmethod
    def _clamp(value: float) -> float:
        return max(-1.0, min(1.0, float(value)))

    @staticmethod
    def _action_items(recent: Sequence[str], signals: Sequence[str]) -> List[ActionItem]:
        items: List[ActionItem] = []
        if signals:
            items.append(ActionItem(text="HR follow-up required", priority="high", confidence=0.95))
        for tag in extract_tags(recent):
            action = _ACTIONS.get(tag)
            if action is None:
                continue
            text, priority, confidence = action
            if all(item.text != text for item in items):
                items.append(ActionItem(text=text, priority=priority, confidence=confidence))
        return items[:MAX_ACTION_ITEMS]

    @staticmethod
    def _engagement(employee_texts: Sequence[str], agent_count: int) -> float:
        if not employee_texts:
            return 0.0
        ratio = min(1.0, len(employee_texts) / max(1, agent_count))
        avg_words = mean(len(text.split()) for text in employee_texts)
        return round(ratio * (0.5 + 0.5 * min(1.0, avg_words / 20)), 2)

    @staticmethod
    def _describe(replies: int, sentiment: str, risk: str, tags: Sequence[str]) -> str:
        if not replies:
            return "No employee replies yet."
        noun = "reply" if replies == 1 else "replies"
        text = f"{replies} employee {noun}; {sentiment} sentiment, {risk} risk."
        if tags:
            text += f" Topics: {', '.join(tags)}."
        return text


__all__ = [
    "LexiconSentimentClassifier",
    "SentimentClassifier",
    "Summarizer",
    "classify",
    "detect_distress",
    "extract_tags",
]
