from collections.abc import Iterable
from dataclasses import dataclass, field

from rapport.store.vector_index import Horseman, IndexMatch, Sentiment

# Display sentinel for a ratio with no negative messages (including 0/0)
INFINITE_RATIO = "∞"

COUNTED_HORSEMEN = (Horseman.CRITICISM, Horseman.CONTEMPT, Horseman.DEFENSIVENESS)


def _empty_horsemen() -> dict[str, int]:
    return {h.value: 0 for h in COUNTED_HORSEMEN}


@dataclass
class ConversationStats:
    positive: int = 0
    negative: int = 0
    neutral: int = 0
    total_messages: int = 0
    ratio: str = INFINITE_RATIO
    horsemen: dict[str, int] = field(default_factory=_empty_horsemen)

    @property
    def horsemen_total(self) -> int:
        return sum(self.horsemen.values())

    @property
    def horsemen_percent(self) -> str:
        return _percent(self.horsemen_total, self.total_messages)

    def percentages(self) -> dict[str, str]:
        return {
            "positive": _percent(self.positive, self.total_messages),
            "negative": _percent(self.negative, self.total_messages),
            "neutral": _percent(self.neutral, self.total_messages),
        }

    def to_dict(self) -> dict:
        return {
            "positive": self.positive,
            "negative": self.negative,
            "neutral": self.neutral,
            "total_messages": self.total_messages,
            "ratio": self.ratio,
            "horsemen": dict(self.horsemen),
        }


def _percent(part: int, total: int) -> str:
    if total <= 0:
        return "0"
    return f"{part / total * 100:.1f}"


def format_ratio(positive: int, negative: int) -> str:
    if negative == 0:
        return INFINITE_RATIO
    return f"{positive / negative:.2f}"


def compute_stats(matches: Iterable[IndexMatch]) -> ConversationStats:
    """Sentiment counts, positive:negative ratio and horsemen counts over a retrieved set."""
    stats = ConversationStats()

    for match in matches:
        stats.total_messages += 1

        sentiment = match.metadata.sentiment
        if sentiment is Sentiment.POSITIVE:
            stats.positive += 1
        elif sentiment is Sentiment.NEGATIVE:
            stats.negative += 1
        else:
            stats.neutral += 1

        horseman = match.metadata.horseman
        if horseman in COUNTED_HORSEMEN:
            stats.horsemen[horseman.value] += 1

    stats.ratio = format_ratio(stats.positive, stats.negative)
    return stats


def compute_participant_stats(matches: Iterable[IndexMatch]) -> dict[str, ConversationStats]:
    """Per-sender stats, keyed by sender id."""
    by_sender: dict[str, list[IndexMatch]] = {}
    for match in matches:
        by_sender.setdefault(match.metadata.sender_id or "unknown", []).append(match)
    return {sender: compute_stats(items) for sender, items in by_sender.items()}


def energy_score(stats: ConversationStats) -> int:
    """Map sentiment balance to 0..100; 50 is neutral or no data."""
    if stats.total_messages == 0:
        return 50
    balance = (stats.positive - stats.negative) / stats.total_messages
    return round(50 + 50 * balance)
