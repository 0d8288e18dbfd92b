"""
Tier classification.

A combo's tier depends only on which metadata fields contributed to it
and on its length bucket (2, 3, 4+ words).  When several generation
paths produced the same text, the strongest path decides.  The mapping is an explicit
table covering every non-empty source set, so classification never
falls through to a default.
"""

from enum import IntEnum

from .generator import Combo, Source

T, S, C = Source.TITLE, Source.SUBTITLE, Source.CUSTOM


class Tier(IntEnum):
    """Lower value = stronger placement."""

    TITLE_PAIR = 1
    TITLE_PHRASE = 2
    TITLE_SUBTITLE_CROSS = 3
    TITLE_CUSTOM_CROSS = 4
    SUBTITLE_PAIR = 5
    SUBTITLE_PHRASE = 6
    CUSTOM_PAIR = 7
    SUBTITLE_CUSTOM_CROSS = 8
    CUSTOM_PHRASE = 9
    THREE_WAY_CROSS = 10

    @property
    def label(self) -> str:
        return self.name.replace("_", " ").title()


TIER_WEIGHTS = {
    Tier.TITLE_PAIR: 1.0,
    Tier.TITLE_PHRASE: 0.85,
    Tier.TITLE_SUBTITLE_CROSS: 0.70,
    Tier.TITLE_CUSTOM_CROSS: 0.65,
    Tier.SUBTITLE_PAIR: 0.50,
    Tier.SUBTITLE_PHRASE: 0.45,
    Tier.CUSTOM_PAIR: 0.40,
    Tier.SUBTITLE_CUSTOM_CROSS: 0.35,
    Tier.CUSTOM_PHRASE: 0.30,
    Tier.THREE_WAY_CROSS: 0.20,
}

# (sources, length bucket) -> tier.  Buckets: 2, 3, 4 (= four or more).
# A 3+ word combo with several sources is a window that exists in full in
# each of those fields, so it takes the strongest field's phrase tier.
TIER_TABLE = {
    (frozenset({T}), 2): Tier.TITLE_PAIR,
    (frozenset({T}), 3): Tier.TITLE_PHRASE,
    (frozenset({T}), 4): Tier.TITLE_PHRASE,
    (frozenset({S}), 2): Tier.SUBTITLE_PAIR,
    (frozenset({S}), 3): Tier.SUBTITLE_PHRASE,
    (frozenset({S}), 4): Tier.SUBTITLE_PHRASE,
    (frozenset({C}), 2): Tier.CUSTOM_PAIR,
    (frozenset({C}), 3): Tier.CUSTOM_PHRASE,
    (frozenset({C}), 4): Tier.CUSTOM_PHRASE,
    (frozenset({T, S}), 2): Tier.TITLE_SUBTITLE_CROSS,
    (frozenset({T, S}), 3): Tier.TITLE_PHRASE,
    (frozenset({T, S}), 4): Tier.TITLE_PHRASE,
    (frozenset({T, C}), 2): Tier.TITLE_CUSTOM_CROSS,
    (frozenset({T, C}), 3): Tier.TITLE_PHRASE,
    (frozenset({T, C}), 4): Tier.TITLE_PHRASE,
    (frozenset({S, C}), 2): Tier.SUBTITLE_CUSTOM_CROSS,
    (frozenset({S, C}), 3): Tier.SUBTITLE_PHRASE,
    (frozenset({S, C}), 4): Tier.SUBTITLE_PHRASE,
    (frozenset({T, S, C}), 2): Tier.THREE_WAY_CROSS,
    (frozenset({T, S, C}), 3): Tier.TITLE_PHRASE,
    (frozenset({T, S, C}), 4): Tier.TITLE_PHRASE,
}


def length_bucket(word_count: int) -> int:
    if word_count < 2:
        raise ValueError(f"combos have at least two words, got {word_count}")
    return min(word_count, 4)


def classify(combo: Combo) -> Tier:
    """
    Tier of the strongest path that generated the combo.

    A title window that a cross-field pair happens to reproduce stays a
    title pair.  Combos built by hand without paths use ``sources``.
    """
    paths = combo.paths or {combo.sources}
    return min(classify_sources(p, combo.word_count) for p in paths)


def classify_sources(sources, word_count: int) -> Tier:
    key = (frozenset(Source(s) for s in sources), length_bucket(word_count))
    try:
        return TIER_TABLE[key]
    except KeyError:
        raise ValueError(f"no tier for sources={sorted(sources)} words={word_count}") from None


def tier_weight(tier: Tier) -> float:
    return TIER_WEIGHTS[Tier(tier)]
