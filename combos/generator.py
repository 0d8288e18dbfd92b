"""
Tokenizer and combo generator.

Turns an app's metadata fields (title, subtitle, custom keywords) into
normalized tokens and then into multi-word candidate phrases:

  - same-field contiguous windows of 2, 3 and every size >= 4 words
  - cross-field pairs (one token from each of two fields), 2 words only
  - custom keyword phrases that already have 2+ words, taken as-is

Every combo lives in a single ``ComboSet`` keyed by its normalized text.
A combo generated along several paths is stored once.  ``sources`` is the
union of the contributing fields and ``paths`` keeps the source set of
each generation path, so the classifier can place a combo by its
strongest path.
"""

import re
from collections import defaultdict
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Iterator, Optional

_NON_ALNUM = re.compile(r"[^\w\s]|_", re.UNICODE)

MIN_TOKEN_LENGTH = 2

# Filler words that never make a useful search phrase on their own.
LOW_VALUE_STOPWORDS = frozenset({
    "the", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "as", "is", "was", "are", "be", "been",
    "have", "has", "had", "do", "does", "did", "will", "would", "should",
    "could", "may", "might", "can", "must", "shall",
})


class Source(str, Enum):
    TITLE = "title"
    SUBTITLE = "subtitle"
    CUSTOM = "custom"


# Cross-field pairs are emitted in this field order ("<title> <subtitle>").
FIELD_ORDER = (Source.TITLE, Source.SUBTITLE, Source.CUSTOM)


@dataclass(frozen=True)
class Token:
    text: str
    source: Source


@dataclass(frozen=True)
class Combo:
    text: str
    sources: frozenset
    paths: frozenset = frozenset()

    @property
    def words(self) -> tuple:
        return tuple(self.text.split(" "))

    @property
    def word_count(self) -> int:
        return len(self.words)

    def contains_keyword(self, keyword: str) -> bool:
        needle = normalize_phrase(keyword)
        if not needle:
            return False
        return f" {needle} " in f" {self.text} "


@dataclass(frozen=True)
class MetadataFields:
    title: str = ""
    subtitle: str = ""
    custom: tuple = ()


def normalize_phrase(text: str) -> str:
    """Lowercase, strip punctuation and collapse whitespace (stopwords kept)."""
    if not text:
        return ""
    cleaned = _NON_ALNUM.sub(" ", text.lower())
    return " ".join(cleaned.split())


def tokenize(text: str, source: Source = Source.TITLE) -> list[Token]:
    """
    Split a metadata field into normalized tokens.

    Tokens shorter than two characters and low-value stopwords are
    dropped.  Duplicates within the field are kept so that contiguous
    windows still reflect the original word order.
    """
    tokens = []
    for word in normalize_phrase(text).split():
        if len(word) < MIN_TOKEN_LENGTH or word in LOW_VALUE_STOPWORDS:
            continue
        tokens.append(Token(text=word, source=source))
    return tokens


def _windows(words: list[str], size: int) -> Iterator[tuple]:
    for start in range(len(words) - size + 1):
        yield tuple(words[start:start + size])


def _unique(words: Iterable[str]) -> list[str]:
    seen = set()
    result = []
    for word in words:
        if word not in seen:
            seen.add(word)
            result.append(word)
    return result


@dataclass
class ComboSet:
    """The one collection every derived view (scoring, fetch, export) reads."""

    locale: str = "us"
    platform: str = "ios"
    _combos: dict = field(default_factory=dict, repr=False)

    def add(self, text: str, sources: Iterable[Source]) -> Optional[Combo]:
        text = normalize_phrase(text)
        if len(text.split(" ")) < 2:
            return None
        path = frozenset(sources)
        sources, paths = path, frozenset({path})
        existing = self._combos.get(text)
        if existing is not None:
            sources = existing.sources | path
            paths = existing.paths | paths
        combo = Combo(text=text, sources=sources, paths=paths)
        self._combos[text] = combo
        return combo

    def get(self, text: str) -> Optional[Combo]:
        return self._combos.get(normalize_phrase(text))

    def __contains__(self, text) -> bool:
        return normalize_phrase(text) in self._combos

    def __iter__(self) -> Iterator[Combo]:
        return iter(self._combos.values())

    def __len__(self) -> int:
        return len(self._combos)

    def texts(self) -> list[str]:
        return list(self._combos)

    def tokens(self) -> list[str]:
        """Distinct tokens across all combos, in first-seen order."""
        return _unique(word for combo in self for word in combo.words)

    def filter_by_keyword(self, keyword: str) -> list[Combo]:
        needle = normalize_phrase(keyword)
        return [c for c in self if any(needle in word for word in c.words)]

    def count_with_keyword(self, keyword: str) -> int:
        return len(self.filter_by_keyword(keyword))

    def group_by_length(self) -> dict[int, list[Combo]]:
        groups = defaultdict(list)
        for combo in self:
            groups[combo.word_count].append(combo)
        return dict(groups)

    def exclude_brand(self, brand: str) -> "ComboSet":
        """Drop combos containing any token of the brand name."""
        brand_words = {t.text for t in tokenize(brand)}
        filtered = ComboSet(locale=self.locale, platform=self.platform)
        for combo in self:
            if brand_words and brand_words & set(combo.words):
                continue
            filtered._combos[combo.text] = combo
        return filtered


def generate(fields: MetadataFields, locale: str = "us", platform: str = "ios") -> ComboSet:
    """
    Generate every candidate combo for one app's metadata.

    Args:
        fields: Title, subtitle and custom keyword phrases.
        locale: Store country the combos will be looked up in.
        platform: "ios" or "android".

    Returns:
        A de-duplicated ComboSet.  Generation order carries no meaning.
    """
    combos = ComboSet(locale=locale, platform=platform)

    field_tokens = {
        Source.TITLE: [t.text for t in tokenize(fields.title, Source.TITLE)],
        Source.SUBTITLE: [t.text for t in tokenize(fields.subtitle, Source.SUBTITLE)],
        Source.CUSTOM: [],
    }

    # Same-field windows: 2, 3 and all sizes >= 4 up to the field length.
    for source in (Source.TITLE, Source.SUBTITLE):
        words = field_tokens[source]
        for size in range(2, len(words) + 1):
            for window in _windows(words, size):
                combos.add(" ".join(window), {source})

    # Custom keywords are whole phrases, never re-windowed.  Their words
    # still count as custom tokens for cross-field pairs.
    for phrase in fields.custom:
        words = [t.text for t in tokenize(phrase, Source.CUSTOM)]
        if len(words) >= 2:
            combos.add(" ".join(words), {Source.CUSTOM})
        field_tokens[Source.CUSTOM].extend(words)

    # Cross-field pairs, two words only.
    for i, first in enumerate(FIELD_ORDER):
        for second in FIELD_ORDER[i + 1:]:
            for a in _unique(field_tokens[first]):
                for b in _unique(field_tokens[second]):
                    if a != b:
                        combos.add(f"{a} {b}", {first, second})

    return combos
