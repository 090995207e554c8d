"""
Library store: the user's tracked kanji and saved vocabulary.

Each library owns one collection in the snapshot store and writes the whole
collection on every mutation. The in-memory list is updated before the
write, so a failed save leaves the process with the new state and the
database with the previous snapshot.

A mutation is a function from the current list to the new one. When the
write is rejected because another process saved first, the library reloads
the stored snapshot and applies the same mutation to it once more.
"""
import logging
import re
from typing import Any, Callable, Generic, Iterable, List, Optional, Protocol, Set, Tuple, TypeVar

from . import scheduler
from .db import KANJI_KEY, KATAKANA_KEY, VOCABULARY_KEY
from .errors import ExternalServiceError, NotFoundError, PersistenceError, StaleSnapshotError
from .structured import ReviewOutcome, TrackedKanji, VocabularyItem, WordToken

logger = logging.getLogger(__name__)

KANJI_REGEX = re.compile(r"[一-龯㐀-䶿]")

T = TypeVar("T", TrackedKanji, VocabularyItem)


class Store(Protocol):
    def load(self, key: str) -> Tuple[List[dict], int]: ...

    def save(self, key: str, items: List[dict], expected_version: Optional[int] = None) -> int: ...


def extract_kanji(text: str) -> List[str]:
    """Unique kanji in order of first appearance."""
    seen: Set[str] = set()
    result: List[str] = []
    for char in KANJI_REGEX.findall(text):
        if char not in seen:
            seen.add(char)
            result.append(char)
    return result


def _now(now: Optional[int]) -> int:
    return scheduler.now_ms() if now is None else now


class _SnapshotCollection(Generic[T]):
    """One snapshot-backed collection, newest first."""

    def __init__(self, store: Store, key: str) -> None:
        self.store = store
        self.key = key
        self._items: List[T] = []
        self._version: Optional[int] = None

    def _decode(self, data: dict) -> T:
        raise NotImplementedError

    def load(self):
        items, version = self.store.load(self.key)
        decoded: List[T] = []
        for item in items:
            try:
                decoded.append(self._decode(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed %s entry %r: %s", self.key, item, e)
        self._items = decoded
        self._version = version
        logger.debug("Loaded %d %s entries (version %s)", len(decoded), self.key, version)
        return self

    def _apply(self, change: Callable[[List[T]], List[T]]) -> None:
        # sorted() is stable, so equal timestamps keep their relative order
        self._items = sorted(change(list(self._items)), key=lambda item: item.added_at, reverse=True)

    def _write(self) -> None:
        self._version = self.store.save(self.key, [item.to_dict() for item in self._items], self._version)

    def _commit(self, change: Callable[[List[T]], List[T]]) -> None:
        self._apply(change)
        try:
            try:
                self._write()
            except StaleSnapshotError as e:
                # One retry; a second conflict propagates
                logger.warning("%s Reloading and applying the change again.", e)
                self.load()
                self._apply(change)
                self._write()
        except PersistenceError as e:
            logger.error("Failed to save %s: %s", self.key, e)
            raise

    def __len__(self) -> int:
        return len(self._items)


class KanjiLibrary(_SnapshotCollection[TrackedKanji]):
    """Tracked kanji, newest first."""

    def __init__(self, store: Store, lookup: Any = None, key: str = KANJI_KEY) -> None:
        super().__init__(store, key)
        self.lookup = lookup

    def _decode(self, data: dict) -> TrackedKanji:
        return TrackedKanji.from_dict(data)

    @property
    def kanji(self) -> List[TrackedKanji]:
        return list(self._items)

    def characters(self) -> Set[str]:
        return {k.character for k in self._items}

    def get(self, character: str) -> TrackedKanji:
        for kanji in self._items:
            if kanji.character == character:
                return kanji
        raise NotFoundError(character)

    def __contains__(self, character: object) -> bool:
        return any(k.character == character for k in self._items)

    def _jlpt_level(self, character: str) -> Optional[int]:
        if self.lookup is None:
            return None
        try:
            details = self.lookup.lookup(character)
        except ExternalServiceError as e:
            logger.warning("Lookup failed for '%s', adding without JLPT level: %s", character, e)
            return None
        return details.jlpt_level if details is not None else None

    def add_kanji(self, text: str, now: Optional[int] = None) -> List[TrackedKanji]:
        """Add every kanji in ``text`` that is not tracked yet.

        Returns the newly added entries; an empty list means nothing changed
        and nothing was written.
        """
        existing = self.characters()
        new_chars = [c for c in extract_kanji(text) if c not in existing]
        if not new_chars:
            logger.debug("No new kanji in %r", text)
            return []

        timestamp = _now(now)
        new_kanji = [TrackedKanji.new(c, timestamp, self._jlpt_level(c)) for c in new_chars]
        logger.info("Adding %d kanji: %s", len(new_kanji), "".join(new_chars))

        def add(current: List[TrackedKanji]) -> List[TrackedKanji]:
            tracked = {k.character for k in current}
            return current + [k for k in new_kanji if k.character not in tracked]

        self._commit(add)
        return new_kanji

    def add_kanji_from_image(self, image_bytes: bytes, extractor: Any, now: Optional[int] = None,
                             mime_type: str = "image/jpeg") -> List[TrackedKanji]:
        characters = extractor.extract(image_bytes, mime_type=mime_type)
        return self.add_kanji("".join(characters), now=now)

    def delete_kanji(self, character: str) -> None:
        if character not in self:
            raise NotFoundError(character)
        logger.info("Deleting kanji '%s'", character)
        self._commit(lambda current: [k for k in current if k.character != character])

    def update_usage(self, characters: Iterable[str], now: Optional[int] = None) -> List[str]:
        """Usage increment for each character. Returns the unknown characters."""
        characters = list(characters)
        if not characters:
            return []
        timestamp = _now(now)
        _, missing = scheduler.use_many(self._items, characters, timestamp)
        for character in missing:
            logger.warning("update_usage: %s", NotFoundError(character))
        if len(missing) < len(set(characters)):
            self._commit(lambda current: scheduler.use_many(current, characters, timestamp)[0])
        return missing

    def update_review(self, characters: Iterable[str], outcome: ReviewOutcome,
                      now: Optional[int] = None) -> List[str]:
        """Apply one review outcome to each character. Returns the unknown characters."""
        characters = list(characters)
        if not characters:
            return []
        outcome = ReviewOutcome(outcome)
        timestamp = _now(now)
        _, missing = scheduler.review_many(self._items, characters, outcome, timestamp)
        for character in missing:
            logger.warning("update_review: %s", NotFoundError(character))
        if len(missing) < len(set(characters)):
            logger.info("Review %s for %s", outcome.value, ", ".join(c for c in characters if c not in missing))
            self._commit(lambda current: scheduler.review_many(current, characters, outcome, timestamp)[0])
        return missing


class VocabularyLibrary(_SnapshotCollection[VocabularyItem]):
    """Saved words, newest first. Independent of the kanji library."""

    def __init__(self, store: Store, key: str = VOCABULARY_KEY) -> None:
        super().__init__(store, key)

    def _decode(self, data: dict) -> VocabularyItem:
        return VocabularyItem.from_dict(data)

    @property
    def items(self) -> List[VocabularyItem]:
        return list(self._items)

    def contains(self, word: str) -> bool:
        return any(v.word == word for v in self._items)

    def add_item(self, token: WordToken, now: Optional[int] = None) -> Optional[VocabularyItem]:
        if self.contains(token.word):
            logger.debug("Vocabulary item '%s' already exists.", token.word)
            return None
        item = VocabularyItem.from_token(token, _now(now))

        def add(current: List[VocabularyItem]) -> List[VocabularyItem]:
            if any(v.word == item.word for v in current):
                return current
            return current + [item]

        self._commit(add)
        return item

    def delete_item(self, word: str) -> None:
        if not self.contains(word):
            raise NotFoundError(word, kind="word")
        self._commit(lambda current: [v for v in current if v.word != word])


def katakana_library(store: Store) -> VocabularyLibrary:
    return VocabularyLibrary(store, key=KATAKANA_KEY)


def promote_token(
    token: WordToken,
    vocabulary: VocabularyLibrary,
    kanji_library: KanjiLibrary,
    now: Optional[int] = None,
) -> Tuple[Optional[VocabularyItem], List[TrackedKanji]]:
    """Save a sentence token as vocabulary and start tracking its kanji.

    The kanji are added even when the word itself was already saved.
    """
    timestamp = _now(now)
    item = vocabulary.add_item(token, now=timestamp)
    added = kanji_library.add_kanji(token.word, now=timestamp)
    if added:
        logger.info("Promoting '%s' added kanji: %s", token.word, "".join(k.character for k in added))
    return item, added
