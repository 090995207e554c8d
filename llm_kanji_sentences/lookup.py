"""
Dictionary collaborators used to enrich the library.

- KanjiApiClient : kanjiapi.dev, JLPT level and readings for a single kanji
- JishoClient    : jisho.org word search, reading and gloss for a token
- WaniKaniClient : radicals and vocabulary for a kanji (needs an API key)

All three keep a per-instance cache so a session never asks twice.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

import requests

from . import config
from .errors import ExternalServiceError, NotFoundError
from .structured import WordToken

logger = logging.getLogger(__name__)

KANJI_API_URL = "https://kanjiapi.dev/v1/kanji/"
JISHO_API_URL = "https://jisho.org/api/v1/search/words"
WANIKANI_API_URL = "https://api.wanikani.com/v2"
WANIKANI_REVISION = "20170710"
WANIKANI_CACHE_SECONDS = 7 * 24 * 60 * 60

PARTICLES = {"は", "が", "を", "に", "へ", "と", "も", "の", "で", "か", "よ", "ね", "わ", "。", "、", "な"}


@dataclass
class KanjiDetails:
    character: str
    reading: str = ""
    gloss: str = ""
    jlpt_level: Optional[int] = None


def parse_jlpt_tag(tags: List[str]) -> Optional[int]:
    """Jisho tags look like 'jlpt-n3'."""
    for tag in tags:
        if tag.startswith("jlpt-n"):
            try:
                return int(tag[len("jlpt-n"):])
            except ValueError:
                return None
    return None


def default_token(word: str) -> WordToken:
    return WordToken(word=word, reading="?", definition="Definition not found.")


class KanjiApiClient:
    """Kanji details from kanjiapi.dev."""

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = config.HTTP_TIMEOUT) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout
        self._cache: Dict[str, Optional[KanjiDetails]] = {}

    def lookup(self, character: str) -> Optional[KanjiDetails]:
        """Return details for a kanji, or None if kanjiapi.dev does not know it.

        Raises ExternalServiceError on transport failures and unexpected
        status codes; those are not cached.
        """
        if character in self._cache:
            return self._cache[character]

        try:
            response = self.session.get(f"{KANJI_API_URL}{quote(character)}", timeout=self.timeout)
        except requests.RequestException as e:
            raise ExternalServiceError(f"KanjiAPI request failed for '{character}': {e}", service="kanjiapi") from e

        if response.status_code == 404:
            logger.warning("KanjiAPI: character '%s' not found", character)
            self._cache[character] = None
            return None
        if not response.ok:
            raise ExternalServiceError(
                f"KanjiAPI request failed for '{character}': {response.status_code} {response.reason}",
                service="kanjiapi",
            )

        try:
            data: Dict[str, Any] = response.json()
        except ValueError as e:
            raise ExternalServiceError(f"KanjiAPI returned invalid JSON for '{character}'", service="kanjiapi") from e

        readings = list(data.get("on_readings") or []) + list(data.get("kun_readings") or [])
        details = KanjiDetails(
            character=character,
            reading="、".join(readings),
            gloss="; ".join(data.get("meanings") or []),
            jlpt_level=data.get("jlpt") or None,
        )
        self._cache[character] = details
        return details


class JishoClient:
    """Word readings and glosses from jisho.org.

    Never raises: a miss or a failure yields a placeholder token, which is
    cached like a hit.
    """

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = config.HTTP_TIMEOUT) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout
        self._cache: Dict[str, WordToken] = {}

    def lookup_word(self, word: str) -> WordToken:
        if word in self._cache:
            return self._cache[word]

        if word in PARTICLES:
            token = WordToken(word=word, reading=word, definition="Particle")
            self._cache[word] = token
            return token

        token = self._fetch(word)
        self._cache[word] = token
        return token

    def _fetch(self, word: str) -> WordToken:
        try:
            response = self.session.get(JISHO_API_URL, params={"keyword": word}, timeout=self.timeout)
            if not response.ok:
                logger.warning("Jisho request failed for '%s': %s", word, response.status_code)
                return default_token(word)
            data = response.json().get("data") or []
        except (requests.RequestException, ValueError) as e:
            logger.warning("Jisho lookup failed for '%s': %s", word, e)
            return default_token(word)

        if not data:
            return default_token(word)

        # Trust the first result; jisho resolves conjugated forms to the dictionary form
        result = data[0]
        japanese = result.get("japanese") or [{}]
        senses = result.get("senses") or [{}]
        reading = japanese[0].get("reading")
        definition = "; ".join(senses[0].get("english_definitions") or [])
        if not reading or not definition:
            return default_token(word)

        # Keep the surface form (e.g. 食べました) but the dictionary-form reading and gloss
        return WordToken(
            word=word,
            reading=reading,
            definition=definition,
            jlpt_level=parse_jlpt_tag(result.get("jlpt") or []),
        )


@dataclass
class EnrichedKanji:
    kanji: Dict[str, Any]
    radicals: List[Dict[str, Any]] = field(default_factory=list)
    vocabulary: List[Dict[str, Any]] = field(default_factory=list)

    def summary(self) -> Dict[str, Any]:
        data = self.kanji.get("data", {})
        meanings = data.get("meanings") or []
        readings = data.get("readings") or []
        return {
            "character": data.get("characters"),
            "level": data.get("level"),
            "meanings": [m["meaning"] for m in meanings if m.get("primary")],
            "other_meanings": [m["meaning"] for m in meanings if not m.get("primary")],
            "onyomi": [r["reading"] for r in readings if r.get("type") == "onyomi"],
            "kunyomi": [r["reading"] for r in readings if r.get("type") == "kunyomi"],
            "radicals": [r.get("data", {}).get("slug") for r in self.radicals],
            "vocabulary": [v.get("data", {}).get("characters") for v in self.vocabulary],
        }


class WaniKaniClient:
    """Read-only WaniKani v2 client with a one-week subject cache."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = config.HTTP_TIMEOUT,
        cache_seconds: int = WANIKANI_CACHE_SECONDS,
    ) -> None:
        self.api_key = api_key if api_key is not None else config.WANIKANI_API_KEY
        self.session = session or requests.Session()
        self.timeout = timeout
        self.cache_seconds = cache_seconds
        self._cache: Dict[str, Tuple[float, Dict[str, Any]]] = {}

    # -- cache ---------------------------------------------------------------
    def _cache_get(self, key: str) -> Optional[Dict[str, Any]]:
        entry = self._cache.get(key)
        if entry is None:
            return None
        stored_at, data = entry
        if time.time() - stored_at > self.cache_seconds:
            del self._cache[key]
            return None
        return data

    def _cache_set(self, key: str, data: Dict[str, Any]) -> None:
        self._cache[key] = (time.time(), data)

    # -- http ----------------------------------------------------------------
    def _get(self, endpoint: str, api_key: Optional[str] = None) -> Dict[str, Any]:
        key = api_key or self.api_key
        if not key:
            raise ExternalServiceError("WaniKani API key not set.", service="wanikani")
        try:
            response = self.session.get(
                f"{WANIKANI_API_URL}/{endpoint}",
                headers={"Authorization": f"Bearer {key}", "Wanikani-Revision": WANIKANI_REVISION},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ExternalServiceError(f"WaniKani request failed: {e}", service="wanikani") from e
        if not response.ok:
            try:
                detail = response.json().get("error", "")
            except ValueError:
                detail = ""
            raise ExternalServiceError(
                f"WaniKani API error: {response.status_code} {response.reason}. {detail}".strip(),
                service="wanikani",
            )
        return response.json()

    def validate_api_key(self, api_key: Optional[str] = None) -> bool:
        try:
            self._get("user", api_key=api_key)
            return True
        except ExternalServiceError:
            return False

    def get_kanji_subject(self, character: str) -> Optional[Dict[str, Any]]:
        cache_key = f"kanji_{character}"
        cached = self._cache_get(cache_key)
        if cached is not None:
            return cached
        response = self._get(f"subjects?types=kanji&slugs={quote(character)}")
        data = response.get("data") or []
        if not data:
            return None
        subject = data[0]
        self._cache_set(cache_key, subject)
        self._cache_set(str(subject["id"]), subject)
        return subject

    def get_subjects_by_ids(self, ids: List[int]) -> List[Dict[str, Any]]:
        if not ids:
            return []
        subjects: List[Dict[str, Any]] = []
        to_fetch: List[int] = []
        for subject_id in ids:
            cached = self._cache_get(str(subject_id))
            if cached is not None:
                subjects.append(cached)
            else:
                to_fetch.append(subject_id)
        if to_fetch:
            response = self._get(f"subjects?ids={','.join(str(i) for i in to_fetch)}")
            for subject in response.get("data") or []:
                self._cache_set(str(subject["id"]), subject)
                subjects.append(subject)
        return subjects

    def get_enriched_kanji(self, character: str) -> EnrichedKanji:
        subject = self.get_kanji_subject(character)
        if subject is None:
            raise NotFoundError(character, kind="WaniKani kanji")
        data = subject.get("data", {})
        components = self.get_subjects_by_ids(data.get("component_subject_ids") or [])
        amalgamations = self.get_subjects_by_ids(data.get("amalgamation_subject_ids") or [])
        return EnrichedKanji(
            kanji=subject,
            radicals=[s for s in components if s.get("object") == "radical"],
            vocabulary=[s for s in amalgamations if s.get("object") == "vocabulary"],
        )
