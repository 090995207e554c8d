import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


class GenerationMode(str, enum.Enum):
    """Which side of the sentence pair is shown first."""
    JAPANESE = "japanese"
    ENGLISH = "english"


class ReviewOutcome(str, enum.Enum):
    CORRECT = "correct"
    INCORRECT = "incorrect"


class KanjiStatus(str, enum.Enum):
    NEW = "new"
    DUE = "due"
    LEECH = "leech"
    LEARNING = "learning"
    MASTERED = "mastered"


def _rank(value: Any) -> Optional[int]:
    # Older snapshots store 0 for "no JLPT level"
    if value is None:
        return None
    rank = int(value)
    return rank if rank > 0 else None


@dataclass
class TrackedKanji:
    character: str
    added_at: int
    used_count: int = 0
    last_used_at: int = 0
    jlpt_level: Optional[int] = None
    srs_level: int = 0
    next_review_at: int = 0
    last_reviewed_at: int = 0
    correct_streak: int = 0

    @classmethod
    def new(cls, character: str, now: int, jlpt_level: Optional[int] = None) -> "TrackedKanji":
        """A freshly added kanji, immediately eligible for review."""
        return cls(character=character, added_at=now, jlpt_level=_rank(jlpt_level), next_review_at=now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "character": self.character,
            "addedAt": self.added_at,
            "usedCount": self.used_count,
            "lastUsedAt": self.last_used_at,
            "jlptLevel": self.jlpt_level,
            "srsLevel": self.srs_level,
            "nextReviewAt": self.next_review_at,
            "lastReviewedAt": self.last_reviewed_at,
            "correctStreak": self.correct_streak,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TrackedKanji":
        return cls(
            character=data["character"],
            added_at=int(data.get("addedAt") or 0),
            used_count=int(data.get("usedCount") or 0),
            last_used_at=int(data.get("lastUsedAt") or 0),
            jlpt_level=_rank(data.get("jlptLevel")),
            srs_level=int(data.get("srsLevel") or 0),
            next_review_at=int(data.get("nextReviewAt") or 0),
            last_reviewed_at=int(data.get("lastReviewedAt") or 0),
            correct_streak=int(data.get("correctStreak") or 0),
        )


@dataclass
class WordToken:
    """One segment of a generated sentence. Never persisted on its own."""
    word: str
    reading: str = ""
    definition: str = ""
    jlpt_level: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "word": self.word,
            "reading": self.reading,
            "definition": self.definition,
            "jlptLevel": self.jlpt_level,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WordToken":
        return cls(
            word=data["word"],
            reading=data.get("reading") or "",
            definition=data.get("definition") or "",
            jlpt_level=_rank(data.get("jlptLevel")),
        )


@dataclass
class VocabularyItem:
    word: str
    reading: str
    definition: str
    added_at: int
    jlpt_level: Optional[int] = None

    @classmethod
    def from_token(cls, token: WordToken, now: int) -> "VocabularyItem":
        return cls(
            word=token.word,
            reading=token.reading,
            definition=token.definition,
            added_at=now,
            jlpt_level=token.jlpt_level,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "word": self.word,
            "reading": self.reading,
            "definition": self.definition,
            "jlptLevel": self.jlpt_level,
            "addedAt": self.added_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VocabularyItem":
        return cls(
            word=data["word"],
            reading=data.get("reading") or "",
            definition=data.get("definition") or "",
            added_at=int(data.get("addedAt") or 0),
            jlpt_level=_rank(data.get("jlptLevel")),
        )


@dataclass
class Sentence:
    """A generated sentence pair, tagged with the mode it was generated in.

    Both modes share the Japanese text, the English text and the token
    breakdown of the Japanese text. ``hiragana`` is only filled in for
    ``GenerationMode.JAPANESE``.
    """
    mode: GenerationMode
    japanese: str
    english: str
    tokens: List[WordToken] = field(default_factory=list)
    hiragana: Optional[str] = None

    @property
    def primary_text(self) -> str:
        return self.japanese if self.mode is GenerationMode.JAPANESE else self.english

    @property
    def secondary_text(self) -> str:
        return self.english if self.mode is GenerationMode.JAPANESE else self.japanese

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode.value,
            "japanese": self.japanese,
            "hiragana": self.hiragana,
            "english": self.english,
            "tokens": [t.to_dict() for t in self.tokens],
        }


@dataclass
class SentenceWithContext:
    sentence: Sentence
    used_kanji: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"sentence": self.sentence.to_dict(), "usedKanjiInSentence": list(self.used_kanji)}


# ----------------------------------------------------------------------
# Prompts
# ----------------------------------------------------------------------
SENTENCE_SYSTEM_PROMPT = """You are a Japanese language teacher writing practice sentences for a
learner who studies Kanji with spaced repetition. Reply with strictly valid JSON and nothing else."""

TOKEN_INSTRUCTIONS = """For each sentence, also provide a tokenized breakdown of the Japanese sentence into its
component words and particles. It is crucial that compound words (like お客様), conjugated verbs
(like 食べました), and i-adjectives (like 新しい) are treated as single tokens.
Each token is an object: {"word": "...", "reading": "<hiragana>", "definition": "<short English gloss>", "jlpt": <1-5 or null>}.
Particles and punctuation are tokens too (definition "Particle" / "Punctuation")."""

JAPANESE_LEVEL_INSTRUCTION = """The vocabulary and grammar used, excluding the provided Kanji list, should be appropriate
for a JLPT N{level} learner. The overall sentence structure should feel natural for this level."""

JAPANESE_DEFAULT_LEVEL = "The sentences should be at an intermediate level (around JLPT N4 to N3)."

ENGLISH_LEVEL_INSTRUCTION = """The English sentences should be suitable for a JLPT N{level} learner's comprehension level.
The corresponding Japanese translations MUST also use vocabulary and grammar appropriate for this level
(excluding the provided Kanji)."""

ENGLISH_DEFAULT_LEVEL = """The English sentences should be at an intermediate level. The corresponding Japanese
translations should be around JLPT N4 to N3 level."""

JAPANESE_SENTENCE_PROMPT = """Create {count} distinct, natural-sounding Japanese sentences. {level_instruction}
You MUST incorporate some of the following Kanji: {kanji}.
Prioritize the first few Kanji in the list as they are the most important for the user to practice.

{token_instructions}

OUTPUT FORMAT (JSON only, no explanations):
{{
  "sentences": [
    {{"japanese": "<sentence using Kanji>", "hiragana": "<full hiragana reading>", "english": "<English translation>", "tokens": [...]}}
  ]
}}
"""

ENGLISH_SENTENCE_PROMPT = """Create {count} distinct English sentences. {level_instruction}
Each English sentence should subtly incorporate the meaning of one or more of the following Japanese Kanji: {kanji}.
Prioritize the first few Kanji in the list.
For each English sentence, provide a natural Japanese translation that uses the source Kanji.

{token_instructions}
The tokens break down the Japanese translation.

OUTPUT FORMAT (JSON only, no explanations):
{{
  "sentences": [
    {{"english": "<English sentence>", "japanese": "<Japanese translation>", "tokens": [...]}}
  ]
}}
"""

IMAGE_EXTRACTION_PROMPT = """Identify all unique Japanese Kanji characters in this image.
Return only a single string of the Kanji characters with no separators."""
