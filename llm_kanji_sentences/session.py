import logging
import threading
import uuid
from typing import Any, List, Optional, Sequence

from . import scheduler
from .errors import AlreadyGradedError, ExternalServiceError, NoCandidatesError, PersistenceError, SessionBusyError
from .library import KanjiLibrary
from .selector import PROMPT_KANJI_LIMIT, PromptSelection, select_prompt_kanji
from .structured import GenerationMode, ReviewOutcome, Sentence, SentenceWithContext, TrackedKanji

logger = logging.getLogger(__name__)


def attach_context(sentences: Sequence[Sentence], kanji_list: Sequence[TrackedKanji]) -> List[SentenceWithContext]:
    """Pair each sentence with every tracked kanji its Japanese text contains.

    Matching is against the whole library, not just the prompted kanji.
    """
    return [
        SentenceWithContext(
            sentence=sentence,
            used_kanji=[k.character for k in kanji_list if k.character in sentence.japanese],
        )
        for sentence in sentences
    ]


def used_characters(contexts: Sequence[SentenceWithContext]) -> List[str]:
    """Union of the per-sentence contexts, each character once."""
    seen: List[str] = []
    for context in contexts:
        for character in context.used_kanji:
            if character not in seen:
                seen.append(character)
    return seen


class SentenceSession:
    """One review session: generate a batch of sentences, then score them.

    Only one generation request may be in flight; a second one is rejected
    with SessionBusyError. ``abandon()`` invalidates the current request, and
    a reply that arrives for an abandoned request is dropped before it can
    touch usage counters.

    Each sentence can be graded once per session. If the usage update cannot
    be saved, the batch is still returned and the failure is kept in
    ``save_error`` until the next request.
    """

    def __init__(self, library: KanjiLibrary, generator: Any, limit: int = PROMPT_KANJI_LIMIT) -> None:
        self.library = library
        self.generator = generator
        self.limit = limit
        self._lock = threading.Lock()
        self._session_id: Optional[str] = None
        self._sentences: List[SentenceWithContext] = []
        self._mode = GenerationMode.JAPANESE
        self._jlpt_filter: Optional[int] = None
        self._in_progress = False
        self._graded: List[SentenceWithContext] = []
        self._save_error: Optional[PersistenceError] = None
        self.last_selection: Optional[PromptSelection] = None

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def sentences(self) -> List[SentenceWithContext]:
        return list(self._sentences)

    @property
    def mode(self) -> GenerationMode:
        return self._mode

    @property
    def jlpt_filter(self) -> Optional[int]:
        return self._jlpt_filter

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def save_error(self) -> Optional[PersistenceError]:
        """Why the last batch's usage update was not saved, if it failed."""
        return self._save_error

    def is_graded(self, context: SentenceWithContext) -> bool:
        return any(graded is context for graded in self._graded)

    def start_or_refresh(
        self,
        jlpt_filter: Optional[int] = None,
        mode: GenerationMode = GenerationMode.JAPANESE,
        now: Optional[int] = None,
    ) -> List[SentenceWithContext]:
        """Generate a fresh set of sentences and bump usage for the kanji they contain.

        Raises:
            SessionBusyError: another request has not finished yet.
            NoCandidatesError: nothing in the library matches the filter.
            ExternalServiceError: generation failed; the library is untouched.
        """
        if not self._lock.acquire(blocking=False):
            raise SessionBusyError()
        try:
            mode = GenerationMode(mode)
            timestamp = scheduler.now_ms() if now is None else now
            request_id = uuid.uuid4().hex
            self._session_id = request_id

            selection = select_prompt_kanji(self.library.kanji, timestamp, jlpt_filter, limit=self.limit)
            if not selection:
                raise NoCandidatesError(jlpt_filter)
            self.last_selection = selection
            logger.info(
                "Starting %s session with %s (target N%s)",
                mode.value, "".join(selection.characters), selection.target_level,
            )

            try:
                sentences = self.generator.generate(selection.kanji, selection.target_level, mode)
            except ExternalServiceError:
                raise
            except Exception as e:
                raise ExternalServiceError(str(e)) from e

            if self._session_id != request_id:
                logger.info("Discarding reply for abandoned session %s", request_id)
                return []

            contexts = attach_context(sentences, self.library.kanji)
            self._save_error = None
            try:
                self.library.update_usage(used_characters(contexts), now=timestamp)
            except PersistenceError as e:
                # Counters are already bumped in memory; keep the batch
                logger.error("Usage update for session %s was not saved: %s", request_id, e)
                self._save_error = e

            self._sentences = contexts
            self._graded = []
            self._mode = mode
            self._jlpt_filter = jlpt_filter
            self._in_progress = True
            return list(contexts)
        finally:
            self._lock.release()

    def abandon(self) -> None:
        """Leave the session; any reply still in flight will be discarded."""
        self._session_id = None
        self._sentences = []
        self._graded = []
        self._in_progress = False

    def record_feedback(
        self,
        context: SentenceWithContext,
        outcome: ReviewOutcome,
        now: Optional[int] = None,
    ) -> List[str]:
        """Apply the user's judgement of one sentence to all kanji in it.

        Returns the characters that were scored. A sentence with no tracked
        kanji is a no-op.

        Raises:
            AlreadyGradedError: this sentence was scored earlier in the session.
        """
        outcome = ReviewOutcome(outcome)
        if self.is_graded(context):
            raise AlreadyGradedError(context.sentence.japanese)
        self._graded.append(context)
        if not context.used_kanji:
            return []
        missing = self.library.update_review(context.used_kanji, outcome, now=now)
        return [c for c in context.used_kanji if c not in missing]
