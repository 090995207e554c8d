"""Error taxonomy shared by the library, session controller and surfaces."""
from typing import Optional


class KanjiSrsError(Exception):
    """Base class for every error raised on purpose by this package."""


class NotFoundError(KanjiSrsError):
    """An operation referenced a character or word that is not in the library."""

    def __init__(self, key: str, kind: str = "kanji") -> None:
        self.key = key
        self.kind = kind
        super().__init__(f"{kind[:1].upper()}{kind[1:]} '{key}' not found.")


class NoCandidatesError(KanjiSrsError):
    """The prompt selector found nothing to practise under the current filter."""

    def __init__(self, jlpt_filter: Optional[int] = None) -> None:
        self.jlpt_filter = jlpt_filter
        if jlpt_filter:
            message = f"No Kanji available for sentence generation at JLPT N{jlpt_filter}."
        else:
            message = "No Kanji available for sentence generation with the current filters."
        super().__init__(message)


class ExternalServiceError(KanjiSrsError):
    """A generation, lookup or extraction collaborator failed."""

    def __init__(self, message: str, service: str = "generation") -> None:
        self.service = service
        super().__init__(message)


class PersistenceError(KanjiSrsError):
    """Loading or saving a library snapshot failed."""


class StaleSnapshotError(PersistenceError):
    """The stored snapshot changed since this process last read it."""

    def __init__(self, key: str, expected: int, actual: int) -> None:
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Snapshot '{key}' is at version {actual}, expected {expected}. Reload before saving."
        )


class SessionBusyError(KanjiSrsError):
    """A sentence generation request is already in flight."""

    def __init__(self) -> None:
        super().__init__("A sentence generation request is already in progress.")


class AlreadyGradedError(KanjiSrsError):
    """A sentence in the current session has already been scored."""

    def __init__(self, japanese: str) -> None:
        self.japanese = japanese
        super().__init__(f"Sentence '{japanese}' has already been graded in this session.")
