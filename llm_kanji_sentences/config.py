"""Environment-driven settings and logging setup."""
import logging
import os
from typing import Optional

DEBUG_MODE = os.getenv("DEBUG", "0") == "1"
TEST_MODE = os.getenv("TEST_MODE", "0") == "1"

OPENAI_API_KEY: Optional[str] = os.environ.get("OPENAI_API_KEY")
OPENAI_BASE_URL: Optional[str] = os.environ.get("OPENAI_BASE_URL")
DEFAULT_MODEL: str = os.environ.get("KANJI_SRS_MODEL", "gpt-5-mini")
DEFAULT_VISION_MODEL: str = os.environ.get("KANJI_SRS_VISION_MODEL", DEFAULT_MODEL)
WANIKANI_API_KEY: Optional[str] = os.environ.get("WANIKANI_API_KEY")
HTTP_TIMEOUT: float = float(os.environ.get("KANJI_SRS_HTTP_TIMEOUT", "10"))

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(debug: Optional[bool] = None) -> None:
    """Install a basic root handler.

    DEBUG level when ``debug`` is true (or, if not given, when ``DEBUG=1`` is
    set in the environment), INFO otherwise.
    """
    if debug is None:
        debug = DEBUG_MODE
    logging.basicConfig(level=logging.DEBUG if debug else logging.INFO, format=LOG_FORMAT)
    # urllib3 and openai are noisy at DEBUG
    for name in ("urllib3", "httpx", "openai"):
        logging.getLogger(name).setLevel(logging.WARNING)
