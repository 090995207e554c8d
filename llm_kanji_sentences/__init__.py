"""
LLM Kanji Sentences

Track the Kanji you are learning, practise them in AI-generated sentences,
and schedule reviews with a simple spaced-repetition ladder.
"""

from . import config
from . import errors
from . import structured
from . import scheduler
from . import selector
from . import db
from . import library
from . import lookup
from . import generation
from . import session

__version__ = "0.1.0"
__all__ = [
    "config",
    "errors",
    "structured",
    "scheduler",
    "selector",
    "db",
    "library",
    "lookup",
    "generation",
    "session",
]
