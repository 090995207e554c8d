import base64
import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from . import config
from .errors import ExternalServiceError
from .structured import (
    ENGLISH_DEFAULT_LEVEL,
    ENGLISH_LEVEL_INSTRUCTION,
    ENGLISH_SENTENCE_PROMPT,
    IMAGE_EXTRACTION_PROMPT,
    JAPANESE_DEFAULT_LEVEL,
    JAPANESE_LEVEL_INSTRUCTION,
    JAPANESE_SENTENCE_PROMPT,
    SENTENCE_SYSTEM_PROMPT,
    TOKEN_INSTRUCTIONS,
    GenerationMode,
    Sentence,
    TrackedKanji,
    WordToken,
)

logger = logging.getLogger(__name__)

SENTENCE_COUNT = 5
MAX_COMPLETION_TOKENS = 16384


class TextResponse:
    """Matches the ``llm`` response interface: call ``text()`` for the content."""

    def __init__(self, content: str) -> None:
        self.content = content

    def text(self) -> str:
        return self.content


class OpenAIModel:
    """Wrapper for OpenAI API to match the ``llm`` model interface."""

    def __init__(self, client: Any, model_name: str = config.DEFAULT_MODEL) -> None:
        self.client = client
        self.model_name = model_name

    def prompt(self, prompt_text: str, system: str = "", image: Optional[bytes] = None,
               mime_type: str = "image/jpeg") -> TextResponse:
        """Send prompt (and optionally one image) to OpenAI and return the response."""
        messages: List[Dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        if image is None:
            messages.append({"role": "user", "content": prompt_text})
        else:
            encoded = base64.b64encode(image).decode("utf-8")
            messages.append({
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt_text},
                    {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}},
                ],
            })

        logger.debug(
            "OpenAI call: model=%s system=%d chars prompt=%d chars image=%s",
            self.model_name, len(system), len(prompt_text), image is not None,
        )
        response = self.client.chat.completions.create(
            model=self.model_name,
            messages=messages,
            max_completion_tokens=MAX_COMPLETION_TOKENS,
        )
        content = response.choices[0].message.content or ""
        logger.debug("OpenAI response: %d chars, usage=%s", len(content), getattr(response, "usage", None))
        return TextResponse(content)


def create_openai_model(
    api_key: Optional[str] = None,
    base_url: Optional[str] = None,
    model_name: str = config.DEFAULT_MODEL,
) -> OpenAIModel:
    """Build an OpenAIModel from explicit arguments or the environment."""
    from openai import OpenAI

    api_key = api_key or config.OPENAI_API_KEY
    if not api_key:
        raise ExternalServiceError("OPENAI_API_KEY is not set.", service="openai")
    client_kwargs: Dict[str, Any] = {"api_key": api_key}
    base_url = base_url or config.OPENAI_BASE_URL
    if base_url:
        client_kwargs["base_url"] = base_url
    return OpenAIModel(OpenAI(**client_kwargs), model_name=model_name)


def parse_json_object(raw: str) -> Dict[str, Any]:
    """Parse a model reply as a JSON object, falling back to the first {...} block."""
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", raw, re.DOTALL)
        if not match:
            raise ValueError("no JSON object in model output")
        parsed = json.loads(match.group())
    if not isinstance(parsed, dict):
        raise ValueError("model output is not a JSON object")
    return parsed


def _parse_token(raw: Any) -> WordToken:
    if isinstance(raw, str):
        return WordToken(word=raw)
    if isinstance(raw, dict) and raw.get("word"):
        jlpt = raw.get("jlpt")
        return WordToken(
            word=str(raw["word"]),
            reading=str(raw.get("reading") or ""),
            definition=str(raw.get("definition") or ""),
            jlpt_level=int(jlpt) if isinstance(jlpt, int) and 1 <= jlpt <= 5 else None,
        )
    raise ValueError(f"malformed token: {raw!r}")


def _require_text(entry: Dict[str, Any], name: str) -> str:
    value = entry.get(name)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"sentence is missing '{name}'")
    return value.strip()


def parse_sentence(entry: Any, mode: GenerationMode) -> Sentence:
    if not isinstance(entry, dict):
        raise ValueError("sentence entry is not an object")
    tokens = entry.get("tokens")
    if not isinstance(tokens, list):
        raise ValueError("sentence is missing 'tokens'")
    return Sentence(
        mode=mode,
        japanese=_require_text(entry, "japanese"),
        english=_require_text(entry, "english"),
        hiragana=_require_text(entry, "hiragana") if mode is GenerationMode.JAPANESE else None,
        tokens=[_parse_token(t) for t in tokens],
    )


class SentenceGenerator:
    """Generates practice sentences anchored on a list of kanji."""

    def __init__(self, model: Any, sentence_count: int = SENTENCE_COUNT) -> None:
        self.model = model
        self.sentence_count = sentence_count

    def build_prompt(self, kanji: Sequence[TrackedKanji], target_level: Optional[int], mode: GenerationMode) -> str:
        kanji_chars = ", ".join(k.character for k in kanji)
        if mode is GenerationMode.JAPANESE:
            level_instruction = (
                JAPANESE_LEVEL_INSTRUCTION.format(level=target_level) if target_level else JAPANESE_DEFAULT_LEVEL
            )
            template = JAPANESE_SENTENCE_PROMPT
        else:
            level_instruction = (
                ENGLISH_LEVEL_INSTRUCTION.format(level=target_level) if target_level else ENGLISH_DEFAULT_LEVEL
            )
            template = ENGLISH_SENTENCE_PROMPT
        return template.format(
            count=self.sentence_count,
            level_instruction=level_instruction,
            kanji=kanji_chars,
            token_instructions=TOKEN_INSTRUCTIONS,
        )

    def generate(
        self,
        kanji: Sequence[TrackedKanji],
        target_level: Optional[int] = None,
        mode: GenerationMode = GenerationMode.JAPANESE,
    ) -> List[Sentence]:
        """Request sentences from the model.

        Raises:
            ExternalServiceError: the call failed, or the reply is not valid
                JSON, lacks a required field, or holds fewer sentences than
                requested. Nothing partial is ever returned.
        """
        mode = GenerationMode(mode)
        if self.model is None:
            raise ExternalServiceError("AI model is not configured. Please ensure OpenAI credentials are set.")

        prompt = self.build_prompt(kanji, target_level, mode)
        logger.debug("Generating %s sentences for %s (target N%s)", mode.value, [k.character for k in kanji], target_level)

        try:
            raw = self.model.prompt(prompt, system=SENTENCE_SYSTEM_PROMPT).text()
        except Exception as e:
            raise ExternalServiceError(f"Failed to generate {mode.value} sentences: {e}") from e

        try:
            parsed = parse_json_object(raw)
            entries = parsed.get("sentences")
            if not isinstance(entries, list):
                raise ValueError("reply has no 'sentences' list")
            if len(entries) < self.sentence_count:
                raise ValueError(f"expected {self.sentence_count} sentences, got {len(entries)}")
            sentences = [parse_sentence(entry, mode) for entry in entries[: self.sentence_count]]
        except (ValueError, TypeError) as e:
            logger.debug("Unparseable generation reply: %s", raw[:500])
            raise ExternalServiceError(f"Malformed response while generating {mode.value} sentences: {e}") from e

        logger.info("Generated %d %s sentences", len(sentences), mode.value)
        return sentences


class KanjiImageExtractor:
    """Pulls the kanji out of a photo or screenshot with a vision model."""

    def __init__(self, model: Any) -> None:
        self.model = model

    def extract(self, image_bytes: bytes, mime_type: str = "image/jpeg") -> List[str]:
        if self.model is None:
            raise ExternalServiceError("Vision model is not configured.", service="vision")
        try:
            text = self.model.prompt(IMAGE_EXTRACTION_PROMPT, image=image_bytes, mime_type=mime_type).text()
        except Exception as e:
            raise ExternalServiceError(f"Failed to analyze image: {e}", service="vision") from e
        characters = [c for c in text.strip() if not c.isspace()]
        logger.debug("Extracted %d characters from image", len(characters))
        return characters
