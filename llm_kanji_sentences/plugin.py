import logging
from typing import Any, Optional

import click
import llm  # type: ignore

from . import config, db, scheduler
from .errors import KanjiSrsError
from .generation import KanjiImageExtractor, SentenceGenerator
from .library import KanjiLibrary, VocabularyLibrary, katakana_library, promote_token
from .lookup import JishoClient, KanjiApiClient, WaniKaniClient
from .session import SentenceSession
from .structured import GenerationMode, KanjiStatus, ReviewOutcome, SentenceWithContext

logger = logging.getLogger(__name__)

COLLECTIONS = {
    "kanji": db.KANJI_KEY,
    "vocabulary": db.VOCABULARY_KEY,
    "katakana": db.KATAKANA_KEY,
}


class LlmModelAdapter:
    """Lets an ``llm`` model stand in where an OpenAIModel is expected."""

    def __init__(self, model: Any) -> None:
        self.model = model

    def prompt(self, prompt_text: str, system: str = "", image: Optional[bytes] = None,
               mime_type: str = "image/jpeg") -> Any:
        kwargs: dict = {}
        if system:
            kwargs["system"] = system
        if image is not None:
            kwargs["attachments"] = [llm.Attachment(type=mime_type, content=image)]
        return self.model.prompt(prompt_text, **kwargs)


def _store() -> db.SnapshotStore:
    if not db.is_db_initialized():
        db.init_db()
    return db.SnapshotStore()


def _kanji_library(with_lookup: bool = True) -> KanjiLibrary:
    return KanjiLibrary(_store(), lookup=KanjiApiClient() if with_lookup else None).load()


def _vocabulary(katakana: bool = False) -> VocabularyLibrary:
    store = _store()
    return (katakana_library(store) if katakana else VocabularyLibrary(store)).load()


def _get_model(name: str) -> Optional[LlmModelAdapter]:
    try:
        return LlmModelAdapter(llm.get_model(name))
    except llm.UnknownModelError:
        click.echo(f"Model '{name}' is not available. Run 'llm models' to see installed models.")
        return None


def _show_sentence(index: int, total: int, context: SentenceWithContext) -> None:
    sentence = context.sentence
    click.echo(f"\n[{index}/{total}] {sentence.primary_text}")
    click.prompt("Press Enter to reveal", default="", show_default=False)
    click.echo(f"  {sentence.secondary_text}")
    if sentence.hiragana:
        click.echo(f"  {sentence.hiragana}")
    for token in sentence.tokens:
        if token.reading or token.definition:
            click.echo(f"    {token.word} ({token.reading}) - {token.definition}")
    if context.used_kanji:
        click.echo(f"  Kanji: {' '.join(context.used_kanji)}")


@llm.hookimpl
def register_commands(cli: Any) -> None:

    @cli.command("kanji-init-db")
    def init_db() -> None:
        """Initialize the Kanji library database."""
        db.init_db()
        click.echo(f"Database initialized at {db.DB_PATH}.")

    @cli.command("kanji-add")
    @click.argument("text")
    @click.option("--no-lookup", is_flag=True, help="Skip the kanjiapi.dev JLPT lookup")
    def add_kanji(text: str, no_lookup: bool) -> None:
        """Track every new Kanji found in TEXT."""
        library = _kanji_library(with_lookup=not no_lookup)
        try:
            added = library.add_kanji(text)
        except KanjiSrsError as e:
            click.echo(f"Error: {e}")
            return
        if not added:
            click.echo("No new Kanji found (already tracked or none in text).")
            return
        for kanji in added:
            level = f"N{kanji.jlpt_level}" if kanji.jlpt_level else "no JLPT level"
            click.echo(f"Added {kanji.character} ({level})")

    @cli.command("kanji-add-image")
    @click.argument("image_path", type=click.Path(exists=True, dir_okay=False))
    @click.option("--model", default=config.DEFAULT_VISION_MODEL, help="Vision model used to read the image")
    def add_image(image_path: str, model: str) -> None:
        """Track the Kanji found in a photo or screenshot."""
        vision_model = _get_model(model)
        if vision_model is None:
            return
        with open(image_path, "rb") as f:
            image_bytes = f.read()
        mime_type = "image/png" if image_path.lower().endswith(".png") else "image/jpeg"
        library = _kanji_library()
        try:
            added = library.add_kanji_from_image(image_bytes, KanjiImageExtractor(vision_model), mime_type=mime_type)
        except KanjiSrsError as e:
            click.echo(f"Error: {e}")
            return
        if added:
            click.echo(f"Added {len(added)} Kanji: {''.join(k.character for k in added)}")
        else:
            click.echo("No new Kanji found in the image.")

    @cli.command("kanji-delete")
    @click.argument("character")
    def delete_kanji(character: str) -> None:
        """Stop tracking a Kanji."""
        try:
            _kanji_library(with_lookup=False).delete_kanji(character)
        except KanjiSrsError as e:
            click.echo(f"Error: {e}")
            return
        click.echo(f"Deleted {character}.")

    @cli.command("kanji-list")
    @click.option("--status", type=click.Choice([s.value for s in KanjiStatus]), help="Only show this status")
    def list_kanji(status: Optional[str]) -> None:
        """List tracked Kanji with their review status."""
        library = _kanji_library(with_lookup=False)
        now = scheduler.now_ms()
        shown = 0
        for kanji in library.kanji:
            kanji_status = scheduler.classify(kanji, now)
            if status and kanji_status.value != status:
                continue
            level = f"N{kanji.jlpt_level}" if kanji.jlpt_level else "--"
            click.echo(
                f"{kanji.character}  {level:>3}  srs {kanji.srs_level}  streak {kanji.correct_streak}"
                f"  used {kanji.used_count}  {kanji_status.value}"
            )
            shown += 1
        counts = scheduler.status_counts(library.kanji, now)
        click.echo(f"\n{shown} shown, {len(library)} tracked: " + ", ".join(
            f"{counts[s.value]} {s.value}" for s in KanjiStatus
        ))

    @cli.command("kanji-info")
    @click.argument("character")
    def kanji_info(character: str) -> None:
        """Show tracking data and dictionary details for one Kanji."""
        library = _kanji_library(with_lookup=False)
        try:
            kanji = library.get(character)
        except KanjiSrsError as e:
            click.echo(f"Error: {e}")
            return
        now = scheduler.now_ms()
        click.echo(f"{kanji.character}: {scheduler.classify(kanji, now).value}")
        click.echo(f"  SRS level {kanji.srs_level}, streak {kanji.correct_streak}, used {kanji.used_count} times")
        click.echo(f"  Next review in {max(0, kanji.next_review_at - now) // scheduler.HOUR_MS} h")

        try:
            details = KanjiApiClient().lookup(character)
        except KanjiSrsError as e:
            click.echo(f"  Lookup failed: {e}")
            details = None
        if details is not None:
            click.echo(f"  Readings: {details.reading}")
            click.echo(f"  Meanings: {details.gloss}")

        if config.WANIKANI_API_KEY:
            try:
                summary = WaniKaniClient().get_enriched_kanji(character).summary()
            except KanjiSrsError as e:
                click.echo(f"  WaniKani: {e}")
                return
            click.echo(f"  WaniKani level {summary['level']}, radicals: {', '.join(filter(None, summary['radicals']))}")
            click.echo(f"  Vocabulary: {', '.join(filter(None, summary['vocabulary']))}")

    @cli.command("kanji-session")
    @click.option("--jlpt", type=click.IntRange(1, 5), default=None, help="Only practise Kanji of this JLPT level")
    @click.option("--mode", type=click.Choice([m.value for m in GenerationMode]), default=GenerationMode.JAPANESE.value,
                  help="Which language is shown first")
    @click.option("--model", default=config.DEFAULT_MODEL, help="LLM model name used to write the sentences")
    def run_session(jlpt: Optional[int], mode: str, model: str) -> None:
        """Practise tracked Kanji in generated sentences and grade yourself."""
        llm_model = _get_model(model)
        if llm_model is None:
            return
        session = SentenceSession(_kanji_library(with_lookup=False), SentenceGenerator(llm_model))

        while True:
            click.echo("Generating sentences...")
            try:
                contexts = session.start_or_refresh(jlpt_filter=jlpt, mode=GenerationMode(mode))
            except KanjiSrsError as e:
                click.echo(f"Error: {e}")
                return
            if session.save_error is not None:
                click.echo(f"Warning: usage counts were not saved: {session.save_error}")

            for index, context in enumerate(contexts, start=1):
                _show_sentence(index, len(contexts), context)
                if not context.used_kanji:
                    continue
                understood = click.confirm("Did you understand it?", default=True)
                outcome = ReviewOutcome.CORRECT if understood else ReviewOutcome.INCORRECT
                try:
                    session.record_feedback(context, outcome)
                except KanjiSrsError as e:
                    click.echo(f"Error: {e}")

            if not click.confirm("\nAnother round?", default=True):
                session.abandon()
                break

    @cli.command("kanji-vocab-add")
    @click.argument("word")
    @click.option("--katakana", is_flag=True, help="Save to the katakana word list")
    def vocab_add(word: str, katakana: bool) -> None:
        """Save a word (and start tracking its Kanji)."""
        token = JishoClient().lookup_word(word)
        try:
            if katakana:
                item = _vocabulary(katakana=True).add_item(token)
                added = []
            else:
                item, added = promote_token(token, _vocabulary(), _kanji_library())
        except KanjiSrsError as e:
            click.echo(f"Error: {e}")
            return
        if item is None:
            click.echo(f"'{word}' is already saved.")
        else:
            click.echo(f"Saved {item.word} ({item.reading}): {item.definition}")
        if added:
            click.echo(f"Now tracking: {''.join(k.character for k in added)}")

    @cli.command("kanji-vocab-list")
    @click.option("--katakana", is_flag=True, help="List the katakana word list instead")
    def vocab_list(katakana: bool) -> None:
        """List saved words."""
        vocabulary = _vocabulary(katakana=katakana)
        if not len(vocabulary):
            click.echo("No saved words.")
            return
        for item in vocabulary.items:
            level = f"N{item.jlpt_level}" if item.jlpt_level else "--"
            click.echo(f"{item.word}  {item.reading}  {level}  {item.definition}")

    @cli.command("kanji-vocab-delete")
    @click.argument("word")
    @click.option("--katakana", is_flag=True, help="Delete from the katakana word list")
    def vocab_delete(word: str, katakana: bool) -> None:
        """Remove a saved word."""
        try:
            _vocabulary(katakana=katakana).delete_item(word)
        except KanjiSrsError as e:
            click.echo(f"Error: {e}")
            return
        click.echo(f"Deleted '{word}'.")

    @cli.command("kanji-export")
    @click.argument("path", type=click.Path(dir_okay=False))
    @click.option("--collection", type=click.Choice(list(COLLECTIONS)), default="kanji", help="Which collection")
    def export_library(path: str, collection: str) -> None:
        """Write a collection to a JSON file."""
        count = db.export_snapshot(COLLECTIONS[collection], path, store=_store())
        click.echo(f"Exported {count} {collection} entries to {path}.")

    @cli.command("kanji-import")
    @click.argument("path", type=click.Path(exists=True, dir_okay=False))
    @click.option("--collection", type=click.Choice(list(COLLECTIONS)), default="kanji", help="Which collection")
    def import_library(path: str, collection: str) -> None:
        """Replace a collection with the contents of a JSON file."""
        try:
            count = db.import_snapshot(COLLECTIONS[collection], path, store=_store())
        except KanjiSrsError as e:
            click.echo(f"Error: {e}")
            return
        click.echo(f"Imported {count} {collection} entries from {path}.")
