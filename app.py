#!/usr/bin/env python3
"""
Kanji Sentences - Flask JSON API
Track Kanji, practise them in AI-generated sentences and grade yourself.
Requires an OpenAI-compatible API for sentence generation and image reading.
"""

import os
import sys
import logging
import argparse
from typing import Any, Optional, Tuple

from flask import Flask, request, jsonify
from werkzeug.utils import secure_filename

# Add the current directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from llm_kanji_sentences import config, db, scheduler
from llm_kanji_sentences.errors import (
    AlreadyGradedError,
    ExternalServiceError,
    KanjiSrsError,
    NoCandidatesError,
    NotFoundError,
    PersistenceError,
    SessionBusyError,
    StaleSnapshotError,
)
from llm_kanji_sentences.generation import KanjiImageExtractor, SentenceGenerator, create_openai_model
from llm_kanji_sentences.library import KanjiLibrary, VocabularyLibrary, katakana_library, promote_token
from llm_kanji_sentences.lookup import JishoClient, KanjiApiClient, WaniKaniClient
from llm_kanji_sentences.session import SentenceSession
from llm_kanji_sentences.structured import GenerationMode, ReviewOutcome, WordToken

logger = logging.getLogger("kanji_app")

TEST_MODE = config.TEST_MODE
DEBUG = config.DEBUG_MODE

# Global AI models
ai_model = None
vision_model = None

# Global library state, built by init_state()
kanji_library: Optional[KanjiLibrary] = None
vocabulary: Optional[VocabularyLibrary] = None
katakana_vocabulary: Optional[VocabularyLibrary] = None
sentence_session: Optional[SentenceSession] = None
word_lookup: Any = None
wanikani: Any = None
kanji_lookup: Any = None


def init_ai(api_key: Optional[str] = None,
            base_url: Optional[str] = None,
            model_name: str = config.DEFAULT_MODEL,
            vision_model_name: Optional[str] = None) -> None:
    """Initialize the OpenAI client and models."""
    global ai_model, vision_model

    if TEST_MODE:
        return

    try:
        ai_model = create_openai_model(api_key=api_key, base_url=base_url, model_name=model_name)
        vision_model = create_openai_model(
            api_key=api_key,
            base_url=base_url,
            model_name=vision_model_name or config.DEFAULT_VISION_MODEL,
        )
    except ExternalServiceError as e:
        logger.warning("AI features disabled: %s", e)
        return

    logger.info("AI initialized with model: %s", model_name)


def init_state(store: Any = None,
               model: Any = None,
               image_model: Any = None,
               lookup: Any = None,
               words: Any = None,
               wanikani_client: Any = None) -> None:
    """(Re)build the libraries and the sentence session.

    Anything not passed in falls back to the globally configured AI models
    and to live dictionary clients.
    """
    global kanji_library, vocabulary, katakana_vocabulary, sentence_session
    global word_lookup, wanikani, kanji_lookup, vision_model

    if store is None:
        if not db.is_db_initialized():
            db.init_db()
        store = db.SnapshotStore()

    kanji_lookup = lookup if lookup is not None else KanjiApiClient()
    word_lookup = words if words is not None else JishoClient()
    wanikani = wanikani_client if wanikani_client is not None else WaniKaniClient()
    if image_model is not None:
        vision_model = image_model

    kanji_library = KanjiLibrary(store, lookup=kanji_lookup).load()
    vocabulary = VocabularyLibrary(store).load()
    katakana_vocabulary = katakana_library(store).load()
    sentence_session = SentenceSession(kanji_library, SentenceGenerator(model if model is not None else ai_model))


app = Flask(__name__)
app.secret_key = os.environ.get('SECRET_KEY', 'dev-secret-key-change-in-production')
app.config['MAX_CONTENT_LENGTH'] = 16 * 1024 * 1024  # 16MB max file size

# Try to initialize with environment variables by default
if not TEST_MODE:
    init_ai()

ALLOWED_EXTENSIONS = {'png', 'jpg', 'jpeg', 'gif', 'bmp', 'webp'}


def allowed_file(filename: str) -> bool:
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in ALLOWED_EXTENSIONS


def error_response(e: Exception) -> Tuple[Any, int]:
    """Map a library error onto a JSON error body and HTTP status."""
    if isinstance(e, NotFoundError):
        code = 404
    elif isinstance(e, (AlreadyGradedError, SessionBusyError, StaleSnapshotError)):
        code = 409
    elif isinstance(e, NoCandidatesError):
        code = 422
    elif isinstance(e, ExternalServiceError):
        code = 502
    else:
        code = 500
    if code == 500 or DEBUG:
        logger.exception("Request failed: %s", e)
    return jsonify({'status': 'error', 'message': str(e)}), code


def bad_request(message: str) -> Tuple[Any, int]:
    return jsonify({'status': 'error', 'message': message}), 400


@app.before_request
def initialize_app() -> None:
    """Build the library state on the first request."""
    if sentence_session is None:
        init_state()


@app.errorhandler(KanjiSrsError)
def handle_library_error(e: KanjiSrsError) -> Any:
    return error_response(e)


@app.route('/ai_status')
def ai_status() -> Any:
    return jsonify({
        'status': 'success',
        'ai_available': ai_model is not None,
        'vision_available': vision_model is not None,
        'wanikani_available': bool(getattr(wanikani, 'api_key', None)),
    })


@app.route('/api/summary')
def api_summary() -> Any:
    """Counts per review status plus the vocabulary sizes."""
    now = scheduler.now_ms()
    return jsonify({
        'status': 'success',
        'kanji_total': len(kanji_library),
        'statuses': scheduler.status_counts(kanji_library.kanji, now),
        'vocabulary_total': len(vocabulary),
        'katakana_total': len(katakana_vocabulary),
    })


# ----------------------------------------------------------------------
# Kanji library
# ----------------------------------------------------------------------
@app.route('/api/kanji', methods=['GET'])
def api_list_kanji() -> Any:
    now = scheduler.now_ms()
    status_filter = request.args.get('status')
    items = []
    for kanji in kanji_library.kanji:
        status = scheduler.classify(kanji, now).value
        if status_filter and status != status_filter:
            continue
        items.append(dict(kanji.to_dict(), status=status))
    return jsonify({'status': 'success', 'kanji': items})


@app.route('/api/kanji', methods=['POST'])
def api_add_kanji() -> Any:
    data = request.get_json(silent=True) or {}
    text = data.get('text', '')
    if not isinstance(text, str) or not text.strip():
        return bad_request('Text is required')
    added = kanji_library.add_kanji(text)
    return jsonify({'status': 'success', 'added': [k.to_dict() for k in added]})


@app.route('/api/kanji/image', methods=['POST'])
def api_add_kanji_from_image() -> Any:
    """Extract Kanji from an uploaded image and track the new ones."""
    file = request.files.get('image')
    if file is None or not file.filename:
        return bad_request('No image uploaded')
    filename = secure_filename(file.filename)
    if not allowed_file(filename):
        return bad_request('Unsupported image type')
    extractor = KanjiImageExtractor(vision_model)
    added = kanji_library.add_kanji_from_image(
        file.read(), extractor, mime_type=file.mimetype or 'image/jpeg'
    )
    return jsonify({'status': 'success', 'added': [k.to_dict() for k in added]})


@app.route('/api/kanji/<character>', methods=['DELETE'])
def api_delete_kanji(character: str) -> Any:
    kanji_library.delete_kanji(character)
    return jsonify({'status': 'success'})


@app.route('/api/kanji/<character>/details')
def api_kanji_details(character: str) -> Any:
    """Tracking data, dictionary details and (when configured) WaniKani data."""
    kanji = kanji_library.get(character)
    result = {
        'status': 'success',
        'kanji': dict(kanji.to_dict(), status=scheduler.classify(kanji, scheduler.now_ms()).value),
        'details': None,
        'wanikani': None,
    }
    try:
        details = kanji_lookup.lookup(character)
    except ExternalServiceError as e:
        logger.warning("Details lookup failed for '%s': %s", character, e)
        details = None
    if details is not None:
        result['details'] = {
            'reading': details.reading,
            'gloss': details.gloss,
            'jlptLevel': details.jlpt_level,
        }
    if getattr(wanikani, 'api_key', None):
        try:
            result['wanikani'] = wanikani.get_enriched_kanji(character).summary()
        except (ExternalServiceError, NotFoundError) as e:
            logger.warning("WaniKani enrichment failed for '%s': %s", character, e)
    return jsonify(result)


# ----------------------------------------------------------------------
# Vocabulary
# ----------------------------------------------------------------------
def _vocabulary_for(katakana: Any) -> VocabularyLibrary:
    return katakana_vocabulary if str(katakana).lower() in ('1', 'true') else vocabulary


@app.route('/api/word/<word>')
def api_word_lookup(word: str) -> Any:
    token = word_lookup.lookup_word(word)
    return jsonify({'status': 'success', 'token': token.to_dict()})


@app.route('/api/vocabulary', methods=['GET'])
def api_list_vocabulary() -> Any:
    target = _vocabulary_for(request.args.get('katakana', '0'))
    return jsonify({'status': 'success', 'items': [v.to_dict() for v in target.items]})


@app.route('/api/vocabulary', methods=['POST'])
def api_add_vocabulary() -> Any:
    """Save a word. Kanji in a regular word are tracked too."""
    data = request.get_json(silent=True) or {}
    word = data.get('word', '')
    if not isinstance(word, str) or not word.strip():
        return bad_request('Word is required')

    if data.get('reading') and data.get('definition'):
        token = WordToken.from_dict(data)
    else:
        token = word_lookup.lookup_word(word.strip())

    if _vocabulary_for(data.get('katakana', False)) is katakana_vocabulary:
        item = katakana_vocabulary.add_item(token)
        added = []
    else:
        item, added = promote_token(token, vocabulary, kanji_library)

    return jsonify({
        'status': 'success' if item is not None else 'exists',
        'item': item.to_dict() if item is not None else None,
        'added_kanji': [k.character for k in added],
    })


@app.route('/api/vocabulary/<word>', methods=['DELETE'])
def api_delete_vocabulary(word: str) -> Any:
    _vocabulary_for(request.args.get('katakana', '0')).delete_item(word)
    return jsonify({'status': 'success'})


# ----------------------------------------------------------------------
# Sentence session
# ----------------------------------------------------------------------
@app.route('/api/session', methods=['POST'])
def api_start_session() -> Any:
    """Start a session or refresh it with a new batch of sentences."""
    data = request.get_json(silent=True) or {}
    jlpt = data.get('jlpt')
    try:
        jlpt_filter = int(jlpt) if jlpt else None
        mode = GenerationMode(data.get('mode', GenerationMode.JAPANESE.value))
    except ValueError:
        return bad_request('Invalid jlpt or mode')
    if jlpt_filter is not None and not 1 <= jlpt_filter <= 5:
        return bad_request('jlpt must be between 1 and 5')

    contexts = sentence_session.start_or_refresh(jlpt_filter=jlpt_filter, mode=mode)
    result = {
        'status': 'success',
        'session_id': sentence_session.session_id,
        'mode': mode.value,
        'sentences': [c.to_dict() for c in contexts],
    }
    if sentence_session.save_error is not None:
        result['warning'] = f"Usage counts were not saved: {sentence_session.save_error}"
    return jsonify(result)


@app.route('/api/session', methods=['DELETE'])
def api_abandon_session() -> Any:
    sentence_session.abandon()
    return jsonify({'status': 'success'})


@app.route('/api/session/feedback', methods=['POST'])
def api_session_feedback() -> Any:
    """Grade one sentence of the current batch by its index."""
    data = request.get_json(silent=True) or {}
    try:
        index = int(data['index'])
        outcome = ReviewOutcome(data['outcome'])
    except (KeyError, TypeError, ValueError):
        return bad_request('index and outcome (correct|incorrect) are required')

    contexts = sentence_session.sentences
    if not 0 <= index < len(contexts):
        return jsonify({'status': 'error', 'message': 'No such sentence in the current session'}), 404

    reviewed = sentence_session.record_feedback(contexts[index], outcome)
    return jsonify({'status': 'success', 'reviewed': reviewed})


if __name__ == '__main__':
    parser = argparse.ArgumentParser(description='Kanji Sentences App')
    parser.add_argument('--host', default='127.0.0.1', help='Host IP to bind to (default: 127.0.0.1)')
    parser.add_argument('--port', type=int, default=5000, help='Port to bind to (default: 5000)')
    parser.add_argument('--openai-key', help='OpenAI API Key')
    parser.add_argument('--openrouter-key', help='OpenRouter API Key (overrides OpenAI key)')
    parser.add_argument('--model', default=config.DEFAULT_MODEL, help='Sentence generation model name')
    parser.add_argument('--vision-model', help='Image reading model name (defaults to KANJI_SRS_VISION_MODEL)')
    parser.add_argument('--debug', action='store_true', help='Enable debug mode')

    args = parser.parse_args()

    if args.debug:
        DEBUG = True
    config.configure_logging(DEBUG)

    # Re-initialize AI if arguments are provided
    if args.openai_key or args.openrouter_key or args.model or args.vision_model:
        api_key = args.openrouter_key or args.openai_key
        base_url = "https://openrouter.ai/api/v1" if args.openrouter_key else None

        init_ai(
            api_key=api_key,
            base_url=base_url,
            model_name=args.model,
            vision_model_name=args.vision_model
        )

    try:
        init_state()
    except PersistenceError as e:
        logger.error("Database initialization failed: %s", e)
        sys.exit(1)

    logger.info("Starting server on http://%s:%s", args.host, args.port)
    app.run(debug=DEBUG, host=args.host, port=args.port)
