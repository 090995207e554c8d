"""
Tests for the Kanji Sentences web API.
AI models and dictionary lookups are mocked; the database is a temporary SQLite file.
"""
import io
import json
from typing import Any, Optional
from urllib.parse import quote

import pytest

import app as app_module
from llm_kanji_sentences.errors import PersistenceError
from llm_kanji_sentences.lookup import KanjiDetails
from llm_kanji_sentences.structured import WordToken


def sentences_reply(texts):
    return json.dumps({"sentences": [
        {
            "japanese": text,
            "hiragana": "よみ",
            "english": "translation",
            "tokens": [{"word": text, "reading": "よみ", "definition": "gloss", "jlpt": 5}],
        }
        for text in texts
    ]}, ensure_ascii=False)


class MockAIModel:
    """Mock AI model for consistent testing without actual API calls."""

    def __init__(self, reply: str = "", image_reply: str = "") -> None:
        self.reply = reply
        self.image_reply = image_reply

    def prompt(self, prompt_text: str, system: str = "", image: Optional[bytes] = None,
               mime_type: str = "image/jpeg") -> Any:
        content = self.image_reply if image is not None else self.reply

        class Response:
            def text(self) -> str:
                return content
        return Response()


class StubKanjiLookup:
    def lookup(self, character):
        levels = {"猫": 3, "犬": 4}
        if character not in levels:
            return None
        return KanjiDetails(character=character, reading="ねこ", gloss="cat", jlpt_level=levels[character])


class StubWordLookup:
    def lookup_word(self, word):
        return WordToken(word=word, reading="よみ", definition=f"meaning of {word}")


class StubWaniKani:
    api_key = None


@pytest.fixture
def model():
    return MockAIModel(
        reply=sentences_reply(["猫がいる。", "猫と犬。", "雨。", "猫だ。", "晴れ。"]),
        image_reply="日本",
    )


@pytest.fixture
def client(temp_db, model):
    app_module.init_state(
        store=temp_db,
        model=model,
        image_model=model,
        lookup=StubKanjiLookup(),
        words=StubWordLookup(),
        wanikani_client=StubWaniKani(),
    )
    app_module.app.config["TESTING"] = True
    with app_module.app.test_client() as client:
        yield client


def add_kanji(client, text):
    return client.post("/api/kanji", json={"text": text})


def test_add_and_list_kanji(client):
    response = add_kanji(client, "猫と犬")
    assert response.status_code == 200
    data = response.get_json()
    assert data["status"] == "success"
    assert [k["character"] for k in data["added"]] == ["猫", "犬"]
    assert data["added"][0]["jlptLevel"] == 3

    listed = client.get("/api/kanji").get_json()["kanji"]
    assert {k["character"] for k in listed} == {"猫", "犬"}
    assert all(k["status"] == "new" for k in listed)

    assert add_kanji(client, "猫").get_json()["added"] == []


def test_add_kanji_requires_text(client):
    response = client.post("/api/kanji", json={})
    assert response.status_code == 400
    assert response.get_json()["status"] == "error"


def test_delete_kanji(client):
    add_kanji(client, "猫")
    assert client.delete(f"/api/kanji/{quote('猫')}").status_code == 200
    response = client.delete(f"/api/kanji/{quote('猫')}")
    assert response.status_code == 404
    assert "not found" in response.get_json()["message"]


def test_kanji_details(client):
    add_kanji(client, "猫")
    data = client.get(f"/api/kanji/{quote('猫')}/details").get_json()
    assert data["kanji"]["character"] == "猫"
    assert data["details"]["gloss"] == "cat"
    assert data["wanikani"] is None
    assert client.get(f"/api/kanji/{quote('鳥')}/details").status_code == 404


def test_add_kanji_from_image(client):
    response = client.post(
        "/api/kanji/image",
        data={"image": (io.BytesIO(b"\x89PNG fake"), "shot.png")},
        content_type="multipart/form-data",
    )
    assert response.status_code == 200
    assert [k["character"] for k in response.get_json()["added"]] == ["日", "本"]


def test_image_upload_rejects_other_files(client):
    response = client.post(
        "/api/kanji/image",
        data={"image": (io.BytesIO(b"text"), "notes.txt")},
        content_type="multipart/form-data",
    )
    assert response.status_code == 400


def test_session_without_kanji_is_unprocessable(client):
    response = client.post("/api/session", json={})
    assert response.status_code == 422
    assert response.get_json()["status"] == "error"


def test_session_round_trip(client):
    add_kanji(client, "猫犬鳥")
    response = client.post("/api/session", json={"mode": "japanese"})
    assert response.status_code == 200
    data = response.get_json()
    assert len(data["sentences"]) == 5
    assert data["sentences"][0]["usedKanjiInSentence"] == ["猫"]
    assert data["sentences"][1]["sentence"]["hiragana"] == "よみ"

    kanji = {k["character"]: k for k in client.get("/api/kanji").get_json()["kanji"]}
    assert kanji["猫"]["usedCount"] == 1
    assert kanji["犬"]["usedCount"] == 1
    assert kanji["鳥"]["usedCount"] == 0

    feedback = client.post("/api/session/feedback", json={"index": 1, "outcome": "correct"})
    assert sorted(feedback.get_json()["reviewed"]) == sorted(["猫", "犬"])
    kanji = {k["character"]: k for k in client.get("/api/kanji").get_json()["kanji"]}
    assert kanji["猫"]["srsLevel"] == 1

    assert client.post("/api/session/feedback", json={"index": 9, "outcome": "correct"}).status_code == 404
    assert client.post("/api/session/feedback", json={"index": 0, "outcome": "meh"}).status_code == 400

    assert client.delete("/api/session").status_code == 200
    assert client.post("/api/session/feedback", json={"index": 0, "outcome": "correct"}).status_code == 404


def test_sentence_feedback_is_accepted_once(client):
    add_kanji(client, "猫犬")
    client.post("/api/session", json={})

    assert client.post("/api/session/feedback", json={"index": 0, "outcome": "correct"}).status_code == 200
    second = client.post("/api/session/feedback", json={"index": 0, "outcome": "correct"})
    assert second.status_code == 409
    assert "already been graded" in second.get_json()["message"]

    kanji = {k["character"]: k for k in client.get("/api/kanji").get_json()["kanji"]}
    assert kanji["猫"]["srsLevel"] == 1
    assert kanji["猫"]["correctStreak"] == 1


def test_session_reports_unsaved_usage(client, temp_db, monkeypatch):
    add_kanji(client, "猫")

    def disk_full(key, items, expected_version=None):
        raise PersistenceError("disk full")

    monkeypatch.setattr(temp_db, "save", disk_full)
    response = client.post("/api/session", json={})
    assert response.status_code == 200
    data = response.get_json()
    assert len(data["sentences"]) == 5
    assert "disk full" in data["warning"]

    monkeypatch.undo()
    assert "warning" not in client.post("/api/session", json={}).get_json()


def test_session_rejects_bad_filters(client):
    add_kanji(client, "猫")
    assert client.post("/api/session", json={"jlpt": 7}).status_code == 400
    assert client.post("/api/session", json={"mode": "klingon"}).status_code == 400


def test_generation_failure_is_bad_gateway(client, model):
    add_kanji(client, "猫")
    model.reply = "I cannot help with that."
    response = client.post("/api/session", json={})
    assert response.status_code == 502
    kanji = client.get("/api/kanji").get_json()["kanji"]
    assert kanji[0]["usedCount"] == 0


def test_vocabulary_endpoints(client):
    response = client.post("/api/vocabulary", json={"word": "学生"})
    data = response.get_json()
    assert data["status"] == "success"
    assert data["item"]["definition"] == "meaning of 学生"
    assert data["added_kanji"] == ["学", "生"]

    duplicate = client.post("/api/vocabulary", json={"word": "学生", "reading": "がくせい", "definition": "student"})
    assert duplicate.get_json()["status"] == "exists"

    katakana = client.post("/api/vocabulary", json={"word": "テレビ", "katakana": True}).get_json()
    assert katakana["added_kanji"] == []
    assert [v["word"] for v in client.get("/api/vocabulary?katakana=1").get_json()["items"]] == ["テレビ"]
    assert [v["word"] for v in client.get("/api/vocabulary").get_json()["items"]] == ["学生"]

    assert client.delete(f"/api/vocabulary/{quote('学生')}").status_code == 200
    assert client.delete(f"/api/vocabulary/{quote('学生')}").status_code == 404
    assert client.post("/api/vocabulary", json={"word": ""}).status_code == 400


def test_word_lookup(client):
    data = client.get(f"/api/word/{quote('本')}").get_json()
    assert data["token"]["reading"] == "よみ"


def test_summary(client):
    add_kanji(client, "猫犬")
    data = client.get("/api/summary").get_json()
    assert data["kanji_total"] == 2
    assert data["statuses"]["new"] == 2
    assert data["vocabulary_total"] == 0


def test_ai_status(client):
    data = client.get("/ai_status").get_json()
    assert data["vision_available"] is True
    assert data["wanikani_available"] is False
