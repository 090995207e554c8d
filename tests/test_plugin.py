"""Tests for the llm CLI commands, run through click's CliRunner."""
import json

import click
import pytest
from click.testing import CliRunner

from llm_kanji_sentences import db, plugin
from llm_kanji_sentences.library import KanjiLibrary, VocabularyLibrary
from llm_kanji_sentences.lookup import KanjiDetails
from llm_kanji_sentences.structured import WordToken


class StubKanjiApi:
    def lookup(self, character):
        return KanjiDetails(character=character, reading="ねこ", gloss="cat", jlpt_level=3)


class StubJisho:
    def lookup_word(self, word):
        return WordToken(word=word, reading="がくせい", definition="student")


class MockLlmModel:
    """Shaped like an ``llm`` model: prompt(...) returns an object with text()."""

    def __init__(self, reply):
        self.reply = reply
        self.calls = []

    def prompt(self, prompt_text, **kwargs):
        self.calls.append((prompt_text, kwargs))
        reply = self.reply

        class Response:
            def text(self):
                return reply
        return Response()


@pytest.fixture
def cli(temp_db, monkeypatch):
    monkeypatch.setattr(plugin, "KanjiApiClient", StubKanjiApi)
    monkeypatch.setattr(plugin, "JishoClient", StubJisho)

    @click.group()
    def cli():
        pass

    plugin.register_commands(cli)
    return cli


def run(cli, *args, input=None):
    result = CliRunner().invoke(cli, list(args), input=input)
    assert result.exit_code == 0, result.output
    return result.output


def test_add_list_delete(cli):
    assert "Added 猫 (N3)" in run(cli, "kanji-add", "猫と犬")
    assert "No new Kanji" in run(cli, "kanji-add", "猫")

    output = run(cli, "kanji-list")
    assert "猫" in output and "犬" in output
    assert "2 tracked" in output
    assert "0 shown, 2 tracked" in run(cli, "kanji-list", "--status", "mastered")

    assert "Deleted 猫." in run(cli, "kanji-delete", "猫")
    assert "not found" in run(cli, "kanji-delete", "猫")


def test_add_without_lookup(cli):
    assert "Added 猫 (no JLPT level)" in run(cli, "kanji-add", "猫", "--no-lookup")


def test_info(cli):
    run(cli, "kanji-add", "猫")
    output = run(cli, "kanji-info", "猫")
    assert "猫: new" in output
    assert "Meanings: cat" in output
    assert "not found" in run(cli, "kanji-info", "犬")


def test_session_grades_each_sentence(cli, monkeypatch):
    reply = json.dumps({"sentences": [
        {"japanese": f"猫です{i}。", "hiragana": "ねこです。", "english": "It is a cat.", "tokens": ["猫", "です"]}
        for i in range(5)
    ]}, ensure_ascii=False)
    model = MockLlmModel(reply)
    monkeypatch.setattr(plugin.llm, "get_model", lambda name: model)

    run(cli, "kanji-add", "猫犬")
    output = run(cli, "kanji-session", "--model", "mock", input="\ny\n" * 5 + "n\n")
    assert "It is a cat." in output

    cat = KanjiLibrary(db.SnapshotStore()).load().get("猫")
    assert cat.used_count == 1
    assert cat.srs_level == 5
    assert model.calls[0][1]["system"]


def test_session_without_kanji(cli, monkeypatch):
    monkeypatch.setattr(plugin.llm, "get_model", lambda name: MockLlmModel(""))
    assert "No Kanji available" in run(cli, "kanji-session", "--model", "mock")


def test_vocabulary_commands(cli):
    output = run(cli, "kanji-vocab-add", "学生")
    assert "Saved 学生 (がくせい): student" in output
    assert "Now tracking: 学生" in output
    assert "already saved" in run(cli, "kanji-vocab-add", "学生")

    run(cli, "kanji-vocab-add", "テレビ", "--katakana")
    assert "テレビ" in run(cli, "kanji-vocab-list", "--katakana")
    assert "テレビ" not in run(cli, "kanji-vocab-list")

    assert "Deleted '学生'." in run(cli, "kanji-vocab-delete", "学生")
    assert "No saved words." in run(cli, "kanji-vocab-list")
    assert KanjiLibrary(db.SnapshotStore()).load().characters() == {"学", "生"}


def test_export_import(cli, tmp_path):
    run(cli, "kanji-add", "猫")
    path = str(tmp_path / "kanji.json")
    assert "Exported 1 kanji" in run(cli, "kanji-export", path)

    run(cli, "kanji-delete", "猫")
    assert "Imported 1 kanji" in run(cli, "kanji-import", path)
    assert "猫" in KanjiLibrary(db.SnapshotStore()).load()

    assert "Exported 0 vocabulary" in run(cli, "kanji-export", str(tmp_path / "v.json"), "--collection", "vocabulary")
    assert VocabularyLibrary(db.SnapshotStore()).load().items == []


def test_llm_adapter_passes_image_as_attachment():
    model = MockLlmModel("日")
    plugin.LlmModelAdapter(model).prompt("read", image=b"img", mime_type="image/png")
    _, kwargs = model.calls[0]
    attachment = kwargs["attachments"][0]
    assert attachment.content == b"img"
    assert attachment.type == "image/png"
