#!/usr/bin/env python3
"""
Script to examine the contents of the Kanji library database
to see what is tracked and how the reviews are going.
"""

import sys
import os

# Add the current directory to the path so we can import our modules
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from llm_kanji_sentences import db, scheduler
from llm_kanji_sentences.library import KanjiLibrary, VocabularyLibrary, katakana_library


def check_database_contents() -> None:
    """Print a summary of every collection in the database."""
    print("🔍 Examining Kanji Library Database Contents")
    print("=" * 60)

    store = db.SnapshotStore()
    kanji_library = KanjiLibrary(store).load()
    vocabulary = VocabularyLibrary(store).load()
    katakana = katakana_library(store).load()
    now = scheduler.now_ms()

    kanji_items = kanji_library.kanji
    print(f"\n🈷️  KANJI ({len(kanji_items)} items, snapshot version {store.version(db.KANJI_KEY)}):")
    for i, kanji in enumerate(kanji_items[:10], 1):  # Newest 10
        level = f"N{kanji.jlpt_level}" if kanji.jlpt_level else "N/A"
        print(f"  {i:2d}. {kanji.character} | JLPT: {level} | SRS: {kanji.srs_level} | "
              f"Streak: {kanji.correct_streak} | Used: {kanji.used_count} | {scheduler.classify(kanji, now).value}")
    if len(kanji_items) > 10:
        print(f"     ... and {len(kanji_items) - 10} more items")

    vocab_items = vocabulary.items
    print(f"\n📚 VOCABULARY ({len(vocab_items)} items):")
    for i, item in enumerate(vocab_items[:10], 1):
        print(f"  {i:2d}. {item.word} | Reading: {item.reading or 'N/A'} | Meaning: {item.definition or 'N/A'}")
    if len(vocab_items) > 10:
        print(f"     ... and {len(vocab_items) - 10} more items")

    print(f"\n🔤 KATAKANA VOCABULARY ({len(katakana)} items)")

    counts = scheduler.status_counts(kanji_items, now)
    print(f"\n📊 SUMMARY:")
    for status, count in counts.items():
        print(f"     {status.capitalize():<9} {count}")


if __name__ == "__main__":
    # Check if database exists
    if not os.path.exists(db.DB_PATH):
        print(f"❌ Database file '{db.DB_PATH}' not found!")
        print("   Set KANJI_SRS_DB or run this from the correct directory.")
        sys.exit(1)

    if not db.is_db_initialized():
        print("❌ Database has no library_snapshots table. Run 'llm kanji-init-db' first.")
        sys.exit(1)

    check_database_contents()
