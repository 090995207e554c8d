#!/usr/bin/env python3
"""Import a Kanji list (plain text or CSV, first column) into the library.

Usage: python import_kanji_list.py PATH [--max N] [--no-lookup]
"""
import sys, os, argparse, csv
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
from llm_kanji_sentences import config, db, scheduler
from llm_kanji_sentences.errors import PersistenceError
from llm_kanji_sentences.library import KanjiLibrary
from llm_kanji_sentences.lookup import KanjiApiClient


def read_kanji_text(path: str, max_rows: int) -> str:
    """Concatenate the first column of up to ``max_rows`` rows."""
    chunks = []
    with open(path, newline="", encoding="utf-8") as f:
        for row in csv.reader(f):
            if len(chunks) >= max_rows:
                break
            if row:
                chunks.append(row[0])
    return "".join(chunks)


def main() -> None:
    parser = argparse.ArgumentParser(description="Import a Kanji list")
    parser.add_argument("path")
    parser.add_argument("--max", type=int, default=1000, help="Max rows to import")
    parser.add_argument("--no-lookup", action="store_true", help="Skip the JLPT lookup on kanjiapi.dev")
    parser.add_argument("--debug", action="store_true")
    args = parser.parse_args()
    config.configure_logging(args.debug)

    if not os.path.exists(args.path):
        print(f"❌ File not found: {args.path}"); sys.exit(1)

    db.init_db()
    library = KanjiLibrary(db.SnapshotStore(), lookup=None if args.no_lookup else KanjiApiClient()).load()
    try:
        added = library.add_kanji(read_kanji_text(args.path, args.max))
    except PersistenceError as e:
        print(f"❌ Import failed: {e}"); sys.exit(1)

    counts = scheduler.status_counts(library.kanji, scheduler.now_ms())
    print(f"\n📊 Kanji: {len(added)} added, {len(library)} tracked, {counts['new']} new, {counts['due']} due")
    if added:
        print(f"   Added: {''.join(k.character for k in added[:40])}{'…' if len(added) > 40 else ''}")


if __name__ == "__main__":
    main()
