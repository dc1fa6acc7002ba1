"""CLI script to import quiz items for a story from local files.
Usage: python scripts/import_quiz.py STORY_ID FILE [FILE ...] [--dry-run]
"""
import sys
import argparse
import pathlib
from typing import List
# Ensure `backend/` is on sys.path so `aklatan` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from aklatan.database import engine, create_db_and_tables
from aklatan import services


def main(story_id: int, files: List[pathlib.Path], dry_run: bool = False) -> int:
    """Import every file into `story_id` and print a per-file summary.

    Returns the total number of items created (or that would be created
    with `dry_run`).
    """
    create_db_and_tables()
    total = 0
    with Session(engine) as session:
        svc = services.QuizService(session)
        for f in files:
            if not f.exists():
                print(f'File not found: {f}')
                continue
            try:
                result = svc.import_quiz_items(story_id, f.read_bytes(), f.name, dry_run=dry_run)
            except (ValueError, LookupError) as e:
                print(f'Error importing {f}: {e}')
                continue
            count = result['valid'] if dry_run else result['created']
            total += count
            print(f"Imported {f}: {'valid' if dry_run else 'created'} {count}, errors {len(result['errors'])}")
            for err in result['errors']:
                print(f"  item {err['index'] + 1}: {err['error']}")
    print(f'Total quiz items: {total}')
    return total


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('story_id', type=int, help='Story that receives the quiz items')
    parser.add_argument('files', nargs='+', type=pathlib.Path, help='JSON, CSV, TXT or DOCX files')
    parser.add_argument('--dry-run', action='store_true', help='Validate without saving')
    args = parser.parse_args()
    main(args.story_id, args.files, dry_run=args.dry_run)
