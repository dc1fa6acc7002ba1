"""File parsing utilities that convert uploaded quiz files into a
normalized quiz-item list.

Supported input types: JSON, CSV, TXT and DOCX. Parsers return a list
of dictionaries with keys: `question`, `choices`, `correct_answer` and
`quiz_number` (None when the file does not number its items).
"""

import io
import json
import csv
import zipfile
from typing import List, Dict, Optional, Tuple
import docx
from docx.opc.exceptions import PackageNotFoundError


def parse_file_to_quiz_items(file_bytes: bytes, filename: str) -> List[Dict]:
    """Dispatch to the appropriate parser based on file extension."""
    name = filename.lower()
    if name.endswith('.json'):
        return parse_json(file_bytes)
    if name.endswith('.csv'):
        return parse_csv(file_bytes)
    if name.endswith('.txt'):
        return parse_txt(file_bytes)
    if name.endswith('.docx'):
        return parse_docx(file_bytes)
    raise ValueError('Unsupported file type')


def parse_json(b: bytes):
    """Parse a JSON array of quiz objects (or `{"quiz_items": [...]}`)."""
    try:
        data = json.loads(b.decode('utf-8-sig'))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f'invalid JSON file: {e}')
    if isinstance(data, dict):
        data = data.get('quiz_items') or data.get('items') or []
    if not isinstance(data, list):
        raise ValueError('JSON file must contain a list of quiz items')
    return [normalize_item(item) if isinstance(item, dict) else item for item in data]


def parse_csv(b: bytes):
    """Parse a CSV where a single column contains pipe-separated choices.

    Expected columns: `question`, `choices` (pipe separated) and optional
    `correct_answer`/`correct` naming the right choice and
    `quiz_number`/`number`. Without a correct column, choice markers
    (`*choice` or `choice (correct)`) are honoured.
    """
    out = []
    sio = io.StringIO(b.decode('utf-8-sig'))
    reader = csv.DictReader(sio)
    for row in reader:
        # Accept pipe-delimited choices so teachers can author simple CSVs quickly.
        raw = row.get('choices') or row.get('answers') or ''
        parts = [p.strip() for p in raw.split('|') if p.strip()]
        correct = row.get('correct_answer') or row.get('correct')
        if correct:
            choices = [_parse_choice_line(p)[0] for p in parts]
            correct_answer = correct.strip()
        else:
            choices, correct_answer = _choices_from_lines(parts)
        out.append({
            'question': str(row.get('question') or '').strip(),
            'choices': choices,
            'correct_answer': correct_answer,
            'quiz_number': _coerce_int(row.get('quiz_number') or row.get('number')),
        })
    return out


def parse_txt(b: bytes):
    """Parse a plaintext format where items are separated by blank lines.

    The first line of a block is the question, the following lines are
    choices. A marked choice is correct; otherwise the first one is.
    """
    s = b.decode('utf-8-sig').replace('\r\n', '\n')
    return _parse_blocks([sec.strip() for sec in s.split('\n\n') if sec.strip()])


def parse_docx(b: bytes):
    """Parse a DOCX document into quiz item blocks.

    Paragraph groups separated by empty paragraphs are treated as one
    item. If a block contains `|` it is parsed as
    `question|choice1|choice2...` otherwise the first line is the
    question and subsequent lines are choices.
    """
    try:
        doc = docx.Document(io.BytesIO(b))
    except (PackageNotFoundError, zipfile.BadZipFile, KeyError) as e:
        raise ValueError(f'invalid DOCX file: {e}')
    # Collect contiguous paragraphs into blocks separated by empty paragraphs
    blocks = []
    current = []
    for p in doc.paragraphs:
        text = (p.text or '').strip()
        if not text:
            if current:
                blocks.append('\n'.join(current))
                current = []
            continue
        current.append(text)
    if current:
        blocks.append('\n'.join(current))
    return _parse_blocks(blocks)


def _parse_blocks(blocks: List[str]) -> List[Dict]:
    out = []
    for blk in blocks:
        if '|' in blk:
            lines = [x.strip() for x in blk.split('|') if x.strip()]
        else:
            lines = [l.strip() for l in blk.splitlines() if l.strip()]
        if not lines:
            continue
        choices, correct_answer = _choices_from_lines(lines[1:])
        out.append({'question': lines[0], 'choices': choices, 'correct_answer': correct_answer, 'quiz_number': None})
    return out


def _choices_from_lines(lines: List[str]) -> Tuple[List[str], str]:
    choices = []
    correct_answer = None
    for l in lines:
        text, is_correct = _parse_choice_line(l)
        choices.append(text)
        if is_correct and correct_answer is None:
            correct_answer = text
    # unmarked blocks treat the first choice as correct
    if correct_answer is None and choices:
        correct_answer = choices[0]
    return choices, correct_answer or ''


def normalize_item(item: dict) -> dict:
    """Normalize a parsed quiz object (maps alternative keys to the
    canonical output shape).
    """
    choices = item.get('choices') or item.get('options') or item.get('answers') or []
    if isinstance(choices, list):
        choices = [str(c.get('text') or c.get('answer_text') or '') if isinstance(c, dict) else str(c) for c in choices]
    return {
        'question': item.get('question') or item.get('question_text') or '',
        'choices': choices,
        'correct_answer': item.get('correct_answer') or item.get('correctAnswer') or item.get('answer') or '',
        'quiz_number': _coerce_int(item.get('quiz_number') or item.get('quizNumber')),
    }


def _parse_choice_line(text: str) -> Tuple[str, bool]:
    """Detect simple correctness markers in a choice line.

    Supports leading '*' or trailing markers like '(correct)'; falls back to False.
    """
    is_correct = False
    cleaned = text.strip()
    lower = cleaned.lower()
    for marker in ('(correct)', '[correct]', '{correct}'):
        if lower.endswith(marker):
            is_correct = True
            cleaned = cleaned[: -len(marker)].strip()
            break
    if cleaned.startswith('*'):
        is_correct = True
        cleaned = cleaned.lstrip('*').strip()
    return cleaned, is_correct


def _coerce_int(val) -> Optional[int]:
    try:
        return int(val) if val is not None and str(val).strip() != '' else None
    except (TypeError, ValueError):
        return None
