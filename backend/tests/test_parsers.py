import io
import json
import zipfile

import docx
import pytest

from aklatan.utils.parsers import parse_file_to_quiz_items, normalize_item


def test_parse_json_list_and_wrapped():
    items = [{'question': 'Sino ang bida?', 'choices': ['Juan', 'Pedro'], 'correct_answer': 'Juan', 'quiz_number': 1}]
    parsed = parse_file_to_quiz_items(json.dumps(items).encode(), 'quiz.json')
    assert parsed == items
    wrapped = parse_file_to_quiz_items(json.dumps({'quiz_items': items}).encode(), 'QUIZ.JSON')
    assert wrapped == items


def test_parse_json_alternative_keys():
    item = normalize_item({
        'question_text': 'Saan?',
        'options': [{'text': 'Bahay'}, {'answer_text': 'Paaralan'}],
        'correctAnswer': 'Bahay',
        'quizNumber': '3',
    })
    assert item == {'question': 'Saan?', 'choices': ['Bahay', 'Paaralan'], 'correct_answer': 'Bahay', 'quiz_number': 3}


def test_parse_json_invalid():
    with pytest.raises(ValueError):
        parse_file_to_quiz_items(b'{not json', 'quiz.json')
    with pytest.raises(ValueError):
        parse_file_to_quiz_items(b'"just a string"', 'quiz.json')


def test_parse_csv_with_correct_column():
    csv_text = 'question,choices,correct_answer,quiz_number\nAnong kulay ng langit?,Asul|Pula|Berde,Asul,2\n'
    parsed = parse_file_to_quiz_items(csv_text.encode(), 'quiz.csv')
    assert parsed == [{'question': 'Anong kulay ng langit?', 'choices': ['Asul', 'Pula', 'Berde'], 'correct_answer': 'Asul', 'quiz_number': 2}]


def test_parse_csv_with_markers():
    csv_text = 'question,choices\nIlan ang paa ng aso?,Dalawa|*Apat|Anim\n'
    parsed = parse_file_to_quiz_items(csv_text.encode(), 'quiz.csv')
    assert parsed[0]['choices'] == ['Dalawa', 'Apat', 'Anim']
    assert parsed[0]['correct_answer'] == 'Apat'
    assert parsed[0]['quiz_number'] is None


def test_parse_txt_blocks():
    txt = 'Sino ang sumulat?\nRizal (correct)\nBonifacio\n\nSaan nakatira si Juan?\nMaynila\nCebu\n'
    parsed = parse_file_to_quiz_items(txt.encode(), 'quiz.txt')
    assert len(parsed) == 2
    assert parsed[0]['choices'] == ['Rizal', 'Bonifacio']
    assert parsed[0]['correct_answer'] == 'Rizal'
    # unmarked block: first choice wins
    assert parsed[1]['correct_answer'] == 'Maynila'
    assert parse_file_to_quiz_items(b'   \n\n', 'empty.txt') == []


def test_parse_docx_blocks():
    doc = docx.Document()
    doc.add_paragraph('Ano ang paboritong prutas ni Ana?')
    doc.add_paragraph('Mangga')
    doc.add_paragraph('*Saging')
    doc.add_paragraph('')
    doc.add_paragraph('Ilang taon si Ana?|Lima|*Anim')
    buf = io.BytesIO()
    doc.save(buf)
    parsed = parse_file_to_quiz_items(buf.getvalue(), 'quiz.docx')
    assert [p['question'] for p in parsed] == ['Ano ang paboritong prutas ni Ana?', 'Ilang taon si Ana?']
    assert parsed[0]['correct_answer'] == 'Saging'
    assert parsed[1]['choices'] == ['Lima', 'Anim']
    assert parsed[1]['correct_answer'] == 'Anim'


def test_parse_docx_invalid():
    with pytest.raises(ValueError, match='invalid DOCX file'):
        parse_file_to_quiz_items(b'not a zip', 'quiz.docx')
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, 'w') as zf:
        zf.writestr('hello.txt', 'hindi ito docx')
    with pytest.raises(ValueError, match='invalid DOCX file'):
        parse_file_to_quiz_items(buf.getvalue(), 'quiz.docx')


def test_unsupported_extension():
    with pytest.raises(ValueError, match='Unsupported file type'):
        parse_file_to_quiz_items(b'%PDF-1.4', 'quiz.pdf')
