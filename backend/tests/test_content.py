from datetime import datetime

from fastapi.testclient import TestClient

from aklatan.main import app
from aklatan.services import CODE_ALPHABET, week_start
from aklatan.utils.video import (
    convert_to_embed_url,
    extract_youtube_video_id,
    format_file_size,
    generate_video_thumbnail,
)

client = TestClient(app)


def _story(headers, **overrides):
    payload = {'title': 'Si Pagong at si Matsing', 'file_link': 'https://youtu.be/abc123XYZ'}
    payload.update(overrides)
    r = client.post('/stories', json=payload, headers=headers)
    assert r.status_code == 201, r.text
    return r.json()


def _item(number, question='Sino ang matalino?', choices=('Pagong', 'Matsing'), correct='Pagong'):
    return {'quiz_number': number, 'question': question, 'choices': list(choices), 'correct_answer': correct}


def test_categories_and_story_references(admin_headers):
    r = client.post('/categories', json={'name': 'Alamat', 'description': 'Mga alamat'}, headers=admin_headers)
    assert r.status_code == 201
    cat = r.json()
    story = _story(admin_headers, category_id=cat['id'])
    assert story['category'] == {'id': cat['id'], 'name': 'Alamat'}
    r = client.patch(f"/stories/{story['id']}", json={'title': 'Alamat ng Ampalaya'}, headers=admin_headers)
    assert r.json()['category'] == {'id': cat['id'], 'name': 'Alamat'}

    listed = {c['id']: c for c in client.get('/categories', headers=admin_headers).json()}
    assert listed[cat['id']]['story_count'] == 1

    r = client.delete(f"/categories/{cat['id']}", headers=admin_headers)
    assert r.status_code == 409

    assert client.delete(f"/stories/{story['id']}", headers=admin_headers).status_code == 200
    assert client.delete(f"/categories/{cat['id']}", headers=admin_headers).status_code == 200
    assert client.get(f"/categories/{cat['id']}", headers=admin_headers).status_code == 404
    r = client.post(f"/categories/{cat['id']}/restore", headers=admin_headers)
    assert r.status_code == 200
    assert r.json()['deleted_at'] is None
    r = client.post(f"/stories/{story['id']}/restore", headers=admin_headers)
    assert r.json()['category'] == {'id': cat['id'], 'name': 'Alamat'}


def test_category_requires_name(admin_headers):
    r = client.post('/categories', json={'name': '   '}, headers=admin_headers)
    assert r.status_code == 400


def test_story_defaults_and_video_urls(admin_headers):
    story = _story(admin_headers, author='  ', subtitles=['Unang linya', ' '])
    assert story['author'] == 'Anonymous'
    assert story['embed_url'] == 'https://www.youtube-nocookie.com/embed/abc123XYZ'
    assert story['thumbnail_url'] is None
    assert story['subtitles'] == ['Unang linya']

    r = client.patch(f"/stories/{story['id']}", json={'title': 'Bagong pamagat'}, headers=admin_headers)
    assert r.json()['title'] == 'Bagong pamagat'
    assert client.post('/stories', json={'title': 'X', 'file_link': 'y', 'category_id': 99999}, headers=admin_headers).status_code == 400


def test_story_soft_delete_and_restore(admin_headers):
    story = _story(admin_headers)
    assert client.delete(f"/stories/{story['id']}", headers=admin_headers).json()['deleted_at'] is not None
    assert client.get(f"/stories/{story['id']}", headers=admin_headers).status_code == 404
    assert story['id'] not in [s['id'] for s in client.get('/stories', headers=admin_headers).json()]
    assert client.post(f"/stories/{story['id']}/restore", headers=admin_headers).status_code == 200
    assert client.get(f"/stories/{story['id']}", headers=admin_headers).status_code == 200


def test_quiz_item_validation(admin_headers):
    story = _story(admin_headers)
    r = client.post('/quiz-items', json=dict(_item(1), story_id=story['id']), headers=admin_headers)
    assert r.status_code == 201
    assert r.json()['correct_answer'] == 'Pagong'
    item_id = r.json()['id']

    bad = [
        _item(2, correct='Kalabaw'),
        _item(2, choices=('Pagong',)),
        _item(2, choices=('Pagong', 'Pagong')),
        _item(0),
    ]
    for payload in bad:
        r = client.post('/quiz-items', json=dict(payload, story_id=story['id']), headers=admin_headers)
        assert r.status_code == 400, payload
    assert client.post('/quiz-items', json=dict(_item(1), story_id=99999), headers=admin_headers).status_code == 404

    r = client.patch(f'/quiz-items/{item_id}', json={'correct_answer': 'Matsing'}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()['correct_answer'] == 'Matsing'
    assert client.delete(f'/quiz-items/{item_id}', headers=admin_headers).status_code == 200
    assert client.get(f'/quiz-items/{item_id}', headers=admin_headers).status_code == 404


def test_replace_story_quiz_items(admin_headers):
    story = _story(admin_headers)
    client.post('/quiz-items', json=dict(_item(1), story_id=story['id']), headers=admin_headers)
    r = client.put(f"/stories/{story['id']}/quiz-items", json=[_item(1, question='Una?'), _item(2, question='Ikalawa?')], headers=admin_headers)
    assert r.status_code == 200
    assert [i['question'] for i in r.json()] == ['Una?', 'Ikalawa?']
    current = client.get(f"/stories/{story['id']}/quiz-items", headers=admin_headers).json()
    assert [i['question'] for i in current] == ['Una?', 'Ikalawa?']

    r = client.put(f"/stories/{story['id']}/quiz-items", json=[_item(1), _item(1)], headers=admin_headers)
    assert r.status_code == 400
    # a rejected replacement leaves the quiz untouched
    assert len(client.get(f"/stories/{story['id']}/quiz-items", headers=admin_headers).json()) == 2


def test_create_story_with_quiz_is_all_or_nothing(admin_headers):
    payload = {'title': 'Ang Alamat ng Pinya', 'file_link': 'https://youtu.be/pinya01', 'quiz_items': [_item(1), _item(2, question='Sino si Pinang?')]}
    r = client.post('/stories/with-quiz', json=payload, headers=admin_headers)
    assert r.status_code == 201, r.text
    assert len(r.json()['quiz_items']) == 2

    broken = dict(payload, title='Hindi dapat malikha', quiz_items=[_item(1), _item(2, correct='Wala')])
    r = client.post('/stories/with-quiz', json=broken, headers=admin_headers)
    assert r.status_code == 400
    assert 'quiz item 2' in r.json()['detail']
    titles = [s['title'] for s in client.get('/stories', headers=admin_headers).json()]
    assert 'Hindi dapat malikha' not in titles
    with_quiz = client.get('/stories/with-quiz', headers=admin_headers).json()
    assert 'Ang Alamat ng Pinya' in [s['title'] for s in with_quiz]


def test_import_quiz_items_from_txt(admin_headers):
    story = _story(admin_headers)
    client.post('/quiz-items', json=dict(_item(1), story_id=story['id']), headers=admin_headers)
    txt = b'Ano ang kinain ni Matsing?\nSaging (correct)\nMangga\n\nWalang pagpipilian?\nIsa lang\n'
    url = f"/stories/{story['id']}/quiz-items/import"

    r = client.post(url, params={'dry_run': 'true'}, files={'file': ('quiz.txt', txt, 'text/plain')}, headers=admin_headers)
    assert r.status_code == 200
    assert r.json()['created'] == 0
    assert r.json()['valid'] == 1

    r = client.post(url, files={'file': ('quiz.txt', txt, 'text/plain')}, headers=admin_headers)
    body = r.json()
    assert body['created'] == 1
    assert [e['index'] for e in body['errors']] == [1]
    numbers = [i['quiz_number'] for i in client.get(f"/stories/{story['id']}/quiz-items", headers=admin_headers).json()]
    assert numbers == [1, 2]

    r = client.post(url, files={'file': ('quiz.pdf', b'%PDF', 'application/pdf')}, headers=admin_headers)
    assert r.status_code == 400
    r = client.post(url, files={'file': ('quiz.docx', b'not a zip', 'application/octet-stream')}, headers=admin_headers)
    assert r.status_code == 400
    assert r.json()['detail'].startswith('invalid DOCX file')


def test_access_codes(admin_headers):
    story = _story(admin_headers)
    r = client.post('/codes', json={'story_id': story['id']}, headers=admin_headers)
    assert r.status_code == 201
    code = r.json()
    assert len(code['code']) == 6
    assert all(ch in CODE_ALPHABET for ch in code['code'])
    assert code['status'] == 'active'

    r = client.get(f"/codes/lookup/{code['code'].lower()}", headers=admin_headers)
    assert r.status_code == 200
    assert r.json()['id'] == story['id']
    assert r.json()['is_active'] is True

    listed = client.get('/codes', params={'story_id': story['id']}, headers=admin_headers).json()
    assert [c['code'] for c in listed] == [code['code']]
    assert client.patch(f"/codes/{code['id']}/status", json={'status': 'paused'}, headers=admin_headers).status_code == 400
    assert client.patch(f"/codes/{code['id']}/status", json={'status': 'inactive'}, headers=admin_headers).json()['status'] == 'inactive'
    assert client.post('/codes', json={'story_id': 99999}, headers=admin_headers).status_code == 404
    assert client.delete(f"/codes/{code['id']}", headers=admin_headers).status_code == 200
    assert client.get(f"/codes/lookup/{code['code']}", headers=admin_headers).status_code == 404


def test_notifications_feed(admin_headers):
    client.post('/categories', json={'name': 'Pabula'}, headers=admin_headers)
    feed = client.get('/notifications', params={'mine': 'true'}, headers=admin_headers).json()
    assert feed[0]['type'] == 'category_created'
    assert "Pabula" in feed[0]['message']

    r = client.post(f"/notifications/{feed[0]['id']}/read", headers=admin_headers)
    assert r.json()['is_read'] is True
    client.post('/notifications/read-all', headers=admin_headers)
    assert client.get('/notifications', params={'unread_only': 'true'}, headers=admin_headers).json() == []
    assert client.get('/notifications', params={'limit': 0}, headers=admin_headers).status_code == 400
    assert client.post('/notifications/99999/read', headers=admin_headers).status_code == 404


def test_system_config_limits(admin_headers):
    try:
        cfg = client.get('/system-config', headers=admin_headers).json()
        assert (cfg['default_choices_count'], cfg['min_choices_count'], cfg['max_choices_count']) == (2, 2, 10)

        r = client.patch('/system-config', json={'min_choices_count': 3}, headers=admin_headers)
        assert r.status_code == 400
        assert r.json()['detail'] == 'Default choices count cannot be less than minimum choices count'
        assert client.patch('/system-config', json={'max_choices_count': 27}, headers=admin_headers).status_code == 400
        assert client.patch('/system-config', json={'min_choices_count': 1}, headers=admin_headers).status_code == 400

        r = client.patch('/system-config', json={'default_choices_count': 4, 'min_choices_count': 3}, headers=admin_headers)
        assert r.status_code == 200
        assert r.json()['min_choices_count'] == 3

        # the new minimum applies to quiz authoring
        story = _story(admin_headers)
        r = client.post('/quiz-items', json=dict(_item(1), story_id=story['id']), headers=admin_headers)
        assert r.status_code == 400
    finally:
        r = client.post('/system-config/reset', headers=admin_headers)
    assert r.json()['min_choices_count'] == 2
    assert r.json()['default_choices_count'] == 2


def test_video_helpers():
    assert extract_youtube_video_id('https://www.youtube.com/watch?v=dQw4w9WgXcQ&t=10') == 'dQw4w9WgXcQ'
    assert extract_youtube_video_id('https://www.youtube.com/watch?feature=share&v=abc') == 'abc'
    assert convert_to_embed_url('https://example.com/video.mp4') == 'https://example.com/video.mp4'
    thumb = generate_video_thumbnail('https://res.cloudinary.com/demo/video/upload/v1/stories/pagong.mp4')
    assert thumb == 'https://res.cloudinary.com/demo/image/upload/c_fill,g_auto,q_auto,so_auto/v1/stories/pagong.jpg'
    assert format_file_size(0) == '0 Bytes'
    assert format_file_size(10 * 1024 * 1024) == '10 MB'


def test_week_starts_on_sunday():
    assert week_start(datetime(2026, 10, 21, 15, 30)) == datetime(2026, 10, 18)
    assert week_start(datetime(2026, 10, 18, 8, 0)) == datetime(2026, 10, 18)
