import json
from urllib.parse import quote

import jwt
import pytest
from starlette.responses import Response

from aklatan.utils.student_session import (
    StudentInfo,
    WordSearchProgress,
    decode_student_info,
    encode_student_info,
    mark_word_found,
    read_progress,
    read_student,
    refresh_student_cookies,
    set_student_cookies,
    write_progress,
)


def _set_cookies(response):
    return [v.decode() for k, v in response.raw_headers if k == b"set-cookie"]


def test_student_info_round_trip_and_tampering():
    info = StudentInfo(name="Juan Dela Cruz", section="Sampaguita", authorized_code="ABC123", device_id="dev1")
    token = encode_student_info(info)
    assert decode_student_info(token) == info
    forged = jwt.encode({"name": "Juan", "section": "Sampaguita"}, "not-the-secret", algorithm="HS256")
    assert decode_student_info(forged) is None
    assert decode_student_info(None) is None


def test_read_student_requires_privacy_consent():
    token = encode_student_info(StudentInfo(name="Ana", section="Rosal"))
    assert read_student({"student_info": token}) is None
    assert read_student({"student_info": token, "privacy_consent": "true"}).name == "Ana"


def test_set_and_refresh_cookies():
    response = Response()
    set_student_cookies(response, StudentInfo(name="Ana", section="Rosal"))
    cookies = _set_cookies(response)
    assert any(c.startswith("student_info=") and "HttpOnly" in c for c in cookies)
    assert any(c.startswith("privacy_consent=true") for c in cookies)
    # cookies just issued by a handler are not overwritten
    refresh_student_cookies(response, {"student_info": "old", "privacy_consent": "true"})
    assert len(_set_cookies(response)) == 2

    fresh = Response()
    refresh_student_cookies(fresh, {"student_info": "tok", "privacy_consent": "true"})
    assert len(_set_cookies(fresh)) == 2
    untouched = Response()
    refresh_student_cookies(untouched, {})
    assert _set_cookies(untouched) == []


def test_mark_word_found_is_case_insensitive():
    progress = WordSearchProgress()
    progress = mark_word_found(progress, "aso", ["Aso", "Pusa"])
    assert progress.found_words == ["aso"]
    assert progress.new_word_found and not progress.is_finished

    again = mark_word_found(progress, "ASO", ["Aso", "Pusa"])
    assert again.found_words == ["aso"]
    assert not again.new_word_found

    done = mark_word_found(again, "Pusa", ["Aso", "Pusa"])
    assert done.is_finished

    with pytest.raises(ValueError):
        mark_word_found(done, "Ibon", ["Aso", "Pusa"])


def test_read_progress_handles_malformed_cookie():
    cookies = {"word_search_progress_3": "not json", "word_search_finished_3": "true"}
    progress = read_progress(cookies, 3)
    assert progress.found_words == []
    assert progress.is_finished

    good = {"word_search_progress_3": quote(json.dumps(["Aso"]), safe="")}
    assert read_progress(good, 3).found_words == ["Aso"]
    assert read_progress({}, 3).to_dict() == {"found_words": [], "is_finished": False, "new_word_found": False}


def test_write_progress_sets_both_cookies():
    response = Response()
    write_progress(response, 5, WordSearchProgress(found_words=["Aso"], is_finished=True))
    cookies = _set_cookies(response)
    assert any(c.startswith("word_search_progress_5=%5B%22Aso%22%5D") for c in cookies)
    assert any(c.startswith("word_search_finished_5=true") for c in cookies)
