"""Cookie helpers for anonymous student sessions and game progress.

Students never log in. After entering an access code they submit their
name and section, which is stored in a signed `student_info` cookie
next to a `privacy_consent` flag. Word-search progress is kept per
puzzle in plain cookies so it survives page reloads without any
server-side state.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import List, Mapping, Optional
from urllib.parse import quote, unquote

import jwt
from starlette.responses import Response

from ..config import settings

STUDENT_INFO_COOKIE = "student_info"
PRIVACY_CONSENT_COOKIE = "privacy_consent"
PROGRESS_COOKIE_DAYS = 30

_LOGGER = logging.getLogger("aklatan.api")


@dataclass
class StudentInfo:
    name: str
    section: str
    authorized_code: str = ""
    device_id: str = ""


def _cookie_kwargs(max_age: int) -> dict:
    return {
        "max_age": max_age,
        "httponly": True,
        "secure": settings.cookie_secure,
        "samesite": "strict",
        "path": "/",
    }


def encode_student_info(info: StudentInfo) -> str:
    payload = {
        "name": info.name,
        "section": info.section,
        "authorized_code": info.authorized_code,
        "device_id": info.device_id,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_student_info(raw: Optional[str]) -> Optional[StudentInfo]:
    """Verify and decode the `student_info` cookie; None if absent or tampered."""
    if not raw:
        return None
    try:
        payload = jwt.decode(raw, settings.JWT_SECRET, algorithms=["HS256"])
    except jwt.InvalidTokenError:
        _LOGGER.warning("rejected student_info cookie with invalid signature")
        return None
    name = payload.get("name")
    section = payload.get("section")
    if not name or not section:
        return None
    return StudentInfo(
        name=name,
        section=section,
        authorized_code=payload.get("authorized_code") or "",
        device_id=payload.get("device_id") or "",
    )


def read_student(cookies: Mapping[str, str]) -> Optional[StudentInfo]:
    """Return the student only when both session cookies are present."""
    if cookies.get(PRIVACY_CONSENT_COOKIE) != "true":
        return None
    return decode_student_info(cookies.get(STUDENT_INFO_COOKIE))


def set_student_cookies(response: Response, info: StudentInfo) -> None:
    kwargs = _cookie_kwargs(settings.STUDENT_COOKIE_MAX_AGE)
    response.set_cookie(STUDENT_INFO_COOKIE, encode_student_info(info), **kwargs)
    response.set_cookie(PRIVACY_CONSENT_COOKIE, "true", **kwargs)


def refresh_student_cookies(response: Response, cookies: Mapping[str, str]) -> None:
    """Re-issue existing session cookies with a fresh expiry."""
    info_raw = cookies.get(STUDENT_INFO_COOKIE)
    consent = cookies.get(PRIVACY_CONSENT_COOKIE)
    if not info_raw or not consent:
        return
    # a handler may have just issued new cookies; keep those
    if any(STUDENT_INFO_COOKIE.encode() in v for k, v in response.raw_headers if k == b"set-cookie"):
        return
    kwargs = _cookie_kwargs(settings.STUDENT_COOKIE_MAX_AGE)
    response.set_cookie(STUDENT_INFO_COOKIE, info_raw, **kwargs)
    response.set_cookie(PRIVACY_CONSENT_COOKIE, consent, **kwargs)


# word-search progress


@dataclass
class WordSearchProgress:
    found_words: List[str] = field(default_factory=list)
    is_finished: bool = False
    new_word_found: bool = False

    def to_dict(self) -> dict:
        return {"found_words": list(self.found_words), "is_finished": self.is_finished, "new_word_found": self.new_word_found}


def progress_cookie_name(word_search_id: int) -> str:
    return f"word_search_progress_{word_search_id}"


def finished_cookie_name(word_search_id: int) -> str:
    return f"word_search_finished_{word_search_id}"


def read_progress(cookies: Mapping[str, str], word_search_id: int) -> WordSearchProgress:
    """Load progress for one puzzle; malformed cookies count as no progress."""
    found: List[str] = []
    raw = cookies.get(progress_cookie_name(word_search_id))
    if raw:
        try:
            data = json.loads(unquote(raw))
            if isinstance(data, list):
                found = [str(w) for w in data]
        except ValueError:
            _LOGGER.warning("ignoring malformed progress cookie for word search %s", word_search_id)
    finished = cookies.get(finished_cookie_name(word_search_id)) == "true"
    return WordSearchProgress(found_words=found, is_finished=finished)


def mark_word_found(progress: WordSearchProgress, word: str, all_words: List[str]) -> WordSearchProgress:
    """Record `word` as found; comparisons ignore case.

    Raises ValueError when `word` is not one of `all_words`. The
    original casing of newly found words is kept for display.
    """
    normalized_all = [w.lower() for w in all_words]
    normalized = word.lower()
    if normalized not in normalized_all:
        raise ValueError("word not found in this word search")
    found = list(progress.found_words)
    new_word_found = normalized not in {w.lower() for w in found}
    if new_word_found:
        found.append(word)
    found_lower = {w.lower() for w in found}
    is_finished = all(w in found_lower for w in normalized_all)
    return WordSearchProgress(found_words=found, is_finished=is_finished, new_word_found=new_word_found)


def write_progress(response: Response, word_search_id: int, progress: WordSearchProgress) -> None:
    max_age = PROGRESS_COOKIE_DAYS * 24 * 60 * 60
    kwargs = {"max_age": max_age, "secure": settings.cookie_secure, "samesite": "strict", "path": "/"}
    response.set_cookie(progress_cookie_name(word_search_id), quote(json.dumps(progress.found_words), safe=""), **kwargs)
    response.set_cookie(finished_cookie_name(word_search_id), "true" if progress.is_finished else "false", **kwargs)


def reset_progress(response: Response, word_search_id: int) -> None:
    response.delete_cookie(progress_cookie_name(word_search_id), path="/")
    response.delete_cookie(finished_cookie_name(word_search_id), path="/")
