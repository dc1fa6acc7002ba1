"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the Aklatan backend.
Controllers are intentionally thin: they accept requests, delegate to
services, and return JSON responses. Service exceptions are mapped to
status codes by the handlers registered below.

Endpoint groups:
- /auth, /api/user/update-status: staff login, invitations, sign-up callback
- /users, /invitations: staff administration (admin only)
- /categories, /stories, /quiz-items, /codes: content management
- /notifications, /system-config, /analytics, /student-logs: back office
- /word-searches, /mystery-box, /media: game content management
- /student: anonymous student flow (code, info, story, quiz, library)
- /games: public word-search and mystery box play
"""

from fastapi import FastAPI, Depends, UploadFile, File, HTTPException, Request
from fastapi.responses import JSONResponse, HTMLResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session
from typing import List, Optional
import os
import json
import logging
import time
import uuid
from .database import engine, create_db_and_tables, get_session
from . import services, models, schemas
from .auth import get_current_user, get_signup_identity, require_admin, require_staff
from .config import settings
from .utils.identity import IdentityProviderError
from .utils.media import MediaUploadError, get_media_client, verify_image
from .utils.rate_limit import InMemoryRateLimiter
from .utils.student_session import (
    StudentInfo,
    read_progress,
    read_student,
    refresh_student_cookies,
    reset_progress,
    set_student_cookies,
    write_progress,
)
from .utils.video import format_file_size

app = FastAPI(title="Aklatan Stories and Games API")
logger = logging.getLogger("aklatan.api")
if not logger.handlers:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
_code_rate_limiter = InMemoryRateLimiter()

# Wide-open CORS keeps local frontends working without extra config in dev.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()
with Session(engine) as _session:
    services.AuthService(_session).ensure_bootstrap_admin()

_LOGGED_PREFIXES = ("/student", "/games")


def _log_event(event: str, payload: dict, failed: bool = False) -> None:
    line = json.dumps(payload, ensure_ascii=True)
    if failed:
        logger.exception("%s %s", event, line)
    else:
        logger.info("%s %s", event, line)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    path = request.url.path
    base = {
        "request_id": req_id,
        "path": path,
        "method": request.method,
        "client": request.client.host if request.client else "unknown",
    }
    try:
        response = await call_next(request)
    except Exception:
        if path.startswith(_LOGGED_PREFIXES):
            _log_event("request_failed", dict(base, duration_ms=round((time.perf_counter() - started) * 1000.0, 2)), failed=True)
        raise
    response.headers["X-Request-ID"] = req_id
    if path.startswith("/student"):
        refresh_student_cookies(response, request.cookies)
    if path.startswith(_LOGGED_PREFIXES):
        _log_event("request_done", dict(
            base,
            status_code=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000.0, 2),
        ))
    return response


def _error(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.exception_handler(ValueError)
async def value_error_handler(request: Request, exc: ValueError):
    return _error(400, exc)


@app.exception_handler(services.ConflictError)
async def conflict_handler(request: Request, exc: services.ConflictError):
    return _error(409, exc)


@app.exception_handler(services.NotFoundError)
async def not_found_handler(request: Request, exc: services.NotFoundError):
    return _error(404, exc)


@app.exception_handler(services.PermissionDeniedError)
async def permission_handler(request: Request, exc: services.PermissionDeniedError):
    return _error(403, exc)


@app.exception_handler(IdentityProviderError)
async def identity_error_handler(request: Request, exc: IdentityProviderError):
    logger.error("identity provider error on %s: %s", request.url.path, exc)
    return _error(404 if exc.not_found else 502, exc)


@app.exception_handler(MediaUploadError)
async def media_error_handler(request: Request, exc: MediaUploadError):
    logger.error("media storage error on %s: %s", request.url.path, exc)
    return _error(502, exc)


def _row(obj, exclude=()) -> dict:
    """Column values of a table row (reloads expired attributes)."""
    return {k: getattr(obj, k) for k in obj.__table__.columns.keys() if k not in exclude}


def _student_dict(student: StudentInfo) -> dict:
    return {"name": student.name, "section": student.section, "authorized_code": student.authorized_code}


def get_student(request: Request) -> StudentInfo:
    """Dependency returning the student stored in the session cookies."""
    student = read_student(request.cookies)
    if not student:
        raise HTTPException(status_code=401, detail="student information required")
    return student


def _read_upload(file: UploadFile) -> bytes:
    if not file.filename:
        raise HTTPException(status_code=400, detail="no file")
    if len(file.filename) > 200 or "/" in file.filename or "\\" in file.filename:
        raise HTTPException(status_code=400, detail="invalid filename")
    content = file.file.read(settings.MAX_UPLOAD_BYTES + 1)
    if len(content) > settings.MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=400, detail=f"file too large (max {format_file_size(settings.MAX_UPLOAD_BYTES)})")
    return content


def _enforce_code_rate_limit(request: Request) -> None:
    key = f"{request.client.host if request.client else 'unknown'}:{request.url.path}"
    allowed, retry_after = _code_rate_limiter.allow(
        key, settings.CODE_RATE_LIMIT_PER_MIN, settings.CODE_RATE_LIMIT_WINDOW_SECONDS
    )
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"too many attempts; retry after {retry_after}s",
            headers={"Retry-After": str(retry_after)},
        )


# auth

@app.post('/auth/login')
def login(payload: schemas.LoginIn, db: Session = Depends(get_session)):
    """Authenticate a staff member and return a short-lived JWT token.

    Only available with the local identity provider; the token carries
    `user_id`, `email` and `role`.
    """
    if settings.AUTH_PROVIDER != "local":
        raise HTTPException(status_code=400, detail="password login is disabled; sign in through the identity provider")
    token = services.AuthService(db).authenticate(payload.email, payload.password)
    if not token:
        raise HTTPException(status_code=401, detail='invalid credentials')
    return {'access_token': token}


@app.post('/auth/accept-invitation')
def accept_invitation(payload: schemas.AcceptInvitationIn, db: Session = Depends(get_session)):
    """Set a password for an invited account and log it in."""
    auth = services.AuthService(db)
    user = auth.accept_invitation(payload.invitation_id, payload.password)
    return {'user': services.user_to_dict(user), 'access_token': auth.issue_token(user)}


@app.get('/auth/me')
def me(user: models.User = Depends(get_current_user)):
    return services.user_to_dict(user)


@app.post('/api/user/update-status')
def update_user_status(
    payload: schemas.UpdateStatusIn,
    db: Session = Depends(get_session),
    clerk_id: Optional[str] = Depends(get_signup_identity),
):
    """Sign-up callback: flip an invited user to active."""
    message = services.UserService(db).activate_invited_user(payload.email, clerk_id=clerk_id)
    return {'success': True, 'message': message}


# users

@app.get('/users')
def list_users(db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    return [services.user_to_dict(u) for u in services.UserService(db, user).get_users()]


@app.post('/users', status_code=201)
def create_user(payload: schemas.UserIn, db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    created = services.UserService(db, user).create_user(payload.model_dump())
    return services.user_to_dict(created)


@app.post('/users/invite', status_code=201)
def invite_user(payload: schemas.InviteUserIn, db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    created, invitation = services.UserService(db, user).invite_user(payload.model_dump())
    return {'user': services.user_to_dict(created), 'invitation': invitation}


@app.get('/users/{user_id}')
def get_user(user_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    return services.user_to_dict(services.UserService(db, user).get_user(user_id))


@app.patch('/users/{user_id}')
def update_user(user_id: int, payload: schemas.UserUpdate, db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    updated = services.UserService(db, user).update_user(user_id, payload.model_dump(exclude_unset=True))
    return services.user_to_dict(updated)


@app.delete('/users/{user_id}')
def delete_user(user_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    if user_id == user.id:
        raise HTTPException(status_code=400, detail='you cannot delete your own account')
    return {'success': True, 'message': services.UserService(db, user).delete_user(user_id)}


@app.post('/users/{user_id}/resend-invitation')
def resend_invitation(user_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    return {'invitation': services.UserService(db, user).resend_invitation(user_id)}


@app.get('/invitations')
def list_invitations(status: Optional[str] = None, db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    return services.UserService(db, user).get_invitations(status=status)


@app.post('/invitations/{invitation_id}/revoke')
def revoke_invitation(invitation_id: str, db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    return services.UserService(db, user).revoke_invitation(invitation_id)


# categories

@app.get('/categories')
def list_categories(db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return services.CategoryService(db, user).get_categories()


@app.post('/categories', status_code=201)
def create_category(payload: schemas.CategoryIn, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return _row(services.CategoryService(db, user).create_category(payload.name, payload.description))


@app.get('/categories/{category_id}')
def get_category(category_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return _row(services.CategoryService(db, user).get_category(category_id))


@app.patch('/categories/{category_id}')
def update_category(category_id: int, payload: schemas.CategoryUpdate, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return _row(services.CategoryService(db, user).update_category(category_id, payload.model_dump(exclude_unset=True)))


@app.delete('/categories/{category_id}')
def delete_category(category_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return _row(services.CategoryService(db, user).delete_category(category_id))


@app.post('/categories/{category_id}/restore')
def restore_category(category_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return _row(services.CategoryService(db, user).restore_category(category_id))


# stories and quizzes

@app.get('/stories')
def list_stories(category_id: Optional[int] = None, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    """List live stories with their category and quiz/code/submission counts."""
    return services.StoryService(db, user).get_stories(category_id)


@app.post('/stories', status_code=201)
def create_story(payload: schemas.StoryIn, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    stories = services.StoryService(db, user)
    story = stories.create_story(payload.model_dump())
    return stories.get_story_detail(story.id)


@app.get('/stories/with-quiz')
def list_stories_with_quiz(db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return services.StoryService(db, user).get_stories_with_quiz()


@app.post('/stories/with-quiz', status_code=201)
def create_story_with_quiz(payload: schemas.StoryWithQuizIn, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    """Create a story and its quiz in a single transaction."""
    data = payload.model_dump()
    items = data.pop('quiz_items')
    story = services.QuizService(db, user).create_story_with_quiz(data, items)
    return services.StoryService(db, user).get_story_detail(story.id)


@app.get('/stories/{story_id}')
def get_story(story_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return services.StoryService(db, user).get_story_detail(story_id)


@app.patch('/stories/{story_id}')
def update_story(story_id: int, payload: schemas.StoryUpdate, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    stories = services.StoryService(db, user)
    story = stories.update_story(story_id, payload.model_dump(exclude_unset=True))
    return stories.get_story_detail(story.id)


@app.delete('/stories/{story_id}')
def delete_story(story_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    story = services.StoryService(db, user).delete_story(story_id)
    return {'id': story.id, 'deleted_at': story.deleted_at}


@app.post('/stories/{story_id}/restore')
def restore_story(story_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    stories = services.StoryService(db, user)
    return stories.get_story_detail(stories.restore_story(story_id).id)


@app.get('/stories/{story_id}/quiz-items')
def list_story_quiz_items(story_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    items = services.QuizService(db, user).get_quiz_items_by_story(story_id)
    return [services.quiz_item_to_dict(i) for i in items]


@app.put('/stories/{story_id}/quiz-items')
def replace_story_quiz_items(story_id: int, payload: List[schemas.QuizItemBase], db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    """Replace every quiz item of a story (old items are soft-deleted)."""
    items = services.QuizService(db, user).update_story_quiz_items(story_id, [p.model_dump() for p in payload])
    return [services.quiz_item_to_dict(i) for i in items]


@app.post('/stories/{story_id}/quiz-items/import')
def import_quiz_items(story_id: int, dry_run: bool = False, file: UploadFile = File(...), db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    """Upload a JSON, CSV, TXT or DOCX file and append the quiz items found.

    Returns a JSON summary with the created count and per-item errors.
    """
    content = _read_upload(file)
    res = services.QuizService(db, user).import_quiz_items(story_id, content, file.filename, dry_run=dry_run)
    return JSONResponse(status_code=200, content=res)


@app.get('/stories/{story_id}/views')
def story_view_stats(story_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    services.StoryService(db, user).get_story(story_id)
    return services.StudentService(db).get_story_view_stats(story_id)


@app.post('/quiz-items', status_code=201)
def create_quiz_item(payload: schemas.QuizItemIn, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return services.quiz_item_to_dict(services.QuizService(db, user).create_quiz_item(payload.model_dump()))


@app.get('/quiz-items/{item_id}')
def get_quiz_item(item_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return services.quiz_item_to_dict(services.QuizService(db, user).get_quiz_item(item_id))


@app.patch('/quiz-items/{item_id}')
def update_quiz_item(item_id: int, payload: schemas.QuizItemUpdate, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    item = services.QuizService(db, user).update_quiz_item(item_id, payload.model_dump(exclude_unset=True))
    return services.quiz_item_to_dict(item)


@app.delete('/quiz-items/{item_id}')
def delete_quiz_item(item_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    item = services.QuizService(db, user).delete_quiz_item(item_id)
    return {'id': item.id, 'deleted_at': item.deleted_at}


# codes

@app.get('/codes')
def list_codes(story_id: Optional[int] = None, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return services.CodeService(db, user).get_codes(story_id)


@app.post('/codes', status_code=201)
def generate_code(payload: schemas.CodeCreateIn, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return _row(services.CodeService(db, user).generate_code(payload.story_id))


@app.get('/codes/lookup/{code}')
def lookup_code(code: str, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return services.CodeService(db, user).get_story_by_code(code)


@app.patch('/codes/{code_id}/status')
def set_code_status(code_id: int, payload: schemas.StatusIn, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return _row(services.CodeService(db, user).set_code_status(code_id, payload.status))


@app.delete('/codes/{code_id}')
def delete_code(code_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return _row(services.CodeService(db, user).delete_code(code_id))


# back office

@app.get('/notifications')
def list_notifications(limit: int = 50, unread_only: bool = False, mine: bool = False, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    """Newest notifications first; `mine` limits to the caller plus broadcasts."""
    rows = services.NotificationService(db, user).get_notifications(user.id if mine else None, limit, unread_only)
    return [_row(n) for n in rows]


@app.post('/notifications/read-all')
def mark_all_notifications_read(mine: bool = False, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return {'updated': services.NotificationService(db, user).mark_all_read(user.id if mine else None)}


@app.post('/notifications/{notification_id}/read')
def mark_notification_read(notification_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return _row(services.NotificationService(db, user).mark_read(notification_id))


@app.get('/system-config')
def get_system_config(db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return _row(services.SystemConfigService(db, user).get_system_config())


@app.patch('/system-config')
def update_system_config(payload: schemas.SystemConfigUpdate, db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    return _row(services.SystemConfigService(db, user).update_system_config(payload.model_dump(exclude_unset=True)))


@app.post('/system-config/reset')
def reset_system_config(db: Session = Depends(get_session), user: models.User = Depends(require_admin)):
    return _row(services.SystemConfigService(db, user).reset_system_config())


@app.get('/analytics/weekly-trends')
def weekly_trends(db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return services.AnalyticsService(db).get_weekly_trends()


@app.get('/analytics/summary')
def dashboard_summary(db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return services.AnalyticsService(db).get_dashboard_summary()


@app.get('/analytics/story-views')
def story_views(story_id: Optional[int] = None, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return services.StudentService(db).get_story_view_stats(story_id)


@app.get('/student-logs/codes')
def student_log_codes(db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return services.StudentLogService(db).get_codes_with_stats()


@app.get('/student-logs/codes/{code_id}')
def student_log_code_detail(code_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return services.StudentLogService(db).get_code_details_with_student_data(code_id)


@app.get('/student-logs/submissions/{submission_id}')
def student_log_submission(submission_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return services.StudentLogService(db).get_student_submission_details(submission_id)


# game content

@app.get('/word-searches')
def list_word_searches(db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    svc = services.WordSearchService(db, user)
    return [svc.to_dict(ws) for ws in svc.get_word_searches()]


@app.post('/word-searches', status_code=201)
def create_word_search(payload: schemas.WordSearchIn, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    svc = services.WordSearchService(db, user)
    ws = svc.create_word_search(payload.title, [w.model_dump() for w in payload.words], payload.description, payload.status)
    return svc.to_dict(ws)


@app.get('/word-searches/{word_search_id}')
def get_word_search(word_search_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    svc = services.WordSearchService(db, user)
    return svc.to_dict(svc.get_word_search(word_search_id))


@app.patch('/word-searches/{word_search_id}/status')
def update_word_search_status(word_search_id: int, payload: schemas.StatusIn, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    svc = services.WordSearchService(db, user)
    return svc.to_dict(svc.update_word_search_status(word_search_id, payload.status))


@app.delete('/word-searches/{word_search_id}')
def delete_word_search(word_search_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    ws = services.WordSearchService(db, user).delete_word_search(word_search_id)
    return {'id': ws.id, 'deleted_at': ws.deleted_at}


@app.get('/mystery-box')
def list_mystery_box_items(db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return [_row(i) for i in services.MysteryBoxService(db, user).get_all_mystery_box_items()]


@app.post('/mystery-box', status_code=201)
def create_mystery_box_item(payload: schemas.MysteryBoxItemIn, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return _row(services.MysteryBoxService(db, user).create_mystery_box_item(payload.model_dump()))


@app.post('/mystery-box/bulk', status_code=201)
def create_mystery_box_items(payload: schemas.MysteryBoxBulkIn, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    items = services.MysteryBoxService(db, user).create_mystery_box_items(
        [i.model_dump(exclude_unset=True) for i in payload.items], status=payload.status
    )
    return [_row(i) for i in items]


@app.patch('/mystery-box/{item_id}')
def update_mystery_box_item(item_id: int, payload: schemas.MysteryBoxItemUpdate, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return _row(services.MysteryBoxService(db, user).update_mystery_box_item(item_id, payload.model_dump(exclude_unset=True)))


@app.patch('/mystery-box/{item_id}/status')
def update_mystery_box_status(item_id: int, payload: schemas.StatusIn, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    return _row(services.MysteryBoxService(db, user).update_status(item_id, payload.status))


@app.delete('/mystery-box/{item_id}')
def delete_mystery_box_item(item_id: int, db: Session = Depends(get_session), user: models.User = Depends(require_staff)):
    item = services.MysteryBoxService(db, user).delete_mystery_box_item(item_id)
    return {'id': item.id, 'deleted_at': item.deleted_at}


@app.post('/media/images', status_code=201)
def upload_image(file: UploadFile = File(...), user: models.User = Depends(require_staff)):
    """Upload a staff image to media storage and return its URL."""
    content = _read_upload(file)
    try:
        verify_image(content)
    except MediaUploadError:
        raise HTTPException(status_code=415, detail='unsupported file content; expected an image')
    return {'url': get_media_client().upload_image(content)}


# student flow

@app.post('/student/code')
def enter_code(payload: schemas.CodeEntryIn, request: Request, db: Session = Depends(get_session)):
    """Check an access code; returns where the student goes next."""
    _enforce_code_rate_limit(request)
    return services.CodeService(db).validate_code_entry(payload.code, read_student(request.cookies))


@app.post('/student/info')
def submit_student_info(payload: schemas.StudentInfoIn, response: Response, db: Session = Depends(get_session)):
    """Store name and section in the signed session cookies."""
    info, redirect_to = services.StudentService(db).submit_student_info(
        payload.name, payload.section, payload.code, payload.device_id
    )
    set_student_cookies(response, info)
    return {'redirect_to': redirect_to, 'student': _student_dict(info)}


@app.get('/student/me')
def student_me(student: StudentInfo = Depends(get_student)):
    return _student_dict(student)


@app.get('/student/story/{code}')
def student_story(code: str, db: Session = Depends(get_session), student: StudentInfo = Depends(get_student)):
    """Open the story behind a code and record the view."""
    return services.StudentService(db).get_story_for_student(code, student)


@app.get('/student/quiz/{code}')
def student_quiz(code: str, db: Session = Depends(get_session), student: StudentInfo = Depends(get_student)):
    return services.QuizService(db).get_quiz_for_student(code, student)


@app.post('/student/quiz/{code}/submit')
def submit_quiz(code: str, submission: schemas.QuizSubmissionIn, db: Session = Depends(get_session), student: StudentInfo = Depends(get_student)):
    """Grade a quiz submission; a student may submit once per code."""
    answers = [a.model_dump() for a in submission.answers]
    return services.QuizService(db).submit_quiz(code, student, answers)


@app.get('/student/quiz/{code}/results')
def quiz_results(code: str, db: Session = Depends(get_session), student: StudentInfo = Depends(get_student)):
    return services.QuizService(db).get_submission_results(code, student)


@app.get('/student/library')
def student_library(db: Session = Depends(get_session), student: StudentInfo = Depends(get_student)):
    return services.StudentService(db).get_student_viewed_stories(student)


# public games

@app.get('/games/word-search')
def list_active_word_searches(db: Session = Depends(get_session)):
    svc = services.WordSearchService(db)
    return [svc.to_dict(ws, include_words=False) for ws in svc.get_active_word_searches()]


@app.get('/games/word-search/{word_search_id}')
def play_word_search(word_search_id: int, request: Request, seed: Optional[int] = None, db: Session = Depends(get_session)):
    """Generate the puzzle grid; pass the returned `seed` back when selecting."""
    svc = services.WordSearchService(db)
    ws, puzzle = svc.build_puzzle(word_search_id, seed=seed)
    descriptions = {i.word: i.description for i in ws.items if i.deleted_at is None}
    return svc.puzzle_payload(ws, puzzle, descriptions, read_progress(request.cookies, word_search_id))


@app.post('/games/word-search/{word_search_id}/select')
def select_word(word_search_id: int, payload: schemas.SelectionIn, request: Request, response: Response, db: Session = Depends(get_session)):
    """Check a drag selection; a found word is saved in the progress cookie."""
    progress = read_progress(request.cookies, word_search_id)
    start = (payload.start.row, payload.start.col)
    end = (payload.end.row, payload.end.col)
    match, progress = services.WordSearchService(db).select_word(word_search_id, payload.seed, start, end, progress)
    if match is not None:
        write_progress(response, word_search_id, progress)
    return {
        'found': match is not None,
        'word': match.original_word if match else None,
        'positions': [{'row': r, 'col': c} for r, c in match.positions] if match else [],
        'progress': progress.to_dict(),
    }


@app.get('/games/word-search/{word_search_id}/progress')
def get_word_search_progress(word_search_id: int, request: Request):
    return read_progress(request.cookies, word_search_id).to_dict()


@app.delete('/games/word-search/{word_search_id}/progress')
def reset_word_search_progress(word_search_id: int, response: Response):
    reset_progress(response, word_search_id)
    return {'found_words': [], 'is_finished': False}


@app.get('/games/mystery-box')
def list_public_mystery_box(db: Session = Depends(get_session)):
    items = services.MysteryBoxService(db).get_mystery_box_items()
    return [services.MysteryBoxService.public_dict(i) for i in items]


@app.post('/games/mystery-box/{item_id}/check')
def check_mystery_box_answer(item_id: int, payload: schemas.MysteryBoxAnswerIn, db: Session = Depends(get_session)):
    return services.MysteryBoxService(db).check_answer(item_id, payload.answer)


@app.get("/", response_class=HTMLResponse)
def home():
    """Minimal homepage for quick manual testing."""
    return """
    <!DOCTYPE html>
    <html>
    <head>
      <meta charset="UTF-8" />
      <title>Aklatan API</title>
      <style>
        body { font-family: Arial, sans-serif; margin: 32px; }
        a { color: #0a6; }
        .card { max-width: 640px; padding: 16px; border: 1px solid #ddd; border-radius: 8px; }
      </style>
    </head>
    <body>
      <div class="card">
        <h1>Aklatan Stories and Games API</h1>
        <p>Quick links for local testing:</p>
        <ul>
          <li><a href="/docs">Swagger UI</a></li>
          <li><a href="/games/word-search">Active word searches</a></li>
          <li><a href="/games/mystery-box">Mystery box items</a></li>
        </ul>
        <p>Staff: use <code>/auth/login</code> to get a token. Students: post an access code to
        <code>/student/code</code>, then name and section to <code>/student/info</code>.</p>
      </div>
    </body>
    </html>
    """


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
