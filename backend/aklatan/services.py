"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories,
collaborators (identity provider, media storage) and auxiliary logic.
Services are intentionally thin: they perform validation, execute
domain logic and persist aggregates via repositories.

Errors are signalled with plain exceptions which the HTTP layer maps to
status codes: `ValueError` (400), `NotFoundError` (404),
`ConflictError` (409) and `PermissionDeniedError` (403).
"""

import logging
import re
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import jwt
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session

from . import models, repositories
from .config import settings
from .models import utcnow
from .utils.identity import IdentityProviderError, LocalIdentityProvider, get_identity_provider
from .utils.media import MediaUploadError, get_media_client, is_cloudinary_url, is_data_url
from .utils.parsers import parse_file_to_quiz_items
from .utils.student_session import StudentInfo, WordSearchProgress, mark_word_found
from .utils.video import convert_to_embed_url, generate_video_thumbnail
from .utils.word_search import Puzzle, generate_puzzle, match_selection

logger = logging.getLogger("aklatan.services")

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

ROLES = ("admin", "teacher")
USER_STATUSES = ("active", "inactive", "invited")
CONTENT_STATUSES = ("active", "inactive")

PASSING_PERCENTAGE = 75.0
CODE_LENGTH = 6
# no 0/O or 1/I/L so codes survive being read aloud
CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
MIN_CODE_ENTRY_LENGTH = 4
MIN_STUDENT_FIELD_LENGTH = 2
CHOICE_LIMIT = 26


class NotFoundError(LookupError):
    """Requested row does not exist or was soft-deleted."""


class ConflictError(ValueError):
    """Operation collides with existing data (duplicates, references)."""


class PermissionDeniedError(Exception):
    """A student tried to reach content the access rules do not allow."""


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _require_text(value: Optional[str], field: str) -> str:
    cleaned = _clean(value)
    if not cleaned:
        raise ValueError(f"{field} is required")
    return cleaned


def _check_choice(value: str, allowed, field: str) -> str:
    if value not in allowed:
        raise ValueError(f"{field} must be one of: {', '.join(allowed)}")
    return value


def _percentage(score: Optional[int], total: Optional[int]) -> float:
    return round(((score or 0) / (total or 1)) * 100, 2)


def user_to_dict(user: models.User) -> dict:
    return {
        "id": user.id,
        "clerk_id": user.clerk_id,
        "email": user.email,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "role": user.role,
        "status": user.status,
        "created_at": user.created_at,
        "modified_at": user.modified_at,
    }


def story_to_dict(story: models.Story, category: Optional[models.Category] = None, **extra) -> dict:
    """Public shape of a story, with the derived video URLs."""
    out = {
        "id": story.id,
        "title": story.title,
        "author": story.author,
        "description": story.description,
        "file_link": story.file_link,
        "embed_url": convert_to_embed_url(story.file_link),
        "thumbnail_url": generate_video_thumbnail(story.file_link),
        "subtitles": list(story.subtitles or []),
        "category_id": story.category_id,
        "category": {"id": category.id, "name": category.name} if category else None,
        "created_at": story.created_at,
        "updated_at": story.updated_at,
    }
    out.update(extra)
    return out


def quiz_item_to_dict(item: models.QuizItem, reveal: bool = True) -> dict:
    out = {
        "id": item.id,
        "story_id": item.story_id,
        "quiz_number": item.quiz_number,
        "question": item.question,
        "choices": list(item.choices or []),
    }
    if reveal:
        out["correct_answer"] = item.correct_answer
    return out


class AuthService:
    """Staff authentication for the local identity provider."""
    def __init__(self, session: Session):
        self.session = session
        self.user_repo = repositories.UserRepository(session)

    @staticmethod
    def hash_password(password: str) -> str:
        return PWD_CTX.hash(password)

    def issue_token(self, user: models.User) -> str:
        expire = datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRE_HOURS)
        payload = {"user_id": user.id, "email": user.email, "role": user.role, "exp": int(expire.timestamp())}
        return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)

    def authenticate(self, email: str, password: str) -> Optional[str]:
        """Verify credentials and return a signed JWT token on success.

        Returns `None` if authentication fails, including for invited or
        inactive accounts.
        """
        user = self.user_repo.get_by_email(email or "")
        if not user or user.status != "active" or not user.password_hash:
            return None
        if not PWD_CTX.verify(password, user.password_hash):
            return None
        return self.issue_token(user)

    def accept_invitation(self, invitation_id: str, password: str) -> models.User:
        """Redeem a local invitation: set the password and activate the user."""
        if settings.AUTH_PROVIDER != "local":
            raise ValueError("invitations are accepted through the identity provider sign-up page")
        provider = LocalIdentityProvider(self.session)
        try:
            invitation = provider.accept_invitation(invitation_id)
        except IdentityProviderError as e:
            raise NotFoundError(str(e))
        user_id = invitation["public_metadata"].get("userId")
        user = self.user_repo.get(user_id) if user_id else None
        if user is None:
            user = self.user_repo.get_by_email(invitation["email_address"])
        if user is None:
            raise NotFoundError("user for this invitation no longer exists")
        user.password_hash = self.hash_password(password)
        user.status = "active"
        user.modified_at = utcnow()
        return self.user_repo.save(user)

    def ensure_bootstrap_admin(self) -> Optional[models.User]:
        """Create the configured admin when the user table is empty."""
        if not settings.ADMIN_EMAIL or self.user_repo.count() > 0:
            return None
        admin = models.User(
            email=settings.ADMIN_EMAIL,
            first_name="Admin",
            last_name="User",
            role="admin",
            status="active",
            password_hash=self.hash_password(settings.ADMIN_PASSWORD) if settings.ADMIN_PASSWORD else None,
        )
        logger.info("bootstrapping admin account %s", settings.ADMIN_EMAIL)
        return self.user_repo.create(admin)


class NotificationService:
    """Activity feed shown to staff. Writes never fail the calling action."""
    def __init__(self, session: Session, actor: Optional[models.User] = None):
        self.session = session
        self.actor = actor
        self.repo = repositories.NotificationRepository(session)

    def create_notification(self, type: str, message: str, user_id: Optional[int] = None) -> Optional[models.Notification]:
        if user_id is None and self.actor is not None:
            user_id = self.actor.id
        try:
            return self.repo.create(models.Notification(user_id=user_id, type=type, message=message))
        except SQLAlchemyError:
            logger.exception("failed to create %s notification", type)
            self.session.rollback()
            return None

    def get_notifications(self, user_id: Optional[int] = None, limit: int = 50, unread_only: bool = False) -> List[models.Notification]:
        if limit < 1:
            raise ValueError("limit must be >= 1")
        return self.repo.list(user_id=user_id, limit=min(limit, 200), unread_only=unread_only)

    def mark_read(self, notification_id: int) -> models.Notification:
        n = self.repo.get(notification_id)
        if not n:
            raise NotFoundError("notification not found")
        n.is_read = True
        n.updated_at = utcnow()
        return self.repo.save(n)

    def mark_all_read(self, user_id: Optional[int] = None) -> int:
        return self.repo.mark_all_read(user_id, utcnow())


class SystemConfigService:
    """Quiz authoring limits stored in a singleton row."""
    def __init__(self, session: Session, actor: Optional[models.User] = None):
        self.session = session
        self.repo = repositories.SystemConfigRepository(session)
        self.notifier = NotificationService(session, actor)

    def get_system_config(self) -> models.SystemConfig:
        return self.repo.get_or_create()

    @staticmethod
    def validate_limits(default: int, minimum: int, maximum: int) -> None:
        if minimum < 2:
            raise ValueError("Minimum choices count cannot be less than 2")
        if maximum > CHOICE_LIMIT:
            raise ValueError("Maximum choices count cannot exceed 26 (A-Z)")
        if minimum > maximum:
            raise ValueError("Minimum choices count cannot be greater than maximum choices count")
        if default < minimum:
            raise ValueError("Default choices count cannot be less than minimum choices count")
        if default > maximum:
            raise ValueError("Default choices count cannot be greater than maximum choices count")

    def update_system_config(self, changes: Dict[str, int]) -> models.SystemConfig:
        """Apply a partial update; limits are validated on the merged values."""
        cfg = self.get_system_config()
        merged = {
            "default_choices_count": cfg.default_choices_count,
            "min_choices_count": cfg.min_choices_count,
            "max_choices_count": cfg.max_choices_count,
        }
        merged.update({k: v for k, v in changes.items() if v is not None and k in merged})
        self.validate_limits(merged["default_choices_count"], merged["min_choices_count"], merged["max_choices_count"])
        for k, v in merged.items():
            setattr(cfg, k, v)
        cfg.updated_at = utcnow()
        cfg = self.repo.save(cfg)
        self.notifier.create_notification("system_config_updated", "Na-update ang system configuration")
        return cfg

    def reset_system_config(self) -> models.SystemConfig:
        cfg = self.get_system_config()
        defaults = models.SystemConfig()
        cfg.default_choices_count = defaults.default_choices_count
        cfg.min_choices_count = defaults.min_choices_count
        cfg.max_choices_count = defaults.max_choices_count
        cfg.updated_at = utcnow()
        cfg = self.repo.save(cfg)
        self.notifier.create_notification("system_config_reset", "Na-reset ang system configuration sa mga default na halaga")
        return cfg


class UserService:
    """Staff accounts backed by the configured identity provider."""
    def __init__(self, session: Session, actor: Optional[models.User] = None, provider=None):
        self.session = session
        self.repo = repositories.UserRepository(session)
        self.provider = provider or get_identity_provider(session)
        self.notifier = NotificationService(session, actor)

    def _metadata(self, user: models.User) -> dict:
        return {"role": user.role, "first_name": user.first_name, "last_name": user.last_name, "userId": user.id}

    def get_users(self) -> List[models.User]:
        return self.repo.list()

    def get_user(self, user_id: int) -> models.User:
        user = self.repo.get(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def _new_user(self, data: dict, status: str) -> models.User:
        email = _require_text(data.get("email"), "email").lower()
        if "@" not in email:
            raise ValueError("email is not valid")
        if self.repo.get_any_by_email(email):
            raise ConflictError("User with this email already exists")
        role = _check_choice(data.get("role") or "teacher", ROLES, "role")
        password = data.get("password")
        return models.User(
            email=email,
            first_name=_require_text(data.get("first_name"), "first_name"),
            last_name=_require_text(data.get("last_name"), "last_name"),
            role=role,
            status=_check_choice(status, USER_STATUSES, "status"),
            password_hash=AuthService.hash_password(password) if password else None,
        )

    def create_user(self, data: dict) -> models.User:
        """Create a user directly; an optional invitation is best effort."""
        user = self.repo.create(self._new_user(data, data.get("status") or "active"))
        if data.get("send_invitation"):
            try:
                self.provider.create_invitation(user.email, self._metadata(user), f"{settings.APP_URL}/sign-up")
            except IdentityProviderError:
                logger.exception("failed to send invitation to %s", user.email)
        self.notifier.create_notification("user_created", f"Nalikha ang user na '{user.email}'")
        return user

    def invite_user(self, data: dict):
        """Create an `invited` user and send the invitation.

        When the provider refuses the invitation the new row is removed
        again and the provider error propagates.
        """
        user = self.repo.create(self._new_user(dict(data, password=None), "invited"))
        try:
            invitation = self.provider.create_invitation(user.email, self._metadata(user), f"{settings.APP_URL}/login")
        except IdentityProviderError:
            logger.exception("invitation for %s failed; removing user row", user.email)
            self.repo.hard_delete(user)
            raise
        self.notifier.create_notification("user_created", f"Naimbitahan ang user na '{user.email}'")
        return user, invitation

    def resend_invitation(self, user_id: int) -> dict:
        user = self.get_user(user_id)
        return self.provider.create_invitation(user.email, self._metadata(user), f"{settings.APP_URL}/sign-up")

    def get_invitations(self, status: Optional[str] = None) -> List[dict]:
        return self.provider.list_invitations(status=status)

    def revoke_invitation(self, invitation_id: str) -> dict:
        try:
            return self.provider.revoke_invitation(invitation_id)
        except IdentityProviderError as e:
            if e.not_found:
                raise NotFoundError("invitation not found")
            raise

    def update_user(self, user_id: int, changes: dict) -> models.User:
        user = self.get_user(user_id)
        if changes.get("email") is not None:
            email = _require_text(changes["email"], "email").lower()
            other = self.repo.get_any_by_email(email)
            if other and other.id != user.id:
                raise ConflictError("User with this email already exists")
            user.email = email
        for field in ("first_name", "last_name"):
            if changes.get(field) is not None:
                setattr(user, field, _require_text(changes[field], field))
        if changes.get("role") is not None:
            user.role = _check_choice(changes["role"], ROLES, "role")
        if changes.get("status") is not None:
            user.status = _check_choice(changes["status"], USER_STATUSES, "status")
        user.modified_at = utcnow()
        user = self.repo.save(user)
        self.notifier.create_notification("user_updated", f"Na-update ang user na '{user.email}'")
        return user

    def _revoke_invitation_by_email(self, email: str) -> str:
        try:
            pending = self.provider.list_invitations(status="pending")
            match = next((i for i in pending if (i.get("email_address") or "").lower() == email.lower()), None)
            if not match:
                return "No active invitation found, "
            self.provider.revoke_invitation(match["id"])
            return "Pending invitation revoked and "
        except IdentityProviderError:
            logger.exception("failed to revoke invitation for %s", email)
            return "Invitation revocation failed but "

    def delete_user(self, user_id: int) -> str:
        """Remove the provider-side account or invitation, then soft delete.

        Provider failures never block the local delete; the returned
        message says what happened on each side.
        """
        user = self.get_user(user_id)
        provider_message = ""
        if user.status == "invited":
            provider_message = self._revoke_invitation_by_email(user.email)
        elif user.clerk_id:
            try:
                self.provider.delete_user(user.clerk_id)
                provider_message = "Identity account deleted and "
            except IdentityProviderError as e:
                if e.not_found:
                    logger.info("identity account %s already removed", user.clerk_id)
                    provider_message = "Identity account already removed, "
                else:
                    logger.warning("identity deletion failed for %s: %s", user.clerk_id, e)
                    provider_message = "Identity deletion failed but "
        now = utcnow()
        user.deleted_at = now
        user.modified_at = now
        self.repo.save(user)
        self.notifier.create_notification("user_deleted", f"Na-delete ang user na '{user.email}'")
        return f"{provider_message}user record has been deleted successfully"

    def activate_invited_user(self, email: str, clerk_id: Optional[str] = None) -> str:
        """Flip an invited user to active after sign-up; no-op otherwise.

        `clerk_id` must come from a verified session token. It is linked
        only when that identity account owns the invited address.
        """
        user = self.repo.get_by_email(_require_text(email, "Email"))
        if not user:
            raise NotFoundError("User not found")
        if user.status != "invited":
            return "User status is already active or not invited"
        if clerk_id and not user.clerk_id:
            if user.email.lower() not in self.provider.get_user_emails(clerk_id):
                logger.warning("sign-up identity %s does not own %s", clerk_id, user.email)
                raise PermissionDeniedError("Signed-in account does not match this invitation")
            user.clerk_id = clerk_id
        user.status = "active"
        user.modified_at = utcnow()
        self.repo.save(user)
        return "User status updated to active"


class CategoryService:
    def __init__(self, session: Session, actor: Optional[models.User] = None):
        self.session = session
        self.repo = repositories.CategoryRepository(session)
        self.notifier = NotificationService(session, actor)

    def get_categories(self) -> List[dict]:
        counts = self.repo.story_counts()
        return [
            {"id": c.id, "name": c.name, "description": c.description, "story_count": counts.get(c.id, 0),
             "created_at": c.created_at, "updated_at": c.updated_at}
            for c in self.repo.list()
        ]

    def get_category(self, category_id: int) -> models.Category:
        cat = self.repo.get(category_id)
        if not cat:
            raise NotFoundError("Category not found")
        return cat

    def create_category(self, name: str, description: Optional[str] = None) -> models.Category:
        cat = self.repo.create(models.Category(name=_require_text(name, "name"), description=_clean(description)))
        self.notifier.create_notification("category_created", f"Nalikha ang kategoryang '{cat.name}'")
        return cat

    def update_category(self, category_id: int, changes: dict) -> models.Category:
        cat = self.get_category(category_id)
        if changes.get("name") is not None:
            cat.name = _require_text(changes["name"], "name")
        if "description" in changes:
            cat.description = _clean(changes["description"])
        cat.updated_at = utcnow()
        cat = self.repo.save(cat)
        self.notifier.create_notification("category_updated", f"Na-update ang kategoryang '{cat.name}'")
        return cat

    def delete_category(self, category_id: int) -> models.Category:
        cat = self.get_category(category_id)
        in_use = self.repo.count_live_stories(category_id)
        if in_use:
            raise ConflictError(f"Cannot delete category: {in_use} story(ies) still use it")
        cat.deleted_at = utcnow()
        cat = self.repo.save(cat)
        self.notifier.create_notification("category_deleted", f"Na-delete ang kategoryang '{cat.name}'")
        return cat

    def restore_category(self, category_id: int) -> models.Category:
        cat = self.repo.get_deleted(category_id)
        if not cat:
            raise NotFoundError("Deleted category not found")
        cat.deleted_at = None
        cat.updated_at = utcnow()
        return self.repo.save(cat)


class StoryService:
    """Stories (video + subtitles) and their aggregate counts."""
    def __init__(self, session: Session, actor: Optional[models.User] = None):
        self.session = session
        self.repo = repositories.StoryRepository(session)
        self.categories = repositories.CategoryRepository(session)
        self.quiz_repo = repositories.QuizItemRepository(session)
        self.notifier = NotificationService(session, actor)

    def _category(self, category_id: Optional[int]) -> Optional[models.Category]:
        if category_id is None:
            return None
        cat = self.categories.get(category_id)
        if not cat:
            raise ValueError(f"category not found: {category_id}")
        return cat

    def build_story(self, data: dict) -> models.Story:
        """Validate a create payload and return an unsaved `Story`."""
        self._category(data.get("category_id"))
        subtitles = [s.strip() for s in (data.get("subtitles") or []) if s and s.strip()]
        return models.Story(
            title=_require_text(data.get("title"), "title"),
            author=_clean(data.get("author")) or "Anonymous",
            description=_clean(data.get("description")),
            file_link=_require_text(data.get("file_link"), "file_link"),
            subtitles=subtitles,
            category_id=data.get("category_id"),
        )

    def get_stories(self, category_id: Optional[int] = None) -> List[dict]:
        quiz_counts = self.repo.quiz_counts()
        code_counts = self.repo.code_counts()
        submission_counts = self.repo.submission_counts()
        cats = {c.id: c for c in self.categories.list()}
        return [
            story_to_dict(
                s,
                cats.get(s.category_id),
                quiz_count=quiz_counts.get(s.id, 0),
                code_count=code_counts.get(s.id, 0),
                submission_count=submission_counts.get(s.id, 0),
            )
            for s in self.repo.list(category_id)
        ]

    def get_story(self, story_id: int) -> models.Story:
        story = self.repo.get(story_id)
        if not story:
            raise NotFoundError("Story not found")
        return story

    def get_story_detail(self, story_id: int) -> dict:
        story = self.get_story(story_id)
        items = self.quiz_repo.list_for_story(story.id)
        return story_to_dict(
            story,
            self.categories.get(story.category_id) if story.category_id else None,
            quiz_items=[quiz_item_to_dict(i) for i in items],
        )

    def get_stories_with_quiz(self) -> List[dict]:
        cats = {c.id: c for c in self.categories.list()}
        out = []
        for s in self.repo.list():
            items = self.quiz_repo.list_for_story(s.id)
            out.append(story_to_dict(s, cats.get(s.category_id), quiz_items=[quiz_item_to_dict(i) for i in items]))
        return out

    def create_story(self, data: dict) -> models.Story:
        story = self.repo.create(self.build_story(data))
        self.notifier.create_notification("story_created", f"Nalikha ang kuwentong '{story.title}'")
        return story

    def update_story(self, story_id: int, changes: dict) -> models.Story:
        story = self.get_story(story_id)
        for field in ("title", "file_link"):
            if changes.get(field) is not None:
                setattr(story, field, _require_text(changes[field], field))
        if "author" in changes:
            story.author = _clean(changes["author"]) or "Anonymous"
        if "description" in changes:
            story.description = _clean(changes["description"])
        if changes.get("subtitles") is not None:
            story.subtitles = [s.strip() for s in changes["subtitles"] if s and s.strip()]
        if "category_id" in changes:
            self._category(changes["category_id"])
            story.category_id = changes["category_id"]
        story.updated_at = utcnow()
        story = self.repo.save(story)
        self.notifier.create_notification("story_updated", f"Na-update ang kuwentong '{story.title}'")
        return story

    def delete_story(self, story_id: int) -> models.Story:
        story = self.get_story(story_id)
        story.deleted_at = utcnow()
        story = self.repo.save(story)
        self.notifier.create_notification("story_deleted", f"Na-delete ang kuwentong '{story.title}'")
        return story

    def restore_story(self, story_id: int) -> models.Story:
        story = self.repo.get_deleted(story_id)
        if not story:
            raise NotFoundError("Deleted story not found")
        story.deleted_at = None
        story.updated_at = utcnow()
        return self.repo.save(story)


class QuizService:
    """Quiz items, bulk import and the student scoring transaction."""
    def __init__(self, session: Session, actor: Optional[models.User] = None):
        self.session = session
        self.repo = repositories.QuizItemRepository(session)
        self.stories = repositories.StoryRepository(session)
        self.codes = repositories.CodeRepository(session)
        self.activity = repositories.StudentActivityRepository(session)
        self.config = SystemConfigService(session, actor)
        self.notifier = NotificationService(session, actor)

    def _story(self, story_id: int) -> models.Story:
        story = self.stories.get(story_id)
        if not story:
            raise NotFoundError("Story not found")
        return story

    def validate_item(self, data: dict, cfg: Optional[models.SystemConfig] = None) -> dict:
        """Return a normalized item dict or raise ValueError."""
        cfg = cfg or self.config.get_system_config()
        question = _require_text(data.get("question"), "question")
        choices = [str(c).strip() for c in (data.get("choices") or [])]
        if any(not c for c in choices):
            raise ValueError("choices must not be empty")
        if len(set(choices)) != len(choices):
            raise ValueError("choices must be unique")
        if not (cfg.min_choices_count <= len(choices) <= cfg.max_choices_count):
            raise ValueError(
                f"a quiz item needs between {cfg.min_choices_count} and {cfg.max_choices_count} choices"
            )
        correct = (data.get("correct_answer") or "").strip()
        if correct not in choices:
            raise ValueError("correct_answer must be one of the choices")
        quiz_number = data.get("quiz_number")
        if quiz_number is None or int(quiz_number) < 1:
            raise ValueError("quiz_number must be >= 1")
        return {"question": question, "choices": choices, "correct_answer": correct, "quiz_number": int(quiz_number)}

    def _build_items(self, items: List[dict]) -> List[models.QuizItem]:
        cfg = self.config.get_system_config()
        built = []
        for idx, data in enumerate(items):
            try:
                built.append(models.QuizItem(**self.validate_item(data, cfg)))
            except ValueError as e:
                raise ValueError(f"quiz item {idx + 1}: {e}")
        numbers = [i.quiz_number for i in built]
        if len(set(numbers)) != len(numbers):
            raise ValueError("quiz numbers must be unique within a story")
        return built

    def get_quiz_items_by_story(self, story_id: int) -> List[models.QuizItem]:
        self._story(story_id)
        return self.repo.list_for_story(story_id)

    def get_quiz_item(self, item_id: int) -> models.QuizItem:
        item = self.repo.get(item_id)
        if not item:
            raise NotFoundError("Quiz item not found")
        return item

    def create_quiz_item(self, data: dict) -> models.QuizItem:
        story = self._story(data.get("story_id"))
        item = self.repo.create(models.QuizItem(story_id=story.id, **self.validate_item(data)))
        self.notifier.create_notification("quiz_created", f"Nagdagdag ng tanong sa kuwentong '{story.title}'")
        return item

    def update_quiz_item(self, item_id: int, changes: dict) -> models.QuizItem:
        item = self.get_quiz_item(item_id)
        merged = quiz_item_to_dict(item)
        merged.update({k: v for k, v in changes.items() if v is not None})
        valid = self.validate_item(merged)
        for k, v in valid.items():
            setattr(item, k, v)
        item.updated_at = utcnow()
        return self.repo.save(item)

    def delete_quiz_item(self, item_id: int) -> models.QuizItem:
        item = self.get_quiz_item(item_id)
        item.deleted_at = utcnow()
        return self.repo.save(item)

    def update_story_quiz_items(self, story_id: int, items: List[dict]) -> List[models.QuizItem]:
        """Replace the whole quiz of a story in one transaction."""
        story = self._story(story_id)
        built = self._build_items(items)
        saved = self.repo.replace_for_story(story.id, built, utcnow())
        self.notifier.create_notification("quiz_updated", f"Na-update ang pagsusulit ng kuwentong '{story.title}'")
        return saved

    def create_story_with_quiz(self, story_data: dict, items: List[dict]) -> models.Story:
        story = StoryService(self.session).build_story(story_data)
        built = self._build_items(items)
        story = self.stories.create_with_items(story, built)
        self.notifier.create_notification("story_created", f"Nalikha ang kuwentong '{story.title}'")
        return story

    def import_quiz_items(self, story_id: int, file_bytes: bytes, filename: str, dry_run: bool = False) -> dict:
        """Parse `filename` contents and append valid items to the story.

        Returns a dictionary with the number of created items and any
        validation `errors` encountered per item. Items without a number
        are numbered after the story's current highest quiz number.
        """
        story = self._story(story_id)
        parsed = parse_file_to_quiz_items(file_bytes, filename)
        cfg = self.config.get_system_config()
        next_number = self.repo.max_quiz_number(story.id) + 1
        taken = {i.quiz_number for i in self.repo.list_for_story(story.id)}
        to_create = []
        errors = []
        for idx, p in enumerate(parsed):
            if not isinstance(p, dict):
                errors.append({"index": idx, "error": "quiz item must be an object", "item": p})
                continue
            candidate = dict(p)
            if candidate.get("quiz_number") is None or candidate["quiz_number"] in taken:
                candidate["quiz_number"] = next_number
            try:
                valid = self.validate_item(candidate, cfg)
            except ValueError as e:
                errors.append({"index": idx, "error": str(e), "item": p})
                continue
            taken.add(valid["quiz_number"])
            next_number = max(next_number, valid["quiz_number"]) + 1
            to_create.append(models.QuizItem(story_id=story.id, **valid))
        if to_create and not dry_run:
            self.repo.add_many(to_create)
        return {"created": 0 if dry_run else len(to_create), "valid": len(to_create), "errors": errors}

    # student side

    def _active_code(self, code_value: str) -> models.Code:
        code = self.codes.get_by_code(code_value or "")
        if not code:
            raise NotFoundError("Invalid code")
        if code.status != "active":
            raise PermissionDeniedError("This code is no longer active")
        return code

    def _require_viewed(self, code: models.Code, student: StudentInfo) -> None:
        view = self.activity.get_view(code.id, code.story_id, student.name, student.section, student.device_id)
        if not view:
            raise PermissionDeniedError("Please watch the story before taking the quiz")

    def has_student_taken_quiz(self, code_value: str, student: StudentInfo) -> bool:
        code = self.codes.get_by_code(code_value or "")
        if not code:
            return False
        sub = self.activity.get_submission(code.id, student.name, student.section, student.device_id)
        return sub is not None and sub.deleted_at is None

    def get_quiz_for_student(self, code_value: str, student: StudentInfo) -> dict:
        """Story quiz without answers, for a student allowed to take it."""
        code = self._active_code(code_value)
        self._require_viewed(code, student)
        story = self._story(code.story_id)
        items = self.repo.list_for_story(story.id)
        return {
            "code": code.code,
            "story": {"id": story.id, "title": story.title, "author": story.author},
            "quiz_items": [quiz_item_to_dict(i, reveal=False) for i in items],
            "already_submitted": self.has_student_taken_quiz(code.code, student),
        }

    def submit_quiz(self, code_value: str, student: StudentInfo, answers: List[dict]) -> dict:
        """Score and persist a student's answers.

        The submission and all its answers are written in one commit. A
        unique constraint on (code, name, section, device) rejects a
        second submission even when two requests race.
        """
        code = self._active_code(code_value)
        self._require_viewed(code, student)
        if self.has_student_taken_quiz(code.code, student):
            raise ConflictError("You have already taken this quiz")
        items = {i.id: i for i in self.repo.list_for_story(code.story_id)}
        if not items:
            raise ValueError("This story has no quiz")
        seen = set()
        for a in answers:
            if a["quiz_item_id"] not in items:
                raise ValueError(f"quiz item not found: {a['quiz_item_id']}")
            if a["quiz_item_id"] in seen:
                raise ValueError(f"duplicate answer for quiz item {a['quiz_item_id']}")
            seen.add(a["quiz_item_id"])
        missing = set(items) - seen
        if missing:
            raise ValueError(f"{len(missing)} question(s) left unanswered")

        score = 0
        rows = []
        payload_items = []
        for a in answers:
            item = items[a["quiz_item_id"]]
            selected = (a.get("selected_answer") or "").strip()
            is_correct = selected == item.correct_answer
            if is_correct:
                score += 1
            rows.append(models.StudentAnswer(quiz_item_id=item.id, selected_answer=selected, is_correct=is_correct))
            payload_items.append({
                "quiz_item_id": item.id,
                "question": item.question,
                "selected_answer": selected,
                "correct_answer": item.correct_answer,
                "is_correct": is_correct,
            })
        submission = models.StudentSubmission(
            code_id=code.id,
            story_id=code.story_id,
            full_name=student.name,
            section=student.section,
            device_id=student.device_id,
            score=score,
            total_questions=len(items),
        )
        try:
            submission = self.activity.create_submission(submission, rows)
        except IntegrityError:
            self.session.rollback()
            raise ConflictError("You have already taken this quiz")
        percentage = _percentage(score, len(items))
        story = self.stories.get(code.story_id)
        self.notifier.create_notification(
            "quiz_completed",
            f"Natapos ni {student.name} ({student.section}) ang pagsusulit ng '{story.title if story else code.code}': {score}/{len(items)}",
            user_id=code.created_by,
        )
        return {
            "submission_id": submission.id,
            "score": score,
            "total": len(items),
            "percentage": percentage,
            "passed": percentage >= PASSING_PERCENTAGE,
            "items": sorted(payload_items, key=lambda i: i["quiz_item_id"]),
        }

    def get_submission_results(self, code_value: str, student: StudentInfo) -> dict:
        code = self.codes.get_by_code(code_value or "")
        if not code:
            raise NotFoundError("Invalid code")
        sub = self.activity.get_submission(code.id, student.name, student.section, student.device_id)
        if not sub or sub.deleted_at is not None:
            raise NotFoundError("No quiz submission found for this code")
        return submission_to_dict(self.session, sub)


def submission_to_dict(session: Session, sub: models.StudentSubmission) -> dict:
    """Submission with per-question detail, used by students and teachers."""
    quiz_items = {a.quiz_item_id: session.get(models.QuizItem, a.quiz_item_id) for a in sub.answers}
    items = []
    for a in sorted(sub.answers, key=lambda a: a.quiz_item_id):
        q = quiz_items.get(a.quiz_item_id)
        items.append({
            "quiz_item_id": a.quiz_item_id,
            "quiz_number": q.quiz_number if q else None,
            "question": q.question if q else None,
            "choices": list(q.choices) if q else [],
            "selected_answer": a.selected_answer,
            "correct_answer": q.correct_answer if q else None,
            "is_correct": a.is_correct,
        })
    items.sort(key=lambda i: (i["quiz_number"] is None, i["quiz_number"] or 0))
    percentage = _percentage(sub.score, sub.total_questions)
    return {
        "submission_id": sub.id,
        "code_id": sub.code_id,
        "story_id": sub.story_id,
        "full_name": sub.full_name,
        "section": sub.section,
        "score": sub.score,
        "total": sub.total_questions,
        "percentage": percentage,
        "passed": percentage >= PASSING_PERCENTAGE,
        "submitted_at": sub.submitted_at,
        "items": items,
    }


class CodeService:
    """Access codes that unlock a story for students."""
    def __init__(self, session: Session, actor: Optional[models.User] = None):
        self.session = session
        self.actor = actor
        self.repo = repositories.CodeRepository(session)
        self.stories = repositories.StoryRepository(session)
        self.activity = repositories.StudentActivityRepository(session)
        self.notifier = NotificationService(session, actor)

    def _new_code_value(self, attempts: int = 20) -> str:
        for _ in range(attempts):
            value = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))
            if not self.repo.exists(value):
                return value
        raise ConflictError("could not generate a unique code; try again")

    def generate_code(self, story_id: int) -> models.Code:
        story = self.stories.get(story_id)
        if not story:
            raise NotFoundError("Story not found")
        code = self.repo.create(models.Code(
            code=self._new_code_value(),
            story_id=story.id,
            created_by=self.actor.id if self.actor else None,
        ))
        self.notifier.create_notification("code_generated", f"Nalikha ang code na '{code.code}' para sa kuwentong '{story.title}'")
        return code

    def get_codes(self, story_id: Optional[int] = None) -> List[dict]:
        titles = {s.id: s.title for s in self.stories.list()}
        return [
            {"id": c.id, "code": c.code, "story_id": c.story_id, "story_title": titles.get(c.story_id),
             "status": c.status, "created_by": c.created_by, "created_at": c.created_at}
            for c in self.repo.list(story_id)
        ]

    def get_code(self, code_id: int) -> models.Code:
        code = self.repo.get(code_id)
        if not code:
            raise NotFoundError("Code not found")
        return code

    def validate_code_entry(self, raw: str, student: Optional[StudentInfo] = None) -> dict:
        """Check a code typed by a student and return where to go next.

        An inactive code is only accepted for a student who already
        viewed its story (library access).
        """
        value = (raw or "").strip().upper()
        if len(value) < MIN_CODE_ENTRY_LENGTH:
            raise ValueError("Code must be at least 4 characters long")
        code = self.repo.get_by_code(value)
        if not code or not self.stories.get(code.story_id):
            raise NotFoundError("Invalid code. Please check and try again.")
        if code.status != "active":
            viewed = student and self.activity.get_view(code.id, code.story_id, student.name, student.section, student.device_id)
            if not viewed:
                raise PermissionDeniedError("This code is no longer active")
        return {"code": code.code, "story_id": code.story_id, "redirect_to": f"/student/info?code={code.code}"}

    def set_code_status(self, code_id: int, status: str) -> models.Code:
        code = self.get_code(code_id)
        code.status = _check_choice(status, CONTENT_STATUSES, "status")
        code.updated_at = utcnow()
        return self.repo.save(code)

    def delete_code(self, code_id: int) -> models.Code:
        code = self.get_code(code_id)
        code.deleted_at = utcnow()
        return self.repo.save(code)

    def get_story_by_code(self, value: str) -> dict:
        code = self.repo.get_by_code(value or "")
        story = self.stories.get(code.story_id) if code else None
        if not code or not story:
            raise NotFoundError("Invalid code")
        items = repositories.QuizItemRepository(self.session).list_for_story(story.id)
        return story_to_dict(
            story,
            code_id=code.id,
            code=code.code,
            is_active=code.status == "active",
            quiz_items=[quiz_item_to_dict(i) for i in items],
        )


class StudentService:
    """Anonymous student sessions, story views and the personal library."""
    def __init__(self, session: Session):
        self.session = session
        self.codes = repositories.CodeRepository(session)
        self.stories = repositories.StoryRepository(session)
        self.activity = repositories.StudentActivityRepository(session)

    def submit_student_info(self, name: str, section: str, code: str, device_id: Optional[str] = None):
        """Validate the student form; returns the session and redirect target."""
        name = (name or "").strip()
        section = (section or "").strip()
        if not name or not section:
            raise ValueError("Name and section are required")
        if len(name) < MIN_STUDENT_FIELD_LENGTH:
            raise ValueError("Name must be at least 2 characters long")
        if len(section) < MIN_STUDENT_FIELD_LENGTH:
            raise ValueError("Section must be at least 2 characters long")
        row = self.codes.get_by_code(code or "")
        if not row:
            raise NotFoundError("Invalid code. Please check and try again.")
        info = StudentInfo(
            name=name,
            section=section,
            authorized_code=row.code,
            device_id=_clean(device_id) or uuid.uuid4().hex,
        )
        return info, f"/student/story/{row.code}"

    def _code_and_story(self, code_value: str):
        code = self.codes.get_by_code(code_value or "")
        story = self.stories.get(code.story_id) if code else None
        if not code or not story:
            raise NotFoundError("Invalid code")
        return code, story

    def has_student_viewed_story(self, code_value: str, student: StudentInfo) -> bool:
        code = self.codes.get_by_code(code_value or "")
        if not code:
            return False
        return self.activity.get_view(code.id, code.story_id, student.name, student.section, student.device_id) is not None

    def track_story_view(self, code_value: str, student: StudentInfo) -> models.StudentStoryView:
        code, story = self._code_and_story(code_value)
        return self.activity.upsert_view(models.StudentStoryView(
            code_id=code.id,
            story_id=story.id,
            full_name=student.name,
            section=student.section,
            device_id=student.device_id,
            viewed_at=utcnow(),
        ))

    def get_story_for_student(self, code_value: str, student: StudentInfo) -> dict:
        """Open a story through a code and record the view."""
        code, story = self._code_and_story(code_value)
        if code.status != "active" and not self.has_student_viewed_story(code.code, student):
            raise PermissionDeniedError("This code is no longer active")
        self.track_story_view(code.code, student)
        sub = self.activity.get_submission(code.id, student.name, student.section, student.device_id)
        quiz_count = len(repositories.QuizItemRepository(self.session).list_for_story(story.id))
        return story_to_dict(
            story,
            code=code.code,
            is_active=code.status == "active",
            quiz_count=quiz_count,
            has_taken_quiz=sub is not None and sub.deleted_at is None,
        )

    def get_story_view_stats(self, story_id: Optional[int] = None) -> dict:
        views = self.activity.list_views(story_id=story_id)
        per_story: Dict[int, int] = {}
        for v in views:
            per_story[v.story_id] = per_story.get(v.story_id, 0) + 1
        unique_students = {(v.full_name, v.section, v.device_id) for v in views}
        return {
            "total_views": len(views),
            "unique_students": len(unique_students),
            "views_by_story": [{"story_id": k, "views": n} for k, n in sorted(per_story.items())],
        }

    def get_student_viewed_stories(self, student: StudentInfo) -> List[dict]:
        """Stories this student opened, newest first (the library)."""
        out = []
        seen_codes = set()
        for v in self.activity.list_views_for_student(student.name, student.section, student.device_id):
            code = self.codes.get(v.code_id)
            story = self.stories.get(v.story_id)
            if not code or not story or code.id in seen_codes:
                continue
            seen_codes.add(code.id)
            sub = self.activity.get_submission(code.id, student.name, student.section, student.device_id)
            taken = sub is not None and sub.deleted_at is None
            out.append(story_to_dict(
                story,
                code=code.code,
                is_active=code.status == "active",
                viewed_at=v.viewed_at,
                has_taken_quiz=taken,
                score=sub.score if taken else None,
                total_questions=sub.total_questions if taken else None,
            ))
        return out


class StudentLogService:
    """Teacher-facing reports of student activity per code."""
    def __init__(self, session: Session):
        self.session = session
        self.codes = repositories.CodeRepository(session)
        self.stories = repositories.StoryRepository(session)
        self.activity = repositories.StudentActivityRepository(session)

    def get_codes_with_stats(self) -> List[dict]:
        titles = {s.id: s.title for s in self.stories.list()}
        views = self.activity.view_counts_by_code()
        subs = self.activity.submission_counts_by_code()
        return [
            {"id": c.id, "code": c.code, "story_id": c.story_id, "story_title": titles.get(c.story_id),
             "status": c.status, "created_at": c.created_at,
             "view_count": views.get(c.id, 0), "submission_count": subs.get(c.id, 0)}
            for c in self.codes.list()
        ]

    def get_code_details_with_student_data(self, code_id: int) -> dict:
        code = self.codes.get(code_id)
        if not code:
            raise NotFoundError("Code not found")
        story = self.stories.get(code.story_id)
        submissions = {(s.full_name, s.section): s for s in self.activity.list_submissions(code_id=code.id)}
        students = []
        seen = set()
        for v in self.activity.list_views(code_id=code.id):
            key = (v.full_name, v.section)
            if key in seen:
                continue
            seen.add(key)
            sub = submissions.get(key)
            students.append({
                "full_name": v.full_name,
                "section": v.section,
                "viewed_at": v.viewed_at,
                "submission_id": sub.id if sub else None,
                "score": sub.score if sub else None,
                "total_questions": sub.total_questions if sub else None,
                "percentage": _percentage(sub.score, sub.total_questions) if sub else None,
                "submitted_at": sub.submitted_at if sub else None,
            })
        return {
            "id": code.id,
            "code": code.code,
            "status": code.status,
            "story": {"id": story.id, "title": story.title} if story else None,
            "students": students,
        }

    def get_student_submission_details(self, submission_id: int) -> dict:
        sub = self.activity.get_submission_by_id(submission_id)
        if not sub:
            raise NotFoundError("Submission not found")
        return submission_to_dict(self.session, sub)


def week_start(now: datetime) -> datetime:
    """Sunday 00:00 of the week containing `now`."""
    days_since_sunday = (now.weekday() + 1) % 7
    return (now - timedelta(days=days_since_sunday)).replace(hour=0, minute=0, second=0, microsecond=0)


class AnalyticsService:
    def __init__(self, session: Session):
        self.session = session
        self.stories = repositories.StoryRepository(session)
        self.codes = repositories.CodeRepository(session)
        self.activity = repositories.StudentActivityRepository(session)

    @staticmethod
    def average_percentage(submissions: List[models.StudentSubmission]) -> float:
        scored = [s for s in submissions if s.score is not None]
        if not scored:
            return 0.0
        return round(sum(_percentage(s.score, s.total_questions) for s in scored) / len(scored), 2)

    def get_weekly_trends(self, now: Optional[datetime] = None) -> dict:
        """Compare this week (from Sunday) with the previous one."""
        now = now or utcnow()
        current = week_start(now)
        nxt = current + timedelta(days=7)
        last = current - timedelta(days=7)
        current_subs = self.activity.list_submissions(since=current, until=nxt)
        last_subs = self.activity.list_submissions(since=last, until=current)
        current_avg = self.average_percentage(current_subs)
        last_avg = self.average_percentage(last_subs)
        return {
            "week_start": current,
            "stories_change": self.stories.count(current, nxt) - self.stories.count(last, current),
            "codes_change": self.codes.count(current, nxt) - self.codes.count(last, current),
            "submissions_change": len(current_subs) - len(last_subs),
            "average_score_change": round(current_avg - last_avg, 2),
            "current_average_score": self.average_percentage(self.activity.list_submissions()),
        }

    def get_dashboard_summary(self) -> dict:
        codes = self.codes.list()
        submissions = self.activity.list_submissions()
        passed = sum(1 for s in submissions if _percentage(s.score, s.total_questions) >= PASSING_PERCENTAGE)
        return {
            "total_stories": self.stories.count(),
            "total_codes": len(codes),
            "active_codes": sum(1 for c in codes if c.status == "active"),
            "total_submissions": len(submissions),
            "passed_submissions": passed,
            "average_score": self.average_percentage(submissions),
            "recent_submissions": [
                {"id": s.id, "full_name": s.full_name, "section": s.section, "score": s.score,
                 "total_questions": s.total_questions, "submitted_at": s.submitted_at}
                for s in submissions[:5]
            ],
        }


class WordSearchService:
    """Word-search puzzles: authoring, puzzle generation and play."""
    def __init__(self, session: Session, actor: Optional[models.User] = None):
        self.session = session
        self.repo = repositories.WordSearchRepository(session)
        self.notifier = NotificationService(session, actor)

    def to_dict(self, ws: models.WordSearch, include_words: bool = True) -> dict:
        out = {
            "id": ws.id,
            "title": ws.title,
            "description": ws.description,
            "status": ws.status,
            "created_at": ws.created_at,
            "updated_at": ws.updated_at,
        }
        items = self.repo.live_items(ws)
        out["word_count"] = len(items)
        if include_words:
            out["words"] = [{"id": i.id, "word": i.word, "description": i.description} for i in items]
        return out

    def create_word_search(self, title: str, words: List[dict], description: Optional[str] = None, status: str = "active") -> models.WordSearch:
        title = _clean(title)
        if not title:
            raise ValueError("Title is required")
        if not words:
            raise ValueError("At least one word is required")
        items = []
        for w in words:
            word = _clean(w.get("word"))
            if not word:
                raise ValueError("All words must have a value")
            items.append(models.WordSearchItem(word=word, description=_clean(w.get("description"))))
        ws = models.WordSearch(title=title, description=_clean(description), status=_check_choice(status, CONTENT_STATUSES, "status"))
        ws = self.repo.create(ws, items)
        self.notifier.create_notification("word_search_created", f"Nalikha ang word search na '{ws.title}'")
        return ws

    def get_word_searches(self) -> List[models.WordSearch]:
        return self.repo.list()

    def get_active_word_searches(self) -> List[models.WordSearch]:
        return self.repo.list(status="active")

    def get_word_search(self, word_search_id: int, active_only: bool = False) -> models.WordSearch:
        ws = self.repo.get(word_search_id)
        if not ws or (active_only and ws.status != "active"):
            raise NotFoundError("Word search not found")
        return ws

    def update_word_search_status(self, word_search_id: int, status: str) -> models.WordSearch:
        ws = self.get_word_search(word_search_id)
        ws.status = _check_choice(status, CONTENT_STATUSES, "status")
        ws.updated_at = utcnow()
        return self.repo.save(ws)

    def delete_word_search(self, word_search_id: int) -> models.WordSearch:
        """Soft delete the puzzle together with its words."""
        ws = self.get_word_search(word_search_id)
        now = utcnow()
        for item in self.repo.live_items(ws):
            item.deleted_at = now
            self.session.add(item)
        ws.deleted_at = now
        return self.repo.save(ws)

    def build_puzzle(self, word_search_id: int, seed: Optional[int] = None):
        ws = self.get_word_search(word_search_id, active_only=True)
        words = [i.word for i in self.repo.live_items(ws)]
        return ws, generate_puzzle(words, seed=seed)

    def select_word(self, word_search_id: int, seed: int, start, end, progress: WordSearchProgress):
        """Match a drag selection on the puzzle rebuilt from `seed`.

        Returns `(matched_word_or_None, progress)`; completion is judged
        against the words that were actually placed on the grid.
        """
        _, puzzle = self.build_puzzle(word_search_id, seed=seed)
        match = match_selection(puzzle, start, end, exclude=progress.found_words)
        if match is None:
            return None, WordSearchProgress(found_words=list(progress.found_words), is_finished=progress.is_finished)
        placed = [p.original_word for p in puzzle.placed]
        return match, mark_word_found(progress, match.original_word, placed)

    @staticmethod
    def puzzle_payload(ws: models.WordSearch, puzzle: Puzzle, descriptions: Dict[str, Optional[str]], progress: WordSearchProgress) -> dict:
        out = puzzle.to_dict()
        for w in out["words"]:
            w["description"] = descriptions.get(w["original_word"])
        out.update({"id": ws.id, "title": ws.title, "description": ws.description, "progress": progress.to_dict()})
        return out


def normalize_answer(value: str) -> str:
    return re.sub(r"\s+", "", value or "").upper()


class MysteryBoxService:
    """Picture-and-word items for the mystery box game."""
    def __init__(self, session: Session, actor: Optional[models.User] = None, media=None):
        self.session = session
        self.repo = repositories.MysteryBoxRepository(session)
        self.media = media or get_media_client()
        self.notifier = NotificationService(session, actor)

    @staticmethod
    def public_dict(item: models.MysteryBoxItem) -> dict:
        """Game view: the word itself stays hidden."""
        return {
            "id": item.id,
            "description": item.description,
            "image_url": item.image_url,
            "letter_count": len(normalize_answer(item.word)),
        }

    def _resolve_image(self, image_url: Optional[str], strict: bool = True) -> Optional[str]:
        """Upload data-URL images; other URLs are stored as given."""
        image_url = _clean(image_url)
        if not image_url or not is_data_url(image_url):
            return image_url
        try:
            return self.media.upload_image(image_url)
        except MediaUploadError:
            if strict:
                raise
            logger.warning("dropping mystery box image after failed upload")
            return None

    def _destroy(self, url: Optional[str]) -> None:
        if url and is_cloudinary_url(url):
            if not self.media.delete_image(url):
                logger.warning("could not delete old image %s", url)

    @staticmethod
    def _validate(data: dict) -> dict:
        return {
            "word": _require_text(data.get("word"), "word"),
            "description": _clean(data.get("description")),
            "status": _check_choice(data.get("status") or "active", CONTENT_STATUSES, "status"),
        }

    def _build(self, fields: dict, image_url: Optional[str], strict: bool) -> models.MysteryBoxItem:
        # images go up only after every text field passed validation
        return models.MysteryBoxItem(image_url=self._resolve_image(image_url, strict=strict), **fields)

    def get_mystery_box_items(self) -> List[models.MysteryBoxItem]:
        return self.repo.list(status="active")

    def get_all_mystery_box_items(self) -> List[models.MysteryBoxItem]:
        return self.repo.list()

    def get_item(self, item_id: int) -> models.MysteryBoxItem:
        item = self.repo.get(item_id)
        if not item:
            raise NotFoundError("Mystery box item not found")
        return item

    def create_mystery_box_item(self, data: dict) -> models.MysteryBoxItem:
        fields = self._validate(data)
        item = self.repo.create(self._build(fields, data.get("image_url"), strict=True))
        self.notifier.create_notification("mystery_box_item_created", f"Nagawa ang mystery box item '{item.word}'")
        return item

    def create_mystery_box_items(self, items: List[dict], status: str = "active") -> List[models.MysteryBoxItem]:
        """Bulk create; an image that fails to upload is dropped, not fatal."""
        if not items:
            raise ValueError("At least one item is required")
        validated = [(self._validate(dict(d, status=d.get("status") or status)), d.get("image_url")) for d in items]
        built = [self._build(fields, image_url, strict=False) for fields, image_url in validated]
        created = self.repo.create_many(built)
        self.notifier.create_notification("mystery_box_item_created", f"Nagawa ang {len(created)} mystery box items")
        return created

    def update_mystery_box_item(self, item_id: int, changes: dict) -> models.MysteryBoxItem:
        item = self.get_item(item_id)
        if changes.get("word") is not None:
            item.word = _require_text(changes["word"], "word")
        if "description" in changes:
            item.description = _clean(changes["description"])
        if changes.get("status") is not None:
            item.status = _check_choice(changes["status"], CONTENT_STATUSES, "status")
        if "image_url" in changes:
            new_url = _clean(changes["image_url"])
            if new_url and is_data_url(new_url):
                uploaded = self.media.upload_image(new_url)
                self._destroy(item.image_url)
                item.image_url = uploaded
            elif not new_url:
                self._destroy(item.image_url)
                item.image_url = None
            else:
                item.image_url = new_url
        item.updated_at = utcnow()
        item = self.repo.save(item)
        self.notifier.create_notification("mystery_box_item_updated", f"Na-update ang mystery box item '{item.word}'")
        return item

    def update_status(self, item_id: int, status: str) -> models.MysteryBoxItem:
        item = self.get_item(item_id)
        item.status = _check_choice(status, CONTENT_STATUSES, "status")
        item.updated_at = utcnow()
        item = self.repo.save(item)
        self.notifier.create_notification(
            "mystery_box_item_status_updated",
            f"Na-update ang status ng mystery box item '{item.word}' sa '{status}'",
        )
        return item

    def delete_mystery_box_item(self, item_id: int) -> models.MysteryBoxItem:
        item = self.get_item(item_id)
        self._destroy(item.image_url)
        item.deleted_at = utcnow()
        item = self.repo.save(item)
        self.notifier.create_notification("mystery_box_item_deleted", f"Na-delete ang mystery box item '{item.word}'")
        return item

    def check_answer(self, item_id: int, answer: str) -> dict:
        item = self.get_item(item_id)
        if item.status != "active":
            raise NotFoundError("Mystery box item not found")
        correct = normalize_answer(answer) == normalize_answer(item.word)
        out = {"correct": correct, "letter_count": len(normalize_answer(item.word))}
        if correct:
            out["word"] = item.word
            out["description"] = item.description
        return out
