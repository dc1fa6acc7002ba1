"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
categories, stories, quiz items, codes, student activity, games).
Repositories return SQLModel objects and perform commits/refreshes
where appropriate. Reads skip soft-deleted rows unless the method name
says otherwise.
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence
from sqlmodel import Session, select
from sqlalchemy import func
from . import models


class UserRepository:
    """CRUD operations for staff `User` objects."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def save(self, user: models.User) -> models.User:
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a live `User` by primary key."""
        user = self.session.get(models.User, user_id)
        if user is None or user.deleted_at is not None:
            return None
        return user

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a live user by e-mail (case-insensitive) or `None`."""
        stmt = select(models.User).where(
            func.lower(models.User.email) == email.strip().lower(),
            models.User.deleted_at.is_(None),
        )
        return self.session.exec(stmt).first()

    def get_any_by_email(self, email: str) -> Optional[models.User]:
        """Like `get_by_email` but includes soft-deleted rows."""
        stmt = select(models.User).where(func.lower(models.User.email) == email.strip().lower())
        return self.session.exec(stmt).first()

    def get_by_clerk_id(self, clerk_id: str) -> Optional[models.User]:
        stmt = select(models.User).where(models.User.clerk_id == clerk_id, models.User.deleted_at.is_(None))
        return self.session.exec(stmt).first()

    def list(self) -> List[models.User]:
        stmt = select(models.User).where(models.User.deleted_at.is_(None)).order_by(models.User.created_at.desc())
        return self.session.exec(stmt).all()

    def list_admins(self) -> List[models.User]:
        stmt = select(models.User).where(
            models.User.role == "admin",
            models.User.status == "active",
            models.User.deleted_at.is_(None),
        )
        return self.session.exec(stmt).all()

    def count(self) -> int:
        return self.session.exec(select(func.count(models.User.id))).one()

    def hard_delete(self, user: models.User) -> None:
        self.session.delete(user)
        self.session.commit()


class CategoryRepository:
    def __init__(self, session: Session):
        self.session = session

    def create(self, category: models.Category) -> models.Category:
        self.session.add(category)
        self.session.commit()
        self.session.refresh(category)
        return category

    save = create

    def get(self, category_id: int) -> Optional[models.Category]:
        cat = self.session.get(models.Category, category_id)
        if cat is None or cat.deleted_at is not None:
            return None
        return cat

    def get_deleted(self, category_id: int) -> Optional[models.Category]:
        cat = self.session.get(models.Category, category_id)
        if cat is None or cat.deleted_at is None:
            return None
        return cat

    def list(self) -> List[models.Category]:
        stmt = select(models.Category).where(models.Category.deleted_at.is_(None)).order_by(models.Category.name)
        return self.session.exec(stmt).all()

    def story_counts(self) -> Dict[int, int]:
        """Live story count per category id."""
        stmt = (
            select(models.Story.category_id, func.count(models.Story.id))
            .where(models.Story.deleted_at.is_(None), models.Story.category_id.is_not(None))
            .group_by(models.Story.category_id)
        )
        return {cid: n for cid, n in self.session.exec(stmt).all()}

    def count_live_stories(self, category_id: int) -> int:
        stmt = select(func.count(models.Story.id)).where(
            models.Story.category_id == category_id,
            models.Story.deleted_at.is_(None),
        )
        return self.session.exec(stmt).one()


class StoryRepository:
    """CRUD operations for `Story` rows and their aggregate counts."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, story: models.Story) -> models.Story:
        self.session.add(story)
        self.session.commit()
        self.session.refresh(story)
        return story

    save = create

    def create_with_items(self, story: models.Story, items: Sequence[models.QuizItem]) -> models.Story:
        """Create a story and its quiz items in one commit.

        The story is flushed first to obtain an id for the items.
        """
        self.session.add(story)
        self.session.flush()
        for item in items:
            item.story_id = story.id
            self.session.add(item)
        self.session.commit()
        self.session.refresh(story)
        return story

    def get(self, story_id: int) -> Optional[models.Story]:
        story = self.session.get(models.Story, story_id)
        if story is None or story.deleted_at is not None:
            return None
        return story

    def get_deleted(self, story_id: int) -> Optional[models.Story]:
        story = self.session.get(models.Story, story_id)
        if story is None or story.deleted_at is None:
            return None
        return story

    def list(self, category_id: Optional[int] = None) -> List[models.Story]:
        stmt = select(models.Story).where(models.Story.deleted_at.is_(None))
        if category_id is not None:
            stmt = stmt.where(models.Story.category_id == category_id)
        return self.session.exec(stmt.order_by(models.Story.created_at.desc())).all()

    def count(self, since: Optional[datetime] = None, until: Optional[datetime] = None) -> int:
        stmt = select(func.count(models.Story.id)).where(models.Story.deleted_at.is_(None))
        if since is not None:
            stmt = stmt.where(models.Story.created_at >= since)
        if until is not None:
            stmt = stmt.where(models.Story.created_at < until)
        return self.session.exec(stmt).one()

    def _grouped_count(self, model, column, extra=()) -> Dict[int, int]:
        stmt = select(column, func.count(model.id)).where(model.deleted_at.is_(None), *extra).group_by(column)
        return {k: n for k, n in self.session.exec(stmt).all()}

    def quiz_counts(self) -> Dict[int, int]:
        return self._grouped_count(models.QuizItem, models.QuizItem.story_id)

    def code_counts(self) -> Dict[int, int]:
        return self._grouped_count(models.Code, models.Code.story_id)

    def submission_counts(self) -> Dict[int, int]:
        return self._grouped_count(models.StudentSubmission, models.StudentSubmission.story_id)


class QuizItemRepository:
    """CRUD operations for `QuizItem` rows belonging to a story."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, item: models.QuizItem) -> models.QuizItem:
        self.session.add(item)
        self.session.commit()
        self.session.refresh(item)
        return item

    save = create

    def get(self, item_id: int) -> Optional[models.QuizItem]:
        item = self.session.get(models.QuizItem, item_id)
        if item is None or item.deleted_at is not None:
            return None
        return item

    def list_for_story(self, story_id: int) -> List[models.QuizItem]:
        """Live items of a story ordered by quiz number."""
        stmt = select(models.QuizItem).where(
            models.QuizItem.story_id == story_id,
            models.QuizItem.deleted_at.is_(None),
        ).order_by(models.QuizItem.quiz_number, models.QuizItem.id)
        return self.session.exec(stmt).all()

    def max_quiz_number(self, story_id: int) -> int:
        stmt = select(func.max(models.QuizItem.quiz_number)).where(
            models.QuizItem.story_id == story_id,
            models.QuizItem.deleted_at.is_(None),
        )
        return self.session.exec(stmt).one() or 0

    def replace_for_story(self, story_id: int, items: Sequence[models.QuizItem], now: datetime) -> List[models.QuizItem]:
        """Soft-delete every live item of the story and add `items` in one commit."""
        for old in self.list_for_story(story_id):
            old.deleted_at = now
            self.session.add(old)
        for item in items:
            item.story_id = story_id
            self.session.add(item)
        self.session.commit()
        for item in items:
            self.session.refresh(item)
        return list(items)

    def add_many(self, items: Sequence[models.QuizItem]) -> List[models.QuizItem]:
        for item in items:
            self.session.add(item)
        self.session.commit()
        for item in items:
            self.session.refresh(item)
        return list(items)


class CodeRepository:
    def __init__(self, session: Session):
        self.session = session

    def create(self, code: models.Code) -> models.Code:
        self.session.add(code)
        self.session.commit()
        self.session.refresh(code)
        return code

    save = create

    def get(self, code_id: int) -> Optional[models.Code]:
        code = self.session.get(models.Code, code_id)
        if code is None or code.deleted_at is not None:
            return None
        return code

    def get_by_code(self, value: str) -> Optional[models.Code]:
        """Case-insensitive lookup of a live code."""
        stmt = select(models.Code).where(
            models.Code.code == value.strip().upper(),
            models.Code.deleted_at.is_(None),
        )
        return self.session.exec(stmt).first()

    def exists(self, value: str) -> bool:
        """True when `value` is taken, soft-deleted codes included."""
        stmt = select(models.Code.id).where(models.Code.code == value)
        return self.session.exec(stmt).first() is not None

    def list(self, story_id: Optional[int] = None) -> List[models.Code]:
        stmt = select(models.Code).where(models.Code.deleted_at.is_(None))
        if story_id is not None:
            stmt = stmt.where(models.Code.story_id == story_id)
        return self.session.exec(stmt.order_by(models.Code.created_at.desc())).all()

    def count(self, since: Optional[datetime] = None, until: Optional[datetime] = None) -> int:
        stmt = select(func.count(models.Code.id)).where(models.Code.deleted_at.is_(None))
        if since is not None:
            stmt = stmt.where(models.Code.created_at >= since)
        if until is not None:
            stmt = stmt.where(models.Code.created_at < until)
        return self.session.exec(stmt).one()


class StudentActivityRepository:
    """Story views and quiz submissions recorded for anonymous students."""
    def __init__(self, session: Session):
        self.session = session

    def get_view(self, code_id: int, story_id: int, full_name: str, section: str, device_id: str) -> Optional[models.StudentStoryView]:
        stmt = select(models.StudentStoryView).where(
            models.StudentStoryView.code_id == code_id,
            models.StudentStoryView.story_id == story_id,
            models.StudentStoryView.full_name == full_name,
            models.StudentStoryView.section == section,
            models.StudentStoryView.device_id == device_id,
        )
        return self.session.exec(stmt).first()

    def upsert_view(self, view: models.StudentStoryView) -> models.StudentStoryView:
        """Insert a view or refresh `viewed_at` on the existing row."""
        existing = self.get_view(view.code_id, view.story_id, view.full_name, view.section, view.device_id)
        if existing:
            existing.viewed_at = view.viewed_at
            self.session.add(existing)
            self.session.commit()
            return existing
        self.session.add(view)
        self.session.commit()
        self.session.refresh(view)
        return view

    def list_views(self, code_id: Optional[int] = None, story_id: Optional[int] = None) -> List[models.StudentStoryView]:
        stmt = select(models.StudentStoryView)
        if code_id is not None:
            stmt = stmt.where(models.StudentStoryView.code_id == code_id)
        if story_id is not None:
            stmt = stmt.where(models.StudentStoryView.story_id == story_id)
        return self.session.exec(stmt.order_by(models.StudentStoryView.viewed_at.desc())).all()

    def list_views_for_student(self, full_name: str, section: str, device_id: str) -> List[models.StudentStoryView]:
        stmt = select(models.StudentStoryView).where(
            models.StudentStoryView.full_name == full_name,
            models.StudentStoryView.section == section,
            models.StudentStoryView.device_id == device_id,
        ).order_by(models.StudentStoryView.viewed_at.desc())
        return self.session.exec(stmt).all()

    def get_submission(self, code_id: int, full_name: str, section: str, device_id: str) -> Optional[models.StudentSubmission]:
        stmt = select(models.StudentSubmission).where(
            models.StudentSubmission.code_id == code_id,
            models.StudentSubmission.full_name == full_name,
            models.StudentSubmission.section == section,
            models.StudentSubmission.device_id == device_id,
        )
        return self.session.exec(stmt).first()

    def get_submission_by_id(self, submission_id: int) -> Optional[models.StudentSubmission]:
        sub = self.session.get(models.StudentSubmission, submission_id)
        if sub is None or sub.deleted_at is not None:
            return None
        return sub

    def create_submission(self, submission: models.StudentSubmission, answers: List[models.StudentAnswer]) -> models.StudentSubmission:
        """Store a submission and its answers in a single commit."""
        submission.answers = answers
        self.session.add(submission)
        self.session.commit()
        self.session.refresh(submission)
        return submission

    def list_submissions(
        self,
        code_id: Optional[int] = None,
        story_id: Optional[int] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[models.StudentSubmission]:
        stmt = select(models.StudentSubmission).where(models.StudentSubmission.deleted_at.is_(None))
        if code_id is not None:
            stmt = stmt.where(models.StudentSubmission.code_id == code_id)
        if story_id is not None:
            stmt = stmt.where(models.StudentSubmission.story_id == story_id)
        if since is not None:
            stmt = stmt.where(models.StudentSubmission.submitted_at >= since)
        if until is not None:
            stmt = stmt.where(models.StudentSubmission.submitted_at < until)
        return self.session.exec(stmt.order_by(models.StudentSubmission.submitted_at.desc())).all()

    def view_counts_by_code(self) -> Dict[int, int]:
        stmt = select(models.StudentStoryView.code_id, func.count(models.StudentStoryView.id)).group_by(models.StudentStoryView.code_id)
        return {k: n for k, n in self.session.exec(stmt).all()}

    def submission_counts_by_code(self) -> Dict[int, int]:
        stmt = (
            select(models.StudentSubmission.code_id, func.count(models.StudentSubmission.id))
            .where(models.StudentSubmission.deleted_at.is_(None))
            .group_by(models.StudentSubmission.code_id)
        )
        return {k: n for k, n in self.session.exec(stmt).all()}


class NotificationRepository:
    def __init__(self, session: Session):
        self.session = session

    def create(self, notification: models.Notification) -> models.Notification:
        self.session.add(notification)
        self.session.commit()
        self.session.refresh(notification)
        return notification

    save = create

    def get(self, notification_id: int) -> Optional[models.Notification]:
        return self.session.get(models.Notification, notification_id)

    def list(self, user_id: Optional[int] = None, limit: int = 50, unread_only: bool = False) -> List[models.Notification]:
        """Newest first; `user_id` also matches broadcast rows (no user)."""
        stmt = select(models.Notification)
        if user_id is not None:
            stmt = stmt.where((models.Notification.user_id == user_id) | (models.Notification.user_id.is_(None)))
        if unread_only:
            stmt = stmt.where(models.Notification.is_read.is_(False))
        stmt = stmt.order_by(models.Notification.created_at.desc(), models.Notification.id.desc()).limit(limit)
        return self.session.exec(stmt).all()

    def mark_all_read(self, user_id: Optional[int], now: datetime) -> int:
        rows = self.list(user_id=user_id, limit=10_000, unread_only=True)
        for n in rows:
            n.is_read = True
            n.updated_at = now
            self.session.add(n)
        self.session.commit()
        return len(rows)


class SystemConfigRepository:
    def __init__(self, session: Session):
        self.session = session

    def get(self) -> Optional[models.SystemConfig]:
        return self.session.exec(select(models.SystemConfig).order_by(models.SystemConfig.id)).first()

    def get_or_create(self) -> models.SystemConfig:
        """Return the singleton row, inserting defaults when absent."""
        cfg = self.get()
        if cfg is None:
            cfg = self.save(models.SystemConfig())
        return cfg

    def save(self, cfg: models.SystemConfig) -> models.SystemConfig:
        self.session.add(cfg)
        self.session.commit()
        self.session.refresh(cfg)
        return cfg


class WordSearchRepository:
    def __init__(self, session: Session):
        self.session = session

    def create(self, word_search: models.WordSearch, items: List[models.WordSearchItem]) -> models.WordSearch:
        """Create a word search and its words in one commit."""
        word_search.items = items
        self.session.add(word_search)
        self.session.commit()
        self.session.refresh(word_search)
        return word_search

    def save(self, word_search: models.WordSearch) -> models.WordSearch:
        self.session.add(word_search)
        self.session.commit()
        self.session.refresh(word_search)
        return word_search

    def get(self, word_search_id: int) -> Optional[models.WordSearch]:
        ws = self.session.get(models.WordSearch, word_search_id)
        if ws is None or ws.deleted_at is not None:
            return None
        return ws

    def list(self, status: Optional[str] = None) -> List[models.WordSearch]:
        stmt = select(models.WordSearch).where(models.WordSearch.deleted_at.is_(None))
        if status is not None:
            stmt = stmt.where(models.WordSearch.status == status)
        return self.session.exec(stmt.order_by(models.WordSearch.created_at.desc())).all()

    def live_items(self, word_search: models.WordSearch) -> List[models.WordSearchItem]:
        return sorted((i for i in word_search.items if i.deleted_at is None), key=lambda i: i.id)


class MysteryBoxRepository:
    def __init__(self, session: Session):
        self.session = session

    def create(self, item: models.MysteryBoxItem) -> models.MysteryBoxItem:
        self.session.add(item)
        self.session.commit()
        self.session.refresh(item)
        return item

    save = create

    def create_many(self, items: List[models.MysteryBoxItem]) -> List[models.MysteryBoxItem]:
        for item in items:
            self.session.add(item)
        self.session.commit()
        for item in items:
            self.session.refresh(item)
        return items

    def get(self, item_id: int) -> Optional[models.MysteryBoxItem]:
        item = self.session.get(models.MysteryBoxItem, item_id)
        if item is None or item.deleted_at is not None:
            return None
        return item

    def list(self, status: Optional[str] = None) -> List[models.MysteryBoxItem]:
        stmt = select(models.MysteryBoxItem).where(models.MysteryBoxItem.deleted_at.is_(None))
        if status is not None:
            stmt = stmt.where(models.MysteryBoxItem.status == status)
        return self.session.exec(stmt.order_by(models.MysteryBoxItem.created_at.desc(), models.MysteryBoxItem.id.desc())).all()
