"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Each class maps to a table and uses relationships where appropriate.
Most content tables are soft-deleted: rows keep a `deleted_at`
timestamp instead of being removed, and repositories filter them out.
"""

from typing import Optional, List
from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Column, JSON, UniqueConstraint
from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(SQLModel, table=True):
    """A staff member (admin or teacher).

    Fields:
    - `clerk_id`: id of the account at the identity provider, once linked
    - `status`: `active`, `inactive` or `invited`
    - `password_hash`: only set for the local identity provider
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    clerk_id: Optional[str] = Field(default=None, index=True, unique=True)
    email: str = Field(index=True, nullable=False, unique=True)
    first_name: str
    last_name: str
    role: str = "teacher"
    status: str = "active"
    password_hash: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    modified_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None


class Invitation(SQLModel, table=True):
    """A pending staff invitation issued by the local identity provider."""
    id: str = Field(primary_key=True)
    email: str = Field(index=True)
    status: str = "pending"
    public_metadata: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    redirect_url: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Category(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None


class Story(SQLModel, table=True):
    """A story video with optional subtitles and an embedded quiz."""
    id: Optional[int] = Field(default=None, primary_key=True)
    category_id: Optional[int] = Field(default=None, foreign_key='category.id')
    title: str
    author: str = "Anonymous"
    description: Optional[str] = None
    file_link: str
    subtitles: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None


class QuizItem(SQLModel, table=True):
    """A multiple-choice question attached to a `Story`.

    `choices` holds the answer texts in display order and
    `correct_answer` is one of them.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    story_id: int = Field(foreign_key='story.id', index=True)
    quiz_number: int
    question: str
    choices: List[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    correct_answer: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None


class Code(SQLModel, table=True):
    """An access code students enter to reach a story and its quiz."""
    id: Optional[int] = Field(default=None, primary_key=True)
    code: str = Field(index=True, unique=True)
    story_id: int = Field(foreign_key='story.id', index=True)
    created_by: Optional[int] = Field(default=None, foreign_key='user.id')
    status: str = "active"
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None


class StudentStoryView(SQLModel, table=True):
    """First (and latest) time a student opened a story through a code."""
    __table_args__ = (
        UniqueConstraint('code_id', 'story_id', 'full_name', 'section', 'device_id', name='uq_story_view_student'),
    )
    id: Optional[int] = Field(default=None, primary_key=True)
    code_id: int = Field(foreign_key='code.id', index=True)
    story_id: int = Field(foreign_key='story.id', index=True)
    full_name: str
    section: str
    device_id: str = ""
    viewed_at: datetime = Field(default_factory=utcnow)


class StudentSubmission(SQLModel, table=True):
    """A scored quiz submission; one per student and code."""
    __table_args__ = (
        UniqueConstraint('code_id', 'full_name', 'section', 'device_id', name='uq_submission_student'),
    )
    id: Optional[int] = Field(default=None, primary_key=True)
    code_id: int = Field(foreign_key='code.id', index=True)
    story_id: int = Field(foreign_key='story.id', index=True)
    full_name: str
    section: str
    device_id: str = ""
    score: Optional[int] = None
    total_questions: int = 0
    submitted_at: datetime = Field(default_factory=utcnow, index=True)
    deleted_at: Optional[datetime] = None
    answers: List['StudentAnswer'] = Relationship(back_populates='submission')


class StudentAnswer(SQLModel, table=True):
    """A single answer inside a `StudentSubmission`."""
    id: Optional[int] = Field(default=None, primary_key=True)
    submission_id: int = Field(foreign_key='studentsubmission.id', index=True)
    quiz_item_id: int = Field(foreign_key='quizitem.id')
    selected_answer: str
    is_correct: bool = False
    submission: Optional[StudentSubmission] = Relationship(back_populates='answers')


class Notification(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[int] = Field(default=None, foreign_key='user.id', index=True)
    type: str
    message: str
    is_read: bool = False
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)


class SystemConfig(SQLModel, table=True):
    """Singleton row with quiz authoring limits."""
    id: Optional[int] = Field(default=None, primary_key=True)
    default_choices_count: int = 2
    max_choices_count: int = 10
    min_choices_count: int = 2
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class WordSearch(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    status: str = "active"
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None
    items: List['WordSearchItem'] = Relationship(back_populates='word_search')


class WordSearchItem(SQLModel, table=True):
    """A word hidden in a `WordSearch`, with an optional meaning."""
    id: Optional[int] = Field(default=None, primary_key=True)
    word_search_id: int = Field(foreign_key='wordsearch.id', index=True)
    word: str
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None
    word_search: Optional[WordSearch] = Relationship(back_populates='items')


class MysteryBoxItem(SQLModel, table=True):
    """A vocabulary word students guess letter by letter from an image."""
    id: Optional[int] = Field(default=None, primary_key=True)
    word: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    status: str = "active"
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = None
