"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers and tests. Update payloads leave every field
optional; services only touch fields that were provided.
"""

from pydantic import BaseModel, Field
from typing import List, Optional


class LoginIn(BaseModel):
    """Payload for staff login with the local identity provider."""
    email: str
    password: str


class TokenOut(BaseModel):
    """Authentication response containing an access token."""
    access_token: str


class AcceptInvitationIn(BaseModel):
    invitation_id: str
    password: str = Field(min_length=6)


class UpdateStatusIn(BaseModel):
    """Sign-up callback flipping an invited user to active."""
    email: str


class UserIn(BaseModel):
    email: str
    first_name: str
    last_name: str
    role: str = "teacher"
    status: str = "active"
    send_invitation: bool = False
    password: Optional[str] = None


class InviteUserIn(BaseModel):
    email: str
    first_name: str
    last_name: str
    role: str = "teacher"


class UserUpdate(BaseModel):
    email: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    role: Optional[str] = None
    status: Optional[str] = None


class CategoryIn(BaseModel):
    name: str
    description: Optional[str] = None


class CategoryUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class StoryIn(BaseModel):
    title: str
    author: Optional[str] = None
    description: Optional[str] = None
    file_link: str
    subtitles: Optional[List[str]] = None
    category_id: Optional[int] = None


class StoryUpdate(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    description: Optional[str] = None
    file_link: Optional[str] = None
    subtitles: Optional[List[str]] = None
    category_id: Optional[int] = None


class QuizItemBase(BaseModel):
    """A question with its choices; `correct_answer` must be one of them."""
    quiz_number: int
    question: str
    choices: List[str]
    correct_answer: str


class QuizItemIn(QuizItemBase):
    story_id: int


class QuizItemUpdate(BaseModel):
    question: Optional[str] = None
    choices: Optional[List[str]] = None
    correct_answer: Optional[str] = None
    quiz_number: Optional[int] = None


class StoryWithQuizIn(StoryIn):
    quiz_items: List[QuizItemBase] = []


class StatusIn(BaseModel):
    status: str


class SystemConfigUpdate(BaseModel):
    default_choices_count: Optional[int] = None
    max_choices_count: Optional[int] = None
    min_choices_count: Optional[int] = None


class CodeEntryIn(BaseModel):
    code: str


class StudentInfoIn(BaseModel):
    name: str
    section: str
    code: str
    device_id: Optional[str] = None


class QuizAnswerIn(BaseModel):
    quiz_item_id: int
    selected_answer: str


class QuizSubmissionIn(BaseModel):
    """Request model for a student quiz submission."""
    answers: List[QuizAnswerIn]


class WordItemIn(BaseModel):
    word: str
    description: Optional[str] = None


class WordSearchIn(BaseModel):
    title: str
    description: Optional[str] = None
    status: str = "active"
    words: List[WordItemIn]


class CellIn(BaseModel):
    row: int
    col: int


class SelectionIn(BaseModel):
    """A straight-line drag over the grid of a seeded puzzle."""
    seed: int
    start: CellIn
    end: CellIn


class MysteryBoxItemIn(BaseModel):
    word: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    status: str = "active"


class MysteryBoxBulkIn(BaseModel):
    status: str = "active"
    items: List[MysteryBoxItemIn]


class MysteryBoxAnswerIn(BaseModel):
    answer: str


class CodeCreateIn(BaseModel):
    story_id: int


class MysteryBoxItemUpdate(BaseModel):
    """Partial update; a blank `image_url` clears the stored image."""
    word: Optional[str] = None
    description: Optional[str] = None
    image_url: Optional[str] = None
    status: Optional[str] = None
