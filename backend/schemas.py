# schemas.py
from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from typing import List, Optional, Literal, Union

QuestionType = Literal["text", "textarea", "radio", "checkbox", "scale", "yesno"]
QUESTION_TYPES = ("text", "textarea", "radio", "checkbox", "scale", "yesno")
AnswerValue = Union[List[str], int, float, str]


class CamelModel(BaseModel):
    """Base for every document-facing model: camelCase on the wire, snake_case in code."""
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        allow_inf_nan = False

# ------------------------
# Portable document entities
# ------------------------
class QuestionOption(CamelModel):
    id: str
    label: str

class Question(CamelModel):
    id: str
    type: QuestionType
    question: str
    required: bool = False
    options: Optional[List[QuestionOption]] = None
    scale_min: Optional[int] = None
    scale_max: Optional[int] = None

class Survey(CamelModel):
    id: str
    title: str
    description: str = ""
    creator_name: str = ""
    creator_email: str = ""
    creator_organization: Optional[str] = None
    questions: List[Question] = []
    created_at: str
    updated_at: str
    results_pin: Optional[str] = None
    pin_salt: Optional[str] = None

class Answer(CamelModel):
    question_id: str
    value: AnswerValue

class SurveyResponse(CamelModel):
    id: str
    survey_id: str
    answers: List[Answer] = []
    submitted_at: str

# ------------------------
# API payloads
# ------------------------
class OptionCreate(CamelModel):
    id: Optional[str] = None
    label: str

class QuestionCreate(CamelModel):
    id: Optional[str] = None  # only honoured when editing
    type: QuestionType = "text"
    question: str
    required: bool = False
    options: List[OptionCreate] = []
    scale_min: Optional[int] = None
    scale_max: Optional[int] = None

class SurveyCreate(CamelModel):
    title: str
    description: str = ""
    creator_name: str = ""
    creator_email: str = ""
    creator_organization: Optional[str] = None
    questions: List[QuestionCreate] = []

class AnswerIn(CamelModel):
    question_id: str
    value: AnswerValue

class ResponseCreate(CamelModel):
    answers: List[AnswerIn] = []

class ImportResult(CamelModel):
    """Outcome of one import call. Only the counters relevant to the call are set."""
    success: bool
    message: str
    reason: Optional[str] = Field(default=None, description="Failure category when success is False")
    survey: Optional[Survey] = None
    imported_surveys: Optional[int] = None
    imported_responses: Optional[int] = None
    imported_count: Optional[int] = None
    empty_count: Optional[int] = None
    skipped_count: Optional[int] = None
