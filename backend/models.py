from sqlalchemy import Column, Integer, String, Text, ForeignKey, Boolean, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from db import Base

# Timestamps are kept as the ISO-8601 strings the documents carry, so an
# exported survey re-imports byte-for-byte.

class Survey(Base):
    __tablename__ = "surveys"
    id = Column(String(64), primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    creator_name = Column(String(255), nullable=False, default="")
    creator_email = Column(String(255), nullable=False, default="")
    creator_organization = Column(String(255), nullable=True)
    created_at = Column(String(40), nullable=False)
    updated_at = Column(String(40), nullable=False)
    results_pin = Column(String(255), nullable=True)
    pin_salt = Column(String(255), nullable=True)
    questions = relationship("Question", back_populates="survey", cascade="all, delete-orphan",
                             order_by="Question.position")

class Question(Base):
    __tablename__ = "questions"
    __table_args__ = (UniqueConstraint("survey_id", "question_id", name="uq_question_per_survey"),)
    pk = Column(Integer, primary_key=True, index=True)
    survey_id = Column(String(64), ForeignKey("surveys.id", ondelete="CASCADE"), index=True, nullable=False)
    # question ids are only unique inside their survey
    question_id = Column(String(64), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    type = Column(String(20), nullable=False, default="text")
    text = Column(Text, nullable=False)
    required = Column(Boolean, default=False)
    options = Column(JSON, nullable=True)
    scale_min = Column(Integer, nullable=True)
    scale_max = Column(Integer, nullable=True)
    survey = relationship("Survey", back_populates="questions")

class SurveyResponse(Base):
    __tablename__ = "responses"
    pk = Column(Integer, primary_key=True, index=True)
    id = Column(String(64), unique=True, index=True, nullable=False)
    survey_id = Column(String(64), ForeignKey("surveys.id", ondelete="CASCADE"), index=True, nullable=False)
    answers = Column(JSON, nullable=False, default=list)
    submitted_at = Column(String(40), nullable=False)
