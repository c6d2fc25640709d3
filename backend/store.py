"""Keyed persistence for surveys and responses.

`SurveyStore` wraps one SQLAlchemy session and speaks in `schemas` objects,
so the serializer and the import engine never touch ORM rows directly.
Every write commits immediately.
"""
import logging
from typing import Optional

from sqlalchemy import select, delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import models
from schemas import Survey, Question, QuestionOption, SurveyResponse, Answer

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """The backing database rejected a read or write."""


def _question_to_row(q: Question, position: int) -> models.Question:
    return models.Question(
        question_id=q.id,
        position=position,
        type=q.type,
        text=q.question,
        required=q.required,
        options=[o.model_dump() for o in q.options] if q.options is not None else None,
        scale_min=q.scale_min,
        scale_max=q.scale_max,
    )

def _row_to_question(row: models.Question) -> Question:
    return Question(
        id=row.question_id,
        type=row.type,
        question=row.text,
        required=bool(row.required),
        options=[QuestionOption(**o) for o in row.options] if row.options is not None else None,
        scale_min=row.scale_min,
        scale_max=row.scale_max,
    )

def _row_to_survey(row: models.Survey) -> Survey:
    return Survey(
        id=row.id,
        title=row.title,
        description=row.description or "",
        creator_name=row.creator_name or "",
        creator_email=row.creator_email or "",
        creator_organization=row.creator_organization,
        questions=[_row_to_question(q) for q in row.questions],
        created_at=row.created_at,
        updated_at=row.updated_at,
        results_pin=row.results_pin,
        pin_salt=row.pin_salt,
    )

def _row_to_response(row: models.SurveyResponse) -> SurveyResponse:
    return SurveyResponse(
        id=row.id,
        survey_id=row.survey_id,
        answers=[Answer(question_id=a["questionId"], value=a["value"]) for a in (row.answers or [])],
        submitted_at=row.submitted_at,
    )


class SurveyStore:
    def __init__(self, db: Session):
        self.db = db

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Store write failed during %s", action)
            raise StoreError(f"Could not {action}") from exc

    # ------------------------
    # Surveys
    # ------------------------
    def put_survey(self, survey: Survey) -> None:
        """Insert the survey, or replace it wholesale if the id is already stored."""
        row = self.db.get(models.Survey, survey.id)
        if row is None:
            row = models.Survey(id=survey.id)
            self.db.add(row)
        elif row.questions:
            # drop the old question rows first so replacement ids can reuse the unique key
            row.questions = []
            try:
                self.db.flush()
            except SQLAlchemyError as exc:
                self.db.rollback()
                logger.exception("Store write failed while replacing questions of %s", survey.id)
                raise StoreError("Could not save survey") from exc

        row.title = survey.title
        row.description = survey.description
        row.creator_name = survey.creator_name
        row.creator_email = survey.creator_email
        row.creator_organization = survey.creator_organization
        row.created_at = survey.created_at
        row.updated_at = survey.updated_at
        row.results_pin = survey.results_pin
        row.pin_salt = survey.pin_salt
        row.questions = [_question_to_row(q, i) for i, q in enumerate(survey.questions)]
        self._commit("save survey")

    def list_surveys(self) -> list[Survey]:
        rows = self.db.execute(select(models.Survey).order_by(models.Survey.created_at)).scalars().all()
        return [_row_to_survey(r) for r in rows]

    def get_survey(self, survey_id: str) -> Optional[Survey]:
        row = self.db.get(models.Survey, survey_id)
        return _row_to_survey(row) if row else None

    def delete_survey(self, survey_id: str) -> bool:
        """Delete a survey together with its questions and every response pointing at it.

        Returns False when no such survey exists.
        """
        row = self.db.get(models.Survey, survey_id)
        if row is None:
            return False
        self.db.execute(delete(models.SurveyResponse).where(models.SurveyResponse.survey_id == survey_id))
        self.db.delete(row)
        self._commit("delete survey")
        return True

    # ------------------------
    # Responses
    # ------------------------
    def put_response(self, response: SurveyResponse) -> None:
        """Append a response. Responses are never updated in place."""
        self.db.add(models.SurveyResponse(
            id=response.id,
            survey_id=response.survey_id,
            answers=[a.model_dump(by_alias=True) for a in response.answers],
            submitted_at=response.submitted_at,
        ))
        self._commit("save response")

    def list_responses(self) -> list[SurveyResponse]:
        rows = self.db.execute(select(models.SurveyResponse).order_by(models.SurveyResponse.pk)).scalars().all()
        return [_row_to_response(r) for r in rows]

    def list_responses_for_survey(self, survey_id: str) -> list[SurveyResponse]:
        rows = self.db.execute(
            select(models.SurveyResponse)
            .where(models.SurveyResponse.survey_id == survey_id)
            .order_by(models.SurveyResponse.pk)
        ).scalars().all()
        return [_row_to_response(r) for r in rows]

    def response_ids(self, survey_id: Optional[str] = None) -> set[str]:
        q = select(models.SurveyResponse.id)
        if survey_id is not None:
            q = q.where(models.SurveyResponse.survey_id == survey_id)
        return set(self.db.execute(q).scalars().all())
