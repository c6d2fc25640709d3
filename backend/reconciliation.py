"""Import of exported documents into a store whose ids differ from the exporter's.

Every imported survey, question, option and response gets a fresh id. Answers
only reference questions by id, so each import first builds an identifier map
(old id -> id in this store) and only then rewrites references through it:

* survey documents: no map needed, everything is re-keyed.
* response documents: questions are matched against an existing target
  survey, either by content (text + type) when the document carries its own
  survey, or by id / ``questionText`` when it is a bare response list.
* backups: surveys are re-keyed and the old -> new ids recorded, responses
  follow their survey through those maps.

The public ``import_*`` functions never raise; every outcome is an
``ImportResult``.
"""
from __future__ import annotations

import json
import logging
import os
from typing import Callable, Optional, Union

from dotenv import load_dotenv
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from ids import new_id
from schemas import Answer, ImportResult, Question, Survey, SurveyResponse
from serializer import now_iso
from store import StoreError, SurveyStore

load_dotenv()
logger = logging.getLogger(__name__)

# Responses whose answers all fail to map are still imported unless this is off.
KEEP_EMPTY_RESPONSES = os.getenv("IMPORT_KEEP_EMPTY_RESPONSES", "true").strip().lower() in ("1", "true", "yes", "on")

# failure reasons
PARSE_ERROR = "parse_error"
INVALID_FORMAT = "invalid_format"
INVALID_QUESTION = "invalid_question"
CONFLICT = "conflict"
NOT_FOUND = "not_found"
STORE_ERROR = "store_error"
UNEXPECTED = "unexpected_error"

QuestionMatcher = Callable[[list, Survey], dict]


class ImportFailure(Exception):
    """Aborts a whole import with a reportable reason."""

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message

    def to_result(self) -> ImportResult:
        return ImportResult(success=False, reason=self.reason, message=self.message)


def _reject_constant(name: str):
    raise ValueError(f"{name} is not valid JSON")

def _load_document(content: Union[str, bytes]):
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8-sig")
        except UnicodeDecodeError:
            raise ImportFailure(PARSE_ERROR, "The file is not UTF-8 text.")
    try:
        # NaN / Infinity literals are not JSON and could never be exported again
        return json.loads(content.lstrip("\ufeff"), parse_constant=_reject_constant)
    except ValueError:
        raise ImportFailure(PARSE_ERROR, "Could not read the file. Check that it is valid JSON.")

def _has_text(value) -> bool:
    return isinstance(value, str) and bool(value.strip())

def _normalize(text) -> str:
    return text.strip().lower() if isinstance(text, str) else ""

# ------------------------
# Phase 1: identifier maps
# ------------------------
def match_by_content(source_questions: list, target: Survey) -> dict[str, str]:
    """Map imported question ids to target questions with the same trimmed,
    case-insensitive text and the same type. Unmatched questions get no entry."""
    mapping: dict[str, str] = {}
    for q in source_questions:
        if not isinstance(q, dict) or not isinstance(q.get("id"), str):
            continue
        text = _normalize(q.get("question"))
        if not text:
            continue
        match = next((t for t in target.questions
                      if _normalize(t.question) == text and t.type == q.get("type")), None)
        if match is not None:
            mapping[q["id"]] = match.id
            logger.debug("Mapped question %s -> %s (%r)", q["id"], match.id, q.get("question"))
        else:
            logger.debug("No target question for %s (%r)", q["id"], q.get("question"))
    return mapping

def match_by_id(source_questions: list, target: Survey) -> dict[str, str]:
    """Map ids that already exist on the target, then fall back to an exact
    ``question`` text match when the source carries one."""
    target_ids = {t.id for t in target.questions}
    by_text: dict[str, str] = {}
    for t in target.questions:
        by_text.setdefault(t.question, t.id)

    mapping: dict[str, str] = {}
    for q in source_questions:
        qid = q.get("id") if isinstance(q, dict) else None
        if not isinstance(qid, str) or qid in mapping:
            continue
        if qid in target_ids:
            mapping[qid] = qid
        elif isinstance(q.get("question"), str) and q["question"] in by_text:
            mapping[qid] = by_text[q["question"]]
            logger.debug("Mapped question %s -> %s by questionText", qid, mapping[qid])
    return mapping

def _answer_references(records: list) -> list[dict]:
    """Question references carried by bare response records, shaped like questions."""
    refs = []
    for r in records:
        answers = r.get("answers") if isinstance(r, dict) else None
        if not isinstance(answers, list):
            continue
        for a in answers:
            if isinstance(a, dict):
                refs.append({"id": a.get("questionId"), "question": a.get("questionText")})
    return refs

# ------------------------
# Phase 2: rewriting
# ------------------------
def _parse_answers(raw_answers: list) -> list[Answer]:
    """Raises ValidationError if any answer is malformed."""
    return [Answer.model_validate(a) for a in raw_answers]

def remap_answers(answers: list[Answer], mapping: dict[str, str]) -> list[Answer]:
    """Rewrite questionIds through the map; ids without an entry pass through unchanged."""
    return [a.model_copy(update={"question_id": mapping.get(a.question_id, a.question_id)}) for a in answers]

def _is_response_record(raw) -> bool:
    return (isinstance(raw, dict) and raw.get("id") not in (None, "")
            and isinstance(raw.get("answers"), list))

def _submitted_at(raw: dict) -> str:
    value = raw.get("submittedAt")
    return value if _has_text(value) else now_iso()

def rekey_survey(raw: dict, created_at: str, updated_at: str) -> tuple[Survey, dict[str, str]]:
    """Copy a survey record with fresh ids for it, its questions and their options.

    Returns the new survey and the old -> new question id map.

    Raises:
        ImportFailure: INVALID_QUESTION if any question lacks text or a known
            type, INVALID_FORMAT if the survey fields themselves are malformed.
    """
    question_map: dict[str, str] = {}
    questions = []
    for q in raw.get("questions") or []:
        if not isinstance(q, dict) or not _has_text(q.get("question")) or not q.get("type"):
            raise ImportFailure(INVALID_QUESTION, "Invalid question structure. Every question needs a text and a type.")
        new_qid = new_id()
        if isinstance(q.get("id"), str):
            question_map[q["id"]] = new_qid
        payload = {**q, "id": new_qid}
        if isinstance(q.get("options"), list):
            payload["options"] = [{**o, "id": new_id()} for o in q["options"] if isinstance(o, dict)]
        try:
            questions.append(Question.model_validate(payload))
        except ValidationError as exc:
            raise ImportFailure(INVALID_QUESTION, f"Invalid question {q.get('question')!r}: {exc.errors()[0]['msg']}")

    try:
        survey = Survey.model_validate({
            **raw,
            "id": new_id(),
            "questions": questions,
            "createdAt": created_at,
            "updatedAt": updated_at,
        })
    except ValidationError as exc:
        raise ImportFailure(INVALID_FORMAT, f"Invalid survey structure: {exc.errors()[0]['msg']}")
    return survey, question_map

# ------------------------
# Entry points
# ------------------------
def _run(operation: str, fn, *args) -> ImportResult:
    # fn records counters in `progress` as it persists, so a store failure can
    # report what was already written
    progress: dict = {}
    try:
        return fn(progress, *args)
    except ImportFailure as exc:
        logger.warning("%s rejected (%s): %s", operation, exc.reason, exc.message)
        return exc.to_result()
    except (StoreError, SQLAlchemyError):
        logger.exception("%s aborted by a storage failure after %s", operation, progress or "no writes")
        return ImportResult(success=False, reason=STORE_ERROR,
                            message="Storage failure while importing; records saved before the failure were kept.",
                            **progress)
    except Exception:
        logger.exception("Unexpected error during %s", operation)
        return ImportResult(success=False, reason=UNEXPECTED, message="Error while processing the file.")

def import_survey(store: SurveyStore, content: Union[str, bytes]) -> ImportResult:
    """Import a lone survey document as a brand new survey."""
    return _run("survey import", _import_survey, store, content)

def _import_survey(progress: dict, store: SurveyStore, content) -> ImportResult:
    data = _load_document(content)
    if (not isinstance(data, dict) or not data.get("id") or not _has_text(data.get("title"))
            or not isinstance(data.get("questions"), list)):
        raise ImportFailure(INVALID_FORMAT, "Invalid file format. The file must contain a survey.")
    if store.get_survey(str(data["id"])) is not None:
        raise ImportFailure(CONFLICT, "This survey already exists. Delete it first or change its id.")

    now = now_iso()
    survey, _ = rekey_survey(data, created_at=now, updated_at=now)
    store.put_survey(survey)
    progress["imported_surveys"] = 1
    logger.info("Imported survey %s as %s with %d question(s)", data["id"], survey.id, len(survey.questions))
    return ImportResult(success=True, message="Survey imported successfully.", survey=survey, imported_surveys=1)

def import_responses(store: SurveyStore, target_survey_id: str, content: Union[str, bytes],
                     keep_empty: Optional[bool] = None, matcher: Optional[QuestionMatcher] = None) -> ImportResult:
    """Import responses into an existing survey, reconciling question ids.

    Args:
        store (SurveyStore): Destination store.
        target_survey_id (str): Survey the responses are attached to.
        content (str|bytes): Document text: ``{survey, responses}``,
            ``{responses}`` or a bare list of responses.
        keep_empty (bool|None): Import responses left with no valid answer.
            Defaults to ``IMPORT_KEEP_EMPTY_RESPONSES``.
        matcher (QuestionMatcher|None): Overrides the question matcher. By
            default ``match_by_content`` is used when the document carries its
            survey and ``match_by_id`` otherwise.

    Returns:
        ImportResult: ``importedCount``, ``emptyCount`` (responses that ended
        up with zero valid answers, imported or not) and ``skippedCount``.
    """
    if keep_empty is None:
        keep_empty = KEEP_EMPTY_RESPONSES
    return _run("response import", _import_responses, store, target_survey_id, content, keep_empty, matcher)

def _select_responses(data) -> tuple[Optional[dict], list]:
    if isinstance(data, dict):
        if isinstance(data.get("survey"), dict) and isinstance(data.get("responses"), list):
            return data["survey"], data["responses"]
        if isinstance(data.get("responses"), list):
            return None, data["responses"]
    elif isinstance(data, list):
        return None, data
    raise ImportFailure(INVALID_FORMAT, "Invalid file format. The file must contain responses.")

def _import_responses(progress: dict, store: SurveyStore, target_survey_id: str, content,
                      keep_empty: bool, matcher: Optional[QuestionMatcher]) -> ImportResult:
    target = store.get_survey(target_survey_id)
    if target is None:
        raise ImportFailure(NOT_FOUND, "The target survey does not exist.")
    data = _load_document(content)
    source_survey, records = _select_responses(data)

    if source_survey is not None:
        source_questions = source_survey.get("questions")
        candidates = source_questions if isinstance(source_questions, list) else []
        mapping = (matcher or match_by_content)(candidates, target)
    else:
        logger.info("No survey in the document, matching questions by id")
        mapping = (matcher or match_by_id)(_answer_references(records), target)
    logger.info("Question map for survey %s: %d mapped question(s)", target.id, len(mapping))

    target_question_ids = {q.id for q in target.questions}
    existing_ids = store.response_ids(target.id)
    imported = empty = skipped = 0
    progress["imported_count"] = 0

    for raw in records:
        if not _is_response_record(raw) or str(raw["id"]) in existing_ids:
            skipped += 1
            continue
        try:
            answers = remap_answers(_parse_answers(raw["answers"]), mapping)
        except ValidationError:
            logger.info("Skipping response %s: malformed answers", raw["id"])
            skipped += 1
            continue
        answers = [a for a in answers if a.question_id in target_question_ids]
        if not answers:
            empty += 1
            if not keep_empty:
                skipped += 1
                continue
        response = SurveyResponse(id=new_id(), survey_id=target.id, answers=answers, submitted_at=_submitted_at(raw))
        store.put_response(response)
        imported += 1
        progress["imported_count"] = imported

    logger.info("Imported %d response(s) into %s (%d empty, %d skipped)", imported, target.id, empty, skipped)
    return ImportResult(
        success=True,
        message=f"{imported} response(s) imported successfully.",
        imported_count=imported,
        empty_count=empty,
        skipped_count=skipped,
    )

def import_backup(store: SurveyStore, content: Union[str, bytes]) -> ImportResult:
    """Import a full backup: surveys not already stored, then their responses."""
    return _run("backup import", _import_backup, store, content)

def _import_backup(progress: dict, store: SurveyStore, content) -> ImportResult:
    data = _load_document(content)
    if not isinstance(data, dict) or not isinstance(data.get("surveys"), list):
        raise ImportFailure(INVALID_FORMAT, "Invalid file format. The file must contain surveys.")

    # old survey id -> new survey id, and per old survey its question id map
    survey_map: dict[str, str] = {}
    question_maps: dict[str, dict[str, str]] = {}
    imported_surveys = imported_responses = skipped = 0
    progress.update(imported_surveys=0, imported_responses=0)

    for raw in data["surveys"]:
        if (not isinstance(raw, dict) or raw.get("id") in (None, "") or not _has_text(raw.get("title"))
                or not isinstance(raw.get("questions"), list)):
            skipped += 1
            continue
        old_id = str(raw["id"])
        if old_id in survey_map or store.get_survey(old_id) is not None:
            logger.info("Skipping survey %s: already present", old_id)
            skipped += 1
            continue
        try:
            survey, question_map = rekey_survey(raw, created_at=raw.get("createdAt") or now_iso(), updated_at=now_iso())
        except ImportFailure as exc:
            logger.info("Skipping survey %s: %s", old_id, exc.message)
            skipped += 1
            continue
        store.put_survey(survey)
        survey_map[old_id] = survey.id
        question_maps[old_id] = question_map
        imported_surveys += 1
        progress["imported_surveys"] = imported_surveys

    responses = data.get("responses")
    if isinstance(responses, list):
        existing_ids = store.response_ids()
        for raw in responses:
            if not _is_response_record(raw) or str(raw["id"]) in existing_ids:
                skipped += 1
                continue
            old_survey_id = str(raw.get("surveyId"))
            if old_survey_id not in survey_map:
                # owning survey was skipped or absent: the response cannot be placed
                skipped += 1
                continue
            try:
                answers = remap_answers(_parse_answers(raw["answers"]), question_maps[old_survey_id])
            except ValidationError:
                logger.info("Skipping response %s: malformed answers", raw["id"])
                skipped += 1
                continue
            response = SurveyResponse(
                id=new_id(),
                survey_id=survey_map[old_survey_id],
                answers=answers,
                submitted_at=_submitted_at(raw),
            )
            store.put_response(response)
            # a repeated id later in the same backup is a duplicate too
            existing_ids.add(str(raw["id"]))
            imported_responses += 1
            progress["imported_responses"] = imported_responses

    logger.info("Backup import: %d survey(s), %d response(s), %d record(s) skipped",
                imported_surveys, imported_responses, skipped)
    return ImportResult(
        success=True,
        message=f"Imported {imported_surveys} survey(s) and {imported_responses} response(s) successfully.",
        imported_surveys=imported_surveys,
        imported_responses=imported_responses,
        skipped_count=skipped,
    )
