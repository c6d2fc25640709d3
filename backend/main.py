import os
import logging
from typing import Optional
from fastapi import FastAPI, Depends, HTTPException, UploadFile, File, Response, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from dotenv import load_dotenv

from db import Base, engine, get_db
from schemas import SurveyCreate, ResponseCreate, Survey, Question, QuestionOption, SurveyResponse, Answer, ImportResult
from security import verify_admin
from store import SurveyStore, StoreError
from ids import new_id
import reconciliation
import reporting
import serializer

load_dotenv()
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Survey Import/Export API")

origins = os.getenv("ORIGINS", "http://localhost:5173").split(",")
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Base.metadata.create_all(bind=engine)

IMPORT_STATUS = {
    reconciliation.PARSE_ERROR: 400,
    reconciliation.INVALID_FORMAT: 400,
    reconciliation.INVALID_QUESTION: 400,
    reconciliation.NOT_FOUND: 404,
    reconciliation.CONFLICT: 409,
    reconciliation.STORE_ERROR: 500,
    reconciliation.UNEXPECTED: 500,
}

def get_store(db: Session = Depends(get_db)) -> SurveyStore:
    return SurveyStore(db)

def _require_survey(store: SurveyStore, survey_id: str) -> Survey:
    survey = store.get_survey(survey_id)
    if not survey:
        raise HTTPException(404, "Survey not found")
    return survey

def _attachment(content: str, media_type: str, filename: str) -> Response:
    return Response(content=content.encode("utf-8"), media_type=media_type,
                    headers={"Content-Disposition": f"attachment; filename={filename}"})

def _import_response(result: ImportResult) -> JSONResponse:
    status = 200 if result.success else IMPORT_STATUS.get(result.reason, 400)
    return JSONResponse(status_code=status, content=result.model_dump(by_alias=True, exclude_none=True, mode="json"))

async def _read_upload(file: UploadFile) -> bytes:
    try:
        return await file.read()
    finally:
        await file.close()

@app.get("/health")
def health():
    """Basic readiness probe.

    Returns:
        dict: {"ok": True}
    """
    return {"ok": True}

# ------------------------
# Admin: surveys
# ------------------------
def _survey_title(payload: SurveyCreate) -> str:
    title = (payload.title or "").strip()
    if not title:
        raise HTTPException(status_code=400, detail="Title is required")
    return title

def _build_questions(payload: SurveyCreate, keep_ids: bool = False) -> list:
    """Turn payload questions into document questions, dropping blank ones.

    With keep_ids, question and option ids sent by the client are reused (once
    each) so stored answers keep pointing at the same questions.
    """
    used = set()

    def _id(client_id):
        if keep_ids and client_id and client_id not in used:
            used.add(client_id)
            return client_id
        return new_id()

    questions = []
    for q in payload.questions:
        text = (q.question or "").strip()
        if not text:
            continue
        if q.type == "scale":
            lo = q.scale_min if q.scale_min is not None else 1
            hi = q.scale_max if q.scale_max is not None else 5
            if lo >= hi:
                raise HTTPException(400, f"Scale minimum must be below maximum for {text!r}")
        else:
            lo = hi = None
        options = None
        if q.type in ("radio", "checkbox"):
            options = [QuestionOption(id=_id(o.id), label=o.label.strip()) for o in q.options if o.label.strip()]
        questions.append(Question(id=_id(q.id), type=q.type, question=text, required=q.required,
                                  options=options, scale_min=lo, scale_max=hi))
    return questions

def _save_survey(store: SurveyStore, survey: Survey) -> dict:
    try:
        store.put_survey(survey)
    except StoreError as exc:
        raise HTTPException(500, str(exc))
    return survey.model_dump(by_alias=True, exclude_none=True)

@app.post("/admin/surveys", dependencies=[Depends(verify_admin)])
def create_survey(payload: SurveyCreate, store: SurveyStore = Depends(get_store)):
    """Create a survey; the survey, its questions and their options all get new ids.

    Args:
        payload (SurveyCreate): Title (required), description, creator fields, questions[].
        store (SurveyStore): Entity store.

    Returns:
        dict: The stored survey document.

    Raises:
        HTTPException: 400 if the title is empty or a scale range is inverted.
    """
    title = _survey_title(payload)
    questions = _build_questions(payload)
    now = serializer.now_iso()
    survey = Survey(
        id=new_id(),
        title=title,
        description=(payload.description or "").strip(),
        creator_name=payload.creator_name.strip(),
        creator_email=payload.creator_email.strip(),
        creator_organization=(payload.creator_organization or "").strip() or None,
        questions=questions,
        created_at=now,
        updated_at=now,
    )
    return _save_survey(store, survey)

@app.put("/admin/surveys/{survey_id}", dependencies=[Depends(verify_admin)])
def update_survey(survey_id: str, payload: SurveyCreate, store: SurveyStore = Depends(get_store)):
    """Replace a survey's content in place.

    The survey keeps its id, ``createdAt`` and results PIN; ``updatedAt`` is
    refreshed. Questions and options keep the ids the payload sends back and
    new ones get fresh ids.

    Raises:
        HTTPException: 404 if survey not found; 400 as for creation.
    """
    existing = _require_survey(store, survey_id)
    title = _survey_title(payload)
    questions = _build_questions(payload, keep_ids=True)
    survey = existing.model_copy(update={
        "title": title,
        "description": (payload.description or "").strip(),
        "creator_name": payload.creator_name.strip(),
        "creator_email": payload.creator_email.strip(),
        "creator_organization": (payload.creator_organization or "").strip() or None,
        "questions": questions,
        "updated_at": serializer.now_iso(),
    })
    return _save_survey(store, survey)

@app.get("/admin/surveys", dependencies=[Depends(verify_admin)])
def list_surveys(store: SurveyStore = Depends(get_store)):
    """List all surveys with their response counts.

    Returns:
        list[dict]: [{id, title, description, createdAt, questionCount, responseCount}]
    """
    out = []
    for s in store.list_surveys():
        out.append({
            "id": s.id,
            "title": s.title,
            "description": s.description,
            "createdAt": s.created_at,
            "questionCount": len(s.questions),
            "responseCount": len(store.list_responses_for_survey(s.id)),
        })
    return out

@app.get("/admin/surveys/{survey_id}", dependencies=[Depends(verify_admin)])
def survey_detail(survey_id: str, store: SurveyStore = Depends(get_store)):
    return _require_survey(store, survey_id).model_dump(by_alias=True, exclude_none=True)

@app.delete("/admin/surveys/{survey_id}", dependencies=[Depends(verify_admin)])
def delete_survey(survey_id: str, store: SurveyStore = Depends(get_store)):
    """Hard-delete a survey and all of its responses.

    Raises:
        HTTPException: 404 if survey not found.
    """
    try:
        deleted = store.delete_survey(survey_id)
    except StoreError as exc:
        raise HTTPException(500, str(exc))
    if not deleted:
        raise HTTPException(404, "Survey not found")
    return {"ok": True}

# ------------------------
# Responses
# ------------------------
@app.post("/public/surveys/{survey_id}/responses")
def submit_response(survey_id: str, payload: ResponseCreate, store: SurveyStore = Depends(get_store)):
    """Store one respondent's answers.

    Args:
        survey_id (str): Survey being answered.
        payload (ResponseCreate): {answers: [{questionId, value}]}

    Returns:
        dict: {"id": <new_response_id>}

    Raises:
        HTTPException: 404 if survey not found; 400 if an answer targets an
            unknown question or a required question is unanswered.
    """
    survey = _require_survey(store, survey_id)
    known = {q.id for q in survey.questions}
    answers = []
    for a in payload.answers:
        if a.question_id not in known:
            raise HTTPException(400, f"Unknown question {a.question_id}")
        if a.value in ("", []):
            continue
        answers.append(Answer(question_id=a.question_id, value=a.value))

    answered = {a.question_id for a in answers}
    missing = [q.question for q in survey.questions if q.required and q.id not in answered]
    if missing:
        raise HTTPException(400, f"Required question(s) unanswered: {', '.join(missing)}")

    response = SurveyResponse(id=new_id(), survey_id=survey.id, answers=answers, submitted_at=serializer.now_iso())
    try:
        store.put_response(response)
    except StoreError as exc:
        raise HTTPException(500, str(exc))
    return {"id": response.id}

@app.get("/admin/surveys/{survey_id}/responses", dependencies=[Depends(verify_admin)])
def survey_responses(survey_id: str, store: SurveyStore = Depends(get_store)):
    _require_survey(store, survey_id)
    return [r.model_dump(by_alias=True) for r in store.list_responses_for_survey(survey_id)]

@app.get("/admin/surveys/{survey_id}/responses/date-stats", dependencies=[Depends(verify_admin)])
def responses_date_stats(survey_id: str, store: SurveyStore = Depends(get_store)):
    _require_survey(store, survey_id)
    return reporting.response_date_stats(store, survey_id)

@app.get("/admin/surveys/{survey_id}/results", dependencies=[Depends(verify_admin)])
def survey_results(survey_id: str, start: Optional[str] = Query(None), end: Optional[str] = Query(None),
                   store: SurveyStore = Depends(get_store)):
    """Per-question answer distributions, optionally restricted to a date range."""
    try:
        results = reporting.survey_results(store, survey_id, start, end)
    except ValueError as exc:
        raise HTTPException(422, str(exc))
    if results is None:
        raise HTTPException(404, "Survey not found")
    return results

# ------------------------
# Admin: exports
# ------------------------
@app.get("/admin/surveys/{survey_id}/export/survey.json", dependencies=[Depends(verify_admin)])
def export_survey(survey_id: str, store: SurveyStore = Depends(get_store)):
    survey = _require_survey(store, survey_id)
    doc = serializer.survey_document(store, survey_id)
    return _attachment(serializer.to_json_text(doc), "application/json", serializer.survey_filename(survey))

@app.get("/admin/surveys/{survey_id}/export/full.json", dependencies=[Depends(verify_admin)])
def export_full_survey(survey_id: str, store: SurveyStore = Depends(get_store)):
    survey = _require_survey(store, survey_id)
    doc = serializer.survey_with_responses_document(store, survey_id)
    return _attachment(serializer.to_json_text(doc), "application/json", serializer.full_survey_filename(survey))

@app.get("/admin/surveys/{survey_id}/export/responses.json", dependencies=[Depends(verify_admin)])
def export_responses_json(survey_id: str, start: Optional[str] = Query(None), end: Optional[str] = Query(None),
                          store: SurveyStore = Depends(get_store)):
    """Survey plus responses submitted in [start, end] (inclusive, dates or timestamps)."""
    survey = _require_survey(store, survey_id)
    try:
        doc = serializer.filtered_responses_document(store, survey_id, start, end)
    except ValueError as exc:
        raise HTTPException(422, str(exc))
    return _attachment(serializer.to_json_text(doc), "application/json",
                       serializer.responses_filename(survey, "json", start, end))

@app.get("/admin/surveys/{survey_id}/export/responses.csv", dependencies=[Depends(verify_admin)])
def export_responses_csv(survey_id: str, start: Optional[str] = Query(None), end: Optional[str] = Query(None),
                         store: SurveyStore = Depends(get_store)):
    """One row per response, one column per question, every field quoted."""
    survey = _require_survey(store, survey_id)
    try:
        rows = serializer.tabular_document(store, survey_id, start, end)
    except ValueError as exc:
        raise HTTPException(422, str(exc))
    return _attachment(serializer.to_csv_text(rows), "text/csv; charset=utf-8",
                       serializer.responses_filename(survey, "csv", start, end))

@app.get("/admin/export/backup.json", dependencies=[Depends(verify_admin)])
def export_backup(store: SurveyStore = Depends(get_store)):
    doc = serializer.backup_document(store)
    return _attachment(serializer.to_json_text(doc), "application/json", serializer.backup_filename())

# ------------------------
# Admin: imports
# ------------------------
@app.post("/admin/import/survey", dependencies=[Depends(verify_admin)])
async def import_survey(file: UploadFile = File(...), store: SurveyStore = Depends(get_store)):
    """Import a survey document as a new survey (fresh ids throughout)."""
    content = await _read_upload(file)
    return _import_response(reconciliation.import_survey(store, content))

@app.post("/admin/surveys/{survey_id}/import/responses", dependencies=[Depends(verify_admin)])
async def import_responses(survey_id: str, file: UploadFile = File(...), keep_empty: Optional[bool] = Query(None),
                           store: SurveyStore = Depends(get_store)):
    """Import responses into an existing survey, mapping question ids onto it."""
    content = await _read_upload(file)
    return _import_response(reconciliation.import_responses(store, survey_id, content, keep_empty=keep_empty))

@app.post("/admin/import/backup", dependencies=[Depends(verify_admin)])
async def import_backup(file: UploadFile = File(...), store: SurveyStore = Depends(get_store)):
    """Import a full backup; surveys whose id is already stored are skipped."""
    content = await _read_upload(file)
    return _import_response(reconciliation.import_backup(store, content))


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host=os.getenv("HOST", "127.0.0.1"), port=int(os.getenv("PORT", "8000")))
