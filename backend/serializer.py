"""Export documents built from store contents.

Every producer takes the store explicitly and returns plain JSON-ready
dicts (camelCase keys). A missing survey yields None; callers decide what
that means for them.
"""
import csv
import json
import logging
import re
from datetime import date, datetime, time, timezone
from typing import Iterable, Optional

import pandas as pd

from schemas import Survey, SurveyResponse
from store import SurveyStore

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0"
TABLE_FIXED_HEADERS = ["Response ID", "Submitted At"]
MULTI_VALUE_SEPARATOR = "; "


def now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision and a Z suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")

def _dump(model) -> dict:
    return model.model_dump(by_alias=True, exclude_none=True)

# ------------------------
# Date filtering
# ------------------------
def parse_timestamp(value) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC. None if unparseable."""
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed

def _parse_bound(value: str, end_of_day: bool) -> datetime:
    try:
        day = date.fromisoformat(value)
    except ValueError:
        parsed = parse_timestamp(value)
        if parsed is None:
            raise ValueError(f"Invalid date bound: {value!r}")
        return parsed
    return datetime.combine(day, time.max if end_of_day else time.min, tzinfo=timezone.utc)

def filter_by_date(responses: Iterable[SurveyResponse], start: Optional[str] = None,
                   end: Optional[str] = None) -> list[SurveyResponse]:
    """Keep responses submitted between start and end, both inclusive.

    A date-only end bound covers that whole day. With no bounds nothing is
    filtered; with any bound, responses whose timestamp cannot be read are
    left out.

    Raises:
        ValueError: If a bound is not a date or timestamp.
    """
    responses = list(responses)
    if not start and not end:
        return responses
    lo = _parse_bound(start, end_of_day=False) if start else None
    hi = _parse_bound(end, end_of_day=True) if end else None

    kept = []
    for r in responses:
        ts = parse_timestamp(r.submitted_at)
        if ts is None:
            logger.debug("Response %s has unreadable submittedAt %r, excluded from dated export", r.id, r.submitted_at)
            continue
        if lo is not None and ts < lo:
            continue
        if hi is not None and ts > hi:
            continue
        kept.append(r)
    return kept

# ------------------------
# JSON documents
# ------------------------
def survey_document(store: SurveyStore, survey_id: str) -> Optional[dict]:
    survey = store.get_survey(survey_id)
    return _dump(survey) if survey else None

def backup_document(store: SurveyStore) -> dict:
    return {
        "surveys": [_dump(s) for s in store.list_surveys()],
        "responses": [_dump(r) for r in store.list_responses()],
        "exportedAt": now_iso(),
        "version": EXPORT_VERSION,
    }

def survey_with_responses_document(store: SurveyStore, survey_id: str) -> Optional[dict]:
    survey = store.get_survey(survey_id)
    if not survey:
        return None
    return {
        "survey": _dump(survey),
        "responses": [_dump(r) for r in store.list_responses_for_survey(survey_id)],
        "exportedAt": now_iso(),
    }

def filtered_responses_document(store: SurveyStore, survey_id: str, start: Optional[str] = None,
                                end: Optional[str] = None) -> Optional[dict]:
    """Survey plus its responses inside [start, end], in a shape the response importer accepts."""
    survey = store.get_survey(survey_id)
    if not survey:
        return None
    responses = filter_by_date(store.list_responses_for_survey(survey_id), start, end)
    exported_at = now_iso()
    return {
        "survey": _dump(survey),
        "responses": [_dump(r) for r in responses],
        "metadata": {
            "totalResponses": len(responses),
            "dateRange": {
                "start": start or "all",
                "end": end or "all",
                "filtered": bool(start or end),
            },
            "exportedAt": exported_at,
            "version": EXPORT_VERSION,
        },
    }

def to_json_text(document) -> str:
    return json.dumps(document, indent=2, ensure_ascii=False)

# ------------------------
# Tabular export
# ------------------------
def format_cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, list):
        return MULTI_VALUE_SEPARATOR.join(format_cell(v) for v in value)
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)

def build_table(survey: Survey, responses: Iterable[SurveyResponse]) -> list[list[str]]:
    """Header row followed by one row per response, columns in survey question order."""
    rows = [TABLE_FIXED_HEADERS + [q.question for q in survey.questions]]
    for r in responses:
        by_question = {}
        for a in r.answers:
            by_question.setdefault(a.question_id, a.value)
        row = [r.id, r.submitted_at]
        for q in survey.questions:
            row.append(format_cell(by_question[q.id]) if q.id in by_question else "")
        rows.append(row)
    return rows

def tabular_document(store: SurveyStore, survey_id: str, start: Optional[str] = None,
                     end: Optional[str] = None) -> Optional[list[list[str]]]:
    survey = store.get_survey(survey_id)
    if not survey:
        return None
    responses = filter_by_date(store.list_responses_for_survey(survey_id), start, end)
    return build_table(survey, responses)

def to_csv_text(rows: list[list[str]]) -> str:
    """Comma-separated text; every field quoted, embedded quotes doubled, one line per row."""
    header, body = rows[0], rows[1:]
    df = pd.DataFrame(body, columns=header, dtype=str)
    return df.to_csv(index=False, quoting=csv.QUOTE_ALL, lineterminator="\n")

# ------------------------
# File names
# ------------------------
def slugify_title(title: str) -> str:
    return re.sub(r"[^a-z0-9]", "_", title or "", flags=re.IGNORECASE).lower()

def date_range_suffix(start: Optional[str], end: Optional[str]) -> str:
    if start or end:
        return f"_{start or 'start'}_to_{end or 'end'}"
    return "_all"

def survey_filename(survey: Survey) -> str:
    return f"survey_{slugify_title(survey.title)}_{survey.id}.json"

def full_survey_filename(survey: Survey) -> str:
    return f"full_survey_{slugify_title(survey.title)}_{survey.id}.json"

def responses_filename(survey: Survey, ext: str, start: Optional[str] = None, end: Optional[str] = None) -> str:
    return f"responses_{slugify_title(survey.title)}_{survey.id}{date_range_suffix(start, end)}.{ext}"

def backup_filename() -> str:
    return f"all_surveys_backup_{datetime.now(timezone.utc).date().isoformat()}.json"
