# Per-question result distributions and response date statistics
from collections import Counter
from datetime import timezone
from typing import Iterable, Optional

from schemas import Question, Survey, SurveyResponse
from serializer import filter_by_date, parse_timestamp
from store import SurveyStore

YES_NO_LABELS = {"yes": "Yes", "no": "No"}


def _is_blank(value) -> bool:
    return value is None or value == "" or value == []

def _option_label(question: Question, option_id) -> str:
    for o in question.options or []:
        if o.id == option_id:
            return o.label
    return str(option_id)

def distribution(question: Question, values: list) -> Optional[list[dict]]:
    """Count answer values for one question as [{name, value}].

    radio/yesno count the chosen value, checkbox counts each selected option,
    scale counts numbers in ascending order. Free-text questions have no
    distribution (None).
    """
    if question.type in ("radio", "yesno"):
        counts = Counter(str(v) for v in values)
        if question.type == "yesno":
            return [{"name": YES_NO_LABELS.get(k, k), "value": n} for k, n in counts.items()]
        return [{"name": _option_label(question, k), "value": n} for k, n in counts.items()]

    if question.type == "checkbox":
        counts = Counter()
        for v in values:
            counts.update(v if isinstance(v, list) else [v])
        return [{"name": _option_label(question, k), "value": n} for k, n in counts.items()]

    if question.type == "scale":
        counts = Counter()
        for v in values:
            try:
                counts[float(v)] += 1
            except (TypeError, ValueError):
                continue
        return [{"name": str(int(k)) if k.is_integer() else str(k), "value": n} for k, n in sorted(counts.items())]

    return None

def question_stats(survey: Survey, responses: Iterable[SurveyResponse]) -> list[dict]:
    responses = list(responses)
    out = []
    for q in survey.questions:
        values = []
        for r in responses:
            a = next((a for a in r.answers if a.question_id == q.id), None)
            if a is not None and not _is_blank(a.value):
                values.append(a.value)
        out.append({
            "questionId": q.id,
            "question": q.question,
            "type": q.type,
            "answered": len(values),
            "distribution": distribution(q, values),
        })
    return out

def survey_results(store: SurveyStore, survey_id: str, start: Optional[str] = None,
                   end: Optional[str] = None) -> Optional[dict]:
    survey = store.get_survey(survey_id)
    if not survey:
        return None
    responses = filter_by_date(store.list_responses_for_survey(survey_id), start, end)
    return {
        "survey": {"id": survey.id, "title": survey.title},
        "totalResponses": len(responses),
        "questions": question_stats(survey, responses),
    }

def response_date_stats(store: SurveyStore, survey_id: str) -> dict:
    """Earliest and latest submission dates (YYYY-MM-DD) for a survey's responses."""
    responses = store.list_responses_for_survey(survey_id)
    stamps = [ts for ts in (parse_timestamp(r.submitted_at) for r in responses) if ts is not None]
    if not stamps:
        return {"total": len(responses), "earliestDate": None, "latestDate": None, "dateRange": None}
    earliest = min(stamps).astimezone(timezone.utc).date().isoformat()
    latest = max(stamps).astimezone(timezone.utc).date().isoformat()
    return {
        "total": len(responses),
        "earliestDate": earliest,
        "latestDate": latest,
        "dateRange": {"start": earliest, "end": latest},
    }
