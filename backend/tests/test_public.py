# backend/tests/test_public.py
HDR = {"Admin-API-Key": "test-key"}

def _make_survey(client):
    sid = client.post("/admin/surveys", json={
        "title": "Public Flow",
        "questions": [
            {"type": "text", "question": "Name", "required": True},
            {"type": "checkbox", "question": "Pets", "options": [{"label": "Cat"}, {"label": "Dog"}]},
        ],
    }, headers=HDR).json()["id"]
    qs = client.get(f"/admin/surveys/{sid}", headers=HDR).json()["questions"]
    return sid, qs

def test_submit_and_list_responses(client):
    sid, qs = _make_survey(client)
    cat = qs[1]["options"][0]["id"]

    r = client.post(f"/public/surveys/{sid}/responses", json={"answers": [
        {"questionId": qs[0]["id"], "value": "Ada"},
        {"questionId": qs[1]["id"], "value": [cat]},
    ]})
    assert r.status_code == 200, r.text
    rid = r.json()["id"]

    lst = client.get(f"/admin/surveys/{sid}/responses", headers=HDR).json()
    assert len(lst) == 1 and lst[0]["id"] == rid
    assert lst[0]["surveyId"] == sid
    assert lst[0]["answers"][1] == {"questionId": qs[1]["id"], "value": [cat]}

def test_required_question_must_be_answered(client):
    sid, qs = _make_survey(client)
    r = client.post(f"/public/surveys/{sid}/responses", json={"answers": [
        {"questionId": qs[0]["id"], "value": ""},
    ]})
    assert r.status_code == 400

def test_unknown_question_or_survey(client):
    sid, qs = _make_survey(client)
    r = client.post(f"/public/surveys/{sid}/responses", json={"answers": [{"questionId": "nope", "value": "x"}]})
    assert r.status_code == 400
    r = client.post("/public/surveys/THIS_IS_INVALID/responses", json={"answers": []})
    assert r.status_code == 404

def test_results_and_date_stats(client):
    sid, qs = _make_survey(client)
    dog = qs[1]["options"][1]["id"]
    for name in ("Ada", "Bob"):
        client.post(f"/public/surveys/{sid}/responses", json={"answers": [
            {"questionId": qs[0]["id"], "value": name},
            {"questionId": qs[1]["id"], "value": [dog]},
        ]})

    res = client.get(f"/admin/surveys/{sid}/results", headers=HDR).json()
    assert res["totalResponses"] == 2
    assert res["questions"][1]["distribution"] == [{"name": "Dog", "value": 2}]

    stats = client.get(f"/admin/surveys/{sid}/responses/date-stats", headers=HDR).json()
    assert stats["total"] == 2
    assert stats["earliestDate"] == stats["latestDate"]

    assert client.get(f"/admin/surveys/{sid}/results?start=garbage", headers=HDR).status_code == 422
