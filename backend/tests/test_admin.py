import serializer

HDR = {"Admin-API-Key": "test-key"}

def _create(client, **overrides):
    payload = {
        "title": "Admin Test",
        "description": "desc",
        "creatorName": "Ada",
        "creatorEmail": "ada@example.org",
        "questions": [
            {"type": "text", "question": "Q1 name", "required": True},
            {"type": "radio", "question": "Q2 colour", "options": [{"label": "Red"}, {"label": "Blue"}]},
            {"type": "scale", "question": "Q3 rate", "scaleMin": 1, "scaleMax": 10},
        ],
    }
    payload.update(overrides)
    return client.post("/admin/surveys", json=payload, headers=HDR)

def test_create_survey_assigns_fresh_ids(client):
    r = _create(client)
    assert r.status_code == 200, r.text
    body = r.json()
    sid = body["id"]

    d = client.get(f"/admin/surveys/{sid}", headers=HDR).json()
    assert d["title"] == "Admin Test"
    assert [q["question"] for q in d["questions"]] == ["Q1 name", "Q2 colour", "Q3 rate"]
    ids = [q["id"] for q in d["questions"]] + [o["id"] for o in d["questions"][1]["options"]]
    assert len(set(ids)) == 5
    assert d["questions"][2]["scaleMax"] == 10
    assert d["createdAt"] == d["updatedAt"]

def test_create_survey_validation(client):
    assert _create(client, title="   ").status_code == 400
    bad_scale = [{"type": "scale", "question": "Rate", "scaleMin": 5, "scaleMax": 5}]
    assert _create(client, questions=bad_scale).status_code == 400
    assert _create(client, questions=[{"type": "dropdown", "question": "?"}]).status_code == 422

def test_list_and_delete_survey_cascades(client):
    sid = _create(client).json()["id"]
    q1 = client.get(f"/admin/surveys/{sid}", headers=HDR).json()["questions"][0]["id"]
    for name in ("a", "b"):
        assert client.post(f"/public/surveys/{sid}/responses",
                           json={"answers": [{"questionId": q1, "value": name}]}).status_code == 200

    listing = client.get("/admin/surveys", headers=HDR).json()
    assert listing[0]["responseCount"] == 2 and listing[0]["questionCount"] == 3

    assert client.delete(f"/admin/surveys/{sid}", headers=HDR).status_code == 200
    assert client.get(f"/admin/surveys/{sid}", headers=HDR).status_code == 404
    assert client.get(f"/admin/surveys/{sid}/responses", headers=HDR).status_code == 404
    assert client.get("/admin/surveys", headers=HDR).json() == []
    assert client.delete(f"/admin/surveys/{sid}", headers=HDR).status_code == 404

def test_admin_key_is_required(client):
    from main import app
    from security import verify_admin
    # drop the test override for this call only
    app.dependency_overrides.pop(verify_admin)
    try:
        assert client.get("/admin/surveys").status_code == 401
    finally:
        app.dependency_overrides[verify_admin] = lambda: None

def test_update_survey_keeps_identity_and_answers(client, monkeypatch):
    created = _create(client).json()
    sid = created["id"]
    q1, q2, q3 = created["questions"]
    red, blue = q2["options"]
    client.post(f"/public/surveys/{sid}/responses", json={"answers": [{"questionId": q1["id"], "value": "Ada"}]})

    monkeypatch.setattr(serializer, "now_iso", lambda: "2030-01-01T00:00:00.000Z")
    r = client.put(f"/admin/surveys/{sid}", json={
        "title": "Edited",
        "questions": [
            {"id": q1["id"], "type": "text", "question": "Q1 full name", "required": True},
            {"id": q2["id"], "type": "radio", "question": "Q2 colour",
             "options": [{"id": red["id"], "label": "Crimson"}, {"label": "Green"}]},
            {"type": "yesno", "question": "Q4 new"},
        ],
    }, headers=HDR)
    assert r.status_code == 200, r.text

    d = client.get(f"/admin/surveys/{sid}", headers=HDR).json()
    assert d["id"] == sid and d["title"] == "Edited"
    assert d["createdAt"] == created["createdAt"]
    assert d["updatedAt"] == "2030-01-01T00:00:00.000Z"
    assert [q["question"] for q in d["questions"]] == ["Q1 full name", "Q2 colour", "Q4 new"]
    assert d["questions"][0]["id"] == q1["id"] and d["questions"][1]["id"] == q2["id"]
    assert d["questions"][2]["id"] not in (q1["id"], q2["id"], q3["id"])
    options = d["questions"][1]["options"]
    assert options[0] == {"id": red["id"], "label": "Crimson"}
    assert options[1]["id"] not in (red["id"], blue["id"])

    [resp] = client.get(f"/admin/surveys/{sid}/responses", headers=HDR).json()
    assert resp["answers"] == [{"questionId": q1["id"], "value": "Ada"}]

def test_update_survey_validation(client):
    sid = _create(client).json()["id"]
    assert client.put("/admin/surveys/missing", json={"title": "X"}, headers=HDR).status_code == 404
    assert client.put(f"/admin/surveys/{sid}", json={"title": " "}, headers=HDR).status_code == 400
    # a client-sent id reused twice only keeps the first
    dup = [{"id": "same", "type": "text", "question": "A"}, {"id": "same", "type": "text", "question": "B"}]
    d = client.put(f"/admin/surveys/{sid}", json={"title": "Dup", "questions": dup}, headers=HDR).json()
    assert d["questions"][0]["id"] == "same" and d["questions"][1]["id"] != "same"

def test_running_main_serves_app_with_uvicorn(monkeypatch):
    import runpy
    import uvicorn
    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda app, **kw: calls.append((app, kw)))
    monkeypatch.setenv("PORT", "9001")
    monkeypatch.delenv("HOST", raising=False)
    runpy.run_module("main", run_name="__main__")
    assert calls == [("main:app", {"host": "127.0.0.1", "port": 9001})]
