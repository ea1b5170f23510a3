from datetime import date

from sqlmodel import SQLModel

from conftest import add_diary, add_dream


def make_user(client, birth_date="1990-06-15"):
    r = client.post("/users", json={"nickname": "yume", "birth_date": birth_date})
    assert r.status_code == 201
    return r.json()["id"]


def test_status(client):
    assert client.get("/").json()["status"] == "ok"


def test_user_age_is_computed(client):
    uid = make_user(client)
    body = client.get(f"/users/{uid}").json()
    assert body["birth_date"] == "1990-06-15"
    assert isinstance(body["age"], int)


def test_missing_user_is_404(client):
    assert client.get("/users/999").status_code == 404


def test_attribute_definitions(client):
    all_defs = client.get("/attributes/definitions").json()
    numeric = client.get("/attributes/definitions", params={"conditionable": True}).json()
    assert {d["key"] for d in numeric} < {d["key"] for d in all_defs}
    assert all(d["value_type"] == "number" for d in numeric)


def test_attribute_upsert_flips_wishlist(client):
    uid = make_user(client)
    r = client.post(f"/users/{uid}/wishlists", json={
        "title": "new bike",
        "condition1_attribute": "savings",
        "condition1_operator": ">=",
        "condition1_value": 20,
    })
    assert r.status_code == 201
    wish = r.json()
    assert wish["status"] == "pending"
    assert wish["condition1_operator"] == "gte"
    assert wish["evaluation"] == {"condition1_met": False, "condition2_met": False, "achievable": False}

    r = client.put(f"/users/{uid}/attributes/savings", json={"number": 25})
    assert r.status_code == 200
    assert r.json()["wishlists_changed"] == [wish["id"]]
    assert client.get(f"/wishlists/{wish['id']}").json()["status"] == "achievable"

    attrs = client.get(f"/users/{uid}/attributes").json()
    assert attrs[0]["key"] == "savings" and attrs[0]["value"] == 25

    assert client.delete(f"/users/{uid}/attributes/savings").status_code == 200
    assert client.get(f"/wishlists/{wish['id']}").json()["status"] == "pending"


def test_attribute_type_mismatch_is_422(client):
    uid = make_user(client)
    assert client.put(f"/users/{uid}/attributes/savings", json={"text": "plenty"}).status_code == 422
    assert client.put(f"/users/{uid}/attributes/age", json={"number": 30}).status_code == 422


def test_wishlist_validation(client):
    uid = make_user(client)
    partial = {"title": "x", "condition1_attribute": "savings", "condition1_operator": "gte"}
    assert client.post(f"/users/{uid}/wishlists", json=partial).status_code == 422

    bad_op = {"title": "x", "condition1_attribute": "savings", "condition1_operator": "gt", "condition1_value": 1}
    assert client.post(f"/users/{uid}/wishlists", json=bad_op).status_code == 422

    assert client.post(f"/users/{uid}/wishlists", json={"description": "no title"}).status_code == 422


def test_achieve_and_unachieve(client):
    uid = make_user(client)
    wid = client.post(f"/users/{uid}/wishlists", json={"title": "anything"}).json()["id"]

    achieved = client.post(f"/wishlists/{wid}/achieve").json()
    assert achieved["status"] == "achieved"
    assert achieved["achieved_at"] is not None

    client.post(f"/users/{uid}/wishlists/reconcile")
    assert client.get(f"/wishlists/{wid}").json()["status"] == "achieved"

    restored = client.post(f"/wishlists/{wid}/unachieve").json()
    assert restored["status"] == "achievable"
    assert restored["achieved_at"] is None


def test_wishlist_update_and_delete(client):
    uid = make_user(client)
    wid = client.post(f"/users/{uid}/wishlists", json={"title": "a"}).json()["id"]

    r = client.patch(f"/wishlists/{wid}", json={
        "condition2_attribute": "weight", "condition2_operator": "lte", "condition2_value": 60,
    })
    assert r.status_code == 200
    assert r.json()["status"] == "pending"

    assert client.patch(f"/wishlists/{wid}", json={"condition1_attribute": "savings"}).status_code == 422

    assert [w["id"] for w in client.get(f"/users/{uid}/wishlists").json()] == [wid]
    assert client.delete(f"/wishlists/{wid}").status_code == 200
    assert client.get(f"/wishlists/{wid}").status_code == 404


def test_diary_lifecycle(client):
    uid = make_user(client)
    assert client.get(f"/users/{uid}/diaries/2025-01-01").json() is None

    r = client.post(f"/users/{uid}/diaries/2025-01-01", json={"content": "hello", "emotion_tags": ["joy"]})
    assert r.status_code == 201
    assert r.json()["content_updated_at"] is not None

    dup = client.post(f"/users/{uid}/diaries/2025-01-01", json={"content": "again"})
    assert dup.status_code == 409

    r = client.patch(f"/users/{uid}/diaries/2025-01-01", json={"summary": "greeting"})
    assert r.json()["summary"] == "greeting"
    assert r.json()["content"] == "hello"

    assert client.delete(f"/users/{uid}/diaries/2025-01-01").status_code == 200
    assert client.get(f"/users/{uid}/diaries/2025-01-01").json() is None
    assert client.delete(f"/users/{uid}/diaries/2025-01-01").status_code == 404


def test_dream_lifecycle(client):
    uid = make_user(client)
    r = client.post(f"/users/{uid}/dreams/2025-01-02", json={"content": "flying", "keywords": ["sky", "sky", " "]})
    assert r.status_code == 201
    assert r.json()["keywords"] == ["sky"]

    r = client.patch(f"/users/{uid}/dreams/2025-01-02", json={"fortune_result": "change ahead", "fortune_style": "jung"})
    body = r.json()
    assert body["fortune_style"] == "jung"
    assert body["fortune_at"] is not None

    r = client.put(f"/users/{uid}/dreams/2025-01-02/keywords", json={"keywords": ["bird", "sky"]})
    assert r.json()["keywords"] == ["bird", "sky"]
    assert client.get(f"/users/{uid}/timeline/dream-keywords").json() == ["bird", "sky"]

    assert client.delete(f"/users/{uid}/dreams/2025-01-02").status_code == 200
    assert client.get(f"/users/{uid}/dreams/2025-01-02").json() is None
    assert client.get(f"/users/{uid}/timeline/dream-keywords").json() == []


def test_timeline_pagination_over_http(client, session, user):
    for d in (1, 3, 5):
        add_diary(session, user.id, date(2025, 1, d), emotion_tags=["calm"])
    for d in (2, 4):
        add_dream(session, user.id, date(2025, 1, d), keywords=["sea"])

    seen, cursor = [], None
    while True:
        params = {"page_size": 2}
        if cursor:
            params["cursor"] = cursor
        body = client.get(f"/users/{user.id}/timeline", params=params).json()
        seen.extend(i["date"] for i in body["items"])
        cursor = body["next_cursor"]
        if not cursor:
            break

    assert seen == ["2025-01-05", "2025-01-04", "2025-01-03", "2025-01-02", "2025-01-01"]


def test_timeline_filters_over_http(client, session, user):
    add_diary(session, user.id, date(2025, 1, 1), emotion_tags=["calm"])
    add_diary(session, user.id, date(2025, 1, 2), emotion_tags=["joy"])
    add_dream(session, user.id, date(2025, 1, 3), keywords=["sea"])

    body = client.get(f"/users/{user.id}/timeline", params={
        "type": "diary", "emotion_tags": ["joy", "calm"],
    }).json()
    assert [i["date"] for i in body["items"]] == ["2025-01-02", "2025-01-01"]

    body = client.get(f"/users/{user.id}/timeline", params={"dream_keywords": "nope", "type": "dream"}).json()
    assert body == {"items": [], "next_cursor": None}


def test_timeline_rejects_bad_input(client, user):
    assert client.get(f"/users/{user.id}/timeline", params={"page_size": 0}).status_code == 422
    assert client.get(f"/users/{user.id}/timeline", params={"type": "wish"}).status_code == 422
    assert client.get(f"/users/{user.id}/timeline", params={"cursor": "yesterday"}).status_code == 400


def test_reflection_aggregates(client, session, user):
    add_diary(session, user.id, date(2025, 1, 1), emotion_tags=["calm", "joy"])
    add_dream(session, user.id, date(2024, 12, 3), keywords=["moon"])

    assert client.get(f"/users/{user.id}/timeline/emotion-tags").json() == ["calm", "joy"]
    assert client.get(f"/users/{user.id}/timeline/months").json() == [
        {"year": 2025, "month": 1}, {"year": 2024, "month": 12},
    ]

    cal = client.get(f"/users/{user.id}/calendar/2024/12").json()
    assert cal["dreams"] == [{"date": "2024-12-03", "keywords": ["moon"]}]
    assert cal["diaries"] == []
    assert client.get(f"/users/{user.id}/calendar/2024/13").status_code == 422

    stats = client.get(f"/users/{user.id}/stats").json()
    assert len(stats["monthly"]) == 12


def test_birth_date_change_resyncs_age_goal(client):
    uid = make_user(client, birth_date=None)
    wid = client.post(f"/users/{uid}/wishlists", json={
        "title": "grown up",
        "condition1_attribute": "age",
        "condition1_operator": "gte",
        "condition1_value": 18,
    }).json()["id"]
    assert client.get(f"/wishlists/{wid}").json()["status"] == "pending"

    r = client.patch(f"/users/{uid}", json={"birth_date": "1980-01-01"})
    assert r.json()["birth_date"] == "1980-01-01"
    assert client.get(f"/wishlists/{wid}").json()["status"] == "achievable"


def test_blank_condition_attribute_is_rejected(client):
    uid = make_user(client)
    blank = {"title": "x", "condition1_attribute": "", "condition1_operator": "gte", "condition1_value": 1000000}
    assert client.post(f"/users/{uid}/wishlists", json=blank).status_code == 422

    spaces = {**blank, "condition1_attribute": "   "}
    assert client.post(f"/users/{uid}/wishlists", json=spaces).status_code == 422

    wid = client.post(f"/users/{uid}/wishlists", json={"title": "x"}).json()["id"]
    r = client.patch(f"/wishlists/{wid}", json={"condition2_attribute": "", "condition2_operator": "gte", "condition2_value": 1})
    assert r.status_code == 422
    assert client.post(f"/users/{uid}/wishlists", json={**blank, "condition1_operator": ""}).status_code == 422


def test_patch_cannot_clear_content(client):
    uid = make_user(client)
    client.post(f"/users/{uid}/diaries/2025-01-01", json={"content": "kept"})
    client.post(f"/users/{uid}/dreams/2025-01-01", json={"content": "kept"})

    for kind in ("diaries", "dreams"):
        assert client.patch(f"/users/{uid}/{kind}/2025-01-01", json={"content": None}).status_code == 422
        assert client.patch(f"/users/{uid}/{kind}/2025-01-01", json={"content": ""}).status_code == 422
        assert client.get(f"/users/{uid}/{kind}/2025-01-01").json()["content"] == "kept"


def test_calendar_year_out_of_range(client, user):
    assert client.get(f"/users/{user.id}/calendar/0/1").status_code == 422
    assert client.get(f"/users/{user.id}/calendar/10000/1").status_code == 422
    assert client.get(f"/users/{user.id}/calendar/2025/0").status_code == 422


def test_store_failure_is_reported_as_500(client, engine, user):
    SQLModel.metadata.tables["diary"].drop(engine)
    r = client.get(f"/users/{user.id}/diaries/2025-01-01")
    assert r.status_code == 500
    assert r.json() == {"detail": "Record store failure"}


def test_settings_endpoints_and_default_fortune_style(client):
    r = client.post("/users", json={"birth_date": "1990-01-01", "fortune_style": "freud"})
    uid = r.json()["id"]
    settings = client.get(f"/users/{uid}/settings").json()
    assert settings["fortune_style"] == "freud"
    assert settings["voice_format_level"] == "light"

    r = client.patch(f"/users/{uid}/settings", json={"voice_format_level": "thorough"})
    assert r.json()["voice_format_level"] == "thorough"
    assert r.json()["fortune_style"] == "freud"
    assert client.patch(f"/users/{uid}/settings", json={"fortune_style": "tarot"}).status_code == 422

    client.post(f"/users/{uid}/dreams/2025-01-02", json={"content": "falling"})
    dream = client.patch(f"/users/{uid}/dreams/2025-01-02", json={"fortune_result": "let go"}).json()
    assert dream["fortune_style"] == "freud"

    assert client.get("/users/999/settings").status_code == 404


def test_glossary_endpoints(client):
    uid = make_user(client)
    assert client.post(f"/users/{uid}/glossary", json={"name": ""}).status_code == 422

    item = client.post(f"/users/{uid}/glossary", json={"name": "Mochi", "description": "the cat"}).json()
    assert client.get(f"/users/{uid}/glossary").json()[0]["name"] == "Mochi"

    r = client.patch(f"/glossary/{item['id']}", json={"description": "the old cat"})
    assert r.json()["description"] == "the old cat"
    assert r.json()["name"] == "Mochi"

    assert client.delete(f"/glossary/{item['id']}").status_code == 200
    assert client.get(f"/users/{uid}/glossary").json() == []
    assert client.delete(f"/glossary/{item['id']}").status_code == 404


def test_account_deletion(client):
    uid = make_user(client)
    client.post(f"/users/{uid}/diaries/2025-01-01", json={"content": "hello"})
    client.post(f"/users/{uid}/dreams/2025-01-01", json={"content": "dream", "keywords": ["sea"]})
    client.post(f"/users/{uid}/wishlists", json={"title": "w"})
    client.post(f"/users/{uid}/glossary", json={"name": "Mochi"})
    client.put(f"/users/{uid}/attributes/savings", json={"number": 3})

    assert client.delete(f"/users/{uid}").json() == {"success": True}

    assert client.get(f"/users/{uid}").status_code == 404
    assert client.get(f"/users/{uid}/settings").status_code == 404
    assert client.get(f"/users/{uid}/diaries/2025-01-01").json() is None
    assert client.get(f"/users/{uid}/timeline").json()["items"] == []
    assert client.get(f"/users/{uid}/timeline/dream-keywords").json() == []
    assert client.get(f"/users/{uid}/wishlists").json() == []
    assert client.get(f"/users/{uid}/glossary").json() == []
    assert client.get(f"/users/{uid}/attributes").json() == []
    assert client.delete(f"/users/{uid}").status_code == 404
