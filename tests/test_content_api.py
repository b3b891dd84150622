from foundry.db.enums import ContainerEnum
from foundry.db.repositories.documents import DocumentsRepository
from foundry.services.content import PLATFORM_IN_USE_MESSAGE


def test_platform_crud_round_trip(api_client, admin_headers):
    created = api_client.post(
        "/platforms",
        json={"id": "alpha", "name": "Alpha", "links": {"Website": "https://alpha.example.com"}},
        headers=admin_headers,
    )
    assert created.status_code == 200
    assert created.json() == {"id": "alpha", "name": "Alpha", "links": {"Website": "https://alpha.example.com"}}

    updated = api_client.put("/platforms/alpha", json={"name": "Alpha Prime"}, headers=admin_headers)
    assert updated.status_code == 200
    assert updated.json() == {"id": "alpha", "name": "Alpha Prime"}

    assert api_client.get("/platforms/alpha").json()["name"] == "Alpha Prime"
    assert [item["id"] for item in api_client.get("/platforms").json()] == ["alpha"]

    deleted = api_client.delete("/platforms/alpha", headers=admin_headers)
    assert deleted.status_code == 204
    assert api_client.get("/platforms/alpha").status_code == 404


def test_reads_are_public_and_writes_need_admin(api_client, user_headers):
    assert api_client.get("/topics").status_code == 200

    anonymous = api_client.post("/topics", json={"id": "ai", "name": "AI"})
    assert anonymous.status_code == 401

    not_admin = api_client.post("/topics", json={"id": "ai", "name": "AI"}, headers=user_headers)
    assert not_admin.status_code == 403
    assert api_client.delete("/topics/ai", headers=user_headers).status_code == 403
    assert api_client.get("/topics").json() == []


def test_invalid_payload_returns_issue_list(api_client, admin_headers):
    response = api_client.post(
        "/news",
        json={"id": "Launch Day", "title": "", "imageUrl": "not a url"},
        headers=admin_headers,
    )

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert detail["message"].startswith("Invalid news:")
    assert {issue["field"] for issue in detail["issues"]} == {"id", "title", "imageUrl"}


def test_path_id_overrides_body_id(api_client, admin_headers):
    response = api_client.post("/topics/robotics", json={"id": "other", "name": "Robotics"}, headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["id"] == "robotics"
    assert api_client.get("/topics/other").status_code == 404


def test_news_filters_by_platform_and_topic(api_client, admin_headers):
    posts = [
        {"id": "one", "title": "One", "platformIds": ["alpha"], "topics": ["ai"]},
        {"id": "two", "title": "Two", "platformIds": ["alpha", "beta"], "topics": ["robotics"]},
        {"id": "three", "title": "Three", "platformIds": ["beta"], "topics": ["ai"]},
    ]
    for post in posts:
        assert api_client.post("/news", json=post, headers=admin_headers).status_code == 200

    def ids(**params):
        return [item["id"] for item in api_client.get("/news", params=params).json()]

    assert ids() == ["one", "three", "two"]
    assert ids(platformId="alpha") == ["one", "two"]
    assert ids(topic="ai") == ["one", "three"]
    assert ids(platformId="beta", topic="ai") == ["three"]
    assert ids(platformId="gamma") == []


def test_platform_with_news_cannot_be_deleted(api_client, admin_headers):
    api_client.post("/platforms", json={"id": "alpha", "name": "Alpha"}, headers=admin_headers)
    api_client.post("/news", json={"id": "launch", "title": "Launch", "platformIds": ["alpha"]}, headers=admin_headers)

    response = api_client.delete("/platforms/alpha", headers=admin_headers)

    assert response.status_code == 409
    assert response.json()["detail"] == PLATFORM_IN_USE_MESSAGE
    assert api_client.get("/platforms/alpha").status_code == 200


def test_missing_items_return_404(api_client, admin_headers):
    assert api_client.get("/news/ghost").json() == {"detail": "News not found"}
    assert api_client.get("/platforms/ghost").json() == {"detail": "Platform not found"}

    response = api_client.delete("/topics/ghost", headers=admin_headers)
    assert response.status_code == 404
    assert response.json() == {"detail": "Topic not found"}


def test_list_skips_stored_items_failing_validation(api_client, db_session):
    repo = DocumentsRepository(db_session, ContainerEnum.platforms)
    repo.upsert({"id": "alpha", "name": "Alpha"})
    repo.upsert({"id": "broken", "name": ""})

    response = api_client.get("/platforms")

    assert response.status_code == 200
    assert response.json() == [{"id": "alpha", "name": "Alpha"}]
