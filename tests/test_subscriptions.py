import pytest

from foundry.services.subscribers import (
    UNSUBSCRIBED_MESSAGE,
    filter_recipients,
    subscriber_counts,
    subscribers_repo,
)


def test_subscribe_creates_then_refreshes(api_client, db_session):
    created = api_client.post(
        "/subscriptions",
        json={"email": "Reader@Example.com", "subscribeAll": False, "platformIds": ["alpha", "alpha", "beta"]},
    )

    assert created.status_code == 201
    assert created.json() == {"ok": True}
    first = subscribers_repo(db_session).get("reader@example.com")
    assert first["email"] == "reader@example.com"
    assert first["platformIds"] == ["alpha", "beta"]
    assert first["subscribeAll"] is False
    assert first["status"] == "active"
    assert first["unsubscribeToken"]

    again = api_client.post("/subscriptions", json={"email": "reader@example.com"})

    assert again.status_code == 200
    db_session.expire_all()
    second = subscribers_repo(db_session).get("reader@example.com")
    assert second["unsubscribeToken"] == first["unsubscribeToken"]
    assert second["createdAt"] == first["createdAt"]
    assert second["subscribeAll"] is True
    assert second["platformIds"] == []


def test_subscribe_rejects_invalid_email(api_client):
    assert api_client.post("/subscriptions", json={"email": "not-an-email"}).status_code == 422


def test_listing_subscribers_requires_admin(api_client, admin_headers, user_headers):
    api_client.post("/subscriptions", json={"email": "a@example.com"})

    assert api_client.get("/subscriptions").status_code == 401
    assert api_client.get("/subscriptions", headers=user_headers).status_code == 403
    listed = api_client.get("/subscriptions", headers=admin_headers).json()
    assert [item["email"] for item in listed] == ["a@example.com"]


def test_unsubscribe_link_marks_subscriber(api_client, db_session):
    api_client.post("/subscriptions", json={"email": "reader@example.com"})

    response = api_client.get("/subscriptions/unsubscribe", params={"email": "READER@example.com"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/plain")
    assert response.text == UNSUBSCRIBED_MESSAGE
    assert subscribers_repo(db_session).get("reader@example.com")["status"] == "unsubscribed"
    assert subscriber_counts(db_session) == {"active": 0, "unsubscribed": 1, "total": 1}


def test_unsubscribe_post_accepts_body_and_unknown_email(api_client, db_session):
    api_client.post("/subscriptions", json={"email": "reader@example.com"})

    by_body = api_client.post("/subscriptions/unsubscribe", json={"email": "reader@example.com"})
    unknown = api_client.post("/subscriptions/unsubscribe", params={"email": "ghost@example.com"})

    assert by_body.text == UNSUBSCRIBED_MESSAGE
    assert unknown.status_code == 200
    assert subscribers_repo(db_session).get("ghost@example.com") is None


@pytest.mark.parametrize("params", [{}, {"email": "   "}])
def test_unsubscribe_requires_email(api_client, params):
    response = api_client.get("/subscriptions/unsubscribe", params=params)

    assert response.status_code == 400
    assert response.json() == {"detail": "Email is required"}


SUBSCRIBERS = [
    {"email": "all@example.com", "subscribeAll": True, "platformIds": [], "status": "active"},
    {"email": "alpha@example.com", "subscribeAll": False, "platformIds": ["alpha"], "status": "active"},
    {"email": "beta@example.com", "subscribeAll": False, "platformIds": ["beta"]},
    {"email": "gone@example.com", "subscribeAll": True, "platformIds": ["alpha"], "status": "unsubscribed"},
]


def _emails(items):
    return [item["email"] for item in items]


def test_filter_recipients_without_targets_sends_to_everyone_active():
    assert _emails(filter_recipients(SUBSCRIBERS, [], None)) == [
        "all@example.com",
        "alpha@example.com",
        "beta@example.com",
    ]


def test_filter_recipients_by_platform_includes_subscribe_all():
    assert _emails(filter_recipients(SUBSCRIBERS, ["alpha"], None)) == ["all@example.com", "alpha@example.com"]
    assert _emails(filter_recipients(SUBSCRIBERS, ["alpha"], True)) == [
        "all@example.com",
        "alpha@example.com",
        "beta@example.com",
    ]
    assert _emails(filter_recipients(SUBSCRIBERS, [], False)) == ["all@example.com"]
