from foundry.db.enums import ContainerEnum
from foundry.db.repositories.documents import DocumentsRepository
from foundry.services.site_config import DEFAULT_SITE_CONFIG, get_stored_config


def _config_with_secrets(**overrides):
    config = {
        "siteName": "Foundry Labs",
        "palette": {"primary": "#112233"},
        "emailSettings": {"fromName": "Foundry", "mailerLiteApiKey": "ml-secret"},
        "ai": {"adminAssistant": {"openai": {"apiKey": "sk-secret", "model": "gpt-4o"}}},
    }
    config.update(overrides)
    return config


def test_get_config_serves_default_when_nothing_stored(api_client):
    response = api_client.get("/config")

    assert response.status_code == 200
    assert response.json() == DEFAULT_SITE_CONFIG


def test_saving_config_requires_admin(api_client, user_headers):
    assert api_client.post("/config", json={"siteName": "X"}).status_code == 401
    assert api_client.put("/config", json={"siteName": "X"}, headers=user_headers).status_code == 403


def test_saved_secrets_are_hidden_behind_flags(api_client, admin_headers, db_session):
    response = api_client.post("/config", json=_config_with_secrets(), headers=admin_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == "global"
    assert body["emailSettings"] == {"fromName": "Foundry", "hasMailerLiteApiKey": True}
    assert body["ai"]["adminAssistant"]["openai"] == {"model": "gpt-4o", "hasApiKey": True}

    public = api_client.get("/config").json()
    assert "mailerLiteApiKey" not in public["emailSettings"]
    assert "apiKey" not in public["ai"]["adminAssistant"]["openai"]

    stored = get_stored_config(db_session)
    assert stored["emailSettings"]["mailerLiteApiKey"] == "ml-secret"
    assert stored["ai"]["adminAssistant"]["openai"]["apiKey"] == "sk-secret"


def test_resaving_without_secrets_keeps_stored_keys(api_client, admin_headers, db_session):
    api_client.post("/config", json=_config_with_secrets(), headers=admin_headers)

    response = api_client.put(
        "/config",
        json={
            "siteName": "Renamed",
            "palette": {"primary": "#112233"},
            "emailSettings": {"fromName": "Foundry"},
            "ai": {"adminAssistant": {"openai": {"model": "gpt-4.1", "hasApiKey": True}}},
        },
        headers=admin_headers,
    )

    assert response.status_code == 200
    assert response.json()["siteName"] == "Renamed"
    stored = get_stored_config(db_session)
    assert stored["emailSettings"]["mailerLiteApiKey"] == "ml-secret"
    assert stored["ai"]["adminAssistant"]["openai"]["apiKey"] == "sk-secret"
    assert stored["ai"]["adminAssistant"]["openai"]["model"] == "gpt-4.1"


def test_new_key_replaces_and_clear_removes(api_client, admin_headers, db_session):
    api_client.post("/config", json=_config_with_secrets(), headers=admin_headers)

    api_client.post(
        "/config",
        json=_config_with_secrets(ai={"adminAssistant": {"openai": {"apiKey": "sk-rotated"}}}),
        headers=admin_headers,
    )
    db_session.expire_all()
    assert get_stored_config(db_session)["ai"]["adminAssistant"]["openai"]["apiKey"] == "sk-rotated"

    cleared = api_client.post(
        "/config",
        json=_config_with_secrets(ai={"adminAssistant": {"openai": {"clearApiKey": True}}}),
        headers=admin_headers,
    )
    assert cleared.json()["ai"]["adminAssistant"]["openai"] == {"model": "gpt-4o", "hasApiKey": False}
    db_session.expire_all()
    openai = get_stored_config(db_session)["ai"]["adminAssistant"]["openai"]
    assert "apiKey" not in openai
    assert "clearApiKey" not in openai


def test_invalid_config_returns_issues(api_client, admin_headers):
    response = api_client.post(
        "/config",
        json={"palette": {"secondary": "#fff"}, "logoUrl": "nope"},
        headers=admin_headers,
    )

    assert response.status_code == 422
    fields = {issue["field"] for issue in response.json()["detail"]["issues"]}
    assert fields == {"palette.primary", "logoUrl"}


def test_invalid_stored_config_falls_back_to_default(api_client, db_session):
    DocumentsRepository(db_session, ContainerEnum.config).upsert({"id": "global", "palette": {"secondary": "#fff"}})

    assert api_client.get("/config").json() == DEFAULT_SITE_CONFIG


def test_config_without_email_settings_is_stored_without_them(api_client, admin_headers, db_session):
    response = api_client.post(
        "/config",
        json={"siteName": "Foundry Labs", "palette": {"primary": "#112233"}},
        headers=admin_headers,
    )

    assert response.status_code == 200
    assert "emailSettings" not in response.json()
    assert "emailSettings" not in get_stored_config(db_session)
