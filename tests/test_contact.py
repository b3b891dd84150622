import pytest

from foundry.db.enums import ContainerEnum
from foundry.db.repositories.documents import DocumentsRepository
from foundry.routers import contact as contact_router
from foundry.services.contact import build_contact_html
from foundry.services.email_sender import EmailSendError

CONTACT_BODY = {"name": "Ada", "email": "ada@example.com", "message": "Hello there"}


class RecordingEmailSender:
    def __init__(self, error=None):
        self.sent = []
        self.error = error

    def factory(self):
        return self

    def send(self, **kwargs):
        self.sent.append(kwargs)
        if self.error is not None:
            raise self.error
        return "<msg-1@example.com>"


@pytest.fixture()
def email_sender(monkeypatch):
    sender = RecordingEmailSender()
    monkeypatch.setattr(contact_router, "EmailSender", sender.factory)
    return sender


@pytest.fixture()
def contact_enabled(store_config):
    return store_config(
        {
            "contact": {
                "enabled": True,
                "recipientEmail": "owner@example.com",
                "subjectTemplate": "Hi from {{name}}: {{subject}}",
            },
            "emailSettings": {"fromEmail": "noreply@example.com"},
        }
    )


def _submissions(db_session):
    return DocumentsRepository(db_session, ContainerEnum.contact_submissions).list()


@pytest.mark.parametrize(
    "config, status, detail",
    [
        ({}, 400, "Contact form is disabled."),
        ({"contact": {"enabled": True}}, 400, "Contact recipient email is not configured."),
        (
            {"contact": {"enabled": True, "recipientEmail": "owner@example.com"}},
            500,
            "Missing fromEmail (set Admin > Email settings or SMTP_SENDER_EMAIL).",
        ),
    ],
)
def test_contact_configuration_errors(api_client, store_config, email_sender, db_session, config, status, detail):
    store_config(config)

    response = api_client.post("/contact", json=CONTACT_BODY)

    assert response.status_code == status
    assert response.json() == {"detail": detail}
    assert email_sender.sent == []
    assert _submissions(db_session) == []


def test_contact_submission_is_emailed_and_stored(api_client, contact_enabled, email_sender, db_session):
    response = api_client.post("/contact", json={**CONTACT_BODY, "company": "Engines Ltd"})

    assert response.status_code == 200
    body = response.json()
    assert body["ok"] is True
    assert body["id"].startswith("contact-")

    sent = email_sender.sent[0]
    assert sent["sender"] == "noreply@example.com"
    assert sent["subject"] == "Hi from Ada: New message"
    assert sent["to"] == ["owner@example.com"]
    assert sent["reply_to"] == ("ada@example.com", "Ada")
    assert sent["headers"] == {"X-Foundry-Contact": body["id"]}
    assert "Engines Ltd" in sent["html"]

    [stored] = _submissions(db_session)
    assert stored["id"] == body["id"]
    assert stored["status"] == "sent"
    assert stored["company"] == "Engines Ltd"


def test_contact_delivery_failure_is_recorded(api_client, contact_enabled, email_sender, db_session):
    email_sender.error = EmailSendError("relay refused")

    response = api_client.post("/contact", json=CONTACT_BODY)

    assert response.status_code == 502
    assert response.json() == {"detail": "Failed to send contact email."}
    [stored] = _submissions(db_session)
    assert stored["status"] == "failed"


def test_contact_rejects_invalid_payload(api_client, contact_enabled, email_sender):
    response = api_client.post("/contact", json={"name": "", "email": "nope", "message": ""})

    assert response.status_code == 422
    assert email_sender.sent == []


def test_contact_html_escapes_user_input():
    html = build_contact_html(
        {"name": "<b>Ada</b>", "email": "ada@example.com", "message": "hi <script>alert(1)</script>"}
    )

    assert "&lt;b&gt;Ada&lt;/b&gt;" in html
    assert "<script>" not in html
    assert "Company" not in html


def test_submissions_are_listed_newest_first(api_client, admin_headers, user_headers, db_session):
    repo = DocumentsRepository(db_session, ContainerEnum.contact_submissions)
    for index, created_at in enumerate(["2026-01-01T00:00:00Z", "2026-03-01T00:00:00Z", "2026-02-01T00:00:00Z"]):
        repo.upsert({"id": f"contact-{index}", "createdAt": created_at, "name": "A", "status": "sent"})

    assert api_client.get("/contact/submissions", headers=user_headers).status_code == 403

    listed = api_client.get("/contact/submissions", params={"limit": 2}, headers=admin_headers).json()
    assert [item["id"] for item in listed] == ["contact-1", "contact-2"]

    clamped = api_client.get("/contact/submissions", params={"limit": 0}, headers=admin_headers).json()
    assert [item["id"] for item in clamped] == ["contact-1"]
