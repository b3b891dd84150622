import base64
import json
import os
import sys
import tempfile
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any, Optional

import pytest
from alembic import command
from alembic.config import Config

ROOT_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT_DIR))

_DB_DIR = tempfile.mkdtemp(prefix="foundry-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{Path(_DB_DIR) / 'foundry-test.db'}"
for _key in (
    "OPENAI_API_KEY",
    "ANTHROPIC_API_KEY",
    "MAILERLITE_API_KEY",
    "SMTP_HOST",
    "SMTP_SENDER_EMAIL",
    "PUBLIC_SITE_URL",
    "MEDIA_STORAGE_BUCKET",
    "MEDIA_STORAGE_ENDPOINT",
    "MEDIA_STORAGE_ACCESS_KEY",
    "MEDIA_STORAGE_SECRET_KEY",
    "MEDIA_STORAGE_PUBLIC_BASE_URL",
):
    os.environ[_key] = ""

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import delete  # noqa: E402

from foundry.db.base import SessionLocal, engine  # noqa: E402
from foundry.db.models import Document  # noqa: E402
from foundry.llm.client import (  # noqa: E402
    ChatCompletionResult,
    ChatStreamEvent,
    ChatUsage,
    GeneratedImage,
)
from foundry.main import app  # noqa: E402
from foundry.routers import ai as ai_router  # noqa: E402
from foundry.routers import media as media_router  # noqa: E402
from foundry.services import images as images_service  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def apply_migrations() -> None:
    alembic_cfg = Config(str(ROOT_DIR / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(ROOT_DIR / "alembic"))
    alembic_cfg.attributes["configure_logger"] = False
    command.upgrade(alembic_cfg, "head")


@pytest.fixture(autouse=True)
def clean_documents() -> Iterator[None]:
    yield
    with engine.begin() as connection:
        connection.execute(delete(Document))


@pytest.fixture()
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def encode_principal(roles: list[str], user_id: str = "admin-1") -> str:
    principal = {
        "identityProvider": "github",
        "userId": user_id,
        "userDetails": "admin@example.com",
        "userRoles": roles,
    }
    return base64.b64encode(json.dumps(principal).encode("utf-8")).decode("ascii")


@pytest.fixture()
def admin_headers() -> dict[str, str]:
    return {"x-ms-client-principal": encode_principal(["anonymous", "authenticated", "administrator"])}


@pytest.fixture()
def user_headers() -> dict[str, str]:
    return {"x-ms-client-principal": encode_principal(["anonymous", "authenticated"], user_id="user-1")}


@pytest.fixture()
def api_client() -> Iterator[TestClient]:
    with TestClient(app) as client:
        yield client


class FakeLLMClient:
    """Stands in for LLMClient; every factory call returns this same instance."""

    def __init__(self) -> None:
        self.api_keys: list[str] = []
        self.chat_calls: list[dict[str, Any]] = []
        self.stream_calls: list[dict[str, Any]] = []
        self.image_calls: list[dict[str, Any]] = []
        self.chat_result: ChatCompletionResult = ChatCompletionResult(model="gpt-4o-mini")
        self.chat_error: Optional[Exception] = None
        self.stream_events: list[ChatStreamEvent] = []
        self.stream_open_error: Optional[Exception] = None
        self.stream_error: Optional[Exception] = None
        self.image_error: Optional[Exception] = None
        self.image_usage = ChatUsage(prompt_tokens=12, completion_tokens=0, total_tokens=12)

    def factory(self, api_key: Optional[str], **_kwargs: Any) -> "FakeLLMClient":
        self.api_keys.append(api_key or "")
        return self

    def complete_chat(self, messages, params, *, tool=None) -> ChatCompletionResult:
        self.chat_calls.append({"messages": messages, "params": params, "tool": tool})
        if self.chat_error is not None:
            raise self.chat_error
        return self.chat_result

    def open_chat_stream(self, messages, params) -> Iterator[ChatStreamEvent]:
        self.stream_calls.append({"messages": messages, "params": params})
        if self.stream_open_error is not None:
            raise self.stream_open_error

        def _events() -> Iterator[ChatStreamEvent]:
            yield from self.stream_events
            if self.stream_error is not None:
                raise self.stream_error

        return _events()

    def generate_image(self, prompt: str, **kwargs: Any) -> GeneratedImage:
        self.image_calls.append({"prompt": prompt, **kwargs})
        if self.image_error is not None:
            raise self.image_error
        return GeneratedImage(data=b"\x89PNG fake", model=kwargs["model"], usage=self.image_usage)


class FakeMediaStorage:
    def __init__(self) -> None:
        self.uploads: list[dict[str, Any]] = []
        self.presigned: list[dict[str, Any]] = []
        self.listings: list[dict[str, Any]] = []
        self.list_response: dict[str, Any] = {"items": [], "continuationToken": None}

    def factory(self) -> "FakeMediaStorage":
        return self

    def upload_bytes(self, *, name: str, data: bytes, content_type: Optional[str], **_kwargs: Any) -> str:
        self.uploads.append({"name": name, "data": data, "content_type": content_type})
        return f"https://cdn.example.com/media/{name}"

    def presign_upload(self, *, filename: str, content_type: Optional[str] = None) -> dict[str, str]:
        self.presigned.append({"filename": filename, "content_type": content_type})
        return {
            "uploadUrl": f"https://uploads.example.com/{filename}?sig=abc",
            "blobUrl": f"https://cdn.example.com/media/{filename}",
            "expiresOn": "2030-01-01T00:00:00Z",
        }

    def list_media(self, *, prefix=None, continuation_token=None, limit=50) -> dict[str, Any]:
        self.listings.append({"prefix": prefix, "continuation_token": continuation_token, "limit": limit})
        return self.list_response


@pytest.fixture()
def fake_llm(monkeypatch) -> FakeLLMClient:
    fake = FakeLLMClient()
    monkeypatch.setattr(ai_router, "LLMClient", fake.factory)
    monkeypatch.setattr(images_service, "LLMClient", fake.factory)
    return fake


@pytest.fixture()
def fake_storage(monkeypatch) -> FakeMediaStorage:
    fake = FakeMediaStorage()
    monkeypatch.setattr(images_service, "MediaStorage", fake.factory)
    monkeypatch.setattr(media_router, "MediaStorage", fake.factory)
    return fake


@pytest.fixture()
def store_config(db_session) -> Callable[[dict[str, Any]], dict[str, Any]]:
    from foundry.services.site_config import write_site_config

    def _store(config: dict[str, Any]) -> dict[str, Any]:
        return write_site_config(db_session, {"id": "global", **config})

    return _store
