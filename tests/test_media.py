import re
from datetime import datetime, timezone

import pytest
from botocore.stub import Stubber

from foundry.config import settings
from foundry.services.media_storage import (
    DEFAULT_CONTENT_TYPE,
    IMMUTABLE_CACHE_CONTROL,
    MediaStorage,
    MediaStorageConfigurationError,
    sanitize_blob_name,
)


@pytest.fixture()
def storage_settings(monkeypatch):
    values = {
        "MEDIA_STORAGE_BUCKET": "site-media",
        "MEDIA_STORAGE_ENDPOINT": "https://s3.example.com",
        "MEDIA_STORAGE_ACCESS_KEY": "access",
        "MEDIA_STORAGE_SECRET_KEY": "secret",
        "MEDIA_STORAGE_PREFIX": "media",
        "MEDIA_STORAGE_PUBLIC_BASE_URL": "https://cdn.example.com/",
    }
    for name, value in values.items():
        monkeypatch.setattr(settings, name, value)
    return values


def test_upload_url_requires_filename(api_client, admin_headers, fake_storage):
    response = api_client.post("/media/sas", json={"filename": "  "}, headers=admin_headers)

    assert response.status_code == 400
    assert response.json() == {"detail": "filename is required"}
    assert fake_storage.presigned == []


def test_upload_url_defaults_content_type(api_client, admin_headers, user_headers, fake_storage):
    assert api_client.post("/media/sas", json={"filename": "a.png"}, headers=user_headers).status_code == 403

    response = api_client.post("/media/sas", json={"filename": "hero.png"}, headers=admin_headers)

    assert response.status_code == 200
    assert response.json()["blobUrl"] == "https://cdn.example.com/media/hero.png"
    assert fake_storage.presigned == [{"filename": "hero.png", "content_type": DEFAULT_CONTENT_TYPE}]


def test_media_list_passes_paging_arguments(api_client, admin_headers, fake_storage):
    fake_storage.list_response = {"items": [{"name": "a.png"}], "continuationToken": "next"}

    response = api_client.get(
        "/media/list",
        params={"prefix": "logos", "continuationToken": "tok", "limit": 10},
        headers=admin_headers,
    )

    assert response.json() == {"items": [{"name": "a.png"}], "continuationToken": "next"}
    assert fake_storage.listings == [{"prefix": "logos", "continuation_token": "tok", "limit": 10}]


@pytest.mark.parametrize("limit", [0, 201])
def test_media_list_limit_is_bounded(api_client, admin_headers, fake_storage, limit):
    response = api_client.get("/media/list", params={"limit": limit}, headers=admin_headers)

    assert response.status_code == 422
    assert fake_storage.listings == []


def test_unconfigured_storage_returns_500(api_client, admin_headers):
    response = api_client.post("/media/sas", json={"filename": "hero.png"}, headers=admin_headers)

    assert response.status_code == 500
    assert response.json() == {"detail": "MEDIA_STORAGE_BUCKET is required"}


def test_storage_requires_credentials(storage_settings, monkeypatch):
    monkeypatch.setattr(settings, "MEDIA_STORAGE_SECRET_KEY", "")

    with pytest.raises(MediaStorageConfigurationError, match="MEDIA_STORAGE_ACCESS_KEY and MEDIA_STORAGE_SECRET_KEY are required"):
        MediaStorage()


def test_sanitize_blob_name():
    assert sanitize_blob_name("my hero (final).png") == "my_hero__final_.png"


def test_presign_upload_signs_put_url(storage_settings):
    storage = MediaStorage()

    result = storage.presign_upload(filename="hero image.png", content_type="image/png")

    assert re.fullmatch(r"https://cdn\.example\.com/media/\d+-hero_image\.png", result["blobUrl"])
    assert result["uploadUrl"].startswith("https://s3.example.com/site-media/media/")
    assert "X-Amz-Signature=" in result["uploadUrl"]
    assert result["expiresOn"].endswith("Z")


def test_list_media_maps_objects(storage_settings):
    storage = MediaStorage()
    stubber = Stubber(storage.client)
    stubber.add_response(
        "list_objects_v2",
        {
            "Contents": [
                {"Key": "media/logos/a.png", "Size": 10, "LastModified": datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)}
            ],
            "IsTruncated": True,
            "NextContinuationToken": "next",
        },
        {"Bucket": "site-media", "Prefix": "media/logos", "MaxKeys": 10, "ContinuationToken": "tok"},
    )

    with stubber:
        result = storage.list_media(prefix="logos", continuation_token="tok", limit=10)

    assert result == {
        "items": [
            {
                "name": "logos/a.png",
                "url": "https://cdn.example.com/media/logos/a.png",
                "size": 10,
                "lastModified": "2026-01-02T03:04:05+00:00",
                "contentType": None,
            }
        ],
        "continuationToken": "next",
    }
    stubber.assert_no_pending_responses()


def test_upload_bytes_without_public_base_url(storage_settings, monkeypatch):
    monkeypatch.setattr(settings, "MEDIA_STORAGE_PUBLIC_BASE_URL", "")
    storage = MediaStorage()
    stubber = Stubber(storage.client)
    stubber.add_response(
        "put_object",
        {"ETag": '"abc"'},
        {
            "Bucket": "site-media",
            "Key": "media/logo.png",
            "Body": b"png-bytes",
            "ContentType": "image/png",
            "CacheControl": IMMUTABLE_CACHE_CONTROL,
        },
    )

    with stubber:
        url = storage.upload_bytes(name="logo.png", data=b"png-bytes", content_type="image/png")

    assert url == "https://s3.example.com/site-media/media/logo.png"
