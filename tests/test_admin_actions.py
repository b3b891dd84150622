import pytest

from foundry.llm.client import ChatUsage, LLMUpstreamError
from foundry.schemas.ai import ApplyActionsRequest
from foundry.services import content as content_service
from foundry.services import site_config
from foundry.services.admin_actions import (
    ActionConflictError,
    ActionValidationError,
    MediaActionInputError,
    MediaGenerationError,
    MediaTargetNotFoundError,
    apply_actions,
)
from foundry.services.images import StoredImage


class FakeImageGenerator:
    def __init__(self, error=None):
        self.requests = []
        self.error = error

    def generate(self, request):
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return StoredImage(
            blob_url=f"https://cdn.example.com/media/generated-{len(self.requests)}.png",
            name=f"generated-{len(self.requests)}.png",
            model="gpt-image-1.5",
            usage=ChatUsage(prompt_tokens=10, completion_tokens=0, total_tokens=10),
        )


def _actions(*items):
    return ApplyActionsRequest.model_validate({"actions": list(items)}).actions


def test_config_merge_deep_merges_into_stored_config(db_session, store_config):
    store_config({"siteName": "Foundry", "palette": {"primary": "#005b50"}, "nav": {"links": []}})

    results = apply_actions(
        db_session,
        _actions({"type": "config.merge", "value": {"palette": {"secondary": "#ffffff"}, "heroTitle": "Ship it"}}),
    )

    assert [item.model_dump() for item in results] == [
        {"index": 0, "type": "config.merge", "target": "global", "detail": None}
    ]
    stored = site_config.get_stored_config(db_session)
    assert stored["palette"] == {"primary": "#005b50", "secondary": "#ffffff"}
    assert stored["heroTitle"] == "Ship it"
    assert stored["siteName"] == "Foundry"


def test_config_merge_validation_failure_reports_issues(db_session):
    with pytest.raises(ActionValidationError) as exc_info:
        apply_actions(db_session, _actions({"type": "config.merge", "value": {"palette": {"secondary": "#fff"}}}))

    error = exc_info.value
    assert error.status_code == 422
    assert error.index == 0
    assert error.applied == 0
    assert [issue["field"] for issue in error.issues] == ["palette.primary"]
    assert site_config.get_stored_config(db_session) is None


def test_content_upsert_folds_link_lists(db_session):
    results = apply_actions(
        db_session,
        _actions(
            {
                "type": "platform.upsert",
                "value": {
                    "id": "alpha",
                    "name": "Alpha",
                    "links": [{"label": "Website", "url": "https://alpha.example.com"}],
                },
            }
        ),
    )

    assert results[0].target == "alpha"
    stored = content_service.get_content(db_session, "platform", "alpha")
    assert stored["links"] == {"Website": "https://alpha.example.com"}


def test_invalid_upsert_lists_every_failing_field(db_session):
    with pytest.raises(ActionValidationError) as exc_info:
        apply_actions(db_session, _actions({"type": "news.upsert", "value": {"id": "Bad Id", "title": ""}}))

    fields = {issue["field"] for issue in exc_info.value.issues}
    assert fields == {"id", "title"}
    assert "id" in str(exc_info.value) and "title" in str(exc_info.value)


def test_failed_action_keeps_earlier_ones_applied(db_session):
    content_service.upsert_content(db_session, "platform", {"id": "alpha", "name": "Alpha"})

    with pytest.raises(ActionConflictError) as exc_info:
        apply_actions(
            db_session,
            _actions(
                {"type": "news.upsert", "value": {"id": "launch", "title": "Launch", "platformIds": ["alpha"]}},
                {"type": "platform.delete", "id": "alpha"},
                {"type": "topic.upsert", "value": {"id": "ai", "name": "AI"}},
            ),
        )

    error = exc_info.value
    assert error.status_code == 409
    assert error.to_detail() == {"message": content_service.PLATFORM_IN_USE_MESSAGE, "index": 1, "applied": 1}
    assert content_service.get_content(db_session, "news", "launch") is not None
    assert content_service.get_content(db_session, "platform", "alpha") is not None
    assert content_service.get_content(db_session, "topic", "ai") is None


def test_deleting_missing_item_is_reported_not_raised(db_session):
    results = apply_actions(db_session, _actions({"type": "topic.delete", "id": "ghost"}))

    assert results[0].model_dump() == {"index": 0, "type": "topic.delete", "target": "ghost", "detail": "not found"}


def test_media_generate_sets_config_field(db_session, store_config):
    store_config({"palette": {"primary": "#005b50"}})
    generator = FakeImageGenerator()

    results = apply_actions(
        db_session,
        _actions(
            {
                "type": "media.generate",
                "value": {"prompt": "A bold foundry logo", "targetType": "config", "field": "logoUrl", "size": "1024x1024"},
            }
        ),
        image_generator=generator,
    )

    assert results[0].target == "global"
    assert results[0].detail == "https://cdn.example.com/media/generated-1.png"
    assert generator.requests[0].prompt == "A bold foundry logo"
    assert generator.requests[0].size == "1024x1024"
    stored = site_config.get_stored_config(db_session)
    assert stored["logoUrl"] == "https://cdn.example.com/media/generated-1.png"
    assert stored["palette"] == {"primary": "#005b50"}


def test_media_generate_sets_nested_platform_field(db_session):
    content_service.upsert_content(
        db_session, "platform", {"id": "alpha", "name": "Alpha", "theme": {"accentColor": "#123456"}}
    )
    generator = FakeImageGenerator()

    results = apply_actions(
        db_session,
        _actions(
            {
                "type": "media.generate",
                "value": {
                    "prompt": "Misty mountains",
                    "targetType": "platform",
                    "targetId": "alpha",
                    "field": "theme.backgroundStyle.imageUrl",
                },
            }
        ),
        image_generator=generator,
    )

    assert results[0].target == "alpha"
    stored = content_service.get_content(db_session, "platform", "alpha")
    assert stored["theme"] == {
        "accentColor": "#123456",
        "backgroundStyle": {"imageUrl": "https://cdn.example.com/media/generated-1.png"},
    }


def test_media_generate_missing_target_fails_before_generating(db_session):
    generator = FakeImageGenerator()

    with pytest.raises(MediaTargetNotFoundError) as exc_info:
        apply_actions(
            db_session,
            _actions(
                {
                    "type": "media.generate",
                    "value": {"prompt": "Hero", "targetType": "news", "targetId": "ghost", "field": "imageUrl"},
                }
            ),
            image_generator=generator,
        )

    assert exc_info.value.status_code == 404
    assert generator.requests == []


@pytest.mark.parametrize(
    "value",
    [
        {"prompt": "   ", "targetType": "config", "field": "logoUrl"},
        {"prompt": "Logo", "targetType": "config", "field": ""},
        {"prompt": "Hero", "targetType": "platform", "field": "heroImageUrl"},
    ],
)
def test_media_generate_rejects_incomplete_input(db_session, value):
    generator = FakeImageGenerator()

    with pytest.raises(MediaActionInputError) as exc_info:
        apply_actions(db_session, _actions({"type": "media.generate", "value": value}), image_generator=generator)

    assert exc_info.value.status_code == 400
    assert generator.requests == []


def test_media_generate_upstream_failure_maps_to_bad_gateway(db_session):
    generator = FakeImageGenerator(error=LLMUpstreamError("OpenAI request failed."))

    with pytest.raises(MediaGenerationError) as exc_info:
        apply_actions(
            db_session,
            _actions({"type": "media.generate", "value": {"prompt": "Logo", "targetType": "config", "field": "logoUrl"}}),
            image_generator=generator,
        )

    assert exc_info.value.status_code == 502
    assert site_config.get_stored_config(db_session) is None


def test_apply_endpoint_reports_results(api_client, admin_headers, user_headers):
    body = {
        "actions": [
            {"type": "topic.upsert", "value": {"id": "ai", "name": "AI"}},
            {"type": "news.delete", "id": "ghost"},
        ]
    }

    assert api_client.post("/ai/actions/apply", json=body, headers=user_headers).status_code == 403

    response = api_client.post("/ai/actions/apply", json=body, headers=admin_headers)

    assert response.status_code == 200
    assert response.json() == {
        "applied": 2,
        "results": [
            {"index": 0, "type": "topic.upsert", "target": "ai", "detail": None},
            {"index": 1, "type": "news.delete", "target": "ghost", "detail": "not found"},
        ],
    }
    assert api_client.get("/topics/ai").status_code == 200


def test_apply_endpoint_error_detail(api_client, admin_headers):
    body = {
        "actions": [
            {"type": "topic.upsert", "value": {"id": "ai", "name": "AI"}},
            {"type": "config.merge", "value": {"logoUrl": "not a url"}},
        ]
    }

    response = api_client.post("/ai/actions/apply", json=body, headers=admin_headers)

    assert response.status_code == 422
    detail = response.json()["detail"]
    assert (detail["index"], detail["applied"]) == (1, 1)
    assert [issue["field"] for issue in detail["issues"]] == ["logoUrl"]


def test_apply_endpoint_rejects_unknown_action_types(api_client, admin_headers):
    response = api_client.post(
        "/ai/actions/apply",
        json={"actions": [{"type": "site.nuke", "value": {}}]},
        headers=admin_headers,
    )

    assert response.status_code == 422


def test_config_merge_null_removes_stored_values(db_session, store_config):
    link_a = {"id": "home", "label": "Home", "href": "/"}
    link_b = {"id": "news", "label": "News", "href": "/news"}
    store_config(
        {
            "heroTitle": "Old",
            "emailSettings": {"fromName": "Team", "mailerLiteApiKey": "ml-secret"},
            "nav": {"links": [link_a, link_b]},
        }
    )

    apply_actions(
        db_session,
        _actions(
            {
                "type": "config.merge",
                "value": {"heroTitle": None, "emailSettings": {"fromName": None}, "nav": {"links": [link_a]}},
            }
        ),
    )

    db_session.expire_all()
    stored = site_config.get_stored_config(db_session)
    assert "heroTitle" not in stored
    assert stored["emailSettings"] == {"mailerLiteApiKey": "ml-secret"}
    assert stored["nav"]["links"] == [link_a]
