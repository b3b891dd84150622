from __future__ import annotations

from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field


class ChatMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str = Field(min_length=1)


class ChatContext(BaseModel):
    config: Optional[Any] = None
    platforms: Optional[Any] = None
    topics: Optional[Any] = None
    news: Optional[Any] = None


class AdminChatRequest(BaseModel):
    apiKey: Optional[str] = Field(default=None, min_length=1)
    model: Optional[str] = Field(default=None, min_length=1)
    messages: list[ChatMessage] = Field(min_length=1)
    context: Optional[ChatContext] = None


class AdminChatResponse(BaseModel):
    assistantMessage: str
    actions: list[dict[str, Any]] = Field(default_factory=list)


class ImageGenerateRequest(BaseModel):
    prompt: str = Field(min_length=1)
    model: Optional[str] = None
    size: Optional[str] = None
    quality: Optional[Literal["low", "medium", "high", "auto"]] = None
    background: Optional[Literal["transparent", "opaque", "auto"]] = None
    outputFormat: Optional[Literal["png", "jpeg", "webp"]] = None
    filenameHint: Optional[str] = None


class TokenUsage(BaseModel):
    promptTokens: int = 0
    completionTokens: int = 0
    totalTokens: int = 0


class ImageGenerateResponse(BaseModel):
    blobUrl: str
    name: str
    model: str
    usage: TokenUsage


class PricingRefreshRequest(BaseModel):
    pricingText: Optional[str] = None
    models: Optional[dict[str, Any]] = None


class ConfigMergeAction(BaseModel):
    type: Literal["config.merge"]
    value: dict[str, Any]


class ContentUpsertAction(BaseModel):
    type: Literal["platform.upsert", "topic.upsert", "news.upsert"]
    value: dict[str, Any]

    @property
    def kind(self) -> str:
        return self.type.split(".", 1)[0]


class ContentDeleteAction(BaseModel):
    type: Literal["platform.delete", "topic.delete", "news.delete"]
    id: str = Field(min_length=1)

    @property
    def kind(self) -> str:
        return self.type.split(".", 1)[0]


class MediaGeneratePayload(BaseModel):
    # Emptiness of prompt/field is reported by the apply engine, not here.
    prompt: str = ""
    targetType: Literal["platform", "news", "config"]
    targetId: Optional[str] = None
    field: str = ""
    size: Optional[str] = None
    quality: Optional[Literal["low", "medium", "high", "auto"]] = None
    background: Optional[Literal["transparent", "opaque", "auto"]] = None


class MediaGenerateAction(BaseModel):
    type: Literal["media.generate"]
    value: MediaGeneratePayload


AdminAction = Annotated[
    Union[ConfigMergeAction, ContentUpsertAction, ContentDeleteAction, MediaGenerateAction],
    Field(discriminator="type"),
]


class ApplyActionsRequest(BaseModel):
    actions: list[AdminAction] = Field(default_factory=list)


class AppliedAction(BaseModel):
    index: int
    type: str
    target: str
    detail: Optional[str] = None


class ApplyActionsResponse(BaseModel):
    applied: int
    results: list[AppliedAction]
