from __future__ import annotations

import re
from typing import Annotated, Any, Literal, Optional

from pydantic import (
    AfterValidator,
    AnyUrl,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    TypeAdapter,
    ValidationError,
)

_SLUG_RE = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
_URL_ADAPTER = TypeAdapter(AnyUrl)


def _check_slug(value: str) -> str:
    if not _SLUG_RE.match(value):
        raise ValueError("Use lowercase letters, numbers, and hyphens only")
    return value


def _check_url(value: str) -> str:
    # Validate only; the stored string keeps its original spelling.
    try:
        _URL_ADAPTER.validate_python(value)
    except ValidationError as exc:
        raise ValueError("Must be a valid URL") from exc
    return value


Slug = Annotated[str, AfterValidator(_check_slug)]
Url = Annotated[str, AfterValidator(_check_url)]
CssVarMap = dict[str, str]


def format_validation_errors(exc: ValidationError) -> list[dict[str, str]]:
    issues: list[dict[str, str]] = []
    for error in exc.errors():
        loc = ".".join(str(part) for part in error.get("loc", ()))
        issues.append({"field": loc or "(root)", "message": str(error.get("msg", "Invalid value"))})
    return issues


def dump_document(model: BaseModel) -> dict[str, Any]:
    return model.model_dump(mode="json", exclude_none=True)


class Topic(BaseModel):
    id: Slug
    name: str = Field(min_length=1)
    description: Optional[str] = None
    colorHint: Optional[str] = None
    icon: Optional[str] = None
    custom: Optional[dict[str, Any]] = None
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None


class PlatformBackgroundStyle(BaseModel):
    color: Optional[str] = None
    gradient: Optional[str] = None
    imageUrl: Optional[Url] = None
    overlayOpacity: Optional[float] = Field(default=None, ge=0, le=1)


class PlatformTheme(BaseModel):
    accentColor: Optional[str] = None
    backgroundStyle: Optional[PlatformBackgroundStyle] = None


class Platform(BaseModel):
    id: Slug
    name: str = Field(min_length=1, max_length=100)
    tagline: Optional[str] = None
    summary: Optional[str] = None
    description: Optional[str] = None
    heroImageUrl: Optional[Url] = None
    galleryImages: Optional[list[Url]] = None
    links: Optional[dict[str, Url]] = None
    topics: Optional[list[Slug]] = None
    isFeatured: Optional[bool] = None
    sortOrder: Optional[int | float] = None
    custom: Optional[dict[str, Any]] = None
    theme: Optional[PlatformTheme] = None
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None


class NewsPost(BaseModel):
    id: Slug
    title: str = Field(min_length=1, max_length=200)
    type: Optional[Literal["Announcement", "Update", "Insight"]] = None
    status: Optional[Literal["Draft", "Published"]] = None
    publishDate: Optional[str] = None
    summary: Optional[str] = None
    content: Optional[str] = None
    imageUrl: Optional[Url] = None
    imageAlt: Optional[str] = None
    links: Optional[dict[str, Url]] = None
    platformIds: Optional[list[Slug]] = None
    topics: Optional[list[Slug]] = None
    isFeatured: Optional[bool] = None
    custom: Optional[dict[str, Any]] = None
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None


class Subscriber(BaseModel):
    id: Optional[str] = None
    email: EmailStr
    subscribeAll: Optional[bool] = None
    platformIds: Optional[list[Slug]] = None
    status: Optional[Literal["active", "unsubscribed"]] = None
    mailerLiteId: Optional[str] = None
    unsubscribeToken: Optional[str] = None
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None


class EmailSettings(BaseModel):
    fromName: Optional[str] = None
    fromEmail: Optional[EmailStr] = None
    templateSubject: Optional[str] = None
    templateHtml: Optional[str] = None
    manageUrl: Optional[Url] = None
    batchSize: Optional[int] = Field(default=None, gt=0, le=490)
    mailerLiteAllGroupId: Optional[str] = None
    mailerLitePlatformGroupIds: Optional[dict[str, str]] = None
    autoNotifyOnNews: Optional[bool] = None
    mailerLiteApiKey: Optional[str] = None
    hasMailerLiteApiKey: Optional[bool] = None


class ContactSettings(BaseModel):
    enabled: Optional[bool] = None
    recipientEmail: Optional[EmailStr] = None
    subjectTemplate: Optional[str] = None
    successMessage: Optional[str] = None


class CustomPage(BaseModel):
    id: Slug
    title: str = Field(min_length=1)
    enabled: Optional[bool] = None
    description: Optional[str] = None
    html: Optional[str] = None
    css: Optional[str] = None
    script: Optional[str] = None
    externalScripts: Optional[list[Url]] = None
    height: Optional[int] = Field(default=None, gt=0, le=2000)


class NavLink(BaseModel):
    id: str = Field(min_length=1)
    label: str = Field(min_length=1)
    href: str = Field(min_length=1)
    enabled: Optional[bool] = None
    newTab: Optional[bool] = None


class SectionCta(BaseModel):
    primaryText: Optional[str] = None
    primaryHref: Optional[str] = None
    secondaryText: Optional[str] = None
    secondaryHref: Optional[str] = None


class SectionEmbed(BaseModel):
    mode: Optional[Literal["html", "threejs"]] = None
    html: Optional[str] = None
    script: Optional[str] = None
    height: Optional[int] = Field(default=None, gt=0, le=2000)


class HomeSection(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    enabled: Optional[bool] = None
    title: Optional[str] = None
    subtitle: Optional[str] = None
    maxItems: Optional[int] = Field(default=None, gt=0, le=24)
    markdown: Optional[str] = None
    cta: Optional[SectionCta] = None
    embed: Optional[SectionEmbed] = None


class TrustCard(BaseModel):
    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    body: str = Field(min_length=1)
    icon: Optional[str] = None
    iconColor: Optional[str] = None


class TrustSection(BaseModel):
    title: Optional[str] = None
    cards: Optional[list[TrustCard]] = None


class AiProvider(BaseModel):
    id: str = Field(min_length=1)
    label: str = Field(min_length=1)
    icon: Optional[str] = None


class AiSection(BaseModel):
    title: Optional[str] = None
    subtitle: Optional[str] = None
    footnote: Optional[str] = None
    providers: Optional[list[AiProvider]] = None


class HomeSettings(BaseModel):
    sections: Optional[list[HomeSection]] = None
    trustSection: Optional[TrustSection] = None
    aiSection: Optional[AiSection] = None


class Palette(BaseModel):
    primary: str
    secondary: Optional[str] = None
    background: Optional[str] = None
    text: Optional[str] = None


class ThemeDefinition(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    vars: CssVarMap


class ThemeSettings(BaseModel):
    active: Optional[str] = None
    themes: Optional[list[ThemeDefinition]] = None
    overrides: Optional[dict[str, CssVarMap]] = None


class Fonts(BaseModel):
    heading: Optional[str] = None
    body: Optional[str] = None


class NavSettings(BaseModel):
    links: Optional[list[NavLink]] = None


class Analytics(BaseModel):
    googleAnalyticsId: Optional[str] = None


class OpenAiSettings(BaseModel):
    model: Optional[str] = None
    imageModel: Optional[str] = None
    imageSize: Optional[str] = None
    imageQuality: Optional[str] = None
    imageBackground: Optional[str] = None
    imageOutputFormat: Optional[str] = None
    apiKey: Optional[str] = None
    hasApiKey: Optional[bool] = None
    clearApiKey: Optional[bool] = None


class Personality(BaseModel):
    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    prompt: Optional[str] = None


class AdminAssistantSettings(BaseModel):
    openai: Optional[OpenAiSettings] = None
    activePersonalityId: Optional[str] = None
    personalities: Optional[list[Personality]] = None


class ModelPricing(BaseModel):
    inputUsdPerMillion: float = Field(ge=0)
    outputUsdPerMillion: float = Field(ge=0)


class PricingSettings(BaseModel):
    source: Optional[str] = None
    updatedAt: Optional[str] = None
    models: Optional[dict[str, ModelPricing]] = None


class AiSettings(BaseModel):
    adminAssistant: Optional[AdminAssistantSettings] = None
    pricing: Optional[PricingSettings] = None


class FieldDefinition(BaseModel):
    id: str = Field(min_length=1)
    label: str = Field(min_length=1)
    type: str = Field(min_length=1)
    required: Optional[bool] = None
    placeholder: Optional[str] = None
    help: Optional[str] = None


class ContentSchemas(BaseModel):
    platforms: Optional[list[FieldDefinition]] = None
    news: Optional[list[FieldDefinition]] = None
    topics: Optional[list[FieldDefinition]] = None


class ContentSettings(BaseModel):
    schemas: Optional[ContentSchemas] = None


class SiteConfig(BaseModel):
    id: str = "global"
    siteName: Optional[str] = None
    palette: Optional[Palette] = None
    theme: Optional[ThemeSettings] = None
    fonts: Optional[Fonts] = None
    logoUrl: Optional[Url] = None
    nav: Optional[NavSettings] = None
    homeTagline: Optional[str] = None
    footerTagline: Optional[str] = None
    featuredPlatformIds: Optional[list[Slug]] = None
    featuredNewsIds: Optional[list[Slug]] = None
    featuredTopicIds: Optional[list[Slug]] = None
    heroTitle: Optional[str] = None
    heroSubtitle: Optional[str] = None
    heroBadges: Optional[list[str]] = None
    heroCtaText: Optional[str] = None
    heroCtaUrl: Optional[Url] = None
    socialLinks: Optional[dict[str, Url]] = None
    analytics: Optional[Analytics] = None
    home: Optional[HomeSettings] = None
    emailSettings: Optional[EmailSettings] = None
    contact: Optional[ContactSettings] = None
    pages: Optional[list[CustomPage]] = None
    ai: Optional[AiSettings] = None
    content: Optional[ContentSettings] = None
