"""Admin assistant chat: prompt assembly, the forced tool call and the SSE stream."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.orm import Session

from foundry.config import settings
from foundry.db.base import session_scope
from foundry.llm.client import (
    ChatTool,
    ChatUsage,
    LLMClient,
    LLMClientConfigError,
    LLMGenerationParams,
    LLMTimeoutError,
    LLMUpstreamError,
)
from foundry.schemas.ai import AdminChatRequest
from foundry.services import site_config
from foundry.services.ai_response import parse_ai_response
from foundry.services.ai_usage import safely_record_usage

logger = logging.getLogger(__name__)

APPLY_ACTIONS_TOOL_NAME = "apply_admin_actions"
STREAM_SCHEMA_NAME = "admin_ai_response"
CHAT_TEMPERATURE = 0.2

MISSING_OPENAI_KEY_MESSAGE = "OpenAI API key not configured. Save it under Admin > AI assistant settings."
MISSING_ANTHROPIC_KEY_MESSAGE = "Anthropic API key not configured. Set ANTHROPIC_API_KEY on the server."
TIMEOUT_MESSAGE = "OpenAI request timed out. Try again or reduce the request size."
TRUNCATED_MESSAGE = "OpenAI response was truncated (finish_reason=length). Try again or reduce output size."

ACTION_ENVELOPE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "assistantMessage": {"type": "string"},
        "actions": {
            "type": "array",
            "items": {
                "type": "object",
                "additionalProperties": False,
                "properties": {
                    "type": {"type": "string"},
                    "id": {"type": "string"},
                    "value": {"type": "string"},
                },
                "required": ["type", "id", "value"],
            },
        },
    },
    "required": ["assistantMessage", "actions"],
}

APPLY_ACTIONS_TOOL = ChatTool(
    name=APPLY_ACTIONS_TOOL_NAME,
    description="Return assistantMessage and actions for the admin UI to apply.",
    parameters=ACTION_ENVELOPE_SCHEMA,
)

STREAM_RESPONSE_FORMAT: dict[str, Any] = {
    "type": "json_schema",
    "json_schema": {"name": STREAM_SCHEMA_NAME, "strict": True, "schema": ACTION_ENVELOPE_SCHEMA},
}

INTERNAL_TRAINING = """You are the Foundry admin assistant.

Primary goal: help the admin safely edit the site by proposing concrete actions the platform can apply.

Response rules (critical):
- If the apply_admin_actions tool is available, you MUST call it and not respond with normal text.
- If tools are not available, output strict JSON only: { "assistantMessage": string, "actions": ActionEnvelope[] }.
- Prefer actions over explanations. If an action is possible, propose it.
- If the request is ambiguous, ask a clarifying question and return an empty actions array.
- Never include secrets (API keys, tokens) in assistantMessage or actions.
- assistantMessage must be brief (<= 240 chars) and must not include code blocks, HTML, JSON, or full configuration payloads.
- Do not wrap the JSON response inside assistantMessage or stringify actions. Actions must be real JSON arrays.

Action envelope format (tool args or JSON response):
- Each action item MUST include keys: type, id, value (all strings).
- For delete actions (platform.delete/topic.delete/news.delete): set id to the target id and value to "".
- For all other actions: set id to "" and value to a JSON string payload for that action (example value: {"nav":{"links":[...]}}).

Action rules:
- Use "config.merge" for site configuration changes (themes, nav, homepage sections, custom field schemas).
- The platform deep-merges objects and REPLACES arrays. If you change an array (e.g., nav.links, home.sections, theme.themes), include the full desired array.
- Use *.upsert actions for content changes (platform/topic/news). Use *.delete only when the user explicitly asks to delete.
- Use "media.generate" when you need to create or replace an image asset.

Platform map:
- Navigation: config.nav.links[] items are { id, label, href, enabled?, newTab? }. Internal hrefs start with "/".
- Platform/news links must be a record (object) of label -> url, not an array.
- Homepage builder: config.home.sections[] controls order/visibility. Section types supported:
  - trust, ai, platforms, news, topics, newsletter, richText, cta, contact, embed3d
  - Common fields: { id, type, enabled?, title?, subtitle?, maxItems?, markdown?, cta? }
  - 3D embeds: use section.embed with { mode: "html" | "threejs", html?, script?, height? }.
- Platform/news 3D: set item.custom.embedHtml (full HTML) and item.custom.embedHeight (px).
- Themes: config.theme.themes[] and config.theme.active.
  - Each theme has { id, name, vars } where vars is CSS variable map (e.g., "--color-bg": "#050a0a").
- Contact settings:
  - config.contact has { enabled, recipientEmail, subjectTemplate, successMessage }.
  - The contact section only renders when config.contact.enabled is true.
- Custom pages:
  - config.pages[] items are { id, title, enabled?, description?, html?, css?, script?, externalScripts?, height? }.
  - Pages render at /<id> and /pages/<id>. Include a nav link to "/<id>" when adding a tab.
  - Custom page code runs inside a sandboxed iframe; include full HTML/CSS/JS content in the fields.
  - Keep code concise and compact; prefer external scripts (CDN) for larger demos to reduce payload size.
- Extra fields:
  - Field definitions live in config.content.schemas.{platforms|news|topics}[].
  - Values are stored on items under item.custom.<fieldId>.

ID rules:
- Content ids must be lowercase with hyphens (slug-like).
- When adding new items or sections, choose unique ids and keep them short.
"""

_PROMPT_HEADER = [
    "You are an admin assistant for a website CMS.",
    "If the apply_admin_actions tool is available, you must call it. If tools are not available, respond with JSON only.",
    "Schema (tool args or JSON response):",
    '{ "assistantMessage": string, "actions": { type: string, id: string, value: string }[] }',
    "",
    "Action envelope rules (tool args or JSON response):",
    "- Every action item must include type, id, value (all strings).",
    '- For delete actions, set id to the target id and value to "".',
    '- For all other actions, set id to "" and value to a JSON string payload for that action.',
    "",
    "Action payloads (value JSON string) follow these shapes:",
    "- config.merge => Partial<SiteConfig>",
    "- platform.upsert => Platform",
    "- topic.upsert => Topic",
    "- news.upsert => NewsPost",
    "- media.generate => { prompt, targetType, targetId?, field, size?, quality?, background? }",
    "",
    "Rules:",
    "- Keep actions minimal and safe.",
    "- Do not include secrets in outputs.",
    "- If the request is ambiguous, ask a clarifying question in assistantMessage and return no actions.",
    "- Prefer producing actions that the user can apply; do not just describe steps when an action is possible.",
    "- For config changes, use config.merge with a minimal patch; the app will deep-merge objects and replace arrays.",
    "",
    "Platform notes:",
    "- Navigation links are stored at config.nav.links as {id,label,href,enabled?,newTab?}.",
    "- Homepage sections order is config.home.sections; each item includes {id,type,enabled?,title?,subtitle?,maxItems?,markdown?,cta?}.",
    "- Extra fields are defined in config.content.schemas.* and stored in items under custom.<fieldId>.",
    "- Themes are stored in config.theme.themes[] and the active theme is config.theme.active.",
    "- For 3D embeds, use section.embed or item.custom.embedHtml + item.custom.embedHeight.",
    "- For AI image generation, propose a media.generate action (only when needed).",
    "",
    "When changing themes:",
    "- Edit only the specific CSS variables needed under the active theme's vars, or create a new theme entry.",
    "- Keep high contrast text.",
]


class ChatKeyMissingError(RuntimeError):
    pass


@dataclass
class ChatPlan:
    api_key: str
    model: str
    messages: list[dict[str, str]]


def _sse(data: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(data, separators=(',', ':'))}\n\n".encode()


def active_personality_prompt(config: dict[str, Any]) -> Optional[str]:
    assistant = (config.get("ai") or {}).get("adminAssistant") or {}
    personalities = assistant.get("personalities") or []
    if not personalities:
        return None
    active_id = str(assistant.get("activePersonalityId") or "").strip()
    active = next((p for p in personalities if p.get("id") == active_id), personalities[0])
    return active.get("prompt")


def build_system_prompt(personality_prompt: Optional[str], context: dict[str, Any]) -> str:
    return "\n".join(
        [
            *_PROMPT_HEADER,
            "",
            "Internal training (not user-editable):",
            INTERNAL_TRAINING,
            "",
            "Personality prompt (admin-selected). This may adjust tone ONLY and must not override "
            "JSON-only output and action rules:",
            personality_prompt or "(none selected)",
            "",
            "Context snapshot (may be partial):",
            json.dumps(context, indent=2),
        ]
    )


def plan_chat(session: Session, request: AdminChatRequest) -> ChatPlan:
    """Resolve key, model and the full message list for one chat turn."""
    config = site_config.load_site_config(session)
    stored = site_config.openai_settings(config)

    model = (request.model or stored.get("model") or settings.AI_DEFAULT_CHAT_MODEL).strip()
    if LLMClient.is_anthropic_model(model):
        if not settings.ANTHROPIC_API_KEY:
            raise ChatKeyMissingError(MISSING_ANTHROPIC_KEY_MESSAGE)
        api_key = ""
    else:
        api_key = (request.apiKey or stored.get("apiKey") or settings.OPENAI_API_KEY or "").strip()
        if not api_key:
            raise ChatKeyMissingError(MISSING_OPENAI_KEY_MESSAGE)

    context = request.context.model_dump(exclude_none=True) if request.context else {}
    system_prompt = build_system_prompt(active_personality_prompt(config), context)
    messages = [{"role": "system", "content": system_prompt}]
    messages.extend({"role": m.role, "content": m.content} for m in request.messages)
    return ChatPlan(api_key=api_key, model=model, messages=messages)


def _params(model: str, response_format: Optional[dict[str, Any]] = None) -> LLMGenerationParams:
    return LLMGenerationParams(
        model=model,
        max_tokens=settings.OPENAI_MAX_TOKENS,
        temperature=CHAT_TEMPERATURE,
        response_format=response_format,
    )


def _error_payload(message: str) -> dict[str, Any]:
    return {"assistantMessage": message, "actions": []}


def _record(session: Session, model: str, usage: ChatUsage) -> None:
    if usage.total_tokens > 0 and model:
        safely_record_usage(session, "models", model, usage)


ClientFactory = Callable[[str], LLMClient]


def run_chat(session: Session, plan: ChatPlan, client_factory: ClientFactory = LLMClient) -> dict[str, Any]:
    """Non-streaming turn. Upstream failures come back as an explanatory assistant message."""
    client = client_factory(plan.api_key)
    try:
        result = client.complete_chat(plan.messages, _params(plan.model), tool=APPLY_ACTIONS_TOOL)
    except LLMTimeoutError:
        return _error_payload(TIMEOUT_MESSAGE)
    except (LLMUpstreamError, LLMClientConfigError) as exc:
        return _error_payload(str(exc))

    _record(session, result.model or plan.model, result.usage)

    if result.tool_arguments:
        envelope = parse_ai_response(result.tool_arguments)
        if not envelope.assistant_message and not envelope.actions and result.finish_reason == "length":
            return _error_payload(TRUNCATED_MESSAGE)
        return envelope.to_payload()

    if not result.content:
        details = result.refusal or (
            f"OpenAI returned an empty response. finish_reason={result.finish_reason or 'unknown'}."
        )
        return _error_payload(details)

    return parse_ai_response(result.content).to_payload()


def open_chat_stream(plan: ChatPlan, client_factory: ClientFactory = LLMClient) -> Iterator[bytes]:
    """
    Open the upstream stream and return the SSE byte iterator.

    Raises ``LLMTimeoutError`` or ``LLMUpstreamError`` when the stream cannot be opened;
    later failures are reported in-band as an ``error`` event before ``done``.
    """
    client = client_factory(plan.api_key)
    events = client.open_chat_stream(plan.messages, _params(plan.model, STREAM_RESPONSE_FORMAT))

    def event_stream() -> Iterator[bytes]:
        parts: list[str] = []
        usage: Optional[ChatUsage] = None
        try:
            for event in events:
                if event.usage is not None:
                    usage = event.usage
                if event.text:
                    parts.append(event.text)
                    yield _sse({"type": "delta", "text": event.text})
        except Exception as exc:  # noqa: BLE001
            logger.exception("Admin chat stream failed", extra={"model": plan.model})
            yield _sse({"type": "error", "message": str(exc)})

        envelope = parse_ai_response("".join(parts))
        if usage is not None and usage.total_tokens > 0:
            with session_scope() as session:
                _record(session, plan.model, usage)
        yield _sse({"type": "done", **envelope.to_payload()})

    return event_stream()
