"""Recover an action envelope from free-form model output.

Models asked for ``{"assistantMessage": str, "actions": [...]}`` do not always
comply: the JSON may arrive fenced in Markdown, surrounded by prose, double
encoded, or nested inside ``assistantMessage``. ``parse_ai_response`` walks an
ordered chain of fallbacks and always returns an ``ActionEnvelope``; it never
raises.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Union

PROPOSED_ACTIONS_MESSAGE = "Proposed actions ready."
FALLBACK_MESSAGE_MAX_CHARS = 400
_ELLIPSIS = "…"
_FENCE = "```"


@dataclass(frozen=True)
class ActionEnvelope:
    assistant_message: str
    actions: list[dict[str, Any]] = field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {"assistantMessage": self.assistant_message, "actions": list(self.actions)}


@dataclass(frozen=True)
class Unparsed:
    """Nothing usable was decoded from the text."""

    text: str


@dataclass(frozen=True)
class ObjectCandidate:
    """A JSON object that does not satisfy the envelope shape."""

    value: dict[str, Any]


@dataclass(frozen=True)
class ValidatedEnvelope:
    assistant_message: str
    raw_actions: Any


ParseState = Union[Unparsed, ObjectCandidate, ValidatedEnvelope]


class _NoValue:
    pass


_NO_VALUE = _NoValue()


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Unsupported JSON constant {name}")


def _loads(text: str) -> Any:
    return json.loads(text, parse_constant=_reject_constant)


def _is_present(value: Any) -> bool:
    # Mirrors JSON truthiness: null, false, 0 and "" count as nothing decoded.
    if value is None or value is False or isinstance(value, _NoValue):
        return False
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value == 0:
        return False
    if isinstance(value, str) and value == "":
        return False
    return True


def _attempt_parse(text: str) -> Any:
    try:
        return _loads(text)
    except (ValueError, RecursionError):
        return _NO_VALUE


def find_json_object(text: str) -> Any:
    """Return the first balanced ``{...}`` span in ``text`` that parses as JSON."""
    depth = 0
    start = -1
    in_string = False
    escape = False
    for index, char in enumerate(text):
        if in_string:
            if escape:
                escape = False
                continue
            if char == "\\":
                escape = True
                continue
            if char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
            continue
        if char == "{":
            if depth == 0:
                start = index
            depth += 1
            continue
        if char == "}":
            depth -= 1
            if depth == 0 and start != -1:
                parsed = _attempt_parse(text[start : index + 1])
                if _is_present(parsed):
                    return parsed
                start = -1
    return _NO_VALUE


def _parse_or_scan(text: str) -> Any:
    parsed = _attempt_parse(text)
    if _is_present(parsed):
        return parsed
    return find_json_object(text)


def parse_action_value(raw: str) -> Any:
    """Decode a wire ``value`` string, unwrapping one level of double encoding.

    Returns ``_NO_VALUE`` for blank input; a decoded JSON ``null`` is kept.
    """
    trimmed = raw.strip()
    if not trimmed:
        return _NO_VALUE
    try:
        parsed = _loads(trimmed)
    except (ValueError, RecursionError):
        return raw
    if isinstance(parsed, str):
        inner = parsed.strip()
        if (inner.startswith("{") and inner.endswith("}")) or (inner.startswith("[") and inner.endswith("]")):
            try:
                return _loads(inner)
            except (ValueError, RecursionError):
                return parsed
    return parsed


def normalize_actions(candidate: Any) -> list[dict[str, Any]]:
    if not isinstance(candidate, list):
        return []
    normalized: list[dict[str, Any]] = []
    for item in candidate:
        if not isinstance(item, dict):
            continue
        raw_type = item.get("type")
        action_type = raw_type.strip() if isinstance(raw_type, str) else ""
        if not action_type:
            continue
        if action_type.endswith(".delete"):
            raw_id = item.get("id")
            action_id = raw_id.strip() if isinstance(raw_id, str) else ""
            if action_id:
                normalized.append({"type": action_type, "id": action_id})
            continue
        value = item.get("value")
        if isinstance(value, (dict, list)):
            normalized.append({"type": action_type, "value": value})
            continue
        value_text = value.strip() if isinstance(value, str) else ""
        if not value_text:
            continue
        decoded = parse_action_value(value_text)
        if decoded is not _NO_VALUE:
            normalized.append({"type": action_type, "value": decoded})
    return normalized


def extract_actions(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        parsed = _parse_or_scan(value)
        if isinstance(parsed, list):
            return parsed
        if isinstance(parsed, dict) and isinstance(parsed.get("actions"), list):
            return parsed["actions"]
    return []


def _decode_response(trimmed: str) -> Any:
    parsed = _attempt_parse(trimmed)
    if not _is_present(parsed) and trimmed.startswith(_FENCE):
        fence_end = trimmed.rfind(_FENCE)
        if fence_end > 3:
            inner = trimmed[trimmed.find("\n") + 1 : fence_end].strip()
            parsed = _parse_or_scan(inner)
    if not _is_present(parsed):
        parsed = find_json_object(trimmed)
    return parsed


def classify_response(trimmed: str) -> ParseState:
    parsed = _decode_response(trimmed)
    if not isinstance(parsed, dict):
        return Unparsed(text=trimmed)
    message = parsed.get("assistantMessage")
    has_valid_actions = "actions" not in parsed or isinstance(parsed.get("actions"), list)
    if isinstance(message, str) and has_valid_actions:
        return ValidatedEnvelope(assistant_message=message, raw_actions=parsed.get("actions"))
    return ObjectCandidate(value=parsed)


def _recover_embedded(message: str) -> ActionEnvelope | None:
    embedded = find_json_object(message)
    if not isinstance(embedded, dict):
        return None
    source = embedded["actions"] if embedded.get("actions") is not None else embedded
    actions = normalize_actions(extract_actions(source))
    if not actions:
        return None
    embedded_message = embedded.get("assistantMessage")
    if isinstance(embedded_message, str) and embedded_message:
        return ActionEnvelope(embedded_message, actions)
    return ActionEnvelope(PROPOSED_ACTIONS_MESSAGE, actions)


def _from_state(state: ParseState) -> ActionEnvelope | None:
    if isinstance(state, ValidatedEnvelope):
        actions = normalize_actions(extract_actions(state.raw_actions))
        if not actions and state.assistant_message:
            recovered = _recover_embedded(state.assistant_message)
            if recovered is not None:
                return recovered
        return ActionEnvelope(state.assistant_message, actions)
    if isinstance(state, ObjectCandidate):
        actions = normalize_actions(extract_actions(state.value.get("actions")))
        raw_message = state.value.get("assistantMessage")
        message = raw_message if isinstance(raw_message, str) else ""
        if not actions and message:
            recovered = _recover_embedded(message)
            if recovered is not None:
                return recovered
        if message or actions:
            return ActionEnvelope(message, actions)
        return None
    if isinstance(state, Unparsed):
        return None
    raise TypeError(f"Unhandled parse state {type(state).__name__}")


def _truncate(text: str) -> str:
    if len(text) > FALLBACK_MESSAGE_MAX_CHARS:
        return f"{text[:FALLBACK_MESSAGE_MAX_CHARS]}{_ELLIPSIS}"
    return text


def parse_ai_response(raw: Any) -> ActionEnvelope:
    trimmed = raw.strip() if isinstance(raw, str) else ""
    if not trimmed:
        return ActionEnvelope("", [])

    envelope = _from_state(classify_response(trimmed))
    if envelope is not None:
        return envelope

    embedded = find_json_object(trimmed)
    if isinstance(embedded, dict) and isinstance(embedded.get("actions"), list):
        actions = normalize_actions(embedded["actions"])
        if actions:
            return ActionEnvelope(PROPOSED_ACTIONS_MESSAGE, actions)

    return ActionEnvelope(_truncate(trimmed), [])
