from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from sqlalchemy.orm import Session

from foundry.config import settings
from foundry.services import site_config
from foundry.services.ai_usage import normalize_model_key

logger = logging.getLogger(__name__)

PRICING_FETCH_HEADERS = {
    "User-Agent": "FoundryPricingFetcher/1.0",
    "Accept": "application/json, text/html;q=0.9",
}
PRICING_FETCH_TIMEOUT_SECONDS = 20.0

TEXT_PARSE_FAILED_MESSAGE = "No pricing models could be parsed from the provided text."
JSON_PARSE_FAILED_MESSAGE = "No valid pricing models found in the payload."
FETCH_FAILED_MESSAGE = "Unable to fetch pricing from OpenAI. You can set pricing manually in Admin > AI usage."

_NUMBER_CHARS_RE = re.compile(r"[^0-9.]")
_SINGLE_LINE_RE = re.compile(
    r"^([a-z0-9][a-z0-9 .-]*)\s+\$([0-9.]+)\s*/\s*1m\s*input tokens.*?\$([0-9.]+)\s*/\s*1m\s*output tokens",
    re.IGNORECASE,
)
_MODEL_LINE_RE = re.compile(r"^(gpt|o[0-9]|sora)")
_MODEL_LINE_EXCLUDES = ("price", "input", "output", "cached", "tokens", "api", "models")
_INPUT_RE = re.compile(r"Input:\s*\$?([0-9.]+)", re.IGNORECASE)
_INPUT_HEADER_RE = re.compile(r"^Input:\s*$", re.IGNORECASE)
_OUTPUT_RE = re.compile(r"Output:\s*\$?([0-9.]+)", re.IGNORECASE)
_OUTPUT_HEADER_RE = re.compile(r"^Output:\s*$", re.IGNORECASE)
_INLINE_INPUT_RE = re.compile(r"\$([0-9.]+).*input tokens", re.IGNORECASE)
_INLINE_OUTPUT_RE = re.compile(r"\$([0-9.]+).*output tokens", re.IGNORECASE)
_DOLLAR_RE = re.compile(r"\$([0-9.]+)")
_WHITESPACE_RE = re.compile(r"\s+")


class PricingError(ValueError):
    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class PricingResult:
    models: dict[str, dict[str, float]]
    source: str
    updated_at: str


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def parse_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if not isinstance(value, str):
        return None
    cleaned = _NUMBER_CHARS_RE.sub("", value)
    if not cleaned:
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def _first_truthy(obj: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if obj.get(key):
            return obj[key]
    return None


def extract_pricing_from_object(obj: Any, out: dict[str, dict[str, float]]) -> None:
    """Walk any JSON value and collect ``{model: {input, output}}`` price pairs."""
    if not obj:
        return
    if isinstance(obj, list):
        for item in obj:
            extract_pricing_from_object(item, out)
        return
    if not isinstance(obj, dict):
        return

    model_id = _first_truthy(obj, "model", "id", "name")
    price_in = parse_number(_first_truthy(obj, "input", "prompt", "input_price", "inputPrice"))
    price_out = parse_number(_first_truthy(obj, "output", "completion", "output_price", "outputPrice"))
    if model_id and isinstance(model_id, (str, int, float)) and price_in is not None and price_out is not None:
        out[str(model_id)] = {"inputUsdPerMillion": price_in, "outputUsdPerMillion": price_out}

    for value in obj.values():
        extract_pricing_from_object(value, out)


def extract_next_data(html: str) -> Any:
    marker = "__NEXT_DATA__"
    idx = html.find(marker)
    if idx == -1:
        return None
    script_start = html.rfind("<script", 0, idx)
    json_start = html.find(">", idx)
    json_end = html.find("</script>", json_start + 1) if json_start != -1 else -1
    if script_start == -1 or json_start == -1 or json_end == -1:
        return None
    payload = html[json_start + 1 : json_end].strip()
    if not payload:
        return None
    try:
        return json.loads(payload)
    except ValueError:
        return None


def _is_model_line(line: str) -> bool:
    lower = line.lower()
    if not _MODEL_LINE_RE.match(lower):
        return False
    return not any(token in lower for token in _MODEL_LINE_EXCLUDES)


class _PricingTextParser:
    """Line-oriented reader for pricing copied from the OpenAI pricing page."""

    def __init__(self) -> None:
        self.models: dict[str, dict[str, float]] = {}
        self.current_model: Optional[str] = None
        self.pending_input: Optional[float] = None
        self.pending_output: Optional[float] = None
        self.expecting: Optional[str] = None

    def commit(self) -> None:
        if not self.current_model or self.pending_input is None or self.pending_output is None:
            return
        key = normalize_model_key(self.current_model)
        if key:
            self.models[key] = {
                "inputUsdPerMillion": self.pending_input,
                "outputUsdPerMillion": self.pending_output,
            }

    def feed(self, line: str) -> None:
        single = _SINGLE_LINE_RE.match(line)
        if single:
            price_in = parse_number(single.group(2))
            price_out = parse_number(single.group(3))
            if price_in is not None and price_out is not None:
                self.current_model = single.group(1)
                self.pending_input = price_in
                self.pending_output = price_out
                self.commit()
            self.expecting = None
            return

        if _is_model_line(line):
            self.commit()
            self.current_model = line
            self.pending_input = None
            self.pending_output = None
            self.expecting = None
            return

        match = _INPUT_RE.search(line)
        if match:
            value = parse_number(match.group(1))
            if value is not None:
                self.pending_input = value
            self.expecting = "input"
            return
        if _INPUT_HEADER_RE.match(line):
            self.expecting = "input"
            return

        match = _OUTPUT_RE.search(line)
        if match:
            value = parse_number(match.group(1))
            if value is not None:
                self.pending_output = value
            self.expecting = "output"
            return
        if _OUTPUT_HEADER_RE.match(line):
            self.expecting = "output"
            return

        match = _INLINE_INPUT_RE.search(line)
        if match:
            value = parse_number(match.group(1))
            if value is not None:
                self.pending_input = value
            return

        match = _INLINE_OUTPUT_RE.search(line)
        if match:
            value = parse_number(match.group(1))
            if value is not None:
                self.pending_output = value
            return

        if self.expecting:
            match = _DOLLAR_RE.search(line)
            if match:
                value = parse_number(match.group(1))
                if value is not None:
                    if self.expecting == "input":
                        self.pending_input = value
                    else:
                        self.pending_output = value
                    self.expecting = None


def parse_pricing_text(text: str) -> dict[str, dict[str, float]]:
    parser = _PricingTextParser()
    for raw_line in text.splitlines():
        line = _WHITESPACE_RE.sub(" ", raw_line).strip()
        if line:
            parser.feed(line)
    parser.commit()
    return parser.models


def parse_pricing_models(payload: Any) -> dict[str, dict[str, float]]:
    models: dict[str, dict[str, float]] = {}
    if not isinstance(payload, dict):
        return models
    for key, value in payload.items():
        if not isinstance(value, dict):
            continue
        price_in = parse_number(value.get("inputUsdPerMillion"))
        price_out = parse_number(value.get("outputUsdPerMillion"))
        if price_in is None or price_out is None:
            continue
        model_key = normalize_model_key(str(key))
        if model_key:
            models[model_key] = {"inputUsdPerMillion": price_in, "outputUsdPerMillion": price_out}
    return models


def fetch_openai_pricing(urls: Optional[list[str]] = None) -> Optional[PricingResult]:
    """Try each pricing URL in order and return the first that yields any models."""
    with httpx.Client(
        timeout=PRICING_FETCH_TIMEOUT_SECONDS,
        headers=PRICING_FETCH_HEADERS,
        follow_redirects=True,
    ) as client:
        for url in urls or settings.OPENAI_PRICING_URLS:
            try:
                response = client.get(url)
            except httpx.HTTPError as exc:
                logger.warning("Pricing fetch failed", extra={"url": url, "error": str(exc)})
                continue
            if response.status_code >= 400:
                logger.warning("Pricing fetch returned an error", extra={"url": url, "status": response.status_code})
                continue

            models: dict[str, dict[str, float]] = {}
            content_type = response.headers.get("content-type", "")
            if "application/json" in content_type:
                try:
                    extract_pricing_from_object(response.json(), models)
                except ValueError:
                    logger.warning("Pricing response was not valid JSON", extra={"url": url})
            else:
                next_data = extract_next_data(response.text)
                if next_data:
                    extract_pricing_from_object(next_data, models)

            if models:
                return PricingResult(models=models, source=url, updated_at=_now_iso())
    return None


def get_pricing(session: Session) -> dict[str, Any]:
    config = site_config.load_site_config(session)
    pricing = (config.get("ai") or {}).get("pricing")
    if pricing:
        return pricing
    return {"source": "manual", "models": {}}


def write_pricing(session: Session, result: PricingResult) -> dict[str, Any]:
    existing = site_config.get_stored_config(session) or {"id": site_config.CONFIG_ID}
    pricing = {"source": result.source, "updatedAt": result.updated_at, "models": result.models}
    next_config = {**existing, "ai": {**(existing.get("ai") or {}), "pricing": pricing}}
    site_config.write_site_config(session, next_config)
    logger.info("Stored AI pricing", extra={"source": result.source, "model_count": len(result.models)})
    return pricing


def refresh_pricing(
    session: Session,
    *,
    pricing_text: Optional[str] = None,
    models: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    if pricing_text:
        parsed = parse_pricing_text(pricing_text)
        if not parsed:
            raise PricingError(TEXT_PARSE_FAILED_MESSAGE, status_code=400)
        return write_pricing(session, PricingResult(parsed, "manual:text", _now_iso()))

    if isinstance(models, dict):
        parsed = parse_pricing_models(models)
        if not parsed:
            raise PricingError(JSON_PARSE_FAILED_MESSAGE, status_code=400)
        return write_pricing(session, PricingResult(parsed, "manual:json", _now_iso()))

    fetched = fetch_openai_pricing()
    if fetched is None:
        logger.warning("OpenAI pricing fetch failed or returned no models")
        raise PricingError(FETCH_FAILED_MESSAGE, status_code=502)
    return write_pricing(session, fetched)
