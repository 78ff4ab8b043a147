"""OpenAI-backed oracle calls: kundli prediction, chat, web search, insight, images.

Every call walks a de-duplicated list of candidate models and raises
`OracleUnavailableError` once all of them fail. Callers surface that as a
generic, retryable failure.
"""

import hashlib
import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx
from openai import AsyncOpenAI
from pydantic import ValidationError

from backend.chart_models import (
    BirthDetails,
    ChatMessage,
    ImageSize,
    KundliResponse,
    SearchAnswer,
    SourceLink,
)
from backend.prompts import (
    CHAT_SYSTEM_PROMPT,
    DEFAULT_QUESTION,
    KUNDLI_RESPONSE_SCHEMA,
    KUNDLI_SYSTEM_PROMPT,
    QUICK_INSIGHT_PROMPT,
    SEARCH_SYSTEM_PROMPT,
    VISION_PROMPT,
)

logger = logging.getLogger("kundli_gpt")
llm_audit_logger = logging.getLogger("llm_audit")

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_CHAT_MODEL = os.getenv("OPENAI_CHAT_MODEL", "gpt-4o")
OPENAI_FAST_MODEL = os.getenv("OPENAI_FAST_MODEL", "gpt-4o-mini")
OPENAI_IMAGE_MODEL = os.getenv("OPENAI_IMAGE_MODEL", "gpt-image-1")

AI_MAX_TOKENS_PREDICTION = 6000
AI_MAX_TOKENS_CHAT = 1200
AI_MAX_TOKENS_INSIGHT = 120
AI_MAX_TOKENS_VISION = 1500
PREDICTION_TEMPERATURE = 0.7

IMAGE_SQUARE_SIZE = "1024x1024"
IMAGE_QUALITY_BY_SIZE = {
    ImageSize.one_k: "low",
    ImageSize.two_k: "medium",
    ImageSize.four_k: "high",
}

ORACLE_UNAVAILABLE_MESSAGE = "The stars are clouded right now. Please try again later."

T = TypeVar("T")


class OracleUnavailableError(RuntimeError):
    """Remote model could not produce a usable answer (credentials, network, or malformed output)."""

    def __init__(self, detail: str = ORACLE_UNAVAILABLE_MESSAGE):
        super().__init__(detail)
        self.detail = detail


# ------------------------------------------------------------------------------
# Client construction
# ------------------------------------------------------------------------------
def _first_nonempty_env(*keys: str) -> Optional[str]:
    for key in keys:
        value = os.getenv(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _resolve_openai_base_url() -> Optional[str]:
    configured = _first_nonempty_env("OPENAI_BASE_URL", "OPENAI_API_BASE")
    if not configured:
        return None
    lowered = configured.lower()
    if "localhost" in lowered or "127.0.0.1" in lowered:
        logger.error("Invalid OPENAI base URL '%s' detected; falling back to default OpenAI endpoint", configured)
        return None
    return configured


def build_openai_client(api_key: str = OPENAI_API_KEY) -> tuple[Optional[AsyncOpenAI], Optional[httpx.AsyncClient]]:
    if not api_key:
        return None, None

    base_url = _resolve_openai_base_url()
    proxy_url = _first_nonempty_env("OPENAI_PROXY_URL", "HTTPS_PROXY", "https_proxy")
    timeout = httpx.Timeout(connect=10.0, read=120.0, write=120.0, pool=120.0)

    try:
        if proxy_url:
            http_client = httpx.AsyncClient(timeout=timeout, trust_env=True, proxy=proxy_url)
        else:
            http_client = httpx.AsyncClient(timeout=timeout, trust_env=True)
        client_kwargs: dict[str, Any] = {"api_key": api_key, "http_client": http_client}
        if base_url:
            client_kwargs["base_url"] = base_url
        client = AsyncOpenAI(**client_kwargs)
        logger.info(
            "OpenAI client initialized base_url=%s proxy_configured=%s",
            str(getattr(client, "base_url", "default")),
            "True" if bool(proxy_url) else "False",
        )
        return client, http_client
    except Exception as e:
        logger.warning("OpenAI client initialization failed: %s", e)
        return None, None


# ------------------------------------------------------------------------------
# Shared helpers
# ------------------------------------------------------------------------------
def _utc_iso_now() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def canonical_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


def sha256_hex(value: Any) -> str:
    return hashlib.sha256(canonical_json(value).encode("utf-8")).hexdigest()


def candidate_models(primary_model: str, *fallbacks: str) -> list[str]:
    """Return de-duplicated model fallback order."""
    out: list[str] = []
    for model in (primary_model, *fallbacks):
        normalized = (model or "").strip()
        if normalized and normalized not in out:
            out.append(normalized)
    return out


def emit_llm_audit_event(*, request_id: str, endpoint: str, model_used: str, input_hash: str) -> dict[str, str]:
    event = {
        "request_id": request_id,
        "endpoint": endpoint,
        "model_used": model_used,
        "input_hash": input_hash,
        "timestamp_utc": _utc_iso_now(),
    }
    llm_audit_logger.info(canonical_json(event))
    return event


def _first_choice_text(response: Any) -> str:
    choices = getattr(response, "choices", None) or []
    if not choices:
        return ""
    text = choices[0].message.content
    return text if isinstance(text, str) else ""


async def _call_with_fallback(
    *,
    async_client: Any,
    models: list[str],
    attempt: Callable[[str], Awaitable[T]],
    request_id: str,
    endpoint: str,
    input_hash: str,
) -> T:
    if async_client is None:
        logger.warning("Oracle call skipped request_id=%s endpoint=%s reason=no_client", request_id, endpoint)
        raise OracleUnavailableError("API key is missing. " + ORACLE_UNAVAILABLE_MESSAGE)

    last_error: Optional[Exception] = None
    for model in models:
        try:
            logger.info("LLM API call started request_id=%s endpoint=%s model=%s", request_id, endpoint, model)
            result = await attempt(model)
            emit_llm_audit_event(
                request_id=request_id,
                endpoint=endpoint,
                model_used=f"openai/{model}",
                input_hash=input_hash,
            )
            return result
        except Exception as e:
            last_error = e
            logger.warning(
                "LLM model attempt failed request_id=%s endpoint=%s model=%s error_type=%s error=%s",
                request_id,
                endpoint,
                model,
                type(e).__name__,
                str(e),
            )

    logger.error(
        "LLM call failed for all candidate models request_id=%s endpoint=%s models=%s",
        request_id,
        endpoint,
        models,
    )
    raise OracleUnavailableError() from last_error


# ------------------------------------------------------------------------------
# Kundli prediction
# ------------------------------------------------------------------------------
def build_prediction_payload(birth: BirthDetails) -> dict[str, Any]:
    return {
        "user_name": birth.name,
        "birth_details": {
            "date": birth.birth_date,
            "time": birth.birth_time,
            "place": birth.birth_place,
        },
        "user_question": birth.question or DEFAULT_QUESTION,
    }


def parse_kundli_response(raw_text: str) -> KundliResponse:
    """Parse the schema-constrained JSON into a validated chart.

    Out-of-range signs or houses are treated as a malformed answer.
    """
    if not raw_text or not raw_text.strip():
        raise ValueError("No response received from the oracle.")
    try:
        data = json.loads(raw_text)
        return KundliResponse.model_validate(data)
    except (json.JSONDecodeError, ValidationError) as e:
        raise ValueError(f"Malformed kundli response: {e}") from e


async def generate_prediction(
    *,
    async_client: Any,
    birth: BirthDetails,
    request_id: str,
    model: str = OPENAI_MODEL,
    max_tokens: int = AI_MAX_TOKENS_PREDICTION,
) -> KundliResponse:
    payload = build_prediction_payload(birth)
    user_message = canonical_json(payload)

    async def attempt(candidate: str) -> KundliResponse:
        response = await async_client.chat.completions.create(
            model=candidate,
            messages=[
                {"role": "system", "content": KUNDLI_SYSTEM_PROMPT},
                {"role": "user", "content": user_message},
            ],
            temperature=PREDICTION_TEMPERATURE,
            max_completion_tokens=max_tokens,
            response_format={
                "type": "json_schema",
                "json_schema": {"name": "kundli_response", "schema": KUNDLI_RESPONSE_SCHEMA, "strict": True},
            },
        )
        return parse_kundli_response(_first_choice_text(response))

    return await _call_with_fallback(
        async_client=async_client,
        models=candidate_models(model, "gpt-4o-mini", "gpt-4o"),
        attempt=attempt,
        request_id=request_id,
        endpoint="kundli",
        input_hash=sha256_hex(payload),
    )


# ------------------------------------------------------------------------------
# Chat and search
# ------------------------------------------------------------------------------
def build_chat_messages(history: list[ChatMessage], message: str) -> list[dict[str, str]]:
    messages = [{"role": "system", "content": CHAT_SYSTEM_PROMPT}]
    for item in history:
        if item.is_error:
            continue
        messages.append({"role": "assistant" if item.role == "model" else "user", "content": item.text})
    messages.append({"role": "user", "content": message})
    return messages


async def chat_with_oracle(
    *,
    async_client: Any,
    history: list[ChatMessage],
    message: str,
    request_id: str,
    model: str = OPENAI_CHAT_MODEL,
) -> str:
    messages = build_chat_messages(history, message)

    async def attempt(candidate: str) -> str:
        response = await async_client.chat.completions.create(
            model=candidate,
            messages=messages,
            max_completion_tokens=AI_MAX_TOKENS_CHAT,
        )
        text = _first_choice_text(response).strip()
        if not text:
            raise RuntimeError(f"LLM returned empty chat reply. Model: {candidate}")
        return text

    return await _call_with_fallback(
        async_client=async_client,
        models=candidate_models(model, "gpt-4o", "gpt-4o-mini"),
        attempt=attempt,
        request_id=request_id,
        endpoint="chat",
        input_hash=sha256_hex(messages),
    )


def extract_url_citations(response: Any) -> list[SourceLink]:
    """Collect url_citation annotations from a Responses API result, first occurrence wins."""
    seen: set[str] = set()
    sources: list[SourceLink] = []
    for item in getattr(response, "output", None) or []:
        if getattr(item, "type", None) != "message":
            continue
        for part in getattr(item, "content", None) or []:
            for annotation in getattr(part, "annotations", None) or []:
                if getattr(annotation, "type", None) != "url_citation":
                    continue
                url = getattr(annotation, "url", "") or ""
                if not url or url in seen:
                    continue
                seen.add(url)
                sources.append(SourceLink(title=getattr(annotation, "title", "") or url, url=url))
    return sources


async def search_based_answer(
    *,
    async_client: Any,
    query: str,
    request_id: str,
    model: str = OPENAI_MODEL,
) -> SearchAnswer:
    async def attempt(candidate: str) -> SearchAnswer:
        response = await async_client.responses.create(
            model=candidate,
            instructions=SEARCH_SYSTEM_PROMPT,
            input=query,
            tools=[{"type": "web_search_preview"}],
        )
        text = (getattr(response, "output_text", "") or "").strip()
        return SearchAnswer(text=text or "I found nothing.", sources=extract_url_citations(response))

    return await _call_with_fallback(
        async_client=async_client,
        models=candidate_models(model, "gpt-4o-mini"),
        attempt=attempt,
        request_id=request_id,
        endpoint="chat_search",
        input_hash=sha256_hex(query),
    )


async def quick_insight(*, async_client: Any, request_id: str, model: str = OPENAI_FAST_MODEL) -> str:
    async def attempt(candidate: str) -> str:
        response = await async_client.chat.completions.create(
            model=candidate,
            messages=[{"role": "user", "content": QUICK_INSIGHT_PROMPT}],
            max_completion_tokens=AI_MAX_TOKENS_INSIGHT,
        )
        text = _first_choice_text(response).strip()
        if not text:
            raise RuntimeError(f"LLM returned empty insight. Model: {candidate}")
        return text

    return await _call_with_fallback(
        async_client=async_client,
        models=candidate_models(model, "gpt-4o-mini"),
        attempt=attempt,
        request_id=request_id,
        endpoint="insight",
        input_hash=sha256_hex(QUICK_INSIGHT_PROMPT),
    )


# ------------------------------------------------------------------------------
# Images
# ------------------------------------------------------------------------------
async def generate_spiritual_image(
    *,
    async_client: Any,
    prompt: str,
    size: ImageSize,
    request_id: str,
    model: str = OPENAI_IMAGE_MODEL,
) -> str:
    """Generate one square image and return it as a PNG data URL."""
    quality = IMAGE_QUALITY_BY_SIZE[ImageSize(size)]

    async def attempt(candidate: str) -> str:
        response = await async_client.images.generate(
            model=candidate,
            prompt=prompt,
            size=IMAGE_SQUARE_SIZE,
            quality=quality,
            n=1,
        )
        data = getattr(response, "data", None) or []
        b64 = getattr(data[0], "b64_json", None) if data else None
        if not b64:
            raise RuntimeError("No image generated")
        return f"data:image/png;base64,{b64}"

    return await _call_with_fallback(
        async_client=async_client,
        models=candidate_models(model),
        attempt=attempt,
        request_id=request_id,
        endpoint="image_generate",
        input_hash=sha256_hex({"prompt": prompt, "size": ImageSize(size).value}),
    )


def split_image_payload(image: str) -> tuple[str, str]:
    """Return (mime_type, base64_data) for a data URL or bare base64 string."""
    if image.startswith("data:") and "," in image:
        header, data = image.split(",", 1)
        mime = header[len("data:"):].split(";", 1)[0] or "image/jpeg"
        return mime, data
    return "image/jpeg", image


async def analyze_palm_or_face(
    *,
    async_client: Any,
    image: str,
    request_id: str,
    model: str = OPENAI_CHAT_MODEL,
) -> str:
    mime, data = split_image_payload(image.strip())
    if not data:
        raise ValueError("image payload is empty")
    content = [
        {"type": "text", "text": VISION_PROMPT},
        {"type": "image_url", "image_url": {"url": f"data:{mime};base64,{data}"}},
    ]

    async def attempt(candidate: str) -> str:
        response = await async_client.chat.completions.create(
            model=candidate,
            messages=[{"role": "user", "content": content}],
            max_completion_tokens=AI_MAX_TOKENS_VISION,
        )
        text = _first_choice_text(response).strip()
        if not text:
            raise RuntimeError(f"LLM returned empty image analysis. Model: {candidate}")
        return text

    return await _call_with_fallback(
        async_client=async_client,
        models=candidate_models(model, "gpt-4o"),
        attempt=attempt,
        request_id=request_id,
        endpoint="image_analyze",
        input_hash=hashlib.sha256(data.encode("utf-8")).hexdigest(),
    )
