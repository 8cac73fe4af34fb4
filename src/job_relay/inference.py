from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

import httpx
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from job_relay.categories import classify_by_keywords, extract_category, remove_category_line, valid_categories_for
from job_relay.config import DEFAULT_AI_MODEL
from job_relay.formatting import (
    DIVIDER,
    build_apply_context,
    build_apply_fallback_section,
    build_job_header,
    build_no_ai_fallback,
)
from job_relay.models import AISummary, EnrichedPosting
from job_relay.prompts import DEFAULT_PROMPT_CONFIG, DEFAULT_PROMPT_TEMPLATE, AIPromptConfig, render_template
from job_relay.text import strip_markdown

logger = logging.getLogger(__name__)

WORKERS_AI_URL = "https://api.cloudflare.com/client/v4/accounts/{account_id}/ai/run/{model}"
RESPONSES_API_MODELS = ("@cf/openai/gpt-oss-120b", "@cf/openai/gpt-oss-20b")
SYSTEM_INSTRUCTIONS = "You are a professional Arabic translator and job summarizer."
CONTENT_MARKER = "📋"
APPLY_HEADING = "📧 كيفية التقديم:"
MAX_ATTEMPTS = 3

Sleep = Callable[[float], Awaitable[None]]


class InferenceError(RuntimeError):
    """The inference service failed or replied without usable text."""


class TextGenerator(Protocol):
    async def run(self, model: str, payload: dict[str, Any]) -> Any: ...


class WorkersAIClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        account_id: str,
        api_token: str,
        *,
        timeout_seconds: float = 60.0,
    ):
        self.client = client
        self.account_id = account_id
        self.api_token = api_token
        self.timeout_seconds = timeout_seconds

    async def run(self, model: str, payload: dict[str, Any]) -> Any:
        response = await self.client.post(
            WORKERS_AI_URL.format(account_id=self.account_id, model=model),
            json=payload,
            headers={"Authorization": f"Bearer {self.api_token}"},
            timeout=self.timeout_seconds,
        )
        response.raise_for_status()
        try:
            data = response.json()
        except ValueError as exc:
            raise InferenceError(f"invalid JSON from inference service: {exc}") from exc
        if isinstance(data, dict) and data.get("success") is False:
            raise InferenceError(f"inference service reported failure: {data.get('errors')}")
        if isinstance(data, dict) and "result" in data:
            return data["result"]
        return data


def is_responses_api_model(model: str) -> bool:
    return any(model.startswith(prefix) for prefix in RESPONSES_API_MODELS)


def build_request_payload(model: str, prompt: str) -> dict[str, Any]:
    if is_responses_api_model(model):
        return {"input": prompt, "instructions": SYSTEM_INSTRUCTIONS}
    return {
        "messages": [{"role": "user", "content": prompt}],
        "max_tokens": 1024,
        "temperature": 0.7,
    }


def extract_text(response: Any) -> str | None:
    """Pull the generated text out of any of the reply shapes the service uses.

    Tried in order: a top-level ``response`` string, a chat-completion
    ``choices`` list, the ``output_text`` shorthand, then ``output`` message
    blocks. The first shape present decides the result.
    """
    if not isinstance(response, dict):
        return None

    if isinstance(response.get("response"), str):
        return response["response"] or None

    choices = response.get("choices")
    if isinstance(choices, list):
        if not choices or not isinstance(choices[0], dict):
            return None
        message = choices[0].get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        return content if isinstance(content, str) and content else None

    if isinstance(response.get("output_text"), str):
        return response["output_text"] or None

    output = response.get("output")
    if isinstance(output, list):
        for item in output:
            if not isinstance(item, dict) or item.get("type") != "message":
                continue
            content = item.get("content")
            if not isinstance(content, list):
                continue
            for block in content:
                if (
                    isinstance(block, dict)
                    and block.get("type") == "output_text"
                    and isinstance(block.get("text"), str)
                ):
                    return block["text"] or None

    return None


def clean_model_text(text: str) -> str:
    cleaned = strip_markdown(text)
    start = cleaned.find(CONTENT_MARKER)
    if start > 0:
        cleaned = cleaned[start:]
    return cleaned.strip()


def build_prompt(
    posting: EnrichedPosting,
    config: AIPromptConfig,
    template: str = DEFAULT_PROMPT_TEMPLATE,
) -> str:
    include_apply = config.include_how_to_apply
    category_section = ""
    if not posting.category:
        choices = "، ".join(valid_categories_for(posting.source))
        category_section = f"\n🏷️ الفئة: [اختر واحدة فقط من: {choices}]\n"

    values = {
        "sourceHint": f"\nSOURCE CONTEXT: {config.source_hint}\n" if config.source_hint else "",
        "description": posting.body_text,
        "applyContext": build_apply_context(posting) if include_apply else "",
        "descLimit": "250" if include_apply else "350",
        "totalLimit": "400" if include_apply else "380",
        "applyLimitLine": "\n- How to apply section: MAXIMUM 120 characters total" if include_apply else "",
        "noApplyRule": ""
        if include_apply
        else (
            "\n- DO NOT include any how-to-apply section, contact information, emails, "
            "phone numbers, or application links"
        ),
        "categorySection": category_section,
        "applyOutputTemplate": (
            f"\n\n{DIVIDER}\n\n{APPLY_HEADING}\n[معلومات التقديم فقط - لا تتجاوز 120 حرف:]\n"
            "📩 [إيميل] 🔗 [رابط] 📱 [واتساب]"
        )
        if include_apply
        else "",
    }
    return render_template(template, values)


class Summarizer:
    """Turns an enriched posting into channel-ready Arabic text plus a category.

    The structured header is always built locally; only the descriptive prose
    comes from the model. When every attempt fails the deterministic fallback
    is used instead, so ``summarize`` never raises for service problems.
    """

    def __init__(
        self,
        generator: TextGenerator,
        *,
        model: str = DEFAULT_AI_MODEL,
        backoff_seconds: float = 2.0,
        max_attempts: int = MAX_ATTEMPTS,
        sleep: Sleep = asyncio.sleep,
    ):
        self.generator = generator
        self.model = model
        self.backoff_seconds = backoff_seconds
        self.max_attempts = max_attempts
        self.sleep = sleep

    async def _generate(self, prompt: str, source: str) -> str:
        payload = build_request_payload(self.model, prompt)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.backoff_seconds, min=0, max=60),
            retry=retry_if_exception_type((httpx.HTTPError, InferenceError)),
            sleep=self.sleep,
            before_sleep=lambda state: logger.warning(
                "inference attempt %s failed for %s: %s",
                state.attempt_number,
                source,
                state.outcome.exception() if state.outcome else None,
            ),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                response = await self.generator.run(self.model, payload)
                try:
                    text = extract_text(response)
                except (AttributeError, KeyError, TypeError) as exc:
                    raise InferenceError(f"malformed inference reply: {exc}") from exc
                if not text:
                    raise InferenceError(f"no text in inference reply: {str(response)[:200]}")
                return text
        raise InferenceError("inference retries exhausted")  # pragma: no cover

    async def summarize(
        self,
        posting: EnrichedPosting,
        config: AIPromptConfig | None = None,
        *,
        template: str = DEFAULT_PROMPT_TEMPLATE,
    ) -> AISummary:
        config = config or DEFAULT_PROMPT_CONFIG
        header = build_job_header(posting)
        prompt = build_prompt(posting, config, template)

        model_text: str | None = None
        try:
            model_text = await self._generate(prompt, posting.source)
        except (httpx.HTTPError, InferenceError) as exc:
            logger.warning("inference unavailable for %s, using fallback: %s", posting.source, exc)
        except Exception:
            logger.exception("unexpected inference failure for %s, using fallback", posting.source)

        if model_text is not None:
            raw_summary = f"{header}\n\n{clean_model_text(model_text)}"
        else:
            raw_summary = build_no_ai_fallback(posting)

        if posting.category:
            category = posting.category
        else:
            category = extract_category(raw_summary, posting.source) or classify_by_keywords(
                posting.title, posting.body_text, posting.source
            )

        summary = remove_category_line(raw_summary)
        if not config.include_how_to_apply and config.apply_fallback and APPLY_HEADING not in summary:
            summary += build_apply_fallback_section(config.apply_fallback)

        return AISummary(summary=summary, category=category)
