import asyncio
import json

import httpx
import pytest

from job_relay.inference import (
    InferenceError,
    Summarizer,
    WorkersAIClient,
    build_prompt,
    build_request_payload,
    clean_model_text,
    extract_text,
)
from job_relay.models import EnrichedPosting
from job_relay.prompts import DEFAULT_APPLY_FALLBACK, AIPromptConfig

MODEL_REPLY = "Here is the summary:\n📋 الوصف الوظيفي:\n**إدارة** مشاريع البنية التحتية\n🏷️ الفئة: هندسة"


def _posting(**overrides) -> EnrichedPosting:
    values = dict(
        source="yemenhr",
        title="Civil Engineer",
        employer="UNOPS",
        url="https://yemenhr.com/jobs/civil-engineer-1",
        body_text="Supervise road rehabilitation works in Hodeidah.",
        location="Hodeidah",
        posted_label="01-03-2026",
    )
    values.update(overrides)
    return EnrichedPosting(**values)


class FakeGenerator:
    def __init__(self, *replies) -> None:
        self.replies = list(replies)
        self.calls: list[tuple[str, dict]] = []

    async def run(self, model: str, payload: dict) -> object:
        self.calls.append((model, payload))
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def test_extract_text_supports_every_reply_shape() -> None:
    assert extract_text({"response": "نص"}) == "نص"
    assert extract_text({"choices": [{"message": {"content": "نص"}}]}) == "نص"
    assert extract_text({"output_text": "نص"}) == "نص"
    assert (
        extract_text(
            {
                "output": [
                    {"type": "reasoning", "content": []},
                    {"type": "message", "content": [{"type": "output_text", "text": "نص"}]},
                ]
            }
        )
        == "نص"
    )
    assert extract_text({"response": ""}) is None
    assert extract_text({"choices": []}) is None
    assert extract_text({"unexpected": True}) is None
    assert extract_text("plain") is None


def test_request_shape_depends_on_model() -> None:
    responses = build_request_payload("@cf/openai/gpt-oss-120b", "prompt")
    assert responses["input"] == "prompt"
    assert "instructions" in responses

    chat = build_request_payload("@cf/qwen/qwen3-30b-a3b-fp8", "prompt")
    assert chat["messages"] == [{"role": "user", "content": "prompt"}]


def test_clean_model_text_drops_preamble_and_markdown() -> None:
    assert clean_model_text(MODEL_REPLY).startswith("📋 الوصف الوظيفي:\nإدارة مشاريع")


def test_prompt_includes_contacts_only_when_configured() -> None:
    posting = _posting(application_contacts=("jobs@unops.org",), how_to_apply="Send your CV")

    with_apply = build_prompt(posting, AIPromptConfig(include_how_to_apply=True, source_hint="Yemen HR"))
    assert "jobs@unops.org" in with_apply
    assert "MAXIMUM 250 characters" in with_apply
    assert "SOURCE CONTEXT: Yemen HR" in with_apply
    assert "📧 كيفية التقديم:" in with_apply

    without_apply = build_prompt(posting, AIPromptConfig())
    assert "jobs@unops.org" not in without_apply
    assert "MAXIMUM 350 characters" in without_apply
    assert "DO NOT include any how-to-apply section" in without_apply


def test_prompt_omits_category_choice_when_category_known() -> None:
    assert "🏷️ الفئة: [اختر" in build_prompt(_posting(), AIPromptConfig())
    assert "🏷️ الفئة" not in build_prompt(_posting(category="Banking"), AIPromptConfig())


def test_summary_combines_local_header_with_model_text() -> None:
    generator = FakeGenerator({"response": MODEL_REPLY})
    summarizer = Summarizer(generator, model="@cf/test/model", sleep=RecordingSleep())

    result = asyncio.run(summarizer.summarize(_posting()))

    assert result.category == "هندسة"
    assert result.summary.startswith("📋 المسمى الوظيفي:\nCivil Engineer")
    assert "📋 الوصف الوظيفي:\nإدارة مشاريع البنية التحتية" in result.summary
    assert "الفئة" not in result.summary
    assert "Here is the summary" not in result.summary
    assert result.summary.endswith(DEFAULT_APPLY_FALLBACK)
    assert generator.calls[0][0] == "@cf/test/model"


def test_known_category_is_kept_verbatim() -> None:
    generator = FakeGenerator({"response": MODEL_REPLY})
    summarizer = Summarizer(generator, sleep=RecordingSleep())

    result = asyncio.run(summarizer.summarize(_posting(source="ykbank", category="Banking")))
    assert result.category == "Banking"


def test_transport_errors_retry_with_backoff_then_fall_back() -> None:
    request = httpx.Request("POST", "https://api.cloudflare.com")
    generator = FakeGenerator(httpx.ConnectError("down", request=request))
    sleep = RecordingSleep()
    summarizer = Summarizer(generator, backoff_seconds=2.0, sleep=sleep)

    result = asyncio.run(summarizer.summarize(_posting()))

    assert len(generator.calls) == 3
    assert sleep.delays == [2.0, 4.0]
    assert "Supervise road rehabilitation works" in result.summary
    assert result.category == "هندسة"


def test_unparseable_replies_fall_back_after_three_attempts() -> None:
    generator = FakeGenerator({"result": {"weird": True}})
    summarizer = Summarizer(generator, sleep=RecordingSleep())

    result = asyncio.run(summarizer.summarize(_posting(title="Driver", body_text="Drive staff vehicles")))

    assert len(generator.calls) == 3
    assert result.summary
    assert "Drive staff vehicles" in result.summary
    assert result.category == "أخرى"


def test_malformed_output_blocks_fall_back_after_three_attempts() -> None:
    generator = FakeGenerator({"output": [{"type": "message", "content": 5}]})
    sleep = RecordingSleep()
    summarizer = Summarizer(generator, backoff_seconds=1.0, sleep=sleep)

    result = asyncio.run(summarizer.summarize(_posting()))

    assert extract_text({"output": [{"type": "message", "content": 5}]}) is None
    assert len(generator.calls) == 3
    assert sleep.delays == [1.0, 2.0]
    assert "Supervise road rehabilitation works" in result.summary


def test_unexpected_generator_error_still_falls_back() -> None:
    generator = FakeGenerator(RuntimeError("client bug"))
    summarizer = Summarizer(generator, sleep=RecordingSleep())

    result = asyncio.run(summarizer.summarize(_posting()))

    assert len(generator.calls) == 1
    assert "Supervise road rehabilitation works" in result.summary
    assert result.category == "هندسة"


def test_recovers_when_a_later_attempt_succeeds() -> None:
    generator = FakeGenerator(InferenceError("empty"), {"response": MODEL_REPLY})
    sleep = RecordingSleep()
    summarizer = Summarizer(generator, backoff_seconds=1.0, sleep=sleep)

    result = asyncio.run(summarizer.summarize(_posting()))

    assert len(generator.calls) == 2
    assert sleep.delays == [1.0]
    assert "إدارة مشاريع البنية التحتية" in result.summary


def test_workers_ai_client_posts_to_model_endpoint() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"success": True, "result": {"response": "نص"}})

    async def scenario() -> object:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            ai = WorkersAIClient(client, "acct-1", "secret")
            return await ai.run("@cf/qwen/qwen3-30b-a3b-fp8", {"messages": []})

    assert asyncio.run(scenario()) == {"response": "نص"}
    assert seen[0].url.path == "/client/v4/accounts/acct-1/ai/run/@cf/qwen/qwen3-30b-a3b-fp8"
    assert seen[0].headers["Authorization"] == "Bearer secret"
    assert json.loads(seen[0].content) == {"messages": []}


def test_workers_ai_client_reports_service_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"success": False, "errors": [{"message": "quota"}]})

    async def scenario() -> None:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await WorkersAIClient(client, "acct", "token").run("@cf/m", {})

    with pytest.raises(InferenceError, match="quota"):
        asyncio.run(scenario())
