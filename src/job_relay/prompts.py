from __future__ import annotations

import json
import logging
import re
import sqlite3
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError

from job_relay.storage import IdempotencyStore

logger = logging.getLogger(__name__)

PROMPT_OVERRIDES_KEY = "config:ai-prompts"
PROMPT_TEMPLATE_KEY = "config:ai-template"
DEFAULT_APPLY_FALLBACK = "راجع رابط الوظيفة أدناه"

_PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")

DEFAULT_PROMPT_TEMPLATE = """You are summarizing a job posting for an Arabic-speaking Telegram channel in Yemen.
Translate and summarize the job below into clear Modern Standard Arabic.
{{sourceHint}}
JOB DESCRIPTION:
{{description}}{{applyContext}}

RULES:
- Output Arabic only, except for emails, URLs and phone numbers, which must stay exactly as given
- Job description section: MAXIMUM {{descLimit}} characters
- Whole answer: MAXIMUM {{totalLimit}} characters{{applyLimitLine}}{{noApplyRule}}
- Do not repeat the job title, organization, location or dates; they are shown separately
- No markdown, no bold, no introductions, start directly with the first section

OUTPUT FORMAT:
📋 الوصف الوظيفي:
[ملخص المهام والمتطلبات الأساسية]
{{categorySection}}{{applyOutputTemplate}}"""


class AIPromptConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    include_how_to_apply: bool = False
    source_hint: str | None = None
    apply_fallback: str | None = DEFAULT_APPLY_FALLBACK


DEFAULT_PROMPT_CONFIG = AIPromptConfig()

# stored override fields use the short names operators type on the CLI
OVERRIDE_FIELDS = {
    "howtoapply": "include_how_to_apply",
    "hint": "source_hint",
    "apply": "apply_fallback",
}


def render_template(template: str, values: Mapping[str, str]) -> str:
    return _PLACEHOLDER_RE.sub(lambda match: values.get(match.group(1), ""), template)


class PromptConfigResolver:
    """Two-layer prompt configuration: compiled per-source defaults under stored overrides."""

    def __init__(self, defaults: Mapping[str, AIPromptConfig], store: IdempotencyStore | None = None):
        self.defaults = dict(defaults)
        self.store = store

    def default_for(self, source: str | None) -> AIPromptConfig:
        if not source:
            return DEFAULT_PROMPT_CONFIG
        return self.defaults.get(source, DEFAULT_PROMPT_CONFIG)

    def overrides(self) -> dict[str, dict[str, Any]]:
        if self.store is None:
            return {}
        try:
            raw = self.store.get(PROMPT_OVERRIDES_KEY)
        except sqlite3.Error:
            logger.warning("prompt override read failed; using defaults", exc_info=True)
            return {}
        if not raw:
            return {}
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("ignoring malformed prompt overrides")
            return {}
        return payload if isinstance(payload, dict) else {}

    def resolve(self, source: str | None) -> AIPromptConfig:
        base = self.default_for(source)
        if not source:
            return base
        override = self.overrides().get(source)
        if not isinstance(override, dict) or not override:
            return base
        try:
            return AIPromptConfig.model_validate({**base.model_dump(), **override})
        except ValidationError:
            logger.warning("ignoring invalid prompt override for %s", source)
            return base

    def set_override(self, source: str, field: str, value: str) -> AIPromptConfig:
        if field not in OVERRIDE_FIELDS:
            valid = ", ".join(OVERRIDE_FIELDS)
            raise ValueError(f"Unknown field: {field} (valid fields: {valid})")
        attribute = OVERRIDE_FIELDS[field]
        parsed: Any = value
        if attribute == "include_how_to_apply":
            if value not in ("on", "off"):
                raise ValueError("howtoapply expects on|off")
            parsed = value == "on"
        if self.store is None:
            raise ValueError("no store configured for prompt overrides")
        configs = self.overrides()
        configs.setdefault(source, {})[attribute] = parsed
        self.store.put(PROMPT_OVERRIDES_KEY, json.dumps(configs, ensure_ascii=False))
        return self.resolve(source)

    def clear_override(self, source: str | None = None) -> bool:
        if self.store is None:
            return False
        if source is None:
            return self.store.delete(PROMPT_OVERRIDES_KEY)
        configs = self.overrides()
        if source not in configs:
            return False
        del configs[source]
        if configs:
            self.store.put(PROMPT_OVERRIDES_KEY, json.dumps(configs, ensure_ascii=False))
        else:
            self.store.delete(PROMPT_OVERRIDES_KEY)
        return True

    def template(self) -> str:
        if self.store is None:
            return DEFAULT_PROMPT_TEMPLATE
        try:
            stored = self.store.get(PROMPT_TEMPLATE_KEY)
        except sqlite3.Error:
            logger.warning("prompt template read failed; using default", exc_info=True)
            return DEFAULT_PROMPT_TEMPLATE
        return stored or DEFAULT_PROMPT_TEMPLATE

    def set_template(self, template: str) -> None:
        if not template.strip():
            raise ValueError("template must not be empty")
        if self.store is None:
            raise ValueError("no store configured for prompt overrides")
        self.store.put(PROMPT_TEMPLATE_KEY, template)

    def reset_template(self) -> bool:
        if self.store is None:
            return False
        return self.store.delete(PROMPT_TEMPLATE_KEY)
