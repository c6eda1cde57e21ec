"""
Planning oracle

Wraps an OpenAI-compatible chat endpoint behind a two-string interface
(system prompt, user context) and turns its answer into a validated Plan.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, Protocol

import openai

from uwa.src.utils.config import CONFIG, LLMConfig

from .parsing import parse_plan
from .prompts import PLAN_PROMPT
from .models import Plan
from .session import RoundContext

logger = logging.getLogger("uwa.oracle")


class PlanningClient(Protocol):
    async def complete(self, system_prompt: str, user_content: str) -> str:
        ...


class OpenAIPlanningClient:
    """Chat-completions client; the blocking SDK call runs in a worker thread."""

    def __init__(self, config: LLMConfig | None = None) -> None:
        self.config = config or CONFIG.llm
        if not self.config.api_key:
            raise ValueError("LLM API key not set. Export OPENAI_API_KEY or add it to .env.")
        self.client = openai.OpenAI(
            api_key=self.config.api_key,
            base_url=self.config.base_url or None,
            timeout=self.config.timeout,
        )

    def _complete_sync(self, system_prompt: str, user_content: str) -> str:
        response = self.client.chat.completions.create(
            model=self.config.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_content},
            ],
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
        )
        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise RuntimeError("Empty LLM response")
        return content

    async def complete(self, system_prompt: str, user_content: str) -> str:
        return await asyncio.to_thread(self._complete_sync, system_prompt, user_content)


def build_plan_context(context: RoundContext) -> str:
    page: Dict[str, Any] = context.snapshot.for_prompt() if context.snapshot else {}
    sections = [
        f"User goal: {context.goal}",
        f"Current page: {context.location.url if context.location else 'unknown'}",
        f"Round: {context.round_index + 1}",
        "Page structure:",
        json.dumps(page, ensure_ascii=False, indent=2),
    ]
    if context.memories:
        sections.append("Relevant memories:")
        sections.append(json.dumps(list(context.memories)[:10], ensure_ascii=False))
    if context.suggestions:
        sections.append("Suggestions: " + "; ".join(context.suggestions))
    if context.tools:
        sections.append("Available external tools:")
        sections.append(json.dumps(list(context.tools), ensure_ascii=False))
    if context.previous_results:
        sections.append("Results of earlier rounds:")
        sections.append(json.dumps(list(context.previous_results)[-10:], ensure_ascii=False))
    sections.append(
        "Use the page elements above. If the goal is complete, return an empty actions list."
    )
    return "\n".join(sections)


class PlanningOracle:
    def __init__(self, client: PlanningClient) -> None:
        self.client = client

    async def plan(self, context: RoundContext) -> Plan:
        """Ask for the round's plan. Raises PlanParseError on a malformed answer."""
        raw = await self.client.complete(PLAN_PROMPT, build_plan_context(context))
        plan = parse_plan(raw)
        logger.info(
            "round %d plan: %d action(s), permissions=%s",
            context.round_index + 1,
            len(plan.actions),
            [p.value for p in plan.required_permissions],
        )
        return plan
