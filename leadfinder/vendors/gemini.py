"""Gemini helpers: streaming business discovery and per-business research."""

from __future__ import annotations

import json
import logging
from typing import Any, AsyncIterator, Optional

from google import genai
from google.genai import types

from leadfinder.core.errors import ConfigMissing
from leadfinder.etl.transform import to_research_result
from leadfinder.models import DiscoveryQuery, ResearchResult

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"


class GeminiError(RuntimeError):
    """Raised when Gemini returns nothing usable."""


RESEARCH_SCHEMA = types.Schema(
    type=types.Type.OBJECT,
    properties={
        "companyName": types.Schema(
            type=types.Type.STRING,
            description="The official, full legal name of the company.",
        ),
        "contactName": types.Schema(
            type=types.Type.STRING,
            description=(
                "A potential contact person's name for outreach (e.g., owner, manager, marketing head). "
                "If a specific name cannot be found, state 'Not Found'."
            ),
        ),
        "address": types.Schema(
            type=types.Type.STRING,
            description="The full physical business address. If not found, state 'Not Found'.",
        ),
        "phone": types.Schema(
            type=types.Type.STRING,
            description="The primary business phone number. If not found, state 'Not Found'.",
        ),
        "email": types.Schema(
            type=types.Type.STRING,
            description=(
                "A publicly listed contact email address suitable for outreach (e.g., owner, manager). "
                "Prioritize specific contacts over generic ones like 'info@'. If not found, state 'Not Found'."
            ),
        ),
        "description": types.Schema(
            type=types.Type.STRING,
            description=(
                "A comprehensive, professional paragraph describing the business, its core services/products, "
                "mission, and its typical customer base."
            ),
        ),
    },
    required=["companyName", "contactName", "address", "phone", "email", "description"],
)


def build_discovery_prompt(query: DiscoveryQuery, limit: int) -> str:
    if query.wants_all:
        result_limit_text = "Provide a comprehensive list of all"
    else:
        result_limit_text = f"List the top {limit}"
    return (
        f"{result_limit_text} {query.business_type} in {query.area_label}. "
        "For each business, provide only its name and official website URL. "
        "Stream each result as soon as you find it, formatted as a single line: "
        "Business Name | https://website.url. Do not add any other commentary, headers, or formatting."
    )


def build_research_prompt(name: str, website: str) -> str:
    return (
        "Act as a world-class business research analyst. "
        f'Conduct deep research on the company "{name}" with the website "{website or "unknown"}". '
        "Your primary goal is to find a specific contact email address suitable for outreach "
        "(e.g., owner, manager, marketing department), avoiding generic emails like 'info@' or "
        "'contact@' if possible. Additionally, provide a comprehensive, professional paragraph "
        "describing the business, its core services or products, its mission, and its typical "
        "customer base. Populate all fields in the provided JSON schema with the most accurate "
        "information you can find."
    )


def parse_research_text(raw_text: Optional[str]) -> ResearchResult:
    if not raw_text or not raw_text.strip():
        raise GeminiError("Gemini returned an empty research response.")
    text = raw_text.strip()
    start = text.find("{")
    end = text.rfind("}") + 1
    if start == -1 or end <= start:
        raise GeminiError("Gemini research response holds no JSON object.")
    try:
        payload: Any = json.loads(text[start:end])
    except json.JSONDecodeError as exc:
        raise GeminiError(f"Gemini research response is not valid JSON: {exc}") from exc
    return to_research_result(payload)


class GeminiClient:
    """Wraps the async google-genai client for both discovery and research."""

    def __init__(self, api_key: str, model: str = DEFAULT_MODEL, client: Optional[Any] = None) -> None:
        if not api_key and client is None:
            raise ConfigMissing("GEMINI_API_KEY is not configured")
        self.model = model
        self._client = client or genai.Client(api_key=api_key)

    async def stream_text(self, query: DiscoveryQuery, limit: int = 10) -> AsyncIterator[str]:
        prompt = build_discovery_prompt(query, limit)
        logger.info("Starting Gemini discovery stream for %s in %s", query.business_type, query.area_label)
        stream = await self._client.aio.models.generate_content_stream(
            model=self.model,
            contents=prompt,
            config=types.GenerateContentConfig(tools=[types.Tool(google_search=types.GoogleSearch())]),
        )
        async for chunk in stream:
            text = chunk.text
            if text:
                yield text

    async def research(self, name: str, website: str) -> ResearchResult:
        logger.info("Researching %s (%s)", name, website)
        response = await self._client.aio.models.generate_content(
            model=self.model,
            contents=build_research_prompt(name, website),
            config=types.GenerateContentConfig(
                response_mime_type="application/json",
                response_schema=RESEARCH_SCHEMA,
            ),
        )
        return parse_research_text(response.text)
