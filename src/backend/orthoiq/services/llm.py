"""
LLM Service — the one place specialist agents talk to a language model.

Targets any OpenAI-compatible chat-completions endpoint (vLLM, TGI or a
hosted model behind a gateway). Cold starts and rate limits surface as
transient errors and are retried with exponential backoff; structured
replies are pulled out of prose or code fences and, if cut off by the
token limit, closed up before validation.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from orthoiq.config import settings

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

MAX_API_RETRIES = 3
RETRY_BASE_DELAY = 5.0  # seconds; doubles per retry
STRUCTURED_ATTEMPTS = 2

_TRANSIENT_MARKERS = (
    "503", "502", "429", "service unavailable", "overloaded",
    "connection", "timeout", "timed out", "temporarily",
)


def is_transient(error: BaseException) -> bool:
    text = str(error).lower()
    return any(marker in text for marker in _TRANSIENT_MARKERS)


def _messages(prompt: str, system_prompt: Optional[str] = None) -> List[Dict[str, str]]:
    messages = [{"role": "system", "content": system_prompt}] if system_prompt else []
    messages.append({"role": "user", "content": prompt})
    return messages


class LLMService:
    """
    Shared client for every LLM-backed specialist.

    Usage:
        llm = LLMService()
        reply = await llm.generate("Answer these questions...", system_prompt=...)
        envelope = await llm.generate_structured(case_prompt, SpecialistAssessment)
    """

    def __init__(self, model_id: Optional[str] = None, base_url: Optional[str] = None, api_key: Optional[str] = None):
        self.model_id = model_id or settings.llm_model_id
        self.base_url = base_url or settings.llm_base_url or "http://localhost:8000/v1"
        self.api_key = api_key or settings.llm_api_key or "not-needed"
        self._client = None

    def _get_client(self):
        if self._client is None:
            from openai import AsyncOpenAI
            self._client = AsyncOpenAI(api_key=self.api_key, base_url=self.base_url)
        return self._client

    async def check_readiness(self) -> bool:
        """One-token probe without retries; False on any error."""
        try:
            response = await self._get_client().chat.completions.create(
                model=self.model_id,
                messages=_messages("ping"),
                max_tokens=1,
                temperature=0.0,
            )
        except Exception as e:
            logger.debug("LLM readiness probe failed: %s", e)
            return False
        return bool(response.choices)

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 0,
        temperature: Optional[float] = None,
    ) -> str:
        """Free-text completion. ``max_tokens=0`` and ``temperature=None`` fall back to settings."""
        return await self._generate_api(
            prompt,
            system_prompt,
            max_tokens or settings.llm_max_tokens,
            settings.llm_temperature if temperature is None else temperature,
        )

    async def generate_structured(
        self,
        prompt: str,
        response_model: Type[ModelT],
        system_prompt: Optional[str] = None,
        max_tokens: int = 0,
        temperature: float = 0.2,
    ) -> ModelT:
        """
        Completion validated into ``response_model``.

        The model's JSON schema is appended to the prompt. An unusable reply
        is asked for once more before giving up with ``ValueError``.
        """
        instructions = (
            f"{prompt}\n\n"
            "Reply with a single JSON object that validates against the schema below. "
            "No prose before or after it.\n"
            f"{json.dumps(response_model.model_json_schema())}"
        )

        last_error: Optional[Exception] = None
        for attempt in range(1, STRUCTURED_ATTEMPTS + 1):
            raw = await self.generate(instructions, system_prompt, max_tokens, temperature)
            try:
                return parse_model(raw, response_model)
            except ValidationError as e:
                last_error = e
                logger.warning(
                    "Unusable %s reply (attempt %d/%d): %s | raw: %.300s",
                    response_model.__name__, attempt, STRUCTURED_ATTEMPTS, e, raw,
                )

        raise ValueError(
            f"LLM returned invalid JSON for {response_model.__name__} "
            f"after {STRUCTURED_ATTEMPTS} attempts: {last_error}"
        )

    async def _generate_api(
        self, prompt: str, system_prompt: Optional[str], max_tokens: int, temperature: float
    ) -> str:
        client = self._get_client()
        messages = _messages(prompt, system_prompt)

        attempt = 0
        while True:
            attempt += 1
            try:
                response = await client.chat.completions.create(
                    model=self.model_id,
                    messages=messages,
                    max_tokens=max_tokens,
                    temperature=temperature,
                )
            except Exception as e:
                if attempt >= MAX_API_RETRIES or not is_transient(e):
                    logger.error("LLM API error (attempt %d/%d): %s", attempt, MAX_API_RETRIES, e)
                    raise
                delay = RETRY_BASE_DELAY * 2 ** (attempt - 1)
                logger.warning(
                    "Transient LLM API error (attempt %d/%d), retrying in %.0fs: %s",
                    attempt, MAX_API_RETRIES, delay, e,
                )
                await asyncio.sleep(delay)
                continue
            return response.choices[0].message.content or ""


# ──────────────────────────────────────────────
# JSON helpers
# ──────────────────────────────────────────────

_FENCED = re.compile(r"```(?:json)?\s*(.*?)(?:```|\Z)", re.DOTALL)
_OPENERS = {"{": "}", "[": "]"}


def extract_json(text: str) -> str:
    """
    The JSON part of a model reply.

    Prefers a fenced code block; otherwise the first object or array that
    decodes cleanly; otherwise everything from the first brace on, so a
    truncated body can still be repaired.
    """
    fenced = _FENCED.search(text)
    if fenced:
        return fenced.group(1).strip()

    decoder = json.JSONDecoder()
    starts = [i for i, ch in enumerate(text) if ch in _OPENERS]
    for start in starts:
        try:
            _, end = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            continue
        return text[start:end]
    if starts:
        return text[starts[0]:].strip()
    return text.strip()


def repair_truncated_json(text: str) -> Optional[str]:
    """Close a dangling string and any open arrays/objects. None for blank input."""
    if not text or not text.strip():
        return None

    closers: List[str] = []
    in_string = escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _OPENERS:
            closers.append(_OPENERS[ch])
        elif closers and ch == closers[-1]:
            closers.pop()

    repaired = text.rstrip()
    if in_string:
        repaired += '"'
    repaired = repaired.rstrip().rstrip(",")
    return repaired + "".join(reversed(closers))


def parse_model(raw: str, response_model: Type[ModelT]) -> ModelT:
    """Validate a raw reply, retrying once on the repaired body if it looks truncated."""
    body = extract_json(raw)
    try:
        return response_model.model_validate_json(body)
    except ValidationError:
        repaired = repair_truncated_json(body)
        if repaired is None or repaired == body:
            raise
        return response_model.model_validate_json(repaired)
