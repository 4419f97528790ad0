"""
Text generation and classification services.

Both services talk to an OpenAI-compatible chat completions endpoint
(NVIDIA NIM by default) through the ``openai`` client. They are deliberately
narrow: ``complete(prompt, constraints) -> text`` and
``classify(text, taxonomy) -> label``. Timeouts and retries are applied by
the caller through ``UpstreamCaller``.
"""

import os
import re
import json
import logging
from dataclasses import dataclass
from typing import Optional

from .config import DEFAULT_LLM_BASE_URL, DEFAULT_LLM_MODEL
from .errors import UpstreamDegraded
from .patterns import LLM_PROMPTS

logger = logging.getLogger(__name__)

_THINK_BLOCK = re.compile(r"<think>.*?</think>", re.DOTALL)
_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


@dataclass
class GenerationConstraints:
    """Per-call limits for a text generation request."""
    max_tokens: int = 800
    temperature: float = 0.1
    system_prompt: Optional[str] = None
    max_chars: Optional[int] = None


class TextGenerationService:
    """
    Chat-completion wrapper for an OpenAI-compatible endpoint.

    The client is created lazily and cached, so constructing the service is
    cheap and does not require credentials until the first call.
    """

    def __init__(
        self,
        model: str = DEFAULT_LLM_MODEL,
        base_url: str = DEFAULT_LLM_BASE_URL,
        api_key: Optional[str] = None,
        timeout: float = 60.0,
    ):
        self.model = model
        self.base_url = base_url
        self._api_key = api_key
        self._timeout = timeout
        self._client = None

    def _get_client(self):
        """Get or create cached OpenAI client."""
        if self._client is None:
            from openai import OpenAI
            self._client = OpenAI(
                base_url=self.base_url,
                api_key=self._api_key or os.getenv("NVIDIA_API_KEY"),
                timeout=self._timeout,
            )
        return self._client

    def complete(self, prompt: str, constraints: Optional[GenerationConstraints] = None) -> str:
        """
        Generate a completion for a prompt.

        Args:
            prompt: User prompt
            constraints: Token, temperature and length limits

        Returns:
            Generated text with reasoning blocks removed

        Raises:
            UpstreamDegraded: Output exceeds ``constraints.max_chars``
        """
        constraints = constraints or GenerationConstraints()
        messages = []
        if constraints.system_prompt:
            messages.append({"role": "system", "content": constraints.system_prompt})
        messages.append({"role": "user", "content": prompt})

        response = self._get_client().chat.completions.create(
            model=self.model,
            messages=messages,
            max_tokens=constraints.max_tokens,
            temperature=constraints.temperature,
        )
        content = response.choices[0].message.content or ""
        content = _THINK_BLOCK.sub("", content).strip()

        if constraints.max_chars is not None and len(content) > constraints.max_chars:
            raise UpstreamDegraded(
                "generation",
                f"output of {len(content)} chars exceeds bound of {constraints.max_chars}",
            )
        return content


class ClassificationService:
    """Single-label classification on top of a text generation service."""

    def __init__(self, generator: TextGenerationService):
        self._generator = generator

    def classify(self, text: str, taxonomy: list[str]) -> str:
        """
        Pick one label from ``taxonomy`` for ``text``.

        Raises:
            UpstreamDegraded: The model answered with a label outside the taxonomy
        """
        prompt = LLM_PROMPTS["classify"].format(
            labels="\n".join(f"- {label}" for label in taxonomy),
            text=text[:4000],
        )
        raw = self._generator.complete(
            prompt,
            GenerationConstraints(
                max_tokens=20,
                temperature=0.0,
                system_prompt=LLM_PROMPTS["classify_system"],
            ),
        )
        label = normalize_label(raw, taxonomy)
        if label is None:
            raise UpstreamDegraded("classification", f"label {raw[:60]!r} not in taxonomy")
        return label


def normalize_label(raw: str, taxonomy: list[str]) -> Optional[str]:
    """
    Map a model reply onto a taxonomy label.

    Accepts exact matches after trimming quotes and punctuation, otherwise
    the single longest taxonomy label contained in the reply.
    """
    if not raw:
        return None
    cleaned = raw.strip().strip("\"'`.").strip().lower()
    by_lower = {label.lower(): label for label in taxonomy}
    if cleaned in by_lower:
        return by_lower[cleaned]

    contained = [label for label in by_lower if label in cleaned]
    if not contained:
        return None
    contained.sort(key=len, reverse=True)
    return by_lower[contained[0]]


def parse_json_response(raw: str, service: str = "generation") -> dict:
    """
    Extract a JSON object from a model reply.

    Tolerates code fences and text around the object.

    Raises:
        UpstreamDegraded: No JSON object could be parsed
    """
    if not raw or not raw.strip():
        raise UpstreamDegraded(service, "empty response")
    text = _CODE_FENCE.sub("", raw.strip())
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise UpstreamDegraded(service, "response is not JSON")
    try:
        data = json.loads(text[start:end + 1])
    except json.JSONDecodeError as e:
        raise UpstreamDegraded(service, f"invalid JSON: {e}")
    if not isinstance(data, dict):
        raise UpstreamDegraded(service, "JSON response is not an object")
    return data
