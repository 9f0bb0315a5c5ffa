"""Google Gemini LLM provider implementation."""

import asyncio
import copy
import logging
import os
import time
from typing import Any, Optional

from .base import (
    LLMProvider,
    LLMResponse,
    ProviderCapabilities,
    ProviderError,
    ProviderType,
    ReferenceDocument,
    TokenUsage,
    merge_consecutive_turns,
    parse_retry_delay,
)

logger = logging.getLogger(__name__)


# Gemini model pricing per million tokens (as of 2025)
GEMINI_PRICING = {
    "gemini-3-pro-preview": {"input": 1.25, "output": 10.00},
    "gemini-2.5-flash": {"input": 0.15, "output": 0.60},
    "gemini-2.5-flash-lite": {"input": 0.075, "output": 0.30},
    "gemini-2.5-pro": {"input": 1.25, "output": 5.00},
    "gemini-2.0-flash": {"input": 0.10, "output": 0.40},
    "gemini-2.0-flash-lite": {"input": 0.075, "output": 0.30},
}

# Default pricing for unknown models
DEFAULT_GEMINI_PRICING = {"input": 0.15, "output": 0.60}

# Keys the Gemini response_schema subset understands
_GEMINI_SCHEMA_KEYS = {
    "type",
    "format",
    "description",
    "nullable",
    "enum",
    "properties",
    "required",
    "items",
    "anyOf",
    "minItems",
    "maxItems",
}

# Stand-in for an unconstrained JSON value ("value": {} in JSON Schema)
_ANY_JSON_VALUE = {
    "anyOf": [
        {"type": "string"},
        {"type": "number"},
        {"type": "integer"},
        {"type": "boolean"},
        {"type": "array", "items": {"type": "string"}},
        {"type": "object", "properties": {"value": {"type": "string"}}},
    ]
}


def clean_schema_for_gemini(schema: dict[str, Any]) -> dict[str, Any]:
    """
    Reduce a JSON Schema to the subset Gemini accepts as ``response_schema``.

    Local ``$ref`` pointers are inlined, ``const`` becomes a one-value
    ``enum``, ``type: [.., "null"]`` becomes ``nullable`` and unsupported
    keywords are dropped. Unconstrained nodes become a union of JSON types.
    """
    defs = {**schema.get("definitions", {}), **schema.get("$defs", {})}

    def clean(node: Any, seen: frozenset[str]) -> Any:
        if not isinstance(node, dict):
            return node

        ref = node.get("$ref")
        if isinstance(ref, str):
            name = ref.rsplit("/", 1)[-1]
            if name in seen or name not in defs:
                return {"type": "object", "properties": {"value": {"type": "string"}}}
            return clean(defs[name], seen | {name})

        if not node or set(node) <= {"title", "description", "default"}:
            return copy.deepcopy(_ANY_JSON_VALUE)

        out: dict[str, Any] = {}
        if "const" in node:
            out["enum"] = [node["const"]]
            out.setdefault("type", "string")

        for variant_key in ("oneOf", "anyOf"):
            if variant_key in node:
                variants = [v for v in node[variant_key] if v.get("type") != "null"]
                if len(variants) < len(node[variant_key]):
                    out["nullable"] = True
                if len(variants) == 1:
                    out.update(clean(variants[0], seen))
                else:
                    out["anyOf"] = [clean(v, seen) for v in variants]

        for key, value in node.items():
            if key not in _GEMINI_SCHEMA_KEYS or key == "anyOf":
                continue
            if key == "type" and isinstance(value, list):
                types = [t for t in value if t != "null"]
                if len(types) < len(value):
                    out["nullable"] = True
                out["type"] = types[0] if types else "string"
            elif key == "properties":
                out["properties"] = {k: clean(v, seen) for k, v in value.items()}
            elif key == "items":
                out["items"] = clean(value, seen)
            else:
                out[key] = copy.deepcopy(value)

        if out.get("type") == "object" and not out.get("properties"):
            out["properties"] = {"value": {"type": "string"}}
        return out

    return clean(schema, frozenset())


class GeminiProvider(LLMProvider):
    """
    Google Gemini LLM provider.

    Supports strict JSON output: when ``response_schema`` is passed the call
    sets ``response_mime_type="application/json"`` and a Gemini-compatible
    version of the schema.

    Usage:
        provider = GeminiProvider(
            api_key="...",
            default_model="gemini-2.5-flash",
        )
        async with provider:
            response = await provider.complete("Hello!")
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        default_model: str = "gemini-2.5-flash",
        timeout_seconds: float = 120.0,
        requests_per_minute: Optional[int] = None,
        track_costs: bool = True,
        log_requests: bool = False,
        log_responses: bool = False,
    ):
        super().__init__()
        self._api_key = api_key
        self.default_model = default_model
        self.timeout_seconds = timeout_seconds
        self.requests_per_minute = requests_per_minute
        self.track_costs = track_costs
        self.log_requests = log_requests
        self.log_responses = log_responses

        self._genai_module: Optional[Any] = None
        self._api_exceptions: Optional[Any] = None
        self._rate_limit_lock = asyncio.Lock()
        self._last_request_time: float = 0.0

    @property
    def provider_type(self) -> ProviderType:
        return ProviderType.GEMINI

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_system_prompt=True,  # Via system_instruction
            supports_structured_output=True,
            supports_documents=True,
            supports_vision=True,
            max_context_window=1_000_000,
        )

    def _get_api_key(self) -> str:
        """Get API key from config or environment."""
        if self._api_key:
            return self._api_key

        for env_var in ["GOOGLE_API_KEY", "GEMINI_API_KEY"]:
            api_key = os.environ.get(env_var)
            if api_key:
                return api_key

        raise ValueError(
            "Google API key not found. Set GOOGLE_API_KEY or GEMINI_API_KEY "
            "environment variable or pass api_key parameter."
        )

    async def start(self) -> None:
        """Initialize the Gemini client."""
        try:
            import google.generativeai as genai
            from google.api_core import exceptions as api_exceptions
        except ImportError:
            raise ImportError(
                "google-generativeai package not installed. "
                "Install with: pip install google-generativeai"
            )

        self._genai_module = genai
        self._api_exceptions = api_exceptions
        self._genai_module.configure(api_key=self._get_api_key())
        self._started = True
        logger.info("Gemini provider initialized")

    async def stop(self) -> None:
        """Clean up resources."""
        self._genai_module = None
        self._started = False
        logger.info("Gemini provider closed")

    def _get_model(self, model_name: str, system_instruction: Optional[str]) -> Any:
        """Create a GenerativeModel instance."""
        if self._genai_module is None:
            raise RuntimeError(
                "Provider not initialized. Use 'async with provider' or call start()."
            )

        # SDK adds the "models/" prefix itself
        if model_name.startswith("models/"):
            model_name = model_name[7:]

        if system_instruction:
            return self._genai_module.GenerativeModel(
                model_name, system_instruction=system_instruction
            )
        return self._genai_module.GenerativeModel(model_name)

    async def _apply_rate_limit(self) -> None:
        """Apply rate limiting between requests."""
        if self.requests_per_minute:
            min_interval = 60.0 / self.requests_per_minute
            async with self._rate_limit_lock:
                elapsed = time.time() - self._last_request_time
                if elapsed < min_interval:
                    await asyncio.sleep(min_interval - elapsed)
                self._last_request_time = time.time()

    @staticmethod
    def _document_parts(documents: list[ReferenceDocument]) -> list[Any]:
        parts: list[Any] = []
        for doc in documents:
            if doc.is_text:
                parts.append(f"Reference document: {doc.name}\n\n{doc.as_text()}")
            else:
                parts.append({"inline_data": {"mime_type": doc.mime_type, "data": doc.data}})
        return parts

    def _build_contents(
        self,
        prompt: str,
        messages: Optional[list[dict[str, str]]],
        documents: Optional[list[ReferenceDocument]],
    ) -> list[dict[str, Any]]:
        """
        Build the Gemini ``contents`` list.

        Turns keep the ``user`` / ``model`` roles; reference documents become
        leading parts of the first user turn.
        """
        turns = list(messages or [])
        if prompt:
            turns.append({"role": "user", "content": prompt})
        turns = merge_consecutive_turns(turns)

        contents: list[dict[str, Any]] = [
            {
                "role": "model" if turn["role"] in ("model", "assistant") else "user",
                "parts": [turn["content"]],
            }
            for turn in turns
        ]

        if documents:
            doc_parts = self._document_parts(documents)
            if contents and contents[0]["role"] == "user":
                contents[0]["parts"] = doc_parts + contents[0]["parts"]
            else:
                contents.insert(0, {"role": "user", "parts": doc_parts})
        return contents

    async def complete(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        messages: Optional[list[dict[str, str]]] = None,
        documents: Optional[list[ReferenceDocument]] = None,
        max_tokens: int = 4096,
        temperature: float = 0.7,
        response_schema: Optional[dict[str, Any]] = None,
        model: Optional[str] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """
        Send a completion request to Gemini.

        Args:
            prompt: The user prompt, sent as the last user turn
            system: Optional system prompt (used as system_instruction)
            messages: Prior conversation turns
            documents: Reference documents for the first user turn
            max_tokens: Maximum tokens in response
            temperature: Sampling temperature
            response_schema: JSON Schema for strict JSON output
            model: Model to use (defaults to default_model)
            **kwargs: Extra generation config entries

        Returns:
            LLMResponse with content, usage, and metadata

        Raises:
            ProviderError: On API errors or an empty response
        """
        model_name = model or self.default_model
        contents = self._build_contents(prompt, messages, documents)

        generation_config: dict[str, Any] = {
            "max_output_tokens": max_tokens,
            "temperature": temperature,
        }
        if response_schema is not None:
            generation_config["response_mime_type"] = "application/json"
            generation_config["response_schema"] = clean_schema_for_gemini(response_schema)
        generation_config.update(kwargs)

        await self._apply_rate_limit()

        genai_model = self._get_model(model_name, system)

        if self.log_requests:
            logger.debug(f"Gemini Request: model={model_name}, turns={len(contents)}")

        start_time = time.time()
        try:
            response = await asyncio.to_thread(
                genai_model.generate_content,
                contents,
                generation_config=generation_config,
                request_options={"timeout": self.timeout_seconds},
            )
        except self._api_exceptions.GoogleAPICallError as e:
            message = str(e)
            raise ProviderError(
                message,
                status_code=e.code,
                retry_after=parse_retry_delay(message),
                provider=ProviderType.GEMINI,
            ) from e

        latency_ms = (time.time() - start_time) * 1000

        try:
            content = response.text
        except ValueError:
            # Blocked or candidate-less response
            if response.prompt_feedback:
                logger.warning(f"Gemini response blocked: {response.prompt_feedback}")
            content = ""

        if not content.strip():
            raise ProviderError("Empty response from Gemini", provider=ProviderType.GEMINI)

        usage = TokenUsage()
        if getattr(response, "usage_metadata", None):
            usage.input_tokens = getattr(response.usage_metadata, "prompt_token_count", 0) or 0
            usage.output_tokens = getattr(response.usage_metadata, "candidates_token_count", 0) or 0

        cost_usd = self.calculate_cost(usage, model_name)

        stop_reason = None
        if response.candidates:
            candidate = response.candidates[0]
            if hasattr(candidate, "finish_reason"):
                stop_reason = str(candidate.finish_reason)

        llm_response = LLMResponse(
            content=content,
            model=model_name,
            usage=usage,
            stop_reason=stop_reason,
            latency_ms=latency_ms,
            provider=ProviderType.GEMINI,
            cost_usd=cost_usd,
        )

        if self.track_costs:
            self.cost_tracker.add(llm_response, cost_usd)

        if self.log_responses:
            logger.debug(f"Gemini Response: {content[:200]}...")

        return llm_response

    def calculate_cost(self, usage: TokenUsage, model: str) -> float:
        """Calculate cost in USD for token usage."""
        pricing = GEMINI_PRICING.get(model, DEFAULT_GEMINI_PRICING)
        input_cost = (usage.input_tokens / 1_000_000) * pricing["input"]
        output_cost = (usage.output_tokens / 1_000_000) * pricing["output"]
        return input_cost + output_cost
