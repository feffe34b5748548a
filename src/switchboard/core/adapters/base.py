"""Provider contract shared by every vendor adapter."""

from __future__ import annotations

import json
import logging
import os
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import aclosing, asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, ClassVar, Protocol

import httpx

from ..cancellation import CancellationToken, MergedToken, merge_tokens
from ..config import AIProviderConfig
from ..decoders import DecodedRecord, MalformedRecord, SSEDecoder, StreamDecoder, iter_records
from ..errors import DecodeError, GatewayError, MissingCredential
from ..events import EventCallback
from ..http import DEFAULT_RETRY_POLICY, RetryPolicy, fetch_with_retry, raise_for_status
from ..message import AIResponse, ChatMessage
from ...services import ModelRegistry, SecretService
from .stream import StreamAssembler
from .toolbridge import ToolDefinition, validate_tool_definitions

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = httpx.Timeout(60.0, connect=10.0)


@dataclass(frozen=True, slots=True)
class AIProviderCapabilities:
    """Static description of what an adapter supports."""

    tool_use: bool
    streaming: bool
    vision: bool
    system_messages: bool
    max_context_tokens: int
    max_output_tokens: int


@dataclass(frozen=True, slots=True)
class ChatRequest:
    """Everything one chat call needs; owned by the caller."""

    messages: Sequence[ChatMessage]
    tools: Sequence[ToolDefinition] = ()
    system: str | None = None
    max_tokens: int | None = None
    temperature: float | None = None
    cancel_token: CancellationToken | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if isinstance(self.messages, (str, bytes, bytearray)) or not isinstance(
            self.messages, Sequence
        ):
            msg = "messages must be a sequence of ChatMessage instances"
            raise GatewayError(msg)
        messages = tuple(self.messages)
        for index, message in enumerate(messages):
            if not isinstance(message, ChatMessage):
                msg = f"messages[{index}] must be a ChatMessage"
                raise GatewayError(msg)
        object.__setattr__(self, "messages", messages)
        object.__setattr__(self, "tools", validate_tool_definitions(self.tools or ()))

        if self.max_tokens is not None and self.max_tokens <= 0:
            msg = "max_tokens must be positive"
            raise GatewayError(msg)


@dataclass(frozen=True, slots=True)
class VendorRequest:
    """Description of one HTTP exchange, turned into an ``httpx.Request`` per call."""

    method: str
    url: str
    json: Any = None
    params: Mapping[str, str] | None = None
    headers: Mapping[str, str] | None = None
    timeout: httpx.Timeout | float | None = None


class StreamNormalizer(Protocol):
    def handle(self, record: DecodedRecord) -> None:
        """Apply one decoded vendor record to the stream assembler."""

    def finish(self) -> AIResponse:
        """Complete the event sequence and return the aggregate response."""


class ChatProvider(ABC):
    """Abstract vendor adapter.

    Instances are long-lived and hold only immutable configuration plus
    shared collaborators. Every call creates its own cancellation token and
    stream state, so one instance may serve concurrent calls.
    """

    provider_id: ClassVar[str]
    default_model: ClassVar[str]
    default_base_url: ClassVar[str]
    fallback_models: ClassVar[tuple[str, ...]] = ()
    credential_names: ClassVar[tuple[str, ...]] = ()
    requires_credential: ClassVar[bool] = True

    def __init__(
        self,
        config: AIProviderConfig,
        *,
        secrets: SecretService | None = None,
        model_registry: ModelRegistry | None = None,
        http_client: httpx.AsyncClient | None = None,
        retry_policy: RetryPolicy = DEFAULT_RETRY_POLICY,
        timeout: httpx.Timeout | None = None,
    ) -> None:
        self._config = config
        self._secrets = secrets
        self._model_registry = model_registry
        self._http_client = http_client
        self._retry_policy = retry_policy
        self._timeout = timeout or DEFAULT_TIMEOUT

    @property
    def config(self) -> AIProviderConfig:
        return self._config

    @property
    def name(self) -> str:
        return self._config.name

    @property
    def base_url(self) -> str:
        return (self._config.base_url or self.default_base_url).rstrip("/")

    @abstractmethod
    def capabilities(self) -> AIProviderCapabilities:
        """Return the static capability description."""

    async def is_available(self) -> bool:
        """Report whether a credential can be found. Never raises."""

        try:
            return await self._lookup_api_key() is not None
        except Exception as exc:  # availability checks must not fail the caller
            LOGGER.warning("%s: availability check failed: %s", self.name, exc)
            return False

    async def list_models(self) -> list[str]:
        """List models live, else from the model registry, else built-ins."""

        try:
            models = await self._fetch_models()
        except Exception as exc:  # listing degrades to fallback data
            LOGGER.warning("%s: falling back to known models: %s", self.name, exc)
        else:
            if models:
                return models
            LOGGER.warning("%s: vendor returned no models, using fallback list", self.name)
        return self.fallback_model_list()

    def fallback_model_list(self) -> list[str]:
        if self._model_registry is not None:
            try:
                registered = list(self._model_registry.get_provider_model_ids(self.provider_id))
            except Exception as exc:  # registry is best effort here
                LOGGER.warning("%s: model registry lookup failed: %s", self.name, exc)
            else:
                if registered:
                    return registered
        return list(self.fallback_models)

    def resolve_model(self) -> str:
        """Pick the model: config, then registry default, then built-in."""

        if self._config.model:
            return self._config.model
        if self._model_registry is not None:
            registered = self._model_registry.get_provider_default_id(self.provider_id)
            if registered:
                return registered
        return self.default_model

    async def chat(self, request: ChatRequest) -> AIResponse:
        api_key = await self._require_api_key()
        model = self.resolve_model()
        vendor_request = self._chat_request(request, model=model, api_key=api_key, stream=False)
        LOGGER.debug("%s: chat with model %s", self.name, model)

        async with self._call_scope(request.cancel_token) as (client, token):
            response = await fetch_with_retry(
                client,
                self._build(client, vendor_request),
                token=token,
                policy=self._retry_policy,
                provider=self.name,
            )
            await raise_for_status(response, provider=self.name)
            payload = self._decode_body(response)
        return self._parse_response(payload, model=model)

    async def chat_stream(self, request: ChatRequest, on_event: EventCallback) -> AIResponse:
        api_key = await self._require_api_key()
        model = self.resolve_model()
        vendor_request = self._chat_request(request, model=model, api_key=api_key, stream=True)
        LOGGER.debug("%s: streaming chat with model %s", self.name, model)

        async with self._call_scope(request.cancel_token) as (client, token):
            response = await fetch_with_retry(
                client,
                self._build(client, vendor_request),
                token=token,
                policy=self._retry_policy,
                stream=True,
                provider=self.name,
            )
            try:
                await raise_for_status(response, provider=self.name)
                assembler = StreamAssembler(on_event, provider=self.name, token=token)
                normalizer = self._stream_normalizer(assembler, model=model)
                records = iter_records(self._stream_decoder(), response.aiter_bytes(), token)
                async with aclosing(records):
                    async for outcome in records:
                        if isinstance(outcome, MalformedRecord):
                            LOGGER.warning(
                                "%s: skipping malformed stream record: %s", self.name, outcome.error
                            )
                            continue
                        normalizer.handle(outcome)
                token.raise_if_cancelled()
                return normalizer.finish()
            finally:
                await response.aclose()

    @abstractmethod
    def _chat_request(
        self,
        request: ChatRequest,
        *,
        model: str,
        api_key: str | None,
        stream: bool,
    ) -> VendorRequest:
        """Encode ``request`` into the vendor's wire format."""

    @abstractmethod
    def _parse_response(self, payload: Any, *, model: str) -> AIResponse:
        """Decode a non-streaming vendor body."""

    @abstractmethod
    def _stream_normalizer(self, assembler: StreamAssembler, *, model: str) -> StreamNormalizer:
        """Create the per-call normalizer for streamed records."""

    @abstractmethod
    async def _fetch_models(self) -> list[str]:
        """Ask the vendor for its model list."""

    def _stream_decoder(self) -> StreamDecoder:
        return SSEDecoder()

    async def _lookup_api_key(self) -> str | None:
        if self._config.api_key:
            return self._config.api_key

        if self._secrets is not None:
            try:
                for secret_name in self.credential_names:
                    value = await self._secrets.get(secret_name)
                    if value:
                        return value
            except Exception as exc:  # secret store outage falls through to env
                LOGGER.warning("%s: secret service unavailable, checking environment: %s", self.name, exc)

        for secret_name in self.credential_names:
            value = os.environ.get(secret_name)
            if value:
                return value
        return None

    async def _require_api_key(self) -> str | None:
        if not self.requires_credential:
            return None
        api_key = await self._lookup_api_key()
        if api_key is None:
            raise MissingCredential(self.name, self.credential_names)
        return api_key

    async def _request_json(
        self,
        vendor_request: VendorRequest,
        *,
        cancel_token: CancellationToken | None = None,
        policy: RetryPolicy | None = None,
    ) -> Any:
        """Run one non-streaming exchange and return its decoded JSON body."""

        async with self._call_scope(cancel_token) as (client, token):
            response = await fetch_with_retry(
                client,
                self._build(client, vendor_request),
                token=token,
                policy=policy or self._retry_policy,
                provider=self.name,
            )
            await raise_for_status(response, provider=self.name)
            return self._decode_body(response)

    @asynccontextmanager
    async def _call_scope(
        self,
        cancel_token: CancellationToken | None,
    ) -> AsyncIterator[tuple[httpx.AsyncClient, MergedToken]]:
        internal = CancellationToken()
        with merge_tokens(cancel_token, internal) as token:
            try:
                if self._http_client is not None:
                    yield self._http_client, token
                else:
                    async with httpx.AsyncClient(timeout=self._timeout) as client:
                        yield client, token
            finally:
                internal.cancel("call finished")

    def _build(self, client: httpx.AsyncClient, vendor_request: VendorRequest) -> httpx.Request:
        extra: dict[str, Any] = {}
        if vendor_request.timeout is not None:
            extra["timeout"] = vendor_request.timeout
        return client.build_request(
            vendor_request.method,
            vendor_request.url,
            json=vendor_request.json,
            params=vendor_request.params,
            headers=vendor_request.headers,
            **extra,
        )

    def _decode_body(self, response: httpx.Response) -> Any:
        try:
            return json.loads(response.content)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            msg = f"{self.name}: response body is not valid JSON"
            raise DecodeError(msg) from exc


__all__ = [
    "AIProviderCapabilities",
    "ChatProvider",
    "ChatRequest",
    "DEFAULT_TIMEOUT",
    "StreamNormalizer",
    "VendorRequest",
]
