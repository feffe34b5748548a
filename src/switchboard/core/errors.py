"""Exception taxonomy raised by switchboard adapters and utilities."""

from __future__ import annotations

from collections.abc import Sequence


class GatewayError(RuntimeError):
    """Base class for every failure surfaced by the gateway."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class ProviderConfigError(GatewayError):
    """Raised when a provider configuration cannot be turned into an adapter."""


class MissingCredential(GatewayError):
    """No usable API key was found; raised before any network I/O."""

    def __init__(self, provider: str, names: Sequence[str]) -> None:
        self.provider = provider
        self.names = tuple(names)
        joined = ", ".join(self.names) or "<none>"
        super().__init__(f"{provider}: no API key found (looked up {joined})")


class VendorHttpError(GatewayError):
    """The vendor answered with a non-2xx status."""

    def __init__(self, provider: str, status: int, body: str) -> None:
        self.provider = provider
        self.status = status
        self.body = body
        snippet = body if len(body) <= 500 else body[:500] + "..."
        super().__init__(f"{provider}: HTTP {status}: {snippet}")

    @property
    def retryable(self) -> bool:
        return self.status == 429 or self.status >= 500


class NetworkError(GatewayError):
    """The vendor could not be reached after every retry attempt."""

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class DecodeError(GatewayError):
    """A response body or a required stream record could not be parsed."""


class StreamVendorError(GatewayError):
    """The vendor signalled an in-band error in the middle of a stream."""

    def __init__(self, error_type: str, message: str) -> None:
        self.type = error_type
        self.message = message
        super().__init__(f"{error_type}: {message}")


class Cancelled(GatewayError):
    """The merged cancellation token fired before the call completed."""

    def __init__(self, reason: str | None = None) -> None:
        self.reason = reason
        super().__init__(f"call cancelled: {reason}" if reason else "call cancelled")


class ToolArgumentDecodeError(GatewayError):
    """Accumulated tool-call arguments were not a JSON object.

    This error is recoverable: it is returned as a result variant by the
    stream assembler and logged, and only the affected tool call is dropped.
    """

    def __init__(
        self,
        *,
        index: int,
        tool_id: str,
        tool_name: str,
        raw: str,
        reason: str,
    ) -> None:
        self.index = index
        self.tool_id = tool_id
        self.tool_name = tool_name
        self.raw = raw
        self.reason = reason
        super().__init__(
            f"tool call '{tool_name}' ({tool_id}) at index {index} has invalid arguments: {reason}"
        )


__all__ = [
    "Cancelled",
    "DecodeError",
    "GatewayError",
    "MissingCredential",
    "NetworkError",
    "ProviderConfigError",
    "StreamVendorError",
    "ToolArgumentDecodeError",
    "VendorHttpError",
]
