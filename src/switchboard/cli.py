"""Command line interface for exercising configured providers."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Sequence

from .core.adapters.base import ChatRequest
from .core.config import AIProviderConfig, ProviderType
from .core.errors import GatewayError
from .core.events import ContentBlockDelta, StreamEvent, TextDelta
from .core.message import AIResponse, ChatMessage, MessageRole
from .gateway import Gateway
from .logging_config import configure_logging
from .settings import get_settings


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Talk to chat model providers through switchboard")
    parser.add_argument("--log-level", help="Override SWITCHBOARD_LOG_LEVEL")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("providers", help="list registered provider types")

    models_parser = subparsers.add_parser("models", help="list models offered by a provider")
    _add_provider_arguments(models_parser)

    chat_parser = subparsers.add_parser("chat", help="send a single prompt")
    _add_provider_arguments(chat_parser)
    chat_parser.add_argument("prompt", help="User message to send")
    chat_parser.add_argument("--system", help="System prompt")
    chat_parser.add_argument("--stream", action="store_true", help="Print text as it streams")
    chat_parser.add_argument("--max-tokens", type=int, help="Maximum tokens to generate")
    chat_parser.add_argument("--temperature", type=float, help="Sampling temperature")

    return parser


def _add_provider_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "provider",
        choices=[provider.value for provider in ProviderType],
        help="Provider type",
    )
    parser.add_argument("--model", help="Model id to use")
    parser.add_argument("--base-url", help="Override the vendor API base URL")


def _build_gateway() -> Gateway:
    return Gateway.from_settings(get_settings())


def _config_from_args(args: argparse.Namespace) -> AIProviderConfig:
    return AIProviderConfig(
        type=ProviderType(args.provider),
        name=args.provider,
        model=args.model,
        base_url=args.base_url,
    )


def _handle_providers(gateway: Gateway) -> int:
    for provider_type in gateway.registry.types():
        print(provider_type)
    return 0


async def _handle_models(gateway: Gateway, args: argparse.Namespace) -> int:
    provider = gateway.provider(_config_from_args(args))
    for model in await provider.list_models():
        print(model)
    return 0


async def _handle_chat(gateway: Gateway, args: argparse.Namespace) -> int:
    request = ChatRequest(
        messages=[ChatMessage.text(MessageRole.USER, args.prompt)],
        system=args.system,
        max_tokens=args.max_tokens,
        temperature=args.temperature,
    )
    config = _config_from_args(args)

    if args.stream:
        response = await gateway.chat_stream(config, request, _print_text_delta)
        sys.stdout.write("\n")
    else:
        response = await gateway.chat(config, request)
        sys.stdout.write(response.text + "\n")

    _print_tool_calls(response)
    return 0


def _print_text_delta(event: StreamEvent) -> None:
    if isinstance(event, ContentBlockDelta) and isinstance(event.delta, TextDelta):
        sys.stdout.write(event.delta.text)
        sys.stdout.flush()


def _print_tool_calls(response: AIResponse) -> None:
    for call in response.tool_calls:
        sys.stdout.write(f"[tool_use {call.name} {call.id}] {json.dumps(call.plain_input())}\n")


def main(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level or get_settings().log_level)

    gateway = _build_gateway()
    try:
        if args.command == "providers":
            return _handle_providers(gateway)
        if args.command == "models":
            return asyncio.run(_handle_models(gateway, args))
        if args.command == "chat":
            return asyncio.run(_handle_chat(gateway, args))
    except GatewayError as exc:
        sys.stderr.write(f"error: {exc}\n")
        return 1
    parser.error("no command provided")
    return 2


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
