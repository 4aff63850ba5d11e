"""
CellClaw CLI - Command-line interface for the agent core.

Commands:
    cellclaw chat                    Chat interactively, approving tools on the terminal
    cellclaw providers               List providers and which have API keys
    cellclaw policies                Show tool policies (--set tool=policy to change)
    cellclaw serve                   Run the local HTTP API
"""

import argparse
import asyncio
import dataclasses
import json
import sys
from typing import List, Optional

from .agent import (
    AgentEvent,
    AssistantTextEvent,
    ErrorEvent,
    ProviderFailoverEvent,
    RunStatus,
    TextDeltaEvent,
    ToolCallDeniedEvent,
    ToolCallResultEvent,
    ToolCallStartEvent,
)
from .approval import ApprovalResult
from .config import CellClawConfig, configure_logging
from .exceptions import ConfigurationError
from .policy import ToolApprovalPolicy
from .runtime import AgentRuntime


def parse_approval_answer(answer: str) -> ApprovalResult:
    """Map a terminal answer to an approval result. Anything unclear denies."""
    answer = answer.strip().lower()
    if answer in ("a", "always"):
        return ApprovalResult.ALWAYS_ALLOW
    if answer in ("y", "yes"):
        return ApprovalResult.APPROVED
    return ApprovalResult.DENIED


def load_config(args: argparse.Namespace) -> CellClawConfig:
    config = CellClawConfig.from_yaml(args.config) if args.config else CellClawConfig.from_env()
    overrides = {}
    if getattr(args, "provider", None):
        overrides["provider"] = args.provider
    if getattr(args, "model", None):
        overrides["model"] = args.model
    if getattr(args, "stream", False):
        overrides["stream"] = True
    return dataclasses.replace(config, **overrides) if overrides else config


class _EventPrinter:
    def __init__(self, streaming: bool) -> None:
        self.streaming = streaming

    def __call__(self, event: AgentEvent) -> None:
        if isinstance(event, TextDeltaEvent):
            print(event.text, end="", flush=True)
        elif isinstance(event, AssistantTextEvent):
            if self.streaming:
                print()
            else:
                print(f"cellclaw> {event.text}")
        elif isinstance(event, ToolCallStartEvent):
            print(f"  -> {event.name} {json.dumps(event.params)}")
        elif isinstance(event, ToolCallResultEvent):
            status = "ok" if event.result.success else f"failed: {event.result.error}"
            print(f"  <- {event.name} {status}")
        elif isinstance(event, ToolCallDeniedEvent):
            print(f"  x  {event.name}: {event.reason}")
        elif isinstance(event, ProviderFailoverEvent):
            print(f"  (switched from {event.from_provider} to {event.to_provider})")
        elif isinstance(event, ErrorEvent):
            print(f"Error: {event.message}", file=sys.stderr)


async def _chat(runtime: AgentRuntime, conversation_id: str) -> None:
    loop = asyncio.get_running_loop()
    new_approval = asyncio.Event()

    def on_approvals(pending) -> None:
        if pending:
            loop.call_soon_threadsafe(new_approval.set)

    runtime.approvals.subscribe(on_approvals)
    runtime.loop.subscribe(_EventPrinter(runtime.config.stream))
    restored = await runtime.loop.load_history(conversation_id)
    if restored:
        print(f"(restored {restored} messages)")

    print("Type /quit to exit.")
    while True:
        try:
            text = await asyncio.to_thread(input, "you> ")
        except EOFError:
            break
        if text.strip() in ("/quit", "/exit"):
            break
        if not text.strip():
            continue

        task = runtime.loop.start(text, conversation_id)
        while not task.done():
            waiter = asyncio.ensure_future(new_approval.wait())
            await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
            waiter.cancel()
            if not new_approval.is_set():
                continue
            new_approval.clear()
            for request in runtime.approvals.requests:
                answer = await asyncio.to_thread(
                    input,
                    f"Allow {request.tool_name} {json.dumps(request.parameters)}? [y]es/[N]o/[a]lways ",
                )
                runtime.approvals.respond(request.id, parse_approval_answer(answer))

        result = task.result()
        if result.status == RunStatus.FAILED:
            print(f"Run failed ({result.reason.value}): {result.error}", file=sys.stderr)

    runtime.approvals.unsubscribe(on_approvals)


def cmd_chat(args: argparse.Namespace) -> int:
    """Interactive chat on the terminal."""
    runtime = AgentRuntime(load_config(args))
    print(f"CellClaw chat - provider: {runtime.providers.active_type}")
    try:
        asyncio.run(_chat(runtime, args.conversation))
    except KeyboardInterrupt:
        print()
    return 0


def cmd_providers(args: argparse.Namespace) -> int:
    """List available providers."""
    runtime = AgentRuntime(load_config(args))
    for info in runtime.providers.available_providers():
        marker = "*" if info.type == runtime.providers.active_type else " "
        key = "key set" if info.has_key else "no key"
        print(f"{marker} {info.type:<12} {info.display_name:<20} {info.default_model:<26} {key}")
    return 0


def cmd_policies(args: argparse.Namespace) -> int:
    """Show, and optionally change, tool policies."""
    runtime = AgentRuntime(load_config(args))
    for assignment in args.set or []:
        tool_name, sep, value = assignment.partition("=")
        if not sep:
            print(f"Error: expected tool=policy, got {assignment!r}", file=sys.stderr)
            return 2
        try:
            runtime.policy.set_policy(tool_name.strip(), ToolApprovalPolicy(value.strip().lower()))
        except ValueError:
            print(f"Error: unknown policy {value!r} (auto, ask, deny)", file=sys.stderr)
            return 2

    for tool_name, policy in sorted(runtime.policy.all_policies().items()):
        print(f"{tool_name:<24} {policy.value}")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """Run the HTTP API."""
    from .server import CellClawServer

    config = load_config(args)
    overrides = {}
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port
    if overrides:
        config = dataclasses.replace(config, **overrides)

    print(f"CellClaw API on http://{config.host}:{config.port} (docs at /docs)")
    CellClawServer(config=config).run()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cellclaw",
        description="CellClaw - on-device agent core",
    )
    parser.add_argument("--config", help="Path to a YAML config file")
    parser.add_argument("--provider", help="Provider type (anthropic, openai, gemini, openrouter)")
    parser.add_argument("--model", help="Model name for the active provider")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: from config)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    chat_parser = subparsers.add_parser("chat", help="Chat interactively")
    chat_parser.add_argument(
        "--conversation", default="default", help="Conversation id (default: default)"
    )
    chat_parser.add_argument("--stream", action="store_true", help="Stream responses")
    chat_parser.set_defaults(func=cmd_chat)

    providers_parser = subparsers.add_parser("providers", help="List providers")
    providers_parser.set_defaults(func=cmd_providers)

    policies_parser = subparsers.add_parser("policies", help="Show tool policies")
    policies_parser.add_argument(
        "--set",
        action="append",
        metavar="TOOL=POLICY",
        help="Override a policy for this invocation (repeatable)",
    )
    policies_parser.set_defaults(func=cmd_policies)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=None, help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    serve_parser.set_defaults(func=cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    try:
        config_level = args.log_level or load_config(args).log_level
        configure_logging(config_level)
        return args.func(args)
    except ConfigurationError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
