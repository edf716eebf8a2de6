"""
Command-line interface for flowengine.

Usage:
    flowengine run flows/chat.json --message "Hello"
    flowengine run flows/chat.json --message "Hi" --provider anthropic --model claude-sonnet-4-5
    flowengine validate flows/chat.json
    flowengine list-nodes
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path


def main():
    parser = argparse.ArgumentParser(
        prog="flowengine",
        description="flowengine - Run agentic flow graphs",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override the configured log level (DEBUG, INFO, ...)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    register_commands(subparsers)

    args = parser.parse_args()

    if hasattr(args, "func"):
        sys.exit(args.func(args))


def register_commands(subparsers: argparse._SubParsersAction) -> None:
    run_parser = subparsers.add_parser("run", help="Execute a flow")
    run_parser.add_argument("flow", type=str, help="Path to the flow JSON file")
    run_parser.add_argument(
        "--message",
        "-m",
        type=str,
        default=None,
        help="Answer for the first user input request",
    )
    run_parser.add_argument("--provider", type=str, default=None, help="Provider for the main context")
    run_parser.add_argument("--model", type=str, default=None, help="Model for the main context")
    run_parser.add_argument(
        "--approve",
        action="store_true",
        help="Automatically approve every paused gate",
    )
    run_parser.add_argument(
        "--bridge-portals",
        action="store_true",
        help="Compile portal pairs into direct edges instead of running them",
    )
    run_parser.add_argument("--json", action="store_true", help="Print the result as JSON")
    run_parser.set_defaults(func=cmd_run)

    validate_parser = subparsers.add_parser("validate", help="Validate a flow definition")
    validate_parser.add_argument("flow", type=str, help="Path to the flow JSON file")
    validate_parser.set_defaults(func=cmd_validate)

    list_parser = subparsers.add_parser("list-nodes", help="List the built-in node kinds")
    list_parser.set_defaults(func=cmd_list_nodes)


def _load_flow(path: str):
    from flowengine.graph.errors import FlowValidationError
    from flowengine.graph.flow import FlowDefinition
    from flowengine.nodes import default_registry

    registry = default_registry()
    try:
        return FlowDefinition.from_file(path, registry), registry
    except FlowValidationError as e:
        print(f"Invalid flow '{path}':", file=sys.stderr)
        for error in e.errors:
            print(f"  - {error}", file=sys.stderr)
    except (OSError, json.JSONDecodeError, ValueError) as e:
        print(f"Could not load flow '{path}': {e}", file=sys.stderr)
    return None, registry


def cmd_run(args: argparse.Namespace) -> int:
    from flowengine.config import EngineConfig
    from flowengine.observability import configure_logging

    config = EngineConfig()
    configure_logging(level=args.log_level or config.log_level, format=config.log_format)

    if not Path(args.flow).exists():
        print(f"Flow not found: {args.flow}", file=sys.stderr)
        return 1
    flow, registry = _load_flow(args.flow)
    if flow is None:
        return 1

    result = asyncio.run(_run_flow(flow, registry, config, args))

    if args.json:
        print(
            json.dumps(
                {
                    "ok": result.ok,
                    "status": result.status.value,
                    "error": result.error,
                    "failed_node_id": result.failed_node_id,
                    "cancelled": result.cancelled,
                    "duration_ms": result.duration_ms,
                    "main_context": result.main_context.model_dump(by_alias=True, mode="json")
                    if result.main_context
                    else None,
                },
                indent=2,
            )
        )
    else:
        print()
        print("=" * 60)
        status = "✓ OK" if result.ok else "✗ FAILED"
        print(f"{status}  ({result.status.value}, {result.duration_ms} ms)")
        if result.error:
            print(f"Error: {result.error}")
        print("=" * 60)
    return 0 if result.ok else 1


async def _run_flow(flow, registry, config, args):
    from flowengine.graph.context import FlowContext
    from flowengine.graph.scheduler import FlowScheduler
    from flowengine.llm.litellm import LiteLLMAdapter
    from flowengine.runtime.event_bus import EventBus, FlowEvent, FlowEventType

    bus = EventBus()
    scheduler = FlowScheduler(
        flow,
        registry,
        FlowContext(provider=args.provider or config.provider, model=args.model or config.model),
        provider=LiteLLMAdapter(api_key=config.api_key),
        event_bus=bus,
        config=config,
        bridge_portals=args.bridge_portals,
    )
    pending_message = [args.message]
    answers: set[asyncio.Task] = set()

    async def on_chunk(event: FlowEvent) -> None:
        if not args.json:
            print(event.data.get("text", ""), end="", flush=True)

    async def answer(event: FlowEvent) -> None:
        node_id = event.node_id
        if scheduler.is_waiting_for_user_input(node_id):
            text = pending_message.pop() if pending_message and pending_message[-1] else None
            if text is None:
                text = await asyncio.to_thread(input, "\n> ")
            scheduler.resolve_user_input(node_id, text)
            return
        if args.approve:
            scheduler.resume(node_id, True)
            return
        reason = event.data.get("reason") or "approval required"
        reply = await asyncio.to_thread(input, f"\n⏸ {node_id}: {reason}. Continue? [y/N] ")
        scheduler.resume(node_id, reply.strip().lower() in ("y", "yes"))

    async def on_waiting(event: FlowEvent) -> None:
        task = asyncio.create_task(answer(event))
        answers.add(task)
        task.add_done_callback(answers.discard)

    bus.subscribe([FlowEventType.CHUNK], on_chunk)
    bus.subscribe([FlowEventType.WAITING_FOR_INPUT], on_waiting)

    try:
        return await scheduler.execute()
    except KeyboardInterrupt:
        scheduler.cancel()
        raise


def cmd_validate(args: argparse.Namespace) -> int:
    flow, _ = _load_flow(args.flow)
    if flow is None:
        return 1
    wiring = flow.build_wiring()
    print(f"✓ Flow '{flow.id}' is valid ({len(flow.nodes)} nodes, {len(wiring.edges)} edges)")
    print(f"  Entry node: {flow.get_entry_node().id}")
    return 0


def cmd_list_nodes(args: argparse.Namespace) -> int:
    from flowengine.nodes import default_registry

    registry = default_registry()
    for kind in registry.kinds():
        metadata = registry.metadata_for(kind)
        flags = [metadata.execution_policy.value]
        if metadata.pull_only:
            flags.append("pull-only")
        if metadata.handles_errors:
            flags.append("handles-errors")
        print(f"{kind:<22} [{', '.join(flags)}] {metadata.description}")
    return 0


if __name__ == "__main__":
    main()
