#!/usr/bin/env python3
"""
OpsChat Interactive CLI

Chat with the DevOps assistant from a terminal. Replies stream as they
are generated; Ctrl+C while a reply is streaming cancels that reply.
"""

import argparse
import dataclasses
import json
import logging
import signal
import sys
import threading
from typing import Optional

from .config import config
from .exceptions import BackendError
from .llm_call import OllamaClient
from .models import Role
from .orchestration import ChatOrchestrator, ChatRun, RunOutcome
from .suggestions import suggest_follow_ups
from .telemetry import MetricsService

_shutdown_requested = threading.Event()
_active_run: Optional[ChatRun] = None

logger = logging.getLogger(__name__)


def _signal_handler(signum: int, frame) -> None:
    """Cancel the streaming reply, or request shutdown when idle."""
    run = _active_run
    if run is not None and not run.finished:
        if run.cancel():
            print("\n\n[Cancelling reply...]", flush=True)
        return

    if _shutdown_requested.is_set():
        logger.debug("Force shutdown requested")
        sys.exit(1)
    logger.debug("Shutdown requested")
    _shutdown_requested.set()
    print("\n\nShutting down... (press Enter, or Ctrl+C again to force)")


def setup_logging(verbose: bool = False) -> None:
    """Configure logging based on verbosity level."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def print_banner() -> None:
    banner = """
╔════════════════════════════════════════════════════════════════╗
║                        OpsChat Interactive                      ║
║                                                                 ║
║  DevOps assistant with Jenkins, Jira, SonarQube and more        ║
╚════════════════════════════════════════════════════════════════╝

Available commands:
  /help     - Show this help message
  /tools    - List the tools offered to the model
  /suggest  - Suggest follow-up questions
  /metrics  - Show request and tool metrics for this session
  /clear    - Clear conversation history
  /quit     - Exit the CLI

Press Ctrl+C while a reply is streaming to cancel it.
"""
    print(banner)


def print_tools(orchestrator: ChatOrchestrator) -> None:
    if not orchestrator.chat_config.tools_enabled:
        print("\nTools are disabled. Start with --tools to enable them.\n")
        return

    tools = orchestrator.available_tools()
    if not tools:
        print("\nNo tool servers answered.\n")
        return

    print("\nAvailable Tools:")
    print("─" * 64)
    for i, tool in enumerate(tools, start=1):
        description = tool.description.splitlines()[0] if tool.description else ""
        print(f"{i:>2}. {tool.name.ljust(28)} - {description[:60]}")
    print()


def print_metrics(metrics: MetricsService) -> None:
    summary = metrics.summary()
    print("\n" + "═" * 50)
    print(f"SESSION METRICS ({metrics.session_id})")
    print("═" * 50)
    print(f"  LLM requests:   {summary['llm_requests']} ({summary['llm_failures']} failed)")
    if summary["avg_duration_ms"] is not None:
        print(f"  Avg duration:   {summary['avg_duration_ms'] / 1000:.2f}s")
    print(f"  Tool calls:     {summary['tool_calls']} ({summary['tool_failures']} failed)")
    print()


def final_answer(run: ChatRun) -> str:
    """Content of the last assistant message that carried text."""
    for message in reversed(run.messages):
        if message.role is Role.ASSISTANT and message.content:
            return message.content
    return ""


class InteractiveCLI:
    """Interactive REPL over a ChatOrchestrator."""

    def __init__(self, orchestrator: ChatOrchestrator, metrics: MetricsService):
        self.orchestrator = orchestrator
        self.metrics = metrics
        self.history: list[dict] = []

    def clear_history(self) -> None:
        self.history = []
        print("\nConversation history cleared.\n")

    def show_suggestions(self) -> None:
        if not self.history:
            print("\nAsk something first.\n")
            return
        suggestions = suggest_follow_ups(self.orchestrator.client, self.history)
        if not suggestions:
            print("\nNo suggestions available.\n")
            return
        print("\nYou could ask:")
        for suggestion in suggestions:
            print(f"  - {suggestion}")
        print()

    def process_query(self, query: str) -> None:
        global _active_run

        run = self.orchestrator.start(self.history + [{"role": "user", "content": query}])
        _active_run = run
        print()
        try:
            for delta in run:
                print(delta, end="", flush=True)
        except BackendError as e:
            print(f"\nError: {e}\n")
            return
        finally:
            _active_run = None

        print("\n")
        if run.outcome is RunOutcome.CANCELLED:
            print("[Reply cancelled]\n")
            return
        if run.outcome is RunOutcome.TRUNCATED:
            print("[Stopped after the maximum number of tool rounds]\n")

        self.history.append({"role": "user", "content": query})
        self.history.append({"role": "assistant", "content": final_answer(run)})

    def run(self) -> None:
        """Run the interactive CLI loop."""
        print_banner()

        while not _shutdown_requested.is_set():
            try:
                user_input = input(">>> ").strip()
            except EOFError:
                print("\nGoodbye!\n")
                break

            if _shutdown_requested.is_set():
                break
            if not user_input:
                continue

            if not user_input.startswith("/"):
                self.process_query(user_input)
                continue

            command = user_input.lower()
            if command in ("/quit", "/exit", "/q"):
                print("\nGoodbye!\n")
                break
            elif command in ("/help", "/h", "/?"):
                print_banner()
            elif command == "/tools":
                print_tools(self.orchestrator)
            elif command == "/suggest":
                self.show_suggestions()
            elif command == "/metrics":
                print_metrics(self.metrics)
            elif command == "/clear":
                self.clear_history()
            else:
                print(f"\nUnknown command: {user_input}")
                print("Type /help for available commands.\n")


def run_single_query(orchestrator: ChatOrchestrator, query: str, as_json: bool) -> int:
    """Answer one query; returns the process exit code."""
    global _active_run

    run = orchestrator.start([{"role": "user", "content": query}])
    _active_run = run
    try:
        if as_json:
            output = run.collect()
            print(
                json.dumps(
                    {
                        "query": query,
                        "run_id": run.execution_id,
                        "output": output,
                        "answer": final_answer(run),
                        "outcome": run.outcome.value if run.outcome else None,
                        "tool_calls": run.get_trace(),
                    },
                    indent=2,
                )
            )
        else:
            for delta in run:
                print(delta, end="", flush=True)
            print()
    except BackendError as e:
        if as_json:
            print(json.dumps({"query": query, "error": str(e)}, indent=2))
        else:
            print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        _active_run = None

    return 130 if run.outcome is RunOutcome.CANCELLED else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="OpsChat Interactive CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                                  # Start interactive mode
  %(prog)s --tools                          # Let the model call tool servers
  %(prog)s -q "Why did the last build fail?" --json
""",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument("-q", "--query", type=str, help="Run a single query and exit")
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output single-query results as JSON (for scripting)",
    )
    parser.add_argument(
        "--endpoint",
        type=str,
        default=None,
        help=f"Ollama endpoint (default: {config.ollama.endpoint})",
    )
    parser.add_argument(
        "--model",
        type=str,
        default=None,
        help=f"Ollama model (default: {config.ollama.model})",
    )
    parser.add_argument(
        "--tools",
        action="store_true",
        help="Offer tool server tools to the model",
    )
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    signal.signal(signal.SIGINT, _signal_handler)

    chat_config = config.chat
    if args.tools:
        chat_config = dataclasses.replace(chat_config, tools_enabled=True)

    client = OllamaClient(endpoint=args.endpoint, model=args.model)
    if not client.validate_endpoint():
        print(
            f"Warning: Ollama at {client.endpoint} is not answering; requests will fail.",
            file=sys.stderr,
        )

    metrics = MetricsService()
    orchestrator = ChatOrchestrator(
        client=client,
        chat_config=chat_config,
        telemetry=metrics,
    )

    try:
        if args.query:
            return run_single_query(orchestrator, args.query, args.json)
        InteractiveCLI(orchestrator, metrics).run()
        return 0
    finally:
        metrics.shutdown()


if __name__ == "__main__":
    sys.exit(main())
