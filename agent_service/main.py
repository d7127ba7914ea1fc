"""CLI entry point for trying the clinic agent from a terminal.

Each line you type becomes a fresh envelope (the service keeps no
conversation state), runs through the same orchestrator as
``POST /process`` and prints the reply and actions.

Usage:
    uv run python -m agent_service.main --clinic-id demo-clinic
    uv run python -m agent_service.main --clinic-id demo-clinic --debug
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import uuid
from dataclasses import replace
from datetime import UTC, datetime

from agent_service.agent import AgentOrchestrator, OrchestratorSettings, build_orchestrator
from agent_service.api.schemas import Envelope

logger = logging.getLogger(__name__)

CLI_SENDER = "cli-terminal"


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("agent_service").setLevel(logging.DEBUG if debug else logging.INFO)


def build_cli_envelope(clinic_id: str, text: str) -> Envelope:
    """Wrap one typed line in an envelope like the upstream worker would."""
    return Envelope(
        correlation_id=f"cli-{uuid.uuid4().hex[:12]}",
        clinic_id=clinic_id,
        sender=CLI_SENDER,
        message_text=text,
        received_at_iso=datetime.now(UTC).isoformat(),
    )


async def _chat_loop(orchestrator: AgentOrchestrator, clinic_id: str) -> None:
    while True:
        try:
            user_input = (await asyncio.to_thread(input, "You: ")).strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        if not user_input:
            continue
        if user_input.lower() in ("exit", "quit", "q"):
            print("\nGoodbye!")
            break

        response = await orchestrator.process(build_cli_envelope(clinic_id, user_input))
        print(f"\nAgent: {response.final_message}")
        for action in response.actions:
            print(f"  action: {action.model_dump_json(exclude_none=True)}")
        if response.debug:
            print(f"  debug: {json.dumps(response.debug, ensure_ascii=False)}")
        print()

    await orchestrator.outcome_logger.drain()


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="Clinic agent CLI")
    parser.add_argument("--clinic-id", required=True, help="Clinic whose rules to load")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show debug payloads and all log messages",
    )
    args = parser.parse_args()

    _configure_logging(debug=args.debug)

    print("\n" + "=" * 60)
    print("  Clinic Agent - CLI")
    print("=" * 60)
    print(f"  Clinic: {args.clinic_id}. Type 'quit' to exit.")
    print("=" * 60 + "\n")

    settings = OrchestratorSettings.from_config()
    if args.debug:
        settings = replace(settings, debug=True)
    orchestrator = build_orchestrator(settings)
    asyncio.run(_chat_loop(orchestrator, args.clinic_id))


if __name__ == "__main__":
    main()
