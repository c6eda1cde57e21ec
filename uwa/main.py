"""Command-line entry point: run one goal against the environment host."""
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import logging
import os
import sys
from typing import Sequence

# Load environment variables before the config module reads them
from dotenv import load_dotenv
load_dotenv()

from uwa.src.agent.oracle import OpenAIPlanningClient
from uwa.src.agent.orchestrator import SessionOrchestrator
from uwa.src.capabilities.tiers import TIERS, CapabilityTierGate
from uwa.src.environment.client import HostEnvironment
from uwa.src.memory.store import WorkflowMemory
from uwa.src.permissions.ledger import PermissionLedger
from uwa.src.store.kv_store import JsonFileStore
from uwa.src.utils.config import CONFIG
from uwa.terminal import TerminalConsole, print_summary


def _create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="uwa",
        description="Drive the browser toward a goal with a supervised agent loop.",
    )
    parser.add_argument("goal", nargs="?", help="What the agent should accomplish.")
    parser.add_argument("--trust", action="store_true", help="Trust mode for this run (skip permission prompts).")
    parser.add_argument("--auto-fill", action="store_true", help="Fill TYPE actions from the stored profile for this run.")
    parser.add_argument("--max-rounds", type=int, help="Round budget for the session.")
    parser.add_argument("--tier", type=int, choices=sorted(TIERS), help="Set the active capability tier.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging.")
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = _create_parser().parse_args(list(argv) if argv is not None else None)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else os.getenv("UWA_LOG_LEVEL", "WARNING"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    goal = args.goal or input("Goal: ").strip()
    if not goal:
        print("A goal is required.", file=sys.stderr)
        return 2

    agent_config = CONFIG.agent
    if args.max_rounds:
        agent_config = dataclasses.replace(agent_config, max_rounds=args.max_rounds)

    store = JsonFileStore(agent_config.state_dir)
    ledger = PermissionLedger(store, retention_seconds=agent_config.grant_retention_seconds)
    if args.trust:
        ledger.set_trust_mode(True, persist=False)
    gate = CapabilityTierGate(store, default_tier=agent_config.default_tier)
    if args.tier:
        gate.set_tier(args.tier)

    try:
        client = OpenAIPlanningClient(CONFIG.llm)
    except ValueError as exc:
        print(exc, file=sys.stderr)
        return 2

    environment = HostEnvironment(CONFIG.host)
    orchestrator = SessionOrchestrator(
        client=client,
        reader=environment,
        runner=environment,
        ledger=ledger,
        gate=gate,
        store=store,
        memory=WorkflowMemory(store, enabled=agent_config.memory_enabled),
        config=agent_config,
        auto_fill=True if args.auto_fill else None,
    )

    async def _run():
        console = TerminalConsole(orchestrator)
        return await console.run(goal)

    try:
        outcome = asyncio.run(_run())
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        return 130
    print_summary(outcome)
    return 0 if outcome.error is None else 1


if __name__ == "__main__":
    sys.exit(main())
