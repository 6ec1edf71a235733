"""Run chat exchanges against the configured database and print the view.

Usage (from repository root):
    python backend/scripts/simulate_exchange.py "Hello"

Usage (from backend directory):
    python scripts/simulate_exchange.py "Hello" "What changed last week?"
    # or
    python -m scripts.simulate_exchange --fast "Hello"
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Make `chatsync` imports work whether the script is run from repo root or backend/.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from chatsync.config import get_settings
from chatsync.schemas.chat import ConversationState
from chatsync.services.chat_session import build_chat_session
from chatsync.services.lifecycle import ExchangeFailedError, ExchangeRejectedError, FixedDelays


def parse_args() -> argparse.Namespace:
    """Parse script CLI arguments."""

    parser = argparse.ArgumentParser(description="Send chat messages and watch their lifecycle.")
    parser.add_argument("messages", nargs="+", help="User messages to send, one exchange each.")
    parser.add_argument(
        "--fast",
        action="store_true",
        help="Skip the acknowledgment and think-time delays.",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=0.1,
        help="Seconds between status snapshots (default: 0.1)",
    )
    parser.add_argument("--verbose", action="store_true", help="Log feed and exchange events.")
    return parser.parse_args()


def _describe(state: ConversationState) -> list[str]:
    return [f"#{m.id} {m.role.value:<9} {m.status.value:<10} {m.content[:60]}" for m in state.messages]


async def run(args: argparse.Namespace) -> int:
    session = build_chat_session(get_settings(), delays=FixedDelays() if args.fast else None)
    await session.start()
    exit_code = 0
    try:
        await session.listener.wait_connected(timeout=10)
        for text in args.messages:
            try:
                task = session.submit(text)
            except ExchangeRejectedError as exc:
                print(f"rejected: {exc}")
                exit_code = 1
                continue

            seen: list[str] = []
            while not task.done():
                lines = _describe(session.state())
                if lines != seen:
                    print("\n".join(lines[-2:]))
                    print("-" * 40)
                    seen = lines
                await asyncio.sleep(args.poll_interval)
            try:
                result = task.result()
            except ExchangeFailedError as exc:
                print(f"exchange failed at {exc.step}: {exc}")
                exit_code = 1
                continue
            print(f"completed user_id={result.user_message.id} assistant_id={result.assistant_message.id}")

        await session.listener.drain()
        state = session.state()
        print()
        print(f"connectivity={state.connectivity.value} processing={state.processing}")
        print("\n".join(_describe(state)))
    finally:
        await session.stop()
    return exit_code


def main() -> None:
    """Send the requested messages and print the final conversation."""

    args = parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    raise SystemExit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
