"""
Task Assistant — Entry Point.

`python main.py` starts the Telegram bot (sweeps run in its job queue).
`python main.py reminders` / `python main.py digest` run one sweep and exit,
for deployments that trigger sweeps from an external cron instead.
"""

import argparse
import asyncio
import logging
import sys

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

from src.bot.telegram_bot import main, run_sweep_once


def _cli() -> int:
    parser = argparse.ArgumentParser(description="Telegram task assistant")
    parser.add_argument(
        "sweep", nargs="?", choices=("reminders", "digest"),
        help="run one sweep and exit instead of starting the bot",
    )
    args = parser.parse_args()
    if args.sweep is None:
        main()
        return 0
    result = asyncio.run(run_sweep_once(args.sweep))
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(_cli())
