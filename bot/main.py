from __future__ import annotations

import asyncio
from pathlib import Path

from core.bot import CaseBot
from core.config import AppConfig, load_config
from core.logging import configure_logging


async def _run_bot(config: AppConfig) -> None:
    bot = CaseBot(config=config)
    async with bot:
        await bot.start(config.discord.token)


def main() -> None:
    root = Path(__file__).resolve().parent
    config = load_config(root / "config" / "config.yaml")
    configure_logging(config.logging)
    asyncio.run(_run_bot(config))


if __name__ == "__main__":
    main()
