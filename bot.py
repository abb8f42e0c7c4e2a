# Copyright (C) 2026 grodz
#
# This file is part of Tether.
#
# Tether is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <https://www.gnu.org/licenses/>.

"""
Tether
========================================================

Voice presence and playback continuity for a Lavalink music bot,
built on discord.py and mafic.
"""

import asyncio
import os
from pathlib import Path

import discord
import mafic
from discord.ext import commands
from dotenv import load_dotenv
from loguru import logger

from systems.session import SessionManager
from utils.config import ConfigManager, validate_configuration
from utils.guild_settings import GuildSettings
from utils.log_setup import setup_logging

BASE_DIR = Path(__file__).parent

EXTENSIONS = (
    "cogs.continuity",
)


def _path_from_env(key: str, default: str) -> Path:
    return Path(os.getenv(key) or str(BASE_DIR / default))


def custom_exception_handler(loop, context):
    """Suppress cosmetic aiohttp shutdown warnings, pass everything else on."""
    message = context.get("message", "")
    if message in ("Unclosed client session", "Unclosed connector"):
        return
    loop.default_exception_handler(context)


class TetherBot(commands.Bot):
    """Bot with config, guild settings, sessions and a Lavalink node pool."""

    def __init__(self) -> None:
        intents = discord.Intents.default()
        intents.voice_states = True
        intents.members = True
        super().__init__(
            command_prefix=commands.when_mentioned,
            intents=intents,
            help_command=None,
        )
        self.config_manager = ConfigManager(_path_from_env("CONFIG_PATH", "config"))
        self.guild_settings = GuildSettings(_path_from_env("DATA_PATH", "data"))
        self.sessions = SessionManager(self)
        self.pool = mafic.NodePool(self)

    async def setup_hook(self) -> None:
        asyncio.get_running_loop().set_exception_handler(custom_exception_handler)

        await self.config_manager.load()
        setup_logging(self.config_manager.section("logging").get("level", "verbose"))

        self.guild_settings.default_volume = self.config_manager.get("default_volume", 50)
        await self.guild_settings.load()

        await self.pool.create_node(
            host=os.getenv("LAVALINK_HOST", "127.0.0.1"),
            port=int(os.getenv("LAVALINK_PORT", "2333")),
            label="MAIN",
            password=os.getenv("LAVALINK_PASSWORD", "youshallnotpass"),
        )

        for extension in EXTENSIONS:
            await self.load_extension(extension)
            logger.debug(f"loaded {extension}")

    async def on_ready(self) -> None:
        logger.log("NOTICE", f"logged in as {self.user} ({len(self.guilds)} guilds)")

    async def close(self) -> None:
        logger.info("shutting down")
        for extension in EXTENSIONS:
            try:
                await self.unload_extension(extension)
            except commands.ExtensionError:
                pass  # Never loaded (setup_hook failed early)
        await self.guild_settings.save()
        await super().close()


def main() -> None:
    load_dotenv()
    setup_logging(os.getenv("LOG_LEVEL", "verbose"))
    asyncio.run(validate_configuration())

    bot = TetherBot()
    bot.run(os.environ["DISCORD_TOKEN"], log_handler=None)


if __name__ == "__main__":
    main()
