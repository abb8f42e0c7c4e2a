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

"""Best-effort channel notifications."""

import discord
from loguru import logger

from utils.config import ConfigManager


class Notifier:
    """Posts messages.yaml notifications to a guild channel.

    Delivery is best-effort: a missing channel, a disabled message or any
    send failure is logged and swallowed. Nothing here ever raises to the
    caller, so voice handling keeps going when a channel is gone.
    """

    def __init__(self, bot, config_manager: ConfigManager) -> None:
        self.bot = bot
        self.config_manager = config_manager

    async def notify(self, guild_id: int, channel_id: int | None, key: str, **fields) -> bool:
        """Send message `key` to `channel_id`. Returns True if it was posted."""
        if not self.config_manager.is_enabled(key):
            return False
        if channel_id is None:
            logger.debug(f"no channel for {key} in guild {guild_id}")
            return False

        channel = self.bot.get_channel(channel_id)
        if channel is None or not hasattr(channel, "send"):
            logger.debug(f"channel {channel_id} unavailable for {key}")
            return False

        text = self.config_manager.msg(key, **fields)
        try:
            # Suppress all mentions, channel names and reasons end up in the text
            await channel.send(text, allowed_mentions=discord.AllowedMentions.none())
        except (discord.NotFound, discord.Forbidden, discord.HTTPException) as e:
            logger.debug(f"could not send {key}: {e}")
            return False
        except Exception:
            logger.opt(exception=True).warning(f"failed to send {key}")
            return False
        return True
