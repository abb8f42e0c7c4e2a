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

"""Voice presence and playback continuity listeners."""

import discord
import mafic
from discord.ext import commands
from loguru import logger

from systems.continuity import ContinuityManager
from systems.directory import GuildDirectory, VoiceSnapshot
from systems.mute import MuteStateTracker
from systems.presence import PresenceMonitor
from systems.registry import ContinuityRegistry
from systems.session import PlaybackSession, SessionManager
from utils.notify import Notifier


class Continuity(commands.Cog):
    """Keeps playback sessions in line with what actually happens in voice."""

    def __init__(self, bot: commands.Bot) -> None:
        self.bot = bot
        config_manager = bot.config_manager

        self.registry = ContinuityRegistry()
        self.sessions: SessionManager = bot.sessions
        self.directory = GuildDirectory(bot, config_manager)
        self.notifier = Notifier(bot, config_manager)
        self.continuity = ContinuityManager(
            self.sessions,
            self.directory,
            self.registry,
            bot.guild_settings,
            self.notifier,
            config_manager,
        )
        self.presence = PresenceMonitor(
            self.sessions,
            self.directory,
            self.registry,
            config_manager,
            self.continuity.on_teardown_requested,
        )
        self.mute = MuteStateTracker(self.sessions, self.registry, self.notifier)

    async def cog_unload(self) -> None:
        """Cancel every pending timer and reconnection."""
        await self.registry.shutdown()

    @commands.Cog.listener()
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState
    ):
        """Route voice changes to the presence monitor and mute tracker."""
        guild_id = member.guild.id
        old = VoiceSnapshot.from_state(before)
        new = VoiceSnapshot.from_state(after)

        try:
            await self.presence.on_presence_changed(guild_id, member.id, old, new)
        except Exception:
            logger.opt(exception=True).error("presence handling failed")

        # Mute only matters while the bot is still in a channel
        if member.id == self.bot.user.id and new.channel_id is not None:
            try:
                await self.mute.on_presence_changed(guild_id, old, new)
            except Exception:
                logger.opt(exception=True).error("mute handling failed")

    @commands.Cog.listener()
    async def on_session_destroyed(self, session: PlaybackSession, reason: str) -> None:
        """Schedule a rejoin when a stay-connected session goes away."""
        try:
            self.continuity.on_session_destroyed(session.guild_id, reason)
        except Exception:
            logger.opt(exception=True).error("reconnection scheduling failed")

    @commands.Cog.listener()
    async def on_guild_remove(self, guild: discord.Guild) -> None:
        """Bot removed from guild - forget its bookkeeping."""
        logger.info(f"removed from guild {guild.id}")
        self.registry.clear_guild(guild.id)

    @commands.Cog.listener()
    async def on_websocket_closed(self, event: mafic.WebSocketClosedEvent) -> None:
        """Diagnostic: log when voice WebSocket closes."""
        logger.debug(
            f"voice websocket closed: code={event.code}, "
            f"reason={event.reason!r}, by_discord={event.by_discord}"
        )


async def setup(bot: commands.Bot) -> None:
    """Load the Continuity cog."""
    await bot.add_cog(Continuity(bot))
