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

"""Alone-in-channel detection: auto-pause, auto-resume, timed teardown."""

import asyncio
from typing import Awaitable, Callable

from loguru import logger

from systems.directory import GuildDirectory, VoiceSnapshot
from systems.registry import ContinuityRegistry
from systems.session import PAUSED_DUE_TO_ALONE, PlaybackSession, SessionManager
from utils.config import ConfigManager

# Teardown reasons, matched by value; ALONE_TIMEOUT keeps its text whatever
# alone_grace_period is set to
SESSION_ENDED = "Bot disconnected from voice channel"
ALONE_TIMEOUT = "Alone in voice channel for 10 seconds"

TeardownCallback = Callable[[PlaybackSession, str], Awaitable[None]]


class PresenceMonitor:
    """Watches who is in the bot's voice channel.

    When the last listener leaves, playback is paused right away and a
    grace timer starts. A listener coming back cancels the timer and
    resumes, but only if the pause was ours. If the timer runs out and the
    channel is still empty, the session is handed to request_teardown
    (the continuity manager decides between stop and disconnect).

    The bot itself leaving voice always ends the session; being moved
    re-evaluates the destination channel.
    """

    def __init__(
        self,
        sessions: SessionManager,
        directory: GuildDirectory,
        registry: ContinuityRegistry,
        config_manager: ConfigManager,
        request_teardown: TeardownCallback,
    ) -> None:
        self.sessions = sessions
        self.directory = directory
        self.registry = registry
        self.config_manager = config_manager
        self.request_teardown = request_teardown

    def _grace_period(self) -> float:
        return float(self.config_manager.section("presence").get("alone_grace_period", 10))

    async def on_presence_changed(
        self,
        guild_id: int,
        member_id: int,
        before: VoiceSnapshot,
        after: VoiceSnapshot,
    ) -> None:
        session = self.sessions.get(guild_id)
        if session is None:
            return

        if self.directory.is_self(member_id):
            await self._on_bot_changed(guild_id, session, before, after)
            return

        # Ignore other bots
        if self.directory.is_bot(guild_id, member_id):
            return

        bot_channel = self.directory.bot_channel_id(guild_id)
        if bot_channel is None:
            return

        left = before.channel_id == bot_channel and after.channel_id != bot_channel
        joined = after.channel_id == bot_channel and before.channel_id != bot_channel
        # Deafening only changes the count when deafened members are skipped
        deafen_toggled = (
            after.channel_id == bot_channel
            and before.deafened != after.deafened
            and self.config_manager.section("presence").get("ignore_deafened", False)
        )

        if left or joined or deafen_toggled:
            await self.check_alone(guild_id, session, bot_channel)

    async def _on_bot_changed(
        self,
        guild_id: int,
        session: PlaybackSession,
        before: VoiceSnapshot,
        after: VoiceSnapshot,
    ) -> None:
        if before.channel_id is not None and after.channel_id is None:
            logger.info("disconnected from voice")
            self.registry.cancel_alone_timer(guild_id)
            await self.request_teardown(session, SESSION_ENDED)
        elif before.channel_id is not None and after.channel_id not in (None, before.channel_id):
            logger.info(f"moved to channel {after.channel_id}")
            try:
                await session.change_voice_channel(after.channel_id)
            except Exception as e:
                logger.warning(f"failed to follow move to {after.channel_id}: {e}")
            await self.check_alone(guild_id, session, after.channel_id)

    async def check_alone(self, guild_id: int, session: PlaybackSession, channel_id: int) -> None:
        """Pause and arm the timer when empty, cancel and resume otherwise."""
        if self.directory.human_count(guild_id, channel_id) == 0:
            # Timer goes first, before any await
            self.registry.start_alone_timer(guild_id, self._alone_countdown(guild_id))
            logger.debug(f"starting {self._grace_period():g}s alone timer")

            if session.is_playing:
                try:
                    await session.pause()
                except Exception:
                    logger.opt(exception=True).warning("auto-pause failed")
                    return
                session.set_data(PAUSED_DUE_TO_ALONE, True)
                logger.info("auto-paused, channel empty")
            return

        self.registry.cancel_alone_timer(guild_id)

        if session.is_paused and session.get_data(PAUSED_DUE_TO_ALONE):
            try:
                await session.resume()
            except Exception:
                logger.opt(exception=True).warning("auto-resume failed")
                return
            session.set_data(PAUSED_DUE_TO_ALONE, False)
            logger.info("auto-resumed, listener joined")

    async def _alone_countdown(self, guild_id: int) -> None:
        """Background task that tears the session down after the grace period."""
        try:
            grace = self._grace_period()
            await asyncio.sleep(grace)

            # Drop our own entry so teardown doesn't cancel us mid-way
            self.registry.release_alone_timer(guild_id, asyncio.current_task())

            session = self.sessions.get(guild_id)
            if session is None:
                return
            channel_id = self.directory.bot_channel_id(guild_id)
            if channel_id is None:
                return
            if self.directory.human_count(guild_id, channel_id) > 0:
                logger.debug("alone timer fired but a listener is back")
                return

            logger.info(f"channel empty for {grace:g}s")
            await self.request_teardown(session, ALONE_TIMEOUT)

        except asyncio.CancelledError:
            pass  # Expected when a listener returns
        except Exception:
            logger.opt(exception=True).error("alone timeout handling failed")
