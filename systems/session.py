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

"""Playback sessions on top of mafic players."""

from typing import Any

import discord
import mafic
from loguru import logger

# Session bag keys
PAUSED_DUE_TO_ALONE = "paused_due_to_alone"
PAUSED_DUE_TO_MUTE = "paused_due_to_mute"
PERSISTENT_MODE = "persistent_mode"
PERSISTENT_VOICE_CHANNEL = "persistent_voice_channel"
PERSISTENT_TEXT_CHANNEL = "persistent_text_channel"
RECONNECTED_AT = "reconnected_at"
RECONNECTION_COUNT = "reconnection_count"


class PlaybackSession:
    """One guild's playback, wrapping a mafic.Player.

    The player is None until connect() succeeds (reconnection builds the
    session first). Everything the controller needs to remember about a
    session lives in its data bag, which survives for as long as the
    SessionManager keeps the wrapper around.

    Events dispatched on the bot:
    - session_stopped(session): playback cleared, queue owners should clear too
    - session_destroyed(session, reason): voice connection released
    """

    def __init__(
        self,
        manager: "SessionManager",
        guild_id: int,
        voice_channel_id: int | None,
        text_channel_id: int | None = None,
        volume: int = 50,
        player: mafic.Player | None = None,
    ) -> None:
        self.manager = manager
        self.guild_id = guild_id
        self._voice_channel_id = voice_channel_id
        self._text_channel_id = text_channel_id
        self.volume = volume
        self.player = player
        self.data: dict[str, Any] = {}
        self.destroyed = False

    def __repr__(self) -> str:
        return f"<PlaybackSession guild={self.guild_id} voice={self.voice_channel_id} connected={self.is_connected}>"

    @property
    def voice_channel_id(self) -> int | None:
        if self.player is not None and self.player.channel is not None:
            return self.player.channel.id
        return self._voice_channel_id

    @property
    def text_channel_id(self) -> int | None:
        """Channel for notifications, the voice channel's chat when unset."""
        return self._text_channel_id or self.voice_channel_id

    @text_channel_id.setter
    def text_channel_id(self, channel_id: int | None) -> None:
        self._text_channel_id = channel_id

    @property
    def is_connected(self) -> bool:
        return self.player is not None and not self.destroyed and bool(self.player.connected)

    @property
    def is_playing(self) -> bool:
        return self.player is not None and self.player.current is not None and not self.player.paused

    @property
    def is_paused(self) -> bool:
        return self.player is not None and bool(self.player.paused)

    def get_data(self, key: str, default=None) -> Any:
        return self.data.get(key, default)

    def set_data(self, key: str, value) -> None:
        self.data[key] = value

    async def pause(self) -> None:
        if self.player is None:
            return
        await self.player.pause()

    async def resume(self) -> None:
        if self.player is None:
            return
        await self.player.resume()

    async def stop(self) -> None:
        """Stop the current track but keep the voice connection."""
        if self.player is not None and self.player.current is not None:
            await self.player.stop()
        self.data.pop(PAUSED_DUE_TO_ALONE, None)
        self.data.pop(PAUSED_DUE_TO_MUTE, None)
        self.manager.bot.dispatch("session_stopped", self)

    async def connect(self) -> None:
        """Join the session's voice channel and apply its volume.

        Raises whatever discord.py/mafic raise on failure, callers decide
        whether that counts as a failed reconnection.
        """
        channel = self.manager.bot.get_channel(self._voice_channel_id)
        if not isinstance(channel, discord.VoiceChannel):
            raise RuntimeError(f"voice channel {self._voice_channel_id} not found")

        player = await channel.connect(cls=mafic.Player, self_deaf=True)
        self.player = player
        self.destroyed = False
        try:
            await player.set_volume(self.volume)
        except Exception as e:
            logger.warning(f"failed to set volume {self.volume}: {e}")
        self.manager._remember(self)
        logger.debug(f"connected to #{channel.name}")

    async def change_voice_channel(self, channel_id: int) -> None:
        """Follow the bot into another channel (moved by a moderator)."""
        if self.player is not None and self.player.channel is not None and self.player.channel.id == channel_id:
            self._voice_channel_id = channel_id
            return
        guild = self.manager.bot.get_guild(self.guild_id)
        channel = guild.get_channel(channel_id) if guild else None
        if channel is None:
            raise RuntimeError(f"voice channel {channel_id} not found")
        await guild.change_voice_state(channel=channel, self_deaf=True)
        self._voice_channel_id = channel_id

    async def destroy(self, reason: str, silent: bool = False) -> None:
        """Release the voice connection and forget the session.

        Args:
            reason: Why the session ended, passed on with session_destroyed
            silent: Log at debug instead of info (the caller already said why)
        """
        if self.destroyed:
            return
        self.destroyed = True

        if self.player is not None:
            try:
                await self.player.disconnect(force=True)
            except Exception as e:
                logger.debug(f"disconnect during destroy failed: {e}")

        self.manager._forget(self)
        if silent:
            logger.debug(f"session destroyed: {reason}")
        else:
            logger.info(f"session destroyed: {reason}")
        self.manager.bot.dispatch("session_destroyed", self, reason)


class SessionManager:
    """Finds, creates and remembers the playback session of each guild."""

    def __init__(self, bot) -> None:
        self.bot = bot
        self.sessions: dict[int, PlaybackSession] = {}

    def get(self, guild_id: int) -> PlaybackSession | None:
        """Session for a guild, including one whose connection just dropped.

        A guild's voice_client is the source of truth. When it's gone the
        last known wrapper is returned so its bag is still readable.
        """
        guild = self.bot.get_guild(guild_id)
        player = guild.voice_client if guild else None
        cached = self.sessions.get(guild_id)

        if isinstance(player, mafic.Player):
            if cached is not None and cached.player is player and not cached.destroyed:
                return cached
            session = PlaybackSession(
                self,
                guild_id,
                voice_channel_id=player.channel.id if player.channel else None,
                text_channel_id=cached.text_channel_id if cached else None,
                player=player,
            )
            self.sessions[guild_id] = session
            return session

        if cached is not None and not cached.destroyed:
            return cached
        return None

    def live(self, guild_id: int) -> PlaybackSession | None:
        """Session for a guild only if it's voice-connected."""
        session = self.get(guild_id)
        if session is not None and session.is_connected:
            return session
        return None

    def create(
        self,
        guild_id: int,
        voice_channel_id: int,
        text_channel_id: int | None,
        volume: int,
    ) -> PlaybackSession:
        """Build an unconnected session; connect() registers it."""
        return PlaybackSession(self, guild_id, voice_channel_id, text_channel_id, volume=volume)

    def bind_text_channel(self, guild_id: int, channel_id: int) -> None:
        """Remember where a guild's commands come from for notifications."""
        if session := self.get(guild_id):
            session.text_channel_id = channel_id

    def _remember(self, session: PlaybackSession) -> None:
        self.sessions[session.guild_id] = session

    def _forget(self, session: PlaybackSession) -> None:
        if self.sessions.get(session.guild_id) is session:
            del self.sessions[session.guild_id]
