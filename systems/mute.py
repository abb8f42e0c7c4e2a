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

"""Pause while the bot is muted, resume when it isn't."""

from loguru import logger

from systems.directory import VoiceSnapshot
from systems.registry import ContinuityRegistry, MuteState
from systems.session import PAUSED_DUE_TO_MUTE, SessionManager
from utils.notify import Notifier


class MuteStateTracker:
    """Tracks the bot's own mute flags per guild.

    The stored state wins over the event's `before` snapshot, so a missed
    or repeated gateway event can't produce a phantom edge.
    """

    def __init__(self, sessions: SessionManager, registry: ContinuityRegistry, notifier: Notifier) -> None:
        self.sessions = sessions
        self.registry = registry
        self.notifier = notifier

    async def on_presence_changed(self, guild_id: int, before: VoiceSnapshot, after: VoiceSnapshot) -> None:
        stored = self.registry.get_mute_state(guild_id)
        was_muted = stored.muted if stored is not None else (before.server_muted or before.self_muted)
        current = MuteState(server_muted=after.server_muted, self_muted=after.self_muted)
        self.registry.set_mute_state(guild_id, current)

        if was_muted == current.muted:
            return

        session = self.sessions.get(guild_id)
        if session is None:
            return

        if current.muted:
            if not session.is_playing:
                return
            try:
                await session.pause()
            except Exception:
                logger.opt(exception=True).warning("mute pause failed")
                return
            session.set_data(PAUSED_DUE_TO_MUTE, True)
            kind = "server-muted" if current.server_muted else "self-muted"
            logger.info(f"paused, bot was {kind}")
            key = "mute_paused" if current.server_muted else "self_mute_paused"
            await self.notifier.notify(guild_id, session.text_channel_id, key)
        else:
            if not (session.is_paused and session.get_data(PAUSED_DUE_TO_MUTE)):
                return
            try:
                await session.resume()
            except Exception:
                logger.opt(exception=True).warning("unmute resume failed")
                return
            session.set_data(PAUSED_DUE_TO_MUTE, False)
            logger.info("resumed, bot was unmuted")
            await self.notifier.notify(guild_id, session.text_channel_id, "unmute_resumed")
