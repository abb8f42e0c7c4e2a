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

"""Per-guild continuity bookkeeping."""

import asyncio
from dataclasses import dataclass
from time import monotonic as _now
from typing import Coroutine

from loguru import logger


@dataclass(frozen=True)
class MuteState:
    """Last observed mute flags of the bot's own member."""
    server_muted: bool = False
    self_muted: bool = False

    @property
    def muted(self) -> bool:
        return self.server_muted or self.self_muted


class ContinuityRegistry:
    """Owns every per-guild table the presence and continuity code shares.

    One instance per process, created by the continuity cog and shut down
    when the cog unloads. All mutations are plain dict operations with no
    await in between, so two callbacks for the same guild can't both win
    a check-then-set.

    Tables:
    - alone_timers: guild -> pending alone-timeout task (at most one)
    - mute_states: guild -> last MuteState seen for the bot
    - reconnect_guards: guild -> monotonic time a reconnection was scheduled
    - failure_counts: guild -> consecutive failed reconnections
    - reconnect_counts: guild -> successful reconnections this process
    - reconnect_tasks: guild -> scheduled reconnection task
    """

    def __init__(self) -> None:
        self.alone_timers: dict[int, asyncio.Task] = {}
        self.mute_states: dict[int, MuteState] = {}
        self.reconnect_guards: dict[int, float] = {}
        self.failure_counts: dict[int, int] = {}
        self.reconnect_counts: dict[int, int] = {}
        self.reconnect_tasks: dict[int, asyncio.Task] = {}

    # -- alone timers ---------------------------------------------------------

    def start_alone_timer(self, guild_id: int, coro: Coroutine) -> asyncio.Task:
        """Start a timer task, cancelling any existing one first."""
        self.cancel_alone_timer(guild_id)
        task = asyncio.create_task(coro, name=f"alone-timer-{guild_id}")
        self.alone_timers[guild_id] = task
        return task

    def cancel_alone_timer(self, guild_id: int) -> bool:
        """Cancel the pending timer. Returns True if one was pending."""
        if task := self.alone_timers.pop(guild_id, None):
            if not task.done():
                task.cancel()
                logger.debug(f"alone timer cancelled for guild {guild_id}")
                return True
        return False

    def release_alone_timer(self, guild_id: int, task: asyncio.Task | None) -> None:
        """Drop the entry only if it still belongs to `task`."""
        if task is not None and self.alone_timers.get(guild_id) is task:
            del self.alone_timers[guild_id]

    def has_alone_timer(self, guild_id: int) -> bool:
        task = self.alone_timers.get(guild_id)
        return task is not None and not task.done()

    # -- mute states ----------------------------------------------------------

    def get_mute_state(self, guild_id: int) -> MuteState | None:
        return self.mute_states.get(guild_id)

    def set_mute_state(self, guild_id: int, state: MuteState) -> None:
        self.mute_states[guild_id] = state

    def clear_mute_state(self, guild_id: int) -> None:
        self.mute_states.pop(guild_id, None)

    # -- reconnection ---------------------------------------------------------

    def claim_reconnect(self, guild_id: int) -> bool:
        """Insert the guard if absent. Returns False when already claimed."""
        if guild_id in self.reconnect_guards:
            return False
        self.reconnect_guards[guild_id] = _now()
        return True

    def release_reconnect(self, guild_id: int) -> None:
        self.reconnect_guards.pop(guild_id, None)

    def has_reconnect_guard(self, guild_id: int) -> bool:
        return guild_id in self.reconnect_guards

    def track_reconnect(self, guild_id: int, task: asyncio.Task) -> None:
        """Keep a reference to the scheduled reconnection until it finishes."""
        self.reconnect_tasks[guild_id] = task

        def _done(t: asyncio.Task) -> None:
            if self.reconnect_tasks.get(guild_id) is t:
                del self.reconnect_tasks[guild_id]

        task.add_done_callback(_done)

    def record_failure(self, guild_id: int) -> int:
        """Count a failed reconnection. Returns the new consecutive total."""
        self.failure_counts[guild_id] = self.failure_counts.get(guild_id, 0) + 1
        return self.failure_counts[guild_id]

    def reset_failures(self, guild_id: int) -> None:
        self.failure_counts.pop(guild_id, None)

    def record_reconnection(self, guild_id: int) -> int:
        """Count a successful reconnection. Returns the new total."""
        self.reconnect_counts[guild_id] = self.reconnect_counts.get(guild_id, 0) + 1
        return self.reconnect_counts[guild_id]

    # -- lifecycle ------------------------------------------------------------

    def clear_session_state(self, guild_id: int, *, release_guard: bool = False) -> None:
        """Forget the timer and mute state of a torn-down session."""
        self.cancel_alone_timer(guild_id)
        self.clear_mute_state(guild_id)
        if release_guard:
            self.release_reconnect(guild_id)

    def clear_guild(self, guild_id: int) -> None:
        """Forget everything about a guild (bot was removed from it)."""
        self.clear_session_state(guild_id, release_guard=True)
        self.failure_counts.pop(guild_id, None)
        self.reconnect_counts.pop(guild_id, None)
        if task := self.reconnect_tasks.pop(guild_id, None):
            if not task.done():
                task.cancel()

    async def shutdown(self) -> None:
        """Cancel and await every timer and scheduled reconnection."""
        tasks = [t for t in (*self.alone_timers.values(), *self.reconnect_tasks.values()) if not t.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.debug(f"cancelled {len(tasks)} pending continuity tasks")

        self.alone_timers.clear()
        self.mute_states.clear()
        self.reconnect_guards.clear()
        self.failure_counts.clear()
        self.reconnect_counts.clear()
        self.reconnect_tasks.clear()
