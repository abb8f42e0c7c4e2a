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

import asyncio

from conftest import GUILD, settle
from systems.registry import MuteState


async def forever():
    await asyncio.sleep(3600)


async def test_starting_timer_cancels_previous(registry):
    first = registry.start_alone_timer(GUILD, forever())
    second = registry.start_alone_timer(GUILD, forever())
    await settle()

    assert first.cancelled()
    assert registry.alone_timers[GUILD] is second
    assert not second.done()


async def test_cancel_reports_pending_timer(registry):
    registry.start_alone_timer(GUILD, forever())

    assert registry.cancel_alone_timer(GUILD) is True
    assert registry.cancel_alone_timer(GUILD) is False
    assert not registry.has_alone_timer(GUILD)


async def test_release_only_drops_own_entry(registry):
    first = registry.start_alone_timer(GUILD, forever())
    second = registry.start_alone_timer(GUILD, forever())

    registry.release_alone_timer(GUILD, first)
    assert registry.alone_timers[GUILD] is second

    registry.release_alone_timer(GUILD, second)
    assert GUILD not in registry.alone_timers
    second.cancel()


async def test_claim_is_insert_if_absent(registry):
    assert registry.claim_reconnect(GUILD) is True
    assert registry.claim_reconnect(GUILD) is False

    registry.release_reconnect(GUILD)
    assert registry.claim_reconnect(GUILD) is True


async def test_counters(registry):
    assert registry.record_failure(GUILD) == 1
    assert registry.record_failure(GUILD) == 2
    registry.reset_failures(GUILD)
    assert registry.record_failure(GUILD) == 1

    assert registry.record_reconnection(GUILD) == 1
    assert registry.record_reconnection(GUILD) == 2


async def test_clear_session_state_keeps_guard_unless_asked(registry):
    registry.start_alone_timer(GUILD, forever())
    registry.set_mute_state(GUILD, MuteState(server_muted=True))
    registry.claim_reconnect(GUILD)

    registry.clear_session_state(GUILD)
    assert not registry.has_alone_timer(GUILD)
    assert registry.get_mute_state(GUILD) is None
    assert registry.has_reconnect_guard(GUILD)

    registry.clear_session_state(GUILD, release_guard=True)
    assert not registry.has_reconnect_guard(GUILD)


async def test_clear_guild_forgets_everything(registry):
    task = asyncio.create_task(forever())
    registry.track_reconnect(GUILD, task)
    registry.claim_reconnect(GUILD)
    registry.record_failure(GUILD)
    registry.record_reconnection(GUILD)

    registry.clear_guild(GUILD)
    await settle()

    assert task.cancelled()
    assert registry.reconnect_tasks == {}
    assert registry.failure_counts == {}
    assert registry.reconnect_counts == {}
    assert not registry.has_reconnect_guard(GUILD)


async def test_finished_reconnect_task_untracks_itself(registry):
    task = asyncio.create_task(asyncio.sleep(0))
    registry.track_reconnect(GUILD, task)

    await settle()

    assert registry.reconnect_tasks == {}


async def test_shutdown_cancels_all_guilds(registry):
    timers = [registry.start_alone_timer(guild_id, forever()) for guild_id in (1, 2, 3)]
    reconnect = asyncio.create_task(forever())
    registry.track_reconnect(4, reconnect)
    registry.claim_reconnect(4)

    await registry.shutdown()

    assert all(t.done() for t in timers)
    assert reconnect.cancelled()
    assert registry.alone_timers == {}
    assert registry.reconnect_guards == {}
