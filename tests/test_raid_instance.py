"""
tests/test_raid_instance.py — Raid Lifecycle & Claim Tests
===========================================================
Drives :class:`RaidInstance` against mocked Discord objects.  Journal
writes go through a patched ``run_db`` so no database is needed.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import discord
import pytest

from raidkeeper.database.models import RaidPhase
from raidkeeper.engine.catalog import builtin_dungeons
from raidkeeper.engine.dungeons import CustomDungeon
from raidkeeper.engine.guild import DungeonOverride, GuildSettings, SectionSettings
from raidkeeper.engine.reactions import NITRO_KEY
from raidkeeper.services.guild_repository import RaidRecord
from raidkeeper.services.raid_instance import RaidConfigurationError, RaidInstance
from raidkeeper.services.raid_registry import RaidRegistry

GUILD = 100
VERIFIED = 200
LEADER_ROLE = 300
NITRO_ROLE = 400
ADMIN_ROLE = 900
AFK_CHANNEL = 11
PANEL_CHANNEL = 12
VC_ID = 501


def run_async(coro):
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------
def _make_bot():
    bot = MagicMock()
    bot.engine = MagicMock()
    bot.registry = RaidRegistry()
    bot.cfg = SimpleNamespace(
        admin_role_id=ADMIN_ROLE,
        afk_check_timeout_minutes=5,
        vc_cleanup_attempts=3,
        vc_cleanup_delay_seconds=0.0,
    )
    bot.get_emoji = MagicMock(return_value=None)
    bot.parser = None
    return bot


def _make_role(role_id):
    role = MagicMock()
    role.id = role_id
    return role


def _make_guild(channels=None, members=None):
    roles = {rid: _make_role(rid) for rid in (GUILD, VERIFIED, LEADER_ROLE, NITRO_ROLE)}
    channels = channels or {}
    members = members or {}
    guild = MagicMock()
    guild.id = GUILD
    guild.default_role = roles[GUILD]
    guild.get_role = lambda rid: roles.get(rid)
    guild.get_channel = lambda cid: channels.get(cid)
    guild.get_member = lambda mid: members.get(mid)
    guild.voice_channels = []
    guild.afk_channel = None
    return guild


def _section(**kw) -> SectionSettings:
    data = dict(
        identifier="main",
        name="Main",
        verified_role_id=VERIFIED,
        afk_check_channel_id=AFK_CHANNEL,
        control_panel_channel_id=PANEL_CHANNEL,
        vc_limit=10,
    )
    data.update(kw)
    return SectionSettings(**data)


def _settings(section=None, **kw) -> GuildSettings:
    section = section or _section()
    return GuildSettings(
        guild_id=GUILD,
        roles={"leader": LEADER_ROLE},
        nitro_role_id=NITRO_ROLE,
        sections={section.identifier: section},
        **kw,
    )


def _make_member(member_id, *, in_voice=True, role_ids=(), premium=False, bot=False):
    member = MagicMock()
    member.id = member_id
    member.bot = bot
    member.display_name = f"Raider{member_id}"
    member.roles = [SimpleNamespace(id=r) for r in role_ids]
    member.premium_since = object() if premium else None
    member.voice = SimpleNamespace(channel=SimpleNamespace(id=999)) if in_voice else None
    member.move_to = AsyncMock()
    return member


def _initiator():
    return SimpleNamespace(
        id=1,
        display_name="Leader",
        display_avatar=SimpleNamespace(url="https://cdn.example/avatar.png"),
        mention="<@1>",
        roles=[SimpleNamespace(id=LEADER_ROLE)],
    )


def _make_vc(members=()):
    vc = MagicMock(spec=discord.VoiceChannel)
    vc.id = VC_ID
    vc.name = "Leader's The Shatters"
    vc.mention = f"<#{VC_ID}>"
    vc.category = None
    vc.members = list(members)
    vc.edit = AsyncMock()
    vc.delete = AsyncMock()
    vc.set_permissions = AsyncMock()
    vc.overwrites_for = MagicMock(return_value=discord.PermissionOverwrite())
    return vc


def _make_message(message_id, channel_id):
    message = MagicMock()
    message.id = message_id
    message.channel = SimpleNamespace(id=channel_id)
    for name in ("edit", "delete", "pin", "unpin", "clear_reactions", "add_reaction"):
        setattr(message, name, AsyncMock())
    return message


def _stub_machinery(raid: RaidInstance) -> RaidInstance:
    """Replace view, refresh and timer plumbing with mocks."""
    raid._install_views = MagicMock()
    raid._push_views = AsyncMock()
    raid._start_refresh = MagicMock()
    raid._schedule_timeout = MagicMock()
    return raid


def _make_raid(phase=RaidPhase.PRE_OPEN, *, dungeon=None, section=None, bot=None, stub=True):
    section = section or _section()
    bot = bot or _make_bot()
    raid = RaidInstance(
        bot,
        _make_guild(),
        _settings(section),
        section,
        dungeon or builtin_dungeons()["SHATTERS"],
        _initiator(),
    )
    raid.phase = phase
    raid.vc = _make_vc()
    raid.afk_check_message = _make_message(7001, AFK_CHANNEL)
    raid.control_panel_message = _make_message(7002, PANEL_CHANNEL)
    bot.registry.register(raid.afk_check_message.id, raid)
    return _stub_machinery(raid) if stub else raid


def _make_interaction(member):
    interaction = MagicMock()
    interaction.user = member
    interaction.response.is_done = MagicMock(return_value=False)
    interaction.response.send_message = AsyncMock()
    interaction.response.defer = AsyncMock()
    interaction.edit_original_response = AsyncMock()
    interaction.followup.send = AsyncMock()
    return interaction


def _last_reply(interaction) -> str:
    if interaction.response.send_message.await_args is not None:
        return interaction.response.send_message.await_args.args[0]
    return interaction.edit_original_response.await_args.kwargs["content"]


@pytest.fixture(autouse=True)
def _no_db():
    with patch("raidkeeper.services.raid_instance.run_db", new=AsyncMock(return_value=None)) as mock:
        yield mock


# ===========================================================================
# Construction
# ===========================================================================
class TestConstruction:
    def test_reactions_and_ledger(self):
        raid = _make_raid(RaidPhase.PENDING)
        assert raid.ledger.capacity("SHATTERS_KEY") == 1
        assert raid.ledger.capacity("KNIGHT") == 2
        assert raid.ledger.capacity(NITRO_KEY) == 1  # 10% of 10
        assert "WARRIOR" in raid.reactions
        assert "WARRIOR" not in raid.ledger.keys

    def test_override_vc_limit(self):
        section = _section()
        settings = _settings(
            section,
            dungeon_overrides={"SHATTERS": DungeonOverride("SHATTERS", (), vc_limit=30)},
        )
        raid = RaidInstance(
            _make_bot(), _make_guild(), settings, section,
            builtin_dungeons()["SHATTERS"], _initiator(),
        )
        assert raid.vc_limit == 30
        assert list(raid.reactions) == [NITRO_KEY]
        assert raid.ledger.capacity(NITRO_KEY) == 3

    def test_can_operate(self):
        raid = _make_raid()
        assert raid.can_operate(raid.initiator)
        assert raid.can_operate(SimpleNamespace(id=5, roles=[SimpleNamespace(id=ADMIN_ROLE)]))
        assert raid.can_operate(SimpleNamespace(id=5, roles=[SimpleNamespace(id=LEADER_ROLE)]))
        assert not raid.can_operate(SimpleNamespace(id=5, roles=[SimpleNamespace(id=VERIFIED)]))

    def test_record_needs_all_resources(self):
        raid = _make_raid()
        assert raid.raid_record().vc_id == VC_ID
        raid.control_panel_message = None
        assert raid.raid_record() is None


# ===========================================================================
# start()
# ===========================================================================
class TestStart:
    def _channels(self):
        afk = MagicMock(spec=discord.TextChannel)
        afk.category = None
        afk.send = AsyncMock(return_value=_make_message(7001, AFK_CHANNEL))
        panel = MagicMock(spec=discord.TextChannel)
        panel.send = AsyncMock(return_value=_make_message(7002, PANEL_CHANNEL))
        return {AFK_CHANNEL: afk, PANEL_CHANNEL: panel}

    def _pending(self, guild, section=None, bot=None):
        section = section or _section()
        raid = RaidInstance(
            bot or _make_bot(), guild, _settings(section), section,
            builtin_dungeons()["SHATTERS"], _initiator(),
        )
        raid._start_refresh = MagicMock()
        raid._schedule_timeout = MagicMock()
        return raid

    def test_creates_resources_and_registers(self, _no_db):
        guild = _make_guild(channels=self._channels())
        guild.create_voice_channel = AsyncMock(return_value=_make_vc())
        bot = _make_bot()
        raid = self._pending(guild, bot=bot)

        async def go():
            await raid.start()
            return [item.key for item in raid._afk_view.children]

        buttons = run_async(go())
        assert raid.phase == RaidPhase.PRE_OPEN
        assert guild.create_voice_channel.await_args.kwargs["user_limit"] == 10
        assert buttons == raid.ledger.keys
        assert bot.registry.get(7001) is raid
        raid.afk_check_message.pin.assert_awaited_once()
        # non-essential reactions are added as plain emoji reactions
        assert raid.afk_check_message.add_reaction.await_count >= 1
        raid._schedule_timeout.assert_called_once_with(300.0)
        assert _no_db.await_args_list[0].args[0].__name__ == "insert_raid"

    def test_missing_verified_role(self):
        guild = _make_guild(channels=self._channels())
        guild.create_voice_channel = AsyncMock()
        raid = self._pending(guild, section=_section(verified_role_id=None))
        with pytest.raises(RaidConfigurationError):
            run_async(raid.start())
        guild.create_voice_channel.assert_not_awaited()
        assert raid.phase == RaidPhase.PENDING

    def test_missing_channels(self):
        guild = _make_guild(channels={})
        guild.create_voice_channel = AsyncMock()
        raid = self._pending(guild)
        with pytest.raises(RaidConfigurationError):
            run_async(raid.start())
        guild.create_voice_channel.assert_not_awaited()

    def test_only_from_pending(self):
        raid = _make_raid(RaidPhase.OPEN)
        raid.guild.create_voice_channel = AsyncMock()
        run_async(raid.start())
        raid.guild.create_voice_channel.assert_not_awaited()


# ===========================================================================
# Transitions
# ===========================================================================
class TestTransitions:
    def test_open(self, _no_db):
        raid = _make_raid(RaidPhase.PRE_OPEN)
        assert run_async(raid.open()) is True
        assert raid.phase == RaidPhase.OPEN
        overwrites = raid.vc.edit.await_args.kwargs["overwrites"]
        verified = raid.guild.get_role(VERIFIED)
        assert overwrites[verified].connect is True
        assert _no_db.await_args.kwargs == {"phase": "OPEN"}

    def test_activate_snapshots_humans(self):
        raid = _make_raid(RaidPhase.OPEN)
        raid.vc.members = [_make_member(5), _make_member(6, bot=True)]
        assert run_async(raid.activate()) is True
        assert raid.phase == RaidPhase.ACTIVE
        assert raid.members_joined == [5]
        raid.afk_check_message.clear_reactions.assert_awaited_once()
        overwrites = raid.vc.edit.await_args.kwargs["overwrites"]
        assert overwrites[raid.guild.get_role(VERIFIED)].connect is False

    @pytest.mark.parametrize("phase, action", [
        (RaidPhase.OPEN, "open"),
        (RaidPhase.ACTIVE, "open"),
        (RaidPhase.PRE_OPEN, "activate"),
        (RaidPhase.ACTIVE, "activate"),
        (RaidPhase.PRE_OPEN, "end"),
        (RaidPhase.OPEN, "end"),
        (RaidPhase.ACTIVE, "abort"),
    ])
    def test_wrong_phase_is_a_noop(self, phase, action):
        raid = _make_raid(phase)
        assert run_async(getattr(raid, action)()) is False
        assert raid.phase == phase
        raid.vc.delete.assert_not_awaited()

    def test_abort_tears_down(self):
        raid = _make_raid(RaidPhase.OPEN)
        actor = SimpleNamespace(id=1, display_name="Leader")
        assert run_async(raid.abort(actor)) is True
        assert raid.phase == RaidPhase.ENDED
        embed = raid.afk_check_message.edit.await_args.kwargs["embed"]
        assert "aborted" in embed.title
        raid.control_panel_message.delete.assert_awaited_once()
        raid.vc.delete.assert_awaited_once()
        assert raid.bot.registry.get(7001) is None

    def test_end_from_active(self):
        raid = _make_raid(RaidPhase.ACTIVE)
        assert run_async(raid.end(None)) is True
        assert raid.phase == RaidPhase.ENDED
        raid.vc.delete.assert_awaited_once()

    def test_cleanup_is_idempotent(self):
        raid = _make_raid(RaidPhase.ACTIVE)

        async def twice():
            await raid.cleanup()
            await raid.cleanup()

        run_async(twice())
        raid.vc.delete.assert_awaited_once()
        raid.control_panel_message.delete.assert_awaited_once()

    def test_cleanup_evacuates_then_deletes(self):
        raid = _make_raid(RaidPhase.ACTIVE)
        lounge = SimpleNamespace(id=77, name="Raid Lounge")
        raid.guild.voice_channels = [lounge]
        stuck = _make_member(5)
        raid.vc.members = [stuck]
        run_async(raid.cleanup())
        stuck.move_to.assert_awaited_once()
        assert stuck.move_to.await_args.args[0] is lounge
        # member never left; the VC is still deleted after the bounded wait
        raid.vc.delete.assert_awaited_once()

    def test_cleanup_ignores_already_deleted_vc(self):
        raid = _make_raid(RaidPhase.ACTIVE)
        raid.vc.delete.side_effect = discord.NotFound(MagicMock(status=404), "gone")
        run_async(raid.cleanup())
        assert raid.phase == RaidPhase.ENDED


# ===========================================================================
# Phase timer
# ===========================================================================
class TestTimeouts:
    def test_pre_open_expiry_opens(self):
        raid = _make_raid(RaidPhase.PRE_OPEN)
        run_async(raid.on_timeout())
        assert raid.phase == RaidPhase.OPEN

    def test_active_expiry_ends(self):
        raid = _make_raid(RaidPhase.ACTIVE)
        run_async(raid.on_timeout())
        assert raid.phase == RaidPhase.ENDED

    def test_open_without_essential_reactions_expires_to_active(self):
        empty = CustomDungeon(code_name="EMPTY", name="Empty Run")
        raid = _make_raid(
            RaidPhase.OPEN, dungeon=empty, section=_section(nitro_limit=0), stub=False
        )
        raid._install_views = MagicMock()
        raid._push_views = AsyncMock()
        raid._start_refresh = MagicMock()
        assert raid.ledger.keys == []

        async def go():
            raid._schedule_timeout(0.01)
            await asyncio.sleep(0.1)
            phase = raid.phase
            raid._cancel_timeout()
            await asyncio.sleep(0)
            return phase

        assert run_async(go()) == RaidPhase.ACTIVE


# ===========================================================================
# Claims
# ===========================================================================
def _confirming(answer=True):
    async def confirm(interaction, reaction):
        await asyncio.sleep(0)
        return answer
    return confirm


class TestClaims:
    def test_successful_claim_moves_member_in(self):
        raid = _make_raid(RaidPhase.PRE_OPEN)
        raid._confirm = _confirming(True)
        member = _make_member(5)
        interaction = _make_interaction(member)
        assert run_async(raid.handle_claim(interaction, "SHATTERS_KEY")) is True
        assert raid.ledger.claimants("SHATTERS_KEY") == [5]
        member.move_to.assert_awaited_once_with(raid.vc, reason="Priority raid slot")
        assert "Thank you for confirming your choice of" in _last_reply(interaction)

    def test_concurrent_claims_for_last_slot(self):
        raid = _make_raid(RaidPhase.OPEN)
        raid._confirm = _confirming(True)
        first = _make_interaction(_make_member(5))
        second = _make_interaction(_make_member(6))

        async def race():
            return await asyncio.gather(
                raid.handle_claim(first, "MYSTIC"),
                raid.handle_claim(second, "MYSTIC"),
            )

        results = run_async(race())
        assert sorted(results) == [False, True]
        assert len(raid.ledger.claimants("MYSTIC")) == 1

    def test_must_be_in_voice(self):
        raid = _make_raid(RaidPhase.PRE_OPEN)
        interaction = _make_interaction(_make_member(5, in_voice=False))
        assert run_async(raid.handle_claim(interaction, "KNIGHT")) is False
        assert "voice channel" in _last_reply(interaction)

    def test_duplicate_claim(self):
        raid = _make_raid(RaidPhase.PRE_OPEN)
        raid.ledger.claim(5, "KNIGHT")
        interaction = _make_interaction(_make_member(5))
        assert run_async(raid.handle_claim(interaction, "KNIGHT")) is False
        assert _last_reply(interaction) == "You have already selected this!"

    def test_full_key(self):
        raid = _make_raid(RaidPhase.PRE_OPEN)
        raid.ledger.claim(8, "SHATTERS_KEY")
        interaction = _make_interaction(_make_member(5))
        assert run_async(raid.handle_claim(interaction, "SHATTERS_KEY")) is False
        assert "maximum number of Shatters Key has been reached" in _last_reply(interaction)

    def test_closed_phase_rejected(self):
        raid = _make_raid(RaidPhase.ACTIVE)
        interaction = _make_interaction(_make_member(5))
        assert run_async(raid.handle_claim(interaction, "KNIGHT")) is False
        assert raid.ledger.claimants("KNIGHT") == []

    def test_non_essential_rejected(self):
        raid = _make_raid(RaidPhase.OPEN)
        interaction = _make_interaction(_make_member(5))
        assert run_async(raid.handle_claim(interaction, "WARRIOR")) is False

    def test_declined_confirmation(self):
        raid = _make_raid(RaidPhase.PRE_OPEN)
        raid._confirm = _confirming(False)
        interaction = _make_interaction(_make_member(5))
        assert run_async(raid.handle_claim(interaction, "KNIGHT")) is False
        assert raid.ledger.claimants("KNIGHT") == []
        assert 5 not in raid._confirming

    def test_second_click_while_confirming(self):
        raid = _make_raid(RaidPhase.PRE_OPEN)
        gate = None

        async def slow_confirm(interaction, reaction):
            await gate.wait()
            return True

        raid._confirm = slow_confirm
        member = _make_member(5)
        first = _make_interaction(member)
        second = _make_interaction(member)

        async def go():
            nonlocal gate
            gate = asyncio.Event()
            task = asyncio.ensure_future(raid.handle_claim(first, "KNIGHT"))
            await asyncio.sleep(0)
            blocked = await raid.handle_claim(second, "MYSTIC")
            gate.set()
            return blocked, await task

        blocked, claimed = run_async(go())
        assert blocked is False
        assert "process of confirming" in _last_reply(second)
        assert claimed is True

    def test_raid_closing_during_confirmation(self):
        raid = _make_raid(RaidPhase.OPEN)

        async def confirm_then_close(interaction, reaction):
            raid.phase = RaidPhase.ACTIVE
            return True

        raid._confirm = confirm_then_close
        interaction = _make_interaction(_make_member(5))
        assert run_async(raid.handle_claim(interaction, "KNIGHT")) is False
        assert raid.ledger.claimants("KNIGHT") == []

    def test_nitro_needs_boost(self):
        raid = _make_raid(RaidPhase.PRE_OPEN)
        interaction = _make_interaction(_make_member(5))
        assert run_async(raid.handle_claim(interaction, NITRO_KEY)) is False
        assert raid.ledger.claimants(NITRO_KEY) == []

    def test_booster_skips_confirmation(self):
        raid = _make_raid(RaidPhase.PRE_OPEN)
        raid._confirm = AsyncMock()
        interaction = _make_interaction(_make_member(5, premium=True))
        assert run_async(raid.handle_claim(interaction, NITRO_KEY)) is True
        raid._confirm.assert_not_awaited()

    def test_nitro_role_counts_as_boost(self):
        raid = _make_raid(RaidPhase.PRE_OPEN)
        interaction = _make_interaction(_make_member(5, role_ids=(NITRO_ROLE,)))
        assert run_async(raid.handle_claim(interaction, NITRO_KEY)) is True

    def test_claim_journaled(self, _no_db):
        raid = _make_raid(RaidPhase.PRE_OPEN)
        assert run_async(raid.add_early_location_claim(5, "KNIGHT")) is True
        fn, _engine, vc_id, member_id, key = _no_db.await_args.args
        assert (fn.__name__, vc_id, member_id, key) == ("append_claim", VC_ID, 5, "KNIGHT")


# ===========================================================================
# Voice activity & leader actions
# ===========================================================================
class TestVoiceAndLeaderActions:
    def test_claimant_pulled_back_in(self):
        raid = _make_raid(RaidPhase.OPEN)
        raid.ledger.claim(5, "KNIGHT")
        member = _make_member(5)
        before = SimpleNamespace(channel=raid.vc)
        after = SimpleNamespace(channel=SimpleNamespace(id=999))
        run_async(raid.voice_state_changed(member, before, after))
        member.move_to.assert_awaited_once()

    def test_non_claimant_left_alone(self):
        raid = _make_raid(RaidPhase.OPEN)
        member = _make_member(5)
        before = SimpleNamespace(channel=raid.vc)
        after = SimpleNamespace(channel=SimpleNamespace(id=999))
        run_async(raid.voice_state_changed(member, before, after))
        member.move_to.assert_not_awaited()

    def test_reconnect_only_for_starting_raiders(self):
        raid = _make_raid(RaidPhase.ACTIVE)
        raid.members_joined = [5]
        member = _make_member(5)
        run_async(raid.reconnect(_make_interaction(member)))
        member.move_to.assert_awaited_once()

        stranger = _make_member(6)
        interaction = _make_interaction(stranger)
        run_async(raid.reconnect(interaction))
        stranger.move_to.assert_not_awaited()
        assert "not in this raid" in _last_reply(interaction)

    def test_lock_and_unlock(self):
        raid = _make_raid(RaidPhase.ACTIVE)
        assert run_async(raid.set_locked(True)) is True
        overwrite = raid.vc.set_permissions.await_args.kwargs["overwrite"]
        assert overwrite.connect is False
        assert run_async(raid.set_locked(False)) is True
        assert raid.vc.set_permissions.await_args.kwargs["overwrite"].connect is None

    def test_lock_needs_active_raid(self):
        raid = _make_raid(RaidPhase.OPEN)
        assert run_async(raid.set_locked(True)) is False

    def test_set_location_journaled(self, _no_db):
        raid = _make_raid(RaidPhase.OPEN)
        run_async(raid.set_location("  USEast Left Bazaar  "))
        assert raid.location == "USEast Left Bazaar"
        assert _no_db.await_args_list[0].kwargs == {"location": "USEast Left Bazaar"}

    def test_parse_screenshot(self):
        bot = _make_bot()
        bot.parser = MagicMock()
        bot.parser.parse = AsyncMock(return_value=["alice", "Ghost"])
        raid = _make_raid(RaidPhase.ACTIVE, bot=bot)
        alice, bob = _make_member(5), _make_member(6)
        alice.display_name = "Alice | Ali"
        bob.display_name = "Bob"
        raid.vc.members = [alice, bob]
        raid.credit_quota = AsyncMock()
        interaction = _make_interaction(_make_member(1))

        run_async(raid.parse_screenshot(interaction, "https://cdn.example/who.png"))
        embed = interaction.followup.send.await_args.kwargs["embed"]
        values = [f.value for f in embed.fields]
        assert values == ["6", "Ghost"]
        raid.credit_quota.assert_awaited_once()

    def test_parse_failure_reported(self):
        bot = _make_bot()
        bot.parser = MagicMock()
        bot.parser.parse = AsyncMock(return_value=None)
        raid = _make_raid(RaidPhase.ACTIVE, bot=bot)
        raid.credit_quota = AsyncMock()
        interaction = _make_interaction(_make_member(1))

        run_async(raid.parse_screenshot(interaction, "https://cdn.example/who.png"))
        assert "could not be read" in interaction.followup.send.await_args.args[0]
        raid.credit_quota.assert_not_awaited()


# ===========================================================================
# Recovery
# ===========================================================================
class TestRestore:
    def _record(self, **kw):
        data = dict(
            guild_id=GUILD,
            vc_id=VC_ID,
            section_identifier="main",
            dungeon_code="SHATTERS",
            initiator_id=1,
            afk_check_channel_id=AFK_CHANNEL,
            control_panel_channel_id=PANEL_CHANNEL,
            afk_check_message_id=7001,
            control_panel_message_id=7002,
            phase="OPEN",
            location="Bazaar",
            claims=[(5, "KNIGHT"), (6, "SHATTERS_KEY"), (7, "SHATTERS_KEY")],
        )
        data.update(kw)
        return RaidRecord(**data)

    def _guild(self, vc=True):
        afk = MagicMock(spec=discord.TextChannel)
        afk.fetch_message = AsyncMock(return_value=_make_message(7001, AFK_CHANNEL))
        panel = MagicMock(spec=discord.TextChannel)
        panel.fetch_message = AsyncMock(return_value=_make_message(7002, PANEL_CHANNEL))
        channels = {AFK_CHANNEL: afk, PANEL_CHANNEL: panel}
        if vc:
            channels[VC_ID] = _make_vc()
        return _make_guild(channels=channels, members={1: _initiator()})

    def _restore(self, bot, guild, record):
        with patch.multiple(
            RaidInstance,
            _install_views=MagicMock(),
            _push_views=AsyncMock(),
            _start_refresh=MagicMock(),
            _schedule_timeout=MagicMock(),
        ):
            return run_async(RaidInstance.restore(bot, guild, _settings(), record))

    def test_rebuilds_live_raid(self):
        bot = _make_bot()
        raid = self._restore(bot, self._guild(), self._record())
        assert raid is not None
        assert raid.phase == RaidPhase.OPEN
        assert raid.location == "Bazaar"
        assert raid.ledger.claimants("KNIGHT") == [5]
        assert raid.ledger.claimants("SHATTERS_KEY") == [6]
        assert bot.registry.get(7001) is raid

    def test_missing_vc(self):
        bot = _make_bot()
        assert self._restore(bot, self._guild(vc=False), self._record()) is None
        assert len(bot.registry) == 0

    def test_unknown_section(self):
        bot = _make_bot()
        assert self._restore(bot, self._guild(), self._record(section_identifier="vet")) is None

    def test_deleted_message(self):
        bot = _make_bot()
        guild = self._guild()
        guild.get_channel(AFK_CHANNEL).fetch_message.side_effect = discord.NotFound(
            MagicMock(status=404), "gone"
        )
        assert self._restore(bot, guild, self._record()) is None

    def test_finished_phase_not_restored(self):
        bot = _make_bot()
        assert self._restore(bot, self._guild(), self._record(phase="ENDED")) is None
