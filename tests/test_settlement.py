"""Tests for escrow clients and settlement reconciliation."""

import json

import httpx
import pytest
from fakes import ALICE, BOB, MALLORY, START

from shard_arena.core.config import EscrowConfig
from shard_arena.core.errors import (
    EscrowUnavailableError,
    InvalidRequestError,
    NotAuthorizedError,
)
from shard_arena.models import Battle, BattleMode, BattleStatus
from shard_arena.services.settlement import (
    NO_WINNER,
    RESOLVED_ON_LEDGER,
    EscrowState,
    EscrowStatus,
    HttpChainEscrow,
    SettlementSync,
    UnconfiguredEscrow,
    battle_ref,
    create_escrow,
    winner_address,
)

RESOLVED = EscrowStatus(state=EscrowState.RESOLVED, tx_hash="0xfinal")


async def completed_battle(arena, sides, stake=10.0, escrow_tx_hash="0xdeposit"):
    battle = await arena.lifecycle.create(
        *sides, BattleMode.DEBATE, stake_amount=stake, escrow_tx_hash=escrow_tx_hash
    )
    await arena.lifecycle.submit_round_response(battle.id, ALICE, 1, "a")
    await arena.lifecycle.submit_round_response(battle.id, BOB, 1, "b")
    return await arena.lifecycle.finalize(battle.id)


class TestBattleRef:
    """Tests for the on-chain battle reference."""

    def test_uuid_padded_to_32_bytes(self):
        """Test dashes are stripped and the hex is right-padded."""
        ref = battle_ref("0f8fad5b-d9cb-469f-a165-70867728950e")
        assert ref == "0x0f8fad5bd9cb469fa16570867728950e" + "0" * 32
        assert len(ref) == 66


class TestReconcile:
    """Tests for SettlementSync.reconcile."""

    async def test_unstaked_battle_untouched(self, arena, sides, escrow):
        """Test zero-stake battles never reach the ledger."""
        battle = await completed_battle(arena, sides, stake=0, escrow_tx_hash=None)

        result = await arena.settlement.reconcile(battle.id)

        assert result == battle
        assert escrow.status_calls == []

    async def test_active_battle_untouched(self, arena, sides, escrow):
        """Test unfinished battles are not settled."""
        battle = await arena.lifecycle.create(
            *sides, BattleMode.DEBATE, stake_amount=5, escrow_tx_hash="0xd"
        )
        result = await arena.settlement.reconcile(battle.id)
        assert result.status is BattleStatus.ACTIVE
        assert escrow.status_calls == []

    async def test_resolved_records_tx(self, arena, sides, escrow):
        """Test a resolved settlement stores the finalization hash once."""
        escrow.status = RESOLVED
        battle = await completed_battle(arena, sides)

        result = await arena.settlement.reconcile(battle.id)
        again = await arena.settlement.reconcile(battle.id)

        assert result.finalization_tx_hash == "0xfinal"
        assert again == result
        assert escrow.status_calls == [battle_ref(battle.id)]

    async def test_settlement_keeps_outcome(self, arena, sides, escrow):
        """Test settlement never changes winner or scores."""
        escrow.status = RESOLVED
        battle = await completed_battle(arena, sides)

        result = await arena.settlement.reconcile(battle.id)

        assert result.winner_id == battle.winner_id
        assert result.rounds == battle.rounds
        assert result.challenger == battle.challenger

    @pytest.mark.parametrize("state", [EscrowState.PENDING, EscrowState.SETTLED])
    async def test_unresolved_unchanged(self, arena, sides, escrow, state):
        """Test unresolved settlements leave the battle as is."""
        escrow.status = EscrowStatus(state=state)
        battle = await completed_battle(arena, sides)

        result = await arena.settlement.reconcile(battle.id)

        assert result.finalization_tx_hash is None

    async def test_disputed_unchanged(self, arena, sides, escrow):
        """Test disputed settlements are only reported."""
        escrow.status = EscrowStatus(state=EscrowState.DISPUTED)
        battle = await completed_battle(arena, sides)

        result = await arena.settlement.reconcile(battle.id)

        assert result.finalization_tx_hash is None
        assert result.status is BattleStatus.COMPLETED

    async def test_ledger_down_raises(self, arena, sides, escrow):
        """Test outages surface as retryable errors."""
        escrow.failures = 1
        battle = await completed_battle(arena, sides)

        with pytest.raises(EscrowUnavailableError):
            await arena.settlement.reconcile(battle.id)


class TestSettleOnLedger:
    """Tests for reporting outcomes and finalizing on the ledger."""

    async def test_winner_reported_once(self, arena, sides, escrow):
        """Test the winner's keeper is reported and the settle hash kept."""
        battle = await completed_battle(arena, sides)

        first = await arena.settlement.reconcile(battle.id)
        second = await arena.settlement.reconcile(battle.id)

        assert escrow.settle_calls == [(battle_ref(battle.id), ALICE)]
        assert first.settlement_tx_hash == "0xsettle1"
        assert second.settlement_tx_hash == "0xsettle1"
        assert second.finalization_tx_hash is None

    async def test_draw_reports_no_winner(self, arena, sides, escrow, judge):
        """Test a draw is settled with the zero address."""
        judge.default = (65, 65)
        battle = await completed_battle(arena, sides)

        await arena.settlement.reconcile(battle.id)

        assert battle.winner_id is None
        assert escrow.settle_calls == [(battle_ref(battle.id), NO_WINNER)]

    async def test_settle_outage_retried_on_next_pass(self, arena, sides, escrow):
        """Test a failed settle call leaves the battle for the next reconcile."""
        escrow.settle_failures = 1
        battle = await completed_battle(arena, sides)

        with pytest.raises(EscrowUnavailableError):
            await arena.settlement.reconcile(battle.id)
        assert (await arena.store.get_battle(battle.id)).settlement_tx_hash is None

        result = await arena.settlement.reconcile(battle.id)

        assert result.settlement_tx_hash == "0xsettle2"
        assert len(escrow.settle_calls) == 2

    async def test_resolved_without_hash_recorded(self, arena, sides, escrow):
        """Test a settlement resolved elsewhere is marked done."""
        escrow.status = EscrowStatus(state=EscrowState.RESOLVED)
        battle = await completed_battle(arena, sides)

        result = await arena.settlement.reconcile(battle.id)

        assert result.finalization_tx_hash == RESOLVED_ON_LEDGER
        assert await arena.store.list_unsettled(10) == []

    async def test_settled_finalized_after_dispute_window(self, arena, sides, escrow, clock):
        """Test an undisputed settlement is finalized only once the window passed."""
        escrow.status = EscrowStatus(state=EscrowState.SETTLED, tx_hash="0xsettle1")
        battle = await completed_battle(arena, sides)

        early = await arena.settlement.reconcile(battle.id)
        clock.advance(hours=1)
        late = await arena.settlement.reconcile(battle.id)

        assert early.finalization_tx_hash is None
        assert late.finalization_tx_hash == "0xfinalized"
        assert escrow.finalize_calls == [battle_ref(battle.id)]

    async def test_disputed_not_finalized_after_window(self, arena, sides, escrow, clock):
        """Test a disputed settlement waits for resolution whatever the time."""
        escrow.status = EscrowStatus(state=EscrowState.DISPUTED)
        battle = await completed_battle(arena, sides)
        clock.advance(hours=2)

        result = await arena.settlement.reconcile(battle.id)

        assert result.finalization_tx_hash is None
        assert escrow.finalize_calls == []

    def test_winner_address(self, sides):
        """Test the winning shard maps to its keeper."""
        battle = Battle(
            mode=BattleMode.DEBATE,
            challenger=sides[0],
            defender=sides[1],
            winner_id="shard-b",
            created_at=START,
        )
        assert winner_address(battle) == BOB
        assert winner_address(battle.model_copy(update={"winner_id": None})) == NO_WINNER


class TestSweepOutstanding:
    """Tests for the retrying settlement sweep."""

    async def test_sweeps_all_unsettled(self, arena, sides, escrow):
        """Test every unsettled battle is checked."""
        escrow.status = RESOLVED
        await completed_battle(arena, sides)
        await completed_battle(arena, sides)
        await completed_battle(arena, sides, stake=0, escrow_tx_hash=None)

        result = await arena.settlement.sweep_outstanding(limit=10)

        assert (result.checked, result.updated) == (2, 2)
        assert await arena.store.list_unsettled(10) == []

    async def test_retries_outage(self, arena, sides, escrow):
        """Test a transient outage is retried."""
        escrow.status = RESOLVED
        escrow.failures = 2
        await completed_battle(arena, sides)

        result = await arena.settlement.sweep_outstanding()

        assert result.updated == 1
        assert len(escrow.status_calls) == 3

    async def test_persistent_outage_skipped(self, store, sides, arena):
        """Test a battle whose ledger stays down is left for later."""
        await completed_battle(arena, sides)
        sync = SettlementSync(store, UnconfiguredEscrow(), sweep_attempts=2, retry_wait=0)

        result = await sync.sweep_outstanding()

        assert (result.checked, result.updated) == (1, 0)

    async def test_limit(self, arena, sides, escrow):
        """Test the sweep stops at the limit."""
        escrow.status = RESOLVED
        for _ in range(3):
            await completed_battle(arena, sides)

        result = await arena.settlement.sweep_outstanding(limit=2)

        assert result.checked == 2


class TestArenaSettle:
    """Tests for finalize-then-reconcile."""

    async def test_settle_finalizes_and_reconciles(self, arena, sides, escrow):
        """Test settling an active battle completes and settles it."""
        escrow.status = RESOLVED
        battle = await arena.lifecycle.create(
            *sides, BattleMode.DEBATE, stake_amount=3, escrow_tx_hash="0xd"
        )
        await arena.lifecycle.submit_round_response(battle.id, ALICE, 1, "a")
        await arena.lifecycle.submit_round_response(battle.id, BOB, 1, "b")

        settled = await arena.settle(battle.id, BOB)

        assert settled.status is BattleStatus.COMPLETED
        assert settled.finalization_tx_hash == "0xfinal"

    async def test_settle_requires_participant(self, arena, sides):
        """Test outsiders cannot settle."""
        battle = await arena.lifecycle.create(*sides, BattleMode.DEBATE)
        with pytest.raises(NotAuthorizedError):
            await arena.settle(battle.id, MALLORY)

    async def test_settle_without_rounds(self, arena, sides):
        """Test nothing to settle before a round is played."""
        battle = await arena.lifecycle.create(*sides, BattleMode.DEBATE)
        with pytest.raises(InvalidRequestError):
            await arena.settle(battle.id, ALICE)

    async def test_settle_with_ledger_down_keeps_result(self, arena, sides, escrow):
        """Test the battle is final even when the ledger is unreachable."""
        escrow.failures = 1
        battle = await completed_battle(arena, sides)

        with pytest.raises(EscrowUnavailableError):
            await arena.settle(battle.id, ALICE)

        current = await arena.store.get_battle(battle.id)
        assert current.status is BattleStatus.COMPLETED
        assert current.finalization_tx_hash is None


def _escrow_with(handler) -> HttpChainEscrow:
    return HttpChainEscrow(
        "https://ledger.test/api/",
        api_token="secret",
        transport=httpx.MockTransport(handler),
    )


class TestHttpChainEscrow:
    """Tests for the HTTP escrow client."""

    async def test_verify_confirmed(self):
        """Test a confirmed deposit verifies."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"confirmed": True})

        assert await _escrow_with(handler).verify_escrow("0xabc") is True
        assert seen[0].url.path == "/api/escrows/0xabc"
        assert seen[0].headers["Authorization"] == "Bearer secret"

    async def test_verify_unknown(self):
        """Test an unknown deposit does not verify."""
        escrow = _escrow_with(lambda request: httpx.Response(404))
        assert await escrow.verify_escrow("0xabc") is False

    async def test_settlement_resolved(self):
        """Test a resolved settlement carries its tx hash."""
        escrow = _escrow_with(
            lambda request: httpx.Response(200, json={"state": "resolved", "txHash": "0xf"})
        )
        status = await escrow.settlement_status("0xref")
        assert status == EscrowStatus(state=EscrowState.RESOLVED, tx_hash="0xf")

    async def test_settlement_not_started(self):
        """Test an unknown settlement is pending."""
        escrow = _escrow_with(lambda request: httpx.Response(404))
        assert (await escrow.settlement_status("0xref")).state is EscrowState.PENDING

    async def test_server_error_unavailable(self):
        """Test 5xx answers are outages."""
        escrow = _escrow_with(lambda request: httpx.Response(502))
        with pytest.raises(EscrowUnavailableError):
            await escrow.settlement_status("0xref")

    async def test_transport_error_unavailable(self):
        """Test connection failures are outages."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(EscrowUnavailableError):
            await _escrow_with(handler).verify_escrow("0xabc")

    async def test_unknown_state_unavailable(self):
        """Test unexpected states are treated as unreadable."""
        escrow = _escrow_with(lambda request: httpx.Response(200, json={"state": "exploded"}))
        with pytest.raises(EscrowUnavailableError):
            await escrow.settlement_status("0xref")

    async def test_settle_posts_winner(self):
        """Test the winner report is a POST returning the settle hash."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"txHash": "0xs"})

        assert await _escrow_with(handler).settle("0xref", ALICE) == "0xs"
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/api/settlements"
        assert json.loads(seen[0].content) == {"battleRef": "0xref", "winner": ALICE}

    async def test_finalize_posts_ref(self):
        """Test finalization targets the battle's settlement."""
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"txHash": "0xf"})

        assert await _escrow_with(handler).finalize_settlement("0xref") == "0xf"
        assert (seen[0].method, seen[0].url.path) == ("POST", "/api/settlements/0xref/finalize")

    @pytest.mark.parametrize(
        "response",
        [httpx.Response(200, json={}), httpx.Response(404), httpx.Response(409)],
    )
    async def test_settle_without_hash_unavailable(self, response):
        """Test a settle answer without a transaction hash is an outage."""
        escrow = _escrow_with(lambda request: response)
        with pytest.raises(EscrowUnavailableError):
            await escrow.settle("0xref", NO_WINNER)


class TestCreateEscrow:
    """Tests for escrow construction from config."""

    def test_unconfigured(self):
        """Test no base URL means unavailable."""
        assert isinstance(create_escrow(EscrowConfig()), UnconfiguredEscrow)

    def test_configured(self):
        """Test a base URL gives the HTTP client."""
        escrow = create_escrow(EscrowConfig(base_url="https://ledger.test"))
        assert isinstance(escrow, HttpChainEscrow)
        assert escrow.base_url == "https://ledger.test"

    async def test_unconfigured_raises(self):
        """Test every call on the unconfigured ledger is unavailable."""
        with pytest.raises(EscrowUnavailableError):
            await UnconfiguredEscrow().verify_escrow("0x")
        with pytest.raises(EscrowUnavailableError):
            await UnconfiguredEscrow().settlement_status("0x")
        with pytest.raises(EscrowUnavailableError):
            await UnconfiguredEscrow().settle("0x", NO_WINNER)
        with pytest.raises(EscrowUnavailableError):
            await UnconfiguredEscrow().finalize_settlement("0x")
