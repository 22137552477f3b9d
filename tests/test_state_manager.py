"""
Test suite for the CPDEX transaction envelope and state manager

Covers:
  - DexTransaction hashing, serialization and structural validation
  - Nonce enforcement and handler dispatch
  - Failure reporting through DexExecResult
  - State root and JSON persistence
"""

import pytest

from cpdex.exchange.engine import DexEngine
from cpdex.exchange.ledger import InMemoryLedger
from cpdex.exchange.state_manager import DexExecResult, DexStateManager
from cpdex.exchange.transactions import DexOpType, DexTransaction

ADMIN = "admin_0000000000000000000000000000000001"
ALICE = "alice_0000000000000000000000000000000002"
TREASURY = "treasury_000000000000000000000000000004"


class BrokenLedger(InMemoryLedger):
    """Fails every credit with a non-exchange error once broken."""

    def __init__(self):
        super().__init__()
        self.broken = False

    def credit(self, account, asset, amount):
        if self.broken:
            raise RuntimeError("storage unavailable")
        super().credit(account, asset, amount)


def make_manager() -> DexStateManager:
    return DexStateManager(DexEngine(admin=ADMIN))


def submit(mgr: DexStateManager, op_type: DexOpType, sender: str, **params) -> DexExecResult:
    tx = DexTransaction(op_type=op_type, sender=sender, nonce=mgr.get_nonce(sender), params=params)
    return mgr.process_transaction(tx)


def bootstrap(mgr: DexStateManager) -> str:
    """Initialize, create SOL/USDC, fund ALICE and deposit. Returns the pool id."""
    assert submit(
        mgr, DexOpType.INITIALIZE, ADMIN,
        fee_numerator=3, fee_denominator=1_000, protocol_fee_percentage=30,
        fee_collector=TREASURY,
    ).success
    result = submit(mgr, DexOpType.CREATE_POOL, ALICE, token_a="SOL", token_b="USDC")
    assert result.success
    ledger = mgr.engine.ledger
    for asset in ("SOL", "USDC"):
        ledger.ensure_account(ALICE, asset)
        ledger.mint(asset, ALICE, 1_000_000)
    pool_id = result.data["pool_id"]
    assert submit(
        mgr, DexOpType.DEPOSIT_LIQUIDITY, ALICE,
        pool_id=pool_id, token_a_amount=100_000, token_b_amount=100_000,
    ).data == {"lp_minted": 100_000}
    return pool_id


# ---------------------------------------------------------------------------
# Transaction envelope
# ---------------------------------------------------------------------------

class TestDexTransaction:

    def _tx(self, nonce=0, **params) -> DexTransaction:
        params = params or {"token_a": "SOL", "token_b": "USDC"}
        return DexTransaction(
            op_type=DexOpType.CREATE_POOL, sender=ALICE, nonce=nonce, params=params,
        )

    def test_hash_is_deterministic(self):
        assert self._tx().tx_hash() == self._tx().tx_hash()
        assert len(self._tx().tx_hash()) == 64

    def test_hash_covers_nonce_and_params(self):
        assert self._tx(nonce=0).tx_hash() != self._tx(nonce=1).tx_hash()
        assert self._tx().tx_hash() != self._tx(token_a="BTC", token_b="USDC").tx_hash()

    def test_json_round_trip(self):
        tx = self._tx(nonce=3)
        restored = DexTransaction.from_json(tx.to_json())
        assert restored.tx_hash() == tx.tx_hash()
        assert restored.op_type is DexOpType.CREATE_POOL

    def test_validate_missing_param(self):
        tx = self._tx(token_a="SOL")
        with pytest.raises(ValueError, match="CREATE_POOL missing param: token_b"):
            tx.validate_basic()

    def test_validate_sender_and_nonce(self):
        tx = self._tx()
        tx.sender = ""
        with pytest.raises(ValueError, match="sender"):
            tx.validate_basic()
        tx = self._tx(nonce=-1)
        with pytest.raises(ValueError, match="Nonce"):
            tx.validate_basic()

    def test_repr(self):
        assert "CREATE_POOL" in repr(self._tx())


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------

class TestProcessTransaction:

    def test_full_flow(self):
        mgr = make_manager()
        pool_id = bootstrap(mgr)

        swap = submit(
            mgr, DexOpType.SWAP, ALICE,
            pool_id=pool_id, input_amount=1_000, minimum_output_amount=987,
            source_asset="SOL", destination_asset="USDC",
        )
        assert swap.success
        assert swap.data == {"output_amount": 987}
        assert swap.logs[0]["event"] == "Swap"

        withdraw = submit(mgr, DexOpType.WITHDRAW_LIQUIDITY, ALICE, pool_id=pool_id, lp_amount=50_000)
        assert withdraw.success
        assert withdraw.data == {"token_a_amount": 50_500, "token_b_amount": 49_506}

        collect = submit(mgr, DexOpType.COLLECT_FEES, ADMIN, pool_id=pool_id)
        assert collect.data == {"token_a_amount": 0, "token_b_amount": 0}

    def test_nonces_advance_on_success(self):
        mgr = make_manager()
        bootstrap(mgr)
        assert mgr.get_nonce(ADMIN) == 1
        assert mgr.get_nonce(ALICE) == 2

    def test_wrong_nonce(self):
        mgr = make_manager()
        tx = DexTransaction(
            op_type=DexOpType.CREATE_POOL, sender=ALICE, nonce=5,
            params={"token_a": "SOL", "token_b": "USDC"},
        )
        result = mgr.process_transaction(tx)
        assert not result.success
        assert "Invalid nonce: expected 0, got 5" in result.error

    def test_failed_op_keeps_nonce_and_state(self):
        mgr = make_manager()
        pool_id = bootstrap(mgr)
        root = mgr.compute_state_root()
        nonce = mgr.get_nonce(ALICE)

        result = submit(
            mgr, DexOpType.SWAP, ALICE,
            pool_id=pool_id, input_amount=1_000, minimum_output_amount=988,
            source_asset="SOL", destination_asset="USDC",
        )
        assert not result.success
        assert result.error.startswith("SlippageError")
        assert mgr.get_nonce(ALICE) == nonce
        assert mgr.compute_state_root() == root

    def test_unauthorized_initialize(self):
        mgr = make_manager()
        result = submit(
            mgr, DexOpType.INITIALIZE, ALICE,
            fee_numerator=3, fee_denominator=1_000, protocol_fee_percentage=30,
            fee_collector=TREASURY,
        )
        assert not result.success
        assert "AuthorizationError" in result.error

    def test_structural_failure(self):
        mgr = make_manager()
        result = submit(mgr, DexOpType.SWAP, ALICE, pool_id="x")
        assert not result.success
        assert "missing param" in result.error
        assert mgr.get_nonce(ALICE) == 0

    def test_results_recorded(self):
        mgr = make_manager()
        bootstrap(mgr)
        assert len(mgr.results) == 3
        assert all(r.success for r in mgr.results)

    def test_non_string_identifiers_rejected(self):
        mgr = make_manager()
        submit(
            mgr, DexOpType.INITIALIZE, ADMIN,
            fee_numerator=3, fee_denominator=1_000, protocol_fee_percentage=30,
            fee_collector=TREASURY,
        )
        result = submit(mgr, DexOpType.CREATE_POOL, ALICE, token_a=1, token_b=2)
        assert not result.success
        assert "token_a must be a string" in result.error
        assert mgr.get_nonce(ALICE) == 0
        assert mgr.engine.pool_count == 0

    def test_unexpected_error_is_reported(self):
        mgr = DexStateManager(DexEngine(admin=ADMIN, ledger=BrokenLedger()))
        pool_id = bootstrap(mgr)
        root = mgr.compute_state_root()
        mgr.engine.ledger.broken = True

        result = submit(mgr, DexOpType.WITHDRAW_LIQUIDITY, ALICE, pool_id=pool_id, lp_amount=10)
        assert not result.success
        assert result.error.startswith("RuntimeError")
        assert mgr.get_nonce(ALICE) == 2
        assert mgr.compute_state_root() == root
        assert mgr.engine.lp_balance(pool_id, ALICE) == 100_000

    def test_results_are_bounded(self):
        mgr = DexStateManager(DexEngine(admin=ADMIN), results_limit=2)
        bootstrap(mgr)
        results = mgr.results
        assert len(results) == 2
        assert results[-1].data == {"lp_minted": 100_000}

    def test_reset_results(self):
        mgr = make_manager()
        bootstrap(mgr)
        mgr.reset_results()
        assert mgr.results == []
        assert mgr.get_nonce(ALICE) == 2


# ---------------------------------------------------------------------------
# State root and persistence
# ---------------------------------------------------------------------------

class TestStatePersistence:

    def test_state_root_changes_with_state(self):
        mgr = make_manager()
        empty_root = mgr.compute_state_root()
        pool_id = bootstrap(mgr)
        root = mgr.compute_state_root()
        assert root != empty_root
        submit(
            mgr, DexOpType.SWAP, ALICE,
            pool_id=pool_id, input_amount=1_000, minimum_output_amount=0,
            source_asset="SOL", destination_asset="USDC",
        )
        assert mgr.compute_state_root() != root

    def test_identical_histories_share_root(self):
        first, second = make_manager(), make_manager()
        bootstrap(first)
        bootstrap(second)
        assert first.compute_state_root() == second.compute_state_root()

    def test_save_and_load(self, tmp_path):
        mgr = make_manager()
        pool_id = bootstrap(mgr)
        path = tmp_path / "state" / "cpdex.json"
        mgr.save(path)

        loaded = DexStateManager.load(path, admin=ADMIN)
        assert loaded.compute_state_root() == mgr.compute_state_root()
        assert loaded.get_nonce(ALICE) == mgr.get_nonce(ALICE)
        assert loaded.engine.get_reserves(pool_id) == (100_000, 100_000)
        assert loaded.engine.registry.pools_count == 1

        # The loaded exchange keeps operating
        result = submit(
            loaded, DexOpType.SWAP, ALICE,
            pool_id=pool_id, input_amount=1_000, minimum_output_amount=987,
            source_asset="SOL", destination_asset="USDC",
        )
        assert result.success

    def test_load_missing_file(self, tmp_path):
        mgr = DexStateManager.load(tmp_path / "absent.json", admin=ADMIN)
        assert mgr.engine.registry is None
        assert mgr.engine.pool_count == 0

    def test_unsupported_version(self):
        with pytest.raises(ValueError, match="version"):
            DexStateManager.from_dict({"version": 99}, admin=ADMIN)
