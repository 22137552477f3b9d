"""
Test suite for the CPDEX Exchange Engine

Covers:
  - Registry initialization and re-initialization
  - Pool creation (ordered pairs, duplicates, derived accounts)
  - Deposit / withdraw liquidity
  - Swaps (pricing, slippage, fee accrual, asset checks)
  - Protocol fee collection
  - Atomic rollback on ledger failures
  - Re-entrant fee collection and concurrent operations
"""

import logging
import threading

import pytest

from cpdex.constants import LP_TOKEN_DECIMALS
from cpdex.exceptions import (
    AuthorizationError,
    ConfigurationError,
    FeeCollectionError,
    InsufficientFundsError,
    InvalidTokenError,
    LedgerError,
    LiquidityError,
    NotInitializedError,
    PoolExistsError,
    PoolNotFoundError,
    SlippageError,
)
from cpdex.exchange.engine import DexEngine
from cpdex.exchange.ledger import InMemoryLedger
from cpdex.exchange.pool import SIDE_A, SIDE_B, PoolAuthority

ADMIN = "admin_0000000000000000000000000000000001"
ALICE = "alice_0000000000000000000000000000000002"
BOB = "bob___0000000000000000000000000000000003"
TREASURY = "treasury_000000000000000000000000000004"
MALLORY = "mallory_0000000000000000000000000000005"
FUNDING = 10_000_000


def fund(ledger: InMemoryLedger, account: str, *assets: str, amount: int = FUNDING) -> None:
    for asset in assets:
        ledger.ensure_account(account, asset)
        ledger.mint(asset, account, amount)


def make_engine(ledger=None, **kwargs) -> DexEngine:
    engine = DexEngine(admin=ADMIN, ledger=ledger or InMemoryLedger(), **kwargs)
    engine.initialize(ADMIN, 3, 1_000, 30, TREASURY)
    return engine


def make_pool(engine: DexEngine, deposit=(100_000, 100_000)):
    fund(engine.ledger, ALICE, "SOL", "USDC")
    pool = engine.create_pool("SOL", "USDC", owner=ALICE)
    if deposit:
        engine.deposit_liquidity(pool.pool_id, ALICE, *deposit)
    return pool


class FailingLedger(InMemoryLedger):
    """Raises on credits to one account once armed."""

    def __init__(self):
        super().__init__()
        self.fail_credit_to = None

    def credit(self, account, asset, amount):
        if account == self.fail_credit_to:
            raise LedgerError(f"credit to {account} refused")
        super().credit(account, asset, amount)


class ReentrantLedger(InMemoryLedger):
    """Calls back into collect_fees during the first credit to the collector."""

    def __init__(self):
        super().__init__()
        self.engine = None
        self.pool_id = None
        self.inner_results = []

    def credit(self, account, asset, amount):
        super().credit(account, asset, amount)
        if account == TREASURY and self.engine is not None and not self.inner_results:
            self.inner_results.append(self.engine.collect_fees(self.pool_id, ADMIN))


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

class TestInitialize:

    def test_initialize(self):
        engine = make_engine()
        assert engine.registry.fee_numerator == 3
        assert engine.registry.fee_collector == TREASURY

    def test_non_admin(self):
        engine = DexEngine(admin=ADMIN)
        with pytest.raises(AuthorizationError):
            engine.initialize(ALICE, 3, 1_000, 30, TREASURY)
        assert engine.registry is None

    def test_invalid_fees(self):
        engine = DexEngine(admin=ADMIN)
        with pytest.raises(ConfigurationError):
            engine.initialize(ADMIN, 1_000, 1_000, 30, TREASURY)

    def test_missing_admin(self):
        with pytest.raises(ConfigurationError):
            DexEngine(admin="")

    def test_operations_before_initialize(self):
        engine = DexEngine(admin=ADMIN)
        with pytest.raises(NotInitializedError):
            engine.create_pool("SOL", "USDC")

    def test_reinitialize_overwrites(self, caplog):
        engine = make_engine()
        pool = make_pool(engine, deposit=None)
        with caplog.at_level(logging.WARNING):
            engine.initialize(ADMIN, 5, 1_000, 50, BOB)
        assert "re-initialized" in caplog.text
        assert engine.registry.pools_count == 0
        assert engine.registry.fee_collector == BOB
        # Existing pools keep the schedule they were created with
        assert engine.get_pool(pool.pool_id).fee_numerator == 3

    def test_reinitialize_disabled(self):
        engine = make_engine(allow_reinitialize=False)
        with pytest.raises(ConfigurationError, match="already initialized"):
            engine.initialize(ADMIN, 5, 1_000, 50, BOB)
        assert engine.registry.fee_numerator == 3


# ---------------------------------------------------------------------------
# Pool creation
# ---------------------------------------------------------------------------

class TestCreatePool:

    def test_create_pool(self):
        engine = make_engine()
        pool = engine.create_pool("SOL", "USDC", owner=ALICE)
        assert engine.registry.pools_count == 1
        assert engine.get_pool(pool.pool_id) is pool
        assert pool.total_liquidity == 0
        assert engine.get_reserves(pool.pool_id) == (0, 0)

    def test_derived_accounts(self):
        engine = make_engine()
        pool = engine.create_pool("SOL", "USDC", owner=ALICE)
        ledger = engine.ledger
        authority = pool.authority.address
        assert ledger.owner_of(pool.vault_a_id, "SOL") == authority
        assert ledger.owner_of(pool.vault_b_id, "USDC") == authority
        assert ledger.asset_info(pool.lp_asset_id).mint_authority == authority
        assert ledger.asset_info(pool.lp_asset_id).decimals == LP_TOKEN_DECIMALS
        assert ledger.owner_of(ALICE, pool.lp_asset_id) == ALICE

    def test_duplicate_pair(self):
        engine = make_engine()
        engine.create_pool("SOL", "USDC")
        with pytest.raises(PoolExistsError):
            engine.create_pool("SOL", "USDC")
        assert engine.registry.pools_count == 1

    def test_reversed_pair_is_separate_pool(self):
        engine = make_engine()
        forward = engine.create_pool("SOL", "USDC")
        backward = engine.create_pool("USDC", "SOL")
        assert forward.pool_id != backward.pool_id
        assert engine.registry.pools_count == 2
        assert engine.find_pool("USDC", "SOL") is backward

    def test_identical_tokens(self):
        engine = make_engine()
        with pytest.raises(InvalidTokenError):
            engine.create_pool("SOL", "SOL")
        assert engine.registry.pools_count == 0

    def test_unknown_pool(self):
        engine = make_engine()
        with pytest.raises(PoolNotFoundError):
            engine.get_pool("nope")
        with pytest.raises(PoolNotFoundError):
            engine.deposit_liquidity("nope", ALICE, 1, 1)

    def test_squatted_vault_is_refused(self):
        engine = make_engine()
        authority = PoolAuthority.derive("SOL", "USDC")
        engine.ledger.ensure_account(authority.vault_id(SIDE_A), "SOL", owner=MALLORY)
        with pytest.raises(LedgerError, match="already exists"):
            engine.create_pool("SOL", "USDC", owner=ALICE)
        assert engine.registry.pools_count == 0
        assert engine.find_pool("SOL", "USDC") is None
        assert engine.ledger.asset_info(authority.lp_asset_id()) is None

    def test_refused_creation_leaves_no_ledger_records(self):
        engine = make_engine()
        authority = PoolAuthority.derive("SOL", "USDC")
        engine.ledger.ensure_account(authority.vault_id(SIDE_B), "USDC", owner=MALLORY)
        with pytest.raises(LedgerError):
            engine.create_pool("SOL", "USDC")
        assert engine.ledger.owner_of(authority.vault_id(SIDE_A), "SOL") is None
        assert engine.ledger.owner_of(authority.vault_id(SIDE_B), "USDC") == MALLORY
        assert engine.ledger.asset_info(authority.lp_asset_id()) is None

    def test_squatter_cannot_take_deposits(self):
        engine = make_engine()
        authority = PoolAuthority.derive("SOL", "USDC")
        vault_a = authority.vault_id(SIDE_A)
        engine.ledger.ensure_account(vault_a, "SOL", owner=MALLORY)
        with pytest.raises(LedgerError):
            make_pool(engine, deposit=(1_000, 1_000))
        assert engine.ledger.balance_of(ALICE, "SOL") == FUNDING
        with pytest.raises(InsufficientFundsError):
            engine.ledger.debit(vault_a, "SOL", 1, MALLORY)

    def test_unminted_lp_asset_is_claimed(self):
        engine = make_engine()
        lp_asset_id = PoolAuthority.derive("SOL", "USDC").lp_asset_id()
        engine.ledger.ensure_account(MALLORY, lp_asset_id)
        pool = engine.create_pool("SOL", "USDC")
        assert pool.lp_asset_id == lp_asset_id
        assert engine.ledger.asset_info(lp_asset_id).mint_authority == pool.authority.address
        with pytest.raises(LedgerError, match="mint authority"):
            engine.ledger.mint(lp_asset_id, MALLORY, 1, MALLORY)

    def test_minted_lp_asset_is_refused(self):
        engine = make_engine()
        lp_asset_id = PoolAuthority.derive("SOL", "USDC").lp_asset_id()
        engine.ledger.ensure_account(MALLORY, lp_asset_id)
        engine.ledger.mint(lp_asset_id, MALLORY, 5)
        with pytest.raises(LedgerError, match="already exists"):
            engine.create_pool("SOL", "USDC")
        assert engine.registry.pools_count == 0


# ---------------------------------------------------------------------------
# Liquidity
# ---------------------------------------------------------------------------

class TestLiquidity:

    def test_first_deposit(self):
        engine = make_engine()
        pool = make_pool(engine, deposit=None)
        minted = engine.deposit_liquidity(pool.pool_id, ALICE, 100, 400)
        assert minted == 200
        assert pool.total_liquidity == 200
        assert engine.lp_balance(pool.pool_id, ALICE) == 200
        assert engine.ledger.supply_of(pool.lp_asset_id) == 200
        assert engine.get_reserves(pool.pool_id) == (100, 400)
        assert engine.ledger.balance_of(ALICE, "SOL") == FUNDING - 100

    def test_proportional_deposit(self):
        engine = make_engine()
        pool = make_pool(engine, deposit=(1_000, 4_000))
        assert pool.total_liquidity == 2_000
        fund(engine.ledger, BOB, "SOL", "USDC")
        assert engine.deposit_liquidity(pool.pool_id, BOB, 100, 400) == 200
        assert pool.total_liquidity == 2_200
        assert engine.lp_balance(pool.pool_id, BOB) == 200

    def test_unbalanced_deposit_credits_weaker_side(self):
        engine = make_engine()
        pool = make_pool(engine, deposit=(1_000, 4_000))
        assert engine.deposit_liquidity(pool.pool_id, ALICE, 100, 100) == 50
        # The whole deposit still enters the vaults
        assert engine.get_reserves(pool.pool_id) == (1_100, 4_100)

    def test_zero_deposit(self):
        engine = make_engine()
        pool = make_pool(engine, deposit=None)
        with pytest.raises(LiquidityError):
            engine.deposit_liquidity(pool.pool_id, ALICE, 0, 1_000)
        assert pool.total_liquidity == 0

    def test_invalid_amount_types(self):
        engine = make_engine()
        pool = make_pool(engine, deposit=None)
        with pytest.raises(LiquidityError):
            engine.deposit_liquidity(pool.pool_id, ALICE, True, 1_000)
        with pytest.raises(LiquidityError):
            engine.deposit_liquidity(pool.pool_id, ALICE, -5, 1_000)

    def test_deposit_without_funds_rolls_back(self):
        engine = make_engine()
        pool = make_pool(engine, deposit=(1_000, 4_000))
        with pytest.raises(InsufficientFundsError):
            engine.deposit_liquidity(pool.pool_id, BOB, 100, 400)
        assert pool.total_liquidity == 2_000
        assert engine.get_reserves(pool.pool_id) == (1_000, 4_000)

    def test_partial_withdraw(self):
        engine = make_engine()
        pool = make_pool(engine, deposit=(1_000, 4_000))
        assert engine.withdraw_liquidity(pool.pool_id, ALICE, 1_000) == (500, 2_000)
        assert pool.total_liquidity == 1_000
        assert engine.lp_balance(pool.pool_id, ALICE) == 1_000
        assert engine.ledger.supply_of(pool.lp_asset_id) == 1_000
        assert engine.get_reserves(pool.pool_id) == (500, 2_000)

    def test_full_withdraw(self):
        engine = make_engine()
        pool = make_pool(engine, deposit=(100, 400))
        assert engine.withdraw_liquidity(pool.pool_id, ALICE, 200) == (100, 400)
        assert pool.total_liquidity == 0
        assert engine.get_reserves(pool.pool_id) == (0, 0)
        assert engine.ledger.balance_of(ALICE, "SOL") == FUNDING

    def test_withdraw_more_than_held(self):
        engine = make_engine()
        pool = make_pool(engine, deposit=(100, 400))
        with pytest.raises(LiquidityError, match="Insufficient liquidity"):
            engine.withdraw_liquidity(pool.pool_id, ALICE, 201)
        with pytest.raises(LiquidityError):
            engine.withdraw_liquidity(pool.pool_id, BOB, 1)
        assert pool.total_liquidity == 200
        assert engine.get_reserves(pool.pool_id) == (100, 400)
        assert engine.lp_balance(pool.pool_id, ALICE) == 200
        assert engine.lp_balance(pool.pool_id, BOB) == 0
        assert engine.ledger.supply_of(pool.lp_asset_id) == 200
        assert engine.ledger.balance_of(ALICE, "SOL") == FUNDING - 100

    def test_deposit_withdraw_round_trip_never_gains(self):
        engine = make_engine()
        pool = make_pool(engine, deposit=(1_000, 4_000))
        fund(engine.ledger, BOB, "SOL", "USDC")
        total_before = pool.total_liquidity
        for amount_a, amount_b in ((333, 1_000), (100, 400), (7, 50)):
            minted = engine.deposit_liquidity(pool.pool_id, BOB, amount_a, amount_b)
            back_a, back_b = engine.withdraw_liquidity(pool.pool_id, BOB, minted)
            assert back_a <= amount_a
            assert back_b <= amount_b
            assert pool.total_liquidity == total_before
        assert engine.ledger.balance_of(BOB, "SOL") <= FUNDING
        assert engine.ledger.balance_of(BOB, "USDC") <= FUNDING

    def test_lp_supply_matches_total_liquidity(self):
        engine = make_engine()
        pool = make_pool(engine, deposit=(1_000, 4_000))
        fund(engine.ledger, BOB, "SOL", "USDC")
        engine.deposit_liquidity(pool.pool_id, BOB, 500, 2_000)
        engine.withdraw_liquidity(pool.pool_id, ALICE, 700)
        assert engine.ledger.supply_of(pool.lp_asset_id) == pool.total_liquidity
        assert pool.total_liquidity == (
            engine.lp_balance(pool.pool_id, ALICE) + engine.lp_balance(pool.pool_id, BOB)
        )


# ---------------------------------------------------------------------------
# Swaps
# ---------------------------------------------------------------------------

class TestSwap:

    def test_reference_swap(self):
        engine = make_engine()
        pool = make_pool(engine)
        fund(engine.ledger, BOB, "SOL")
        output = engine.swap(pool.pool_id, BOB, 1_000, 987, "SOL", "USDC")
        assert output == 987
        assert engine.ledger.balance_of(BOB, "USDC") == 987
        assert engine.ledger.balance_of(BOB, "SOL") == FUNDING - 1_000
        assert engine.get_reserves(pool.pool_id) == (101_000, 99_013)
        assert pool.protocol_fees_token_a == 0

    def test_slippage_rejected_without_changes(self):
        engine = make_engine()
        pool = make_pool(engine)
        fund(engine.ledger, BOB, "SOL")
        with pytest.raises(SlippageError):
            engine.swap(pool.pool_id, BOB, 1_000, 988, "SOL", "USDC")
        assert engine.ledger.balance_of(BOB, "SOL") == FUNDING
        assert engine.get_reserves(pool.pool_id) == (100_000, 100_000)

    def test_protocol_fee_accrues_on_input_side(self):
        engine = make_engine()
        pool = make_pool(engine)
        fund(engine.ledger, BOB, "SOL", "USDC")
        assert engine.swap(pool.pool_id, BOB, 100_000, 0, "SOL", "USDC") == 49_924
        assert (pool.protocol_fees_token_a, pool.protocol_fees_token_b) == (90, 0)
        engine.swap(pool.pool_id, BOB, 100_000, 0, "USDC", "SOL")
        assert pool.protocol_fees_token_a == 90
        assert pool.protocol_fees_token_b == 90

    def test_constant_product_grows(self):
        engine = make_engine()
        pool = make_pool(engine)
        fund(engine.ledger, BOB, "SOL", "USDC")
        reserve_a, reserve_b = engine.get_reserves(pool.pool_id)
        k = reserve_a * reserve_b
        for source, destination in (("SOL", "USDC"), ("USDC", "SOL"), ("SOL", "USDC")):
            engine.swap(pool.pool_id, BOB, 5_000, 0, source, destination)
            reserve_a, reserve_b = engine.get_reserves(pool.pool_id)
            assert reserve_a * reserve_b >= k
            k = reserve_a * reserve_b

    def test_same_asset(self):
        engine = make_engine()
        pool = make_pool(engine)
        with pytest.raises(InvalidTokenError):
            engine.swap(pool.pool_id, ALICE, 1_000, 0, "SOL", "SOL")

    def test_foreign_asset(self):
        engine = make_engine()
        pool = make_pool(engine)
        with pytest.raises(InvalidTokenError):
            engine.swap(pool.pool_id, ALICE, 1_000, 0, "BTC", "USDC")

    def test_empty_pool(self):
        engine = make_engine()
        pool = make_pool(engine, deposit=None)
        with pytest.raises(LiquidityError):
            engine.swap(pool.pool_id, ALICE, 1_000, 0, "SOL", "USDC")

    def test_quote_matches_swap(self):
        engine = make_engine()
        pool = make_pool(engine)
        fund(engine.ledger, BOB, "SOL")
        quote = engine.quote_swap(pool.pool_id, 1_000, "SOL", "USDC")
        assert engine.get_reserves(pool.pool_id) == (100_000, 100_000)
        assert engine.swap(pool.pool_id, BOB, 1_000, 0, "SOL", "USDC") == quote.output_amount

    def test_pool_info(self):
        engine = make_engine()
        pool = make_pool(engine, deposit=(100, 400))
        info = engine.get_pool_info(pool.pool_id)
        assert info["reserve_a"] == 100
        assert info["reserve_b"] == 400
        assert info["lp_supply"] == 200
        assert info["total_liquidity"] == 200
        assert info["price"] == "4.00000000"
        assert info["protocol_fees_token_a"] == 0

    def test_pool_info_empty(self):
        engine = make_engine()
        pool = make_pool(engine, deposit=None)
        assert engine.get_pool_info(pool.pool_id)["price"] is None


# ---------------------------------------------------------------------------
# Fee collection
# ---------------------------------------------------------------------------

class TestCollectFees:

    def _pool_with_fees(self, engine):
        pool = make_pool(engine)
        fund(engine.ledger, BOB, "SOL", "USDC")
        engine.swap(pool.pool_id, BOB, 100_000, 0, "SOL", "USDC")
        return pool

    def test_collect(self):
        engine = make_engine()
        pool = self._pool_with_fees(engine)
        reserve_a_before, _ = engine.get_reserves(pool.pool_id)
        assert engine.collect_fees(pool.pool_id, ADMIN) == (90, 0)
        assert engine.ledger.balance_of(TREASURY, "SOL") == 90
        assert engine.get_reserves(pool.pool_id)[0] == reserve_a_before - 90
        assert (pool.protocol_fees_token_a, pool.protocol_fees_token_b) == (0, 0)

    def test_collect_twice(self):
        engine = make_engine()
        pool = self._pool_with_fees(engine)
        engine.collect_fees(pool.pool_id, ADMIN)
        assert engine.collect_fees(pool.pool_id, ADMIN) == (0, 0)
        assert engine.ledger.balance_of(TREASURY, "SOL") == 90

    def test_non_admin(self):
        engine = make_engine()
        pool = self._pool_with_fees(engine)
        with pytest.raises(AuthorizationError):
            engine.collect_fees(pool.pool_id, BOB)
        assert pool.protocol_fees_token_a == 90

    def test_strict_mode(self):
        engine = make_engine(strict_fee_collection=True)
        pool = make_pool(engine)
        with pytest.raises(FeeCollectionError):
            engine.collect_fees(pool.pool_id, ADMIN)

    def test_before_initialize(self):
        engine = DexEngine(admin=ADMIN)
        with pytest.raises(NotInitializedError):
            engine.collect_fees("any", ADMIN)

    def test_collector_follows_registry(self):
        engine = make_engine()
        pool = self._pool_with_fees(engine)
        engine.initialize(ADMIN, 3, 1_000, 30, BOB)
        engine.collect_fees(pool.pool_id, ADMIN)
        # BOB spent 100_000 SOL on the swap that produced the fees
        assert engine.ledger.balance_of(BOB, "SOL") == FUNDING - 100_000 + 90

    def test_full_withdraw_pays_out_accrued_fees(self):
        engine = make_engine()
        pool = self._pool_with_fees(engine)
        assert engine.get_reserves(pool.pool_id) == (200_000, 50_076)
        assert engine.withdraw_liquidity(pool.pool_id, ALICE, 100_000) == (200_000, 50_076)

        with pytest.raises(InsufficientFundsError):
            engine.collect_fees(pool.pool_id, ADMIN)
        assert pool.protocol_fees_token_a == 90

        # The outstanding accumulator is later paid from fresh reserves
        engine.deposit_liquidity(pool.pool_id, BOB, 1_000, 1_000)
        assert engine.collect_fees(pool.pool_id, ADMIN) == (90, 0)
        assert engine.get_reserves(pool.pool_id) == (910, 1_000)
        assert engine.ledger.balance_of(TREASURY, "SOL") == 90


# ---------------------------------------------------------------------------
# Atomicity and concurrency
# ---------------------------------------------------------------------------

class TestAtomicity:

    def test_swap_rolls_back_on_ledger_failure(self):
        ledger = FailingLedger()
        engine = make_engine(ledger=ledger)
        pool = make_pool(engine)
        fund(ledger, BOB, "SOL", "USDC")
        ledger.fail_credit_to = BOB
        with pytest.raises(LedgerError):
            engine.swap(pool.pool_id, BOB, 100_000, 0, "SOL", "USDC")
        assert ledger.balance_of(BOB, "SOL") == FUNDING
        assert engine.get_reserves(pool.pool_id) == (100_000, 100_000)
        assert pool.protocol_fees_token_a == 0

    def test_withdraw_rolls_back_on_ledger_failure(self):
        ledger = FailingLedger()
        engine = make_engine(ledger=ledger)
        pool = make_pool(engine, deposit=(1_000, 4_000))
        ledger.fail_credit_to = ALICE
        with pytest.raises(LedgerError):
            engine.withdraw_liquidity(pool.pool_id, ALICE, 1_000)
        assert pool.total_liquidity == 2_000
        assert ledger.balance_of(ALICE, pool.lp_asset_id) == 2_000
        assert ledger.supply_of(pool.lp_asset_id) == 2_000
        assert engine.get_reserves(pool.pool_id) == (1_000, 4_000)

    def test_collect_rolls_back_on_ledger_failure(self):
        ledger = FailingLedger()
        engine = make_engine(ledger=ledger)
        pool = make_pool(engine)
        fund(ledger, BOB, "SOL", "USDC")
        engine.swap(pool.pool_id, BOB, 100_000, 0, "SOL", "USDC")
        reserves = engine.get_reserves(pool.pool_id)
        ledger.fail_credit_to = TREASURY
        with pytest.raises(LedgerError):
            engine.collect_fees(pool.pool_id, ADMIN)
        assert pool.protocol_fees_token_a == 90
        assert engine.get_reserves(pool.pool_id) == reserves

    def test_reentrant_collect_pays_once(self):
        ledger = ReentrantLedger()
        engine = make_engine(ledger=ledger)
        pool = make_pool(engine)
        fund(ledger, BOB, "SOL", "USDC")
        engine.swap(pool.pool_id, BOB, 100_000, 0, "SOL", "USDC")
        ledger.engine = engine
        ledger.pool_id = pool.pool_id
        assert engine.collect_fees(pool.pool_id, ADMIN) == (90, 0)
        assert ledger.inner_results == [(0, 0)]
        assert ledger.balance_of(TREASURY, "SOL") == 90

    def test_concurrent_pool_creation(self):
        engine = make_engine()
        errors = []

        def create(i):
            try:
                engine.create_pool(f"TOKEN{i}", "USDC")
            except Exception as e:  # pragma: no cover
                errors.append(e)

        threads = [threading.Thread(target=create, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert errors == []
        assert engine.registry.pools_count == 20
        assert engine.pool_count == 20

    def test_concurrent_deposits(self):
        engine = make_engine()
        pool = make_pool(engine, deposit=(10_000, 10_000))
        users = [f"user_{i}" for i in range(10)]
        for user in users:
            fund(engine.ledger, user, "SOL", "USDC", amount=1_000)

        threads = [
            threading.Thread(
                target=engine.deposit_liquidity, args=(pool.pool_id, user, 1_000, 1_000),
            )
            for user in users
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert pool.total_liquidity == 20_000
        assert engine.ledger.supply_of(pool.lp_asset_id) == 20_000
        assert engine.get_reserves(pool.pool_id) == (20_000, 20_000)
        assert all(engine.lp_balance(pool.pool_id, u) == 1_000 for u in users)
