"""
Balance Guard Tests.

============================================================
PURPOSE
============================================================
Sell quantity clamping against the live balance.

============================================================
"""

from decimal import Decimal

import pytest

from order_gateway import (
    BalanceEntry,
    BalanceGuard,
    BalanceGuardConfig,
    BalanceSnapshot,
    BelowMinimumOrderSize,
    Credentials,
    InsufficientBalance,
    compute_adjustment,
)
from order_gateway.adapters import MockConfig, MockExchangeAdapter
from order_gateway.balance_guard import quantize_down


CREDS = Credentials(api_key="k", api_secret="s")


# ============================================================
# PURE ADJUSTMENT TESTS
# ============================================================

class TestComputeAdjustment:
    """Tests for compute_adjustment."""

    def test_sufficient_balance_keeps_request(self):
        result = compute_adjustment(Decimal("100"), Decimal("150"))

        assert result.adjusted == Decimal("100")
        assert result.was_adjusted is False

    def test_exact_balance_keeps_request(self):
        result = compute_adjustment(Decimal("100"), Decimal("100"))
        assert result.adjusted == Decimal("100")
        assert result.was_adjusted is False

    def test_short_balance_applies_safety_factor(self):
        result = compute_adjustment(Decimal("200"), Decimal("199.5"))

        assert result.adjusted == Decimal("199.3005")
        assert result.was_adjusted is True
        assert result.available == Decimal("199.5")

    def test_rounds_down_to_precision(self):
        result = compute_adjustment(Decimal("1"), Decimal("0.123456789"), precision=8)
        # 0.123456789 * 0.999 = 0.123333332211
        assert result.adjusted == Decimal("0.12333333")

    def test_never_exceeds_request(self):
        for available in ("0.5", "1", "2", "1000"):
            result = compute_adjustment(Decimal("1"), Decimal(available))
            assert result.adjusted <= Decimal("1")

    def test_zero_balance_raises(self):
        with pytest.raises(InsufficientBalance):
            compute_adjustment(Decimal("10"), Decimal("0"))

    def test_below_minimum_lot(self):
        with pytest.raises(BelowMinimumOrderSize) as exc_info:
            compute_adjustment(Decimal("2"), Decimal("1"), minimum_lot=Decimal("1.5"))

        error = exc_info.value
        assert error.adjusted == Decimal("0.999")
        assert error.minimum_lot == Decimal("1.5")
        assert error.shortfall == Decimal("1")

    def test_dust_rounds_to_zero(self):
        with pytest.raises(BelowMinimumOrderSize):
            compute_adjustment(Decimal("1"), Decimal("0.000000001"))

    def test_quantize_down(self):
        assert quantize_down(Decimal("1.99999"), 2) == Decimal("1.99")
        assert quantize_down(Decimal("5"), 0) == Decimal("5")


# ============================================================
# GUARD TESTS
# ============================================================

class TestBalanceGuard:
    """Tests for BalanceGuard against an adapter."""

    @pytest.mark.asyncio
    async def test_clamps_to_available(self):
        adapter = MockExchangeAdapter(MockConfig(balances={"XRP": Decimal("199.5")}))

        result = await BalanceGuard().adjust_sell_quantity(adapter, "XRPUSDT", Decimal("200"), CREDS)

        assert result.adjusted == Decimal("199.3005")
        assert adapter.balance_calls == 1

    @pytest.mark.asyncio
    async def test_missing_asset(self):
        adapter = MockExchangeAdapter(MockConfig(balances={"USDT": Decimal("10")}))

        with pytest.raises(InsufficientBalance) as exc_info:
            await BalanceGuard().adjust_sell_quantity(adapter, "XRPUSDT", Decimal("5"), CREDS)

        assert exc_info.value.exchange_id == "mock"
        assert exc_info.value.pair == "XRPUSDT"

    @pytest.mark.asyncio
    async def test_configured_minimum_lot(self):
        adapter = MockExchangeAdapter(MockConfig(balances={"XRP": Decimal("1")}))
        guard = BalanceGuard(BalanceGuardConfig(minimum_lots={"mock": {"XRP": Decimal("1.5")}}))

        with pytest.raises(BelowMinimumOrderSize):
            await guard.adjust_sell_quantity(adapter, "XRPUSDT", Decimal("2"), CREDS)

        assert adapter.orders == []

    def test_default_minimum_lots_and_overrides(self):
        guard = BalanceGuard(BalanceGuardConfig(
            minimum_lots={"valr": {"DOGE": Decimal("10")}},
            precision_overrides={"valr": {"XRP": 6}},
        ))

        assert guard.minimum_lot("valr", "btc") == Decimal("0.0001")
        assert guard.minimum_lot("valr", "DOGE") == Decimal("10")
        assert guard.minimum_lot("binance", "XRP") == Decimal("0")
        assert guard.precision("valr", "XRP") == 6
        assert guard.precision("valr", "BTC") == 8

    def test_kraken_legacy_asset_code(self):
        snapshot = BalanceSnapshot(
            exchange_id="kraken",
            entries=[BalanceEntry.normalized("XXBT", Decimal("0.5"))],
        )
        entry = BalanceGuard.find_entry(snapshot, "BTC", "kraken")
        assert entry is not None
        assert entry.available == Decimal("0.5")


class TestBalanceEntry:
    """Tests for balance normalization."""

    def test_total_is_available_plus_reserved(self):
        entry = BalanceEntry.normalized("XRP", Decimal("10"), Decimal("2"))
        assert entry.total == Decimal("12")

    def test_mismatched_total_replaced(self):
        entry = BalanceEntry.normalized("XRP", Decimal("10"), Decimal("2"), total=Decimal("13"))
        assert entry.total == Decimal("12")

    def test_snapshot_lookup_case_insensitive(self):
        snapshot = BalanceSnapshot(exchange_id="x", entries=[BalanceEntry.normalized("xrp", Decimal("1"))])
        assert snapshot.get("XRP") is not None
        assert snapshot.get("BTC") is None
        assert len(snapshot) == 1
