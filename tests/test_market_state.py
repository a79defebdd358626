"""Tests for MarketStateStore - snapshot lifecycle and quote bookkeeping."""

from signal_engine.arbitrage.market_state import (
    PENDING_QUESTION,
    MarketStateStore,
    SnapshotState,
    is_crypto_question,
)


class TestCryptoClassification:
    def test_crypto_keywords(self):
        assert is_crypto_question("Will BTC close above $100k?")
        assert is_crypto_question("ETH price on Friday")
        assert is_crypto_question("Will SOL climb 10%?")

    def test_non_crypto(self):
        assert not is_crypto_question("Who will win the election?")
        assert not is_crypto_question("")


class TestRegisterMarket:
    def test_populated_snapshot(self):
        store = MarketStateStore()
        snap = store.register_market("m1", "Who wins?", ["t1", "t2", "t3"], ["A", "B"])

        assert snap.state == SnapshotState.POPULATED
        assert snap.total_legs_expected == 3
        assert snap.is_neg_risk is False
        assert [leg.outcome for leg in snap.legs] == ["A", "B", "Outcome 2"]
        assert store.market_for_token("t3") == "m1"

    def test_binary_market_flags_neg_risk(self):
        store = MarketStateStore()
        snap = store.register_market("m1", "Yes or no?", ["t1", "t2"], ["Yes", "No"])
        assert snap.is_neg_risk is True

    def test_preserves_prices_seen_before_listing(self):
        store = MarketStateStore()
        store.upsert_quote("m1", "t1", 0.40, size=25)
        snap = store.register_market("m1", "Q?", ["t1", "t2"], ["Yes", "No"])

        assert snap.outcomes["t1"].price == 0.40
        assert snap.outcomes["t1"].size == 25
        assert snap.outcomes["t1"].outcome == "Yes"
        assert snap.outcomes["t2"].price == 0.0

    def test_resolved_market_stays_resolved(self):
        store = MarketStateStore()
        store.register_market("m1", "Q?", ["t1", "t2"], ["Yes", "No"])
        store.mark_resolved("m1", "t1")
        snap = store.register_market("m1", "Q?", ["t1", "t2"], ["Yes", "No"])
        assert snap.state == SnapshotState.RESOLVED
        assert snap.winning_asset_id == "t1"


class TestUpsertQuote:
    def test_placeholder_for_unseen_market(self):
        store = MarketStateStore()
        snap = store.upsert_quote("m1", "t1", 0.55)

        assert snap.state == SnapshotState.PENDING
        assert snap.question == PENDING_QUESTION
        assert snap.total_legs_expected == 2
        assert snap.is_neg_risk is True
        assert snap.is_complete is False

    def test_second_leg_completes_placeholder(self):
        store = MarketStateStore()
        store.upsert_quote("m1", "t1", 0.55)
        snap = store.upsert_quote("m1", "t2", 0.40)
        assert snap.is_complete is True
        assert len(store) == 1

    def test_updates_price_in_place(self):
        store = MarketStateStore()
        first = store.upsert_quote("m1", "t1", 0.55)
        second = store.upsert_quote("m1", "t1", 0.50, size=-3)
        assert first is second
        assert second.outcomes["t1"].price == 0.50
        assert second.outcomes["t1"].size == 0.0


class TestResolution:
    def test_mark_resolved_unknown_market(self):
        assert MarketStateStore().mark_resolved("nope") is None

    def test_resolved_markets_excluded_from_targets(self):
        store = MarketStateStore()
        store.register_market("m1", "Q1", ["t1", "t2"], [])
        store.register_market("m2", "Q2", ["t3", "t4"], [])
        store.mark_resolved("m1", "t1")

        assert store.token_targets() == {"t3": "m2", "t4": "m2"}
        stats = store.get_stats()
        assert stats["resolved"] == 1
        assert stats["populated"] == 1
