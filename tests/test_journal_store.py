"""
Tests for trade_assistant/journal/sqlite_store.py: JournalStore CRUD operations.

Each test gets a fresh SQLite database under tmp_path.
"""

from datetime import datetime, timedelta, timezone

import pytest

from trade_assistant.journal.schemas import (
    AIInsight,
    NoteInput,
    PnLUpdate,
    RiskRule,
    RuleViolation,
    Trade,
)
from trade_assistant.journal.sqlite_store import (
    DuplicateTradeError,
    JournalStore,
    NoteValidationError,
    TradeNotFoundError,
)

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

# ── Fixtures ────────────────────────────────────────────────────────────────


@pytest.fixture
def store(tmp_path: object) -> JournalStore:
    """Create a fresh JournalStore with a temporary database."""
    s = JournalStore(db_path=f"{tmp_path}/test_trades.db", max_note_length=50, max_tags_per_trade=3)
    yield s  # type: ignore[misc]
    s.close()


@pytest.fixture
def user_id(store: JournalStore) -> int:
    return store.get_or_create_user("demo").id  # type: ignore[return-value]


def _make_trade(
    user_id: int,
    order_id: str | None = "1",
    symbol: str = "BTCUSDT",
    side: str = "BUY",
    price: float = 100.0,
    qty: float = 1.0,
    pnl: float = 0.0,
    opened_at: datetime = T0,
    closed_at: datetime | None = None,
    status: str = "CLOSED",
) -> Trade:
    return Trade(
        user_id=user_id,
        exchange_order_id=order_id,
        symbol=symbol,
        side=side,  # type: ignore[arg-type]
        quantity=qty,
        price=price,
        executed_qty=qty,
        pnl=pnl,
        status=status,  # type: ignore[arg-type]
        opened_at=opened_at,
        closed_at=closed_at or opened_at,
    )


# ── Users ───────────────────────────────────────────────────────────────────


class TestUsers:
    def test_get_or_create_is_idempotent(self, store: JournalStore) -> None:
        first = store.get_or_create_user("alice", auto_sync_interval=30)
        second = store.get_or_create_user("alice")
        assert first.id == second.id
        assert second.auto_sync_interval == 30
        assert second.auto_sync_enabled is False
        assert second.has_credentials is False

    def test_update_credentials(self, store: JournalStore, user_id: int) -> None:
        store.update_credentials(user_id, "enc-key", "enc-secret")
        user = store.get_user(user_id)
        assert user is not None
        assert user.encrypted_api_key == "enc-key"
        assert user.has_credentials is True

    def test_update_auto_sync_settings_partial(self, store: JournalStore, user_id: int) -> None:
        user = store.update_auto_sync_settings(user_id, enabled=True, interval=5)
        assert user.auto_sync_enabled is True
        assert user.auto_sync_interval == 5
        assert user.auto_ai_analysis is False

        user = store.update_auto_sync_settings(user_id, ai_analysis=True)
        assert user.auto_sync_enabled is True
        assert user.auto_ai_analysis is True

    def test_mark_synced_roundtrips_utc(self, store: JournalStore, user_id: int) -> None:
        store.mark_synced(user_id, T0)
        user = store.get_user(user_id)
        assert user is not None
        assert user.last_sync_at == T0

    def test_list_auto_sync_users_requires_credentials(self, store: JournalStore) -> None:
        with_keys = store.get_or_create_user("with-keys")
        without_keys = store.get_or_create_user("without-keys")
        store.update_credentials(with_keys.id, "k", "s")  # type: ignore[arg-type]
        store.update_auto_sync_settings(with_keys.id, enabled=True)  # type: ignore[arg-type]
        store.update_auto_sync_settings(without_keys.id, enabled=True)  # type: ignore[arg-type]

        users = store.list_auto_sync_users()
        assert [u.username for u in users] == ["with-keys"]


# ── Trades ──────────────────────────────────────────────────────────────────


class TestTrades:
    def test_insert_and_get(self, store: JournalStore, user_id: int) -> None:
        trade_id = store.insert_trade(_make_trade(user_id, order_id="42"))
        trade = store.get_trade(trade_id)
        assert trade is not None
        assert trade.id == trade_id
        assert trade.exchange_order_id == "42"
        assert trade.opened_at == T0

    def test_duplicate_order_id_rejected(self, store: JournalStore, user_id: int) -> None:
        store.insert_trade(_make_trade(user_id, order_id="42"))
        with pytest.raises(DuplicateTradeError):
            store.insert_trade(_make_trade(user_id, order_id="42"))

    def test_manual_trades_without_order_id_do_not_collide(
        self, store: JournalStore, user_id: int
    ) -> None:
        store.insert_trade(_make_trade(user_id, order_id=None))
        store.insert_trade(_make_trade(user_id, order_id=None))
        assert len(store.list_trades(user_id)) == 2

    def test_trade_exists(self, store: JournalStore, user_id: int) -> None:
        store.insert_trade(_make_trade(user_id, order_id="7"))
        assert store.trade_exists(user_id, "7") is True
        assert store.trade_exists(user_id, "8") is False

    def test_get_trade_scoped_to_owner(self, store: JournalStore, user_id: int) -> None:
        other = store.get_or_create_user("other")
        trade_id = store.insert_trade(_make_trade(user_id))
        assert store.get_trade(trade_id, user_id=other.id) is None
        assert store.get_trade(trade_id, user_id=user_id) is not None

    def test_list_trades_newest_first_with_filters(
        self, store: JournalStore, user_id: int
    ) -> None:
        store.insert_trade(_make_trade(user_id, "1", symbol="BTCUSDT", opened_at=T0))
        store.insert_trade(
            _make_trade(user_id, "2", symbol="ETHUSDT", opened_at=T0 + timedelta(hours=1))
        )
        store.insert_trade(
            _make_trade(user_id, "3", status="OPEN", opened_at=T0 + timedelta(hours=2))
        )

        closed = store.list_trades(user_id)
        assert [t.exchange_order_id for t in closed] == ["2", "1"]
        assert [t.exchange_order_id for t in store.list_trades(user_id, symbol="BTCUSDT")] == [
            "1"
        ]
        assert len(store.list_trades(user_id, status=None)) == 3
        assert len(store.list_trades(user_id, limit=1)) == 1

    def test_matchable_trades_exclude_manual(self, store: JournalStore, user_id: int) -> None:
        store.insert_trade(_make_trade(user_id, "2", opened_at=T0 + timedelta(minutes=1)))
        store.insert_trade(_make_trade(user_id, "1", opened_at=T0))
        store.insert_trade(_make_trade(user_id, None, opened_at=T0))

        matchable = store.get_matchable_trades(user_id)
        assert [t.exchange_order_id for t in matchable] == ["1", "2"]

    def test_apply_pnl_updates(self, store: JournalStore, user_id: int) -> None:
        trade_id = store.insert_trade(_make_trade(user_id))
        count = store.apply_pnl_updates(
            [PnLUpdate(trade_id=trade_id, pnl=12.5, pnl_percentage=2.5, exit_price=105.0)]
        )
        assert count == 1
        trade = store.get_trade(trade_id)
        assert trade is not None
        assert trade.pnl == 12.5
        assert trade.exit_price == 105.0

    def test_sum_pnl_and_recent_pnls(self, store: JournalStore, user_id: int) -> None:
        for i, pnl in enumerate([10.0, -4.0, -6.0]):
            store.insert_trade(
                _make_trade(user_id, str(i), pnl=pnl, opened_at=T0 + timedelta(hours=i))
            )

        assert store.sum_pnl_closed_between(user_id, T0) == pytest.approx(0.0)
        assert store.sum_pnl_closed_between(user_id, T0 + timedelta(hours=1)) == pytest.approx(
            -10.0
        )
        assert store.recent_closed_pnls(user_id, 2) == [-6.0, -4.0]

    def test_count_trades_opened_since(self, store: JournalStore, user_id: int) -> None:
        store.insert_trade(_make_trade(user_id, "1", opened_at=T0 - timedelta(days=1)))
        store.insert_trade(_make_trade(user_id, "2", opened_at=T0))
        assert store.count_trades_opened_since(user_id, T0) == 1

    def test_recent_symbols(self, store: JournalStore, user_id: int) -> None:
        store.insert_trade(_make_trade(user_id, "1", symbol="ETHUSDT", opened_at=T0))
        store.insert_trade(
            _make_trade(user_id, "2", symbol="BTCUSDT", opened_at=T0 + timedelta(hours=1))
        )
        store.insert_trade(
            _make_trade(user_id, "3", symbol="ETHUSDT", opened_at=T0 + timedelta(hours=2))
        )
        assert store.recent_symbols(user_id, 20) == ["ETHUSDT", "BTCUSDT"]


# ── Notes ───────────────────────────────────────────────────────────────────


class TestNotes:
    def test_upsert_creates_then_replaces(self, store: JournalStore, user_id: int) -> None:
        trade_id = store.insert_trade(_make_trade(user_id))
        first = store.upsert_note(trade_id, NoteInput(note="first", tags=["a"], setup="Scalp"))
        second = store.upsert_note(trade_id, NoteInput(note="second", setup=""))

        assert first.id == second.id
        assert second.note == "second"
        assert second.tags == []
        assert second.setup is None

    def test_tags_are_trimmed(self, store: JournalStore, user_id: int) -> None:
        trade_id = store.insert_trade(_make_trade(user_id))
        note = store.upsert_note(trade_id, NoteInput(tags=[" btc ", "", "  "]))
        assert note.tags == ["btc"]

    def test_note_too_long_rejected(self, store: JournalStore, user_id: int) -> None:
        trade_id = store.insert_trade(_make_trade(user_id))
        with pytest.raises(NoteValidationError, match="50 characters"):
            store.upsert_note(trade_id, NoteInput(note="x" * 51))

    def test_too_many_tags_rejected(self, store: JournalStore, user_id: int) -> None:
        trade_id = store.insert_trade(_make_trade(user_id))
        with pytest.raises(NoteValidationError, match="Too many tags"):
            store.upsert_note(trade_id, NoteInput(tags=["a", "b", "c", "d"]))

    def test_note_for_missing_trade(self, store: JournalStore) -> None:
        with pytest.raises(TradeNotFoundError):
            store.upsert_note(999, NoteInput(note="orphan"))

    def test_get_notes_for_trades(self, store: JournalStore, user_id: int) -> None:
        a = store.insert_trade(_make_trade(user_id, "1"))
        b = store.insert_trade(_make_trade(user_id, "2"))
        store.upsert_note(a, NoteInput(note="noted"))
        notes = store.get_notes_for_trades([a, b])
        assert set(notes) == {a}
        assert store.get_notes_for_trades([]) == {}


# ── Risk Rules ──────────────────────────────────────────────────────────────


class TestRiskRules:
    def test_insert_and_update(self, store: JournalStore, user_id: int) -> None:
        rule = store.insert_risk_rule(
            RiskRule(user_id=user_id, rule_type="DAILY_LOSS", limit_value=100)
        )
        assert rule.id is not None

        assert store.update_risk_rule(rule.id, user_id, limit_value=50, is_active=False) is True
        assert store.get_risk_rules(user_id, active_only=True) == []
        assert store.get_risk_rules(user_id)[0].limit_value == 50

    def test_update_other_users_rule_fails(self, store: JournalStore, user_id: int) -> None:
        other = store.get_or_create_user("other")
        rule = store.insert_risk_rule(
            RiskRule(user_id=user_id, rule_type="MAX_TRADES", limit_value=10)
        )
        assert store.update_risk_rule(rule.id, other.id, limit_value=1) is False

    def test_log_violation(self, store: JournalStore, user_id: int) -> None:
        rule = store.insert_risk_rule(
            RiskRule(user_id=user_id, rule_type="DAILY_LOSS", limit_value=100)
        )
        store.log_violation(
            RuleViolation(
                user_id=user_id,
                rule_id=rule.id,  # type: ignore[arg-type]
                current_value=120,
                limit_value=100,
                description="Daily loss limit exceeded",
            )
        )
        violations = store.get_violations(user_id)
        assert len(violations) == 1
        assert violations[0].current_value == 120


# ── AI Insights ─────────────────────────────────────────────────────────────


class TestInsights:
    def test_latest_insight_per_trade(self, store: JournalStore, user_id: int) -> None:
        trade_id = store.insert_trade(_make_trade(user_id))
        store.save_insight(
            AIInsight(
                user_id=user_id,
                trade_id=trade_id,
                insight_type="TRADE_SUMMARY",
                content={"v": 1},
                created_at=T0,
            )
        )
        store.save_insight(
            AIInsight(
                user_id=user_id,
                trade_id=trade_id,
                insight_type="TRADE_SUMMARY",
                content={"v": 2},
                created_at=T0 + timedelta(minutes=1),
            )
        )

        latest = store.latest_insight(user_id, "TRADE_SUMMARY", trade_id=trade_id)
        assert latest is not None
        assert latest.content == {"v": 2}
        assert store.latest_insight(user_id, "WEEKLY_REPORT") is None

    def test_list_insights_by_type(self, store: JournalStore, user_id: int) -> None:
        store.save_insight(
            AIInsight(user_id=user_id, insight_type="PATTERN_DETECTION", content=[{"a": 1}])
        )
        store.save_insight(AIInsight(user_id=user_id, insight_type="WEEKLY_REPORT", content={}))
        patterns = store.list_insights(user_id, "PATTERN_DETECTION")
        assert len(patterns) == 1
        assert patterns[0].content == [{"a": 1}]
