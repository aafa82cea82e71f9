"""
Eligibility Engine Tests.

Tests cover:
- IPO qualification boundary and check ordering
- Block-trade thresholds
- Board risk scoring priority
- Malformed input
"""

from decimal import Decimal

import pytest

from ledger_engine import BlockTradeConfig, BoardConfig, EligibilityEngine, RiskLevel


@pytest.fixture
def engine():
    return EligibilityEngine()


# =============================================================
# TEST: IPO Qualification
# =============================================================

class TestIPOQualification:

    def test_one_day_short_is_denied(self, engine):
        """qualificationDays - 1 trade days fails the first check."""
        decision = engine.check_ipo_qualification(19, Decimal("50000"), Decimal("10000"))

        assert decision.approved is False
        assert "trade days" in decision.reason

    def test_exactly_qualification_days_passes(self, engine):
        decision = engine.check_ipo_qualification(20, Decimal("50000"), Decimal("10000"))

        assert decision.approved is True

    def test_trade_days_reported_before_balance(self, engine):
        """First failing condition determines the reason."""
        decision = engine.check_ipo_qualification(5, Decimal("0"), Decimal("10000"))

        assert "trade days" in decision.reason

    def test_insufficient_balance(self, engine):
        decision = engine.check_ipo_qualification(30, Decimal("5000"), Decimal("10000"))

        assert decision.approved is False
        assert "balance" in decision.reason

    def test_apply_amount_over_limit(self, engine):
        decision = engine.check_ipo_qualification(30, Decimal("2000000"), Decimal("1500000"))

        assert decision.approved is False
        assert "limit" in decision.reason

    def test_negative_input_raises(self, engine):
        with pytest.raises(ValueError):
            engine.check_ipo_qualification(-1, Decimal("100"), Decimal("10"))


# =============================================================
# TEST: Block Trade Matching
# =============================================================

class TestBlockTradeMatching:

    def test_matches_when_all_thresholds_met(self, engine):
        decision = engine.match_block_trade(Decimal("200"), 10000, Decimal("0.05"))

        assert decision.approved is True

    def test_amount_below_minimum(self, engine):
        decision = engine.match_block_trade(Decimal("100"), 10000, Decimal("0"))

        assert decision.approved is False
        assert "below block minimum" in decision.reason

    def test_quantity_below_minimum_lot(self, engine):
        """2.7M notional passes the amount check but 9000 < 10000 lot."""
        decision = engine.match_block_trade(Decimal("300"), 9000, Decimal("0"))

        assert decision.approved is False
        assert "minimum lot" in decision.reason

    def test_discount_too_deep(self, engine):
        decision = engine.match_block_trade(Decimal("200"), 10000, Decimal("0.15"))

        assert decision.approved is False
        assert "discount" in decision.reason

    def test_market_lot_comes_from_config(self):
        engine = EligibilityEngine(block=BlockTradeConfig(min_quantity=5000))

        decision = engine.match_block_trade(Decimal("300"), 9000, Decimal("0"))

        assert decision.approved is True


# =============================================================
# TEST: Board Risk Scoring
# =============================================================

class TestBoardRiskScoring:

    def test_manual_threshold_dominates_medium_risk(self):
        """90000 with an 80000 manual threshold is never auto-approved."""
        engine = EligibilityEngine(board=BoardConfig(
            daily_user_quota=Decimal("100000"),
            manual_approval_threshold=Decimal("80000"),
            risk_amount_threshold=Decimal("50000"),
        ))
        decision = engine.score_board_risk(Decimal("90000"), Decimal("0"), 0)

        assert decision.approved is False
        assert decision.manual_required is True
        assert decision.reason == "exceeds manual-approval threshold"

    def test_quota_checked_first(self, engine):
        decision = engine.score_board_risk(Decimal("60000"), Decimal("50000"), 5)

        assert decision.approved is False
        assert decision.manual_required is True
        assert decision.reason.startswith("exceeds daily quota")

    def test_limit_up_streak_is_high_risk(self, engine):
        decision = engine.score_board_risk(Decimal("10000"), Decimal("0"), 3)

        assert decision.approved is False
        assert decision.manual_required is True
        assert decision.risk_level is RiskLevel.HIGH
        assert decision.reason == "high risk: 3+ consecutive limit-up days"

    def test_medium_risk_auto_approved(self, engine):
        decision = engine.score_board_risk(Decimal("60000"), Decimal("0"), 2)

        assert decision.approved is True
        assert decision.manual_required is False
        assert decision.risk_level is RiskLevel.MEDIUM

    def test_low_risk_auto_approved(self, engine):
        decision = engine.score_board_risk(Decimal("10000"), Decimal("0"), 0)

        assert decision.approved is True
        assert decision.risk_level is RiskLevel.LOW

    def test_decision_round_trips_through_dict(self, engine):
        decision = engine.score_board_risk(Decimal("60000"), Decimal("0"), 0)
        assert type(decision).from_dict(decision.to_dict()) == decision
