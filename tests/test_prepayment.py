import pytest

from mortgage_planner.calculator import METHOD_ANNUITY, METHOD_EQUAL_PRINCIPAL
from mortgage_planner.exceptions import InputError
from mortgage_planner.prepayment import (
    ACTION_CHANGE_METHOD,
    ACTION_REDUCE,
    ACTION_SHORTEN,
    CompositeLoanState,
    LoanPart,
    calculate_method_change,
    calculate_prepayment,
    resolve_target,
)


class TestShorten:
    def test_keeps_payment_and_shortens_term(self, commercial_state):
        result = calculate_prepayment(commercial_state, 200_000, ACTION_SHORTEN)
        assert result.new_term_months < 240
        assert result.saved_months == 240 - result.new_term_months
        assert result.new_monthly_payment <= result.old_monthly_payment + 1e-6
        assert result.new_monthly_payment == pytest.approx(result.old_monthly_payment, rel=0.02)
        assert result.saved_interest > 0
        assert result.prepay_amount == 200_000

    def test_equal_principal_keeps_monthly_principal(self, equal_principal_state):
        result = calculate_prepayment(equal_principal_state, 300_000, ACTION_SHORTEN)
        assert result.new_term_months == 180
        assert result.saved_months == 60
        assert result.new_schedule.schedule[0].principal == pytest.approx(5000.0)

    def test_zero_prepayment_saves_nothing(self, commercial_state):
        result = calculate_prepayment(commercial_state, 0, ACTION_SHORTEN)
        assert result.saved_interest == pytest.approx(0.0, abs=1e-6)

    def test_prepay_more_than_principal(self, commercial_state):
        result = calculate_prepayment(commercial_state, 5_000_000, ACTION_SHORTEN)
        assert result.prepay_amount == 1_000_000
        assert result.new_schedule.is_empty
        assert result.new_monthly_payment == 0.0
        assert result.new_term_months == 0
        assert result.saved_interest == pytest.approx(result.old_total_interest)


class TestReduce:
    def test_preserves_term(self, commercial_state):
        result = calculate_prepayment(commercial_state, 200_000, ACTION_REDUCE)
        assert result.new_term_months == 240
        assert result.saved_months == 0
        assert result.new_monthly_payment == pytest.approx(result.old_monthly_payment * 0.8)
        assert result.saved_interest > 0

    def test_shorten_saves_more_than_reduce(self, commercial_state):
        shorten = calculate_prepayment(commercial_state, 200_000, ACTION_SHORTEN)
        reduce = calculate_prepayment(commercial_state, 200_000, ACTION_REDUCE)
        assert shorten.saved_interest > reduce.saved_interest


class TestComposite:
    def test_only_target_leg_changes(self, combo_state):
        result = calculate_prepayment(combo_state, 100_000, ACTION_REDUCE, target="provident")
        old_row = result.old_schedule.schedule[0]
        new_row = result.new_schedule.schedule[0]
        assert new_row.commercial_payment == pytest.approx(old_row.commercial_payment)
        assert new_row.provident_payment < old_row.provident_payment
        assert result.target == "provident"
        assert result.new_term_months == 180

    def test_monthly_payment_is_sum_of_legs(self, combo_state):
        result = calculate_prepayment(combo_state, 100_000, ACTION_SHORTEN, target="commercial")
        first = result.old_schedule.schedule[0]
        assert result.old_monthly_payment == pytest.approx(first.commercial_payment + first.provident_payment)

    def test_single_loan_ignores_target(self, commercial_state):
        result = calculate_prepayment(commercial_state, 100_000, ACTION_SHORTEN, target="provident")
        assert result.target == "commercial"
        # 公积金那一笔不存在，合并结果只有商贷
        assert result.old_schedule.total_principal == pytest.approx(1_000_000)

    def test_invalid_target(self, combo_state):
        with pytest.raises(InputError):
            resolve_target(combo_state, "both")


class TestValidation:
    def test_unknown_action(self, commercial_state):
        with pytest.raises(InputError):
            calculate_prepayment(commercial_state, 100_000, "skip")

    def test_negative_amount(self, commercial_state):
        with pytest.raises(ValueError):
            calculate_prepayment(commercial_state, -1, ACTION_SHORTEN)


class TestMethodChange:
    def test_equal_payment_to_equal_principal_saves(self, commercial_state):
        result = calculate_method_change(commercial_state)
        assert result.action == ACTION_CHANGE_METHOD
        assert result.saved_interest > 0
        assert result.new_term_months == 240
        assert result.new_monthly_payment > result.old_monthly_payment

    def test_round_trip(self):
        part = LoanPart(800_000, 4.0, 300, METHOD_ANNUITY)
        forward = calculate_method_change(CompositeLoanState("commercial", part, LoanPart(0, 0, 0)))
        switched = LoanPart(800_000, 4.0, 300, METHOD_EQUAL_PRINCIPAL)
        back = calculate_method_change(CompositeLoanState("commercial", switched, LoanPart(0, 0, 0)))
        assert back.saved_interest < 0
        assert forward.saved_interest == pytest.approx(-back.saved_interest)
        assert back.new_total_interest == pytest.approx(forward.old_total_interest)
