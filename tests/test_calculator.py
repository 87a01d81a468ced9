import pytest

from mortgage_planner.calculator import (
    METHOD_ANNUITY,
    METHOD_EQUAL_PRINCIPAL,
    aggregate_interest_by_year,
    annuity_payment,
    annuity_principal,
    annuity_term,
    build_schedule,
    calculate_equal_payment,
    calculate_equal_principal,
    empty_result,
    merge_results,
    monthly_rate,
    normalize_loan_type,
    normalize_method,
)
from mortgage_planner.exceptions import InputError


class TestAnnuityPayment:
    def test_standard_loan(self):
        """1,000,000 at 3.5% over 20 years."""
        pmt = annuity_payment(1_000_000, monthly_rate(3.5), 240)
        assert pmt == pytest.approx(5799.60, abs=0.05)

    def test_zero_rate(self):
        assert annuity_payment(120_000, 0.0, 120) == pytest.approx(1000.0)

    def test_zero_months(self):
        assert annuity_payment(120_000, monthly_rate(3.5), 0) == 0.0

    def test_principal_inverts_payment(self):
        rate = monthly_rate(4.1)
        pmt = annuity_payment(800_000, rate, 300)
        assert annuity_principal(pmt, rate, 300) == pytest.approx(800_000)

    def test_principal_zero_rate(self):
        assert annuity_principal(1000.0, 0.0, 120) == pytest.approx(120_000)


class TestAnnuityTerm:
    def test_inverts_payment(self):
        rate = monthly_rate(3.5)
        pmt = annuity_payment(1_000_000, rate, 240)
        assert annuity_term(1_000_000, rate, pmt) == 240

    def test_rounds_up_partial_month(self):
        rate = monthly_rate(3.5)
        pmt = annuity_payment(1_000_000, rate, 240)
        assert annuity_term(1_000_100, rate, pmt) == 241

    def test_payment_below_interest(self):
        # 月利息 2916.67，月供 2000 永远还不清
        assert annuity_term(1_000_000, monthly_rate(3.5), 2000) is None

    def test_paid_off(self):
        assert annuity_term(0, monthly_rate(3.5), 5000) == 0

    def test_zero_rate(self):
        assert annuity_term(10_500, 0.0, 1000) == 11


class TestEqualPayment:
    def test_reference_schedule(self, commercial_terms):
        result = calculate_equal_payment(
            commercial_terms.principal, commercial_terms.annual_rate, commercial_terms.term_months
        )
        assert result.term_months == 240
        assert result.first_month_payment == pytest.approx(5799.60, abs=0.05)
        assert result.last_month_payment == result.first_month_payment
        assert result.total_interest == pytest.approx(391_903, abs=15)
        assert result.monthly_decrease is None

    def test_totals_are_consistent(self, commercial_terms):
        result = calculate_equal_payment(1_000_000, 3.5, 240)
        assert result.total_payment == pytest.approx(result.total_principal + result.total_interest)
        assert sum(row.principal for row in result.schedule) == pytest.approx(1_000_000, abs=1e-3)
        assert sum(row.interest for row in result.schedule) == pytest.approx(result.total_interest)

    def test_final_balance_near_zero(self):
        result = calculate_equal_payment(1_000_000, 3.5, 240)
        assert result.schedule[-1].balance == pytest.approx(0.0, abs=1e-3)

    def test_balance_decreases(self):
        result = calculate_equal_payment(1_000_000, 3.5, 240)
        for i in range(1, 239):
            assert result.schedule[i].balance < result.schedule[i - 1].balance

    def test_zero_principal_is_empty(self):
        result = calculate_equal_payment(0, 3.5, 240)
        assert result.is_empty
        assert result.first_month_payment == 0.0

    def test_zero_rate(self):
        result = calculate_equal_payment(120_000, 0.0, 120)
        assert result.first_month_payment == pytest.approx(1000.0)
        assert result.total_interest == 0.0

    def test_principal_plus_interest_equals_payment(self):
        result = calculate_equal_payment(1_000_000, 3.5, 240)
        for row in result.schedule:
            assert row.principal + row.interest == pytest.approx(result.first_month_payment)


class TestEqualPrincipal:
    def test_reference_schedule(self):
        result = calculate_equal_principal(1_000_000, 3.5, 240)
        assert result.first_month_payment == pytest.approx(4166.667 + 2916.667, abs=0.01)
        assert result.monthly_decrease == pytest.approx(1_000_000 / 240 * monthly_rate(3.5))
        # 总利息 = P*r*(n+1)/2
        assert result.total_interest == pytest.approx(1_000_000 * monthly_rate(3.5) * 241 / 2)

    def test_constant_principal(self):
        result = calculate_equal_principal(1_200_000, 3.5, 240)
        assert all(row.principal == pytest.approx(5000.0) for row in result.schedule)

    def test_payment_decreases(self):
        result = calculate_equal_principal(1_000_000, 3.5, 240)
        assert result.last_month_payment < result.first_month_payment

    def test_single_month(self):
        result = calculate_equal_principal(10_000, 3.5, 1)
        assert result.term_months == 1
        assert result.monthly_decrease == 0.0

    def test_less_interest_than_equal_payment(self):
        ep = calculate_equal_principal(1_000_000, 3.5, 240)
        epi = calculate_equal_payment(1_000_000, 3.5, 240)
        assert ep.total_interest < epi.total_interest

    def test_principal_portions_sum_to_principal(self):
        result = calculate_equal_principal(1_000_000, 3.5, 240)
        assert sum(row.principal for row in result.schedule) == pytest.approx(1_000_000)

    def test_balance_never_increases(self):
        result = calculate_equal_principal(1_000_000, 3.5, 240)
        for i in range(1, 240):
            assert result.schedule[i].balance <= result.schedule[i - 1].balance
        assert result.schedule[-1].balance == pytest.approx(0.0, abs=1e-6)


class TestBuildSchedule:
    def test_dispatches_on_method(self):
        assert build_schedule(1_000_000, 3.5, 240, "ep").monthly_decrease is not None
        assert build_schedule(1_000_000, 3.5, 240, "annuity").monthly_decrease is None

    def test_invalid_method(self):
        with pytest.raises(InputError):
            build_schedule(1_000_000, 3.5, 240, "balloon")


class TestNormalize:
    def test_method_aliases(self):
        assert normalize_method(" EPI ") == METHOD_ANNUITY
        assert normalize_method("principal") == METHOD_EQUAL_PRINCIPAL

    def test_method_error_is_value_error(self):
        with pytest.raises(ValueError):
            normalize_method("")

    def test_loan_type(self):
        assert normalize_loan_type("Combo") == "combo"
        with pytest.raises(InputError):
            normalize_loan_type("mixed")


class TestMergeResults:
    def test_both_empty(self):
        assert merge_results(empty_result(), empty_result()).is_empty

    def test_merge_with_empty_is_identity(self):
        single = calculate_equal_payment(1_000_000, 3.5, 240)
        merged = merge_results(single, empty_result())
        assert merged.term_months == single.term_months
        assert merged.total_interest == pytest.approx(single.total_interest)
        assert merged.total_payment == pytest.approx(single.total_payment)
        assert [row.payment for row in merged.schedule] == [row.payment for row in single.schedule]

    def test_composite_first_payment_is_sum(self, commercial_terms, provident_terms):
        comm = calculate_equal_payment(*_args(commercial_terms))
        prov = calculate_equal_payment(*_args(provident_terms))
        merged = merge_results(comm, prov)
        assert merged.first_month_payment == pytest.approx(comm.first_month_payment + prov.first_month_payment)
        assert merged.total_interest == pytest.approx(comm.total_interest + prov.total_interest)

    def test_shorter_leg_contributes_zero(self, commercial_terms, provident_terms):
        comm = calculate_equal_payment(*_args(commercial_terms))
        prov = calculate_equal_payment(*_args(provident_terms))
        merged = merge_results(comm, prov)
        assert merged.term_months == 240
        row = merged.schedule[200]
        assert row.provident_payment == 0.0
        assert row.payment == pytest.approx(comm.schedule[200].payment)
        assert merged.schedule[0].commercial_payment == pytest.approx(comm.first_month_payment)

    def test_monthly_decrease_drops_when_leg_ends(self, commercial_terms, provident_terms):
        comm = calculate_equal_payment(*_args(commercial_terms))
        prov = calculate_equal_payment(*_args(provident_terms))
        merged = merge_results(comm, prov)
        assert merged.last_month_payment == pytest.approx(comm.last_month_payment)
        assert merged.monthly_decrease == pytest.approx(0.0)

    @pytest.mark.parametrize("build", [calculate_equal_payment, calculate_equal_principal])
    def test_thirty_year_combo_first_payment(self, build):
        # 商贷 60 万 4.0% + 公积金 30 万 2.6%，均 30 年
        comm = build(600_000, 4.0, 360)
        prov = build(300_000, 2.6, 360)
        merged = merge_results(comm, prov)
        assert merged.term_months == 360
        assert merged.first_month_payment == pytest.approx(comm.first_month_payment + prov.first_month_payment)
        assert merged.schedule[0].commercial_payment == pytest.approx(comm.first_month_payment)
        assert merged.schedule[0].provident_payment == pytest.approx(prov.first_month_payment)


class TestAggregateInterestByYear:
    def test_year_buckets(self):
        result = calculate_equal_payment(1_000_000, 3.5, 240)
        yearly = aggregate_interest_by_year(result.schedule)
        assert sorted(yearly) == list(range(1, 21))
        assert sum(yearly.values()) == pytest.approx(result.total_interest)
        assert yearly[1] > yearly[20]

    def test_partial_last_year(self):
        result = calculate_equal_payment(100_000, 3.5, 18)
        assert sorted(aggregate_interest_by_year(result.schedule)) == [1, 2]


def _args(terms):
    return terms.principal, terms.annual_rate, terms.term_months
