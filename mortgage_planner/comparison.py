from __future__ import annotations

from dataclasses import dataclass
import logging

from mortgage_planner.calculator import (
    LOAN_COMMERCIAL,
    LOAN_PROVIDENT,
    METHOD_ANNUITY,
    METHOD_EQUAL_PRINCIPAL,
    AmortizationResult,
    LoanTerms,
    calculate_equal_payment,
    calculate_equal_principal,
    empty_result,
    merge_results,
    normalize_loan_type,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ComparisonResult:
    """新贷款：等额本息 vs 等额本金 对比结果。

    字段说明：
        equal_payment: 等额本息（组合贷为合并后）的还款计划。
        equal_principal: 等额本金（组合贷为合并后）的还款计划。
        recommendation: 总利息更低的还款方式。
        saved_interest: 两种方式总利息之差的绝对值。
    """

    equal_payment: AmortizationResult
    equal_principal: AmortizationResult
    recommendation: str
    saved_interest: float

    def for_method(self, method: str) -> AmortizationResult:
        return self.equal_principal if method == METHOD_EQUAL_PRINCIPAL else self.equal_payment


def compare_methods(loan_type: str, commercial: LoanTerms, provident: LoanTerms) -> ComparisonResult:
    # 只做“放款时”的方式对比，不代表借款人当前实际使用哪种方式
    loan_type = normalize_loan_type(loan_type)
    has_commercial = loan_type != LOAN_PROVIDENT
    has_provident = loan_type != LOAN_COMMERCIAL

    if has_commercial:
        comm_epi = calculate_equal_payment(commercial.principal, commercial.annual_rate, commercial.term_months)
        comm_ep = calculate_equal_principal(commercial.principal, commercial.annual_rate, commercial.term_months)
    else:
        comm_epi = comm_ep = empty_result()

    if has_provident:
        prov_epi = calculate_equal_payment(provident.principal, provident.annual_rate, provident.term_months)
        prov_ep = calculate_equal_principal(provident.principal, provident.annual_rate, provident.term_months)
    else:
        prov_epi = prov_ep = empty_result()

    final_epi = merge_results(comm_epi, prov_epi)
    final_ep = merge_results(comm_ep, prov_ep)

    delta = final_epi.total_interest - final_ep.total_interest
    recommendation = METHOD_EQUAL_PRINCIPAL if final_ep.total_interest < final_epi.total_interest else METHOD_ANNUITY

    logger.debug(
        "compare %s: epi_interest=%.2f ep_interest=%.2f -> %s",
        loan_type,
        final_epi.total_interest,
        final_ep.total_interest,
        recommendation,
    )
    return ComparisonResult(
        equal_payment=final_epi,
        equal_principal=final_ep,
        recommendation=recommendation,
        saved_interest=abs(delta),
    )
