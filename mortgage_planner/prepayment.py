from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple
import logging

from mortgage_planner.calculator import (
    LOAN_COMBO,
    LOAN_COMMERCIAL,
    LOAN_PROVIDENT,
    METHOD_ANNUITY,
    METHOD_EQUAL_PRINCIPAL,
    AmortizationResult,
    annuity_term,
    build_schedule,
    ceil_months,
    calculate_equal_payment,
    calculate_equal_principal,
    empty_result,
    merge_results,
    monthly_rate,
    normalize_loan_type,
    normalize_method,
)
from mortgage_planner.exceptions import InputError


logger = logging.getLogger(__name__)

ACTION_SHORTEN = "shorten"
ACTION_REDUCE = "reduce"
ACTION_CHANGE_METHOD = "change_method"


@dataclass(frozen=True)
class LoanPart:
    """存量贷款中的一笔（商贷或公积金）。

    字段说明：
        principal: 当前剩余本金（单位：元）。
        annual_rate: 年利率（百分比）。
        term_months: 当前剩余期数（月）。
        method: 当前实际使用的还款方式。
    """

    principal: float
    annual_rate: float
    term_months: int
    method: str = METHOD_ANNUITY


@dataclass(frozen=True)
class CompositeLoanState:
    """借款人“正在还”的贷款状态（与放款时的对比无关）。"""

    loan_type: str
    commercial: LoanPart
    provident: LoanPart

    @property
    def has_commercial(self) -> bool:
        return self.loan_type in (LOAN_COMMERCIAL, LOAN_COMBO)

    @property
    def has_provident(self) -> bool:
        return self.loan_type in (LOAN_PROVIDENT, LOAN_COMBO)


@dataclass(frozen=True)
class PrepaymentResult:
    """提前还款 / 变更还款方式的前后对比。

    字段说明：
        action: shorten（缩短年限）/ reduce（减少月供）/ change_method（变更还款方式）。
        target: 实际被调整的那一笔贷款（commercial / provident）。
        old_monthly_payment / new_monthly_payment: 调整前后两笔合计的首月月供。
        new_term_months: 被调整那一笔的新期数。
        saved_months: 被调整那一笔缩短的期数（仅 shorten 有意义）。
        old_total_interest / new_total_interest: 调整前后两笔合计的剩余总利息。
        saved_interest: 节省利息。prepayment 下不小于 0；change_method 下可能为负（利息增加）。
        prepay_amount: 实际生效的提前还款金额（不超过该笔剩余本金）。
        old_schedule / new_schedule: 调整前后合并后的还款计划，供导出与图表使用。
    """

    action: str
    target: str
    old_monthly_payment: float
    new_monthly_payment: float
    new_term_months: int
    saved_months: int
    old_total_interest: float
    new_total_interest: float
    saved_interest: float
    prepay_amount: float
    old_schedule: AmortizationResult
    new_schedule: AmortizationResult


def calculate_part_schedule(part: LoanPart) -> AmortizationResult:
    return build_schedule(part.principal, part.annual_rate, part.term_months, part.method)


def resolve_target(state: CompositeLoanState, target: str) -> str:
    # 单一贷款类型时强制指向唯一存在的那一笔；组合贷才使用调用方指定的目标
    loan_type = normalize_loan_type(state.loan_type)
    if loan_type == LOAN_COMMERCIAL:
        return LOAN_COMMERCIAL
    if loan_type == LOAN_PROVIDENT:
        return LOAN_PROVIDENT
    normalized = (target or "").strip().lower()
    if normalized not in (LOAN_COMMERCIAL, LOAN_PROVIDENT):
        raise InputError(f"unsupported prepayment target: {target}")
    return normalized


def _baseline(state: CompositeLoanState) -> Tuple[AmortizationResult, AmortizationResult]:
    commercial = calculate_part_schedule(state.commercial) if state.has_commercial else empty_result()
    provident = calculate_part_schedule(state.provident) if state.has_provident else empty_result()
    return commercial, provident


def _shorten_part(part: LoanPart, method: str, new_principal: float) -> AmortizationResult:
    if new_principal <= 0:
        return empty_result()

    if method == METHOD_EQUAL_PRINCIPAL:
        # 等额本金：保持原每月归还本金不变，倒推期数
        old_monthly_principal = part.principal / part.term_months
        new_months = ceil_months(new_principal / old_monthly_principal)
        return calculate_equal_principal(new_principal, part.annual_rate, new_months)

    # 等额本息：保持原月供不变，倒推期数
    old_payment = calculate_equal_payment(part.principal, part.annual_rate, part.term_months).first_month_payment
    new_months = annuity_term(new_principal, monthly_rate(part.annual_rate), old_payment)
    if new_months is None:
        # 新本金的月利息已不低于原月供，无法按原月供缩短，退回原期限
        logger.debug("shorten infeasible for principal=%.2f payment=%.2f, keep term", new_principal, old_payment)
        return calculate_equal_payment(new_principal, part.annual_rate, part.term_months)
    return calculate_equal_payment(new_principal, part.annual_rate, new_months)


def _prepay_part(part: LoanPart, prepay_amount: float, action: str) -> AmortizationResult:
    method = normalize_method(part.method)
    new_principal = max(part.principal - prepay_amount, 0.0)
    if action == ACTION_REDUCE:
        # 期限不变，按新本金重新摊还
        return build_schedule(new_principal, part.annual_rate, part.term_months, method)
    if part.principal <= 0 or part.term_months <= 0:
        return empty_result()
    return _shorten_part(part, method, new_principal)


def calculate_prepayment(
    state: CompositeLoanState,
    prepay_amount: float,
    action: str,
    target: str = LOAN_COMMERCIAL,
) -> PrepaymentResult:
    # 主流程：
    # 1) 确定实际调整的那一笔
    # 2) 计算两笔的基准（当前）还款计划
    # 3) 只对目标那一笔应用提前还款，另一笔保持不变
    # 4) 合并两笔得到前后对比
    if action not in (ACTION_SHORTEN, ACTION_REDUCE):
        raise InputError(f"unsupported prepayment action: {action}")
    if prepay_amount < 0:
        raise InputError("prepay_amount must be >= 0")

    effective_target = resolve_target(state, target)
    comm_old, prov_old = _baseline(state)
    comm_new, prov_new = comm_old, prov_old

    if effective_target == LOAN_COMMERCIAL:
        part = state.commercial
        comm_new = _prepay_part(part, prepay_amount, action)
        modified_old, modified_new = comm_old, comm_new
    else:
        part = state.provident
        prov_new = _prepay_part(part, prepay_amount, action)
        modified_old, modified_new = prov_old, prov_new

    saved_months = 0
    if action == ACTION_SHORTEN:
        saved_months = max(0, modified_old.term_months - modified_new.term_months)

    old_merged = merge_results(comm_old, prov_old)
    new_merged = merge_results(comm_new, prov_new)

    logger.debug(
        "prepayment %s on %s: amount=%.2f months %d -> %d",
        action,
        effective_target,
        prepay_amount,
        modified_old.term_months,
        modified_new.term_months,
    )
    return PrepaymentResult(
        action=action,
        target=effective_target,
        old_monthly_payment=comm_old.first_month_payment + prov_old.first_month_payment,
        new_monthly_payment=comm_new.first_month_payment + prov_new.first_month_payment,
        new_term_months=modified_new.term_months,
        saved_months=saved_months,
        old_total_interest=old_merged.total_interest,
        new_total_interest=new_merged.total_interest,
        # 截断浮点误差：提前还款不会增加利息
        saved_interest=max(0.0, old_merged.total_interest - new_merged.total_interest),
        prepay_amount=min(prepay_amount, max(part.principal, 0.0)),
        old_schedule=old_merged,
        new_schedule=new_merged,
    )


def calculate_method_change(state: CompositeLoanState, target: str = LOAN_COMMERCIAL) -> PrepaymentResult:
    """把目标那一笔在等额本息 / 等额本金之间切换，按原本金、利率、期数重新计算整套计划。

    saved_interest 带符号：等额本金改等额本息通常会让总利息增加（为负数）。
    """
    effective_target = resolve_target(state, target)
    comm_old, prov_old = _baseline(state)
    comm_new, prov_new = comm_old, prov_old

    part = state.commercial if effective_target == LOAN_COMMERCIAL else state.provident
    new_method = METHOD_EQUAL_PRINCIPAL if normalize_method(part.method) == METHOD_ANNUITY else METHOD_ANNUITY
    switched = build_schedule(part.principal, part.annual_rate, part.term_months, new_method)
    if effective_target == LOAN_COMMERCIAL:
        comm_new = switched
    else:
        prov_new = switched

    old_merged = merge_results(comm_old, prov_old)
    new_merged = merge_results(comm_new, prov_new)

    logger.debug("method change on %s: %s -> %s", effective_target, part.method, new_method)
    return PrepaymentResult(
        action=ACTION_CHANGE_METHOD,
        target=effective_target,
        old_monthly_payment=comm_old.first_month_payment + prov_old.first_month_payment,
        new_monthly_payment=comm_new.first_month_payment + prov_new.first_month_payment,
        new_term_months=part.term_months,
        saved_months=0,
        old_total_interest=old_merged.total_interest,
        new_total_interest=new_merged.total_interest,
        saved_interest=old_merged.total_interest - new_merged.total_interest,
        prepay_amount=0.0,
        old_schedule=old_merged,
        new_schedule=new_merged,
    )
