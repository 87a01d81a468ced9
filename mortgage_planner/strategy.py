"""智能还款策略：根据用户目标反推需要多少提前还款。

四个求解器都把贷款近似为一笔等额本息贷款 (principal, annual_rate, term_months)，
组合贷、等额本金不在策略估算范围内。

    calculate_target_years      目标剩余期数 -> 一次性还款额（月供大致不变）
    calculate_max_interest      总利息上限   -> 一次性还款额（二分搜索，缩短年限）
    calculate_target_payment    目标月供     -> 一次性还款额（期限不变）
    calculate_annual_prepayment 每年固定追加 -> 逐月模拟节省的期数与利息
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional
import logging

from mortgage_planner.calculator import (
    AmortizationResult,
    annuity_payment,
    annuity_principal,
    annuity_term,
    calculate_equal_payment,
    empty_result,
    monthly_rate,
)
from mortgage_planner.exceptions import InputError, SimulationDivergedError
from mortgage_planner.prepayment import ACTION_REDUCE, ACTION_SHORTEN


logger = logging.getLogger(__name__)

# 二分搜索：精度 100 元，最多 50 轮
SEARCH_PRECISION = 100.0
SEARCH_MAX_ITERATIONS = 50

# 逐月模拟：余额不超过该值视为已还清；安全上限为原期数的 1.5 倍
PAYOFF_EPSILON = 0.1
LOOP_LIMIT_FACTOR = 1.5
# 低于该余额的“零头”不再记录里程碑
MILESTONE_MIN_BALANCE = 1000.0


@dataclass(frozen=True)
class TargetYearsResult:
    lump_sum: float
    new_monthly_payment: float
    old_monthly_payment: float
    new_term_months: int
    saved_interest: float
    original_interest: float


@dataclass(frozen=True)
class MaxInterestResult:
    """总利息上限求解结果。

    actual_interest 才是真正达到的总利息，不保证与上限完全相等；
    converged=False 表示搜索范围内没有满足上限的方案，结果退化为一次性全部还清。
    """

    lump_sum: float
    new_term_months: int
    new_monthly_payment: float
    saved_interest: float
    original_interest: float
    actual_interest: float
    converged: bool = True

    @property
    def new_years(self) -> float:
        return self.new_term_months / 12


@dataclass(frozen=True)
class TargetPaymentResult:
    lump_sum: float
    supported_principal: float
    old_monthly_payment: float
    new_monthly_payment: float
    saved_interest: float


@dataclass(frozen=True)
class Milestone:
    """年度追加还款无法足额执行的时间点：剩余本金已低于每年追加金额。"""

    year: int
    remaining_principal: float
    monthly_payment: float


@dataclass(frozen=True)
class AnnualPrepaymentResult:
    strategy: str
    new_term_months: int
    saved_months: int
    total_interest: float
    original_interest: float
    saved_interest: float
    final_monthly_payment: float
    total_prepayment: float
    prepayment_count: int
    milestone: Optional[Milestone] = None

    @property
    def saved_years(self) -> float:
        return self.saved_months / 12

    @property
    def new_years(self) -> float:
        return self.new_term_months / 12


def calculate_target_years(
    principal: float,
    annual_rate: float,
    term_months: int,
    target_term_months: int,
) -> TargetYearsResult:
    """想在 target_term_months 内还清、且月供基本不变，需要一次性提前还多少。"""
    rate = monthly_rate(annual_rate)
    current = calculate_equal_payment(principal, annual_rate, term_months)
    current_payment = current.first_month_payment

    if target_term_months >= term_months or current.is_empty:
        return TargetYearsResult(
            lump_sum=0.0,
            new_monthly_payment=current_payment,
            old_monthly_payment=current_payment,
            new_term_months=current.term_months,
            saved_interest=0.0,
            original_interest=current.total_interest,
        )

    # 原月供在目标期数内最多能还清多少本金
    supportable = annuity_principal(current_payment, rate, target_term_months)
    lump_sum = max(0.0, principal - supportable)
    new_schedule = calculate_equal_payment(principal - lump_sum, annual_rate, target_term_months)

    return TargetYearsResult(
        lump_sum=lump_sum,
        new_monthly_payment=new_schedule.first_month_payment,
        old_monthly_payment=current_payment,
        new_term_months=new_schedule.term_months,
        saved_interest=current.total_interest - new_schedule.total_interest,
        original_interest=current.total_interest,
    )


def calculate_max_interest(
    principal: float,
    annual_rate: float,
    term_months: int,
    max_interest: float,
) -> MaxInterestResult:
    """想让总利息不超过 max_interest，需要一次性提前还多少（保持月供、缩短年限）。

    缩短年限比减少月供更省利息，因此这里只按“缩短年限”搜索。
    """
    rate = monthly_rate(annual_rate)
    current = calculate_equal_payment(principal, annual_rate, term_months)
    current_payment = current.first_month_payment

    if current.total_interest <= max_interest:
        return MaxInterestResult(
            lump_sum=0.0,
            new_term_months=current.term_months,
            new_monthly_payment=current_payment,
            saved_interest=0.0,
            original_interest=current.total_interest,
            actual_interest=current.total_interest,
        )

    low, high = 0.0, principal
    best_lump_sum = principal
    best: Optional[AmortizationResult] = None
    iterations = 0

    while high - low > SEARCH_PRECISION and iterations < SEARCH_MAX_ITERATIONS:
        iterations += 1
        mid = (low + high) / 2
        remaining = principal - mid

        new_months = annuity_term(remaining, rate, current_payment)
        if new_months is None:
            # 剩余本金的月利息已覆盖不了原月供，必须多还
            low = mid
            continue

        candidate = calculate_equal_payment(remaining, annual_rate, new_months)
        if candidate.total_interest <= max_interest:
            best_lump_sum = mid
            best = candidate
            high = mid
        else:
            low = mid

    converged = best is not None
    if best is None:
        logger.debug("max-interest search found no candidate within %d iterations", iterations)
        best_lump_sum = principal
        best = empty_result()

    return MaxInterestResult(
        lump_sum=best_lump_sum,
        new_term_months=best.term_months,
        new_monthly_payment=best.first_month_payment,
        saved_interest=current.total_interest - best.total_interest,
        original_interest=current.total_interest,
        actual_interest=best.total_interest,
        converged=converged,
    )


def calculate_target_payment(
    principal: float,
    annual_rate: float,
    term_months: int,
    target_payment: float,
) -> TargetPaymentResult:
    # 期限不变：目标月供在原期数内能还清的本金，差额即需一次性还款
    if target_payment <= 0:
        raise InputError("target_payment must be > 0")
    rate = monthly_rate(annual_rate)
    current = calculate_equal_payment(principal, annual_rate, term_months)

    supported = annuity_principal(target_payment, rate, term_months)
    lump_sum = max(0.0, principal - supported)
    new_schedule = calculate_equal_payment(principal - lump_sum, annual_rate, term_months)

    return TargetPaymentResult(
        lump_sum=lump_sum,
        supported_principal=supported,
        old_monthly_payment=current.first_month_payment,
        new_monthly_payment=new_schedule.first_month_payment,
        saved_interest=current.total_interest - new_schedule.total_interest,
    )


def calculate_annual_prepayment(
    principal: float,
    annual_rate: float,
    term_months: int,
    annual_amount: float,
    prepay_month: int,
    strategy: str = ACTION_SHORTEN,
) -> AnnualPrepaymentResult:
    """每年固定月份追加 annual_amount 提前还款，逐月模拟整个还款过程。

    只有剩余本金不低于 annual_amount 时才执行当年的追加（不做部分追加），
    第一次不足额时记录里程碑并停止后续的自动追加。

    strategy:
        shorten: 月供始终不变，期限提前结束。
        reduce: 每次追加后按剩余原期限重新计算月供，按原计划月份结清。
    """
    if strategy not in (ACTION_SHORTEN, ACTION_REDUCE):
        raise InputError(f"unsupported annual prepayment strategy: {strategy}")
    if not 1 <= prepay_month <= 12:
        raise InputError("prepay_month must be between 1 and 12")
    if annual_amount < 0:
        raise InputError("annual_amount must be >= 0")

    rate = monthly_rate(annual_rate)
    original = calculate_equal_payment(principal, annual_rate, term_months)
    if original.is_empty:
        return AnnualPrepaymentResult(
            strategy=strategy,
            new_term_months=0,
            saved_months=0,
            total_interest=0.0,
            original_interest=0.0,
            saved_interest=0.0,
            final_monthly_payment=0.0,
            total_prepayment=0.0,
            prepayment_count=0,
        )

    balance = principal
    current_payment = original.first_month_payment
    month = 0
    total_interest = 0.0
    total_prepayment = 0.0
    prepayment_count = 0
    top_ups_active = annual_amount > 0
    milestone: Optional[Milestone] = None
    loop_limit = int(term_months * LOOP_LIMIT_FACTOR)

    while balance > PAYOFF_EPSILON and month < loop_limit:
        month += 1
        interest = balance * rate
        principal_paid = current_payment - interest
        total_interest += interest

        if balance - principal_paid <= PAYOFF_EPSILON:
            # 本月即可结清，零头并入本月
            balance = 0.0
            break
        balance -= principal_paid

        month_in_year = (month - 1) % 12 + 1
        if top_ups_active and month_in_year == prepay_month:
            if balance >= annual_amount:
                balance -= annual_amount
                total_prepayment += annual_amount
                prepayment_count += 1
                if strategy == ACTION_REDUCE and balance > PAYOFF_EPSILON:
                    remaining_months = max(1, term_months - month)
                    current_payment = annuity_payment(balance, rate, remaining_months)
            else:
                top_ups_active = False
                if balance > MILESTONE_MIN_BALANCE:
                    milestone = Milestone(
                        year=(month + 11) // 12,
                        remaining_principal=balance,
                        monthly_payment=current_payment,
                    )

    if balance > PAYOFF_EPSILON:
        raise SimulationDivergedError(month, balance)

    logger.debug(
        "annual prepayment %s: %d months, %d top-ups, interest %.2f",
        strategy,
        month,
        prepayment_count,
        total_interest,
    )
    return AnnualPrepaymentResult(
        strategy=strategy,
        new_term_months=month,
        saved_months=max(0, term_months - month) if strategy == ACTION_SHORTEN else 0,
        total_interest=total_interest,
        original_interest=original.total_interest,
        saved_interest=max(0.0, original.total_interest - total_interest),
        final_monthly_payment=current_payment,
        total_prepayment=total_prepayment,
        prepayment_count=prepayment_count,
        milestone=milestone,
    )
