from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
import logging
import math

from mortgage_planner.exceptions import InputError


logger = logging.getLogger(__name__)

# 还款方式常量：等额本息 / 等额本金
METHOD_ANNUITY = "equal_payment"
METHOD_EQUAL_PRINCIPAL = "equal_principal"

# 贷款类型：纯商贷 / 纯公积金 / 组合贷
LOAN_COMMERCIAL = "commercial"
LOAN_PROVIDENT = "provident"
LOAN_COMBO = "combo"

# 期数取整容差：浮点误差导致 180.0000000001 时不应多算一期
_CEIL_TOLERANCE = 1e-9


@dataclass(frozen=True)
class LoanTerms:
    """单笔贷款的基础参数。

    字段说明：
        principal: 贷款本金（单位：元）。
        annual_rate: 年利率（百分比），例如 3.5 表示 3.5%。
        term_months: 贷款期数（月）。
    """

    principal: float
    annual_rate: float
    term_months: int


@dataclass(frozen=True)
class ScheduleRow:
    """单期（月）还款计划明细。

    字段说明：
        month_index: 期数序号（从 1 开始）。
        payment: 本期还款额（单位：元）。
        principal: 本期归还本金。
        interest: 本期支付利息。
        balance: 本期还款后剩余本金。
        commercial_payment / provident_payment: 仅组合贷合并后的行才有，记录商贷、公积金各自的月供。
    """

    month_index: int
    payment: float
    principal: float
    interest: float
    balance: float
    commercial_payment: Optional[float] = None
    provident_payment: Optional[float] = None


@dataclass(frozen=True)
class AmortizationResult:
    """一套完整还款计划及其汇总。

    monthly_decrease: 首月与次月月供之差（等额本金才有意义；单笔等额本息为 None）。
    """

    schedule: Tuple[ScheduleRow, ...]
    total_payment: float
    total_interest: float
    total_principal: float
    first_month_payment: float
    last_month_payment: float
    monthly_decrease: Optional[float] = None

    @property
    def term_months(self) -> int:
        return len(self.schedule)

    @property
    def is_empty(self) -> bool:
        return not self.schedule


def empty_result() -> AmortizationResult:
    # 空结果：代表“不存在的那一笔贷款”，合并逻辑无需判空
    return AmortizationResult(
        schedule=(),
        total_payment=0.0,
        total_interest=0.0,
        total_principal=0.0,
        first_month_payment=0.0,
        last_month_payment=0.0,
    )


def monthly_rate(annual_rate: float) -> float:
    # 年利率百分比 -> 月利率小数。例如 3.6% => 0.003
    return annual_rate / 100.0 / 12.0


def annuity_payment(principal: float, rate: float, months: int) -> float:
    if months <= 0:
        return 0.0
    if rate == 0:
        return principal / months
    factor = math.pow(1 + rate, months)
    return principal * rate * factor / (factor - 1)


def annuity_principal(payment: float, rate: float, months: int) -> float:
    """已知月供，反推 months 期内恰好能还清的本金。

    P = M * ((1+r)^n - 1) / (r * (1+r)^n)；利率为 0 时退化为 M * n。
    """
    if months <= 0:
        return 0.0
    if rate == 0:
        return payment * months
    factor = math.pow(1 + rate, months)
    return payment * (factor - 1) / (rate * factor)


def ceil_months(value: float) -> int:
    return math.ceil(value - _CEIL_TOLERANCE)


def annuity_term(principal: float, rate: float, payment: float) -> Optional[int]:
    """已知本金与固定月供，反推还清所需期数（向上取整）。

    n = ln(M / (M - P*r)) / ln(1+r)

    返回 None 表示该月供连利息都覆盖不了（P*r >= M），无法按此月供还清；
    本金已还清时返回 0。
    """
    if principal <= 0:
        return 0
    if payment <= 0:
        return None
    if rate == 0:
        return max(1, ceil_months(principal / payment))
    if principal * rate >= payment:
        return None
    n = math.log(payment / (payment - principal * rate)) / math.log(1 + rate)
    return max(1, ceil_months(n))


def normalize_method(method: str) -> str:
    # 统一并校验还款方式输入，支持一些别名。
    if not method:
        raise InputError("repayment method is required")
    normalized = method.strip().lower()
    if normalized in ("annuity", "equal_payment", "equal_installment", "equal_principal_interest", "epi"):
        return METHOD_ANNUITY
    if normalized in ("equal_principal", "principal", "ep"):
        return METHOD_EQUAL_PRINCIPAL
    raise InputError(f"unsupported repayment method: {method}")


def normalize_loan_type(loan_type: str) -> str:
    normalized = (loan_type or "").strip().lower()
    if normalized in (LOAN_COMMERCIAL, LOAN_PROVIDENT, LOAN_COMBO):
        return normalized
    raise InputError(f"unsupported loan type: {loan_type}")


def calculate_equal_payment(principal: float, annual_rate: float, term_months: int) -> AmortizationResult:
    # 等额本息：月供固定；本金占比逐月上升、利息占比逐月下降
    if principal <= 0 or term_months <= 0:
        return empty_result()

    rate = monthly_rate(annual_rate)
    payment = annuity_payment(principal, rate, term_months)
    rows: List[ScheduleRow] = []
    balance = principal
    total_interest = 0.0

    for i in range(1, term_months + 1):
        interest = balance * rate
        principal_payment = payment - interest
        balance = max(balance - principal_payment, 0.0)
        total_interest += interest
        rows.append(ScheduleRow(i, payment, principal_payment, interest, balance))

    return AmortizationResult(
        schedule=tuple(rows),
        total_payment=principal + total_interest,
        total_interest=total_interest,
        total_principal=principal,
        first_month_payment=payment,
        last_month_payment=payment,
    )


def calculate_equal_principal(principal: float, annual_rate: float, term_months: int) -> AmortizationResult:
    # 等额本金：每月固定归还本金；利息按剩余本金计算，因此月供逐月递减
    if principal <= 0 or term_months <= 0:
        return empty_result()

    rate = monthly_rate(annual_rate)
    principal_part = principal / term_months
    rows: List[ScheduleRow] = []
    balance = principal
    total_interest = 0.0
    total_payment = 0.0

    for i in range(1, term_months + 1):
        interest = balance * rate
        payment = principal_part + interest
        balance = max(balance - principal_part, 0.0)
        total_interest += interest
        total_payment += payment
        rows.append(ScheduleRow(i, payment, principal_part, interest, balance))

    return AmortizationResult(
        schedule=tuple(rows),
        total_payment=total_payment,
        total_interest=total_interest,
        total_principal=principal,
        first_month_payment=rows[0].payment,
        last_month_payment=rows[-1].payment,
        monthly_decrease=rows[0].payment - rows[1].payment if len(rows) > 1 else 0.0,
    )


def build_schedule(principal: float, annual_rate: float, term_months: int, method: str) -> AmortizationResult:
    """按还款方式生成完整还款计划。"""
    if normalize_method(method) == METHOD_EQUAL_PRINCIPAL:
        return calculate_equal_principal(principal, annual_rate, term_months)
    return calculate_equal_payment(principal, annual_rate, term_months)


def merge_results(commercial: AmortizationResult, provident: AmortizationResult) -> AmortizationResult:
    """组合贷：把商贷、公积金两套还款计划逐月相加。

    期数取两者较长者；较短的一方在结束后按 0 计入（而不是缺失）。
    每行保留商贷 / 公积金各自的月供，便于前端和导出展示拆分。
    """
    max_len = max(commercial.term_months, provident.term_months)
    if max_len == 0:
        return empty_result()

    rows: List[ScheduleRow] = []
    for idx in range(max_len):
        c = commercial.schedule[idx] if idx < commercial.term_months else ScheduleRow(idx + 1, 0.0, 0.0, 0.0, 0.0)
        p = provident.schedule[idx] if idx < provident.term_months else ScheduleRow(idx + 1, 0.0, 0.0, 0.0, 0.0)
        rows.append(
            ScheduleRow(
                month_index=idx + 1,
                payment=c.payment + p.payment,
                principal=c.principal + p.principal,
                interest=c.interest + p.interest,
                balance=c.balance + p.balance,
                commercial_payment=c.payment,
                provident_payment=p.payment,
            )
        )

    logger.debug(
        "merged schedules: commercial=%d months, provident=%d months",
        commercial.term_months,
        provident.term_months,
    )
    return AmortizationResult(
        schedule=tuple(rows),
        total_payment=commercial.total_payment + provident.total_payment,
        total_interest=commercial.total_interest + provident.total_interest,
        total_principal=commercial.total_principal + provident.total_principal,
        first_month_payment=rows[0].payment,
        last_month_payment=rows[-1].payment,
        monthly_decrease=rows[0].payment - rows[1].payment if len(rows) > 1 else 0.0,
    )


def aggregate_interest_by_year(schedule: Tuple[ScheduleRow, ...]) -> Dict[int, float]:
    # 按“贷款年度”汇总利息（第1年=1~12期，第2年=13~24期 ...）。
    totals: Dict[int, float] = {}
    for row in schedule:
        year = (row.month_index - 1) // 12 + 1
        totals[year] = totals.get(year, 0.0) + row.interest
    return totals
