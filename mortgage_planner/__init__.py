"""房贷计算与还款策略 Python 包。

常用导入：
    from mortgage_planner import LoanTerms, compare_methods, calculate_prepayment

HTTP 服务：
    uvicorn mortgage_planner.api:app

计算引擎内部金额一律使用“元”，万元只在接口边界换算。
"""

from .calculator import (
    AmortizationResult,
    LoanTerms,
    ScheduleRow,
    aggregate_interest_by_year,
    build_schedule,
    calculate_equal_payment,
    calculate_equal_principal,
    merge_results,
)
from .comparison import ComparisonResult, compare_methods
from .exceptions import InputError, MortgageError, SimulationDivergedError
from .prepayment import (
    CompositeLoanState,
    LoanPart,
    PrepaymentResult,
    calculate_method_change,
    calculate_prepayment,
)
from .strategy import (
    calculate_annual_prepayment,
    calculate_max_interest,
    calculate_target_payment,
    calculate_target_years,
)

__all__ = [
    "AmortizationResult",
    "LoanTerms",
    "ScheduleRow",
    "aggregate_interest_by_year",
    "build_schedule",
    "calculate_equal_payment",
    "calculate_equal_principal",
    "merge_results",
    "ComparisonResult",
    "compare_methods",
    "InputError",
    "MortgageError",
    "SimulationDivergedError",
    "CompositeLoanState",
    "LoanPart",
    "PrepaymentResult",
    "calculate_method_change",
    "calculate_prepayment",
    "calculate_annual_prepayment",
    "calculate_max_interest",
    "calculate_target_payment",
    "calculate_target_years",
]
