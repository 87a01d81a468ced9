from __future__ import annotations


class MortgageError(Exception):
    """房贷计算相关异常的基类。"""


class InputError(MortgageError, ValueError):
    # 参数取值非法（还款方式、贷款类型、操作类型、月份等）
    pass


class SimulationDivergedError(MortgageError):
    """逐月模拟在安全上限内未能还清。

    一般说明利率 / 期限 / 追加金额组合自相矛盾，调用方应当把它当作输入错误提示给用户，
    而不是展示被截断的统计结果。
    """

    def __init__(self, months: int, balance: float):
        super().__init__(f"simulation did not pay off within {months} months, remaining balance {balance:.2f}")
        self.months = months
        self.balance = balance
