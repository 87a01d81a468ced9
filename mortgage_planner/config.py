from __future__ import annotations

import logging
import os
import sys


# 接口限流
DEFAULT_RATE_LIMIT = os.getenv("RATE_LIMIT_DEFAULT", "60/minute")
EXPORT_RATE_LIMIT = os.getenv("RATE_LIMIT_EXPORT", "15/minute")

# 入参上限（单位：元 / % / 月）
MAX_TERM_MONTHS = int(os.getenv("MAX_TERM_MONTHS", "600"))
MAX_PRINCIPAL = float(os.getenv("MAX_PRINCIPAL", "30000000"))
MAX_ANNUAL_RATE = float(os.getenv("MAX_ANNUAL_RATE", "30"))

# 导出限制
MAX_SCHEDULE_ROWS = int(os.getenv("MAX_SCHEDULE_ROWS", "2000"))
MAX_EXPORT_BYTES = int(os.getenv("MAX_EXPORT_BYTES", str(6 * 1024 * 1024)))

# 前端金额单位：万元 -> 元。只在接口边界换算，计算引擎内部一律使用元。
AMOUNT_UNIT = float(os.getenv("AMOUNT_UNIT", "10000"))

# 缺省参数（与自然语言解析服务约定的默认值一致）
DEFAULT_COMMERCIAL_RATE = float(os.getenv("DEFAULT_COMMERCIAL_RATE", "3.5"))
DEFAULT_PROVIDENT_RATE = float(os.getenv("DEFAULT_PROVIDENT_RATE", "2.6"))
DEFAULT_TERM_YEARS = int(os.getenv("DEFAULT_TERM_YEARS", "30"))

# 官方参考利率（模拟数据，不联网）
OFFICIAL_LPR_5Y = float(os.getenv("OFFICIAL_LPR_5Y", "3.60"))
OFFICIAL_PROVIDENT_5Y = float(os.getenv("OFFICIAL_PROVIDENT_5Y", "2.85"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def setup_logging(level: str = LOG_LEVEL) -> None:
    """配置根日志：输出到 stdout，带时间、级别与模块名。"""
    root = logging.getLogger()
    root.setLevel(level.upper())
    if root.handlers:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    root.addHandler(handler)
