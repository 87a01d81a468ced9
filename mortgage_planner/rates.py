from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Optional
import logging

from mortgage_planner import config


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OfficialRates:
    """官方参考利率（百分比）。

    字段说明：
        lpr_5y: 5 年期以上 LPR，商贷定价参考。
        provident_5y: 5 年期以上公积金贷款利率。
        last_updated: 数据日期。
    """

    lpr_5y: float
    provident_5y: float
    last_updated: date


def fetch_official_rates(today: Optional[date] = None) -> OfficialRates:
    # 模拟数据：不联网，取配置中的参考值
    rates = OfficialRates(
        lpr_5y=config.OFFICIAL_LPR_5Y,
        provident_5y=config.OFFICIAL_PROVIDENT_5Y,
        last_updated=today or date.today(),
    )
    logger.debug("official rates: lpr_5y=%.2f provident_5y=%.2f", rates.lpr_5y, rates.provident_5y)
    return rates
