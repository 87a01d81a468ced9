from io import BytesIO
from typing import List, Optional, Tuple
from urllib.parse import quote
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field, field_validator, model_validator
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from mortgage_planner import config
from mortgage_planner.calculator import (
    LOAN_COMBO,
    LOAN_COMMERCIAL,
    LOAN_PROVIDENT,
    METHOD_ANNUITY,
    AmortizationResult,
    LoanTerms,
    normalize_method,
)
from mortgage_planner.comparison import compare_methods
from mortgage_planner.exceptions import SimulationDivergedError
from mortgage_planner.export import schedule_to_csv, schedule_to_xlsx
from mortgage_planner.prepayment import (
    ACTION_REDUCE,
    ACTION_SHORTEN,
    CompositeLoanState,
    LoanPart,
    PrepaymentResult,
    calculate_method_change,
    calculate_prepayment,
)
from mortgage_planner.rates import fetch_official_rates
from mortgage_planner.report import generate_pdf
from mortgage_planner.strategy import (
    calculate_annual_prepayment,
    calculate_max_interest,
    calculate_target_payment,
    calculate_target_years,
)


logger = logging.getLogger(__name__)

ALLOWED_LOAN_TYPES = {LOAN_COMMERCIAL, LOAN_PROVIDENT, LOAN_COMBO}
ALLOWED_TARGETS = {LOAN_COMMERCIAL, LOAN_PROVIDENT}
ALLOWED_ACTIONS = {ACTION_SHORTEN, ACTION_REDUCE}
MAX_AMOUNT_WAN = config.MAX_PRINCIPAL / config.AMOUNT_UNIT
MAX_TERM_YEARS = config.MAX_TERM_MONTHS // 12


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        candidate = forwarded.split(",")[0].strip()
        if candidate:
            return candidate
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return get_remote_address(request)


config.setup_logging()

limiter = Limiter(key_func=_client_ip, default_limits=[config.DEFAULT_RATE_LIMIT])

app = FastAPI(
    title="Mortgage Planner",
    description="房贷计算、提前还款与智能还款策略。",
    version="0.1.0",
)
app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


@app.exception_handler(RateLimitExceeded)
async def _rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(status_code=429, content={"detail": "Rate limit exceeded"})


@app.exception_handler(SimulationDivergedError)
async def _diverged_handler(request: Request, exc: SimulationDivergedError):
    logger.warning("simulation diverged on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=422, content={"detail": str(exc)})


def _wan(amount: float) -> float:
    # 万元 -> 元
    return amount * config.AMOUNT_UNIT


def _validate_method(value: str) -> str:
    return normalize_method(value)


def _validate_loan_type(value: str) -> str:
    normalized = (value or "").strip().lower()
    if normalized not in ALLOWED_LOAN_TYPES:
        raise ValueError(f"loan_type must be one of {sorted(ALLOWED_LOAN_TYPES)}")
    return normalized


# -------------------- 新贷款：两种还款方式对比 --------------------


class NewLoanRequest(BaseModel):
    # 金额单位：万元；未填写的利率 / 年限使用默认值（与自然语言解析的默认值一致）
    loan_type: str = Field(LOAN_COMMERCIAL, description="贷款类型：commercial / provident / combo")
    commercial_amount: float = Field(0, ge=0, le=MAX_AMOUNT_WAN, description="商贷金额（万元）")
    commercial_rate: float = Field(config.DEFAULT_COMMERCIAL_RATE, ge=0, le=config.MAX_ANNUAL_RATE, description="商贷年利率（%）")
    commercial_years: int = Field(config.DEFAULT_TERM_YEARS, ge=0, le=MAX_TERM_YEARS, description="商贷年限（年）")
    provident_amount: float = Field(0, ge=0, le=MAX_AMOUNT_WAN, description="公积金贷款金额（万元）")
    provident_rate: float = Field(config.DEFAULT_PROVIDENT_RATE, ge=0, le=config.MAX_ANNUAL_RATE, description="公积金年利率（%）")
    provident_years: int = Field(config.DEFAULT_TERM_YEARS, ge=0, le=MAX_TERM_YEARS, description="公积金年限（年）")
    include_schedule: bool = Field(False, description="是否返回逐月明细")

    @field_validator("loan_type")
    @classmethod
    def _check_loan_type(cls, value: str) -> str:
        return _validate_loan_type(value)

    @model_validator(mode="after")
    def _validate_amounts(self) -> "NewLoanRequest":
        commercial, provident = self.to_terms()
        active = 0.0
        if self.loan_type != LOAN_PROVIDENT:
            active += commercial.principal
        if self.loan_type != LOAN_COMMERCIAL:
            active += provident.principal
        if active <= 0:
            raise ValueError("loan amount of the selected loan type must be greater than 0")
        if active > config.MAX_PRINCIPAL:
            raise ValueError("total loan amount exceeds MAX_PRINCIPAL")
        return self

    def to_terms(self) -> Tuple[LoanTerms, LoanTerms]:
        commercial = LoanTerms(_wan(self.commercial_amount), self.commercial_rate, self.commercial_years * 12)
        provident = LoanTerms(_wan(self.provident_amount), self.provident_rate, self.provident_years * 12)
        return commercial, provident


class NewLoanExportRequest(NewLoanRequest):
    method: str = Field(METHOD_ANNUITY, description="导出哪种还款方式：equal_payment / equal_principal")

    @field_validator("method")
    @classmethod
    def _check_method(cls, value: str) -> str:
        return _validate_method(value)


class ScheduleRowModel(BaseModel):
    month_index: int
    payment: float
    principal: float
    interest: float
    balance: float
    commercial_payment: Optional[float] = None
    provident_payment: Optional[float] = None


class MethodSummary(BaseModel):
    term_months: int
    total_payment: float
    total_interest: float
    total_principal: float
    first_month_payment: float
    last_month_payment: float
    monthly_decrease: Optional[float] = None
    schedule: Optional[List[ScheduleRowModel]] = None

    @classmethod
    def from_result(cls, result: AmortizationResult, include_schedule: bool = False) -> "MethodSummary":
        schedule = None
        if include_schedule:
            schedule = [ScheduleRowModel(**row.__dict__) for row in result.schedule]
        return cls(
            term_months=result.term_months,
            total_payment=result.total_payment,
            total_interest=result.total_interest,
            total_principal=result.total_principal,
            first_month_payment=result.first_month_payment,
            last_month_payment=result.last_month_payment,
            monthly_decrease=result.monthly_decrease,
            schedule=schedule,
        )


class ComparisonResponse(BaseModel):
    recommendation: str
    saved_interest: float
    equal_payment: MethodSummary
    equal_principal: MethodSummary


# -------------------- 存量贷款：提前还款 / 变更还款方式 --------------------


class LoanPartModel(BaseModel):
    principal: float = Field(0, ge=0, le=MAX_AMOUNT_WAN, description="剩余本金（万元）")
    annual_rate: float = Field(0, ge=0, le=config.MAX_ANNUAL_RATE, description="年利率（%）")
    term_months: int = Field(0, ge=0, le=config.MAX_TERM_MONTHS, description="剩余期数（月）")
    method: str = Field(METHOD_ANNUITY, description="当前还款方式：equal_payment / equal_principal")

    @field_validator("method")
    @classmethod
    def _check_method(cls, value: str) -> str:
        return _validate_method(value)

    def to_part(self) -> LoanPart:
        return LoanPart(_wan(self.principal), self.annual_rate, self.term_months, self.method)


class ExistingLoanRequest(BaseModel):
    loan_type: str = Field(LOAN_COMMERCIAL, description="贷款类型：commercial / provident / combo")
    commercial: LoanPartModel = Field(default_factory=LoanPartModel)
    provident: LoanPartModel = Field(default_factory=LoanPartModel)
    target: str = Field(LOAN_COMMERCIAL, description="组合贷时调整哪一笔：commercial / provident")

    @field_validator("loan_type")
    @classmethod
    def _check_loan_type(cls, value: str) -> str:
        return _validate_loan_type(value)

    @field_validator("target")
    @classmethod
    def _check_target(cls, value: str) -> str:
        normalized = (value or "").strip().lower()
        if normalized not in ALLOWED_TARGETS:
            raise ValueError(f"target must be one of {sorted(ALLOWED_TARGETS)}")
        return normalized

    def to_state(self) -> CompositeLoanState:
        return CompositeLoanState(self.loan_type, self.commercial.to_part(), self.provident.to_part())


class MethodChangeRequest(ExistingLoanRequest):
    pass


class PrepaymentRequest(ExistingLoanRequest):
    prepay_amount: float = Field(..., ge=0, le=MAX_AMOUNT_WAN, description="提前还款金额（万元）")
    action: str = Field(ACTION_SHORTEN, description="shorten(缩短年限) / reduce(减少月供)")
    invest_annual_rate: Optional[float] = Field(None, ge=0, le=config.MAX_ANNUAL_RATE, description="可选：理财年化收益率（%），仅用于报告")

    @field_validator("action")
    @classmethod
    def _check_action(cls, value: str) -> str:
        normalized = (value or "").strip().lower()
        if normalized not in ALLOWED_ACTIONS:
            raise ValueError(f"action must be one of {sorted(ALLOWED_ACTIONS)}")
        return normalized


class PrepaymentResponse(BaseModel):
    action: str
    target: str
    prepay_amount: float
    old_monthly_payment: float
    new_monthly_payment: float
    new_term_months: int
    saved_months: int
    old_total_interest: float
    new_total_interest: float
    saved_interest: float

    @classmethod
    def from_result(cls, result: PrepaymentResult) -> "PrepaymentResponse":
        return cls(
            action=result.action,
            target=result.target,
            prepay_amount=result.prepay_amount,
            old_monthly_payment=result.old_monthly_payment,
            new_monthly_payment=result.new_monthly_payment,
            new_term_months=result.new_term_months,
            saved_months=result.saved_months,
            old_total_interest=result.old_total_interest,
            new_total_interest=result.new_total_interest,
            saved_interest=result.saved_interest,
        )


# -------------------- 智能策略 --------------------


class StrategyLoanRequest(BaseModel):
    principal: float = Field(..., gt=0, le=MAX_AMOUNT_WAN, description="剩余本金（万元）")
    annual_rate: float = Field(..., ge=0, le=config.MAX_ANNUAL_RATE, description="年利率（%）")
    term_months: int = Field(..., gt=0, le=config.MAX_TERM_MONTHS, description="剩余期数（月）")


class TargetYearsRequest(StrategyLoanRequest):
    target_term_months: int = Field(..., ge=0, le=config.MAX_TERM_MONTHS, description="希望在多少期内还清")


class TargetYearsResponse(BaseModel):
    lump_sum: float
    new_monthly_payment: float
    old_monthly_payment: float
    new_term_months: int
    saved_interest: float
    original_interest: float


class MaxInterestRequest(StrategyLoanRequest):
    max_interest: float = Field(..., ge=0, description="总利息上限（万元）")


class MaxInterestResponse(BaseModel):
    lump_sum: float
    new_term_months: int
    new_years: float
    new_monthly_payment: float
    saved_interest: float
    original_interest: float
    actual_interest: float
    converged: bool


class TargetPaymentRequest(StrategyLoanRequest):
    target_payment: float = Field(..., gt=0, description="目标月供（元）")


class TargetPaymentResponse(BaseModel):
    lump_sum: float
    supported_principal: float
    old_monthly_payment: float
    new_monthly_payment: float
    saved_interest: float


class AnnualPrepaymentRequest(StrategyLoanRequest):
    annual_amount: float = Field(..., ge=0, le=MAX_AMOUNT_WAN, description="每年追加还款金额（万元）")
    prepay_month: int = Field(12, ge=1, le=12, description="每个贷款年度中第几个月追加（1-12）")
    strategy: str = Field(ACTION_SHORTEN, description="shorten(缩短年限) / reduce(减少月供)")

    @field_validator("strategy")
    @classmethod
    def _check_strategy(cls, value: str) -> str:
        normalized = (value or "").strip().lower()
        if normalized not in ALLOWED_ACTIONS:
            raise ValueError(f"strategy must be one of {sorted(ALLOWED_ACTIONS)}")
        return normalized


class MilestoneModel(BaseModel):
    year: int
    remaining_principal: float
    monthly_payment: float


class AnnualPrepaymentResponse(BaseModel):
    strategy: str
    new_term_months: int
    saved_months: int
    saved_years: float
    total_interest: float
    original_interest: float
    saved_interest: float
    final_monthly_payment: float
    total_prepayment: float
    prepayment_count: int
    milestone: Optional[MilestoneModel] = None


# -------------------- 路由 --------------------


@app.get("/health", tags=["health"])
@limiter.exempt
def health() -> dict:
    return {"status": "ok"}


@app.get("/v1/rates/official", tags=["rates"])
@limiter.limit(config.DEFAULT_RATE_LIMIT)
def official_rates(request: Request) -> dict:
    rates = fetch_official_rates()
    return {
        "lpr_5y": rates.lpr_5y,
        "provident_5y": rates.provident_5y,
        "last_updated": rates.last_updated.isoformat(),
    }


@app.post(
    "/v1/mortgages/comparison:calc",
    tags=["mortgage"],
    responses={400: {"description": "Invalid loan parameters"}},
)
@limiter.limit(config.DEFAULT_RATE_LIMIT)
def calc_comparison(request: Request, body: NewLoanRequest) -> ComparisonResponse:
    try:
        commercial, provident = body.to_terms()
        result = compare_methods(body.loan_type, commercial, provident)
    except ValueError as e:
        logger.warning("comparison rejected: %s", e)
        raise HTTPException(status_code=400, detail=str(e))

    return ComparisonResponse(
        recommendation=result.recommendation,
        saved_interest=result.saved_interest,
        equal_payment=MethodSummary.from_result(result.equal_payment, body.include_schedule),
        equal_principal=MethodSummary.from_result(result.equal_principal, body.include_schedule),
    )


def _export_schedule(body: NewLoanExportRequest) -> AmortizationResult:
    try:
        commercial, provident = body.to_terms()
        result = compare_methods(body.loan_type, commercial, provident).for_method(body.method)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    _ensure_row_limit(result.term_months, "schedule")
    return result


@app.post(
    "/v1/mortgages/comparison:export-csv",
    tags=["mortgage"],
    responses={400: {"description": "Invalid loan parameters"}},
)
@limiter.limit(config.EXPORT_RATE_LIMIT)
def export_comparison_csv(request: Request, body: NewLoanExportRequest):
    """导出所选还款方式的逐月明细 CSV；组合贷额外输出商贷 / 公积金月供列。"""
    result = _export_schedule(body)
    content = schedule_to_csv(result, include_components=body.loan_type == LOAN_COMBO).encode("utf-8")
    _ensure_export_size(len(content))

    return StreamingResponse(
        BytesIO(content),
        media_type="text/csv; charset=utf-8",
        headers={
            "Content-Disposition": "attachment; filename=repayment_schedule.csv; "
            f"filename*=UTF-8''{quote('房贷还款明细.csv')}",
            "X-Total-Interest": f"{result.total_interest:.2f}",
        },
    )


@app.post(
    "/v1/mortgages/comparison:export-xlsx",
    tags=["mortgage"],
    responses={400: {"description": "Invalid loan parameters"}},
)
@limiter.limit(config.EXPORT_RATE_LIMIT)
def export_comparison_xlsx(request: Request, body: NewLoanExportRequest):
    result = _export_schedule(body)
    content = schedule_to_xlsx(result, include_components=body.loan_type == LOAN_COMBO)
    _ensure_export_size(len(content))

    return StreamingResponse(
        BytesIO(content),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={
            "Content-Disposition": "attachment; filename=repayment_schedule.xlsx; "
            f"filename*=UTF-8''{quote('房贷还款明细.xlsx')}",
            "X-Total-Interest": f"{result.total_interest:.2f}",
        },
    )


def _run_prepayment(body: PrepaymentRequest) -> PrepaymentResult:
    try:
        return calculate_prepayment(body.to_state(), _wan(body.prepay_amount), body.action, body.target)
    except ValueError as e:
        logger.warning("prepayment rejected: %s", e)
        raise HTTPException(status_code=400, detail=str(e))


@app.post(
    "/v1/mortgages/prepayment:calc",
    tags=["mortgage"],
    responses={400: {"description": "Invalid loan or prepayment parameters"}},
)
@limiter.limit(config.DEFAULT_RATE_LIMIT)
def calc_prepayment(request: Request, body: PrepaymentRequest) -> PrepaymentResponse:
    return PrepaymentResponse.from_result(_run_prepayment(body))


@app.post(
    "/v1/mortgages/prepayment:export-pdf",
    tags=["mortgage"],
    responses={400: {"description": "Invalid loan or prepayment parameters"}},
)
@limiter.limit(config.EXPORT_RATE_LIMIT)
def export_prepayment_pdf(request: Request, body: PrepaymentRequest):
    """导出提前还款分析报告 PDF，响应头返回节省利息。"""
    result = _run_prepayment(body)
    _ensure_row_limit(result.old_schedule.term_months, "schedule")
    part = body.commercial if result.target == LOAN_COMMERCIAL else body.provident
    pdf_bytes = generate_pdf(result=result, part=part.to_part(), invest_annual_rate=body.invest_annual_rate)
    _ensure_export_size(len(pdf_bytes))

    return StreamingResponse(
        BytesIO(pdf_bytes),
        media_type="application/pdf",
        headers={
            "Content-Disposition": "attachment; filename=prepayment_report.pdf; "
            f"filename*=UTF-8''{quote('提前还款分析报告.pdf')}",
            "X-Saved-Interest": f"{result.saved_interest:.2f}",
        },
    )


@app.post(
    "/v1/mortgages/method-change:calc",
    tags=["mortgage"],
    responses={400: {"description": "Invalid loan parameters"}},
)
@limiter.limit(config.DEFAULT_RATE_LIMIT)
def calc_method_change(request: Request, body: MethodChangeRequest) -> PrepaymentResponse:
    try:
        result = calculate_method_change(body.to_state(), body.target)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return PrepaymentResponse.from_result(result)


@app.post(
    "/v1/strategies/target-years:calc",
    tags=["strategy"],
    responses={400: {"description": "Invalid strategy parameters"}},
)
@limiter.limit(config.DEFAULT_RATE_LIMIT)
def calc_target_years(request: Request, body: TargetYearsRequest) -> TargetYearsResponse:
    try:
        result = calculate_target_years(_wan(body.principal), body.annual_rate, body.term_months, body.target_term_months)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return TargetYearsResponse(**result.__dict__)


@app.post(
    "/v1/strategies/max-interest:calc",
    tags=["strategy"],
    responses={400: {"description": "Invalid strategy parameters"}},
)
@limiter.limit(config.DEFAULT_RATE_LIMIT)
def calc_max_interest(request: Request, body: MaxInterestRequest) -> MaxInterestResponse:
    try:
        result = calculate_max_interest(_wan(body.principal), body.annual_rate, body.term_months, _wan(body.max_interest))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not result.converged:
        logger.info("max-interest budget unreachable, full payoff suggested")
    return MaxInterestResponse(new_years=result.new_years, **result.__dict__)


@app.post(
    "/v1/strategies/target-payment:calc",
    tags=["strategy"],
    responses={400: {"description": "Invalid strategy parameters"}},
)
@limiter.limit(config.DEFAULT_RATE_LIMIT)
def calc_target_payment(request: Request, body: TargetPaymentRequest) -> TargetPaymentResponse:
    try:
        result = calculate_target_payment(_wan(body.principal), body.annual_rate, body.term_months, body.target_payment)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return TargetPaymentResponse(**result.__dict__)


@app.post(
    "/v1/strategies/annual-prepayment:calc",
    tags=["strategy"],
    responses={
        400: {"description": "Invalid strategy parameters"},
        422: {"description": "Simulation did not converge"},
    },
)
@limiter.limit(config.DEFAULT_RATE_LIMIT)
def calc_annual_prepayment(request: Request, body: AnnualPrepaymentRequest) -> AnnualPrepaymentResponse:
    try:
        result = calculate_annual_prepayment(
            _wan(body.principal),
            body.annual_rate,
            body.term_months,
            _wan(body.annual_amount),
            body.prepay_month,
            body.strategy,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    milestone = None
    if result.milestone is not None:
        milestone = MilestoneModel(**result.milestone.__dict__)
    return AnnualPrepaymentResponse(
        strategy=result.strategy,
        new_term_months=result.new_term_months,
        saved_months=result.saved_months,
        saved_years=result.saved_years,
        total_interest=result.total_interest,
        original_interest=result.original_interest,
        saved_interest=result.saved_interest,
        final_monthly_payment=result.final_monthly_payment,
        total_prepayment=result.total_prepayment,
        prepayment_count=result.prepayment_count,
        milestone=milestone,
    )


def _ensure_row_limit(rows: int, label: str) -> None:
    if rows > config.MAX_SCHEDULE_ROWS:
        raise HTTPException(status_code=413, detail=f"{label} too large, exceeds {config.MAX_SCHEDULE_ROWS} rows limit")


def _ensure_export_size(size_bytes: int) -> None:
    if size_bytes > config.MAX_EXPORT_BYTES:
        raise HTTPException(status_code=413, detail="export file too large")
