"""Shared fixtures for the calculator, strategy and API tests.

Reference loan: 1,000,000 元 commercial at 3.5% over 240 months,
plus a 500,000 元 provident leg at 2.6% over 180 months for composite cases.
"""

import pytest
from fastapi.testclient import TestClient

from mortgage_planner.api import app, limiter
from mortgage_planner.calculator import METHOD_EQUAL_PRINCIPAL, LoanTerms
from mortgage_planner.prepayment import CompositeLoanState, LoanPart


@pytest.fixture
def commercial_terms() -> LoanTerms:
    return LoanTerms(principal=1_000_000.0, annual_rate=3.5, term_months=240)


@pytest.fixture
def provident_terms() -> LoanTerms:
    return LoanTerms(principal=500_000.0, annual_rate=2.6, term_months=180)


@pytest.fixture
def commercial_part() -> LoanPart:
    return LoanPart(principal=1_000_000.0, annual_rate=3.5, term_months=240)


@pytest.fixture
def provident_part() -> LoanPart:
    return LoanPart(principal=500_000.0, annual_rate=2.6, term_months=180)


@pytest.fixture
def commercial_state(commercial_part) -> CompositeLoanState:
    """Commercial-only loan; the provident leg carries junk that must be ignored."""
    return CompositeLoanState(
        loan_type="commercial",
        commercial=commercial_part,
        provident=LoanPart(principal=123_456.0, annual_rate=2.6, term_months=60),
    )


@pytest.fixture
def combo_state(commercial_part, provident_part) -> CompositeLoanState:
    return CompositeLoanState(loan_type="combo", commercial=commercial_part, provident=provident_part)


@pytest.fixture
def equal_principal_state() -> CompositeLoanState:
    """1,200,000 at 3.5% over 240 months: monthly principal exactly 5,000."""
    return CompositeLoanState(
        loan_type="commercial",
        commercial=LoanPart(1_200_000.0, 3.5, 240, METHOD_EQUAL_PRINCIPAL),
        provident=LoanPart(0.0, 0.0, 0),
    )


@pytest.fixture
def client() -> TestClient:
    limiter.reset()
    return TestClient(app)
