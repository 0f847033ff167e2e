"""
Pytest fixtures for the treasury smart payment test suite.

Provides:
- In-memory SQLite sessions (one shared connection, fresh schema per test)
- Deterministic clock
- Seed helpers for companies, partners, invoices and payments
- Captured structured logs
"""

import json
import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session

from treasury_config import TreasuryConfig, load_config
from treasury_kernel.db.engine import (
    drop_tables,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from treasury_kernel.domain.clock import DeterministicClock
from treasury_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from treasury_modules._orm_registry import create_all_tables
from treasury_modules.smart_payment.models import (
    InvoiceStatus,
    PaymentAllocationStatus,
)
from treasury_modules.smart_payment.orm import (
    CompanyModel,
    CountryPaymentSettingsModel,
    InvoiceModel,
    PartnerModel,
    PaymentModel,
)
from treasury_modules.smart_payment.service import SmartPaymentService

SQLITE_MEMORY_URL = "sqlite+pysqlite:///:memory:"
FIXED_NOW = datetime(2024, 3, 15, 9, 30, 0, tzinfo=timezone.utc)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture treasury logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, service):
            service.preview_allocation(...)
            logs = captured_logs()
            assert any(r["message"] == "allocation_preview_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("treasury")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Configuration, clock
# =============================================================================


@pytest.fixture
def treasury_config() -> TreasuryConfig:
    """Bundled defaults: 0.5% / 0.50 tolerance, due-date order, credit policy."""
    return load_config()


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(FIXED_NOW)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_engine():
    """Fresh in-memory schema per test, immutability listeners enabled."""
    engine = init_engine_from_url(SQLITE_MEMORY_URL)
    create_all_tables()
    yield engine
    drop_tables()
    reset_engine()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    s = get_session()
    yield s
    s.close()


@pytest.fixture
def session_factory(db_engine):
    return get_session_factory()


@pytest.fixture
def service(session, treasury_config, clock) -> SmartPaymentService:
    return SmartPaymentService(session, treasury_config, clock)


# =============================================================================
# Seed data
# =============================================================================


class SeedData:
    """Creates and commits rows for a test."""

    def __init__(self, session: Session):
        self.session = session
        self._invoice_seq = 0

    def _save(self, model):
        self.session.add(model)
        self.session.commit()
        return model

    def company(
        self,
        name: str = "Autohaus Nord GmbH",
        country_code: str | None = "DE",
        enabled: bool | None = None,
        percent: str | None = None,
        absolute: str | None = None,
    ) -> CompanyModel:
        return self._save(CompanyModel(
            name=name,
            country_code=country_code,
            tolerance_enabled=enabled,
            tolerance_max_writeoff_percent=Decimal(percent) if percent else None,
            tolerance_max_writeoff_absolute=Decimal(absolute) if absolute else None,
        ))

    def country(
        self,
        country_code: str,
        enabled: bool | None = None,
        percent: str | None = None,
        absolute: str | None = None,
    ) -> CountryPaymentSettingsModel:
        return self._save(CountryPaymentSettingsModel(
            country_code=country_code,
            tolerance_enabled=enabled,
            tolerance_max_writeoff_percent=Decimal(percent) if percent else None,
            tolerance_max_writeoff_absolute=Decimal(absolute) if absolute else None,
        ))

    def partner(self, company: CompanyModel, name: str = "Fleet Leasing AG") -> PartnerModel:
        return self._save(PartnerModel(company_id=company.id, name=name))

    def invoice(
        self,
        company: CompanyModel,
        partner: PartnerModel,
        balance: str,
        due_date: date | None = date(2024, 2, 1),
        invoice_date: date = date(2024, 1, 2),
        currency: str = "EUR",
        total: str | None = None,
    ) -> InvoiceModel:
        self._invoice_seq += 1
        return self._save(InvoiceModel(
            company_id=company.id,
            partner_id=partner.id,
            document_number=f"RE-2024-{self._invoice_seq:04d}",
            currency=currency,
            total=Decimal(total or balance),
            balance_due=Decimal(balance),
            invoice_date=invoice_date,
            due_date=due_date,
            status=InvoiceStatus.OPEN.value,
        ))

    def payment(
        self,
        company: CompanyModel,
        partner: PartnerModel,
        amount: str,
        currency: str = "EUR",
    ) -> PaymentModel:
        return self._save(PaymentModel(
            company_id=company.id,
            partner_id=partner.id,
            amount=Decimal(amount),
            currency=currency,
            payment_date=date(2024, 3, 14),
            reference="BANK-STMT-0042",
            allocation_status=PaymentAllocationStatus.UNALLOCATED.value,
        ))


@pytest.fixture
def seed(session) -> SeedData:
    return SeedData(session)


@pytest.fixture
def company(seed) -> CompanyModel:
    return seed.company()


@pytest.fixture
def partner(seed, company) -> PartnerModel:
    return seed.partner(company)
