"""
Smart Payment Selectors (``treasury_modules.smart_payment.selectors``).

Read side of the smart payment module.  Every query is scoped to a company;
an entity belonging to another company is reported as not found.
"""

from __future__ import annotations

from collections.abc import Sequence
from uuid import UUID

from sqlalchemy import select

from treasury_engines.allocation import OpenInvoice
from treasury_engines.tolerance import TolerancePolicyLayer
from treasury_kernel.exceptions import (
    CompanyNotFoundError,
    InvoiceNotFoundError,
    PartnerNotFoundError,
    PaymentNotFoundError,
)
from treasury_kernel.selectors.base import BaseSelector
from treasury_modules.smart_payment.models import (
    InvoiceStatus,
    PaymentRecord,
)
from treasury_modules.smart_payment.orm import (
    CompanyModel,
    CountryPaymentSettingsModel,
    InvoiceModel,
    PartnerModel,
    PaymentModel,
)

_OPEN_STATUSES = (InvoiceStatus.OPEN.value, InvoiceStatus.PARTIALLY_PAID.value)


class SmartPaymentSelector(BaseSelector):
    """Queries backing tolerance resolution, previews and applies."""

    # -- tolerance layers ----------------------------------------------------

    def _company(self, company_id: str | UUID) -> CompanyModel:
        company = self.session.get(
            CompanyModel, self.parse_id(company_id, CompanyNotFoundError)
        )
        if company is None:
            raise CompanyNotFoundError(str(company_id))
        return company

    def company_layers(
        self, company_id: str | UUID
    ) -> tuple[TolerancePolicyLayer, str | None]:
        """Company tolerance layer and the company's country code."""
        company = self._company(company_id)
        return company.to_policy_layer(), company.country_code

    def country_layer(self, country_code: str | None) -> TolerancePolicyLayer | None:
        if not country_code:
            return None
        row = self.session.scalars(
            select(CountryPaymentSettingsModel).where(
                CountryPaymentSettingsModel.country_code == country_code.upper()
            )
        ).first()
        return row.to_policy_layer() if row is not None else None

    # -- partners and invoices -------------------------------------------------

    def require_partner(self, company_id: str | UUID, partner_id: str | UUID) -> UUID:
        company_uuid = self._company(company_id).id
        partner_uuid = self.parse_id(partner_id, PartnerNotFoundError)
        partner = self.session.get(PartnerModel, partner_uuid)
        if partner is None or partner.company_id != company_uuid:
            raise PartnerNotFoundError(str(partner_id))
        return partner_uuid

    def open_invoices(
        self, company_id: str | UUID, partner_id: str | UUID
    ) -> list[OpenInvoice]:
        """Snapshot of the partner's open invoices (any currency)."""
        partner_uuid = self.require_partner(company_id, partner_id)
        rows = self.session.scalars(
            select(InvoiceModel)
            .where(
                InvoiceModel.company_id == self.parse_id(company_id, CompanyNotFoundError),
                InvoiceModel.partner_id == partner_uuid,
                InvoiceModel.status.in_(_OPEN_STATUSES),
                InvoiceModel.balance_due > 0,
            )
            .order_by(InvoiceModel.id)
        ).all()
        return [row.to_open_invoice() for row in rows]

    def lock_invoices(
        self,
        company_id: UUID,
        partner_id: UUID,
        invoice_ids: Sequence[str],
    ) -> dict[str, InvoiceModel]:
        """
        Lock the targeted invoice rows (SELECT ... FOR UPDATE) in id order.

        Raises:
            InvoiceNotFoundError: an id is unknown or belongs to another
                company or partner.
        """
        uuids = sorted(self.parse_id(i, InvoiceNotFoundError) for i in invoice_ids)
        rows = self.session.scalars(
            select(InvoiceModel)
            .where(InvoiceModel.id.in_(uuids))
            .order_by(InvoiceModel.id)
            .with_for_update()
        ).all()
        by_id = {str(row.id): row for row in rows}
        for invoice_uuid in uuids:
            row = by_id.get(str(invoice_uuid))
            if row is None or row.company_id != company_id or row.partner_id != partner_id:
                raise InvoiceNotFoundError(str(invoice_uuid))
        return by_id

    # -- payments --------------------------------------------------------------

    def _payment(self, company_id: str | UUID, payment_id: str | UUID) -> PaymentModel:
        company_uuid = self._company(company_id).id
        payment = self.session.get(
            PaymentModel, self.parse_id(payment_id, PaymentNotFoundError)
        )
        if payment is None or payment.company_id != company_uuid:
            raise PaymentNotFoundError(str(payment_id))
        return payment

    def get_payment(self, company_id: str | UUID, payment_id: str | UUID) -> PaymentRecord:
        return self._payment(company_id, payment_id).to_dto()

    def lock_payment(self, company_id: str | UUID, payment_id: str | UUID) -> PaymentModel:
        """Lock the payment row for the duration of the caller's transaction."""
        company_uuid = self._company(company_id).id
        payment_uuid = self.parse_id(payment_id, PaymentNotFoundError)
        payment = self.session.scalars(
            select(PaymentModel)
            .where(PaymentModel.id == payment_uuid)
            .with_for_update()
        ).first()
        if payment is None or payment.company_id != company_uuid:
            raise PaymentNotFoundError(str(payment_id))
        return payment

