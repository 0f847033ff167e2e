"""Smart payment HTTP routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from treasury_api.deps import CompanyContext, get_company_context, get_smart_payment_service
from treasury_api.schemas import (
    AllocationPreviewOut,
    ApplyAllocationIn,
    ApplyAllocationOut,
    OpenInvoiceOut,
    PreviewAllocationIn,
    ToleranceSettingsOut,
)
from treasury_modules.smart_payment.service import SmartPaymentService

router = APIRouter()


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/smart-payment/tolerance-settings", response_model=ToleranceSettingsOut)
def get_tolerance_settings(
    ctx: CompanyContext = Depends(get_company_context),
    service: SmartPaymentService = Depends(get_smart_payment_service),
) -> ToleranceSettingsOut:
    return ToleranceSettingsOut.from_settings(service.get_tolerance_settings(ctx.company_id))


@router.post("/smart-payment/preview-allocation", response_model=AllocationPreviewOut)
def preview_allocation(
    body: PreviewAllocationIn,
    ctx: CompanyContext = Depends(get_company_context),
    service: SmartPaymentService = Depends(get_smart_payment_service),
) -> AllocationPreviewOut:
    preview = service.preview_allocation(ctx.company_id, body.to_request())
    return AllocationPreviewOut.from_preview(preview)


@router.post("/smart-payment/apply-allocation", response_model=ApplyAllocationOut)
def apply_allocation(
    body: ApplyAllocationIn,
    ctx: CompanyContext = Depends(get_company_context),
    service: SmartPaymentService = Depends(get_smart_payment_service),
) -> ApplyAllocationOut:
    result = service.apply_allocation(
        ctx.company_id,
        body.payment_id,
        body.preview.to_preview(),
        actor_id=ctx.actor_id,
    )
    return ApplyAllocationOut.from_result(result)


@router.get("/partners/{partner_id}/open-invoices", response_model=list[OpenInvoiceOut])
def list_open_invoices(
    partner_id: str,
    ctx: CompanyContext = Depends(get_company_context),
    service: SmartPaymentService = Depends(get_smart_payment_service),
) -> list[OpenInvoiceOut]:
    return [
        OpenInvoiceOut.from_view(view)
        for view in service.list_open_invoices(ctx.company_id, partner_id)
    ]
