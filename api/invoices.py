"""/api/invoices: invoice lifecycle, payments and the payment webhook."""

from uuid import UUID

from fastapi import APIRouter, Query, Request

from api.base import success_response
from core.models import (
    InvoiceCreate,
    InvoiceItemCreate,
    InvoicePaymentCreate,
    InvoiceStatus,
    InvoiceUpdate,
)

SIGNATURE_HEADER = "Stripe-Signature"


def _caller(request: Request) -> tuple[UUID, UUID]:
    """(user_id, organization_id) set by AuthMiddleware."""
    return request.state.user_id, request.state.organization_id


def create_invoices_router(services: dict) -> APIRouter:
    router = APIRouter()

    invoice_svc = services["invoice"]
    payment_svc = services["payment"]

    # -------------------------------------------------------------------------
    # Public webhook (signature-verified, no session)
    # -------------------------------------------------------------------------

    @router.post("/invoices/webhook")
    async def payment_webhook(request: Request):
        payload = await request.body()
        result = payment_svc.reconcile_webhook(payload, request.headers.get(SIGNATURE_HEADER))
        return success_response({
            "received": result.received,
            "action": result.action,
            "invoice_id": str(result.invoice_id) if result.invoice_id else None,
            "reason": result.reason,
        }).model_dump(mode="json")

    # -------------------------------------------------------------------------
    # Reads (fixed paths must be registered before /invoices/{invoice_id})
    # -------------------------------------------------------------------------

    @router.get("/invoices")
    async def list_invoices(
        request: Request,
        status: InvoiceStatus | None = Query(None),
        client_id: UUID | None = Query(None),
    ):
        _, organization_id = _caller(request)
        invoices = invoice_svc.list_invoices(organization_id, status=status, client_id=client_id)
        return success_response(
            [i.model_dump(mode="json") for i in invoices]
        ).model_dump(mode="json")

    @router.get("/invoices/next-number")
    async def next_invoice_number(request: Request):
        _, organization_id = _caller(request)
        number = invoice_svc.peek_next_number(organization_id)
        return success_response({"invoice_number": number}).model_dump(mode="json")

    @router.get("/invoices/{invoice_id}")
    async def get_invoice(request: Request, invoice_id: UUID):
        _, organization_id = _caller(request)
        invoice = invoice_svc.get(invoice_id, organization_id)
        return success_response(invoice.model_dump(mode="json")).model_dump(mode="json")

    # -------------------------------------------------------------------------
    # Invoice mutations
    # -------------------------------------------------------------------------

    @router.post("/invoices", status_code=201)
    async def create_invoice(request: Request, body: InvoiceCreate):
        user_id, organization_id = _caller(request)
        invoice = invoice_svc.create(body, organization_id, user_id)
        return success_response(invoice.model_dump(mode="json")).model_dump(mode="json")

    @router.patch("/invoices/{invoice_id}")
    async def update_invoice(request: Request, invoice_id: UUID, body: InvoiceUpdate):
        user_id, organization_id = _caller(request)
        invoice = invoice_svc.update(invoice_id, organization_id, body, user_id)
        return success_response(invoice.model_dump(mode="json")).model_dump(mode="json")

    @router.delete("/invoices/{invoice_id}")
    async def delete_invoice(request: Request, invoice_id: UUID):
        user_id, organization_id = _caller(request)
        invoice_svc.delete(invoice_id, organization_id, user_id)
        return success_response({"deleted": True}).model_dump(mode="json")

    @router.post("/invoices/{invoice_id}/items", status_code=201)
    async def add_item(request: Request, invoice_id: UUID, body: InvoiceItemCreate):
        user_id, organization_id = _caller(request)
        invoice = invoice_svc.add_item(invoice_id, organization_id, body, user_id)
        return success_response(invoice.model_dump(mode="json")).model_dump(mode="json")

    @router.delete("/invoices/{invoice_id}/items/{item_id}")
    async def remove_item(request: Request, invoice_id: UUID, item_id: UUID):
        user_id, organization_id = _caller(request)
        invoice = invoice_svc.remove_item(invoice_id, item_id, organization_id, user_id)
        return success_response(invoice.model_dump(mode="json")).model_dump(mode="json")

    @router.post("/invoices/{invoice_id}/send")
    async def send_invoice(request: Request, invoice_id: UUID):
        user_id, organization_id = _caller(request)
        result = invoice_svc.send(invoice_id, organization_id, user_id)
        return success_response(result.model_dump(mode="json")).model_dump(mode="json")

    @router.post("/invoices/{invoice_id}/void")
    async def void_invoice(request: Request, invoice_id: UUID):
        user_id, organization_id = _caller(request)
        invoice = invoice_svc.void(invoice_id, organization_id, user_id)
        return success_response(invoice.model_dump(mode="json")).model_dump(mode="json")

    @router.post("/invoices/{invoice_id}/create-payment-link")
    async def create_payment_link(request: Request, invoice_id: UUID):
        user_id, organization_id = _caller(request)
        url = invoice_svc.create_payment_link(invoice_id, organization_id, user_id)
        return success_response({"url": url}).model_dump(mode="json")

    # -------------------------------------------------------------------------
    # Payments
    # -------------------------------------------------------------------------

    @router.post("/invoices/{invoice_id}/payments", status_code=201)
    async def record_payment(request: Request, invoice_id: UUID, body: InvoicePaymentCreate):
        user_id, organization_id = _caller(request)
        payment = payment_svc.apply_payment(invoice_id, organization_id, body, user_id)
        return success_response(payment.model_dump(mode="json")).model_dump(mode="json")

    @router.delete("/invoices/{invoice_id}/payments/{payment_id}")
    async def remove_payment(request: Request, invoice_id: UUID, payment_id: UUID):
        user_id, organization_id = _caller(request)
        invoice = payment_svc.remove_payment(invoice_id, payment_id, organization_id, user_id)
        return success_response(invoice.model_dump(mode="json")).model_dump(mode="json")

    return router
