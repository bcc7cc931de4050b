from fastapi import APIRouter, Body, Depends, Request, status

from app.core.deps import AuthorizationService
from app.db.models.database import User
from app.schemas.shares.payment import CreateOrderSchema, VerifyPaymentSchema
from app.services.shares.payments import PaymentService

router = APIRouter(prefix="/payment", tags=["Payment"])


@router.post("/create-order", status_code=status.HTTP_201_CREATED)
async def create_order(
    schema: CreateOrderSchema = Body(...),
    authorization: AuthorizationService = Depends(AuthorizationService),
    payment_service: PaymentService = Depends(PaymentService),
):
    user: User = await authorization.get_current_user()
    return await payment_service.create_order(user, schema.course_id)


@router.post("/verify")
async def verify_payment(
    schema: VerifyPaymentSchema = Body(...),
    authorization: AuthorizationService = Depends(AuthorizationService),
    payment_service: PaymentService = Depends(PaymentService),
):
    user: User = await authorization.get_current_user()
    return await payment_service.verify_and_settle(user, schema)


@router.post("/webhook/provider")
async def payment_webhook(
    request: Request,
    payment_service: PaymentService = Depends(PaymentService),
):
    # signature is over the exact bytes received, never a re-serialized body
    raw_body = await request.body()
    signature = request.headers.get(payment_service.settings.PAYMENT_WEBHOOK_SIGNATURE_HEADER)
    return await payment_service.handle_gateway_webhook(raw_body, signature)
