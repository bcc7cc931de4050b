import json
import uuid
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from fastapi import Depends, HTTPException
from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.deps import get_settings
from app.core.enum import CourseStatus, OrderStatus
from app.core.exceptions import (
    BadGatewayException,
    BadRequestException,
    ConflictException,
    CourseNotFoundException,
    InternalServerException,
    NotFoundException,
    SignatureInvalidException,
)
from app.core.security import payment_signature_payload, verify_hex_signature
from app.core.settings import Settings
from app.db.models.database import Courses, Enrollments, Orders, User
from app.db.session import get_session
from app.libs.formats.datetime import now as get_now
from app.schemas.shares.payment import VerifyPaymentSchema
from app.services.shares.payment_gateway import (
    PaymentGatewayError,
    PaymentGatewayService,
    get_payment_gateway,
    to_minor_units,
)
from app.services.user.enrollments import EnrollmentService

WEBHOOK_CAPTURED = "payment.captured"
WEBHOOK_FAILED = "payment.failed"


@dataclass
class SettlementOutcome:
    """Result of the one PENDING → COMPLETED promotion that won."""

    order_id: int
    user_id: int
    course_id: int
    enrollment: Enrollments
    enrollment_created: bool


class PaymentService:
    """
    Checkout for paid courses.
    - create_order: gateway order + local PENDING row
    - verify_and_settle: client-attested proof (HMAC over order_id|payment_id)
    - handle_gateway_webhook: gateway-attested envelope (HMAC over raw body)
    Both settlement paths go through _promote, whose conditional UPDATE on
    status = PENDING decides who settles an order.
    """

    def __init__(
        self,
        db: AsyncSession = Depends(get_session),
        gateway: PaymentGatewayService = Depends(get_payment_gateway),
        settings: Settings = Depends(get_settings),
    ):
        self.db = db
        self.gateway = gateway
        self.settings = settings
        self.enrollments = EnrollmentService(db)

    # =========================================================
    # 🛒 CREATE ORDER
    # =========================================================
    async def create_order(self, user: User, course_id: int) -> dict:
        course = await self.db.get(Courses, course_id)
        if not course or course.status != CourseStatus.PUBLISHED.value:
            raise CourseNotFoundException(course_id)
        if not course.price or course.price <= 0:
            raise BadRequestException(
                "This course is free. Enroll directly instead of checking out.",
                errors=[{"field": "course_id", "message": "Course price must be greater than 0"}],
            )
        if await self.enrollments.get_enrollment(user.id, course.id):
            raise ConflictException("You are already enrolled in this course.")

        amount_minor = to_minor_units(course.price)
        currency = self.settings.PAYMENT_CURRENCY
        try:
            gateway_order = await self.gateway.create_order(
                amount_minor=amount_minor,
                currency=currency,
                receipt=f"rcpt_{user.id}_{course.id}_{uuid.uuid4().hex[:10]}",
                notes={"user_id": str(user.id), "course_id": str(course.id)},
            )
        except PaymentGatewayError as e:
            logger.error(f"[Payment][CreateOrder] Gateway error: {e}")
            raise BadGatewayException("Could not create payment order with the gateway.")

        try:
            now = get_now()
            order = Orders(
                user_id=user.id,
                course_id=course.id,
                amount=course.price,
                currency=currency,
                status=OrderStatus.PENDING.value,
                gateway_order_id=gateway_order["id"],
                payment_gateway=self.gateway.name,
                created_at=now,
                updated_at=now,
            )
            self.db.add(order)
            await self.db.commit()
        except Exception as e:
            # gateway order exists without a local row; nothing can settle it
            await self.db.rollback()
            logger.exception(f"[Payment][CreateOrder] Local order insert failed: {e}")
            raise InternalServerException("Failed to record payment order.")

        logger.info(
            f"[Payment] Order {order.gateway_order_id} PENDING "
            f"user={user.id} course={course.id} amount={course.price} {currency}"
        )
        return {
            "key_id": self.settings.PAYMENT_KEY_ID,
            "order_id": order.gateway_order_id,
            "amount": amount_minor,
            "currency": currency,
            "course_id": course.id,
            "course_title": course.title,
        }

    # =========================================================
    # 🔁 PROMOTION (shared by verify + webhook)
    # =========================================================
    async def _promote(
        self,
        gateway_order_id: str,
        payment_id: str,
        signature: Optional[str],
        user_id: Optional[int] = None,
    ) -> Optional[SettlementOutcome]:
        """PENDING → COMPLETED plus enrollment, in one transaction.

        Returns None when no PENDING row matched (already settled, failed or unknown).
        """
        try:
            stmt = (
                update(Orders)
                .where(
                    Orders.gateway_order_id == gateway_order_id,
                    Orders.status == OrderStatus.PENDING.value,
                )
                .values(
                    status=OrderStatus.COMPLETED.value,
                    gateway_payment_id=payment_id,
                    signature=signature,
                    updated_at=get_now(),
                )
                .execution_options(synchronize_session=False)
            )
            if user_id is not None:
                stmt = stmt.where(Orders.user_id == user_id)

            result = await self.db.execute(stmt)
            if result.rowcount != 1:
                return None

            row = (
                await self.db.execute(
                    select(Orders.id, Orders.user_id, Orders.course_id).where(
                        Orders.gateway_order_id == gateway_order_id
                    )
                )
            ).one()
            enrollment, created = await self.enrollments.ensure_enrollment(
                row.user_id, row.course_id
            )
            await self.db.commit()
        except HTTPException:
            raise
        except Exception as e:
            await self.db.rollback()
            logger.exception(f"[Payment][Settle] {gateway_order_id}: {e}")
            raise InternalServerException("Failed to settle payment.")

        logger.success(
            f"[Payment] Order {gateway_order_id} COMPLETED → enrollment {enrollment.id}"
            + ("" if created else " (already enrolled)")
        )
        return SettlementOutcome(
            order_id=row.id,
            user_id=row.user_id,
            course_id=row.course_id,
            enrollment=enrollment,
            enrollment_created=created,
        )

    async def _mark_failed(
        self,
        gateway_order_id: str,
        payment_id: Optional[str] = None,
        signature: Optional[str] = None,
        user_id: Optional[int] = None,
    ) -> bool:
        stmt = (
            update(Orders)
            .where(
                Orders.gateway_order_id == gateway_order_id,
                Orders.status == OrderStatus.PENDING.value,
            )
            .values(
                status=OrderStatus.FAILED.value,
                gateway_payment_id=payment_id,
                signature=signature,
                updated_at=get_now(),
            )
            .execution_options(synchronize_session=False)
        )
        if user_id is not None:
            stmt = stmt.where(Orders.user_id == user_id)
        try:
            result = await self.db.execute(stmt)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.exception(f"[Payment][Fail] {gateway_order_id}: {e}")
            raise InternalServerException("Failed to update payment order.")
        return result.rowcount == 1

    async def _settlement_result(
        self, enrollment: Enrollments, course_id: int, already_processed: bool
    ) -> dict:
        course = await self.db.get(Courses, course_id)
        return {
            "enrollment_id": enrollment.id,
            "course_id": course_id,
            "course_title": course.title if course else None,
            "enrolled_at": enrollment.enrolled_at,
            "already_processed": already_processed,
        }

    # =========================================================
    # ✅ CLIENT VERIFY
    # =========================================================
    async def verify_and_settle(self, user: User, data: VerifyPaymentSchema) -> dict:
        secret = self.settings.PAYMENT_KEY_SECRET
        if not secret:
            logger.error("[Payment][Verify] PAYMENT_KEY_SECRET is not configured")
            raise InternalServerException("Payment verification is not configured.")

        # 1) proof
        message = payment_signature_payload(data.order_id, data.payment_id)
        if not verify_hex_signature(secret, message, data.signature):
            failed = await self._mark_failed(
                data.order_id, data.payment_id, data.signature, user_id=user.id
            )
            logger.warning(
                f"[Payment][Verify] Signature mismatch order={data.order_id} "
                f"user={user.id} marked_failed={failed}"
            )
            raise SignatureInvalidException("Payment signature verification failed.")

        # 2) ownership
        order = await self.db.scalar(
            select(Orders).where(
                Orders.gateway_order_id == data.order_id,
                Orders.user_id == user.id,
            )
        )
        if not order:
            raise NotFoundException("Payment order not found.")
        course_id = order.course_id
        if course_id != data.course_id:
            raise BadRequestException(
                "Course does not match this order.",
                errors=[{"field": "course_id", "message": "Does not match the order's course"}],
            )

        # 3) promotion + enrollment
        outcome = await self._promote(
            data.order_id, data.payment_id, data.signature, user_id=user.id
        )
        if outcome:
            return await self._settlement_result(
                outcome.enrollment, course_id, already_processed=not outcome.enrollment_created
            )

        existing = await self.enrollments.get_enrollment(user.id, course_id)
        if existing:
            logger.warning(
                f"[Payment][Verify] Order {data.order_id} already settled, returning enrollment {existing.id}"
            )
            return await self._settlement_result(existing, course_id, already_processed=True)

        raise NotFoundException("Payment order not found or already processed.")

    # =========================================================
    # 📩 GATEWAY WEBHOOK
    # =========================================================
    async def handle_gateway_webhook(self, raw_body: bytes, signature: Optional[str]) -> dict:
        secret = self.settings.PAYMENT_WEBHOOK_SECRET
        if not secret:
            logger.error("[Payment][Webhook] PAYMENT_WEBHOOK_SECRET is not configured")
            raise InternalServerException("Webhook secret is not configured.")

        if not verify_hex_signature(secret, raw_body, signature):
            logger.warning("[Payment][Webhook] Rejected envelope with invalid signature")
            raise SignatureInvalidException("Invalid webhook signature.")

        try:
            body = json.loads(raw_body)
            event = body["event"]
            entity = body["payload"]["payment"]["entity"]
            payment_id = entity["id"]
            gateway_order_id = entity["order_id"]
        except (ValueError, KeyError, TypeError):
            raise BadRequestException(
                "Malformed webhook payload.",
                errors=[{"field": "payload.payment.entity", "message": "id and order_id are required"}],
            )

        logger.info(f"[Payment][Webhook] {event} order={gateway_order_id} payment={payment_id}")

        if event == WEBHOOK_CAPTURED:
            outcome = await self._promote(gateway_order_id, payment_id, None)
            if outcome:
                return {
                    "received": True,
                    "status": "processed",
                    "enrollment_id": outcome.enrollment.id,
                }
            return {"received": True, "status": await self._unsettled_status(gateway_order_id)}

        if event == WEBHOOK_FAILED:
            if await self._mark_failed(gateway_order_id, payment_id):
                logger.warning(f"[Payment][Webhook] Order {gateway_order_id} marked FAILED")
                return {"received": True, "status": "failed"}
            return {"received": True, "status": await self._unsettled_status(gateway_order_id)}

        return {"received": True, "status": "ignored"}

    async def _unsettled_status(self, gateway_order_id: str) -> str:
        exists = await self.db.scalar(
            select(Orders.id).where(Orders.gateway_order_id == gateway_order_id)
        )
        return "already_processed" if exists else "unknown_order"

    # =========================================================
    # 🧹 STALE ORDER SWEEP
    # =========================================================
    async def expire_stale_orders(self, max_age_hours: Optional[int] = None) -> int:
        hours = max_age_hours if max_age_hours is not None else self.settings.ORDER_PENDING_MAX_HOURS
        cutoff = get_now() - timedelta(hours=hours)
        try:
            result = await self.db.execute(
                update(Orders)
                .where(
                    Orders.status == OrderStatus.PENDING.value,
                    Orders.created_at < cutoff,
                )
                .values(status=OrderStatus.FAILED.value, updated_at=get_now())
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.exception(f"[Payment][Sweep] {e}")
            raise InternalServerException("Failed to expire stale orders.")
        if result.rowcount:
            logger.info(f"[Payment][Sweep] Expired {result.rowcount} stale PENDING order(s)")
        return result.rowcount
