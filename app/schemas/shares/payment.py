from pydantic import BaseModel, Field


class CreateOrderSchema(BaseModel):
    course_id: int = Field(..., gt=0, description="Course to purchase")


class VerifyPaymentSchema(BaseModel):
    """Proof returned to the client by the gateway checkout."""

    order_id: str = Field(..., min_length=1, description="Gateway order id")
    payment_id: str = Field(..., min_length=1, description="Gateway payment id")
    signature: str = Field(..., min_length=1, description="hex HMAC-SHA256 of order_id|payment_id")
    course_id: int = Field(..., gt=0)
