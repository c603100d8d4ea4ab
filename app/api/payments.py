"""
Payments API.
Initialize and verify Lenco payments for signed-in users.
"""

import json
import logging
from typing import Any, Dict, Type, TypeVar

import pydantic
from fastapi import APIRouter, Depends, Request

from app.api.deps import get_current_user, get_payment_service
from app.exceptions import NotFound, ValidationError
from app.schemas.payments import InitializeRequest, VerifyRequest
from app.services.auth_service import AuthenticatedUser
from app.services.payment_service import PaymentService

router = APIRouter()
logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)


async def read_json_body(request: Request) -> Dict[str, Any]:
    body = await request.body()
    if not body:
        return {}
    try:
        data = json.loads(body)
    except (UnicodeDecodeError, json.JSONDecodeError):
        raise ValidationError("Invalid JSON payload")
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")
    return data


def parse_body(model: Type[ModelT], data: Dict[str, Any]) -> ModelT:
    """Validate a body, reporting the first problem as a ValidationError."""
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field_name = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(f"Invalid {field_name}" if field_name else "Invalid payment request")


@router.post("")
async def payments_action(
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    """
    Single entry point used by the web client.

    {"action": "initialize", ...} opens a checkout;
    {"action": "verify", "reference": ...} polls the gateway.
    """
    data = await read_json_body(request)
    action = data.get("action")

    if not action:
        raise ValidationError("Missing action parameter")
    if action == "initialize":
        result = await service.initialize(
            parse_body(InitializeRequest, data),
            user_id=user.id,
            origin=request.headers.get("origin"),
        )
    elif action == "verify":
        result = await service.verify(parse_body(VerifyRequest, data))
    else:
        raise ValidationError(f"Unsupported action: {action}")

    return {"success": True, "data": result}


@router.post("/verify")
async def verify_payment(
    request: Request,
    _: AuthenticatedUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    data = await read_json_body(request)
    result = await service.verify(parse_body(VerifyRequest, data))
    return {"success": True, "data": result}


@router.get("/status/{reference}")
async def get_payment_status(
    reference: str,
    user: AuthenticatedUser = Depends(get_current_user),
    service: PaymentService = Depends(get_payment_service),
):
    """Stored state of one of the caller's payments. Does not contact the gateway."""
    payment = await service.get_payment(reference)
    if payment is None or str(payment.user_id) != user.id:
        raise NotFound()

    return {
        "success": True,
        "data": {
            "reference": payment.reference,
            "status": payment.status,
            "amount": float(payment.amount),
            "currency": payment.currency,
            "payment_method": payment.payment_method,
            "provider": payment.provider,
            "payment_url": payment.authorization_url,
            "reconciled_by": payment.reconciled_by,
            "paid_at": payment.paid_at.isoformat() if payment.paid_at else None,
            "created_at": payment.created_at.isoformat() if payment.created_at else None,
        },
    }
