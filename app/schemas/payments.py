"""Request bodies for the payments API."""

from decimal import Decimal
from typing import Optional, Dict, Any

from pydantic import BaseModel, ConfigDict, Field

from app.fsm.states import AmountUnit, MobileMoneyProvider, PaymentMethod


class InitializeRequest(BaseModel):
    """
    Body of {action: "initialize"}.

    Presence checks are left to PaymentService so that every rule reports
    the same way; this model only fixes shapes and types.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    amount: Optional[Decimal] = None
    amount_unit: Optional[AmountUnit] = Field(default=None, alias="amountUnit")
    payment_method: PaymentMethod = Field(default=PaymentMethod.MOBILE_MONEY, alias="paymentMethod")
    phone_number: Optional[str] = Field(default=None, alias="phoneNumber")
    provider: Optional[MobileMoneyProvider] = None
    description: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    currency: Optional[str] = None
    reference: Optional[str] = None
    label: Optional[str] = None
    callback_url: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class VerifyRequest(BaseModel):
    """Body of {action: "verify"} and POST /payments/verify."""

    model_config = ConfigDict(extra="ignore")

    reference: Optional[str] = None
