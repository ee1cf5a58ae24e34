from typing import List, Literal, Optional

from pydantic import Field

from .common import ApiModel


class AffiliateProgramCreate(ApiModel):
    name: str = Field(min_length=1, max_length=255)
    code: str = Field(min_length=1, max_length=50)
    audience: Literal["internal", "public"] = "public"
    cookie_days: int = Field(default=30, ge=1)
    commission_rule_set: Optional[dict] = None
    min_payout: float = Field(default=50000, ge=0)
    payout_window: Optional[str] = None
    allowed_payout_methods: List[str] = []
    is_active: bool = True
    organization_id: Optional[str] = None


class AffiliateCreate(ApiModel):
    user_id: Optional[str] = None
    program_id: Optional[str] = None
    tracking_code: Optional[str] = Field(default=None, min_length=3, max_length=64)
    organization_id: Optional[str] = None


class CommissionCreate(ApiModel):
    amount: float = Field(gt=0)
    currency: str = Field(default="NGN", min_length=3, max_length=3)
    status: Literal["pending", "approved"] = "pending"
    order_ref: Optional[str] = None


class PayoutCreate(ApiModel):
    amount: float = Field(gt=0)
    currency: str = Field(default="NGN", min_length=3, max_length=3)
    payment_method: str = Field(min_length=1)
    payment_details: dict = {}
    notes: Optional[str] = None


class PayoutUpdate(ApiModel):
    notes: Optional[str] = None
    payment_method: Optional[str] = None
    payment_details: Optional[dict] = None


class PayoutComplete(ApiModel):
    transaction_id: Optional[str] = None


class PayoutFail(ApiModel):
    reason: Optional[str] = None
