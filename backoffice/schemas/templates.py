from typing import Literal, Optional

from pydantic import Field

from .common import ApiModel


InvoiceTemplateType = Literal["professional", "modern", "minimal", "classic", "custom"]
ReceiptTemplateType = Literal["professional", "modern", "minimal", "classic", "creative", "custom"]
ReceiptScenario = Literal["woocommerce_order", "subscription_payment", "universal"]


class _TemplateBody(ApiModel):
    description: Optional[str] = None
    is_default: Optional[bool] = None
    is_active: Optional[bool] = None
    company_info: Optional[dict] = None
    design: Optional[dict] = None
    layout: Optional[dict] = None
    content: Optional[dict] = None
    fields: Optional[dict] = None


class InvoiceTemplateCreate(_TemplateBody):
    name: str = Field(min_length=1, max_length=255)
    organization_id: str
    user_id: str
    template_type: InvoiceTemplateType = "professional"


class InvoiceTemplateUpdate(_TemplateBody):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    template_type: Optional[InvoiceTemplateType] = None


class ReceiptTemplateCreate(_TemplateBody):
    name: str = Field(min_length=1, max_length=255)
    organization_id: str
    user_id: str
    template_type: ReceiptTemplateType = "professional"
    scenario: ReceiptScenario = "universal"


class ReceiptTemplateUpdate(_TemplateBody):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    template_type: Optional[ReceiptTemplateType] = None
    scenario: Optional[ReceiptScenario] = None
