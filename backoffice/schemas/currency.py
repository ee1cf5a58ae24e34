from typing import Optional

from pydantic import Field

from .common import ApiModel


class ExchangeRateCreate(ApiModel):
    base_currency: str = Field(min_length=3, max_length=3)
    target_currency: str = Field(min_length=3, max_length=3)
    rate: float = Field(ge=0)
    organization_id: Optional[str] = None
