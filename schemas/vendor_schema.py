from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class VendorRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="_id")
    business_name: str
    email: str | None = None
    contact_name: str | None = None
    settlement_bank: str | None = None
    account_number: str | None = None
    subaccount_code: str | None = None

    @property
    def has_bank_details(self) -> bool:
        return bool(self.settlement_bank and self.account_number)


class SubaccountOut(BaseModel):
    vendor_id: str
    subaccount_code: str
    created: bool
