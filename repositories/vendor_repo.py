from __future__ import annotations

from typing import Any

from pymongo import ReturnDocument

from schemas.vendor_schema import VendorRecord


class MongoVendorStore:
    def __init__(self, db: Any, *, collection: str = "vendors") -> None:
        self._vendors = db[collection]

    async def get_vendor(self, vendor_id: str) -> VendorRecord | None:
        row = await self._vendors.find_one({"_id": vendor_id})
        if row is None:
            return None
        return VendorRecord(**row)

    async def set_subaccount_code(self, vendor_id: str, subaccount_code: str) -> VendorRecord | None:
        # First writer wins; the code is never replaced once stored.
        row = await self._vendors.find_one_and_update(
            {"_id": vendor_id, "subaccount_code": None},
            {"$set": {"subaccount_code": subaccount_code}},
            return_document=ReturnDocument.AFTER,
        )
        if row is None:
            return await self.get_vendor(vendor_id)
        return VendorRecord(**row)
