from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pymongo import AsyncMongoClient


@dataclass
class MongoHandle:
    client: AsyncMongoClient
    db: Any

    async def close(self) -> None:
        await self.client.close()

    async def ping(self) -> None:
        await self.client.admin.command("ping")


def connect_mongo(mongo_url: str, db_name: str) -> MongoHandle:
    client: AsyncMongoClient = AsyncMongoClient(mongo_url, serverSelectionTimeoutMS=2000)
    return MongoHandle(client=client, db=client[db_name])
