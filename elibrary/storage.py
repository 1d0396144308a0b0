"""
Supabase Storage adapter.

Objects are addressed by a reference of the form ``<bucket>/<key>``; bare
keys are accepted too and resolved against the bucket passed in.
"""

import os
from functools import lru_cache
from typing import Annotated
from uuid import uuid4

import httpx
from fastapi import Depends #type: ignore
from loguru import logger

from elibrary.config import Settings, get_settings
from elibrary.errors import StorageError

BOOK_COVER_BUCKET = "book-covers"
ID_CARD_BUCKET = "id-cards"


def book_cover_key(book_id: int, filename: str | None) -> str:
    return f"{book_id}_{uuid4()}{os.path.splitext(filename or '')[1]}"

def id_card_key(user_id: int, book_id: int, filename: str | None) -> str:
    return f"{user_id}/{book_id}_{uuid4()}{os.path.splitext(filename or '')[1]}"


class StorageService:
    def __init__(self, settings: Settings, client: httpx.AsyncClient | None = None):
        self.settings = settings
        self._client = client

    @property
    def base_url(self) -> str:
        return f"{self.settings.supabase_url}/storage/v1"

    def _headers(self) -> dict:
        key = self.settings.supabase_service_role_key
        if not self.settings.supabase_url or not key:
            raise StorageError("Supabase URL and Service Role Key must be configured")
        return {"Authorization": f"Bearer {key}", "apikey": key}

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        if self._client is not None:
            return await self._client.request(method, url, **kwargs)
        async with httpx.AsyncClient(timeout=httpx.Timeout(30.0, connect=5.0)) as client:
            return await client.request(method, url, **kwargs)

    @staticmethod
    def _split(reference: str, bucket: str) -> str:
        prefix = f"{bucket}/"
        return reference[len(prefix):] if reference.startswith(prefix) else reference

    async def upload(self, data: bytes, key: str, bucket: str, content_type: str | None = None) -> str:
        """Store ``data`` under ``key`` and return the stored reference."""
        headers = self._headers()
        headers.update({
            "Content-Type": content_type or "application/octet-stream",
            "cache-control": "3600",
            "x-upsert": "false",
        })
        try:
            response = await self._request("POST", f"{self.base_url}/object/{bucket}/{key}", content=data, headers=headers)
            response.raise_for_status()
            reference = response.json().get("Key") or f"{bucket}/{key}"
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Error uploading {} to bucket {}: {}", key, bucket, exc)
            raise StorageError(f"Could not upload file to {bucket}") from exc
        logger.info("Uploaded {} ({} bytes)", reference, len(data))
        return reference

    def public_url(self, reference: str, bucket: str) -> str:
        if reference.startswith(("http://", "https://")):
            return reference
        return f"{self.base_url}/object/public/{bucket}/{self._split(reference, bucket)}"

    async def delete(self, reference: str, bucket: str) -> bool:
        try:
            response = await self._request(
                "DELETE",
                f"{self.base_url}/object/{bucket}",
                json={"prefixes": [self._split(reference, bucket)]},
                headers=self._headers(),
            )
            response.raise_for_status()
        except (httpx.HTTPError, StorageError) as exc:
            logger.error("Error deleting {} from bucket {}: {}", reference, bucket, exc)
            return False
        return True

    def cover_url(self, reference: str | None) -> str | None:
        return self.public_url(reference, BOOK_COVER_BUCKET) if reference else None

    def id_card_url(self, reference: str | None) -> str | None:
        return self.public_url(reference, ID_CARD_BUCKET) if reference else None


@lru_cache()
def get_storage() -> StorageService:
    return StorageService(get_settings())


StorageDep = Annotated[StorageService, Depends(get_storage)]
