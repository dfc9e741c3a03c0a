"""Object storage client for product images."""
import logging
import secrets
import time
from typing import Optional

import httpx

from storefront.config import STORAGE_BUCKET, SUPABASE_ANON_KEY, SUPABASE_URL
from storefront.monitoring import external_storage_duration_histogram, image_uploads_counter

logger = logging.getLogger(__name__)


class StorageService:
    """Client for the hosted object storage API."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str = SUPABASE_URL,
        api_key: str = SUPABASE_ANON_KEY,
        bucket: str = STORAGE_BUCKET
    ):
        self.http_client = http_client
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.bucket = bucket

    async def upload(
        self,
        path: str,
        content: bytes,
        content_type: str,
        access_token: Optional[str] = None
    ) -> Optional[str]:
        """
        Store an object at ``path`` in the bucket.

        Returns:
            None on success, otherwise an error message
        """
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {access_token or self.api_key}",
            "Content-Type": content_type,
        }
        start = time.time()
        try:
            response = await self.http_client.post(
                f"{self.base_url}/storage/v1/object/{self.bucket}/{path}",
                content=content,
                headers=headers
            )
        except httpx.HTTPError as e:
            return str(e)
        finally:
            external_storage_duration_histogram.record(time.time() - start, {"operation": "upload"})

        if response.status_code not in (200, 201):
            return f"storage returned {response.status_code}: {response.text[:200]}"
        return None

    def get_public_url(self, path: str) -> str:
        """Public URL of an object in the bucket."""
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{path}"

    async def upload_product_image(
        self,
        user_id: str,
        filename: str,
        content: bytes,
        content_type: str,
        access_token: Optional[str] = None
    ) -> Optional[str]:
        """
        Upload a product image under the user's folder.

        Args:
            user_id: Owner; used as the folder name
            filename: Original file name; only its extension is kept
            content: File bytes
            content_type: MIME type, must be image/*
            access_token: Caller's session token

        Returns:
            Public URL of the image, or None if it was rejected or failed
        """
        if not content_type or not content_type.startswith("image/"):
            image_uploads_counter.add(1, {"status": "rejected"})
            logger.warning("Rejected non-image upload", extra={
                "user_id": user_id,
                "content_type": content_type
            })
            return None

        extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else "bin"
        path = f"{user_id}/{secrets.token_urlsafe(8)}.{extension}"

        error = await self.upload(path, content, content_type, access_token=access_token)
        if error:
            image_uploads_counter.add(1, {"status": "failed"})
            logger.error("Error uploading image", extra={"user_id": user_id, "path": path, "error": error})
            return None

        image_uploads_counter.add(1, {"status": "uploaded"})
        return self.get_public_url(path)
