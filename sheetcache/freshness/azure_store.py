"""
Azure Blob Freshness Store

Implementation of FreshnessStore backed by Azure Blob Storage, shared by
every device and app instance. One small JSON blob per feed key; the blob's
``last_modified`` property is the server-assigned fetch timestamp.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.identity import DefaultAzureCredential
from azure.storage.blob import BlobServiceClient, ContentSettings

from . import FreshnessRecord, FreshnessStore, coerce_row_count
from ..errors import FreshnessError
from ..logging import get_logger

logger = get_logger(__name__)


class AzureBlobFreshnessStore(FreshnessStore):
    """
    Freshness records stored as blobs: ``<prefix><feed_key>.json``.
    """

    backend = "azure-blob"

    def __init__(
        self,
        storage_account: Optional[str] = None,
        container_name: str = "sheets-cache",
        credential: Optional[Any] = None,
        prefix: str = "freshness/",
        blob_service_client: Optional[BlobServiceClient] = None
    ):
        """
        Initialize the Azure Blob freshness store.

        Args:
            storage_account: Azure Storage Account name
            container_name: Blob container name
            credential: Azure credential (uses DefaultAzureCredential if None)
            prefix: Blob name prefix of the freshness records
            blob_service_client: Preconfigured client, mainly for tests
        """
        self.container_name = container_name
        self.prefix = prefix

        if blob_service_client is None:
            if not storage_account:
                raise ValueError("storage_account is required without a blob_service_client")
            account_url = f"https://{storage_account}.blob.core.windows.net"
            blob_service_client = BlobServiceClient(
                account_url=account_url,
                credential=credential or DefaultAzureCredential()
            )
        self.blob_service_client = blob_service_client

        # Ensure container exists
        try:
            container_client = self.blob_service_client.get_container_client(container_name)
            container_client.get_container_properties()
        except ResourceNotFoundError:
            logger.info("Creating container", container_name=container_name)
            self.blob_service_client.create_container(container_name)
        except AzureError as e:
            raise FreshnessError(
                f"Failed to open container {container_name}: {e}", self.backend, "initialize"
            )

        logger.info(
            "Initialized Azure Blob freshness store",
            storage_account=storage_account,
            container_name=container_name
        )

    def _blob_name(self, feed_key: str) -> str:
        return f"{self.prefix}{feed_key}.json"

    def _blob_client(self, feed_key: str):
        return self.blob_service_client.get_blob_client(
            container=self.container_name,
            blob=self._blob_name(feed_key)
        )

    async def get(self, feed_key: str) -> Optional[FreshnessRecord]:
        try:
            downloader = self._blob_client(feed_key).download_blob()
            body = downloader.readall()
            last_modified = downloader.properties.last_modified
        except ResourceNotFoundError:
            return None
        except AzureError as e:
            raise FreshnessError(f"Failed to read record for {feed_key}: {e}", self.backend, "get")

        try:
            document = json.loads(body)
        except ValueError:
            document = {}
        if not isinstance(document, dict):
            document = {}

        return FreshnessRecord(
            feed_key=feed_key,
            last_fetched_at=last_modified,
            row_count=coerce_row_count(document.get("rowCount"), feed_key),
        )

    async def upsert(self, feed_key: str, row_count: int) -> FreshnessRecord:
        body = json.dumps({"feedKey": feed_key, "rowCount": row_count})
        try:
            response = self._blob_client(feed_key).upload_blob(
                body,
                overwrite=True,
                content_settings=ContentSettings(content_type="application/json")
            )
        except AzureError as e:
            raise FreshnessError(f"Failed to write record for {feed_key}: {e}", self.backend, "upsert")

        return FreshnessRecord(
            feed_key=feed_key,
            last_fetched_at=response.get("last_modified"),
            row_count=row_count,
        )
