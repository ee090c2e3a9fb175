from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from azure.core.credentials import TokenCredential
from azure.core.exceptions import HttpResponseError
from azure.storage.blob import (
    BlobSasPermissions,
    BlobServiceClient,
    generate_blob_sas,
)

from .db import settings
from .logging_config import get_logger

logger = get_logger(__name__)

_blob_service_client: BlobServiceClient | None = None
_container_is_private: bool | None = None


def _get_blob_service() -> BlobServiceClient:
    global _blob_service_client
    if _blob_service_client is None:
        if not settings.AZURE_STORAGE_CONNECTION_STRING:
            raise RuntimeError("Azure Blob Storage is not configured")
        _blob_service_client = BlobServiceClient.from_connection_string(
            settings.AZURE_STORAGE_CONNECTION_STRING
        )
    return _blob_service_client


def _is_absolute(image_ref: str) -> bool:
    return image_ref.startswith(("http://", "https://"))


async def screenshot_url(image_ref: str) -> str:
    """Turn a stored screenshot reference into a URL the client can load.

    Absolute URLs and references in deployments without blob storage are
    returned unchanged. Blob names resolve against the screenshot container;
    when that container is private the URL carries a short-lived read SAS.
    """
    if _is_absolute(image_ref) or not settings.AZURE_STORAGE_CONNECTION_STRING:
        return image_ref

    service = _get_blob_service()
    container_name = settings.AZURE_STORAGE_CONTAINER
    container_client = service.get_container_client(container_name)

    global _container_is_private
    if _container_is_private is None:
        try:
            properties = await asyncio.to_thread(container_client.get_container_properties)
        except HttpResponseError as exc:
            # Callers without container read rights can still sign blob URLs.
            logger.warning(
                "could not read container properties, assuming private",
                extra={"container": container_name, "error_code": getattr(exc, "error_code", None)},
            )
            _container_is_private = True
        else:
            public_access = getattr(properties, "public_access", None)
            _container_is_private = public_access not in {"blob", "container"}

    blob_name = image_ref.strip("/")
    blob_client = container_client.get_blob_client(blob_name)

    if _container_is_private:
        return await _build_private_blob_url(service, container_name, blob_name, blob_client.url)
    return blob_client.url


async def _build_private_blob_url(
    service: BlobServiceClient, container_name: str, blob_name: str, base_url: str
) -> str:
    now = datetime.now(timezone.utc)
    expiry = now + timedelta(minutes=settings.SCREENSHOT_URL_TTL_MINUTES)
    permissions = BlobSasPermissions(read=True)

    credential = getattr(service, "credential", None)

    if isinstance(credential, TokenCredential):
        delegation_key = await asyncio.to_thread(
            service.get_user_delegation_key,
            now,
            expiry,
        )
        sas_token = generate_blob_sas(
            account_name=service.account_name,
            container_name=container_name,
            blob_name=blob_name,
            user_delegation_key=delegation_key,
            permission=permissions,
            expiry=expiry,
        )
    elif credential is not None:
        sas_token = generate_blob_sas(
            account_name=service.account_name,
            container_name=container_name,
            blob_name=blob_name,
            account_key=getattr(credential, "account_key", credential),
            permission=permissions,
            expiry=expiry,
        )
    else:
        raise RuntimeError("Azure Blob Storage credential is required for SAS generation")

    separator = "&" if "?" in base_url else "?"
    return f"{base_url}{separator}{sas_token}"
