"""HTTP clients for the external custody and storage collaborators.

This module provides:

* **HTTPCustodyNode** -- REST client for one key-custody node.  Every
  call that needs authority carries the serialized capability chain in
  an ``Authorization: Bearer`` header.
* **HTTPContentStore** -- upload/download client for content-addressed
  storage behind a gateway.

Both open a short-lived :class:`httpx.AsyncClient` per request.  Neither
retries; timeouts and connection failures surface as
:class:`~sealvault.core.errors.CustodyUnavailable` or
:class:`~sealvault.core.errors.StorageUnavailable`.
"""
from __future__ import annotations

import logging
from typing import Any

import httpx

from sealvault.core.errors import (
    ContentNotFound,
    CustodyError,
    CustodyPermissionDenied,
    CustodyUnavailable,
    InvalidContent,
    NamespaceNotFound,
    ShareNotFound,
    StorageUnavailable,
)
from sealvault.core.types import (
    AccessControl,
    BuilderProfile,
    CapabilityToken,
    Did,
    NamespaceSpec,
    StoreAck,
)
from sealvault.tokens.codec import serialize_token

logger = logging.getLogger(__name__)

JSON_CONTENT_TYPE = "application/json"
OCTET_STREAM = "application/octet-stream"


# ---------------------------------------------------------------------------
# Custody node client
# ---------------------------------------------------------------------------


class HTTPCustodyNode:
    """Client for a single key-custody node.

    Parameters
    ----------
    base_url:
        The node's base URL (e.g. ``https://nildb-stg-n1.nillion.network``).
    timeout:
        Request timeout in seconds (default: 20).
    transport:
        Optional httpx transport, e.g. :class:`httpx.MockTransport` in tests.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @property
    def base_url(self) -> str:
        return self._base_url

    async def read_profile(self, builder: Did) -> BuilderProfile:
        data = await self._request("GET", f"/v1/builders/{builder}/profile")
        try:
            profile = data["data"]
            return BuilderProfile(
                did=Did(profile["did"]),
                namespaces=list(profile.get("collections", [])),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise self._malformed("builder profile") from exc

    async def create_namespace(
        self, spec: NamespaceSpec, token: CapabilityToken
    ) -> str:
        await self._request(
            "POST",
            "/v1/collections",
            token=token,
            json={
                "_id": spec.namespace_id,
                "type": str(spec.kind),
                "name": spec.name,
                "schema": spec.schema_,
            },
        )
        return spec.namespace_id

    async def store_share(
        self,
        *,
        owner: Did,
        acl: AccessControl,
        namespace_id: str,
        document_id: str,
        share: str,
        token: CapabilityToken,
    ) -> StoreAck:
        await self._request(
            "POST",
            "/v1/data/create",
            token=token,
            not_found=NamespaceNotFound,
            json={
                "owner": str(owner),
                "acl": acl.model_dump(mode="json"),
                "collection": namespace_id,
                "data": [
                    {"_id": document_id, "private_key": {"%share": share}},
                ],
            },
        )
        return StoreAck(namespace_id=namespace_id, document_id=document_id)

    async def read_share(
        self,
        namespace_id: str,
        document_id: str,
        token: CapabilityToken,
    ) -> str:
        data = await self._request(
            "GET",
            f"/v1/data/{namespace_id}/{document_id}",
            token=token,
            not_found=ShareNotFound,
        )
        try:
            share = data["data"]["private_key"]["%share"]
        except (KeyError, TypeError) as exc:
            raise self._malformed("share document") from exc
        if not isinstance(share, str):
            raise self._malformed("share document")
        return share

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _malformed(self, what: str) -> CustodyUnavailable:
        return CustodyUnavailable(
            f"Custody node returned a malformed {what}",
            details={"node": self._base_url},
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        token: CapabilityToken | None = None,
        json: dict[str, Any] | None = None,
        not_found: type[CustodyError] = NamespaceNotFound,
    ) -> Any:
        headers = {"Accept": JSON_CONTENT_TYPE}
        if token is not None:
            headers["Authorization"] = f"Bearer {serialize_token(token)}"

        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(method, path, json=json, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Custody node %s unreachable: %s", self._base_url, exc)
            raise CustodyUnavailable(
                details={"node": self._base_url, "path": path},
            ) from exc

        details = {"node": self._base_url, "path": path, "status": response.status_code}
        if response.status_code in (401, 403):
            raise CustodyPermissionDenied(details=details)
        if response.status_code == 404:
            raise not_found(details=details)
        if response.status_code >= 500:
            raise CustodyUnavailable(details=details)
        if response.status_code >= 400:
            raise CustodyPermissionDenied(
                "Custody node rejected the request",
                details=details,
            )

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as exc:
            raise self._malformed("response body") from exc


# ---------------------------------------------------------------------------
# Content storage client
# ---------------------------------------------------------------------------


class HTTPContentStore:
    """Content-addressed storage reached through an upload endpoint and a
    download gateway.

    Parameters
    ----------
    gateway_url:
        Base URL for downloads; content is fetched from
        ``<gateway_url>/<content_id>``.
    upload_url:
        Base URL for uploads; content is posted to ``<upload_url>/tx``
        and the response carries ``{"id": <content_id>}``.
    credential:
        Optional bearer credential for the upload endpoint.
    timeout:
        Request timeout in seconds (default: 20).
    transport:
        Optional httpx transport, e.g. :class:`httpx.MockTransport` in tests.
    """

    def __init__(
        self,
        gateway_url: str,
        upload_url: str,
        *,
        credential: str | None = None,
        timeout: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._gateway_url = gateway_url.rstrip("/")
        self._upload_url = upload_url.rstrip("/")
        self._credential = credential
        self._timeout = timeout
        self._transport = transport

    async def put(self, data: bytes) -> str:
        headers = {"Content-Type": OCTET_STREAM, "Accept": JSON_CONTENT_TYPE}
        if self._credential:
            headers["Authorization"] = f"Bearer {self._credential}"
        url = f"{self._upload_url}/tx"

        response = await self._send("POST", url, content=data, headers=headers)
        if response.status_code >= 400:
            raise StorageUnavailable(
                "Content upload was rejected",
                details={"url": url, "status": response.status_code},
            )
        try:
            content_id = response.json()["id"]
        except (ValueError, KeyError, TypeError) as exc:
            raise InvalidContent(
                "Upload response did not contain a content id",
                details={"url": url},
            ) from exc
        if not isinstance(content_id, str) or not content_id:
            raise InvalidContent(
                "Upload response contained an invalid content id",
                details={"url": url},
            )
        return content_id

    async def get(self, content_id: str) -> bytes:
        url = f"{self._gateway_url}/{content_id}"
        response = await self._send("GET", url)
        if response.status_code == 404:
            raise ContentNotFound(details={"content_id": content_id})
        if response.status_code >= 400:
            raise StorageUnavailable(
                details={"url": url, "status": response.status_code},
            )
        return response.content

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                return await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Content storage unreachable at %s: %s", url, exc)
            raise StorageUnavailable(details={"url": url}) from exc
