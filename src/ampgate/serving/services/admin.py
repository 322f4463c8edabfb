"""Async reader for the indexer admin API."""

from __future__ import annotations

import logging

import httpx

from ampgate.serving import errors

LOG = logging.getLogger("ampgate.serving.services.admin")


def extract_dataset_names(payload: object) -> list[str]:
    """
    Pull dataset names out of an admin ``/datasets`` listing.

    Each entry contributes its ``name``, else its ``id``, else itself; anything that is not
    a string is ignored.

    Parameters
    ----------
    payload:
        Decoded JSON body.

    Returns
    -------
    list[str]
        Names in listing order.

    Raises
    ------
    errors.UpstreamError
        When the payload is not a JSON array.
    """
    if not isinstance(payload, list):
        message = "AMP admin /datasets did not return a JSON array"
        raise errors.upstream_failure(message)
    names: list[str] = []
    for entry in payload:
        candidate: object = entry
        if isinstance(entry, dict):
            candidate = entry.get("name")
            if candidate is None:
                candidate = entry.get("id")
        if isinstance(candidate, str):
            names.append(candidate)
    return names


class AdminClient:
    """Read-only client for ``<admin>/datasets`` and ``<admin>/jobs``."""

    def __init__(self, client: httpx.AsyncClient, base_url: str) -> None:
        self._client = client
        self._base_url = base_url.rstrip("/")

    async def fetch_json(self, path: str) -> object:
        """
        GET an admin resource and decode its JSON body.

        Parameters
        ----------
        path:
            Resource path such as ``/datasets``.

        Returns
        -------
        object
            Decoded JSON payload.

        Raises
        ------
        errors.UpstreamError
            On transport failure, non-2xx status or an undecodable body.
        """
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.get(url)
        except httpx.HTTPError as exc:
            message = f"AMP admin request failed: {exc}"
            raise errors.upstream_failure(message) from exc
        if not response.is_success:
            message = f"AMP admin {path} failed: {response.status_code} - {response.text}"
            raise errors.upstream_failure(
                message,
                upstream_status=response.status_code,
                upstream_body=response.text,
            )
        try:
            return response.json()
        except ValueError as exc:
            message = f"AMP admin {path} returned invalid JSON"
            raise errors.upstream_failure(message, upstream_status=response.status_code) from exc

    async def fetch_optional(self, path: str) -> tuple[object, bool]:
        """
        Best-effort variant of :meth:`fetch_json`.

        Returns
        -------
        tuple[object, bool]
            The payload and True, or ``(None, False)`` when the read failed.
        """
        try:
            return await self.fetch_json(path), True
        except errors.UpstreamError as exc:
            LOG.warning("Admin read %s unavailable: %s", path, exc)
            return None, False

    async def list_dataset_names(self) -> list[str]:
        """
        Return dataset names registered with the indexer.

        Returns
        -------
        list[str]
            Names from the admin listing.
        """
        return extract_dataset_names(await self.fetch_json("/datasets"))
