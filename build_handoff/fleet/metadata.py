"""Instance metadata client.

Reads the instance's own identity from the link-local metadata service
using session tokens (IMDSv2): a PUT to /latest/api/token returns a token
that authorizes subsequent GETs under /latest/meta-data/.
"""

from __future__ import annotations

import logging

import httpx

from build_handoff.fleet.base import MetadataError

logger = logging.getLogger(__name__)

DEFAULT_METADATA_ENDPOINT = "http://169.254.169.254"

TOKEN_TTL_SECONDS = 21600

# Timeout for metadata requests (seconds)
METADATA_TIMEOUT = 5


class InstanceMetadataClient:
    """InstanceIdentity backed by the instance metadata service."""

    def __init__(
        self,
        client: httpx.Client,
        endpoint: str = DEFAULT_METADATA_ENDPOINT,
        timeout: float = METADATA_TIMEOUT,
    ) -> None:
        self.client = client
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self._token: str | None = None

    def _session_token(self) -> str:
        if self._token is None:
            try:
                response = self.client.put(
                    f"{self.endpoint}/latest/api/token",
                    headers={
                        "X-aws-ec2-metadata-token-ttl-seconds": str(TOKEN_TTL_SECONDS)
                    },
                    timeout=self.timeout,
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise MetadataError(
                    f"Failed to obtain metadata session token: {e}",
                    code="token_error",
                ) from e
            self._token = response.text.strip()
        return self._token

    def get(self, path: str) -> str:
        """Read one metadata value, e.g. "instance-id".

        Raises:
            MetadataError: If the value cannot be read.
        """
        url = f"{self.endpoint}/latest/meta-data/{path}"
        try:
            response = self.client.get(
                url,
                headers={"X-aws-ec2-metadata-token": self._session_token()},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise MetadataError(
                f"Metadata {path} unavailable: {e.response.status_code}",
                code="http_error",
            ) from e
        except httpx.RequestError as e:
            raise MetadataError(
                f"Network error reading metadata {path}: {e}",
                code="network_error",
            ) from e

        value = response.text.strip()
        if not value:
            raise MetadataError(f"Metadata {path} is empty", code="empty_value")
        logger.debug("Metadata %s = %s", path, value)
        return value

    def instance_id(self) -> str:
        return self.get("instance-id")

    def public_ipv4(self) -> str:
        return self.get("public-ipv4")


__all__ = ["DEFAULT_METADATA_ENDPOINT", "InstanceMetadataClient"]
