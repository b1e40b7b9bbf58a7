"""HTTP binding for the fleet manager.

Endpoints:
- GET <endpoint>/instances/<instance_id>/group -> {"group": name | null}
  (404 when the instance is not known to any group)
- PUT <endpoint>/groups/<group>/desired-capacity with {"desired": n}
"""

from __future__ import annotations

import logging
from urllib.parse import quote

import httpx

from build_handoff.fleet.base import CapacityError

logger = logging.getLogger(__name__)


class HttpCapacityController:
    """CapacityController talking to a fleet manager REST API."""

    def __init__(
        self,
        client: httpx.Client,
        endpoint: str,
        timeout: float = 30.0,
    ) -> None:
        self.client = client
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout

    def describe_owning_group(self, instance_id: str) -> str | None:
        url = f"{self.endpoint}/instances/{quote(instance_id, safe='')}/group"
        try:
            response = self.client.get(url, timeout=self.timeout)
            if response.status_code == 404:
                return None
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise CapacityError(
                f"HTTP error describing group of {instance_id}: "
                f"{e.response.status_code}",
                code="http_error",
            ) from e
        except httpx.RequestError as e:
            raise CapacityError(
                f"Network error describing group of {instance_id}: {e}",
                code="network_error",
            ) from e
        except ValueError as e:
            raise CapacityError(
                f"Invalid group description for {instance_id}: {e}",
                code="invalid_response",
            ) from e

        group = payload.get("group") if isinstance(payload, dict) else None
        # Some fleet managers render a missing tag as the string "None"
        if not group or group == "None":
            return None
        return str(group)

    def set_desired_capacity(self, group: str, desired: int) -> None:
        if desired < 0:
            raise ValueError("desired capacity must not be negative")
        url = f"{self.endpoint}/groups/{quote(group, safe='')}/desired-capacity"
        try:
            response = self.client.put(
                url, json={"desired": desired}, timeout=self.timeout
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise CapacityError(
                f"HTTP error setting capacity of {group}: {e.response.status_code}",
                code="http_error",
            ) from e
        except httpx.RequestError as e:
            raise CapacityError(
                f"Network error setting capacity of {group}: {e}",
                code="network_error",
            ) from e
        logger.info("Desired capacity of %s set to %d", group, desired)


__all__ = ["HttpCapacityController"]
