"""REST client for listing servers from the Scaleway Instance API."""

from __future__ import annotations

import logging
from typing import Any

import requests

from ..config import ScalewayConfig
from ..exceptions import ConfigError, ScalewayAPIError
from .models import Instance

logger = logging.getLogger(__name__)


class ScalewayClient:
    """Lists servers across the configured Scaleway zones."""

    def __init__(self, config: ScalewayConfig):
        if not config.token:
            raise ConfigError("A Scaleway API token is required")
        self._base = f"{config.api_url.rstrip('/')}/instance/v1"
        self._zones = list(config.zones)
        self._per_page = config.per_page
        self._session = requests.Session()
        self._session.headers["X-Auth-Token"] = config.token
        self._session.headers["Accept"] = "application/json"
        self._timeout = config.timeout

    def list_instances(self, fetch_all: bool = True) -> list[Instance]:
        """Return the servers of every configured zone.

        With ``fetch_all`` every page is followed; otherwise only the first
        page of each zone is returned. Any failure aborts the whole listing.
        """
        instances: list[Instance] = []
        for zone in self._zones:
            zone_instances = self._list_zone_instances(zone, fetch_all)
            instances.extend(zone_instances)
            logger.debug("Zone %s has %d servers", zone, len(zone_instances), extra={"zone": zone})
        return instances

    # ── Pagination ──────────────────────────────────────────────────

    def _list_zone_instances(self, zone: str, fetch_all: bool) -> list[Instance]:
        instances: list[Instance] = []
        page = 1
        while True:
            resp = self._get(
                f"/zones/{zone}/servers",
                params={"page": page, "per_page": self._per_page},
            )
            try:
                batch = resp.json()["servers"]
                if not isinstance(batch, list):
                    raise TypeError(f"'servers' is {type(batch).__name__}, not a list")
                instances.extend(self._parse_server(raw) for raw in batch)
            except (ValueError, KeyError, TypeError, AttributeError) as exc:
                raise ScalewayAPIError(
                    f"Malformed server list for zone {zone}: {exc}",
                    status_code=resp.status_code,
                    response_body=resp.text,
                ) from exc

            total = self._total_count(resp, default=len(instances))
            if not fetch_all or not batch or len(instances) >= total:
                return instances
            page += 1

    @staticmethod
    def _total_count(resp: requests.Response, default: int) -> int:
        raw = resp.headers.get("X-Total-Count")
        if raw is None:
            return default
        try:
            return int(raw)
        except ValueError:
            return default

    # ── Parsing ─────────────────────────────────────────────────────

    @staticmethod
    def _parse_server(raw: dict[str, Any]) -> Instance:
        """Map a raw server object to an Instance; null fields become empty strings."""
        public_ip = raw.get("public_ip") or {}
        location = raw.get("location") or {}
        return Instance(
            id=raw.get("id") or "",
            name=raw.get("name") or "",
            public_ip=public_ip.get("address") or "",
            private_ip=raw.get("private_ip") or "",
            arch=raw.get("arch") or "",
            zone_id=location.get("zone_id") or "",
            tags=tuple(raw.get("tags") or ()),
        )

    # ── Internal HTTP helpers ───────────────────────────────────────

    def _get(self, path: str, params: dict | None = None) -> requests.Response:
        url = f"{self._base}{path}"
        logger.debug("GET %s params=%s", path, params)

        try:
            resp = self._session.get(url, params=params, timeout=self._timeout)
        except requests.RequestException as exc:
            raise ScalewayAPIError(f"Request failed: {exc}") from exc

        if resp.status_code >= 400:
            raise ScalewayAPIError(
                f"HTTP {resp.status_code} on GET {path}: {resp.text}",
                status_code=resp.status_code,
                response_body=resp.text,
            )

        return resp
