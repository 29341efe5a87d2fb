# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterseed/bootstrap/identity.py
from __future__ import annotations

import ipaddress
import json
import logging
import socket
from typing import Dict, Optional

import requests

from clusterseed.bootstrap.inventory import CloudInventory
from clusterseed.errors import MetadataUnavailable
from clusterseed.utils.retry import RetryError, retry

log = logging.getLogger("clusterseed")

DEGENERATE_FQDNS = ("", ".")
METADATA_HOST = "169.254.169.254"


class MetadataClient:
    """
    Reader for the OCI instance metadata service (IMDS v2).

    Every key is fetched from ``<base_url>/<key>``. Values come back either
    as plain text or as a JSON scalar; both are normalized to ``str``.
    """

    HEADERS = {"Authorization": "Bearer Oracle"}

    def __init__(
        self,
        base_url: str = "http://169.254.169.254/opc/v2/instance",
        timeout: float = 3.0,
        retries: int = 3,
        retry_delay: float = 1.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.retries = retries
        self.retry_delay = retry_delay
        self.session = session or requests.Session()

    def _get(self, key: str) -> str:
        r = self.session.get(f"{self.base_url}/{key}", headers=self.HEADERS, timeout=self.timeout)
        r.raise_for_status()
        return r.text

    @staticmethod
    def _scalar(raw: str) -> str:
        text = raw.strip()
        try:
            value = json.loads(text)
        except ValueError:
            return text
        if isinstance(value, (dict, list)):
            return text
        return "" if value is None else str(value)

    def get(self, key: str) -> str:
        fetch = retry(
            retries=self.retries,
            delay=self.retry_delay,
            retry_on=(requests.RequestException,),
        )(self._get)
        try:
            value = self._scalar(fetch(key))
        except RetryError as e:
            raise MetadataUnavailable(f"metadata key {key!r} unreachable: {e.__cause__}") from e
        if not value:
            raise MetadataUnavailable(f"metadata key {key!r} is empty")
        return value


class InstanceIdentity:
    """
    Who this instance is. Values are memoized for the lifetime of one run.

    The inventory is optional: without cloud credentials the FQDN falls back
    to the display name and the private IP to a local host lookup.
    """

    def __init__(self, metadata: MetadataClient, inventory: Optional[CloudInventory] = None):
        self.metadata = metadata
        self.inventory = inventory
        self._cache: Dict[str, str] = {}

    def _meta(self, key: str) -> str:
        if key not in self._cache:
            self._cache[key] = self.metadata.get(key)
        return self._cache[key]

    def self_id(self) -> str:
        return self._meta("id")

    def self_region(self) -> str:
        return self._meta("region")

    def self_display_name(self) -> str:
        return self._meta("displayName")

    def self_compartment_id(self) -> str:
        return self._meta("compartmentId")

    def self_fqdn_or_name(self) -> str:
        if "fqdn" not in self._cache:
            fqdn = self.inventory.fqdn(self.self_id()) if self.inventory is not None else ""
            if fqdn in DEGENERATE_FQDNS:
                log.debug("FQDN %r unusable, falling back to display name", fqdn)
                fqdn = self.self_display_name()
            self._cache["fqdn"] = fqdn
        return self._cache["fqdn"]

    def self_private_ip(self) -> str:
        if "private_ip" not in self._cache:
            ip = self.inventory.resolve_private_ip(self.self_id()) if self.inventory is not None else None
            if not ip:
                ip = local_host_address()
                log.warning("No cloud inventory address for this instance, using local lookup %s", ip)
            self._cache["private_ip"] = ip
        return self._cache["private_ip"]


def local_host_address(target: str = METADATA_HOST) -> str:
    """
    Source address the kernel picks to reach *target* (no packet is sent on a
    UDP connect). Falls back to the resolver, which may only know loopback.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as s:
            s.connect((target, 80))
            addr = s.getsockname()[0]
    except OSError:
        try:
            addr = socket.gethostbyname(socket.gethostname())
        except OSError:
            addr = "127.0.0.1"
    if ipaddress.ip_address(addr).is_loopback:
        log.warning("Local address lookup returned loopback %s; peers will not reach this agent", addr)
    return addr
