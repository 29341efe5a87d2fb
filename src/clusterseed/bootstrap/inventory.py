# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterseed/bootstrap/inventory.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence

from clusterseed.errors import CommandFailed, InventoryUnavailable, PeerResolutionFailed
from clusterseed.execution.runner import CommandRunner

log = logging.getLogger("clusterseed")


class LifecycleState(str, Enum):
    PROVISIONING = "PROVISIONING"
    RUNNING = "RUNNING"
    STARTING = "STARTING"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"
    CREATING_IMAGE = "CREATING_IMAGE"
    OTHER = "OTHER"

    @classmethod
    def parse(cls, raw: Optional[str]) -> "LifecycleState":
        try:
            return cls((raw or "").upper())
        except ValueError:
            return cls.OTHER


# Terminating/terminated/moving instances are either torn down or not yet joinable.
JOINABLE_STATES = frozenset(
    {
        LifecycleState.PROVISIONING,
        LifecycleState.RUNNING,
        LifecycleState.STARTING,
        LifecycleState.STOPPING,
        LifecycleState.STOPPED,
        LifecycleState.CREATING_IMAGE,
    }
)


@dataclass(frozen=True)
class InstanceRecord:
    id: str
    display_name: str
    lifecycle_state: LifecycleState
    private_ip: Optional[str] = None
    freeform_tags: Dict[str, str] = field(default_factory=dict, hash=False, compare=False)

    def labelled(self, needle: str, tag_key: Optional[str] = None) -> bool:
        """
        Name match (case-sensitive substring of display_name) or, when
        *tag_key* is given, exact match of that freeform tag's value.
        """
        if tag_key:
            return self.freeform_tags.get(tag_key) == needle
        return needle in self.display_name


class CloudInventory(Protocol):
    """
    Read-only view of the cloud account. Fakes implementing this are used in tests.
    """

    def list_candidates(self, cluster_name: str) -> Sequence[InstanceRecord]:
        """Joinable instances belonging to *cluster_name*. Raises InventoryUnavailable."""
        ...

    def resolve_private_ip(self, instance_id: str) -> Optional[str]:
        """Private IP of the instance's primary VNIC, or None when it cannot be resolved."""
        ...

    def fqdn(self, instance_id: str) -> str:
        """hostname-label.subnet-domain of the primary VNIC; may be degenerate ("" or ".")."""
        ...


def filter_candidates(
    records: Sequence[InstanceRecord],
    cluster_name: str,
    tag_key: Optional[str] = None,
) -> List[InstanceRecord]:
    joinable = [r for r in records if r.lifecycle_state in JOINABLE_STATES]
    return [r for r in joinable if r.labelled(cluster_name, tag_key)]


class OciCliInventory:
    """
    CloudInventory backed by the `oci` CLI (JSON output).

    All calls go through CommandRunner so they are bounded by the command timeout.
    """

    def __init__(
        self,
        runner: CommandRunner,
        compartment_id: str,
        config_file: Optional[Path] = None,
        profile: Optional[str] = None,
        match_tag_key: Optional[str] = None,
    ):
        self.runner = runner
        self.compartment_id = compartment_id
        self.config_file = Path(config_file).expanduser() if config_file else None
        self.profile = profile
        self.match_tag_key = match_tag_key
        self._vnic_cache: Dict[str, dict] = {}
        self._subnet_cache: Dict[str, str] = {}

    # ------------------ plumbing ------------------

    def ensure_available(self) -> None:
        if not self.runner.available("oci"):
            raise InventoryUnavailable("oci CLI not found on PATH")
        if self.config_file is None or not self.config_file.is_file():
            raise InventoryUnavailable(f"no OCI CLI config at {self.config_file}")

    def _oci_json(self, args: List[str]) -> dict:
        cmd = ["oci"]
        if self.config_file:
            cmd += ["--config-file", str(self.config_file)]
        if self.profile:
            cmd += ["--profile", self.profile]
        cmd += args
        cp = self.runner.run(cmd)
        out = (cp.stdout or "").strip()
        # `oci ... list` prints nothing at all when the result set is empty
        if not out:
            return {}
        return json.loads(out)

    # ------------------ listing ------------------

    def list_instances(self) -> List[InstanceRecord]:
        self.ensure_available()
        try:
            data = self._oci_json(
                ["compute", "instance", "list", "--compartment-id", self.compartment_id, "--all"]
            )
        except (CommandFailed, ValueError) as e:
            raise InventoryUnavailable(f"instance list failed: {e}") from e

        records = [
            InstanceRecord(
                id=item["id"],
                display_name=item.get("display-name") or "",
                lifecycle_state=LifecycleState.parse(item.get("lifecycle-state")),
                freeform_tags=dict(item.get("freeform-tags") or {}),
            )
            for item in data.get("data", [])
            if item.get("id")
        ]
        log.debug(f"instances in compartment: {[r.display_name for r in records]}")
        return records

    def list_candidates(self, cluster_name: str) -> List[InstanceRecord]:
        candidates = filter_candidates(self.list_instances(), cluster_name, self.match_tag_key)
        log.info(
            "Found %d candidate instance(s) for cluster %s: %s",
            len(candidates),
            cluster_name,
            ", ".join(r.display_name for r in candidates) or "-",
        )
        return candidates

    # ------------------ per-instance lookups ------------------

    def _primary_vnic(self, instance_id: str) -> dict:
        if instance_id in self._vnic_cache:
            return self._vnic_cache[instance_id]
        try:
            data = self._oci_json(["compute", "instance", "list-vnics", "--instance-id", instance_id])
        except (CommandFailed, ValueError) as e:
            raise PeerResolutionFailed(instance_id, str(e)) from e

        vnics = data.get("data") or []
        if not vnics:
            raise PeerResolutionFailed(instance_id, "no VNIC attached yet")
        primary = next((v for v in vnics if v.get("is-primary")), vnics[0])
        self._vnic_cache[instance_id] = primary
        return primary

    def resolve_private_ip(self, instance_id: str) -> Optional[str]:
        try:
            ip = self._primary_vnic(instance_id).get("private-ip")
            if not ip:
                raise PeerResolutionFailed(instance_id, "VNIC has no private IP")
            return ip
        except PeerResolutionFailed as e:
            log.warning("%s, skipping", e)
            return None

    def _subnet_domain(self, subnet_id: str) -> str:
        if subnet_id not in self._subnet_cache:
            data = self._oci_json(["network", "subnet", "get", "--subnet-id", subnet_id])
            self._subnet_cache[subnet_id] = (data.get("data") or {}).get("subnet-domain-name") or ""
        return self._subnet_cache[subnet_id]

    def fqdn(self, instance_id: str) -> str:
        try:
            vnic = self._primary_vnic(instance_id)
            label = vnic.get("hostname-label") or ""
            domain = self._subnet_domain(vnic["subnet-id"]) if vnic.get("subnet-id") else ""
        except (PeerResolutionFailed, CommandFailed, ValueError) as e:
            log.warning("cannot compute FQDN for %s: %s", instance_id, e)
            return ""
        return f"{label}.{domain}"
