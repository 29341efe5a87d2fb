# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterseed/config/models.py

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from clusterseed.errors import InvalidRole, MissingRequiredArgument

# Consul: server RPC, serf LAN, serf WAN, HTTP API, DNS
DEFAULT_PORTS: List[int] = [8300, 8301, 8302, 8500, 8600]


class Role(str, Enum):
    SERVER = "server"
    CLIENT = "client"


class ClusterSpec(BaseModel):
    """Which cluster to join and in what role."""

    cluster_name: str
    role: Role
    server_tag: Optional[str] = None

    @property
    def is_server(self) -> bool:
        return self.role is Role.SERVER

    @classmethod
    def from_args(
        cls,
        *,
        role: Optional[str],
        cluster_name: Optional[str],
        server_tag: Optional[str] = None,
    ) -> "ClusterSpec":
        """
        Validate raw caller input. Raises ArgumentError subclasses rather than
        pydantic's ValidationError so the CLI can print usage guidance.
        """
        if not role:
            raise MissingRequiredArgument("--role is required (server or client)")
        try:
            parsed = Role(role.strip().lower())
        except ValueError:
            raise InvalidRole(f"invalid role {role!r}: expected 'server' or 'client'") from None

        if not cluster_name or not cluster_name.strip():
            raise MissingRequiredArgument("--cluster-name is required")

        tag = server_tag.strip() if server_tag else None
        if parsed is Role.SERVER and not tag:
            raise MissingRequiredArgument("--server-tag is required when --role=server")

        return cls(cluster_name=cluster_name.strip(), role=parsed, server_tag=tag)


class OciCredentials(BaseModel):
    """Credential material for generating a throwaway OCI CLI config."""

    user: Optional[str] = None
    fingerprint: Optional[str] = None
    tenancy: Optional[str] = None
    region: Optional[str] = None
    key_file: Optional[Path] = None

    def provided(self) -> bool:
        return any(v for v in (self.user, self.fingerprint, self.tenancy, self.region, self.key_file))

    def missing(self) -> List[str]:
        return [k for k in ("user", "fingerprint", "tenancy", "region", "key_file") if not getattr(self, k)]


class BootstrapSettings(BaseModel):
    # Free-form label attached to lifecycle events
    environment: str = "prod"

    # Agent layout on the host
    agent_binary: Path = Path("/usr/local/bin/consul")
    config_dir: Path = Path("/etc/consul.d")
    data_dir: Path = Path("/opt/consul/data")
    log_dir: Path = Path("/var/log/consul")
    agent_config_name: str = "consul.json"
    supervisor_conf_path: Path = Path("/etc/supervisord.d/consul.ini")
    user: str = "consul"

    # Firewall
    ports: List[int] = Field(default_factory=lambda: list(DEFAULT_PORTS))
    firewall_zone: str = "public"
    firewall_protocol: str = "tcp"

    # Instance metadata service (OCI IMDS v2)
    metadata_url: str = "http://169.254.169.254/opc/v2/instance"
    metadata_timeout: float = 3.0
    metadata_retries: int = 3

    # Cloud inventory
    oci_config_file: Path = Path("~/.oci/config")
    oci_profile: str = "DEFAULT"
    oci_credentials: OciCredentials = Field(default_factory=OciCredentials)
    # structured matching: cluster via freeform tag <match_tag_key>, servers via <role_tag_key>
    match_tag_key: Optional[str] = None
    role_tag_key: str = "role"
    resolve_workers: int = 4
    command_timeout: float = 10.0

    # Run switches
    skip_cloud_config: bool = False
    skip_agent_config: bool = False
    tool_log_dir: Optional[Path] = None

    @field_validator("ports")
    @classmethod
    def _valid_ports(cls, v: List[int]) -> List[int]:
        bad = [p for p in v if not 0 < int(p) < 65536]
        if bad:
            raise ValueError(f"ports out of range: {bad}")
        return sorted(set(int(p) for p in v))

    @field_validator("firewall_protocol")
    @classmethod
    def _valid_protocol(cls, v: str) -> str:
        v = v.lower()
        if v not in ("tcp", "udp"):
            raise ValueError("firewall_protocol must be tcp or udp")
        return v

    @field_validator("resolve_workers", "metadata_retries")
    @classmethod
    def _at_least_one(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be >= 1")
        return v

    @property
    def agent_config_path(self) -> Path:
        return self.config_dir / self.agent_config_name
