# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterseed/bootstrap/agent_config.py
from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, field_validator

from clusterseed.bootstrap.identity import InstanceIdentity
from clusterseed.bootstrap.quorum import QuorumPlan
from clusterseed.config.models import ClusterSpec
from clusterseed.utils.execution import ExecutionContext

log = logging.getLogger("clusterseed")

WILDCARD_ADDR = "0.0.0.0"


class AgentConfig(BaseModel):
    """
    The agent's JSON config. Optional fields that are unset are left out of
    the document entirely; they are never written as null or [].
    """

    bind_addr: str
    advertise_addr: str
    client_addr: str = WILDCARD_ADDR
    datacenter: str
    node_name: str
    server: bool
    bootstrap_expect: Optional[int] = None
    retry_join: Optional[List[str]] = None
    ui: bool = True

    @field_validator("retry_join")
    @classmethod
    def _normalize_retry_join(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if not v:
            return None
        return sorted(set(v))

    @field_validator("bootstrap_expect")
    @classmethod
    def _positive_expect(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 1:
            return None
        return v

    def to_dict(self) -> dict:
        return self.model_dump(exclude_none=True)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, sort_keys=True) + "\n"


def atomic_write(path: Path, content: str, owner: Optional[str] = None, mode: int = 0o640) -> None:
    """
    Write *content* to *path* through a temp file in the same directory and
    rename it into place. The target is untouched if anything fails.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, mode)
        if owner:
            shutil.chown(tmp_name, user=owner)
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


class AgentConfigBuilder:
    def __init__(self, ctx: Optional[ExecutionContext] = None):
        self.ctx = ctx or ExecutionContext()

    def build(
        self,
        identity: InstanceIdentity,
        cluster: ClusterSpec,
        plan: QuorumPlan,
        region: str,
    ) -> AgentConfig:
        ip = identity.self_private_ip()
        return AgentConfig(
            bind_addr=ip,
            advertise_addr=ip,
            datacenter=region,
            node_name=identity.self_fqdn_or_name(),
            server=cluster.is_server,
            bootstrap_expect=plan.bootstrap_expect if cluster.is_server else None,
            retry_join=sorted(plan.retry_join),
        )

    def persist(self, config: AgentConfig, path: Path, owner: Optional[str] = None) -> Path:
        """Overwrite *path* with the full document, then hand ownership to *owner*."""
        text = config.to_json()
        if self.ctx.dry_run:
            log.info("[dry-run] would write %s:\n%s", path, text.rstrip())
            return Path(path)

        atomic_write(Path(path), text, owner=owner)
        log.info("Wrote agent config %s (owner=%s)", path, owner or "unchanged")
        return Path(path)
