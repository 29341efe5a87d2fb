# src/clusterseed/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import List, Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single bootstrap invocation
    env: str          # free-form environment label from settings
    cluster: Optional[str]  # cluster name being joined

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def new_ctx(env: str, cluster: Optional[str], run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z"),
        "run_id": run_id or str(uuid.uuid4()),
        "env": env,
        "cluster": cluster,
    }


# ---------------------------------------------------------------------
# Identity & inventory
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class IdentityResolved(BaseEvent):
    instance_id: str
    display_name: str
    region: str
    node_name: str
    private_ip: str

@dataclass(frozen=True)
class InventoryDegraded(BaseEvent):
    reason: str

@dataclass(frozen=True)
class CandidatesListed(BaseEvent):
    count: int
    names: List[str]


# ---------------------------------------------------------------------
# Quorum planning
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PeerSkipped(BaseEvent):
    instance_id: str
    reason: str

@dataclass(frozen=True)
class NoServersTagged(BaseEvent):
    server_tag: str

@dataclass(frozen=True)
class QuorumPlanned(BaseEvent):
    bootstrap_expect: Optional[int]
    retry_join: List[str]


# ---------------------------------------------------------------------
# Host state
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class AgentConfigWritten(BaseEvent):
    path: str
    dry_run: bool

@dataclass(frozen=True)
class SupervisorStanzaWritten(BaseEvent):
    path: str
    dry_run: bool

@dataclass(frozen=True)
class FirewallSkipped(BaseEvent):
    reason: str

@dataclass(frozen=True)
class FirewallReconciled(BaseEvent):
    opened: List[int]
    restarted: bool
    dry_run: bool = False


# ---------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BootstrapSummary(BaseEvent):
    ok: bool
    warnings: int
    error: Optional[str] = None
