# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterseed/bootstrap/quorum.py
from __future__ import annotations

import concurrent.futures
import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Sequence

from clusterseed.bootstrap.inventory import CloudInventory, InstanceRecord
from clusterseed.config.models import ClusterSpec, Role
from clusterseed.errors import InventoryUnavailable
from clusterseed.observers.dispatcher import EventBus
from clusterseed.observers.events import (
    CandidatesListed,
    InventoryDegraded,
    NoServersTagged,
    PeerSkipped,
    QuorumPlanned,
    new_ctx,
)

log = logging.getLogger("clusterseed")


@dataclass(frozen=True)
class QuorumPlan:
    bootstrap_expect: Optional[int] = None
    retry_join: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def empty(cls) -> "QuorumPlan":
        return cls()


class QuorumPlanner:
    """
    Turns the cluster's candidate instances into bootstrap_expect / retry_join.

    Peer IP lookups are independent reads, so they fan out over a small
    thread pool. A peer that cannot be resolved is skipped, never fatal.
    """

    def __init__(
        self,
        inventory: CloudInventory,
        *,
        max_workers: int = 4,
        role_tag_key: Optional[str] = None,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[dict] = None,
    ):
        self.inventory = inventory
        self.max_workers = max_workers
        self.role_tag_key = role_tag_key
        self.bus = bus
        self.run_ctx = run_ctx or new_ctx(env="prod", cluster=None)

    def _emit(self, event_cls, **fields) -> None:
        if self.bus:
            self.bus.emit(event_cls(**fields, **self.run_ctx))

    def _resolve_peers(self, peers: Sequence[InstanceRecord]) -> FrozenSet[str]:
        if not peers:
            return frozenset()

        resolved = set()
        workers = max(1, min(self.max_workers, len(peers)))
        with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {pool.submit(self.inventory.resolve_private_ip, p.id): p for p in peers}
            for fut in concurrent.futures.as_completed(futures):
                peer = futures[fut]
                try:
                    ip = fut.result()
                except Exception as exc:
                    # inventories are expected to return None; anything raised is still per-peer
                    log.warning("Resolving %s (%s) failed: %s", peer.display_name, peer.id, exc)
                    ip = None
                if ip:
                    resolved.add(ip)
                else:
                    self._emit(PeerSkipped, instance_id=peer.id, reason="private IP not resolvable")
        return frozenset(resolved)

    def plan(
        self,
        role: Role,
        server_tag: Optional[str],
        candidates: Sequence[InstanceRecord],
        self_id: str,
        self_ip: Optional[str] = None,
    ) -> QuorumPlan:
        peers = [c for c in candidates if c.id != self_id]
        retry_join = self._resolve_peers(peers)
        if self_ip:
            retry_join = retry_join - {self_ip}

        bootstrap_expect: Optional[int] = None
        if role is Role.SERVER:
            servers = [c for c in candidates if server_tag and c.labelled(server_tag, self.role_tag_key)]
            if servers:
                bootstrap_expect = len(servers)
            else:
                log.warning(
                    "No instances tagged %r found; omitting bootstrap_expect. "
                    "This server may not reach quorum until an operator intervenes.",
                    server_tag,
                )
                self._emit(NoServersTagged, server_tag=server_tag or "")

        plan = QuorumPlan(bootstrap_expect=bootstrap_expect, retry_join=retry_join)
        log.info(
            "Quorum plan: bootstrap_expect=%s retry_join=%s",
            plan.bootstrap_expect,
            sorted(plan.retry_join) or "-",
        )
        self._emit(QuorumPlanned, bootstrap_expect=plan.bootstrap_expect, retry_join=sorted(plan.retry_join))
        return plan

    def plan_from_inventory(
        self,
        cluster: ClusterSpec,
        self_id: str,
        self_ip: Optional[str] = None,
    ) -> QuorumPlan:
        """
        List candidates and plan. With no usable inventory the agent still
        starts as a single-node cluster, so an empty plan is returned.
        """
        try:
            candidates = self.inventory.list_candidates(cluster.cluster_name)
        except InventoryUnavailable as e:
            log.warning("Cloud inventory unavailable (%s); continuing with an empty quorum plan", e)
            self._emit(InventoryDegraded, reason=str(e))
            return QuorumPlan.empty()

        self._emit(CandidatesListed, count=len(candidates), names=[c.display_name for c in candidates])
        return self.plan(cluster.role, cluster.server_tag, candidates, self_id, self_ip)
