# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterseed/bootstrap/manager.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional, Set

from clusterseed.bootstrap.agent_config import AgentConfig, AgentConfigBuilder
from clusterseed.bootstrap.cloud_config import cloud_config_scope
from clusterseed.bootstrap.firewall import FirewallBackend, FirewalldBackend, FirewallReconciler
from clusterseed.bootstrap.identity import InstanceIdentity, MetadataClient
from clusterseed.bootstrap.inventory import CloudInventory, OciCliInventory
from clusterseed.bootstrap.quorum import QuorumPlan, QuorumPlanner
from clusterseed.bootstrap.supervisor import write_supervisor_stanza
from clusterseed.config.models import BootstrapSettings, ClusterSpec
from clusterseed.errors import InventoryUnavailable, MissingRequiredArgument
from clusterseed.execution.runner import CommandRunner
from clusterseed.observers.dispatcher import EventBus
from clusterseed.observers.events import (
    AgentConfigWritten,
    BootstrapSummary,
    IdentityResolved,
    InventoryDegraded,
    SupervisorStanzaWritten,
    new_ctx,
)
from clusterseed.utils.execution import ExecutionContext

log = logging.getLogger("clusterseed")

InventoryFactory = Callable[[str, Optional[Path], str], CloudInventory]


class _WarningCounter(logging.Handler):
    def __init__(self):
        super().__init__(level=logging.WARNING)
        self.count = 0

    def emit(self, record: logging.LogRecord) -> None:
        self.count += 1


@dataclass
class BootstrapResult:
    instance_id: str
    node_name: str
    private_ip: str
    region: str
    plan: QuorumPlan
    config: AgentConfig
    config_path: Optional[Path] = None
    supervisor_path: Optional[Path] = None
    opened_ports: Set[int] = field(default_factory=set)
    warnings: int = 0


class BootstrapManager:
    """
    Runs one bootstrap: identity -> inventory -> plan -> config write ->
    supervisor stanza -> firewall. Phases are strictly sequential.

    Collaborators can be injected (tests pass fakes); by default the OCI
    metadata service, the `oci` CLI and firewalld are used.
    """

    def __init__(
        self,
        settings: BootstrapSettings,
        *,
        bus: Optional[EventBus] = None,
        ctx: Optional[ExecutionContext] = None,
        run_id: Optional[str] = None,
        metadata: Optional[MetadataClient] = None,
        inventory_factory: Optional[InventoryFactory] = None,
        firewall_backend: Optional[FirewallBackend] = None,
    ):
        self.settings = settings
        self.bus = bus or EventBus()
        self.ctx = ctx or ExecutionContext(command_timeout=settings.command_timeout)
        self.run_id = run_id
        self.metadata = metadata or MetadataClient(
            base_url=settings.metadata_url,
            timeout=settings.metadata_timeout,
            retries=settings.metadata_retries,
        )
        self.inventory_factory = inventory_factory or self._oci_inventory
        self.firewall_backend = firewall_backend or FirewalldBackend(
            CommandRunner(ctx=self.ctx, label="firewall")
        )

    def _oci_inventory(self, compartment_id: str, config_file: Optional[Path], profile: str) -> CloudInventory:
        inv = OciCliInventory(
            CommandRunner(ctx=self.ctx, label="oci"),
            compartment_id,
            config_file=config_file,
            profile=profile,
            match_tag_key=self.settings.match_tag_key,
        )
        inv.ensure_available()
        return inv

    def _validate(self) -> None:
        creds = self.settings.oci_credentials
        if not self.settings.skip_cloud_config and creds.provided() and creds.missing():
            raise MissingRequiredArgument(
                "incomplete OCI credentials, missing: "
                + ", ".join(f"--oci-{m.replace('_', '-')}" for m in creds.missing())
            )

    def run(self, cluster: ClusterSpec) -> BootstrapResult:
        self._validate()
        run_ctx = new_ctx(env=self.settings.environment, cluster=cluster.cluster_name, run_id=self.run_id)

        counter = _WarningCounter()
        log.addHandler(counter)
        try:
            result = self._run(cluster, run_ctx)
            result.warnings = counter.count
        except Exception as exc:
            self.bus.emit(BootstrapSummary(ok=False, warnings=counter.count, error=str(exc), **run_ctx))
            raise
        finally:
            log.removeHandler(counter)

        self.bus.emit(BootstrapSummary(ok=True, warnings=result.warnings, **run_ctx))
        return result

    def _discover(self, cluster: ClusterSpec, run_ctx: dict) -> tuple[InstanceIdentity, QuorumPlan]:
        """
        Identity and quorum plan. Everything that needs cloud credentials
        happens inside the credential scope; identity values are memoized so
        they stay usable after it closes.
        """
        s = self.settings

        # MetadataUnavailable is fatal and propagates before anything is written
        identity = InstanceIdentity(self.metadata)
        instance_id = identity.self_id()
        compartment_id = identity.self_compartment_id()

        with cloud_config_scope(s) as (config_file, profile):
            inventory: Optional[CloudInventory]
            try:
                inventory = self.inventory_factory(compartment_id, config_file, profile)
            except InventoryUnavailable as e:
                log.warning("Cloud inventory unavailable (%s); continuing with an empty quorum plan", e)
                self.bus.emit(InventoryDegraded(reason=str(e), **run_ctx))
                inventory = None

            identity.inventory = inventory
            region = identity.self_region()
            node_name = identity.self_fqdn_or_name()
            private_ip = identity.self_private_ip()
            log.info(
                "Instance %s (%s) region=%s ip=%s node_name=%s",
                identity.self_display_name(), instance_id, region, private_ip, node_name,
            )
            self.bus.emit(
                IdentityResolved(
                    instance_id=instance_id,
                    display_name=identity.self_display_name(),
                    region=region,
                    node_name=node_name,
                    private_ip=private_ip,
                    **run_ctx,
                )
            )

            if inventory is None:
                return identity, QuorumPlan.empty()

            planner = QuorumPlanner(
                inventory,
                max_workers=s.resolve_workers,
                role_tag_key=s.role_tag_key if s.match_tag_key else None,
                bus=self.bus,
                run_ctx=run_ctx,
            )
            return identity, planner.plan_from_inventory(cluster, instance_id, private_ip)

    def _run(self, cluster: ClusterSpec, run_ctx: dict) -> BootstrapResult:
        s = self.settings
        identity, plan = self._discover(cluster, run_ctx)

        builder = AgentConfigBuilder(self.ctx)
        config = builder.build(identity, cluster, plan, identity.self_region())
        result = BootstrapResult(
            instance_id=identity.self_id(),
            node_name=identity.self_fqdn_or_name(),
            private_ip=identity.self_private_ip(),
            region=identity.self_region(),
            plan=plan,
            config=config,
        )

        if s.skip_agent_config:
            log.info("Agent config generation skipped")
        else:
            result.config_path = builder.persist(config, s.agent_config_path, owner=s.user)
            self.bus.emit(AgentConfigWritten(path=str(result.config_path), dry_run=self.ctx.dry_run, **run_ctx))
            result.supervisor_path = write_supervisor_stanza(s, self.ctx)
            self.bus.emit(
                SupervisorStanzaWritten(path=str(result.supervisor_path), dry_run=self.ctx.dry_run, **run_ctx)
            )

        reconciler = FirewallReconciler(
            self.firewall_backend,
            zone=s.firewall_zone,
            protocol=s.firewall_protocol,
            dry_run=self.ctx.dry_run,
            bus=self.bus,
            run_ctx=run_ctx,
        )
        result.opened_ports = reconciler.reconcile(s.ports)
        return result

    def render(self, cluster: ClusterSpec) -> AgentConfig:
        """Identity + planning only; nothing on the host is modified."""
        self._validate()
        run_ctx = new_ctx(env=self.settings.environment, cluster=cluster.cluster_name, run_id=self.run_id)
        identity, plan = self._discover(cluster, run_ctx)
        return AgentConfigBuilder(self.ctx).build(identity, cluster, plan, identity.self_region())
