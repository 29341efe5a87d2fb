# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/clusterseed/bootstrap/firewall.py
from __future__ import annotations

import logging
from typing import Iterable, Optional, Protocol, Set

from clusterseed.errors import CommandFailed, FirewallBackendMissing
from clusterseed.execution.runner import CommandRunner
from clusterseed.observers.dispatcher import EventBus
from clusterseed.observers.events import FirewallReconciled, FirewallSkipped, new_ctx

log = logging.getLogger("clusterseed")

# firewall-cmd exit status when the firewalld daemon is not running
FIREWALLD_NOT_RUNNING = 252


class FirewallBackend(Protocol):
    """
    Host firewall control surface. Implementations raise FirewallBackendMissing
    when the host has no such surface.
    """

    def open_ports(self, zone: str, protocol: str) -> Set[int]: ...

    def add_port(self, zone: str, port: int, protocol: str) -> None: ...

    def restart(self) -> None: ...


class FirewalldBackend:
    """firewalld via `firewall-cmd`, restarted with systemctl."""

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def _require(self) -> None:
        if not self.runner.available("firewall-cmd"):
            raise FirewallBackendMissing("firewall-cmd not found (firewalld not installed?)")

    def open_ports(self, zone: str, protocol: str) -> Set[int]:
        self._require()
        try:
            cp = self.runner.run(["firewall-cmd", f"--zone={zone}", "--permanent", "--list-ports"])
        except CommandFailed as e:
            if e.returncode == FIREWALLD_NOT_RUNNING:
                raise FirewallBackendMissing("firewalld is installed but not running") from e
            raise
        return parse_port_list(cp.stdout or "", protocol)

    def add_port(self, zone: str, port: int, protocol: str) -> None:
        self._require()
        self.runner.run(
            ["firewall-cmd", f"--zone={zone}", "--permanent", f"--add-port={port}/{protocol}"],
            mutating=True,
        )

    def restart(self) -> None:
        self.runner.run(["systemctl", "restart", "firewalld"], mutating=True, timeout=60)


def parse_port_list(text: str, protocol: str) -> Set[int]:
    """
    Parse `firewall-cmd --list-ports` output ("8301/tcp 8500/tcp 9000-9002/udp")
    into the set of single ports open for *protocol*. Ranges are expanded.
    """
    ports: Set[int] = set()
    for token in text.split():
        spec, _, proto = token.partition("/")
        if proto != protocol:
            continue
        lo, _, hi = spec.partition("-")
        try:
            start = int(lo)
            end = int(hi) if hi else start
        except ValueError:
            log.debug("ignoring unparsable port entry %r", token)
            continue
        ports.update(range(start, end + 1))
    return ports


class FirewallReconciler:
    """
    Open whatever desired ports are missing. Never closes a port; restarts the
    firewall service once per run, and only if something was added.

    Under dry-run the missing ports are only reported: nothing is added and
    the service is not restarted.
    """

    def __init__(
        self,
        backend: FirewallBackend,
        *,
        zone: str = "public",
        protocol: str = "tcp",
        dry_run: bool = False,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[dict] = None,
    ):
        self.backend = backend
        self.dry_run = dry_run
        self.zone = zone
        self.protocol = protocol
        self.bus = bus
        self.run_ctx = run_ctx or new_ctx(env="prod", cluster=None)

    def reconcile(self, desired_ports: Iterable[int]) -> Set[int]:
        desired = {int(p) for p in desired_ports}
        try:
            current = self.backend.open_ports(self.zone, self.protocol)
        except FirewallBackendMissing as e:
            log.warning("%s; skipping firewall reconciliation (cloud security lists may still apply)", e)
            if self.bus:
                self.bus.emit(FirewallSkipped(reason=str(e), **self.run_ctx))
            return set()

        missing = desired - current
        if not missing:
            log.info("Firewall zone %s already allows %s", self.zone, sorted(desired))
            if self.bus:
                self.bus.emit(FirewallReconciled(opened=[], restarted=False, **self.run_ctx))
            return set()

        if self.dry_run:
            log.info("[dry-run] would open %s/%s in zone %s", sorted(missing), self.protocol, self.zone)
            if self.bus:
                self.bus.emit(FirewallReconciled(opened=sorted(missing), restarted=False, dry_run=True, **self.run_ctx))
            return missing

        for port in sorted(missing):
            log.info("Opening %d/%s in zone %s", port, self.protocol, self.zone)
            self.backend.add_port(self.zone, port, self.protocol)
        self.backend.restart()

        if self.bus:
            self.bus.emit(FirewallReconciled(opened=sorted(missing), restarted=True, **self.run_ctx))
        return missing
