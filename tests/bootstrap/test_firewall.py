import types

import pytest

from clusterseed.bootstrap.firewall import (
    FirewalldBackend,
    FirewallReconciler,
    parse_port_list,
)
from clusterseed.errors import CommandFailed, FirewallBackendMissing
from clusterseed.execution.runner import CommandRunner
from clusterseed.observers.dispatcher import EventBus
from clusterseed.observers.events import FirewallReconciled, FirewallSkipped
from clusterseed.utils.execution import ExecutionContext


class Capture:
    def __init__(self): self.events = []
    def notify(self, ev): self.events.append(ev)


class FakeFirewall:
    """In-memory firewalld: ports added with --permanent show up in the next listing."""

    def __init__(self, open_ports=(), present=True):
        self.open = set(open_ports)
        self.present = present
        self.added = []
        self.restarts = 0

    def open_ports(self, zone, protocol):
        if not self.present:
            raise FirewallBackendMissing("firewall-cmd not found")
        return set(self.open)

    def add_port(self, zone, port, protocol):
        self.added.append((zone, port, protocol))
        self.open.add(port)

    def restart(self):
        self.restarts += 1


def test_opens_only_missing_ports_and_restarts_once():
    fw = FakeFirewall(open_ports={8301})
    applied = FirewallReconciler(fw).reconcile({8300, 8301, 8500})

    assert applied == {8300, 8500}
    assert [p for _, p, _ in fw.added] == [8300, 8500]
    assert fw.restarts == 1


def test_reconcile_is_idempotent():
    fw = FakeFirewall(open_ports={8301})
    rec = FirewallReconciler(fw)
    rec.reconcile({8300, 8301, 8500})
    applied = rec.reconcile({8300, 8301, 8500})

    assert applied == set()
    assert len(fw.added) == 2
    assert fw.restarts == 1


def test_never_closes_extra_ports():
    fw = FakeFirewall(open_ports={22, 8300})
    FirewallReconciler(fw).reconcile({8300})
    assert fw.open == {22, 8300}
    assert fw.restarts == 0


def test_missing_backend_is_skipped_with_event():
    cap = Capture()
    fw = FakeFirewall(present=False)
    applied = FirewallReconciler(fw, bus=EventBus([cap])).reconcile({8300})
    assert applied == set()
    assert fw.restarts == 0
    assert any(isinstance(e, FirewallSkipped) for e in cap.events)


def test_reconciled_event_reports_opened_ports():
    cap = Capture()
    FirewallReconciler(FakeFirewall(), bus=EventBus([cap])).reconcile({8500, 8300})
    ev = next(e for e in cap.events if isinstance(e, FirewallReconciled))
    assert ev.opened == [8300, 8500]
    assert ev.restarted is True


def test_parse_port_list_filters_protocol_and_expands_ranges():
    text = "8301/tcp 8301/udp 8500/tcp 9000-9002/tcp 53/udp junk/tcp\n"
    assert parse_port_list(text, "tcp") == {8301, 8500, 9000, 9001, 9002}
    assert parse_port_list(text, "udp") == {8301, 53}
    assert parse_port_list("", "tcp") == set()


class SpyRunner(CommandRunner):
    def __init__(self, listing="", dry_run=False, has_fw=True):
        super().__init__(ctx=ExecutionContext(dry_run=dry_run))
        self.listing = listing
        self.has_fw = has_fw
        self.calls = []

    def available(self, binary):
        return self.has_fw

    def run(self, cmd, *, mutating=False, check=True, timeout=None, env=None):
        self.calls.append((list(cmd), mutating))
        out = self.listing if "--list-ports" in cmd else ""
        return types.SimpleNamespace(returncode=0, stdout=out, stderr="")


def test_firewalld_backend_commands():
    runner = SpyRunner(listing="8301/tcp")
    backend = FirewalldBackend(runner)
    FirewallReconciler(backend, zone="public").reconcile({8300, 8301})

    cmds = [c for c, _ in runner.calls]
    assert cmds[0] == ["firewall-cmd", "--zone=public", "--permanent", "--list-ports"]
    assert ["firewall-cmd", "--zone=public", "--permanent", "--add-port=8300/tcp"] in cmds
    assert cmds[-1] == ["systemctl", "restart", "firewalld"]
    assert sum(1 for c in cmds if c[:2] == ["systemctl", "restart"]) == 1
    # adds and restart are flagged as mutating so dry-run skips them
    assert all(m for c, m in runner.calls if "--list-ports" not in c)


def test_firewalld_backend_absent():
    backend = FirewalldBackend(SpyRunner(has_fw=False))
    assert FirewallReconciler(backend).reconcile({8300}) == set()


class NotRunningRunner(SpyRunner):
    """firewall-cmd is installed but the daemon is down."""

    def __init__(self, returncode=252):
        super().__init__()
        self.returncode = returncode

    def run(self, cmd, *, mutating=False, check=True, timeout=None, env=None):
        self.calls.append((list(cmd), mutating))
        raise CommandFailed(" ".join(cmd), self.returncode, "FirewallD is not running")


def test_stopped_firewalld_is_skipped_not_fatal():
    cap = Capture()
    runner = NotRunningRunner()
    applied = FirewallReconciler(FirewalldBackend(runner), bus=EventBus([cap])).reconcile({8300})

    assert applied == set()
    assert len(runner.calls) == 1
    assert any(isinstance(e, FirewallSkipped) for e in cap.events)


def test_other_firewall_cmd_failures_propagate():
    backend = FirewalldBackend(NotRunningRunner(returncode=1))
    with pytest.raises(CommandFailed):
        FirewallReconciler(backend).reconcile({8300})


def test_dry_run_reports_without_adding():
    cap = Capture()
    fw = FakeFirewall(open_ports={8301})
    applied = FirewallReconciler(fw, dry_run=True, bus=EventBus([cap])).reconcile({8300, 8301})

    assert applied == {8300}
    assert fw.added == []
    assert fw.restarts == 0
    ev = next(e for e in cap.events if isinstance(e, FirewallReconciled))
    assert ev.opened == [8300]
    assert ev.restarted is False
    assert ev.dry_run is True
