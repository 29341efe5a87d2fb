import json
import os
from pathlib import Path

import pytest

from clusterseed.bootstrap import agent_config as agent_config_mod
from clusterseed.bootstrap.agent_config import AgentConfig, AgentConfigBuilder, atomic_write
from clusterseed.bootstrap.quorum import QuorumPlan
from clusterseed.config.models import ClusterSpec, Role
from clusterseed.utils.execution import ExecutionContext


class FakeIdentity:
    def __init__(self, ip="10.0.0.2", name="server-2.sub.vcn.oraclevcn.com"):
        self.ip = ip
        self.name = name

    def self_private_ip(self):
        return self.ip

    def self_fqdn_or_name(self):
        return self.name


SERVER = ClusterSpec(cluster_name="clusterA", role=Role.SERVER, server_tag="server")
CLIENT = ClusterSpec(cluster_name="clusterA", role=Role.CLIENT)


def test_build_server_config_full_document():
    plan = QuorumPlan(bootstrap_expect=3, retry_join=frozenset({"10.0.0.3", "10.0.0.1"}))
    cfg = AgentConfigBuilder().build(FakeIdentity(), SERVER, plan, region="iad")

    assert json.loads(cfg.to_json()) == {
        "advertise_addr": "10.0.0.2",
        "bind_addr": "10.0.0.2",
        "bootstrap_expect": 3,
        "client_addr": "0.0.0.0",
        "datacenter": "iad",
        "node_name": "server-2.sub.vcn.oraclevcn.com",
        "retry_join": ["10.0.0.1", "10.0.0.3"],
        "server": True,
        "ui": True,
    }


def test_empty_plan_omits_optional_keys_entirely():
    cfg = AgentConfigBuilder().build(FakeIdentity(), SERVER, QuorumPlan.empty(), region="iad")
    doc = json.loads(cfg.to_json())
    assert "retry_join" not in doc
    assert "bootstrap_expect" not in doc
    assert "null" not in cfg.to_json()
    assert doc["server"] is True and doc["ui"] is True


def test_client_never_emits_bootstrap_expect():
    plan = QuorumPlan(bootstrap_expect=3, retry_join=frozenset({"10.0.0.1"}))
    doc = AgentConfigBuilder().build(FakeIdentity(), CLIENT, plan, region="iad").to_dict()
    assert "bootstrap_expect" not in doc
    assert doc["server"] is False
    assert doc["retry_join"] == ["10.0.0.1"]


def test_empty_retry_join_list_is_dropped():
    cfg = AgentConfig(bind_addr="a", advertise_addr="a", datacenter="d", node_name="n", server=False, retry_join=[])
    assert "retry_join" not in cfg.to_dict()


def test_serialization_is_order_independent():
    a = QuorumPlan(retry_join=frozenset({"10.0.0.3", "10.0.0.1", "10.0.0.2"}))
    b = QuorumPlan(retry_join=frozenset({"10.0.0.2", "10.0.0.3", "10.0.0.1"}))
    ja = AgentConfigBuilder().build(FakeIdentity(), CLIENT, a, "iad").to_json()
    jb = AgentConfigBuilder().build(FakeIdentity(), CLIENT, b, "iad").to_json()
    assert ja == jb


def test_persist_overwrites_previous_document(tmp_path: Path):
    path = tmp_path / "consul.d" / "consul.json"
    path.parent.mkdir()
    path.write_text('{"stale": true, "encrypt": "old"}')

    cfg = AgentConfigBuilder().build(FakeIdentity(), CLIENT, QuorumPlan.empty(), "iad")
    AgentConfigBuilder().persist(cfg, path)

    doc = json.loads(path.read_text())
    assert "stale" not in doc and "encrypt" not in doc
    assert doc["datacenter"] == "iad"
    # no temp files left behind
    assert [p.name for p in path.parent.iterdir()] == ["consul.json"]


def test_persist_sets_owner(tmp_path: Path, monkeypatch):
    calls = []
    monkeypatch.setattr(agent_config_mod.shutil, "chown", lambda p, user=None, group=None: calls.append((p, user)))
    cfg = AgentConfigBuilder().build(FakeIdentity(), CLIENT, QuorumPlan.empty(), "iad")
    AgentConfigBuilder().persist(cfg, tmp_path / "consul.json", owner="consul")
    assert len(calls) == 1 and calls[0][1] == "consul"


def test_failed_write_leaves_target_untouched(tmp_path: Path, monkeypatch):
    path = tmp_path / "consul.json"
    path.write_text("previous")

    def boom(p, user=None, group=None):
        raise LookupError("no such user: consul")

    monkeypatch.setattr(agent_config_mod.shutil, "chown", boom)
    with pytest.raises(LookupError):
        atomic_write(path, "new content", owner="consul")

    assert path.read_text() == "previous"
    assert os.listdir(tmp_path) == ["consul.json"]


def test_dry_run_writes_nothing(tmp_path: Path):
    path = tmp_path / "consul.json"
    builder = AgentConfigBuilder(ExecutionContext(dry_run=True))
    cfg = builder.build(FakeIdentity(), CLIENT, QuorumPlan.empty(), "iad")
    assert builder.persist(cfg, path) == path
    assert not path.exists()
