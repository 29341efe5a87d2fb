import logging
import types

import pytest
import requests

from clusterseed.bootstrap import identity as identity_mod
from clusterseed.bootstrap.identity import InstanceIdentity, MetadataClient
from clusterseed.errors import MetadataUnavailable


class FakeSession:
    """requests.Session stand-in: answers from a dict, can fail N times first."""

    def __init__(self, values, fail_times=0):
        self.values = values
        self.fail_times = fail_times
        self.calls = []

    def get(self, url, headers=None, timeout=None):
        self.calls.append((url, headers, timeout))
        if self.fail_times > 0:
            self.fail_times -= 1
            raise requests.ConnectionError("metadata endpoint not ready")
        key = url.rsplit("/", 1)[-1]
        if key not in self.values:
            resp = types.SimpleNamespace(text="", status_code=404)
            def _raise():
                raise requests.HTTPError("404 Not Found")
            resp.raise_for_status = _raise
            return resp
        return types.SimpleNamespace(text=self.values[key], raise_for_status=lambda: None)


class FakeMetadata:
    def __init__(self, values):
        self.values = values
        self.calls = []

    def get(self, key):
        self.calls.append(key)
        if not self.values.get(key):
            raise MetadataUnavailable(key)
        return self.values[key]


class FakeInventory:
    def __init__(self, fqdn="", ip=None):
        self._fqdn = fqdn
        self._ip = ip

    def fqdn(self, instance_id):
        return self._fqdn

    def resolve_private_ip(self, instance_id):
        return self._ip


META = {"id": "ocid1.self", "displayName": "clusterA-server-2", "region": "iad", "compartmentId": "ocid1.comp"}


def test_metadata_client_sends_oracle_header_and_normalizes_json_scalars():
    session = FakeSession({"id": "ocid1.instance.x", "region": '"iad"'})
    client = MetadataClient(base_url="http://meta/opc/v2/instance/", timeout=2, session=session)

    assert client.get("id") == "ocid1.instance.x"
    assert client.get("region") == "iad"
    url, headers, timeout = session.calls[0]
    assert url == "http://meta/opc/v2/instance/id"
    assert headers == {"Authorization": "Bearer Oracle"}
    assert timeout == 2


def test_metadata_client_retries_transient_failures():
    session = FakeSession({"id": "ocid1.x"}, fail_times=2)
    client = MetadataClient(session=session, retries=3, retry_delay=0)
    assert client.get("id") == "ocid1.x"
    assert len(session.calls) == 3


def test_metadata_client_unreachable_raises_metadata_unavailable():
    session = FakeSession({"id": "ocid1.x"}, fail_times=10)
    client = MetadataClient(session=session, retries=2, retry_delay=0)
    with pytest.raises(MetadataUnavailable):
        client.get("id")


def test_metadata_client_empty_value_is_unavailable():
    client = MetadataClient(session=FakeSession({"displayName": "  "}), retry_delay=0)
    with pytest.raises(MetadataUnavailable):
        client.get("displayName")


def test_metadata_client_http_error_is_unavailable():
    client = MetadataClient(session=FakeSession({}), retries=1, retry_delay=0)
    with pytest.raises(MetadataUnavailable):
        client.get("compartmentId")


@pytest.mark.parametrize("fqdn", ["", "."])
def test_fqdn_falls_back_to_display_name(fqdn):
    ident = InstanceIdentity(FakeMetadata(META), FakeInventory(fqdn=fqdn, ip="10.0.0.2"))
    assert ident.self_fqdn_or_name() == "clusterA-server-2"


def test_fqdn_used_when_meaningful():
    ident = InstanceIdentity(FakeMetadata(META), FakeInventory(fqdn="server-2.sub.vcn.oraclevcn.com"))
    assert ident.self_fqdn_or_name() == "server-2.sub.vcn.oraclevcn.com"


def test_no_inventory_uses_display_name_and_local_address(monkeypatch):
    monkeypatch.setattr(identity_mod, "local_host_address", lambda: "192.168.1.50")
    ident = InstanceIdentity(FakeMetadata(META), None)
    assert ident.self_fqdn_or_name() == "clusterA-server-2"
    assert ident.self_private_ip() == "192.168.1.50"


def test_unresolvable_own_ip_falls_back_to_local_lookup(monkeypatch):
    monkeypatch.setattr(identity_mod, "local_host_address", lambda: "192.168.1.51")
    ident = InstanceIdentity(FakeMetadata(META), FakeInventory(ip=None))
    assert ident.self_private_ip() == "192.168.1.51"


def test_identity_values_are_memoized():
    meta = FakeMetadata(META)
    ident = InstanceIdentity(meta, FakeInventory(ip="10.0.0.2"))
    for _ in range(3):
        ident.self_id()
        ident.self_region()
        ident.self_display_name()
    assert meta.calls.count("id") == 1
    assert meta.calls.count("region") == 1
    assert ident.self_compartment_id() == "ocid1.comp"


def test_missing_metadata_propagates():
    ident = InstanceIdentity(FakeMetadata({}), None)
    with pytest.raises(MetadataUnavailable):
        ident.self_id()


class FakeSocket:
    def __init__(self, addr=None, fail=False):
        self.addr = addr
        self.fail = fail
        self.connected = None

    def __call__(self, *args):
        return self

    def __enter__(self): return self
    def __exit__(self, *a): return False

    def connect(self, target):
        if self.fail:
            raise OSError("network unreachable")
        self.connected = target

    def getsockname(self):
        return (self.addr, 40000)


def test_local_address_uses_outbound_route(monkeypatch):
    sock = FakeSocket(addr="10.0.0.7")
    monkeypatch.setattr(identity_mod.socket, "socket", sock)
    monkeypatch.setattr(identity_mod.socket, "gethostbyname", lambda name: "127.0.1.1")

    assert identity_mod.local_host_address() == "10.0.0.7"
    assert sock.connected == ("169.254.169.254", 80)


def test_local_address_loopback_fallback_warns(monkeypatch, caplog):
    monkeypatch.setattr(identity_mod.socket, "socket", FakeSocket(fail=True))
    monkeypatch.setattr(identity_mod.socket, "gethostbyname", lambda name: "127.0.1.1")

    with caplog.at_level(logging.WARNING, logger="clusterseed"):
        assert identity_mod.local_host_address() == "127.0.1.1"
    assert any("loopback" in r.getMessage() for r in caplog.records)
