import json
from datetime import datetime, timedelta, timezone

import pytest
import responses

from secopchain.block import BlockchainError
from secopchain.config import colombian_now
from secopchain.peer_discovery import EntityType, PeerDiscovery, PeerInfo

REGISTRY = "http://registry.example.com"


def _peer(peer_id, entity_type="MUNICIPALITY", active=True, age=timedelta(0)):
    return PeerInfo(
        id=peer_id,
        address=f"{peer_id}.example.com",
        port="8080",
        entity_type=entity_type,
        last_seen=colombian_now() - age,
        is_active=active,
    )


def test_peer_info_round_trip():
    peer = _peer("n1")
    peer.public_key = "placeholder"
    assert PeerInfo.from_dict(peer.to_dict()) == peer


def test_peer_info_omits_empty_public_key():
    data = _peer("n1").to_dict()
    assert "public_key" not in data
    assert data["is_active"] is True


def test_peer_info_parses_utc_with_nanoseconds():
    peer = PeerInfo.from_dict(
        {"id": "n2", "last_seen": "2024-01-02T03:04:05.123456789Z", "is_active": True}
    )
    assert peer.last_seen == datetime(2024, 1, 2, 3, 4, 5, 123456, tzinfo=timezone.utc)
    assert peer.address == ""


@pytest.mark.parametrize(
    "data",
    [[], {"id": 5}, {"is_active": "yes"}, {"last_seen": "yesterday"}],
)
def test_peer_info_rejects_malformed(data):
    with pytest.raises(ValueError):
        PeerInfo.from_dict(data)


def test_bootstrap_peers_and_type_filter():
    discovery = PeerDiscovery("", "me", "localhost", "GOVERNMENT")
    discovery.add_bootstrap_peer("a", "a.example.com", "MINISTRY")
    discovery.add_bootstrap_peer("b", "b.example.com", "CONTROL")
    assert discovery.peer_count() == 2
    assert [p.id for p in discovery.peers_by_type(EntityType.MINISTRY)] == ["a"]
    assert [p.id for p in discovery.peers_by_type("CONTROL")] == ["b"]
    assert discovery.peers_by_type(EntityType.DNP) == []
    assert {p.id for p in discovery.active_peers()} == {"a", "b"}


def test_discover_without_registry_does_nothing():
    discovery = PeerDiscovery("", "me", "localhost", "GOVERNMENT")
    discovery.discover_peers()
    assert discovery.peer_count() == 0


def test_discover_peers_filters_self_stale_and_inactive():
    listing = [
        _peer("me").to_dict(),
        _peer("fresh").to_dict(),
        _peer("old", age=timedelta(minutes=10)).to_dict(),
        _peer("idle", active=False).to_dict(),
    ]
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, f"{REGISTRY}/api/peers", json=listing)
        discovery = PeerDiscovery(REGISTRY, "me", "localhost", "GOVERNMENT")
        discovery.discover_peers()
    assert [p.id for p in discovery.active_peers()] == ["fresh"]
    assert discovery.peer_count() == 1
    assert discovery.peers_by_type("MUNICIPALITY")[0].id == "fresh"


def test_discover_peers_bad_payload():
    with responses.RequestsMock() as rsps:
        rsps.add(responses.GET, f"{REGISTRY}/api/peers", json={"peers": []})
        discovery = PeerDiscovery(REGISTRY, "me", "localhost", "GOVERNMENT")
        with pytest.raises(ValueError):
            discovery.discover_peers()


def test_start_registers_and_stop_unregisters():
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, f"{REGISTRY}/api/peers/register", status=200)
        rsps.add(responses.DELETE, f"{REGISTRY}/api/peers/unregister/me", status=200)
        discovery = PeerDiscovery(REGISTRY, "me", "node.example.com", "MINISTRY")
        discovery.start()
        discovery.stop()
        methods = [call.request.method for call in rsps.calls]
        body = json.loads(rsps.calls[0].request.body)
    assert methods == ["POST", "DELETE"]
    assert body["id"] == "me"
    assert body["address"] == "node.example.com"
    assert body["entity_type"] == "MINISTRY"
    assert body["is_active"] is True


def test_start_fails_when_registry_refuses():
    with responses.RequestsMock() as rsps:
        rsps.add(responses.POST, f"{REGISTRY}/api/peers/register", status=500)
        discovery = PeerDiscovery(REGISTRY, "me", "localhost", "GOVERNMENT")
        with pytest.raises(BlockchainError, match="failed to register node"):
            discovery.start()


def test_start_and_stop_in_bootstrap_mode():
    discovery = PeerDiscovery("", "me", "localhost", "GOVERNMENT")
    discovery.start()
    discovery.add_bootstrap_peer("x", "x.example.com", "DNP")
    discovery.stop()
    assert discovery.peer_count() == 1
    assert [p.id for p in discovery.peers_by_type(EntityType.DNP)] == ["x"]