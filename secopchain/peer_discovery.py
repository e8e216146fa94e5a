"""Discovery of other government nodes through a central registry."""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

import requests

from secopchain.block import ZERO_TIME, BlockchainError
from secopchain.config import colombian_now

logger = logging.getLogger(__name__)

DISCOVERY_INTERVAL = 30.0
PEER_TTL = timedelta(minutes=5)
_REQUEST_TIMEOUT = 30.0
_UNREGISTER_TIMEOUT = 10.0
_FRACTION = re.compile(r"\.(\d+)")


class EntityType(str, Enum):
    GOVERNMENT = "GOVERNMENT"
    MUNICIPALITY = "MUNICIPALITY"
    DEPARTMENT = "DEPARTMENT"
    MINISTRY = "MINISTRY"
    CONTROL = "CONTROL"
    DNP = "DNP"


def _format_timestamp(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.isoformat()


def _parse_timestamp(value: Any) -> datetime:
    if value is None:
        return ZERO_TIME
    if not isinstance(value, str):
        raise ValueError("last_seen must be a string")
    text = value
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    moment = datetime.fromisoformat(text)
    if moment.tzinfo is None:
        raise ValueError(f"timestamp without offset: {value!r}")
    return moment


def _str_field(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


@dataclass
class PeerInfo:
    """What the registry knows about one node."""

    id: str = ""
    address: str = ""
    port: str = ""
    entity_type: str = ""
    last_seen: datetime = ZERO_TIME
    is_active: bool = False
    public_key: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return the peer as a JSON-ready dictionary."""
        result: dict[str, Any] = {
            "id": self.id,
            "address": self.address,
            "port": self.port,
            "entity_type": self.entity_type,
            "last_seen": _format_timestamp(self.last_seen),
            "is_active": self.is_active,
        }
        if self.public_key:
            result["public_key"] = self.public_key
        return result

    @classmethod
    def from_dict(cls, data: Any) -> PeerInfo:
        """Build a peer from a decoded JSON object; raise ValueError if malformed."""
        if not isinstance(data, Mapping):
            raise ValueError("peer must be a JSON object")
        active = data.get("is_active")
        if active is not None and not isinstance(active, bool):
            raise ValueError("field 'is_active' must be a boolean")
        return cls(
            id=_str_field(data, "id"),
            address=_str_field(data, "address"),
            port=_str_field(data, "port"),
            entity_type=_str_field(data, "entity_type"),
            last_seen=_parse_timestamp(data.get("last_seen")),
            is_active=bool(active),
            public_key=_str_field(data, "public_key"),
        )


class PeerDiscovery:
    """Registers this node with the registry and keeps a list of the other nodes."""

    def __init__(
        self, registry_url: str, node_id: str, node_address: str, entity_type: str
    ) -> None:
        self.registry_url = registry_url
        self.node_id = node_id
        self.node_address = node_address
        self.entity_type = entity_type
        self._known_peers: dict[str, PeerInfo] = {}
        self._lock = threading.RLock()
        self._stop_event: threading.Event | None = None
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Register with the registry and begin polling it in the background."""
        try:
            self._register_node()
        except (requests.RequestException, BlockchainError) as exc:
            raise BlockchainError(f"failed to register node: {exc}") from exc

        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._discovery_loop, args=(self._stop_event,), daemon=True
        )
        self._thread.start()
        logger.info("Peer discovery started for node %s (%s)", self.node_id, self.entity_type)

    def stop(self) -> None:
        """Stop polling and unregister from the registry."""
        if self._stop_event is not None:
            self._stop_event.set()
        self._unregister_node()

    def _register_node(self) -> None:
        if not self.registry_url:
            logger.info("No registry URL configured, running in bootstrap mode")
            return
        node = PeerInfo(
            id=self.node_id,
            address=self.node_address,
            port="",
            entity_type=self.entity_type,
            last_seen=colombian_now(),
            is_active=True,
        )
        response = requests.post(
            f"{self.registry_url}/api/peers/register",
            json=node.to_dict(),
            timeout=_REQUEST_TIMEOUT,
        )
        with response:
            if response.status_code != 200:
                raise BlockchainError(
                    f"registration failed with status: {response.status_code}"
                )

    def _unregister_node(self) -> None:
        if not self.registry_url:
            return
        url = f"{self.registry_url}/api/peers/unregister/{self.node_id}"
        try:
            requests.delete(url, timeout=_UNREGISTER_TIMEOUT).close()
        except requests.RequestException as exc:
            logger.warning("Error unregistering node: %s", exc)

    def _discovery_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(DISCOVERY_INTERVAL):
            try:
                self.discover_peers()
            except (requests.RequestException, ValueError) as exc:
                logger.warning("Peer discovery error: %s", exc)

    def discover_peers(self) -> None:
        """Fetch the registry's peer list and drop peers not seen for five minutes."""
        if not self.registry_url:
            return
        response = requests.get(f"{self.registry_url}/api/peers", timeout=_REQUEST_TIMEOUT)
        with response:
            payload = response.json()
        if not isinstance(payload, list):
            raise ValueError("peer list must be a JSON array")
        peers = [PeerInfo.from_dict(item) for item in payload]

        with self._lock:
            for peer in peers:
                if peer.id != self.node_id:
                    self._known_peers[peer.id] = peer
            now = colombian_now()
            stale = [pid for pid, p in self._known_peers.items() if now - p.last_seen > PEER_TTL]
            for pid in stale:
                del self._known_peers[pid]
            logger.info("Discovered %d active peers", len(self._known_peers))

    def active_peers(self) -> list[PeerInfo]:
        """Return the known peers that are marked active."""
        with self._lock:
            return [peer for peer in self._known_peers.values() if peer.is_active]

    def peers_by_type(self, entity_type: EntityType | str) -> list[PeerInfo]:
        """Return the active peers of one entity type."""
        wanted = entity_type.value if isinstance(entity_type, Enum) else entity_type
        with self._lock:
            return [
                peer
                for peer in self._known_peers.values()
                if peer.entity_type == wanted and peer.is_active
            ]

    def add_bootstrap_peer(self, peer_id: str, address: str, entity_type: str) -> None:
        """Add a known peer by hand, for forming the first network."""
        with self._lock:
            self._known_peers[peer_id] = PeerInfo(
                id=peer_id,
                address=address,
                port="",
                entity_type=entity_type,
                last_seen=colombian_now(),
                is_active=True,
            )
        logger.info("Added bootstrap peer: %s (%s)", peer_id, entity_type)

    def peer_count(self) -> int:
        """Return how many known peers are active."""
        with self._lock:
            return sum(1 for peer in self._known_peers.values() if peer.is_active)