"""Communication between ledger nodes: peers, block broadcast and chain sync."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import requests

from secopchain.block import ZERO_TIME, Block, BlockchainError, Contract
from secopchain.chain import Blockchain
from secopchain.config import colombian_now
from secopchain.peer_discovery import PeerDiscovery

logger = logging.getLogger(__name__)

SYNC_INTERVAL = 60.0
PEER_ACTIVITY_WINDOW = timedelta(minutes=5)
_REQUEST_TIMEOUT = 30.0
_HEALTH_TIMEOUT = 5.0


def _iso(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.isoformat()


@dataclass
class Peer:
    """A node this one talks to."""

    id: str = ""
    address: str = ""
    port: str = ""
    last_seen: datetime = ZERO_TIME
    active: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Return the peer as a JSON-ready dictionary."""
        return {
            "id": self.id,
            "address": self.address,
            "port": self.port,
            "last_seen": _iso(self.last_seen),
            "active": self.active,
        }

    @property
    def base_url(self) -> str:
        return f"http://{self.address}:{self.port}"


class P2PNetwork:
    """Keeps the peer list of a node and exchanges blocks and chains with it."""

    def __init__(
        self,
        node_id: str,
        address: str,
        port: str,
        blockchain: Blockchain,
        discovery_registry_url: str,
        entity_type: str,
    ) -> None:
        self.node_id = node_id
        self.address = address
        self.port = port
        self.blockchain = blockchain
        self.peer_discovery = PeerDiscovery(discovery_registry_url, node_id, address, entity_type)
        self._peers: dict[str, Peer] = {}
        self._lock = threading.RLock()
        self._stop_event: threading.Event | None = None

    # --- lifecycle -------------------------------------------------------

    def start(self) -> None:
        """Start peer discovery and the periodic peer synchronisation."""
        try:
            self.peer_discovery.start()
        except BlockchainError as exc:
            raise BlockchainError(f"failed to start peer discovery: {exc}") from exc

        self._stop_event = threading.Event()
        threading.Thread(
            target=self._sync_peers_loop, args=(self._stop_event,), daemon=True
        ).start()
        logger.info("P2P network started for node %s", self.node_id)

    def stop(self) -> None:
        """Stop peer discovery and the periodic synchronisation."""
        self.peer_discovery.stop()
        if self._stop_event is not None:
            self._stop_event.set()
        logger.info("P2P network stopped for node %s", self.node_id)

    def _sync_peers_loop(self, stop_event: threading.Event) -> None:
        while not stop_event.wait(SYNC_INTERVAL):
            self.sync_with_discovered_peers()

    # --- peer list -------------------------------------------------------

    def sync_with_discovered_peers(self) -> None:
        """Make the peer list match the peers that discovery reports as active."""
        discovered = self.peer_discovery.active_peers()
        with self._lock:
            for info in discovered:
                if info.id not in self._peers:
                    self._peers[info.id] = Peer(
                        id=info.id,
                        address=info.address,
                        port=info.port,
                        last_seen=info.last_seen,
                        active=info.is_active,
                    )
                    logger.info(
                        "Added discovered peer: %s (%s:%s)", info.id, info.address, info.port
                    )
            discovered_ids = {info.id for info in discovered}
            for peer_id in [pid for pid in self._peers if pid not in discovered_ids]:
                del self._peers[peer_id]
                logger.info("Removed inactive peer: %s", peer_id)

    def add_bootstrap_peer(self, peer_id: str, address: str, entity_type: str) -> None:
        """Add a bootstrap peer both to discovery and to the peer list."""
        self.peer_discovery.add_bootstrap_peer(peer_id, address, entity_type)
        with self._lock:
            self._peers[peer_id] = Peer(
                id=peer_id, address=address, port="", last_seen=colombian_now(), active=True
            )

    def add_peer(self, peer_id: str, address: str, port: str) -> None:
        """Add a peer; raise BlockchainError if one with that id is known."""
        with self._lock:
            if peer_id in self._peers:
                raise BlockchainError(f"peer {peer_id} already exists")
            self._peers[peer_id] = Peer(
                id=peer_id, address=address, port=port, last_seen=colombian_now(), active=True
            )
        logger.info("Peer added: %s (%s:%s)", peer_id, address, port)

    def remove_peer(self, peer_id: str) -> None:
        """Remove a peer; raise BlockchainError if it is unknown."""
        with self._lock:
            if peer_id not in self._peers:
                raise BlockchainError(f"peer {peer_id} not found")
            del self._peers[peer_id]
        logger.info("Peer %s removed", peer_id)

    def peers(self) -> dict[str, Peer]:
        """Return a copy of the peer table."""
        with self._lock:
            return dict(self._peers)

    def active_peers(self) -> list[Peer]:
        """Return the peers currently marked active."""
        with self._lock:
            return [peer for peer in self._peers.values() if peer.active]

    def _mark_peer_inactive(self, peer_id: str) -> None:
        with self._lock:
            peer = self._peers.get(peer_id)
            if peer is not None:
                peer.active = False
                logger.warning("Peer %s marked inactive", peer_id)

    def _recently_seen(self, peer: Peer, since: datetime) -> bool:
        return peer.last_seen > since

    # --- blocks ----------------------------------------------------------

    def broadcast_block(self, block: Block) -> list[threading.Thread]:
        """Send ``block`` to every active peer in the background; return the senders."""
        with self._lock:
            targets = [(pid, peer) for pid, peer in self._peers.items() if peer.active]
            logger.info("Broadcasting block %s to %d peers", block.hash, len(self._peers))

        threads = []
        for peer_id, peer in targets:
            thread = threading.Thread(
                target=self._deliver_block, args=(peer_id, peer, block), daemon=True
            )
            thread.start()
            threads.append(thread)
        return threads

    def _deliver_block(self, peer_id: str, peer: Peer, block: Block) -> None:
        try:
            self._send_block_to_peer(peer, block)
        except (requests.RequestException, BlockchainError) as exc:
            logger.warning("Error sending block to %s: %s", peer_id, exc)
            self._mark_peer_inactive(peer_id)
        else:
            logger.info("Block sent to %s", peer_id)

    @staticmethod
    def _send_block_to_peer(peer: Peer, block: Block) -> None:
        response = requests.post(
            f"{peer.base_url}/api/p2p/receive-block",
            json=block.to_dict(),
            timeout=_REQUEST_TIMEOUT,
        )
        with response:
            if response.status_code != 200:
                raise BlockchainError(f"peer respondió con status {response.status_code}")

    def receive_block(self, block: Block) -> None:
        """Check a block sent by a peer and append its content unless already present."""
        logger.info("Block received from peer: %s", block.hash)
        if not self.blockchain.is_valid_block(block):
            raise BlockchainError("bloque inválido recibido")
        if self.blockchain.has_block(block.hash):
            logger.info("Block %s already present, ignoring", block.hash)
            return
        try:
            self.blockchain.add_block(
                {
                    "type": block.type,
                    "data": block.data,
                    "timestamp": block.timestamp,
                    "previous_hash": block.previous_hash,
                    "nonce": block.nonce,
                }
            )
        except BlockchainError as exc:
            raise BlockchainError(f"error agregando bloque: {exc}") from exc
        logger.info("Block %s added", block.hash)

    # --- synchronisation -------------------------------------------------

    def sync_with_peers(self) -> None:
        """Adopt the chain of any active peer whose chain is longer and valid."""
        with self._lock:
            targets = [(pid, peer) for pid, peer in self._peers.items() if peer.active]
        logger.info("Starting synchronisation with %d peers", len(targets))

        for peer_id, peer in targets:
            try:
                chain = self._request_chain_from_peer(peer)
            except (requests.RequestException, ValueError, BlockchainError) as exc:
                logger.warning("Error fetching chain from %s: %s", peer_id, exc)
                continue
            if len(chain) > len(self.blockchain.chain) and self.blockchain.is_valid_chain(chain):
                logger.info("Adopting longer chain from %s (%d blocks)", peer_id, len(chain))
                self.blockchain.chain = list(chain)
                self._rebuild_contracts_from_chain()

    @staticmethod
    def _request_chain_from_peer(peer: Peer) -> list[Block]:
        response = requests.get(f"{peer.base_url}/api/p2p/get-chain", timeout=_REQUEST_TIMEOUT)
        with response:
            if response.status_code != 200:
                raise BlockchainError(f"peer respondió con status {response.status_code}")
            payload = response.json()
        if not isinstance(payload, dict):
            raise ValueError("chain response must be a JSON object")
        blocks = payload.get("chain") or []
        if not isinstance(blocks, list):
            raise ValueError("field 'chain' must be an array")
        return [Block.from_dict(item) for item in blocks]

    def _rebuild_contracts_from_chain(self) -> None:
        contracts: dict[str, Contract] = {}
        for block in self.blockchain.chain:
            if block.type != "CONTRACT_CREATION" or block.data is None:
                continue
            try:
                contract = Contract.from_dict(block.data)
            except ValueError:
                continue
            if contract.id:
                contracts[contract.id] = contract
        self.blockchain.contracts = contracts
        logger.info("Contracts rebuilt: %d", len(contracts))

    def sync_blockchain(self) -> list[str]:
        """Go over the recently seen peers for synchronisation; return their ids."""
        with self._lock:
            if not self._peers:
                raise BlockchainError("no peers available for synchronization")
            logger.info("Synchronising blockchain with %d peers", len(self._peers))
            since = colombian_now() - PEER_ACTIVITY_WINDOW
            contacted = []
            for peer_id, peer in self._peers.items():
                if not self._recently_seen(peer, since):
                    continue
                logger.info(
                    "Synchronising with peer %s (%s:%s)", peer_id, peer.address, peer.port
                )
                contacted.append(peer_id)
            return contacted

    # --- health ----------------------------------------------------------

    def health_check(self) -> None:
        """Probe every peer's health endpoint and update its active flag."""
        with self._lock:
            for peer_id, peer in self._peers.items():
                try:
                    response = requests.get(
                        f"{peer.base_url}/api/health", timeout=_HEALTH_TIMEOUT
                    )
                    with response:
                        healthy = response.status_code == 200
                except requests.RequestException:
                    healthy = False
                if healthy:
                    peer.active = True
                    peer.last_seen = colombian_now()
                    logger.info("Peer %s active", peer_id)
                else:
                    peer.active = False
                    logger.warning("Peer %s not responding", peer_id)

    def network_health(self) -> dict[str, Any]:
        """Return a JSON-ready report of the network and the ledger."""
        with self._lock:
            now = colombian_now()
            since = now - PEER_ACTIVITY_WINDOW
            peer_details = {
                peer_id: {
                    "address": peer.address,
                    "port": peer.port,
                    "last_seen": _iso(peer.last_seen),
                    "active": self._recently_seen(peer, since),
                }
                for peer_id, peer in self._peers.items()
            }
            return {
                "node_id": self.node_id,
                "address": f"{self.address}:{self.port}",
                "total_peers": len(self._peers),
                "active_peers": sum(1 for detail in peer_details.values() if detail["active"]),
                "peer_discovery": self.peer_discovery is not None,
                "blockchain_health": self.blockchain.network_health(),
                "timestamp": _iso(now),
                "peers": peer_details,
            }

    def is_synced(self) -> bool:
        """Tell whether a peer was seen recently and the ledger is intact."""
        with self._lock:
            since = colombian_now() - PEER_ACTIVITY_WINDOW
            recent = any(self._recently_seen(peer, since) for peer in self._peers.values())
        return recent and self.blockchain.is_synced()