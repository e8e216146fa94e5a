"""Wiring of the ledger, the network and the workflow for one node."""

from __future__ import annotations

from dataclasses import dataclass

from secopchain.chain import Blockchain
from secopchain.config import Config
from secopchain.p2p import P2PNetwork
from secopchain.workflow import WorkflowManager


@dataclass
class Services:
    """The services a node runs, sharing one ledger."""

    blockchain: Blockchain
    p2p: P2PNetwork
    workflow: WorkflowManager
    config: Config


def create_services(config: Config) -> Services:
    """Build a fresh ledger and the services that work on it."""
    blockchain = Blockchain()
    p2p = P2PNetwork(
        config.p2p.node_id,
        config.server.address,
        config.server.port,
        blockchain,
        config.p2p.discovery_registry_url,
        config.entity.type,
    )
    return Services(
        blockchain=blockchain,
        p2p=p2p,
        workflow=WorkflowManager(blockchain),
        config=config,
    )