"""Node configuration read from the environment, and the Colombian clock."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

_INT64_MAX = 2**63 - 1
_INT64_MIN = -(2**63)
_INT_PATTERN = re.compile(r"[+-]?[0-9]+")


def _colombian_zone() -> tzinfo:
    try:
        return ZoneInfo("America/Bogota")
    except (ZoneInfoNotFoundError, ValueError):
        # Without timezone data Colombia is a fixed UTC-5 offset.
        return timezone(timedelta(hours=-5), "COT")


COLOMBIA_TZ: tzinfo = _colombian_zone()


def colombian_now() -> datetime:
    """Return the current time in Colombia's timezone."""
    return datetime.now(COLOMBIA_TZ)


def to_colombian_time(moment: datetime) -> datetime:
    """Express ``moment`` in Colombia's timezone; naive values are taken as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(COLOMBIA_TZ)


@dataclass
class ServerConfig:
    port: str = "8080"
    address: str = "localhost"
    mode: str = "debug"


@dataclass
class BlockchainConfig:
    genesis_block: bool = False
    difficulty: int = 1


@dataclass
class P2PConfig:
    node_id: str = "secop-government-central-bogota"
    discovery_registry_url: str = ""
    bootstrap_peers: list[str] = field(default_factory=list)


@dataclass
class EntityConfig:
    type: str = "GOVERNMENT"
    name: str = ""
    code: str = ""
    region: str = ""
    level: str = ""
    contact_email: str = ""
    budget_authority: bool = False
    max_contract_value: int = 0


@dataclass
class Config:
    server: ServerConfig = field(default_factory=ServerConfig)
    blockchain: BlockchainConfig = field(default_factory=BlockchainConfig)
    p2p: P2PConfig = field(default_factory=P2PConfig)
    entity: EntityConfig = field(default_factory=EntityConfig)


def parse_bootstrap_peers(value: str) -> list[str]:
    """Split a ``node1:addr1,node2:addr2`` list, dropping blank entries."""
    return [peer.strip() for peer in value.split(",") if peer.strip()]


def _parse_int64(text: str) -> int:
    if not _INT_PATTERN.fullmatch(text):
        return 0
    return max(_INT64_MIN, min(_INT64_MAX, int(text)))


def load_config(environ: Mapping[str, str] | None = None) -> Config:
    """Build the configuration from ``environ`` (the process environment by default)."""
    env = os.environ if environ is None else environ

    def get(key: str, default: str) -> str:
        return env.get(key, "") or default

    return Config(
        server=ServerConfig(
            port=get("NODE_PORT", "8080"),
            address=get("NODE_ADDRESS", "localhost"),
            mode=get("GIN_MODE", "debug"),
        ),
        blockchain=BlockchainConfig(
            genesis_block=get("GENESIS_BLOCK", "false") == "true",
            difficulty=1,
        ),
        p2p=P2PConfig(
            node_id=get("NODE_ID", "secop-government-central-bogota"),
            discovery_registry_url=get("PEER_DISCOVERY_REGISTRY_URL", ""),
            bootstrap_peers=parse_bootstrap_peers(get("BOOTSTRAP_PEERS", "")),
        ),
        entity=EntityConfig(
            type=get("ENTITY_TYPE", "GOVERNMENT"),
            name=get("ENTITY_NAME", ""),
            code=get("ENTITY_CODE", ""),
            region=get("ENTITY_REGION", ""),
            level=get("ENTITY_LEVEL", ""),
            contact_email=get("ENTITY_CONTACT_EMAIL", ""),
            budget_authority=get("ENTITY_BUDGET_AUTHORITY", "false") == "true",
            max_contract_value=_parse_int64(get("ENTITY_MAX_CONTRACT_VALUE", "0")),
        ),
    )