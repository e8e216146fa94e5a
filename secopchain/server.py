"""Command that starts a SECOP ledger node and serves its HTTP API."""

from __future__ import annotations

import argparse
import logging
from collections.abc import Sequence

from dotenv import load_dotenv

from secopchain.app import create_app
from secopchain.config import Config, load_config
from secopchain.service import Services, create_services

logger = logging.getLogger(__name__)

_DOTENV_FILE = ".env"
_LISTEN_HOST = "0.0.0.0"


def _load_dotenv() -> None:
    # Values already present in the environment take precedence over the file.
    if not load_dotenv(_DOTENV_FILE):
        logger.warning(
            "Warning: %s file not found or could not be loaded", _DOTENV_FILE
        )


def _print_banner(config: Config) -> None:
    print("🚀 Iniciando SECOP Blockchain v2")
    print(f"📍 Nodo: {config.p2p.node_id}")
    print(f"🏛️ Entidad: {config.entity.type}")
    print(f"🌐 Dirección: {config.server.address}:{config.server.port}")


def _setup_bootstrap_peers(services: Services, config: Config) -> None:
    peers = config.p2p.bootstrap_peers
    if not peers:
        print("🌐 Modo descubrimiento dinámico")
        return
    print(f"🔗 Configurando {len(peers)} peers bootstrap")


def _announce_clean_start(services: Services) -> None:
    print("✅ Sistema iniciado sin datos de ejemplo")


def _start_periodic_tasks(services: Services) -> None:
    print("⏰ Iniciando tareas periódicas...")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="secopchain-server",
        description="Start a SECOP ledger node; settings come from the environment and .env.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Start the node and serve its API until stopped; return the exit status."""
    _parse_args(argv)
    _load_dotenv()

    config = load_config()
    _print_banner(config)

    services = create_services(config)
    _setup_bootstrap_peers(services, config)

    if config.entity.type == "DNP":
        _announce_clean_start(services)

    app = create_app(config, services)
    _start_periodic_tasks(services)

    print(f"✅ Servidor iniciado en puerto {config.server.port}")
    print(
        f"🔗 API disponible en http://{config.server.address}:{config.server.port}/api/"
    )

    try:
        port = int(config.server.port)
        app.run(host=_LISTEN_HOST, port=port, debug=False, use_reloader=False)
    except (ValueError, OSError) as exc:
        logger.error("Error iniciando servidor: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())