from unittest.mock import patch

import pytest

from secopchain.server import main

_ENV_KEYS = (
    "NODE_PORT",
    "NODE_ADDRESS",
    "GIN_MODE",
    "GENESIS_BLOCK",
    "NODE_ID",
    "PEER_DISCOVERY_REGISTRY_URL",
    "BOOTSTRAP_PEERS",
    "ENTITY_TYPE",
    "ENTITY_NAME",
    "ENTITY_CODE",
    "ENTITY_REGION",
    "ENTITY_LEVEL",
    "ENTITY_CONTACT_EMAIL",
    "ENTITY_BUDGET_AUTHORITY",
    "ENTITY_MAX_CONTRACT_VALUE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return tmp_path


def test_successful_run_returns_zero_and_listens_on_configured_port(monkeypatch):
    monkeypatch.setenv("NODE_PORT", "9123")
    with patch("flask.Flask.run") as run:
        status = main([])
    assert status == 0
    run.assert_called_once()
    assert run.call_args.kwargs["port"] == 9123
    assert run.call_args.kwargs["host"] == "0.0.0.0"


def test_banner_shows_default_node_and_entity(capsys):
    with patch("flask.Flask.run"):
        main([])
    out = capsys.readouterr().out
    assert "Iniciando SECOP Blockchain v2" in out
    assert "Nodo: secop-government-central-bogota" in out
    assert "Entidad: GOVERNMENT" in out
    assert "Dirección: localhost:8080" in out
    assert "http://localhost:8080/api/" in out


def test_dotenv_file_is_loaded(clean_env, capsys):
    (clean_env / ".env").write_text("NODE_ID=node-from-dotenv\n", encoding="utf-8")
    with patch("flask.Flask.run"):
        main([])
    assert "Nodo: node-from-dotenv" in capsys.readouterr().out


def test_environment_overrides_dotenv(clean_env, monkeypatch, capsys):
    (clean_env / ".env").write_text("NODE_ID=node-from-dotenv\n", encoding="utf-8")
    monkeypatch.setenv("NODE_ID", "node-from-env")
    with patch("flask.Flask.run"):
        main([])
    out = capsys.readouterr().out
    assert "Nodo: node-from-env" in out
    assert "node-from-dotenv" not in out


def test_without_bootstrap_peers_uses_dynamic_discovery(capsys):
    with patch("flask.Flask.run"):
        main([])
    assert "Modo descubrimiento dinámico" in capsys.readouterr().out


def test_bootstrap_peers_are_counted(monkeypatch, capsys):
    monkeypatch.setenv("BOOTSTRAP_PEERS", "node-a:host-a, node-b:host-b,")
    with patch("flask.Flask.run"):
        main([])
    out = capsys.readouterr().out
    assert "Configurando 2 peers bootstrap" in out
    assert "Modo descubrimiento dinámico" not in out


def test_dnp_entity_announces_clean_start(monkeypatch, capsys):
    monkeypatch.setenv("ENTITY_TYPE", "DNP")
    with patch("flask.Flask.run"):
        main([])
    assert "Sistema iniciado sin datos de ejemplo" in capsys.readouterr().out


def test_other_entity_skips_clean_start_message(capsys):
    with patch("flask.Flask.run"):
        main([])
    assert "Sistema iniciado sin datos de ejemplo" not in capsys.readouterr().out


def test_server_error_returns_failure_status():
    with patch("flask.Flask.run", side_effect=OSError("address in use")):
        status = main([])
    assert status == 1


def test_invalid_port_returns_failure_without_running(monkeypatch):
    monkeypatch.setenv("NODE_PORT", "not-a-port")
    with patch("flask.Flask.run") as run:
        status = main([])
    assert status == 1
    assert run.call_count == 0


def test_unknown_argument_is_rejected():
    with patch("flask.Flask.run") as run:
        with pytest.raises(SystemExit) as excinfo:
            main(["--bogus"])
    assert excinfo.value.code == 2
    assert run.call_count == 0