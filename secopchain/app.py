"""The node's HTTP API: contracts, workflow, peer-to-peer exchange and health."""

from __future__ import annotations

from typing import Any

from flask import Flask, Response, jsonify, request

from secopchain.block import (
    AdminRole,
    Block,
    BlockchainError,
    Contract,
    ContractStatus,
)
from secopchain.config import Config, colombian_now
from secopchain.service import Services

_CORS_METHODS = "GET, POST, PUT, DELETE, OPTIONS"


class _BadRequest(Exception):
    """The request body could not be bound to the expected fields."""


def _json_body() -> dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise _BadRequest("invalid JSON body")
    return payload


def _bind(spec: dict[str, type]) -> dict[str, Any]:
    """Read the named fields of the JSON body, using zero values for missing ones."""
    payload = _json_body()
    values: dict[str, Any] = {}
    for name, kind in spec.items():
        value = payload.get(name)
        if value is None:
            values[name] = kind()
            continue
        if kind is int:
            valid = isinstance(value, int) and not isinstance(value, bool)
        else:
            valid = isinstance(value, kind)
        if not valid:
            raise _BadRequest(f"field {name!r} must be of type {kind.__name__}")
        values[name] = value
    return values


def _as_status(text: str) -> ContractStatus | str:
    try:
        return ContractStatus(text)
    except ValueError:
        return text


def _as_role(text: str) -> AdminRole | str:
    try:
        return AdminRole(text)
    except ValueError:
        return text


def _contract_list(contracts: list[Contract]) -> list[dict[str, Any]] | None:
    # An empty filtered list is reported as null.
    return [contract.to_dict() for contract in contracts] or None


def _error(message: str, status: int) -> tuple[Response, int]:
    return jsonify({"error": message}), status


def create_app(config: Config, services: Services) -> Flask:
    """Build the Flask application serving the node's API."""
    app = Flask(__name__)
    app.config["TESTING"] = config.server.mode == "test"
    app.config["SERVER_MODE"] = config.server.mode

    blockchain = services.blockchain
    p2p = services.p2p
    workflow = services.workflow

    @app.errorhandler(_BadRequest)
    def _bad_request(exc: _BadRequest) -> tuple[Response, int]:
        return _error(str(exc), 400)

    @app.before_request
    def _preflight() -> Response | None:
        if request.method == "OPTIONS" and request.headers.get("Origin"):
            return Response(status=204)
        return None

    @app.after_request
    def _cors(response: Response) -> Response:
        if request.headers.get("Origin"):
            response.headers["Access-Control-Allow-Origin"] = "*"
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Access-Control-Expose-Headers"] = "*"
            if request.method == "OPTIONS":
                response.headers["Access-Control-Allow-Methods"] = _CORS_METHODS
                response.headers["Access-Control-Allow-Headers"] = "*"
        return response

    def _broadcast_latest() -> None:
        if blockchain.chain:
            p2p.broadcast_block(blockchain.chain[-1])

    # --- contracts -------------------------------------------------------

    @app.get("/api/contracts")
    def get_all_contracts():
        contracts = blockchain.all_contracts()
        return jsonify(
            {
                "success": True,
                "count": len(contracts),
                "data": [contract.to_dict() for contract in contracts],
            }
        )

    @app.post("/api/contracts")
    def create_contract():
        try:
            contract = Contract.from_dict(_json_body())
        except ValueError as exc:
            raise _BadRequest(str(exc)) from exc
        try:
            blockchain.add_contract(contract)
        except BlockchainError as exc:
            return _error(str(exc), 500)
        _broadcast_latest()
        return (
            jsonify(
                {
                    "success": True,
                    "message": "Contrato creado exitosamente",
                    "contract_id": contract.id,
                }
            ),
            201,
        )

    @app.post("/api/contracts/validate")
    def validate_contract():
        req = _bind({"contractId": str, "nodeId": str, "approved": bool, "reason": str})
        try:
            blockchain.validate_contract(
                req["contractId"], req["nodeId"], req["approved"], req["reason"]
            )
        except BlockchainError as exc:
            return _error(str(exc), 500)
        _broadcast_latest()
        return jsonify({"success": True, "message": "Validación registrada exitosamente"})

    @app.get("/api/contracts/by-status/<status>")
    def contracts_by_status(status: str):
        found = blockchain.contracts_by_status(_as_status(status))
        return jsonify({"contracts": _contract_list(found)})

    @app.get("/api/contracts/by-role/<role>")
    def contracts_by_role(role: str):
        found = blockchain.contracts_by_role(_as_role(role))
        return jsonify({"contracts": _contract_list(found)})

    # --- workflow --------------------------------------------------------

    @app.get("/api/workflow/steps")
    def workflow_steps():
        return jsonify({"steps": [step.to_dict() for step in workflow.workflow_steps()]})

    @app.get("/api/contracts/<contract_id>/workflow")
    def contract_workflow(contract_id: str):
        try:
            status = workflow.get_workflow_status(contract_id)
        except BlockchainError as exc:
            return _error(str(exc), 404)
        return jsonify(status)

    @app.post("/api/contracts/<contract_id>/validate-step")
    def validate_step(contract_id: str):
        req = _bind(
            {
                "step_number": int,
                "validator_id": str,
                "validator_name": str,
                "role": str,
                "approved": bool,
                "comments": str,
            }
        )
        try:
            workflow.validate_step(
                contract_id,
                req["step_number"],
                req["validator_id"],
                req["validator_name"],
                req["role"],
                req["approved"],
                req["comments"],
            )
        except BlockchainError as exc:
            return _error(str(exc), 400)
        return jsonify({"message": "Paso validado exitosamente"})

    @app.post("/api/contracts/<contract_id>/audit")
    def add_audit(contract_id: str):
        req = _bind({"auditor_id": str, "role": str, "observation": str})
        try:
            workflow.add_audit_observation(
                contract_id, req["auditor_id"], req["role"], req["observation"]
            )
        except BlockchainError as exc:
            return _error(str(exc), 400)
        return jsonify({"message": "Observación de auditoría agregada"})

    # --- peer to peer ----------------------------------------------------

    @app.get("/api/p2p/peers")
    def get_peers():
        return jsonify({"peers": {pid: peer.to_dict() for pid, peer in p2p.peers().items()}})

    @app.post("/api/p2p/add-peer")
    def add_peer():
        req = _bind({"id": str, "address": str, "port": str})
        try:
            p2p.add_peer(req["id"], req["address"], req["port"])
        except BlockchainError as exc:
            return _error(str(exc), 400)
        return jsonify({"message": "Peer agregado exitosamente"})

    @app.get("/api/p2p/get-chain")
    def get_chain():
        chain = blockchain.get_chain()
        return jsonify({"chain": [block.to_dict() for block in chain], "height": len(chain)})

    @app.post("/api/p2p/receive-block")
    def receive_block():
        try:
            block = Block.from_dict(_json_body())
        except ValueError as exc:
            raise _BadRequest(str(exc)) from exc
        if not blockchain.is_valid_block(block):
            return _error("Bloque inválido", 400)
        if blockchain.has_block(block.hash):
            return jsonify({"message": "Bloque ya existe"})
        data = block.data if block.data is not None else {}
        try:
            blockchain.add_block(data)
        except BlockchainError as exc:
            return _error(str(exc), 500)
        return jsonify({"message": "Bloque recibido y agregado"})

    @app.post("/api/p2p/sync")
    def sync():
        try:
            p2p.sync_blockchain()
        except BlockchainError as exc:
            return _error(str(exc), 500)
        return jsonify({"message": "Sincronización completada"})

    # --- health and statistics ------------------------------------------

    @app.get("/api/health")
    def health():
        return jsonify(
            {
                "status": "healthy",
                "timestamp": colombian_now().isoformat(),
                "blockchain": blockchain.network_health(),
                "p2p": p2p.network_health(),
                "peers": len(p2p.peers()),
                "blockchain_height": blockchain.height(),
            }
        )

    @app.get("/api/stats")
    def stats():
        entity = config.entity
        return jsonify(
            {
                "status": "healthy",
                "stats": {
                    "node_id": config.p2p.node_id,
                    "entity_type": entity.type,
                    "entity_name": entity.name,
                    "entity_code": entity.code,
                    "entity_region": entity.region,
                    "entity_level": entity.level,
                    "entity_contact": entity.contact_email,
                    "budget_authority": entity.budget_authority,
                    "max_contract_value": entity.max_contract_value,
                    "blockchain_height": blockchain.height(),
                    "total_contracts": len(blockchain.all_contracts()),
                    "total_peers": len(p2p.peers()),
                    "server_time": colombian_now().strftime("%Y-%m-%d %H:%M:%S %Z"),
                },
            }
        )

    @app.get("/api/blocks")
    def blocks():
        chain = blockchain.get_chain()
        return jsonify({"blocks": [block.to_dict() for block in chain], "height": len(chain)})

    return app