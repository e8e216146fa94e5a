"""The SECOP ledger: a hash-linked chain of blocks and the contracts it records."""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from collections.abc import Sequence
from itertools import pairwise
from typing import Any

from secopchain.block import (
    AdminRole,
    Block,
    BlockchainError,
    Contract,
    ContractNotFoundError,
    ContractStatus,
    ValidationStatus,
    new_block,
)
from secopchain.config import colombian_now
from secopchain.workflow import WorkflowManager, WorkflowStatus

logger = logging.getLogger(__name__)

GENESIS_MESSAGE = "SECOP Blockchain Genesis Block"


class Blockchain:
    """A chain of blocks together with the contracts whose history it records."""

    def __init__(self) -> None:
        genesis = Block(
            index=0,
            timestamp=colombian_now(),
            data={"message": GENESIS_MESSAGE},
            previous_hash="",
            nonce=0,
        )
        genesis.hash = genesis.calculate_hash()
        self.chain: list[Block] = [genesis]
        self.contracts: dict[str, Contract] = {}
        self.workflow_manager = WorkflowManager(self)

    # --- contracts -------------------------------------------------------

    def add_contract(self, contract: Contract) -> None:
        """Validate and register ``contract``, start its workflow and record it in a block."""
        self._check_contract(contract)
        if not contract.id:
            contract.id = str(uuid.uuid4())

        contract.created_at = colombian_now()
        contract.updated_at = colombian_now()
        contract.status = ContractStatus.DRAFT

        self.workflow_manager.initialize_contract_workflow(contract)
        self.contracts[contract.id] = contract

        self.add_block(
            {
                "type": "CONTRACT_CREATION",
                "contract_id": contract.id,
                "entity_code": contract.entity_code,
                "entity_name": contract.entity_name,
                "amount": contract.amount,
                "created_by": contract.created_by,
                "timestamp": contract.created_at,
            }
        )
        if contract.audit_trail:
            contract.audit_trail[-1].block_hash = self._latest_block().hash

    def validate_contract_step(
        self,
        contract_id: str,
        step_number: int,
        validator_id: str,
        validator_name: str,
        role: AdminRole | str,
        approved: bool,
        comments: str,
    ) -> None:
        """Approve or reject the current workflow step of a contract."""
        self.workflow_manager.validate_step(
            contract_id, step_number, validator_id, validator_name, role, approved, comments
        )

    def add_audit_observation(
        self, contract_id: str, auditor_id: str, role: AdminRole | str, observation: str
    ) -> None:
        """Record an external control body's observation on a contract."""
        self.workflow_manager.add_audit_observation(contract_id, auditor_id, role, observation)

    def get_contract_workflow_status(self, contract_id: str) -> WorkflowStatus:
        """Summarise a contract's progress through its workflow."""
        return self.workflow_manager.get_contract_workflow_status(contract_id)

    def contracts_by_status(self, status: ContractStatus | str) -> list[Contract]:
        """Return the contracts currently in ``status``."""
        return [contract for contract in self.contracts.values() if contract.status == status]

    def contracts_by_role(self, role: AdminRole | str) -> list[Contract]:
        """Return the contracts whose pending current step belongs to ``role``."""
        found = []
        for contract in self.contracts.values():
            if not 1 <= contract.current_step <= len(contract.validation_steps):
                continue
            step = contract.validation_steps[contract.current_step - 1]
            if step.role == role and step.status == ValidationStatus.PENDING:
                found.append(contract)
        return found

    def validate_contract(
        self, contract_id: str, node_id: str, approved: bool, reason: str
    ) -> None:
        """Record a node's verdict on a contract; a rejection marks it REJECTED."""
        contract = self.get_contract(contract_id)
        block_data = {
            "type": "VALIDATION",
            "contract_id": contract_id,
            "node_id": node_id,
            "approved": approved,
            "reason": reason,
            "timestamp": colombian_now(),
        }
        if approved:
            logger.info("Validation approved for contract %s by node %s", contract_id, node_id)
        else:
            contract.status = ContractStatus.REJECTED
            logger.info(
                "Validation rejected for contract %s by node %s: %s",
                contract_id,
                node_id,
                reason,
            )
        self.add_block(block_data)

    def get_contract(self, contract_id: str) -> Contract:
        """Return the contract with ``contract_id``."""
        try:
            return self.contracts[contract_id]
        except KeyError:
            raise ContractNotFoundError() from None

    def all_contracts(self) -> list[Contract]:
        """Return every registered contract."""
        return list(self.contracts.values())

    @staticmethod
    def _check_contract(contract: Contract) -> None:
        if not contract.entity_code:
            raise BlockchainError("código de entidad requerido")
        if not contract.entity_name:
            raise BlockchainError("nombre de entidad requerido")
        if not contract.description:
            raise BlockchainError("descripción requerida")
        if contract.amount <= 0:
            raise BlockchainError("monto debe ser mayor a cero")
        if not contract.created_by:
            raise BlockchainError("creador requerido")

    # --- blocks ----------------------------------------------------------

    def _latest_block(self) -> Block:
        return self.chain[-1]

    def is_chain_valid(self) -> bool:
        """Check every block's hash and its link to the block before it."""
        return all(
            current.is_valid() and current.previous_hash == previous.hash
            for previous, current in pairwise(self.chain)
        )

    def is_valid_block(self, block: Block) -> bool:
        """Tell whether ``block`` is intact and, unless genesis, follows the chain's tip."""
        if not block.hash or block.hash != block.calculate_hash():
            return False
        if block.index > 0:
            return bool(self.chain) and self.chain[-1].hash == block.previous_hash
        return True

    def has_block(self, block_hash: str) -> bool:
        """Tell whether a block with ``block_hash`` is in the chain."""
        return any(block.hash == block_hash for block in self.chain)

    def add_block(self, block_data: dict[str, Any]) -> Block:
        """Append a new block holding ``block_data`` and return it."""
        block = new_block(block_data, self._latest_block().hash)
        block.index = len(self.chain)
        block_type = block_data.get("type") if block_data is not None else None
        if isinstance(block_type, str):
            block.type = block_type
        block.hash = block.calculate_hash()

        if not self.is_valid_block(block):
            raise BlockchainError("bloque inválido")

        self.chain.append(block)
        logger.info("Block %d added to the chain", block.index)
        return block

    def is_valid_chain(self, chain: Sequence[Block]) -> bool:
        """Tell whether ``chain`` is non-empty, every block has a hash and links hold."""
        if not chain:
            return False
        if any(not block.hash for block in chain):
            return False
        return all(current.previous_hash == previous.hash for previous, current in pairwise(chain))

    # --- state -----------------------------------------------------------

    def height(self) -> int:
        """Return the number of blocks in the chain."""
        return len(self.chain)

    def last_block_hash(self) -> str:
        """Return the hash of the newest block, or an empty string."""
        return self.chain[-1].hash if self.chain else ""

    def is_synced(self) -> bool:
        """Tell whether the chain holds at least one block and is intact."""
        return bool(self.chain) and self.is_chain_valid()

    def network_health(self) -> dict[str, Any]:
        """Return a JSON-ready summary of the ledger's state."""
        return {
            "blockchain_height": self.height(),
            "last_block_hash": self.last_block_hash(),
            "is_synced": self.is_synced(),
            "chain_valid": self.is_chain_valid(),
            "total_contracts": len(self.contracts),
            "genesis_block_hash": self.chain[0].hash if self.chain else "",
            "contract_status_counts": dict(
                Counter(
                    contract.status.value
                    if isinstance(contract.status, ContractStatus)
                    else contract.status
                    for contract in self.contracts.values()
                )
            ),
        }

    def get_chain(self) -> list[Block]:
        """Return a shallow copy of the chain."""
        return list(self.chain)

    def replace_chain(self, new_chain: Sequence[Block]) -> None:
        """Adopt ``new_chain`` if it is longer than ours and valid."""
        if len(new_chain) <= len(self.chain):
            raise BlockchainError("nueva cadena debe ser más larga que la actual")
        if not self.is_valid_chain(new_chain):
            raise BlockchainError("nueva cadena no es válida")
        self.chain = list(new_chain)
        logger.info("Chain replaced with a new chain of length %d", len(self.chain))