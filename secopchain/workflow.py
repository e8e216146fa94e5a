"""The SECOP approval workflow: steps, validations and audit observations."""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from secopchain.block import (
    AdminRole,
    AuditEntry,
    Block,
    BlockchainError,
    Contract,
    ContractNotFoundError,
    ContractStatus,
    ValidationStatus,
    ValidationStep,
    ZERO_TIME,
)
from secopchain.config import colombian_now

_AUDIT_ROLES = frozenset({AdminRole.COMPTROLLER, AdminRole.PROSECUTOR, AdminRole.CITIZEN})

_STEP_STATUSES = {
    1: ContractStatus.DRAFT,
    2: ContractStatus.TECHNICAL_REVIEW,
    3: ContractStatus.LEGAL_REVIEW,
    4: ContractStatus.CONTRACTS_REVIEW,
    5: ContractStatus.ADMIN_REVIEW,
    6: ContractStatus.BUDGET_REVIEW,
}


class _Ledger(Protocol):
    contracts: dict[str, Contract]

    def add_block(self, block_data: dict[str, Any]) -> Block: ...


def _as_role(role: AdminRole | str) -> AdminRole | str:
    if isinstance(role, AdminRole):
        return role
    try:
        return AdminRole(role)
    except ValueError:
        return role


def _role_text(role: AdminRole | str) -> str:
    return role.value if isinstance(role, Enum) else role


@dataclass(frozen=True)
class WorkflowStep:
    """One stage of the approval workflow and the role that signs it off."""

    step_number: int
    role: AdminRole
    name: str
    required: bool

    def to_dict(self) -> dict[str, Any]:
        """Return the step as a JSON-ready dictionary."""
        return {
            "step_number": self.step_number,
            "role": self.role.value,
            "name": self.name,
            "required": self.required,
        }


WORKFLOW_STEPS: tuple[WorkflowStep, ...] = (
    WorkflowStep(1, AdminRole.PROJECT_DEVELOPER, "Creación del Proyecto", True),
    WorkflowStep(2, AdminRole.TECHNICAL_COMMISSION, "Revisión Técnica", True),
    WorkflowStep(3, AdminRole.LEGAL_COMMISSION, "Revisión Jurídica", True),
    WorkflowStep(4, AdminRole.CONTRACTS_CHIEF, "Aprobación Jefe de Contratos", True),
    WorkflowStep(5, AdminRole.ADMIN_CHIEF, "Aprobación Jefe Administrativo", True),
    WorkflowStep(6, AdminRole.BUDGET_AUTHORITY, "Autorización Ordenador del Gasto", True),
)


def status_for_step(step_number: int) -> ContractStatus:
    """Return the contract status that corresponds to the step now awaiting validation."""
    return _STEP_STATUSES.get(step_number, ContractStatus.AUTHORIZED_FOR_PUBLICATION)


@dataclass
class WorkflowStatus:
    """A summary of where a contract stands in its workflow."""

    contract_id: str
    current_step: int
    total_steps: int
    completed_steps: int
    status: ContractStatus
    can_advance: bool
    next_role: AdminRole | str

    def to_dict(self) -> dict[str, Any]:
        """Return the summary as a JSON-ready dictionary."""
        return {
            "contract_id": self.contract_id,
            "current_step": self.current_step,
            "total_steps": self.total_steps,
            "completed_steps": self.completed_steps,
            "status": _role_text(self.status),
            "can_advance": self.can_advance,
            "next_role": _role_text(self.next_role),
        }


class WorkflowManager:
    """Drives contracts of a ledger through the validation workflow."""

    def __init__(self, blockchain: _Ledger) -> None:
        self.blockchain = blockchain

    def workflow_steps(self) -> list[WorkflowStep]:
        """Return the workflow's steps in order."""
        return list(WORKFLOW_STEPS)

    def _contract(self, contract_id: str) -> Contract:
        try:
            return self.blockchain.contracts[contract_id]
        except KeyError:
            raise ContractNotFoundError() from None

    def initialize_contract_workflow(self, contract: Contract) -> None:
        """Give ``contract`` a fresh set of pending steps and record it in the audit trail."""
        contract.validation_steps = [
            ValidationStep(
                step_number=step.step_number,
                role=step.role,
                status=ValidationStatus.PENDING,
                required=step.required,
                timestamp=ZERO_TIME,
            )
            for step in WORKFLOW_STEPS
        ]
        contract.current_step = 1
        contract.status = ContractStatus.DRAFT
        contract.updated_at = colombian_now()
        self._add_audit_entry(
            contract,
            "WORKFLOW_INITIALIZED",
            contract.created_by,
            AdminRole.PROJECT_DEVELOPER,
            "Flujo de trabajo inicializado",
        )

    def validate_step(
        self,
        contract_id: str,
        step_number: int,
        validator_id: str,
        validator_name: str,
        role: AdminRole | str,
        approved: bool,
        comments: str,
    ) -> None:
        """Approve or reject the contract's current step and record it in a block."""
        contract = self._contract(contract_id)
        if step_number != contract.current_step:
            raise BlockchainError(
                f"paso inválido. Paso actual: {contract.current_step}, "
                f"paso solicitado: {step_number}"
            )
        if not 1 <= step_number <= len(contract.validation_steps):
            raise BlockchainError("número de paso inválido")

        role = _as_role(role)
        step = contract.validation_steps[step_number - 1]
        step.validator_id = validator_id
        step.validator_name = validator_name
        step.timestamp = colombian_now()
        step.comments = comments

        if approved:
            step.status = ValidationStatus.APPROVED
            contract.current_step += 1
            contract.status = status_for_step(contract.current_step)
            self._add_audit_entry(
                contract,
                "STEP_APPROVED",
                validator_id,
                role,
                f"Paso {step_number} aprobado: {comments}",
            )
        else:
            step.status = ValidationStatus.REJECTED
            contract.status = ContractStatus.REJECTED
            self._add_audit_entry(
                contract,
                "STEP_REJECTED",
                validator_id,
                role,
                f"Paso {step_number} rechazado: {comments}",
            )
        contract.updated_at = colombian_now()

        block = self.blockchain.add_block(
            {
                "type": "VALIDATION",
                "contract_id": contract_id,
                "step": step_number,
                "validator": validator_id,
                "role": _role_text(role),
                "approved": approved,
                "comments": comments,
                "timestamp": colombian_now(),
            }
        )
        if contract.audit_trail:
            contract.audit_trail[-1].block_hash = block.hash

    def add_audit_observation(
        self, contract_id: str, auditor_id: str, role: AdminRole | str, observation: str
    ) -> None:
        """Record an external control body's observation on a contract."""
        contract = self._contract(contract_id)
        role = _as_role(role)
        if role not in _AUDIT_ROLES:
            raise BlockchainError("rol no autorizado para auditoría")

        contract.audit_trail.append(
            AuditEntry(
                id=str(uuid.uuid4()),
                action="AUDIT_OBSERVATION",
                user_id=auditor_id,
                user_role=role,
                timestamp=colombian_now(),
                description=observation,
                ip_address="",
            )
        )
        block = self.blockchain.add_block(
            {
                "type": "AUDIT_OBSERVATION",
                "contract_id": contract_id,
                "auditor": auditor_id,
                "role": _role_text(role),
                "observation": observation,
                "timestamp": colombian_now(),
            }
        )
        contract.audit_trail[-1].block_hash = block.hash

    def get_contract_workflow_status(self, contract_id: str) -> WorkflowStatus:
        """Return step counts, status and next role for a contract."""
        contract = self._contract(contract_id)
        return WorkflowStatus(
            contract_id=contract_id,
            current_step=contract.current_step,
            total_steps=len(contract.validation_steps),
            completed_steps=self._completed_steps(contract),
            status=contract.status,
            can_advance=contract.status
            not in (ContractStatus.REJECTED, ContractStatus.COMPLETED),
            next_role=self._next_role(contract),
        )

    def get_workflow_status(self, contract_id: str) -> dict[str, Any]:
        """Return the contract's steps, audit trail and percentage of approved steps."""
        contract = self._contract(contract_id)
        completed = self._completed_steps(contract)
        total = len(contract.validation_steps)
        progress = completed / total * 100 if total else math.nan
        payload = contract.to_dict()
        return {
            "contract_id": contract_id,
            "current_step": contract.current_step,
            "total_steps": total,
            "completed_steps": completed,
            "progress": progress,
            "status": payload["status"],
            "validation_steps": payload["validation_steps"],
            "audit_trail": payload["audit_trail"],
            "created_at": payload["created_at"],
            "updated_at": payload["updated_at"],
        }

    @staticmethod
    def _completed_steps(contract: Contract) -> int:
        return sum(
            1 for step in contract.validation_steps if step.status == ValidationStatus.APPROVED
        )

    @staticmethod
    def _next_role(contract: Contract) -> AdminRole | str:
        if 1 <= contract.current_step <= len(contract.validation_steps):
            return contract.validation_steps[contract.current_step - 1].role
        return ""

    @staticmethod
    def _add_audit_entry(
        contract: Contract,
        action: str,
        user_id: str,
        role: AdminRole | str,
        description: str,
    ) -> None:
        contract.audit_trail.append(
            AuditEntry(
                id=str(uuid.uuid4()),
                action=action,
                user_id=user_id,
                user_role=role,
                timestamp=colombian_now(),
                description=description,
                ip_address="",
            )
        )