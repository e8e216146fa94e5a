"""Blocks, contracts and the records kept in the ledger."""

from __future__ import annotations

import hashlib
import json
import math
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Any

from secopchain.config import colombian_now

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_TIME_PATTERN = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})[Tt](\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})"
)
_STRING_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


class BlockchainError(Exception):
    """An operation on the ledger was refused."""


class ContractNotFoundError(BlockchainError):
    """No contract has the requested id."""

    def __init__(self, message: str = "contrato no encontrado") -> None:
        super().__init__(message)


class ContractStatus(str, Enum):
    DRAFT = "DRAFT"
    TECHNICAL_REVIEW = "TECHNICAL_REVIEW"
    TECHNICAL_APPROVED = "TECHNICAL_APPROVED"
    LEGAL_REVIEW = "LEGAL_REVIEW"
    LEGAL_APPROVED = "LEGAL_APPROVED"
    CONTRACTS_REVIEW = "CONTRACTS_REVIEW"
    CONTRACTS_APPROVED = "CONTRACTS_APPROVED"
    ADMIN_REVIEW = "ADMIN_REVIEW"
    ADMIN_APPROVED = "ADMIN_APPROVED"
    BUDGET_REVIEW = "BUDGET_REVIEW"
    AUTHORIZED_FOR_PUBLICATION = "AUTHORIZED_FOR_PUBLICATION"
    PUBLISHED = "PUBLISHED"
    PROPOSALS_RECEIVED = "PROPOSALS_RECEIVED"
    EVALUATED = "EVALUATED"
    AWARDED = "AWARDED"
    EXECUTED = "EXECUTED"
    COMPLETED = "COMPLETED"
    # Control states: they do not block the process.
    UNDER_AUDIT = "UNDER_AUDIT"
    AUDIT_OBSERVATIONS = "AUDIT_OBSERVATIONS"
    REJECTED = "REJECTED"


class AdminRole(str, Enum):
    PROJECT_DEVELOPER = "PROJECT_DEVELOPER"
    TECHNICAL_COMMISSION = "TECHNICAL_COMMISSION"
    LEGAL_COMMISSION = "LEGAL_COMMISSION"
    CONTRACTS_CHIEF = "CONTRACTS_CHIEF"
    ADMIN_CHIEF = "ADMIN_CHIEF"
    BUDGET_AUTHORITY = "BUDGET_AUTHORITY"
    # External control roles: audit only.
    COMPTROLLER = "COMPTROLLER"
    PROSECUTOR = "PROSECUTOR"
    CITIZEN = "CITIZEN"


class ValidationStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    IN_REVIEW = "IN_REVIEW"


# --- time handling -------------------------------------------------------


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=timezone.utc)


def _unix(moment: datetime) -> int:
    return (_aware(moment) - _EPOCH) // timedelta(seconds=1)


def _format_time(moment: datetime) -> str:
    moment = _aware(moment)
    text = (
        f"{moment.year:04d}-{moment.month:02d}-{moment.day:02d}"
        f"T{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}"
    )
    if moment.microsecond:
        text += "." + f"{moment.microsecond:06d}".rstrip("0")
    offset = moment.utcoffset()
    if not offset:
        return text + "Z"
    minutes = int(offset.total_seconds()) // 60
    sign = "-" if minutes < 0 else "+"
    hours, minutes = divmod(abs(minutes), 60)
    return f"{text}{sign}{hours:02d}:{minutes:02d}"


def _parse_time(text: Any) -> datetime:
    if not isinstance(text, str):
        raise ValueError("timestamp must be a string")
    match = _TIME_PATTERN.fullmatch(text)
    if match is None:
        raise ValueError(f"invalid timestamp: {text!r}")
    year, month, day, hour, minute, second, fraction, zone = match.groups()
    micro = int((fraction or "0")[:6].ljust(6, "0"))
    if zone in ("Z", "z"):
        tz = timezone.utc
    else:
        sign = -1 if zone[0] == "-" else 1
        tz = timezone(sign * timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6])))
    return datetime(
        int(year), int(month), int(day), int(hour), int(minute), int(second), micro, tzinfo=tz
    )


# --- canonical JSON ------------------------------------------------------


def _encode_string(text: str) -> str:
    encoded = json.dumps(text, ensure_ascii=False)
    for char, escape in _STRING_ESCAPES.items():
        encoded = encoded.replace(char, escape)
    return encoded


def _encode_float(number: float) -> str:
    if math.isnan(number) or math.isinf(number):
        raise ValueError(f"unsupported float value: {number!r}")
    magnitude = abs(number)
    if magnitude != 0 and (magnitude < 1e-6 or magnitude >= 1e21):
        mantissa, _, exponent = repr(number).partition("e")
        if len(exponent) == 3 and exponent[0] == "-" and exponent[1] == "0":
            exponent = "-" + exponent[2]
        return f"{mantissa}e{exponent}"
    text = format(Decimal(repr(number)), "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def _encode_key(key: Any) -> str:
    if isinstance(key, Enum):
        key = key.value
    if not isinstance(key, str):
        raise TypeError(f"object keys must be strings, not {type(key).__name__}")
    return key


def _encode(value: Any) -> str:
    if value is None:
        return "null"
    if value is True:
        return "true"
    if value is False:
        return "false"
    if isinstance(value, Enum):
        return _encode(value.value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        return _encode_float(value)
    if isinstance(value, str):
        return _encode_string(value)
    if isinstance(value, datetime):
        return _encode_string(_format_time(value))
    if isinstance(value, Mapping):
        items = sorted((_encode_key(key), item) for key, item in value.items())
        return "{" + ",".join(f"{_encode_string(k)}:{_encode(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_encode(item) for item in value) + "]"
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return _encode(to_dict())
    raise TypeError(f"cannot encode {type(value).__name__} as JSON")


def canonical_json(value: Any) -> str:
    """Encode ``value`` as compact JSON with sorted keys, the form that is hashed."""
    return _encode(value)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return _format_time(value)
    if isinstance(value, Mapping):
        return {_encode_key(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return value


# --- field readers for incoming documents --------------------------------


def _mapping(data: Any, what: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise ValueError(f"{what} must be a JSON object")
    return data


def _get_str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


def _get_int(data: Mapping[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"field {key!r} must be an integer")
    return value


def _get_float(data: Mapping[str, Any], key: str) -> float:
    value = data.get(key)
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"field {key!r} must be a number")
    return float(value)


def _get_bool(data: Mapping[str, Any], key: str) -> bool:
    value = data.get(key)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValueError(f"field {key!r} must be a boolean")
    return value


def _get_time(data: Mapping[str, Any], key: str) -> datetime:
    value = data.get(key)
    return ZERO_TIME if value is None else _parse_time(value)


def _get_list(data: Mapping[str, Any], key: str) -> list[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"field {key!r} must be an array")
    return value


def _get_str_list(data: Mapping[str, Any], key: str) -> list[str]:
    items = _get_list(data, key)
    if not all(isinstance(item, str) for item in items):
        raise ValueError(f"field {key!r} must be an array of strings")
    return list(items)


def _role(value: str) -> AdminRole | str:
    try:
        return AdminRole(value)
    except ValueError:
        return value


def _text(value: Any) -> Any:
    return value.value if isinstance(value, Enum) else value


# --- records -------------------------------------------------------------


@dataclass
class ValidationStep:
    step_number: int = 0
    role: AdminRole | str = ""
    validator_id: str = ""
    validator_name: str = ""
    status: ValidationStatus = ValidationStatus.PENDING
    timestamp: datetime = ZERO_TIME
    comments: str = ""
    required: bool = False
    digital_sign: str = ""
    documents: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Return the step as a JSON-ready dictionary."""
        return {
            "step_number": self.step_number,
            "role": _text(self.role),
            "validator_id": self.validator_id,
            "validator_name": self.validator_name,
            "status": _text(self.status),
            "timestamp": _format_time(self.timestamp),
            "comments": self.comments,
            "required": self.required,
            "digital_sign": self.digital_sign,
            "documents": list(self.documents),
        }


def _step_from_dict(data: Any) -> ValidationStep:
    data = _mapping(data, "validation step")
    status = _get_str(data, "status")
    return ValidationStep(
        step_number=_get_int(data, "step_number"),
        role=_role(_get_str(data, "role")),
        validator_id=_get_str(data, "validator_id"),
        validator_name=_get_str(data, "validator_name"),
        status=ValidationStatus(status) if status else ValidationStatus.PENDING,
        timestamp=_get_time(data, "timestamp"),
        comments=_get_str(data, "comments"),
        required=_get_bool(data, "required"),
        digital_sign=_get_str(data, "digital_sign"),
        documents=_get_str_list(data, "documents"),
    )


@dataclass
class AuditEntry:
    id: str = ""
    action: str = ""
    user_id: str = ""
    user_role: AdminRole | str = ""
    timestamp: datetime = ZERO_TIME
    description: str = ""
    ip_address: str = ""
    block_hash: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Return the entry as a JSON-ready dictionary."""
        return {
            "id": self.id,
            "action": self.action,
            "user_id": self.user_id,
            "user_role": _text(self.user_role),
            "timestamp": _format_time(self.timestamp),
            "description": self.description,
            "ip_address": self.ip_address,
            "block_hash": self.block_hash,
        }


def _audit_from_dict(data: Any) -> AuditEntry:
    data = _mapping(data, "audit entry")
    return AuditEntry(
        id=_get_str(data, "id"),
        action=_get_str(data, "action"),
        user_id=_get_str(data, "user_id"),
        user_role=_role(_get_str(data, "user_role")),
        timestamp=_get_time(data, "timestamp"),
        description=_get_str(data, "description"),
        ip_address=_get_str(data, "ip_address"),
        block_hash=_get_str(data, "block_hash"),
    )


@dataclass
class Contract:
    """A public contract and its approval workflow."""

    id: str = ""
    entity_code: str = ""
    entity_name: str = ""
    contract_type: str = ""
    description: str = ""
    amount: float = 0.0
    status: ContractStatus = ContractStatus.DRAFT
    created_by: str = ""
    created_at: datetime = ZERO_TIME
    updated_at: datetime = ZERO_TIME
    validation_steps: list[ValidationStep] = field(default_factory=list)
    current_step: int = 0
    required_roles: list[str] = field(default_factory=list)
    audit_trail: list[AuditEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        """Return the contract as a JSON-ready dictionary."""
        return {
            "id": self.id,
            "entity_code": self.entity_code,
            "entity_name": self.entity_name,
            "contract_type": self.contract_type,
            "description": self.description,
            "amount": self.amount,
            "status": _text(self.status),
            "created_by": self.created_by,
            "created_at": _format_time(self.created_at),
            "updated_at": _format_time(self.updated_at),
            "validation_steps": [step.to_dict() for step in self.validation_steps],
            "current_step": self.current_step,
            "required_roles": list(self.required_roles),
            "audit_trail": [entry.to_dict() for entry in self.audit_trail],
        }

    @classmethod
    def from_dict(cls, data: Any) -> Contract:
        """Build a contract from a decoded JSON object; raise ValueError if malformed."""
        data = _mapping(data, "contract")
        status = _get_str(data, "status")
        return cls(
            id=_get_str(data, "id"),
            entity_code=_get_str(data, "entity_code"),
            entity_name=_get_str(data, "entity_name"),
            contract_type=_get_str(data, "contract_type"),
            description=_get_str(data, "description"),
            amount=_get_float(data, "amount"),
            status=ContractStatus(status) if status else ContractStatus.DRAFT,
            created_by=_get_str(data, "created_by"),
            created_at=_get_time(data, "created_at"),
            updated_at=_get_time(data, "updated_at"),
            validation_steps=[_step_from_dict(item) for item in _get_list(data, "validation_steps")],
            current_step=_get_int(data, "current_step"),
            required_roles=_get_str_list(data, "required_roles"),
            audit_trail=[_audit_from_dict(item) for item in _get_list(data, "audit_trail")],
        )


@dataclass
class Block:
    """One link of the chain; ``hash`` covers every other field."""

    index: int = 0
    timestamp: datetime = ZERO_TIME
    data: dict[str, Any] | None = field(default_factory=dict)
    previous_hash: str = ""
    hash: str = ""
    nonce: int = 0
    type: str = ""

    def calculate_hash(self) -> str:
        """Return the SHA-256 hex digest of the block's content."""
        record = {
            "index": self.index,
            "timestamp": _unix(self.timestamp),
            "data": self.data,
            "previous_hash": self.previous_hash,
            "nonce": self.nonce,
            "type": self.type,
        }
        return hashlib.sha256(canonical_json(record).encode("utf-8")).hexdigest()

    def is_valid(self) -> bool:
        """Tell whether the stored hash matches the content."""
        return self.hash == self.calculate_hash()

    def to_dict(self) -> dict[str, Any]:
        """Return the block as a JSON-ready dictionary."""
        return {
            "index": self.index,
            "timestamp": _format_time(self.timestamp),
            "data": _jsonable(self.data),
            "previous_hash": self.previous_hash,
            "hash": self.hash,
            "nonce": self.nonce,
            "type": self.type,
        }

    @classmethod
    def from_dict(cls, data: Any) -> Block:
        """Build a block from a decoded JSON object; raise ValueError if malformed."""
        data = _mapping(data, "block")
        payload = data.get("data")
        if payload is not None and not isinstance(payload, Mapping):
            raise ValueError("field 'data' must be an object")
        return cls(
            index=_get_int(data, "index"),
            timestamp=_get_time(data, "timestamp"),
            data=dict(payload) if payload is not None else None,
            previous_hash=_get_str(data, "previous_hash"),
            hash=_get_str(data, "hash"),
            nonce=_get_int(data, "nonce"),
            type=_get_str(data, "type"),
        )


def new_block(data: dict[str, Any] | None, previous_hash: str) -> Block:
    """Create a block stamped with the current Colombian time, its hash filled in."""
    block = Block(index=0, timestamp=colombian_now(), data=data, previous_hash=previous_hash)
    block.hash = block.calculate_hash()
    return block