import json
from datetime import datetime, timedelta, timezone

import pytest

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
    canonical_json,
    new_block,
)

COT = timezone(timedelta(hours=-5))


def _sample_contract():
    created = datetime(2024, 3, 5, 10, 20, 30, 123456, tzinfo=COT)
    return Contract(
        id="c-1",
        entity_code="DNP",
        entity_name="Planeacion",
        contract_type="SERVICES",
        description="Road maintenance",
        amount=1500000.5,
        status=ContractStatus.TECHNICAL_REVIEW,
        created_by="user-1",
        created_at=created,
        updated_at=created,
        validation_steps=[
            ValidationStep(
                step_number=1,
                role=AdminRole.PROJECT_DEVELOPER,
                status=ValidationStatus.APPROVED,
                timestamp=created,
                required=True,
                documents=["doc.pdf"],
            ),
            ValidationStep(step_number=2, role=AdminRole.TECHNICAL_COMMISSION, required=True),
        ],
        current_step=2,
        required_roles=["TECHNICAL_COMMISSION"],
        audit_trail=[
            AuditEntry(
                id="a-1",
                action="WORKFLOW_INITIALIZED",
                user_id="user-1",
                user_role=AdminRole.PROJECT_DEVELOPER,
                timestamp=created,
                description="Flujo de trabajo inicializado",
            )
        ],
    )


def test_canonical_json_sorts_keys_compactly():
    assert canonical_json({"b": 1, "a": [1, 2]}) == '{"a":[1,2],"b":1}'


def test_canonical_json_escapes_html_characters():
    encoded = canonical_json("<&>")
    assert "<" not in encoded and ">" not in encoded and "&" not in encoded
    assert json.loads(encoded) == "<&>"


def test_canonical_json_keeps_non_ascii():
    assert canonical_json("Revisión") == '"Revisión"'


def test_canonical_json_whole_floats_have_no_fraction():
    assert canonical_json(1000.0) == canonical_json(1000)
    assert json.loads(canonical_json(1e20)) == 1e20
    assert "e" not in canonical_json(1e20)


def test_canonical_json_small_float_exponent():
    assert canonical_json(1e-7) == "1e-7"


def test_canonical_json_large_float_exponent():
    assert json.loads(canonical_json(1e21)) == 1e21
    assert "e+" in canonical_json(1e21)


def test_canonical_json_rejects_nan():
    with pytest.raises(ValueError):
        canonical_json(float("nan"))


def test_canonical_json_rejects_non_string_keys():
    with pytest.raises(TypeError):
        canonical_json({1: "x"})


def test_canonical_json_enum_is_its_value():
    assert canonical_json(ContractStatus.DRAFT) == '"DRAFT"'
    assert canonical_json({AdminRole.CITIZEN: True}) == '{"CITIZEN":true}'


def test_canonical_json_datetime_format():
    moment = datetime(2024, 3, 5, 10, 20, 30, tzinfo=COT)
    assert canonical_json(moment) == '"2024-03-05T10:20:30-05:00"'


def test_canonical_json_datetime_utc_and_fraction():
    moment = datetime(2024, 3, 5, 10, 20, 30, 500000, tzinfo=timezone.utc)
    assert canonical_json(moment) == '"2024-03-05T10:20:30.5Z"'


def test_new_block_is_valid():
    block = new_block({"message": "hello"}, "abc")
    assert block.is_valid()
    assert block.index == 0
    assert block.previous_hash == "abc"
    assert len(block.hash) == 64
    assert block.timestamp.utcoffset() == timedelta(hours=-5)


def test_changing_data_invalidates_block():
    block = new_block({"message": "hello"}, "abc")
    block.data["message"] = "tampered"
    assert not block.is_valid()


def test_hash_covers_type_and_index():
    block = new_block({"message": "hello"}, "")
    original = block.calculate_hash()
    block.type = "VALIDATION"
    typed = block.calculate_hash()
    block.index = 1
    assert len({original, typed, block.calculate_hash()}) == 3


def test_hash_ignores_sub_second_timestamp():
    base = Block(index=1, timestamp=datetime(2024, 1, 1, 8, 0, 0, tzinfo=COT), data={"a": 1})
    shifted = Block(
        index=1, timestamp=datetime(2024, 1, 1, 8, 0, 0, 999999, tzinfo=COT), data={"a": 1}
    )
    assert base.calculate_hash() == shifted.calculate_hash()


def test_hash_same_instant_other_zone():
    here = Block(timestamp=datetime(2024, 1, 1, 8, 0, tzinfo=COT), data={})
    there = Block(timestamp=datetime(2024, 1, 1, 13, 0, tzinfo=timezone.utc), data={})
    assert here.calculate_hash() == there.calculate_hash()


def test_null_data_hashes_differently_from_empty():
    assert Block(data=None).calculate_hash() != Block(data={}).calculate_hash()


def test_block_round_trip_through_json():
    data = {
        "type": "CONTRACT_CREATION",
        "amount": 1000.0,
        "timestamp": datetime(2024, 3, 5, 10, 20, 30, 250000, tzinfo=COT),
    }
    block = new_block(data, "prev")
    block.type = "CONTRACT_CREATION"
    block.hash = block.calculate_hash()
    restored = Block.from_dict(json.loads(json.dumps(block.to_dict())))
    assert restored.is_valid()
    assert restored.hash == block.hash
    assert restored.timestamp == block.timestamp
    assert restored.type == "CONTRACT_CREATION"


def test_block_from_dict_missing_fields_gets_zero_values():
    block = Block.from_dict({})
    assert block.index == 0
    assert block.data is None
    assert block.hash == ""
    assert block.to_dict()["timestamp"] == "0001-01-01T00:00:00Z"


@pytest.mark.parametrize(
    "payload",
    [
        {"index": "one"},
        {"timestamp": "yesterday"},
        {"data": [1, 2]},
        {"nonce": 1.5},
        {"hash": 5},
    ],
)
def test_block_from_dict_rejects_bad_fields(payload):
    with pytest.raises(ValueError):
        Block.from_dict(payload)


def test_contract_round_trip():
    contract = _sample_contract()
    restored = Contract.from_dict(json.loads(json.dumps(contract.to_dict())))
    assert restored == contract


def test_contract_to_dict_uses_plain_values():
    data = _sample_contract().to_dict()
    assert data["status"] == "TECHNICAL_REVIEW"
    assert data["validation_steps"][1]["status"] == "PENDING"
    assert data["audit_trail"][0]["user_role"] == "PROJECT_DEVELOPER"


def test_contract_from_dict_defaults():
    contract = Contract.from_dict({"description": "x", "amount": 10})
    assert contract.amount == 10.0
    assert contract.status is ContractStatus.DRAFT
    assert contract.validation_steps == []
    assert contract.audit_trail == []


def test_contract_from_dict_keeps_unknown_role_text():
    contract = Contract.from_dict({"validation_steps": [{"step_number": 1, "role": "OTHER"}]})
    assert contract.validation_steps[0].role == "OTHER"
    assert contract.validation_steps[0].status is ValidationStatus.PENDING


@pytest.mark.parametrize(
    "payload",
    [
        {"amount": "abc"},
        {"amount": True},
        {"status": "NOT_A_STATUS"},
        {"validation_steps": "none"},
        {"required_roles": [1]},
        {"created_at": 5},
    ],
)
def test_contract_from_dict_rejects_bad_fields(payload):
    with pytest.raises(ValueError):
        Contract.from_dict(payload)


def test_contract_from_dict_requires_object():
    with pytest.raises(ValueError):
        Contract.from_dict([1, 2])


def test_contract_not_found_error():
    error = ContractNotFoundError()
    assert isinstance(error, BlockchainError)
    assert str(error) == "contrato no encontrado"