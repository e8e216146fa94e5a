# secopchain

This package runs a node for a public-procurement ledger. Each node keeps a
hash-linked chain of blocks in memory. The chain records contract creation,
approval steps and audit observations. The node serves the chain through a
JSON HTTP API built with Flask, and it can exchange blocks with peer nodes.

## What a contract goes through

A contract starts in the `DRAFT` state. Six roles must then approve it, in
this order:

1. `PROJECT_DEVELOPER`
2. `TECHNICAL_COMMISSION`
3. `LEGAL_COMMISSION`
4. `CONTRACTS_CHIEF`
5. `ADMIN_CHIEF`
6. `BUDGET_AUTHORITY`

As each step is approved, the status of the contract moves through the review
states:

- `TECHNICAL_REVIEW`
- `LEGAL_REVIEW`
- `CONTRACTS_REVIEW`
- `ADMIN_REVIEW`
- `BUDGET_REVIEW`

When the last step is approved, the status becomes `AUTHORIZED_FOR_PUBLICATION`.
A rejection at any step sets the status to `REJECTED`.

The external control roles `COMPTROLLER`, `PROSECUTOR` and `CITIZEN` may add
audit observations at any time. An observation does not change the contract's
status. Any other role that tries to add an observation is refused.

Every action is appended to the contract's audit trail. Each action is also
recorded in a new block, and its audit entry holds that block's hash.

## Installation

```
pip install .
```

To install the test tools as well, use `pip install .[test]`.

## Running a node

```
secopchain-server
```

The node reads its settings from the environment. If a `.env` file exists in
the working directory, the node reads it too. Variables already set in the
environment take precedence over the file.

The server listens on all interfaces, on port `NODE_PORT`. `NODE_ADDRESS` is
the address the node reports to others.

| Variable | Default |
| --- | --- |
| `NODE_PORT` | `8080` |
| `NODE_ADDRESS` | `localhost` |
| `GIN_MODE` | `debug` (`test` puts Flask in testing mode) |
| `NODE_ID` | `secop-government-central-bogota` |
| `ENTITY_TYPE` | `GOVERNMENT` |
| `ENTITY_NAME`, `ENTITY_CODE`, `ENTITY_REGION`, `ENTITY_LEVEL` | empty |
| `ENTITY_CONTACT_EMAIL` | empty, e.g. `contracts@example.com` |
| `ENTITY_BUDGET_AUTHORITY` | `false` |
| `ENTITY_MAX_CONTRACT_VALUE` | `0` |
| `PEER_DISCOVERY_REGISTRY_URL` | empty |
| `BOOTSTRAP_PEERS` | empty; format `nodeId1:address1,nodeId2:address2` |
| `GENESIS_BLOCK` | `false` |

Timestamps are in Colombian time (`America/Bogota`). If timezone data is not
available, the node uses a fixed UTC-5 offset instead.

## HTTP API

All routes are under `/api`. Every response allows cross-origin requests.

### Contracts

- `GET /contracts` lists all contracts.
- `POST /contracts` creates a contract. The body needs `entity_code`,
  `entity_name`, `description` and `created_by`, and an `amount` greater than
  zero. The new block is then broadcast to the active peers.
- `POST /contracts/validate` records a node's verdict. The body holds
  `contractId`, `nodeId`, `approved` and `reason`. If `approved` is false, the
  contract is marked `REJECTED`.
- `GET /contracts/by-status/<status>` lists the contracts in the given status.
- `GET /contracts/by-role/<role>` lists the contracts whose pending step
  belongs to the given role.

The two filtered lists return `null` when nothing matches.

### Workflow

- `GET /workflow/steps` lists the approval steps.
- `GET /contracts/<id>/workflow` returns the contract's progress as a
  percentage, together with its validation steps and its audit trail.
- `POST /contracts/<id>/validate-step` approves or rejects the current step.
  The body holds `step_number`, `validator_id`, `validator_name`, `role`,
  `approved` and `comments`.
- `POST /contracts/<id>/audit` adds an audit observation. The body holds
  `auditor_id`, `role` and `observation`.

### Peers and chain

- `GET /p2p/peers` lists the known peers.
- `POST /p2p/add-peer` adds a peer. The body holds `id`, `address` and `port`.
- `GET /p2p/get-chain` returns the full chain and its height.
- `POST /p2p/receive-block` checks a block sent by a peer. The block must have
  a correct hash and must follow this node's last block. If the block is new,
  its data is appended as a new block.
- `POST /p2p/sync` goes over the peers seen in the last five minutes. It fails
  if no peers are known.

### Monitoring

- `GET /health` reports the health of the chain and of the network.
- `GET /stats` reports node and entity statistics.
- `GET /blocks` lists all blocks.

## Using it as a library

```python
from secopchain.block import Contract
from secopchain.chain import Blockchain

ledger = Blockchain()
contract = Contract(
    entity_code="DNP",
    entity_name="Planning Office",
    description="Road maintenance",
    amount=1_000_000.0,
    created_by="developer-1",
)
ledger.add_contract(contract)
ledger.validate_contract_step(
    contract.id, 1, "developer-1", "Developer", "PROJECT_DEVELOPER", True, "ok"
)
print(ledger.get_contract_workflow_status(contract.id).to_dict())
print(ledger.is_chain_valid())
```

Operations that are refused raise `secopchain.block.BlockchainError`. A
contract id that does not exist raises `ContractNotFoundError`, which is a
subclass of `BlockchainError`.

To assemble a node yourself:

1. Call `secopchain.config.load_config()`.
2. Pass the result to `secopchain.service.create_services()`.
3. Pass both results to `secopchain.app.create_app()` to get a Flask
   application.

`secopchain.p2p.P2PNetwork` handles peers in code:

- `start()` registers the node with the discovery registry and begins
  background polling.
- `sync_with_peers()` fetches the chains of active peers and adopts a longer
  chain if it is valid.
- `health_check()` probes each peer's `/api/health` endpoint.

## What it does not do

- The chain and the contracts are kept in memory only. They are lost when the
  node stops.
- Blocks are not mined. The nonce is always zero and the difficulty setting is
  not used.
- `secopchain-server` does not start peer discovery or any periodic tasks. The
  bootstrap peers are counted but never contacted.
- The `/p2p/sync` endpoint does not download chains from peers. Only
  `P2PNetwork.sync_with_peers()` does that.
- The API has no authentication. Any caller may act under any role.