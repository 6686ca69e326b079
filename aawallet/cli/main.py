# MIT License
# Copyright (c) 2025 Hashborn

import argparse
import sys
import json
import requests
import os
from .keystore import KeyStore
from ..protocol.abi import encode_call
from ..protocol.crypto.addresses import to_checksum_address, is_valid_address
from ..protocol.crypto.keys import sign_message_hash
from ..protocol.config.params import CURRENT_NETWORK, DECIMALS, DENOM
from ..protocol.types.user_op import UserOperation

DEFAULT_NODE = "http://localhost:8000"

EXECUTE = "execute(address,uint256,bytes)"

def get_node_url(args):
    return args.node or os.environ.get("AAWALLET_NODE", DEFAULT_NODE)

def _parse_hex(value: str) -> bytes:
    raw = value[2:] if value.startswith("0x") else value
    try:
        return bytes.fromhex(raw)
    except ValueError:
        print(f"Error: invalid hex data '{value}'")
        sys.exit(1)

def _require_address(value: str) -> str:
    if not is_valid_address(value):
        print(f"Error: invalid address '{value}'")
        sys.exit(1)
    return value

def _get(url: str, path: str) -> dict:
    try:
        resp = requests.get(f"{url}{path}")
    except requests.RequestException as e:
        print(f"Connection error: {e}")
        sys.exit(1)
    if resp.status_code != 200:
        print(f"Error: {resp.text}")
        sys.exit(1)
    return resp.json()

def _load_op(path: str) -> UserOperation:
    with open(path, "r") as f:
        return UserOperation.model_validate_json(f.read())

def _write_op(op: UserOperation, path):
    data = op.model_dump_json(indent=2)
    if path:
        with open(path, "w") as f:
            f.write(data)
        print(f"UserOperation written to {path}")
    else:
        print(data)

# --- Keys Commands ---
def cmd_keys_add(args):
    ks = KeyStore()
    try:
        key = ks.create_key(args.name)
        print(f"Key '{args.name}' created.")
        print(f"Address: {key['address']}")
        print(f"Pubkey:  {key['public_key']}")
        print("Important: Private key saved unencrypted. Do not share!")
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

def cmd_keys_import(args):
    ks = KeyStore()
    try:
        key = ks.import_key(args.name, args.private_key)
        print(f"Key '{args.name}' imported.")
        print(f"Address: {key['address']}")
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

def cmd_keys_list(args):
    ks = KeyStore()
    keys = ks.list_keys()
    if not keys:
        print("No keys found.")
        return

    print(f"{'Name':<15} {'Address':<45}")
    print("-" * 60)
    for k in keys:
        print(f"{k['name']:<15} {k['address']:<45}")

def cmd_keys_show(args):
    ks = KeyStore()
    key = ks.get_key(args.name)
    if not key:
        print(f"Key '{args.name}' not found.")
        sys.exit(1)
    print(json.dumps({k: v for k, v in key.items() if k != 'private_key'}, indent=2))

# --- Query Commands ---
def cmd_query_balance(args):
    data = _get(get_node_url(args), f"/balance/{_require_address(args.address)}")
    balance = int(data['balance'])
    print(f"Balance: {balance / 10**DECIMALS} {DENOM}")
    print(f"Nonce: {data['nonce']}")

def cmd_query_account(args):
    data = _get(get_node_url(args), f"/account/{_require_address(args.address)}")
    print(json.dumps(data, indent=2))

# --- Encode Commands ---
def cmd_encode_execute(args):
    value = int(args.value * 10**DECIMALS)
    data = encode_call(EXECUTE, _require_address(args.dest), value, _parse_hex(args.data))
    print("0x" + data.hex())

# --- User Operation Commands ---
def cmd_op_build(args):
    sender = _require_address(args.sender)
    url = get_node_url(args)

    nonce = args.nonce
    if nonce is None:
        nonce = _get(url, f"/user_op/nonce/{sender}")["nonce"]

    call_data = encode_call(EXECUTE, _require_address(args.to), int(args.value * 10**DECIMALS), _parse_hex(args.data))
    op = UserOperation(
        sender=sender,
        nonce=nonce,
        call_data=call_data,
        call_gas_limit=args.call_gas or CURRENT_NETWORK.call_gas_limit,
        verification_gas_limit=args.verification_gas or CURRENT_NETWORK.verification_gas_limit,
        pre_verification_gas=CURRENT_NETWORK.pre_verification_gas,
        max_fee_per_gas=args.max_fee or CURRENT_NETWORK.max_fee_per_gas,
        max_priority_fee_per_gas=args.max_priority_fee or CURRENT_NETWORK.max_priority_fee_per_gas,
    )
    _write_op(op, args.out)

def cmd_op_sign(args):
    ks = KeyStore()
    key = ks.get_key(args.from_name)
    if not key:
        print(f"Key '{args.from_name}' not found.")
        sys.exit(1)

    op = _load_op(args.file)
    op_hash = op.hash(CURRENT_NETWORK.entry_point_address, CURRENT_NETWORK.chain_id)
    signed = op.with_signature(sign_message_hash(op_hash, bytes.fromhex(key['private_key'])))

    print(f"UserOpHash: 0x{op_hash.hex()}")
    print(f"Signer: {key['address']}")
    _write_op(signed, args.out or args.file)

def cmd_op_submit(args):
    url = get_node_url(args)
    op = _load_op(args.file)
    payload = {"ops": [json.loads(op.model_dump_json())]}
    if args.beneficiary:
        payload["beneficiary"] = _require_address(args.beneficiary)

    try:
        resp = requests.post(f"{url}/handle_ops", json=payload)
    except requests.RequestException as e:
        print(f"Connection error: {e}")
        sys.exit(1)
    if resp.status_code != 200:
        print(f"Error: {resp.text}")
        sys.exit(1)

    receipt = resp.json()
    print(f"Success! TxHash: {receipt['tx_hash']}")
    for log in receipt["logs"]:
        if log["event"] == "UserOperationEvent":
            ev = log["args"]
            outcome = "executed" if ev["success"] else "reverted"
            print(f"UserOp {ev['userOpHash']} from {to_checksum_address(ev['sender'])} {outcome}, "
                  f"cost {ev['actualGasCost'] / 10**DECIMALS} {DENOM}")
        elif log["event"] == "UserOperationRevertReason":
            print(f"  revert data: {log['args']['revertReason']}")

def main():
    parser = argparse.ArgumentParser(prog="aawallet", description="aawallet Client CLI")
    parser.add_argument("--node", help="Node URL (default: http://localhost:8000)")

    subparsers = parser.add_subparsers(dest="command", help="Sub-commands")

    # keys
    p_keys = subparsers.add_parser("keys", help="Manage owner keys")
    sp_keys = p_keys.add_subparsers(dest="subcommand")

    pk_add = sp_keys.add_parser("add", help="Create new key")
    pk_add.add_argument("name", help="Key name")

    pk_imp = sp_keys.add_parser("import", help="Import private key")
    pk_imp.add_argument("name", help="Key name")
    pk_imp.add_argument("--private-key", required=True, help="Hex private key")

    sp_keys.add_parser("list", help="List keys")

    pk_show = sp_keys.add_parser("show", help="Show key details")
    pk_show.add_argument("name", help="Key name")

    # query
    p_query = subparsers.add_parser("query", help="Query node state")
    sp_query = p_query.add_subparsers(dest="subcommand")

    pq_bal = sp_query.add_parser("balance", help="Get balance of an address")
    pq_bal.add_argument("address", help="Address (0x...)")

    pq_acc = sp_query.add_parser("account", help="Get smart account details")
    pq_acc.add_argument("address", help="Address (0x...)")

    # encode
    p_enc = subparsers.add_parser("encode", help="Encode call data")
    sp_enc = p_enc.add_subparsers(dest="subcommand")

    pe_exec = sp_enc.add_parser("execute", help="Encode an account execute() call")
    pe_exec.add_argument("dest", help="Destination address")
    pe_exec.add_argument("value", type=float, help=f"Value in {DENOM}")
    pe_exec.add_argument("data", nargs="?", default="0x", help="Call payload (hex)")

    # op
    p_op = subparsers.add_parser("op", help="Build, sign and submit user operations")
    sp_op = p_op.add_subparsers(dest="subcommand")

    po_build = sp_op.add_parser("build", help="Build a user operation calling execute()")
    po_build.add_argument("sender", help="Smart account address")
    po_build.add_argument("--to", required=True, help="Destination of execute()")
    po_build.add_argument("--value", type=float, default=0, help=f"Value in {DENOM}")
    po_build.add_argument("--data", default="0x", help="Call payload (hex)")
    po_build.add_argument("--nonce", type=int, help="Nonce (default: fetched from node)")
    po_build.add_argument("--call-gas", type=int, help="callGasLimit")
    po_build.add_argument("--verification-gas", type=int, help="verificationGasLimit")
    po_build.add_argument("--max-fee", type=int, help="maxFeePerGas")
    po_build.add_argument("--max-priority-fee", type=int, help="maxPriorityFeePerGas")
    po_build.add_argument("--out", help="Output file (default: stdout)")

    po_sign = sp_op.add_parser("sign", help="Sign a user operation with an owner key")
    po_sign.add_argument("file", help="UserOperation JSON file")
    po_sign.add_argument("--from", dest="from_name", required=True, help="Owner key name")
    po_sign.add_argument("--out", help="Output file (default: overwrite input)")

    po_submit = sp_op.add_parser("submit", help="Submit a signed user operation to the node")
    po_submit.add_argument("file", help="UserOperation JSON file")
    po_submit.add_argument("--beneficiary", help="Fee recipient (default: node bundler)")

    args = parser.parse_args()

    if args.command == "keys":
        if args.subcommand == "add": cmd_keys_add(args)
        elif args.subcommand == "import": cmd_keys_import(args)
        elif args.subcommand == "list": cmd_keys_list(args)
        elif args.subcommand == "show": cmd_keys_show(args)
        else: p_keys.print_help()

    elif args.command == "query":
        if args.subcommand == "balance": cmd_query_balance(args)
        elif args.subcommand == "account": cmd_query_account(args)
        else: p_query.print_help()

    elif args.command == "encode":
        if args.subcommand == "execute": cmd_encode_execute(args)
        else: p_enc.print_help()

    elif args.command == "op":
        if args.subcommand == "build": cmd_op_build(args)
        elif args.subcommand == "sign": cmd_op_sign(args)
        elif args.subcommand == "submit": cmd_op_submit(args)
        else: p_op.print_help()

    else:
        parser.print_help()

if __name__ == "__main__":
    main()
