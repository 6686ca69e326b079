import argparse
import os
import sys
import logging
import json
from ...protocol.crypto.keys import generate_private_key, address_from_private
from ...protocol.crypto.addresses import to_checksum_address
from ...protocol.config.params import CURRENT_NETWORK, DECIMALS, DENOM
from ...protocol.types.common import ProtocolError
from ..core.host import ExecutionHost
from ..core.state import WorldState
from ..storage.db import StorageDB
from ..contracts import EntryPoint, SimpleAccount
from ..rpc import api

logger = logging.getLogger(__name__)

def _open_host(data_dir: str) -> ExecutionHost:
    db = StorageDB(os.path.join(data_dir, "state.db"))
    return ExecutionHost(WorldState(db), CURRENT_NETWORK)

def _load_faucet_address(data_dir: str) -> str:
    faucet_path = os.path.join(data_dir, "faucet_key.hex")
    if not os.path.exists(faucet_path):
        print(f"No faucet key in {data_dir}. Run 'init' first.")
        sys.exit(1)
    with open(faucet_path, "r") as f:
        return address_from_private(bytes.fromhex(f.read().strip()))

def cmd_init(args):
    """Initialize node: faucet key, premine and the EntryPoint deployment."""
    data_dir = args.datadir
    os.makedirs(data_dir, exist_ok=True)

    faucet_path = os.path.join(data_dir, "faucet_key.hex")
    if not os.path.exists(faucet_path):
        if CURRENT_NETWORK.faucet_priv_key:
            priv = bytes.fromhex(CURRENT_NETWORK.faucet_priv_key)
            print("Using DETERMINISTIC Devnet Faucet Key.")
        else:
            priv = generate_private_key()

        with open(faucet_path, "w") as f:
            f.write(priv.hex())
        print(f"Generated FAUCET key (with premine).")
        print(f"Address: {to_checksum_address(address_from_private(priv))}")
    else:
        print(f"Faucet key already exists at {faucet_path}")

    faucet = _load_faucet_address(data_dir)
    host = _open_host(data_dir)
    entry_point = CURRENT_NETWORK.entry_point_address

    if host.state.get_account(entry_point).has_code:
        print(f"EntryPoint already deployed at {to_checksum_address(entry_point)}")
    else:
        host.state.add_balance(faucet, CURRENT_NETWORK.genesis_premine)
        host.state.persist()
        host.deploy(faucet, EntryPoint, address=entry_point)
        with open(os.path.join(data_dir, "genesis.json"), "w") as f:
            genesis_data = {
                "network": CURRENT_NETWORK.network_id,
                "chain_id": CURRENT_NETWORK.chain_id,
                "entry_point": entry_point,
                "alloc": {faucet: str(CURRENT_NETWORK.genesis_premine)},
            }
            f.write(json.dumps(genesis_data, indent=2))
        print(f"EntryPoint deployed at {to_checksum_address(entry_point)}")

    host.state.db.close()
    print(f"\nNode initialized in {data_dir}")

def cmd_create_account(args):
    """Deploy a SimpleAccount for an owner, optionally funded from the faucet."""
    faucet = _load_faucet_address(args.datadir)
    host = _open_host(args.datadir)
    try:
        account = host.deploy(faucet, SimpleAccount, CURRENT_NETWORK.entry_point_address, args.owner)
        if args.fund:
            host.transfer(faucet, account.address, int(args.fund * 10**DECIMALS))
    except ProtocolError as e:
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        host.state.db.close()

    print(f"SimpleAccount deployed at {to_checksum_address(account.address)}")
    print(f"Owner: {to_checksum_address(args.owner)}")
    if args.fund:
        print(f"Funded with {args.fund} {DENOM}")

def cmd_run(args):
    data_dir = args.datadir
    faucet = _load_faucet_address(data_dir)
    host = _open_host(data_dir)

    print(f"Starting aawallet node...")
    print(f"Network: {CURRENT_NETWORK.network_id} (chain id {CURRENT_NETWORK.chain_id})")
    print(f"Data DB: {os.path.join(data_dir, 'state.db')}")
    print(f"RPC: {args.host}:{args.port}")
    print(f"Bundler: {to_checksum_address(faucet)}")

    try:
        api.start_rpc_server(host, faucet, host=args.host, port=args.port)
    except KeyboardInterrupt:
        pass
    finally:
        host.state.db.close()

def main():
    parser = argparse.ArgumentParser(description="aawallet Node CLI")
    parser.add_argument("--datadir", default="./.aawallet-node", help="Data directory")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # Init command
    subparsers.add_parser("init", help="Initialize node state and deploy the EntryPoint")

    # Create account command
    acc_parser = subparsers.add_parser("create-account", help="Deploy a SimpleAccount")
    acc_parser.add_argument("owner", help="Owner address (0x...)")
    acc_parser.add_argument("--fund", type=float, default=0, help=f"Initial balance in {DENOM}")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run the node")
    run_parser.add_argument("--host", default="0.0.0.0", help="RPC Host")
    run_parser.add_argument("--port", type=int, default=8000, help="RPC Port")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s %(levelname)s: %(message)s',
        datefmt='%H:%M:%S'
    )

    if args.command == "init":
        cmd_init(args)
    elif args.command == "create-account":
        cmd_create_account(args)
    elif args.command == "run":
        cmd_run(args)

if __name__ == "__main__":
    main()
