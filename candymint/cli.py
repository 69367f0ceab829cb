"""
candymint: create and mint from a Metaplex candy machine, one stage per run.

Usage:
  candymint collection [--skip-metadata-check]
  candymint machine [--collection <addr>]
  candymint guards  [--machine <addr>]
  candymint items   [--machine <addr>]
  candymint mint    [--machine <addr>]
  candymint status  [--machine <addr>]

  Common options: --rpc-url, --cluster, --keypair, --state-file,
  --mock [--ledger-file].

Addresses not given on the command line are read from the state file,
which every successful stage updates. exit 0 on success, 1 on failure.
"""

import argparse
import asyncio
import sys

from .config import CLUSTER, KEYPAIR_PATH, LEDGER_FILE, RPC_URL, STATE_FILE, WorkflowConfig
from .errors import WorkflowError
from .handoff import load_state, record_stage, require_address
from .ledger import Ledger
from .stages import STAGES
from .wallet import load_keypair

MACHINE_COMMANDS = ("guards", "items", "mint", "status")

HELP = {
    "collection": "Stage 1: mint the collection NFT",
    "machine": "Stage 2: create the candy machine",
    "guards": "Stage 3: set start date, SOL payment and mint limit guards",
    "items": "Stage 4: load the items",
    "mint": "Stage 5: mint one NFT to the operator",
    "status": "Show the candy machine's inventory and guards",
}


def build_parser():
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--rpc-url", default=RPC_URL, help="JSON-RPC endpoint")
    common.add_argument("--cluster", default=CLUSTER, help="Cluster name for explorer links")
    common.add_argument("--keypair", default=KEYPAIR_PATH, help="Operator key file (JSON byte array)")
    common.add_argument("--state-file", default=STATE_FILE, help="Stage hand-off file")
    common.add_argument("--mock", action="store_true", help="Use the local ledger file instead of the cluster")
    common.add_argument("--ledger-file", default=LEDGER_FILE, help="Ledger file for --mock")

    parser = argparse.ArgumentParser(
        prog="candymint",
        description="Create and mint from a Metaplex candy machine, one stage at a time",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("collection", parents=[common], help=HELP["collection"])
    p.add_argument("--skip-metadata-check", action="store_true",
                   help="Don't fetch the metadata document before minting")

    p = sub.add_parser("machine", parents=[common], help=HELP["machine"])
    p.add_argument("--collection", help="Collection NFT address (default: from state file)")

    for name in MACHINE_COMMANDS:
        p = sub.add_parser(name, parents=[common], help=HELP[name])
        p.add_argument("--machine", help="Candy machine address (default: from state file)")

    return parser


def build_config(args, identity, state):
    config = WorkflowConfig(
        identity=identity,
        rpc_url=args.rpc_url,
        cluster=args.cluster,
        verify_metadata=not getattr(args, "skip_metadata_check", False),
    )
    if args.command == "machine":
        config = config.with_collection(
            require_address(args.collection, state, "collection_address", "machine")
        )
    elif args.command in MACHINE_COMMANDS:
        config = config.with_machine(
            require_address(args.machine, state, "machine_address", args.command)
        )
    return config


def open_service(args, config):
    if args.mock:
        return Ledger.load(args.ledger_file, config.operator)

    from .devnet import DevnetService
    return DevnetService.connect(config)


async def run(args):
    identity = load_keypair(args.keypair)
    state = load_state(args.state_file)
    config = build_config(args, identity, state)

    if args.mock:
        print(f"[WARN] Mock mode: using {args.ledger_file}, nothing is sent to {config.cluster}")
    print(f"=== {HELP[args.command]} ===")
    print(f"Operator: {config.operator}")

    service = open_service(args, config)
    try:
        result = await STAGES[args.command](config, service)
    finally:
        if args.mock:
            service.save(args.ledger_file)
        await service.close()

    if result.ok and args.command != "status":
        record_stage(args.state_file, args.command, result.value)
        print(f"\nSaved to {args.state_file}")
    return result


def main(argv=None):
    args = build_parser().parse_args(argv)
    try:
        result = asyncio.run(run(args))
    except WorkflowError as e:
        print(f"[ERROR] {e}")
        return 1
    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
