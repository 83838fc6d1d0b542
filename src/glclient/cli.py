"""Command line interface.

Usage:
    glcli --network regtest --seed-file hsm_secret node-id
    glcli --network regtest --seed-file hsm_secret schedule
    glcli --network regtest --seed-file hsm_secret register --out credentials.gfs
    glcli hsmd-path
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from glclient.config import get_settings
from glclient.credentials import Credentials
from glclient.errors import GreenlightError, InvalidSeed
from glclient.hsmd import backend_module_path
from glclient.retry import call_with_retries
from glclient.scheduler import Scheduler
from glclient.signer import Signer
from glclient.tls import TlsConfig

logger = logging.getLogger(__name__)


def read_seed(path: str) -> bytes:
    """Read a seed file holding either 32 raw bytes or 64 hex characters."""
    try:
        data = Path(path).expanduser().read_bytes()
    except OSError as e:
        raise InvalidSeed(f"Cannot read seed from {path}: {e}") from e

    if len(data) == 32:
        return data

    try:
        return bytes.fromhex(data.decode().strip())
    except (UnicodeDecodeError, ValueError):
        raise InvalidSeed(f"Seed file {path} is neither 32 raw bytes nor hex")


def build_parser() -> argparse.ArgumentParser:
    settings = get_settings()
    parser = argparse.ArgumentParser(prog="glcli", description="Node signer and scheduler client")
    parser.add_argument("--network", default=settings.network, help="Network name")
    parser.add_argument("--seed-file", default="hsm_secret", help="Path to the 32-byte seed")
    parser.add_argument("--credentials", help="Device credentials file to authenticate with")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("node-id", help="Print the node id derived from the seed")
    sub.add_parser("schedule", help="Start the node and print its location")
    sub.add_parser("hsmd-path", help="Print where the hsmd backend was loaded from")

    register = sub.add_parser("register", help="Register the node, store device credentials")
    register.add_argument("--invite-code", help="Invite code")
    register.add_argument("--out", default="credentials.gfs", help="Where to write credentials")

    recover = sub.add_parser("recover", help="Recover device credentials")
    recover.add_argument("--out", default="credentials.gfs", help="Where to write credentials")

    return parser


def _tls_for(args: argparse.Namespace) -> TlsConfig:
    if args.credentials:
        return Credentials.from_path(args.credentials).tls_config()
    return TlsConfig()


def run(args: argparse.Namespace) -> int:
    """Execute a parsed command."""
    if args.command == "hsmd-path":
        print(backend_module_path())
        return 0

    tls = _tls_for(args)
    signer = Signer(read_seed(args.seed_file), args.network, tls)

    if args.command == "node-id":
        print(signer.node_id().hex())
        return 0

    with Scheduler(signer.node_id(), args.network, tls) as scheduler:
        if args.command == "schedule":
            result = call_with_retries(scheduler.schedule)
            print(result.grpc_uri)
            return 0

        if args.command == "register":
            result = scheduler.register(signer, invite_code=args.invite_code)
        else:
            result = scheduler.recover(signer)

    Path(args.out).write_bytes(result.credentials.to_bytes())
    print(f"Credentials written to {args.out}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    log_level = logging.DEBUG if (args.verbose or get_settings().debug) else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        return run(args)
    except GreenlightError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1
    except ValueError as e:
        logger.error(f"{args.command}: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
