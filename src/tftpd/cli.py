from __future__ import annotations

import argparse
import logging

from .config import ServerConfig
from .constants import (
    DEFAULT_DALLY_FACTOR,
    DEFAULT_FINAL_MAX_RETRIES,
    DEFAULT_MAX_RETRIES,
    DEFAULT_SERVER_PORT,
    DEFAULT_TIMEOUT_MS,
)
from .server import TftpServer
from .storage import DirectoryStorage


def cmd_serve(args: argparse.Namespace) -> int:
    config = ServerConfig(
        host=args.host,
        port=args.port,
        root=args.root,
        timeout_ms=args.timeout_ms,
        max_retries=args.max_retries,
        final_max_retries=args.final_max_retries,
        dally_factor=args.dally_factor,
        loss_rate=args.loss_rate,
        delay_ms=args.delay_ms,
    )
    server = TftpServer(config, DirectoryStorage(config.root))
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        logging.info("interrupted; shutting down")
    finally:
        server.shutdown()
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="tftpd", description="TFTP server (RFC 1350, octet mode only).")
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="cmd", required=True)

    serve = sub.add_parser("serve", help="serve files from a directory")
    serve.add_argument("--host", default="0.0.0.0")
    serve.add_argument("--port", type=int, default=DEFAULT_SERVER_PORT)
    serve.add_argument("--root", default=".", help="directory files are read from and written to")
    serve.add_argument("--timeout-ms", type=int, default=DEFAULT_TIMEOUT_MS)
    serve.add_argument("--max-retries", type=int, default=DEFAULT_MAX_RETRIES)
    serve.add_argument("--final-max-retries", type=int, default=DEFAULT_FINAL_MAX_RETRIES)
    serve.add_argument(
        "--dally-factor", type=int, default=DEFAULT_DALLY_FACTOR, help="dally window in timeouts"
    )
    serve.add_argument("--loss-rate", type=float, default=0.0, help="simulate outbound packet loss")
    serve.add_argument("--delay-ms", type=int, default=0, help="simulate outbound send delay")
    serve.set_defaults(func=cmd_serve)

    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(message)s",
    )
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
