# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Command line interface.

Usage:
    r2sign presign applications/app-1/cv.pdf --content-type application/pdf
    r2sign presign reports/a.jpg --method GET --expires 300
    r2sign sign-link "daily-reports/a-b-com/2024-01-01/check-in/x.jpg"
    r2sign verify-link "https://files.example.com/files/x.jpg?signature=..."
    r2sign inspect "https://acct.r2.example.com/bucket/x.jpg?X-Amz-..."
    r2sign serve --port 8787

Exit codes: 0 success, 1 configuration error, 2 invalid input,
3 signature rejected.
"""

import argparse
import logging
import signal
import sys
import urllib.parse
from datetime import UTC, datetime
from pathlib import Path

from r2sign.config import Config
from r2sign.errors import AuthorizationError, ConfigError, InvalidInputError
from r2sign.fileserver import FileServer
from r2sign.logging import configure_logging
from r2sign.sigv4 import (
    check_clock_skew,
    parse_presigned_url_params,
    presigned_url_expiry,
)


logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_INVALID_INPUT = 2
EXIT_REJECTED = 3


def _load_config(args: argparse.Namespace) -> Config:
    if args.env:
        return Config.from_env()
    return Config.from_yaml(config_path=args.config)


def _cmd_presign(args: argparse.Namespace) -> int:
    config = _load_config(args)
    storage = config.storage
    method = args.method
    if args.expires is not None:
        expires_in = args.expires
    else:
        expires_in = storage.get_ttl if method == "GET" else storage.put_ttl
    url = storage.presigner().presign(
        method,
        args.bucket or storage.bucket,
        args.key,
        expires_in=expires_in,
        content_type=args.content_type,
        content_md5=args.content_md5,
    )
    print(url)
    return EXIT_OK


def _cmd_sign_link(args: argparse.Namespace) -> int:
    config = _load_config(args)
    print(config.links.signer().file_url(args.key))
    return EXIT_OK


def _cmd_verify_link(args: argparse.Namespace) -> int:
    config = _load_config(args)
    if config.links.signer().verify_url(args.url):
        print("valid")
        return EXIT_OK
    print("invalid")
    return EXIT_REJECTED


def _cmd_inspect(args: argparse.Namespace) -> int:
    params = parse_presigned_url_params(urllib.parse.urlsplit(args.url).query)
    if params is None:
        raise InvalidInputError("Not a presigned URL")
    for name in sorted(params):
        if name == "X-Amz-Signature":
            continue
        print(f"{name}: {params[name]}")
    expiry = presigned_url_expiry(args.url)
    remaining = int((expiry - datetime.now(UTC)).total_seconds())
    state = f"{remaining}s left" if remaining > 0 else "expired"
    print(f"Expires: {expiry.isoformat()} ({state})")
    is_skewed, drift = check_clock_skew(params.get("X-Amz-Date", ""))
    if is_skewed:
        print(f"Warning: signing time is {drift} minutes from local clock")
    return EXIT_OK


def _cmd_serve(args: argparse.Namespace) -> int:
    config = _load_config(args)
    server = FileServer.from_config(config)
    if args.host is not None:
        server.host = args.host
    if args.port is not None:
        server.port = args.port

    def shutdown_handler(signum: int, frame: object) -> None:
        logger.info("Received signal %d, shutting down...", signum)
        server.stop()

    signal.signal(signal.SIGINT, shutdown_handler)
    signal.signal(signal.SIGTERM, shutdown_handler)

    server.start()
    server.wait()
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser."""
    parser = argparse.ArgumentParser(
        prog="r2sign",
        description="Presigned object-store URLs and signed file links",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help=(
            "Path to r2sign.yaml config file"
            " (default: ~/.config/r2sign/r2sign.yaml)"
        ),
    )
    source.add_argument(
        "--env",
        action="store_true",
        help="Read configuration from R2_* / WORKER_* environment variables",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    presign = commands.add_parser("presign", help="Print a presigned URL")
    presign.add_argument("key", help="Object key")
    presign.add_argument(
        "--method",
        default="PUT",
        type=str.upper,
        choices=["PUT", "GET", "HEAD", "DELETE"],
        help="HTTP method (default: PUT)",
    )
    presign.add_argument("--bucket", help="Override the configured bucket")
    presign.add_argument("--content-type", help="Content-Type to sign")
    presign.add_argument("--content-md5", help="Content-MD5 to sign")
    presign.add_argument(
        "--expires",
        type=int,
        default=None,
        metavar="SECONDS",
        help="Validity in seconds (default: configured TTL)",
    )
    presign.set_defaults(func=_cmd_presign)

    sign_link = commands.add_parser(
        "sign-link", help="Print a signed file link"
    )
    sign_link.add_argument("key", help="Raw object key")
    sign_link.set_defaults(func=_cmd_sign_link)

    verify_link = commands.add_parser(
        "verify-link", help="Check a signed file link"
    )
    verify_link.add_argument("url", help="File link to check")
    verify_link.set_defaults(func=_cmd_verify_link)

    inspect = commands.add_parser(
        "inspect", help="Show the signed parameters of a presigned URL"
    )
    inspect.add_argument("url", help="Presigned URL")
    inspect.set_defaults(func=_cmd_inspect)

    serve = commands.add_parser("serve", help="Run the file server")
    serve.add_argument("--host", default=None, help="Bind address")
    serve.add_argument("--port", type=int, default=None, help="Bind port")
    serve.set_defaults(func=_cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Args:
        argv: Command-line arguments. If None, uses sys.argv[1:].

    Returns:
        Exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(
        level=logging.DEBUG if args.debug else logging.WARNING,
        add_secret_filter=True,
    )

    try:
        return args.func(args)
    except ConfigError as e:
        logger.critical("Configuration error: %s", e)
        return EXIT_CONFIG
    except InvalidInputError as e:
        logger.error("Invalid input: %s", e)
        return EXIT_INVALID_INPUT
    except AuthorizationError:
        logger.error("Signature rejected")
        return EXIT_REJECTED


if __name__ == "__main__":
    sys.exit(main())
