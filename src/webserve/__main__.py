"""
=============================================================================
WEBSERVE CLI ENTRY POINT
=============================================================================

    # Serve the current directory on 127.0.0.1:8000
    python -m webserve

    # Another directory, port and log file
    python -m webserve -d ./public -p 3000 --log /var/log/webserve/access.log

    # Only local and 10.x clients, no access log
    python -m webserve --allow 127.0.0.1,10.* --no-log

    # HTTPS from a key + certificate, or from a PKCS#12 bundle
    python -m webserve --key server.key.pem --cert server.cert.pem
    python -m webserve --key server.pfx --passphrase secret

Flags are applied through ConfigBuilder on top of the environment
(WEBSERVE_* variables), so every bad value is reported at once and the
process exits with status 2.

=============================================================================
"""

import argparse
import sys
from typing import List, Optional

from . import __version__
from .config import LOG_FORMATS, ConfigBuilder, ConfigError, ServerConfig
from .server import WebServer


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="webserve",
        description="Static-file HTTP(S) server with structured access logging",
    )

    # ─────────────────────────────────────────────────────────────────────
    # CONTENT
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--dir", "-d", help="Directory to serve (default: current directory)")
    parser.add_argument(
        "--data-file",
        help="Base filename for structured-output side files (e.g. data/out)",
    )

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--host", "-H", help="Host to bind to (default: 127.0.0.1)")
    parser.add_argument("--port", "-p", help="Port to listen on (default: 8000)")
    parser.add_argument(
        "--allow",
        help="Comma-separated IP patterns allowed to connect, e.g. 127.0.0.1,10.*",
    )
    parser.add_argument("--workers", "-w", help="Worker threads (max is twice this)")

    # ─────────────────────────────────────────────────────────────────────
    # TLS
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--key", help="Private key (.pem, base64) or PKCS#12 bundle (.pfx/.p12)")
    parser.add_argument("--cert", help="Certificate (.pem or base64); omit when --key is a bundle")
    parser.add_argument("--passphrase", help="Password of the private key or bundle")

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    parser.add_argument("--log", help="Access log file (default: logs/server.log)")
    parser.add_argument("--no-log", action="store_true", help="Disable the access log")
    parser.add_argument(
        "--log-format",
        choices=LOG_FORMATS,
        help="Access log layout (default: common + referer, user agent, time taken)",
    )
    parser.add_argument(
        "--log-fields",
        help="Comma-separated W3C field names, used with --log-format w3c",
    )
    parser.add_argument(
        "--log-level",
        "-l",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Diagnostic logging level (default: INFO)",
    )

    parser.add_argument("--version", "-v", action="version", version=f"webserve {__version__}")
    return parser


def config_from_args(args: argparse.Namespace, base: Optional[ServerConfig] = None) -> ServerConfig:
    """Apply parsed flags on top of base. Raises ConfigError."""
    builder = ConfigBuilder(base)

    if args.dir is not None:
        builder.directory(args.dir)
    if args.data_file is not None:
        builder.data_file(args.data_file)
    if args.host is not None:
        builder.host(args.host)
    if args.port is not None:
        builder.port(args.port)
    if args.allow is not None:
        builder.allow(args.allow)
    if args.workers is not None:
        builder.workers(args.workers)
    if args.key is not None:
        builder.tls(args.key, args.cert, args.passphrase)
    elif args.cert is not None:
        builder.errors.append("--cert needs --key")
    if args.log is not None:
        builder.log_file(args.log)
    if args.no_log:
        builder.logging(False)
    if args.log_format is not None:
        fields = [f.strip() for f in (args.log_fields or "").split(",") if f.strip()]
        builder.log_format(args.log_format, fields)
    if args.log_level is not None:
        builder.log_level(args.log_level)

    return builder.build()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        config = config_from_args(args, ServerConfig.from_env())
    except ConfigError as e:
        for message in e.errors:
            print(f"Error: {message}", file=sys.stderr)
        return 2

    server = WebServer(config)
    server.router.add("/favicon.ico", server.router.ignored)

    scheme = "https" if config.tls else "http"
    print(f"Serving {config.root_dir} on {scheme}://{config.host}:{config.port}")
    if config.log_enabled:
        print(f"Logging to {config.log_file or 'console'}")

    try:
        server.run()
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
