from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace

from .config import RelayRuntimeConfig, load_config_file, validate_config
from .constants import SLOW_CLIENT_POLICIES
from .logging_config import configure_logging
from .service import RelayServer


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="chatrelayd", description="Run a chat relay server")

    p.add_argument(
        "port",
        nargs="?",
        type=int,
        default=None,
        help="TCP port to listen on (default: 10100)",
    )
    p.add_argument("--host", default=None, help="Address to bind (default: 0.0.0.0)")
    p.add_argument("--config", default=None, help="Optional TOML config file")

    p.add_argument(
        "--queue-size",
        type=int,
        default=None,
        help="Per-client outbound queue length (0 writes synchronously)",
    )
    p.add_argument(
        "--slow-client-policy",
        choices=SLOW_CLIENT_POLICIES,
        default=None,
        help="What to do when a client's outbound queue is full",
    )

    p.add_argument(
        "--log-level",
        default=None,
        help="Logging level override (DEBUG, INFO, WARNING, ERROR). Default comes from config.",
    )
    p.add_argument(
        "--log-file",
        default=None,
        help="Log file path override (empty disables file logging). Default comes from config.",
    )

    return p


def build_config(args: argparse.Namespace) -> RelayRuntimeConfig:
    cfg = RelayRuntimeConfig()

    if args.config:
        cfg = load_config_file(cfg, str(args.config))

    if args.port is not None:
        cfg = replace(cfg, port=int(args.port))
    if args.host is not None:
        cfg = replace(cfg, host=str(args.host))
    if args.queue_size is not None:
        cfg = replace(cfg, outbound_queue_size=int(args.queue_size))
    if args.slow_client_policy is not None:
        cfg = replace(cfg, slow_client_policy=str(args.slow_client_policy))

    if args.log_level is not None:
        cfg = replace(cfg, log_level=str(args.log_level))
    if args.log_file is not None:
        cfg = replace(cfg, log_file=str(args.log_file) if str(args.log_file) else None)

    validate_config(cfg)
    return cfg


def main(argv: list[str] | None = None) -> None:
    parser = _build_arg_parser()
    args = parser.parse_args(sys.argv[1:] if argv is None else argv)

    try:
        cfg = build_config(args)
    except (OSError, ValueError) as e:
        parser.error(str(e))

    configure_logging(cfg, override_level=args.log_level, override_file=args.log_file)
    log = logging.getLogger("chatrelayd")

    svc = RelayServer(cfg)
    try:
        svc.start()
    except OSError as e:
        log.error("Could not start server on port %s: %s", cfg.port, e)
        raise SystemExit(1)

    svc.run_forever()


if __name__ == "__main__":
    main()
