#!/usr/bin/env python3
"""sync-bot command line: run the webhook server or inspect the setup."""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

# Fail fast on unsupported interpreter version
if sys.version_info < (3, 10):
    print(f"sync-bot requires Python 3.10+; found {sys.version.split()[0]}", file=sys.stderr)
    sys.exit(1)


def main(argv: list[str] | None = None) -> None:
    ap = argparse.ArgumentParser(
        prog="sync-bot",
        description="Propagate merged pull requests to other branches on command",
    )
    ap.add_argument("--config", help="Config file (default: .sync-bot/config.toml or $SYNCBOT_CONFIG)")

    sub = ap.add_subparsers(dest="cmd")

    p_serve = sub.add_parser("serve", help="Run the webhook server")
    p_serve.add_argument("--host", help="Interface to bind (default from config)")
    p_serve.add_argument("--port", type=int, help="Port to listen on (default from config)")
    p_serve.add_argument("--log-level", help="Override the configured log level")

    sub.add_parser("show-config", help="Print the resolved configuration as JSON")

    p_parse = sub.add_parser("parse", help="Parse a /sync comment and print the request")
    p_parse.add_argument("comment", help='Comment text, e.g. "/sync --strategy pick release-1.0"')

    args = ap.parse_args(argv)

    if not args.cmd:
        ap.print_help()
        sys.exit(0)

    if args.cmd == "parse":
        from sync_bot.commands import CommandParseError, CommandParser
        from sync_bot.config_loader import ConfigError, load_config

        try:
            cfg = load_config(config_path=Path(args.config) if args.config else None)
        except ConfigError as e:
            print(f"Invalid configuration: {e}", file=sys.stderr)
            sys.exit(2)
        parser = CommandParser(cfg.sync.default_strategy)
        if not parser.match_sync(args.comment):
            print("Not a /sync command", file=sys.stderr)
            sys.exit(1)
        try:
            request = parser.parse(args.comment)
        except CommandParseError as e:
            print(f"Parse failed: {e}", file=sys.stderr)
            sys.exit(1)
        print(json.dumps({"strategy": request.strategy.value, "branches": list(request.branches)}))
        sys.exit(0)

    from sync_bot.config_loader import ConfigError, load_config, set_config

    try:
        cfg = load_config(config_path=Path(args.config) if args.config else None)
    except ConfigError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)

    if args.cmd == "show-config":
        print(cfg.model_dump_json(indent=2))
        sys.exit(0)

    if args.cmd == "serve":
        import uvicorn

        from .observability import configure_logging, log_info

        set_config(cfg)
        configure_logging(
            level=args.log_level or cfg.logging.level,
            log_dir=cfg.logging.dir or None,
            max_bytes=cfg.logging.max_bytes,
            backup_count=cfg.logging.backup_count,
            disable_file=cfg.logging.disable_file,
        )
        host = args.host or cfg.server.host
        port = args.port or cfg.server.port
        log_info("Starting sync-bot webhook server", host=host, port=port)

        from .http_facade import app

        uvicorn.run(app, host=host, port=port)
        sys.exit(0)


if __name__ == "__main__":
    main()
