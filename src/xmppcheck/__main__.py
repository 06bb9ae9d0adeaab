"""Probe entrypoint. Parses flags, loads config, runs one check and exits with its status."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Any

from loguru import logger

from xmppcheck import __version__
from xmppcheck.config import Config, _deep_update, load_config_with_env
from xmppcheck.core.errors import ProbeConfigurationError
from xmppcheck.core.status import ProbeResult, Status, terminate
from xmppcheck.probe import run_probe

# Stdlib loggers to route through loguru
_INTERCEPTED_LIBRARIES = ["asyncio"]


def _intercept_logging(level: str) -> None:
    """Route stdlib logging (asyncio) to loguru."""

    class InterceptHandler(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            try:
                log_level: str | int = logger.level(record.levelname).name
            except ValueError:
                log_level = record.levelno
            msg = record.getMessage().replace("{", "{{").replace("}", "}}")
            logger.patch(
                lambda r: r.update(
                    name=record.name,
                    function=record.funcName,
                    line=record.lineno,
                ),
            ).opt(exception=record.exc_info).log(log_level, msg)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for lib in _INTERCEPTED_LIBRARIES:
        lib_logger = logging.getLogger(lib)
        lib_logger.handlers = [InterceptHandler()]
        lib_logger.propagate = False
        lib_logger.setLevel(level)


def _safe_message_filter(record: Any) -> bool:
    """Escape braces/angles in log messages to prevent format/tag errors."""
    if isinstance(record.get("message"), str):
        msg = record["message"]
        msg = msg.replace("{", "{{").replace("}", "}}").replace("<", "\\<")
        record["message"] = msg
    return True


def setup_logging(debug: bool = False) -> None:
    """Configure loguru on stderr.

    Silent unless ``debug`` is set or LOG_LEVEL names a level; stdout is
    reserved for the single status line.
    """
    level: str | None = "DEBUG" if debug else None
    if level is None:
        env_level = (os.environ.get("LOG_LEVEL") or "").upper()
        if env_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
            level = env_level

    logger.remove()
    if level is None:
        _intercept_logging("CRITICAL")
        return
    logger.add(
        sys.stderr,
        level=level,
        format=("<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan> | {message}"),
        filter=_safe_message_filter,
    )
    _intercept_logging(level)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xmppcheck",
        description="XMPP server check: log in, message yourself, expect the echo",
    )
    parser.add_argument("--userid", "-u", help="XMPP ID e.g. user@server.tld")
    parser.add_argument("--password", "-p", help="Password for userid (or XMPPCHECK_PASSWORD)")
    parser.add_argument("--timeout", "-t", type=float, help="Deadline in seconds (default: 5)")
    parser.add_argument("--warning", "-w", type=float, help="Report WARNING when the echo takes longer (seconds)")
    parser.add_argument("--host", help="Server host; skips the SRV lookup")
    parser.add_argument("--port", type=int, help="Server port (default: 5222)")
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Do not verify the server certificate",
    )
    parser.add_argument("--config", "-c", type=Path, help="Optional YAML config file")
    parser.add_argument("--debug", "-d", action="store_true", help="Enable debugging output")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def _cli_values(args: argparse.Namespace) -> dict[str, Any]:
    """Flags given on the command line, as config keys."""
    values: dict[str, Any] = {
        key: getattr(args, key)
        for key in ("userid", "password", "timeout", "warning", "host", "port")
        if getattr(args, key) is not None
    }
    if args.insecure:
        values["tls_verify"] = False
    if args.debug:
        values["debug"] = True
    return values


def load_settings(args: argparse.Namespace) -> Config:
    """Defaults < YAML file < environment < command line."""
    data = load_config_with_env(args.config)
    return Config(_deep_update(data, _cli_values(args)))


def main(argv: list[str] | None = None) -> None:
    """Main entrypoint."""
    args = build_parser().parse_args(argv)
    setup_logging(args.debug)

    try:
        config = load_settings(args)
    except ProbeConfigurationError as exc:
        terminate(ProbeResult(Status.CRITICAL, str(exc)))

    if config.debug and not args.debug:
        setup_logging(True)
    logger.debug("Config: {!r}", config)

    result = asyncio.run(run_probe(config))
    terminate(result)


if __name__ == "__main__":
    main()
