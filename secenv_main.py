"""Entry point: supervise a command and restart it when its credential rotates."""
from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
from types import FrameType
from typing import Optional

from secenv.config import load_settings
from secenv.credentials import available_variants
from secenv.errors import TypeMismatchError
from secenv.supervisor import RotationSupervisor

logger = logging.getLogger("secenv")

_LOG_FORMAT = "%(asctime)s.%(msecs)03d %(funcName)s ▶ %(levelname).4s %(message)s"
_LOG_DATEFMT = "%H:%M:%S"
_TERMINATION_SIGNALS = ("SIGINT", "SIGTERM", "SIGHUP")
_USAGE_EXIT_CODE = 2


def build_parser() -> argparse.ArgumentParser:
    prog = os.path.basename(sys.argv[0]) or "secenv"
    parser = argparse.ArgumentParser(
        prog=prog,
        usage=f"{prog} [options] KEY_NAME COMMAND...",
        description="Run COMMAND with KEY_NAME's credential in its environment and restart it when the credential rotates.",
        epilog="KEY_NAME - the name of the key entry to monitor; COMMAND - command to execute.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", default=None, help="Verbose output.")
    parser.add_argument("-t", "--type", dest="variant", help=f"Exported key type ({', '.join(available_variants())}).")
    parser.add_argument("-f", "--file", dest="document_path", help="Global security config file (default sec-config.json).")
    parser.add_argument("-i", "--interval", dest="interval_seconds", type=float, help="Config file refresh interval in seconds (default 15).")
    parser.add_argument("--settings", help="YAML file with supervisor settings.")
    parser.add_argument("name", nargs="?", metavar="KEY_NAME", help="Name of the key entry to monitor.")
    parser.add_argument("command", nargs=argparse.REMAINDER, metavar="COMMAND", help="Command to supervise.")
    return parser


def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.ERROR,
        format=_LOG_FORMAT,
        datefmt=_LOG_DATEFMT,
        handlers=[logging.StreamHandler(sys.stderr)],
        force=True,
    )


def _handle_signal(signum: int, frame: Optional[FrameType]) -> None:
    logger.error("Signal received: %s", signal.Signals(signum).name)
    logging.shutdown()
    # the child is not stopped; it is left to the signal's own propagation
    os._exit(128 + signum)


def install_signal_handlers() -> None:
    for name in _TERMINATION_SIGNALS:
        signum = getattr(signal, name, None)
        if signum is not None:
            signal.signal(signum, _handle_signal)


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not args.name or not command:
        parser.print_help(sys.stderr)
        return _USAGE_EXIT_CODE

    try:
        settings = load_settings(
            args.settings,
            {
                "variant": args.variant,
                "document_path": args.document_path,
                "interval_seconds": args.interval_seconds,
                "verbose": args.verbose,
            },
        )
    except (OSError, ValueError) as exc:
        parser.print_usage(sys.stderr)
        print(f"{parser.prog}: error: {exc}", file=sys.stderr)
        return _USAGE_EXIT_CODE

    configure_logging(settings.verbose)
    install_signal_handlers()

    supervisor = RotationSupervisor(args.name, command, settings)
    try:
        supervisor.run()
    except TypeMismatchError as exc:
        logger.critical("key %s: [%s] %s", args.name, exc.kind, exc)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
