from __future__ import annotations

import argparse
import logging
import sys
from functools import partial
from typing import Any, Never, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich_argparse import RawTextRichHelpFormatter
from pdwrap import LogSinkError, SpawnError, load_config, run_command
from pdwrap.config import DEFAULT_CONFIG_PATHS
from pdwrap.runner import INTERNAL_ERROR_EXIT_CODE, WrapOutcome

_ERR_CONSOLE = Console(stderr=True, no_color=False)


class _CLIHelpFormatter(RawTextRichHelpFormatter):
    """Rich formatter with explicit high-contrast CLI styles.

    Example:
        ```python
        parser = argparse.ArgumentParser(formatter_class=_CLIHelpFormatter)
        ```
    """

    styles = {
        "argparse.args": "bold cyan",
        "argparse.groups": "bold magenta",
        "argparse.help": "white",
        "argparse.metavar": "bold yellow",
        "argparse.prog": "bold bright_blue",
        "argparse.syntax": "bold bright_white",
        "argparse.text": "bright_white",
    }


_HELP_FORMATTER = partial(
    _CLIHelpFormatter,
    max_help_position=34,
    width=120,
)


class _RichArgumentParser(argparse.ArgumentParser):
    """ArgumentParser that renders errors via Rich.

    Example:
        ```python
        parser = _RichArgumentParser(prog="pdw")
        ```
    """

    def error(self, message: str) -> Never:
        """Render parse errors with Rich and exit.

        Example:
            ```python
            # parser.error("invalid usage")
            ```
        """
        _ERR_CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {escape(message)}", border_style="red"))
        self.print_usage(file=sys.stderr)
        raise SystemExit(2)

    def print_help(self, file: Any | None = None) -> None:
        """Render help text to the target stream.

        Example:
            ```python
            parser.print_help()
            ```
        """
        super().print_help(file=file)


def build_parser() -> argparse.ArgumentParser:
    """Build CLI parser for pdw.

    Example:
        ```python
        parser = build_parser()
        ```
    """
    search_paths = "\n".join(f"  * {path}" for path in DEFAULT_CONFIG_PATHS)
    parser = _RichArgumentParser(
        prog="pdw",
        description=(
            "pdw: run a command and page on failure\n"
            "Captures stdin/stdout/stderr with timestamps, enforces an optional timeout,\n"
            "and raises a PagerDuty alert carrying the transcript when the command times out\n"
            "or exits outside the accepted exit-code window."
        ),
        epilog=(
            "Quick Examples:\n"
            "  pdw -k KEY -- /usr/local/bin/nightly-backup\n"
            "  pdw -k KEY -t 3600 -l /var/log/backup.log -- rsync -a /src /dst\n"
            "  pdw -k KEY -M 1 --stderr -- grep -q pattern file.txt\n\n"
            "Options are also read from these TOML files (in order) before --config\n"
            "and command-line options are applied:\n"
            f"{search_paths}"
        ),
        formatter_class=_HELP_FORMATTER,
    )
    parser.add_argument(
        "-u",
        "--api-url",
        "--apiurl",
        help="PagerDuty events API URL (default: generic events v1 endpoint).",
    )
    parser.add_argument(
        "-k",
        "--api-key",
        "--apikey",
        help="PagerDuty service API key.",
    )
    parser.add_argument(
        "-l",
        "--log",
        metavar="FILE",
        help="Append the timestamped transcript of the command to FILE.",
    )
    parser.add_argument(
        "--stdout",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Pass the command's stdout through to this terminal (default: off).",
    )
    parser.add_argument(
        "--stderr",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Pass the command's stderr through to this terminal (default: off).",
    )
    parser.add_argument(
        "-t",
        "--timeout",
        type=int,
        metavar="SECONDS",
        help="Max allowed run time for the command; 0 means none (default: 0).",
    )
    parser.add_argument(
        "-m",
        "--exit-min",
        "--exitmin",
        type=int,
        metavar="INT",
        help="Minimum value for a good exit code (default: 0).",
    )
    parser.add_argument(
        "-M",
        "--exit-max",
        "--exitmax",
        type=int,
        metavar="INT",
        help="Maximum value for a good exit code (default: 0).",
    )
    parser.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        help="Extra TOML config file applied after the default search paths.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging on stderr.",
    )
    parser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        metavar="COMMAND",
        help="Command to run, followed by its arguments.",
    )
    return parser


def _configure_logging(verbose: bool) -> None:
    """Route diagnostic logging through Rich on stderr.

    Example:
        ```python
        _configure_logging(verbose=True)
        ```
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=_ERR_CONSOLE, show_path=False)],
    )


def _report_alert(outcome: WrapOutcome) -> None:
    """Print the alert delivery notice for a failed run.

    Example:
        ```python
        _report_alert(outcome)
        ```
    """
    if outcome.dispatch is None:
        return
    if outcome.dispatch.ok:
        _ERR_CONSOLE.print(
            f"[bold yellow]Notice:[/bold yellow] PagerDuty alert sent: {escape(outcome.verdict.description)}",
            highlight=False,
        )
    else:
        _ERR_CONSOLE.print(
            f"[bold red]Notice:[/bold red] PagerDuty failure: {escape(outcome.dispatch.error or 'unknown error')}",
            highlight=False,
        )


def main(argv: Sequence[str] | None = None) -> int:
    """Run the `pdw` CLI command handler.

    Example:
        ```python
        code = main(["-k", "abc123", "--", "echo", "hello"])
        ```
    """
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    _configure_logging(args.verbose)

    command = list(args.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        parser.error("a command to run is required")

    try:
        config = load_config(
            config_file=args.config,
            overrides={
                "api_url": args.api_url,
                "api_key": args.api_key,
                "log_path": args.log,
                "echo_stdout": args.stdout,
                "echo_stderr": args.stderr,
                "timeout_seconds": args.timeout,
                "exit_min": args.exit_min,
                "exit_max": args.exit_max,
            },
        )
        config.require_api_key()
    except ValueError as exc:
        parser.error(str(exc))

    try:
        outcome = run_command(
            command,
            config,
            stdin=getattr(sys.stdin, "buffer", None),
            stdout=sys.stdout.buffer,
            stderr=sys.stderr.buffer,
        )
    except (LogSinkError, SpawnError) as exc:
        _ERR_CONSOLE.print(Panel.fit(f"[bold red]Error:[/bold red] {escape(str(exc))}", border_style="red"))
        return INTERNAL_ERROR_EXIT_CODE

    _report_alert(outcome)
    return outcome.exit_code
