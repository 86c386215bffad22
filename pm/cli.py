"""
cesto CLI - Kakoune plugin manager.

Pacman-style interface for managing Kakoune plugins declared in cesto.toml.

Usage:
    cesto -S                     Install, update and clean up plugins
    cesto -Sp                    Print what -S would do, change nothing
    cesto -Q [plugin...]         List configured plugins
"""

import argparse
import logging
import sys

from cesto.config import ConfigError, load_settings
from cesto.plugin.errors import CestoError
from cesto.plugin.loader import LoaderError
from cesto.plugin.state import StateError


class PMError(Exception):
    """Base exception for CLI errors."""

    pass


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser with pacman-style flags."""
    parser = argparse.ArgumentParser(
        prog="cesto",
        description="cesto - Pacman-style plugin manager for Kakoune",
        add_help=False,
    )

    # Operation flags (mutually exclusive)
    ops = parser.add_mutually_exclusive_group()
    ops.add_argument("-S", "--sync", action="store_true", help="Sync plugins")
    ops.add_argument("-Q", "--query", action="store_true", help="Query configured plugins")
    ops.add_argument("-h", "--help", action="store_true", help="Show help")

    # Sync sub-flags
    parser.add_argument(
        "-p", "--print", dest="plan", action="store_true", help="Print the plan (-Sp)"
    )

    # Common options
    parser.add_argument("-c", "--config", help="Plugin file (default: ~/.config/cesto.toml)")
    parser.add_argument("-j", "--jobs", type=int, help="Maximum concurrent plugin jobs")
    parser.add_argument(
        "--no-probe",
        action="store_true",
        help="Skip asking remotes for their head, update every installed plugin",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    # Positional arguments
    parser.add_argument("targets", nargs="*", help="Plugin names (-Q)")

    return parser


def print_help():
    """Print help message."""
    help_text = """
cesto - Kakoune plugin manager

Usage:
    cesto -S                     Install, update and clean up plugins
    cesto -Sp                    Print what -S would do, change nothing
    cesto -Q [plugin...]         List configured plugins

Options:
    -c, --config PATH            Plugin file (default: ~/.config/cesto.toml)
    -j, --jobs N                 Maximum concurrent plugin jobs
    --no-probe                   Update every installed plugin without probing remotes
    -v, --verbose                Verbose output
    -h, --help                   Show this help
"""
    print(help_text.strip())


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.WARNING),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the cesto CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.help or (not args.sync and not args.query):
        print_help()
        return 0

    try:
        overrides = {
            "plugin_file": args.config,
            "jobs": args.jobs,
            "probe_remotes": False if args.no_probe else None,
            "log_level": "DEBUG" if args.verbose else None,
        }
        settings = load_settings(overrides=overrides)
        configure_logging(settings.log_level)

        # Route to appropriate command
        if args.sync:
            from pm.commands.sync import sync_command

            return sync_command(args, settings)

        from pm.commands.query import query_command

        return query_command(args, settings)

    except (PMError, ConfigError, CestoError, LoaderError, StateError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130


if __name__ == "__main__":
    sys.exit(main())
