#!/usr/bin/env python3
"""Command-line interface for LayerStore.

This module provides the CLI for working with a layered file store:
- Argument parsing with one subcommand per store operation
- Configuration file and environment loading
- Logging setup
- Error reporting with exit codes

Example:
    >>> from layerstore.cli import parse_arguments
    >>> args = parse_arguments(["--root", "/data/store", "write", "file1", "local.txt"])
"""

import argparse
import sys
from pathlib import Path
from typing import Dict, List, Optional

from layerstore.core.constants import LAYERSTORE_VERSION
from layerstore.core.errors import LayerStoreError
from layerstore.infrastructure.config_manager import SECTION, ConfigManager, ConfigSource, StoreSettings
from layerstore.infrastructure.logger import Logger, configure_logging
from layerstore.layers.store import LayerStore

VERSION = LAYERSTORE_VERSION
DESCRIPTION = "LayerStore - Layered file store with immutable archived layers"


class CLIError(Exception):
    """Exception raised for CLI-related errors."""

    pass


def parse_arguments(args: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Args:
        args: Argument list to parse (defaults to sys.argv[1:])

    Returns:
        Parsed arguments namespace

    Raises:
        SystemExit: On invalid arguments or --help/--version
    """
    parser = argparse.ArgumentParser(
        prog="layerstore",
        description=DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Write a file into the staging layer
  layerstore --root /data/store write docs/readme.txt ./readme.txt

  # Seal the staging layer into an archive
  layerstore --root /data/store seal

  # Read the current version of a file
  layerstore --root /data/store read docs/readme.txt > readme.txt

  # List every live path
  layerstore --root /data/store ls -R
        """,
    )

    parser.add_argument(
        "-v",
        "--version",
        action="version",
        version=f"%(prog)s {VERSION}",
    )

    parser.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        type=str,
        help="Configuration file path (YAML format)",
    )

    parser.add_argument(
        "-r",
        "--root",
        metavar="DIR",
        type=str,
        help="Store root directory (overrides configuration)",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    commands = parser.add_subparsers(dest="command", metavar="<command>")
    commands.required = True

    write = commands.add_parser("write", help="Write a file into the staging layer")
    write.add_argument("path", help="Store path")
    write.add_argument("source", nargs="?", help="Local file to read (default: stdin)")

    read = commands.add_parser("read", help="Write the current content of a file to stdout")
    read.add_argument("path", help="Store path")

    rm = commands.add_parser("rm", help="Delete a file or directory")
    rm.add_argument("path", help="Store path")

    mkdir = commands.add_parser("mkdir", help="Create a directory")
    mkdir.add_argument("path", help="Store path")

    ls = commands.add_parser("ls", help="List a directory")
    ls.add_argument("path", nargs="?", default="", help="Directory path (default: root)")
    ls.add_argument("-R", "--recursive", action="store_true", help="List every live path")

    commands.add_parser("seal", help="Seal the staging layer and print the new staging layer id")
    commands.add_parser("layers", help="List layer ids and states")

    extract = commands.add_parser("extract", help="Unpack one sealed layer")
    extract.add_argument("layer_id", type=int, help="Sealed layer id")
    extract.add_argument("dest", help="Destination directory")

    commands.add_parser("verify", help="Check containers against the index")

    parsed = parser.parse_args(args)
    _validate_arguments(parsed)
    return parsed


def _validate_arguments(args: argparse.Namespace) -> None:
    """
    Validate parsed arguments.

    Raises:
        CLIError: If validation fails
    """
    if args.config:
        config_path = Path(args.config)

        if not config_path.exists():
            raise CLIError(f"Configuration file does not exist: {args.config}")

        if not config_path.is_file():
            raise CLIError(f"Configuration path is not a file: {args.config}")

    source = getattr(args, "source", None)
    if source is not None and not Path(source).is_file():
        raise CLIError(f"Source file does not exist: {source}")


def build_config_from_args(args: argparse.Namespace) -> Dict:
    """
    Build the CLI configuration layer from parsed arguments.

    Returns:
        Configuration dictionary for ConfigManager
    """
    section: Dict = {}

    if args.root:
        section["root"] = args.root

    if args.debug:
        section["logging"] = {"level": "DEBUG"}

    return {SECTION: section}


def load_settings(args: argparse.Namespace) -> StoreSettings:
    """
    Resolve store settings from file, environment and arguments.

    Raises:
        ConfigError: If the merged configuration is invalid
    """
    config = ConfigManager(config_file=args.config)
    config.load_default_files()
    config.load_dict(build_config_from_args(args), source=ConfigSource.CLI_ARGS)
    return StoreSettings.from_config(config)


def setup_logging(settings: StoreSettings) -> Logger:
    """Configure LayerStore logging from settings."""
    return configure_logging(settings.log_level, settings.log_file)


# =============================================================================
# Commands
# =============================================================================


def cmd_write(store: LayerStore, args: argparse.Namespace) -> int:
    if args.source:
        with open(args.source, "rb") as f:
            store.write(args.path, f)
    else:
        store.write(args.path, sys.stdin.buffer)
    return 0


def cmd_read(store: LayerStore, args: argparse.Namespace) -> int:
    out = sys.stdout.buffer
    with store.read_file(args.path) as stream:
        for chunk in iter(lambda: stream.read(64 * 1024), b""):
            out.write(chunk)
    out.flush()
    return 0


def cmd_rm(store: LayerStore, args: argparse.Namespace) -> int:
    store.delete(args.path)
    return 0


def cmd_mkdir(store: LayerStore, args: argparse.Namespace) -> int:
    store.create_directory(args.path)
    return 0


def cmd_ls(store: LayerStore, args: argparse.Namespace) -> int:
    if args.recursive:
        names = store.list_paths()
        if args.path:
            prefix = args.path.strip("/") + "/"
            names = [name for name in names if name.startswith(prefix)]
    else:
        names = store.list_directory(args.path)

    for name in names:
        print(name)
    return 0


def cmd_seal(store: LayerStore, args: argparse.Namespace) -> int:
    print(store.seal())
    return 0


def cmd_layers(store: LayerStore, args: argparse.Namespace) -> int:
    for layer_id in store.list_layer_ids():
        print(f"{layer_id}\t{store.get_layer(layer_id).state.value}")
    return 0


def cmd_extract(store: LayerStore, args: argparse.Namespace) -> int:
    store.unpack_layer(args.layer_id, args.dest)
    return 0


def cmd_verify(store: LayerStore, args: argparse.Namespace) -> int:
    sealed = store.verify()
    print(f"ok: {len(sealed)} sealed layer(s)")
    return 0


COMMANDS = {
    "write": cmd_write,
    "read": cmd_read,
    "rm": cmd_rm,
    "mkdir": cmd_mkdir,
    "ls": cmd_ls,
    "seal": cmd_seal,
    "layers": cmd_layers,
    "extract": cmd_extract,
    "verify": cmd_verify,
}


def run_command(args: argparse.Namespace, settings: StoreSettings) -> int:
    """Open the configured store and run one command against it."""
    with LayerStore.from_settings(settings) as store:
        return COMMANDS[args.command](store, args)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main CLI entry point.

    Returns:
        Exit code: 0 on success, 1 on store or CLI errors, 130 when interrupted
    """
    try:
        args = parse_arguments(argv)
        settings = load_settings(args)
        logger = setup_logging(settings)
        logger.debug("running command", command=args.command, root=str(settings.root))
        return run_command(args, settings)

    except (CLIError, LayerStoreError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return 130

    except Exception as e:
        print(f"Unexpected error: {e}", file=sys.stderr)
        import traceback

        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
