"""
crosstool CLI.

Command handlers live in ``commands``; each takes the parsed namespace and
returns an exit code.
"""

import argparse
import sys

from crosstool.version import __version__

from .commands.analyze_commands import cmd_analyze, cmd_format
from .commands.client_commands import cmd_client
from .commands.home_commands import cmd_home
from .commands.server_commands import cmd_server

COMMANDS = ("analyze", "format", "home", "server", "client", "help")


class _ArgumentParser(argparse.ArgumentParser):
    """Usage errors exit 1 like every other validation error."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"Error: {message}\n")


def _add_endpoint_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--host", default="")
    parser.add_argument("--port", type=int)


def _build_parser() -> argparse.ArgumentParser:
    parser = _ArgumentParser(
        prog="crosstool",
        description="Code analysis and item store CLI",
        formatter_class=argparse.RawTextHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"crosstool {__version__}")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    analyze = subparsers.add_parser("analyze", help="Analyze a source file")
    analyze.add_argument("path", nargs="?")
    analyze.set_defaults(func=cmd_analyze)

    fmt = subparsers.add_parser("format", help="Re-indent a source file in place")
    fmt.add_argument("path", nargs="?")
    fmt.set_defaults(func=cmd_format)

    home = subparsers.add_parser("home", help="Local item store")
    group = home.add_mutually_exclusive_group()
    group.add_argument("--init", action="store_true", help="Recreate the table with sample items")
    group.add_argument("--list", action="store_true", help="List all items")
    group.add_argument("--add", metavar="NAME")
    group.add_argument("--remove", metavar="ID")
    group.add_argument("--update", nargs=2, metavar=("ID", "NAME"))
    group.add_argument("--clear", action="store_true", help="Remove all items")
    home.set_defaults(func=cmd_home)

    server = subparsers.add_parser("server", help="Run the HTTP server in the foreground")
    _add_endpoint_args(server)
    server.set_defaults(func=cmd_server)

    client = subparsers.add_parser("client", help="Talk to the shared server, launching it if needed")
    _add_endpoint_args(client)
    c_sub = client.add_subparsers(dest="client_command")
    c_sub.add_parser("status", help="Supervisor and server status")
    init = c_sub.add_parser("init", help="Recreate the items table")
    init.add_argument("--seed", action="store_true")
    c_sub.add_parser("list", help="List items")
    add = c_sub.add_parser("add", help="Add an item")
    add.add_argument("name")
    update = c_sub.add_parser("update", help="Rename an item")
    update.add_argument("id")
    update.add_argument("name")
    delete = c_sub.add_parser("delete", help="Delete an item")
    delete.add_argument("id")
    c_sub.add_parser("clear", help="Delete all items")
    details = c_sub.add_parser("details", help="Item details")
    details.add_argument("id")
    duplicate = c_sub.add_parser("duplicate", help="Copy an item as \"<name> (Copy)\"")
    duplicate.add_argument("id")
    export = c_sub.add_parser("export", help="Export items as JSON")
    export.add_argument("--output", default=None)
    c_analyze = c_sub.add_parser("analyze", help="Analyze a file on the server")
    c_analyze.add_argument("path")
    c_analyze.add_argument("--inline", action="store_true", help="Send file contents instead of the path")
    c_format = c_sub.add_parser("format", help="Format a file on the server")
    c_format.add_argument("path")
    c_format.add_argument("--write", action="store_true", help="Save the formatted result to the file")
    c_sub.add_parser("stop", help="Stop the shared server")
    client.set_defaults(func=cmd_client)

    subparsers.add_parser("help", help="Show help")
    return parser


def _print_commands(file=None) -> None:
    print("\nAvailable commands:", file=file)
    for name in COMMANDS:
        print(f"  {name}", file=file)


def run(argv=None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    parser = _build_parser()
    if argv and not argv[0].startswith("-") and argv[0] not in COMMANDS:
        print(f"Error: Unknown command '{argv[0]}'", file=sys.stderr)
        _print_commands(file=sys.stderr)
        return 1
    args = parser.parse_args(argv)
    if not getattr(args, "command", None) or args.command == "help":
        parser.print_help()
        _print_commands()
        return 0
    return args.func(args)
