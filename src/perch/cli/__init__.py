"""Perch CLI — serve an app and inspect its collections and routes.

Entry point registered as ``perch`` in ``pyproject.toml``::

    [project.scripts]
    perch = "perch.cli:main"
"""

import argparse
import sys


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the ``perch`` command."""
    parser = argparse.ArgumentParser(
        prog="perch",
        description="Perch — host hot-reloadable REST collections.",
    )
    subparsers = parser.add_subparsers(dest="command")

    # -- perch run --------------------------------------------------------
    run_parser = subparsers.add_parser("run", help="Start the server")
    run_parser.add_argument("app", help="Import string (e.g. myapp:app)")
    run_parser.add_argument("--host", default=None, help="Bind host address")
    run_parser.add_argument("--port", type=int, default=None, help="Bind port number")
    run_parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Worker process count",
    )
    run_parser.add_argument(
        "--watch",
        action="store_true",
        help="Reload collections when their files change",
    )

    # -- perch routes -----------------------------------------------------
    routes_parser = subparsers.add_parser("routes", help="List compiled routes")
    routes_parser.add_argument("app", help="Import string (e.g. myapp:app)")

    # -- perch collections ------------------------------------------------
    collections_parser = subparsers.add_parser(
        "collections", help="List discovered collections without an app"
    )
    collections_parser.add_argument("--root", default=".", help="Directory globs are resolved from")
    collections_parser.add_argument(
        "--glob",
        action="append",
        dest="globs",
        default=None,
        help="Manifest glob pattern (repeatable)",
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "run":
        from perch.cli._run import run_server

        run_server(args)
    elif args.command == "routes":
        from perch.cli._routes import run_routes

        run_routes(args)
    elif args.command == "collections":
        from perch.cli._collections import run_collections

        run_collections(args)
