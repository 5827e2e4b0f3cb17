"""``perch routes`` — list compiled routes.

Loads every collection of the resolved app and prints its route table
with method, path, and ``collection.handle``.
"""

import argparse
import sys

from perch.cli._resolve import resolve_app


def run_routes(args: argparse.Namespace) -> None:
    """Print METHOD, PATH, and HANDLER for every route of ``args.app``."""
    try:
        app = resolve_app(args.app)
    except (ModuleNotFoundError, AttributeError, TypeError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    app.ready()
    routes = app.route_table.routes
    if not routes:
        print("No routes registered.")
        return

    rows = [
        (route.method.upper(), route.path, f"{route.collection_name}.{route.handle_name}")
        for route in routes
    ]
    max_method = max(6, *(len(r[0]) for r in rows))  # "METHOD" header
    max_path = max(4, *(len(r[1]) for r in rows))  # "PATH" header

    fmt = f"{{:<{max_method}}}  {{:<{max_path}}}  {{}}"
    print(fmt.format("METHOD", "PATH", "HANDLER"))
    sep_len = max_method + max_path + 4 + max(len(r[2]) for r in rows)
    print("-" * min(sep_len, 80))
    for row in rows:
        print(fmt.format(*row))
