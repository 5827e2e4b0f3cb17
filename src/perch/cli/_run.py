"""``perch run`` — serve an app through pounce."""

import argparse
import dataclasses
import sys

from perch.cli._resolve import resolve_app


def run_server(args: argparse.Namespace) -> None:
    """Resolve ``args.app`` and serve it.

    ``--watch`` and ``--workers`` override the app's config; the app has
    not frozen yet, so its config can still be replaced.
    """
    try:
        app = resolve_app(args.app)
    except (ModuleNotFoundError, AttributeError, TypeError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    overrides: dict[str, object] = {}
    if args.watch:
        overrides["watch"] = True
    if args.workers is not None:
        overrides["workers"] = args.workers
    if overrides:
        app.config = dataclasses.replace(app.config, **overrides)

    app.run(host=args.host, port=args.port)
