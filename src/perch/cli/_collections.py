"""``perch collections`` — list discovered collections.

Runs discovery only (no logic modules are imported), so it is safe to
point at an untrusted tree to check its manifests.
"""

import argparse

from perch.config import DEFAULT_COLLECTIONS_GLOB
from perch.registry.finder import CollectionFinder


def run_collections(args: argparse.Namespace) -> None:
    """Print NAME, MANIFEST, and LOGIC for every discovered collection."""
    finder = CollectionFinder(args.globs or DEFAULT_COLLECTIONS_GLOB, root=args.root)
    found = finder.find()
    if not found:
        print("No collections found.")
        return

    rows = [
        (name, str(d.manifest_path.relative_to(finder.root, walk_up=True)), d.properties["logic"])
        for name, d in sorted(found.items())
    ]
    max_name = max(4, *(len(r[0]) for r in rows))  # "NAME" header
    max_manifest = max(8, *(len(r[1]) for r in rows))  # "MANIFEST" header

    fmt = f"{{:<{max_name}}}  {{:<{max_manifest}}}  {{}}"
    print(fmt.format("NAME", "MANIFEST", "LOGIC"))
    print("-" * min(max_name + max_manifest + 4 + max(len(r[2]) for r in rows), 80))
    for row in rows:
        print(fmt.format(*row))
