#!/usr/bin/env python3
"""tools/crdgen.py

Render the Labeler CustomResourceDefinition as YAML, plus a standalone
JSON Schema for Labeler documents.

Usage examples:
  python3 tools/crdgen.py > labeler-crd.yaml

  # Write into a chart's crds directory and a schema directory:
  CRDS_DIR=charts/stickerbomb/crds SCHEMA_DIR=schemas python3 tools/crdgen.py

Notes:
- This does NOT apply anything.
- CRDS_DIR receives <kind>-crd.yaml; SCHEMA_DIR receives <kind>_<version>.json.
- For safe validation, pair it with: kubectl apply --dry-run=server -f -
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import yaml

# Allow executing from tools/ without installing as a package
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from labeler import KIND, VERSION, crd_manifest, json_schema  # noqa: E402


def render() -> str:
    return yaml.safe_dump(crd_manifest(), sort_keys=False)


def render_schema() -> str:
    return json.dumps(json_schema(), indent=2) + "\n"


def write_files(crds_dir: str = None, schema_dir: str = None) -> list:
    written = []
    if crds_dir:
        out = Path(crds_dir) / f"{KIND.lower()}-crd.yaml"
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(render())
        written.append(out)
    if schema_dir:
        out = Path(schema_dir) / f"{KIND.lower()}_{VERSION}.json"
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(render_schema())
        written.append(out)
    return written


def main() -> int:
    crds_dir = os.environ.get("CRDS_DIR")
    schema_dir = os.environ.get("SCHEMA_DIR")
    if crds_dir or schema_dir:
        for out in write_files(crds_dir, schema_dir):
            print(f"[crdgen] wrote {out}")
        return 0

    try:
        sys.stdout.write(render())
    except BrokenPipeError:
        # Common when piping to `head`; exit cleanly
        return 0
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
