#!/usr/bin/env python3
"""tools/render.py

Render what the controller derives from a Knative Ingress (routes + allow-all policy)
as multi-document YAML.

Usage examples:
  # From a manifest on disk (no cluster access needed):
  INGRESS_FILE=ingress.yaml python3 tools/render.py

  # From the cluster:
  NAMESPACE=my-app NAME=hello python3 tools/render.py | kubectl apply --dry-run=server -f -

Notes:
- This does NOT apply anything.
"""

from __future__ import annotations

import os
import sys

import yaml

# Allow executing from tools/ without installing as a package
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from config import CLUSTER_DOMAIN, DEFAULT_TIMEOUT_SECONDS  # noqa: E402
from errors import ControllerError  # noqa: E402
from policies.allow_all import make_network_policy_allow_all  # noqa: E402
from reconcile import requires_allow_all  # noqa: E402
from routes import make_routes  # noqa: E402


def _load_ingress() -> dict | None:
    path = os.environ.get("INGRESS_FILE")
    if path:
        with open(path, "r") as f:
            return yaml.safe_load(f)

    from k8s import KnativeClient, load_kube

    load_kube()
    return KnativeClient().get_ingress(
        os.environ.get("NAMESPACE", "default"), os.environ.get("NAME", "")
    )


def render(ing: dict) -> list[dict]:
    docs = make_routes(ing, DEFAULT_TIMEOUT_SECONDS, CLUSTER_DOMAIN)
    if requires_allow_all(ing):
        docs.append(make_network_policy_allow_all(ing["metadata"]["namespace"]))
    return docs


def main() -> int:
    ing = _load_ingress()
    if not ing:
        print("[render] ingress not found", file=sys.stderr)
        return 1

    try:
        docs = render(ing)
    except ControllerError as e:
        print(f"[render] {e}", file=sys.stderr)
        return 1

    # Multi-doc YAML to stdout
    try:
        for doc in docs:
            yaml.safe_dump(doc, sys.stdout, sort_keys=False)
            sys.stdout.write("---\n")
    except BrokenPipeError:
        # Common when piping to `head`; exit cleanly
        return 0

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
