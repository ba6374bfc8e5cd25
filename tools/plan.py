#!/usr/bin/env python3
"""Plan-only runner: prints which routes the controller would create/update/delete for one ingress.

Usage:
  NAMESPACE=my-app NAME=hello python3 tools/plan.py

Notes:
- Uses your local kubeconfig (same behavior as app.py).
- Does not create/update/delete any objects; policy and member roll are not touched.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

# Ensure project root is on sys.path when running as a script
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import CLUSTER_DOMAIN, DEFAULT_TIMEOUT_SECONDS  # noqa: E402
from errors import ControllerError  # noqa: E402
from k8s import KnativeClient, load_kube  # noqa: E402
from reconcile import plan_routes, print_plan  # noqa: E402
from routes import make_routes  # noqa: E402


def main() -> int:
    namespace = os.environ.get("NAMESPACE", "default")
    name = os.environ.get("NAME")
    if not name:
        print("[plan] NAME is required")
        return 2

    load_kube()
    kc = KnativeClient()

    ing = kc.get_ingress(namespace, name)
    if ing is None:
        print(f"[plan] ingress {namespace}/{name} not found")
        return 1

    try:
        desired = make_routes(ing, DEFAULT_TIMEOUT_SECONDS, CLUSTER_DOMAIN)
    except ControllerError as e:
        print(f"[plan] cannot derive routes: {e}")
        return 1

    print_plan(plan_routes(kc, ing, desired))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
