# config.py
from __future__ import annotations

import os

# ─────────────────────────────────────────────
# Controller loop
# ─────────────────────────────────────────────
LOOP_SECONDS = int(os.environ.get("LOOP_SECONDS", "5"))
WORKERS = int(os.environ.get("WORKERS", "4"))
# Empty means all namespaces.
WATCH_NAMESPACE = os.environ.get("WATCH_NAMESPACE", "")
DEBUG = os.environ.get("CONTROLLER_DEBUG", "0") == "1"

# ─────────────────────────────────────────────
# Route derivation
# ─────────────────────────────────────────────
# Mirrors serving's max revision timeout; routes get this unless a path overrides it.
DEFAULT_TIMEOUT_SECONDS = int(os.environ.get("DEFAULT_TIMEOUT_SECONDS", "600"))
CLUSTER_DOMAIN = os.environ.get("CLUSTER_DOMAIN", "cluster.local")

# ─────────────────────────────────────────────
# Mesh membership
# ─────────────────────────────────────────────
SMMR_NAME = os.environ.get("SMMR_NAME", "default")
SMMR_NAMESPACE = os.environ.get("SMMR_NAMESPACE", "knative-serving-ingress")
ROSTER_UPDATE_RETRIES = int(os.environ.get("ROSTER_UPDATE_RETRIES", "5"))

FINALIZER = os.environ.get("FINALIZER", "ocp-ingress")


def debug(msg: str) -> None:
    if DEBUG:
        print(msg, flush=True)
