# ownership.py
from __future__ import annotations

from enum import Enum

from policies.allow_all import ALLOW_ALL_NAME, MANAGED_BY, MANAGED_BY_LABEL
from routes import INGRESS_LABEL

MESH_OWNER_LABEL = "maistra.io/owner"


class Ownership(str, Enum):
    OWNED_MANAGED = "owned-managed"  # ours: the allow-all policy
    OWNED_BY_MESH = "owned-by-mesh"  # created by the mesh installation, e.g. istio-mesh
    UNMANAGED = "unmanaged"  # anything a human created


def _labels(obj: dict) -> dict:
    return ((obj or {}).get("metadata", {}) or {}).get("labels", {}) or {}


def classify_network_policy(pol: dict) -> Ownership:
    """Ours needs both the fixed name and our managed-by label; a same-named policy without it is foreign."""
    name = ((pol or {}).get("metadata", {}) or {}).get("name", "")
    labels = _labels(pol)
    if name == ALLOW_ALL_NAME and labels.get(MANAGED_BY_LABEL) == MANAGED_BY:
        return Ownership.OWNED_MANAGED
    if MESH_OWNER_LABEL in labels:
        return Ownership.OWNED_BY_MESH
    return Ownership.UNMANAGED


def owns_route(route: dict, uid: str) -> bool:
    return bool(uid) and _labels(route).get(INGRESS_LABEL) == uid
