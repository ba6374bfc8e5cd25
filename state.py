# state.py
from __future__ import annotations

from enum import Enum


class State(str, Enum):
    ACTIVE = "ACTIVE"
    TERMINATING = "TERMINATING"
    RELEASED = "RELEASED"


def has_finalizer(ing: dict, finalizer: str) -> bool:
    fins = ((ing or {}).get("metadata", {}) or {}).get("finalizers") or []
    return finalizer in fins


def compute_state(ing: dict, finalizer: str) -> State:
    """
    Lifecycle state of an ingress from this controller's point of view.
      ACTIVE       no deletion timestamp; provision (finalizer may or may not be there yet)
      TERMINATING  deletion requested and our finalizer still holds it; clean up
      RELEASED     deletion requested and our finalizer is gone; nothing left to do
    """
    meta = (ing or {}).get("metadata", {}) or {}
    if not meta.get("deletionTimestamp"):
        return State.ACTIVE
    if has_finalizer(ing, finalizer):
        return State.TERMINATING
    return State.RELEASED
