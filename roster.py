# roster.py
"""Namespace membership in the ServiceMeshMemberRoll.

The roll is a single cluster-wide object that reconciles for every namespace
read and write. Updates are read-modify-write against the fetched
resourceVersion; a 409 means someone else got there first, so we re-fetch and
re-apply the change on top of their version.
"""

from __future__ import annotations

from typing import Callable, List

from kubernetes.client.rest import ApiException

from config import ROSTER_UPDATE_RETRIES, SMMR_NAME, SMMR_NAMESPACE
from errors import RosterConflict
from k8s import is_conflict, is_not_found


def members(roster: dict) -> List[str]:
    return list(((roster or {}).get("spec", {}) or {}).get("members") or [])


def _update_members(
    kc,
    namespace: str,
    change: Callable[[List[str]], List[str]],
    retries: int,
    smmr_namespace: str,
    smmr_name: str,
) -> bool:
    """Apply change() to the member list until it sticks. Returns False if nothing needed changing."""
    for attempt in range(1, retries + 1):
        roster = kc.get_roster(smmr_namespace, smmr_name)
        current = members(roster)
        desired = change(current)
        if desired == current:
            return False

        body = dict(roster)
        body["spec"] = dict(roster.get("spec", {}) or {})
        body["spec"]["members"] = desired
        try:
            kc.replace_roster(smmr_namespace, smmr_name, body)
        except ApiException as e:
            if not is_conflict(e):
                raise
            print(
                f"[roster] conflict updating {smmr_namespace}/{smmr_name} for {namespace} "
                f"(attempt {attempt}/{retries}), retrying",
                flush=True,
            )
            continue
        return True

    raise RosterConflict(namespace, retries)


def add_member(
    kc,
    namespace: str,
    retries: int = ROSTER_UPDATE_RETRIES,
    smmr_namespace: str = SMMR_NAMESPACE,
    smmr_name: str = SMMR_NAME,
) -> bool:
    def _add(current: List[str]) -> List[str]:
        if namespace in current:
            return current
        return current + [namespace]

    added = _update_members(kc, namespace, _add, retries, smmr_namespace, smmr_name)
    if added:
        print(f"[roster] added {namespace} to {smmr_namespace}/{smmr_name}", flush=True)
    return added


def remove_member(
    kc,
    namespace: str,
    retries: int = ROSTER_UPDATE_RETRIES,
    smmr_namespace: str = SMMR_NAMESPACE,
    smmr_name: str = SMMR_NAME,
) -> bool:
    def _remove(current: List[str]) -> List[str]:
        return [m for m in current if m != namespace]

    try:
        removed = _update_members(kc, namespace, _remove, retries, smmr_namespace, smmr_name)
    except ApiException as e:
        if not is_not_found(e):
            raise
        # No roll (mesh already uninstalled) lists nothing, so there is nothing to leave.
        print(f"[roster] {smmr_namespace}/{smmr_name} not found, {namespace} has no membership to remove", flush=True)
        return False
    if removed:
        print(f"[roster] removed {namespace} from {smmr_namespace}/{smmr_name}", flush=True)
    return removed
