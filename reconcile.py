# reconcile.py
from __future__ import annotations

from typing import Dict, List, Tuple

from kubernetes.client.rest import ApiException

from config import CLUSTER_DOMAIN, DEFAULT_TIMEOUT_SECONDS, FINALIZER, debug
from k8s import ensure_finalizer, is_conflict, remove_finalizer
from ownership import Ownership, classify_network_policy, owns_route
from policies.allow_all import ALLOW_ALL_NAME, make_network_policy_allow_all
from roster import add_member, remove_member
from routes import INGRESS_LABEL, VISIBILITY_CLUSTER_LOCAL, make_routes
from state import State, compute_state


class ReconcilePlan(dict):
    """A small, json-serializable planning object."""

    # kept as dict subclass for easy printing/JSON dumping

RouteId = Tuple[str, str]  # (namespace, name)


def rid(route: dict) -> RouteId:
    meta = route.get("metadata", {})
    return (meta.get("namespace", ""), meta.get("name", ""))


def _meta(obj: dict) -> dict:
    return (obj or {}).get("metadata", {}) or {}


def _key(ing: dict) -> str:
    meta = _meta(ing)
    return f"{meta.get('namespace', '')}/{meta.get('name', '')}"


def _subset(want: dict, have: dict) -> bool:
    return all(have.get(k) == v for k, v in (want or {}).items())


def route_drifted(desired: dict, actual: dict) -> bool:
    """Compare only what we set; the router defaults the rest (weight, wildcardPolicy, ...)."""
    d_spec = desired.get("spec", {}) or {}
    a_spec = actual.get("spec", {}) or {}

    if d_spec.get("host") != a_spec.get("host"):
        return True
    if d_spec.get("port") != a_spec.get("port"):
        return True
    a_to = a_spec.get("to", {}) or {}
    if any(a_to.get(k) != v for k, v in d_spec.get("to", {}).items()):
        return True
    d_tls = (d_spec.get("tls") or {}).get("termination")
    a_tls = (a_spec.get("tls") or {}).get("termination")
    if d_tls != a_tls:
        return True

    if not _subset(_meta(desired).get("labels"), _meta(actual).get("labels") or {}):
        return True
    if not _subset(_meta(desired).get("annotations"), _meta(actual).get("annotations") or {}):
        return True
    return False


def merge_route(desired: dict, actual: dict) -> dict:
    """Layer the desired route over the live one, keeping resourceVersion and foreign fields."""
    out = dict(actual)
    meta = dict(_meta(actual))
    meta["labels"] = {**(meta.get("labels") or {}), **(_meta(desired).get("labels") or {})}
    meta["annotations"] = {**(meta.get("annotations") or {}), **(_meta(desired).get("annotations") or {})}
    out["metadata"] = meta

    spec = dict(actual.get("spec", {}) or {})
    spec.update(desired.get("spec", {}) or {})
    if "tls" not in desired.get("spec", {}):
        spec.pop("tls", None)
    out["spec"] = spec
    return out


def _owned_routes(kc, uid: str) -> Dict[RouteId, dict]:
    actual = kc.list_routes(f"{INGRESS_LABEL}={uid}")
    return {rid(r): r for r in actual if owns_route(r, uid)}


def plan_routes(kc, ing: dict, desired: List[dict]) -> ReconcilePlan:
    """Compute what reconcile_routes() *would* do, without creating/updating/deleting anything."""
    uid = str(_meta(ing).get("uid", ""))
    desired_map: Dict[RouteId, dict] = {rid(r): r for r in desired}
    actual_map = _owned_routes(kc, uid)

    to_create: List[str] = []
    to_update: List[str] = []
    to_delete: List[str] = []

    for _id, d in desired_map.items():
        name = "/".join(_id)
        if _id not in actual_map:
            to_create.append(name)
        elif route_drifted(d, actual_map[_id]):
            to_update.append(name)

    for _id in actual_map:
        if _id not in desired_map:
            to_delete.append("/".join(_id))

    to_create.sort()
    to_update.sort()
    to_delete.sort()

    return ReconcilePlan(
        ingress=_key(ing),
        counts={
            "create": len(to_create),
            "update": len(to_update),
            "delete": len(to_delete),
        },
        create=to_create,
        update=to_update,
        delete=to_delete,
    )


def print_plan(plan: ReconcilePlan) -> None:
    ing = plan.get("ingress")
    counts = plan.get("counts", {})
    print(f"[plan] ingress={ing} create={counts.get('create',0)} update={counts.get('update',0)} delete={counts.get('delete',0)}")
    for k in ("create", "update", "delete"):
        items = plan.get(k, []) or []
        if not items:
            continue
        print(f"[plan] {k}:")
        for name in items:
            print(f"  - {name}")


def create_or_adopt_route(kc, desired: dict) -> bool:
    """Create the route; if something already holds its name, take it over.

    The name is derived from our ingress UID and the host, so a holder without
    our label was edited by hand or left behind; merging puts the label back.
    Returns True when created, False when adopted.
    """
    ns, name = rid(desired)
    try:
        kc.create_route(ns, desired)
        return True
    except ApiException as e:
        if not is_conflict(e):
            raise

    existing = kc.get_route(ns, name)
    if existing is None:
        # Gone again between create and get; the next pass creates it.
        raise ApiException(status=409, reason=f"route {ns}/{name} vanished during adoption")
    labels = _meta(existing).get("labels") or {}
    print(
        f"[reconcile] adopting route {ns}/{name} "
        f"(owner label was {labels.get(INGRESS_LABEL)!r})",
        flush=True,
    )
    kc.replace_route(ns, name, merge_route(desired, existing))
    return False


def reconcile_routes(kc, ing: dict, desired: List[dict]) -> Dict[str, int]:
    uid = str(_meta(ing).get("uid", ""))
    desired_map: Dict[RouteId, dict] = {rid(r): r for r in desired}
    actual_map = _owned_routes(kc, uid)
    counts = {"create": 0, "update": 0, "delete": 0}

    # create/update desired
    for _id, d in desired_map.items():
        ns, name = _id
        if _id not in actual_map:
            if create_or_adopt_route(kc, d):
                counts["create"] += 1
            else:
                counts["update"] += 1
        elif route_drifted(d, actual_map[_id]):
            kc.replace_route(ns, name, merge_route(d, actual_map[_id]))
            counts["update"] += 1

    # delete ONLY our routes that are no longer desired (host removed, rule went local, ...)
    for _id in actual_map:
        if _id not in desired_map:
            kc.delete_route(*_id)
            counts["delete"] += 1

    if any(counts.values()):
        print(
            f"[reconcile] {_key(ing)} routes create={counts['create']} "
            f"update={counts['update']} delete={counts['delete']}",
            flush=True,
        )
    return counts


def delete_routes(kc, ing: dict) -> int:
    uid = str(_meta(ing).get("uid", ""))
    deleted = 0
    for ns, name in _owned_routes(kc, uid):
        if kc.delete_route(ns, name):
            deleted += 1
    return deleted


# ─────────────────────────────────────────────
# Network policy
# ─────────────────────────────────────────────
def requires_allow_all(ing: dict) -> bool:
    spec = (ing or {}).get("spec", {}) or {}
    return spec.get("visibility") != VISIBILITY_CLUSTER_LOCAL


def ensure_allow_all(kc, namespace: str) -> bool:
    existing = kc.get_network_policy(namespace, ALLOW_ALL_NAME)
    if existing is not None:
        # Content never varies, so presence is all we check.
        owner = classify_network_policy(existing)
        if owner != Ownership.OWNED_MANAGED:
            print(
                f"[reconcile] WARNING {namespace}: {ALLOW_ALL_NAME} exists but is {owner.value}, leaving it alone",
                flush=True,
            )
        else:
            debug(f"[reconcile] {namespace}: {ALLOW_ALL_NAME} present")
        return False
    created = kc.create_network_policy(namespace, make_network_policy_allow_all(namespace))
    if created:
        print(f"[reconcile] {namespace}: created NetworkPolicy {ALLOW_ALL_NAME}", flush=True)
    return created


def delete_allow_all(kc, namespace: str) -> bool:
    existing = kc.get_network_policy(namespace, ALLOW_ALL_NAME)
    if existing is None or classify_network_policy(existing) != Ownership.OWNED_MANAGED:
        return False
    deleted = kc.delete_network_policy(namespace, ALLOW_ALL_NAME)
    if deleted:
        print(f"[reconcile] {namespace}: deleted NetworkPolicy {ALLOW_ALL_NAME}", flush=True)
    return deleted


# ─────────────────────────────────────────────
# State handlers
# ─────────────────────────────────────────────
def reconcile_active(
    kc,
    ing: dict,
    default_timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
    cluster_domain: str = CLUSTER_DOMAIN,
    finalizer: str = FINALIZER,
) -> None:
    """Provision a live ingress: finalizer, allow-all policy, roll membership, routes.

    The finalizer goes on first so that nothing cluster-scoped exists without it.
    NoValidLoadbalancerDomain from route derivation is raised after the namespace
    is provisioned; the ingress is not ready yet and will be picked up again.
    """
    namespace = _meta(ing)["namespace"]

    if ensure_finalizer(kc, ing, finalizer):
        print(f"[reconcile] {_key(ing)}: added finalizer {finalizer}", flush=True)

    if requires_allow_all(ing):
        ensure_allow_all(kc, namespace)

    add_member(kc, namespace)

    desired = make_routes(ing, default_timeout_seconds, cluster_domain)
    reconcile_routes(kc, ing, desired)


def _other_live_ingresses(kc, ing: dict) -> List[str]:
    meta = _meta(ing)
    others = []
    for other in kc.list_ingresses(meta["namespace"]):
        o_meta = _meta(other)
        if o_meta.get("uid") == meta.get("uid") or o_meta.get("deletionTimestamp"):
            continue
        others.append(o_meta.get("name", ""))
    return sorted(others)


def reconcile_deletion(kc, ing: dict, finalizer: str = FINALIZER) -> None:
    """Tear down what reconcile_active set up, finalizer last.

    Every step tolerates having already happened, so an interrupted run is
    simply repeated. Any exception leaves the finalizer in place.
    """
    namespace = _meta(ing)["namespace"]

    deleted = delete_routes(kc, ing)
    if deleted:
        print(f"[reconcile] {_key(ing)}: deleted {deleted} route(s)", flush=True)

    # Membership and the policy are per namespace, yet released on any ingress's
    # deletion. Correct only while a namespace hosts a single ingress.
    # TODO: skip remove_member/delete_allow_all while _other_live_ingresses() is non-empty.
    others = _other_live_ingresses(kc, ing)
    if others:
        print(
            f"[reconcile] WARNING {_key(ing)}: releasing namespace {namespace} from the mesh "
            f"while ingresses remain: {', '.join(others)}",
            flush=True,
        )

    remove_member(kc, namespace)
    delete_allow_all(kc, namespace)

    if remove_finalizer(kc, ing, finalizer):
        print(f"[reconcile] {_key(ing)}: cleanup complete, removed finalizer {finalizer}", flush=True)


def reconcile_ingress(
    kc,
    ing: dict,
    default_timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
    cluster_domain: str = CLUSTER_DOMAIN,
    finalizer: str = FINALIZER,
) -> State:
    state = compute_state(ing, finalizer)
    if state == State.ACTIVE:
        reconcile_active(kc, ing, default_timeout_seconds, cluster_domain, finalizer)
    elif state == State.TERMINATING:
        reconcile_deletion(kc, ing, finalizer)
    else:
        debug(f"[reconcile] {_key(ing)}: released, nothing to do")
    return state
