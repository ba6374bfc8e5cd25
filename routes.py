# routes.py
from __future__ import annotations

import hashlib
import re
from typing import Dict, List, Optional, Tuple

from errors import NoValidLoadbalancerDomain, UnsupportedTLSTermination

TIMEOUT_ANNOTATION = "haproxy.router.openshift.io/timeout"
DISABLE_ROUTE_ANNOTATION = "serving.knative.openshift.io/disableRoute"
# Configures routes.spec.tls.termination
TLS_TERMINATION_ANNOTATION = "serving.knative.openshift.io/tlsTermination"

INGRESS_LABEL = "networking.internal.knative.dev/ingress"

VISIBILITY_CLUSTER_LOCAL = "ClusterLocal"

HTTP_TARGET_PORT = "http2"
TLS_TARGET_PORT = "https"

ServiceRef = Tuple[str, str]  # (namespace, name)

_DURATION_PART = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def _meta(obj: dict) -> dict:
    return (obj or {}).get("metadata", {}) or {}


def _union(*maps: Optional[Dict[str, str]]) -> Dict[str, str]:
    out: Dict[str, str] = {}
    for m in maps:
        out.update(m or {})
    return out


def parse_duration_seconds(value) -> int:
    """Parse a Go-style duration ("10m0s", "1h30m", "500ms") or a plain number into whole seconds."""
    if isinstance(value, (int, float)):
        return int(value)
    s = str(value).strip()
    if not s:
        raise ValueError("empty duration")
    try:
        return int(float(s))
    except ValueError:
        pass

    sign = 1
    if s[0] in "+-":
        sign = -1 if s[0] == "-" else 1
        s = s[1:]

    total = 0.0
    pos = 0
    for m in _DURATION_PART.finditer(s):
        if m.start() != pos:
            raise ValueError(f"invalid duration {value!r}")
        total += float(m.group(1)) * _DURATION_UNITS[m.group(2)]
        pos = m.end()
    if pos != len(s) or pos == 0:
        raise ValueError(f"invalid duration {value!r}")
    return int(sign * total)


def _parse_internal_domain(domain: str) -> Optional[ServiceRef]:
    parts = domain.split(".")
    if len(parts) < 3 or parts[2] != "svc":
        return None
    return parts[1], parts[0]


def _load_balancer_ingresses(ing: dict) -> List[dict]:
    status = (ing or {}).get("status", {}) or {}
    for key in ("publicLoadBalancer", "loadBalancer"):
        lbs = (status.get(key, {}) or {}).get("ingress", []) or []
        if lbs:
            return lbs
    return []


def find_internal_service(ing: dict) -> ServiceRef:
    """Return (namespace, name) of the first internal domain shaped like {name}.{namespace}.svc..."""
    for lb in _load_balancer_ingresses(ing):
        domain = (lb or {}).get("domainInternal", "")
        if not domain:
            continue
        svc = _parse_internal_domain(domain)
        if svc is not None:
            return svc
    meta = _meta(ing)
    raise NoValidLoadbalancerDomain(meta.get("namespace", ""), meta.get("name", ""))


def hash_host(host: str) -> str:
    return hashlib.sha256(host.encode()).hexdigest()[:6]


def route_name(uid: str, host: str) -> str:
    return f"route-{uid}-{hash_host(host)}"


def _rule_timeout_seconds(rule: dict, default_timeout_seconds: int) -> int:
    # Multiple paths aren't supported, only the first one counts.
    paths = ((rule or {}).get("http", {}) or {}).get("paths", []) or []
    if paths and paths[0].get("timeout") is not None:
        return parse_duration_seconds(paths[0]["timeout"])
    return default_timeout_seconds


def _tls_passthrough(ing: dict) -> bool:
    value = (_meta(ing).get("annotations", {}) or {}).get(TLS_TERMINATION_ANNOTATION)
    if not value:
        return False
    if value.lower() == "passthrough":
        return True
    raise UnsupportedTLSTermination(value)


def make_route(
    ing: dict, host: str, svc: ServiceRef, timeout_seconds: int, passthrough: Optional[bool] = None
) -> dict:
    meta = _meta(ing)
    uid = str(meta.get("uid", ""))
    svc_namespace, svc_name = svc

    route = {
        "apiVersion": "route.openshift.io/v1",
        "kind": "Route",
        "metadata": {
            "name": route_name(uid, host),
            "namespace": svc_namespace,
            "labels": _union(meta.get("labels"), {INGRESS_LABEL: uid}),
            "annotations": _union(
                meta.get("annotations"),
                {TIMEOUT_ANNOTATION: f"{int(timeout_seconds)}s"},
            ),
        },
        "spec": {
            "host": host,
            "port": {"targetPort": HTTP_TARGET_PORT},
            "to": {"kind": "Service", "name": svc_name},
        },
    }

    if passthrough is None:
        passthrough = _tls_passthrough(ing)
    if passthrough:
        route["spec"]["tls"] = {"termination": "passthrough"}
        route["spec"]["port"] = {"targetPort": TLS_TARGET_PORT}

    return route


def make_routes(ing: dict, default_timeout_seconds: int, cluster_domain: str) -> List[dict]:
    """Derive the OpenShift Routes for a Knative Ingress.

    Returns an empty list when route creation is disabled by annotation or the
    ingress is cluster-local. Raises NoValidLoadbalancerDomain while the ingress
    has no usable internal domain in its status, and UnsupportedTLSTermination
    for a tlsTermination annotation other than "passthrough".
    """
    annotations = _meta(ing).get("annotations", {}) or {}
    if DISABLE_ROUTE_ANNOTATION in annotations:
        return []

    spec = (ing or {}).get("spec", {}) or {}
    if spec.get("visibility") == VISIBILITY_CLUSTER_LOCAL:
        return []

    # Rejected even when every host turns out to be cluster-local.
    passthrough = _tls_passthrough(ing)
    svc = find_internal_service(ing)

    routes: List[dict] = []
    for rule in spec.get("rules", []) or []:
        if rule.get("visibility") == VISIBILITY_CLUSTER_LOCAL:
            continue

        timeout = _rule_timeout_seconds(rule, default_timeout_seconds)

        for host in rule.get("hosts", []) or []:
            if host.endswith(cluster_domain):
                continue
            routes.append(make_route(ing, host, svc, timeout, passthrough))

    return routes
