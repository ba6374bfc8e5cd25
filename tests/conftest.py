from __future__ import annotations

import copy
import threading
from typing import Callable, Dict, List, Optional, Tuple

import pytest
from kubernetes.client.rest import ApiException

from config import SMMR_NAME, SMMR_NAMESPACE

Key = Tuple[str, str]  # (namespace, name)


def _key(obj: dict) -> Key:
    meta = obj["metadata"]
    return (meta.get("namespace", ""), meta["name"])


class FakeCluster:
    """In-memory stand-in for k8s.KnativeClient.

    Records every call in .calls as (verb, kind, namespace, name), enforces
    resourceVersion on the member roll and lets tests inject failures and
    concurrent roll writers.
    """

    def __init__(self) -> None:
        self.ingresses: Dict[Key, dict] = {}
        self.routes: Dict[Key, dict] = {}
        self.policies: Dict[Key, dict] = {}
        self.roster: Optional[dict] = None
        self.calls: List[Tuple[str, str, str, str]] = []
        # callables run right before a roll replace, simulating a peer writing in between
        self.roster_peers: List[Callable[["FakeCluster"], None]] = []
        self._fail_once: Dict[str, ApiException] = {}
        self._rv = 0
        self._lock = threading.RLock()

    # test helpers

    def _next_rv(self) -> str:
        self._rv += 1
        return str(self._rv)

    def fail_once(self, method: str, status: int = 500) -> None:
        self._fail_once[method] = ApiException(status=status, reason="injected")

    def _maybe_fail(self, method: str) -> None:
        exc = self._fail_once.pop(method, None)
        if exc is not None:
            raise exc

    def add(self, obj: dict) -> dict:
        obj = copy.deepcopy(obj)
        obj.setdefault("metadata", {})["resourceVersion"] = self._next_rv()
        kind = obj.get("kind")
        if kind == "Ingress":
            self.ingresses[_key(obj)] = obj
        elif kind == "Route":
            self.routes[_key(obj)] = obj
        elif kind == "NetworkPolicy":
            self.policies[_key(obj)] = obj
        elif kind == "ServiceMeshMemberRoll":
            self.roster = obj
        else:
            raise ValueError(f"unknown kind {kind}")
        return obj

    def set_members(self, members: List[str]) -> None:
        self.add(
            {
                "apiVersion": "maistra.io/v1",
                "kind": "ServiceMeshMemberRoll",
                "metadata": {"name": SMMR_NAME, "namespace": SMMR_NAMESPACE},
                "spec": {"members": list(members)},
            }
        )

    def members(self) -> List[str]:
        return list((self.roster or {}).get("spec", {}).get("members") or [])

    def writes(self) -> List[Tuple[str, str, str, str]]:
        return [c for c in self.calls if c[0] in ("create", "replace", "patch", "delete")]

    # Knative ingresses

    def list_ingresses(self, namespace: str = "") -> List[dict]:
        with self._lock:
            self.calls.append(("list", "Ingress", namespace, ""))
            return [
                copy.deepcopy(i)
                for (ns, _), i in sorted(self.ingresses.items())
                if not namespace or ns == namespace
            ]

    def get_ingress(self, namespace: str, name: str) -> Optional[dict]:
        with self._lock:
            self.calls.append(("get", "Ingress", namespace, name))
            ing = self.ingresses.get((namespace, name))
            return copy.deepcopy(ing) if ing else None

    def patch_ingress(self, namespace: str, name: str, body: dict) -> dict:
        with self._lock:
            self.calls.append(("patch", "Ingress", namespace, name))
            self._maybe_fail("patch_ingress")
            ing = self.ingresses[(namespace, name)]
            patch_meta = body.get("metadata", {})
            rv = patch_meta.get("resourceVersion")
            if rv and rv != ing["metadata"]["resourceVersion"]:
                raise ApiException(status=409, reason="Conflict")
            if "finalizers" in patch_meta:
                ing["metadata"]["finalizers"] = list(patch_meta["finalizers"])
            ing["metadata"]["resourceVersion"] = self._next_rv()
            return copy.deepcopy(ing)

    # OpenShift routes

    def list_routes(self, label_selector: str) -> List[dict]:
        with self._lock:
            self.calls.append(("list", "Route", "", label_selector))
            k, _, v = label_selector.partition("=")
            return [
                copy.deepcopy(r)
                for _, r in sorted(self.routes.items())
                if (r["metadata"].get("labels") or {}).get(k) == v
            ]

    def get_route(self, namespace: str, name: str) -> Optional[dict]:
        with self._lock:
            self.calls.append(("get", "Route", namespace, name))
            route = self.routes.get((namespace, name))
            return copy.deepcopy(route) if route else None

    def create_route(self, namespace: str, body: dict) -> dict:
        with self._lock:
            self.calls.append(("create", "Route", namespace, body["metadata"]["name"]))
            self._maybe_fail("create_route")
            key = (namespace, body["metadata"]["name"])
            if key in self.routes:
                raise ApiException(status=409, reason="AlreadyExists")
            return self.add(body)

    def replace_route(self, namespace: str, name: str, body: dict) -> dict:
        with self._lock:
            self.calls.append(("replace", "Route", namespace, name))
            return self.add(body)

    def delete_route(self, namespace: str, name: str) -> bool:
        with self._lock:
            self.calls.append(("delete", "Route", namespace, name))
            self._maybe_fail("delete_route")
            return self.routes.pop((namespace, name), None) is not None

    # Network policies

    def get_network_policy(self, namespace: str, name: str) -> Optional[dict]:
        with self._lock:
            self.calls.append(("get", "NetworkPolicy", namespace, name))
            pol = self.policies.get((namespace, name))
            return copy.deepcopy(pol) if pol else None

    def create_network_policy(self, namespace: str, body: dict) -> bool:
        with self._lock:
            self.calls.append(("create", "NetworkPolicy", namespace, body["metadata"]["name"]))
            self._maybe_fail("create_network_policy")
            if (namespace, body["metadata"]["name"]) in self.policies:
                return False
            self.add(body)
            return True

    def delete_network_policy(self, namespace: str, name: str) -> bool:
        with self._lock:
            self.calls.append(("delete", "NetworkPolicy", namespace, name))
            self._maybe_fail("delete_network_policy")
            return self.policies.pop((namespace, name), None) is not None

    # Service mesh member roll

    def get_roster(self, namespace: str, name: str) -> dict:
        with self._lock:
            self.calls.append(("get", "ServiceMeshMemberRoll", namespace, name))
            if self.roster is None:
                raise ApiException(status=404, reason="NotFound")
            return copy.deepcopy(self.roster)

    def replace_roster(self, namespace: str, name: str, body: dict) -> dict:
        with self._lock:
            self.calls.append(("replace", "ServiceMeshMemberRoll", namespace, name))
            self._maybe_fail("replace_roster")
            if self.roster_peers:
                self.roster_peers.pop(0)(self)
            if body["metadata"].get("resourceVersion") != self.roster["metadata"]["resourceVersion"]:
                raise ApiException(status=409, reason="Conflict")
            return self.add(body)


def peer_adds(namespace: str) -> Callable[[FakeCluster], None]:
    """A concurrent reconcile for another namespace joining the roll."""

    def _write(cluster: FakeCluster) -> None:
        cluster.set_members(cluster.members() + [namespace])

    return _write


@pytest.fixture
def cluster() -> FakeCluster:
    c = FakeCluster()
    c.set_members([])
    return c
