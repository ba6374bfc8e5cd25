# k8s.py
from __future__ import annotations

from typing import List, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException

from config import FINALIZER

KNATIVE_GROUP = "networking.internal.knative.dev"
KNATIVE_VERSION = "v1alpha1"
INGRESS_PLURAL = "ingresses"

ROUTE_GROUP = "route.openshift.io"
ROUTE_VERSION = "v1"
ROUTE_PLURAL = "routes"

MAISTRA_GROUP = "maistra.io"
MAISTRA_VERSION = "v1"
SMMR_PLURAL = "servicemeshmemberrolls"


def is_not_found(e: ApiException) -> bool:
    return e.status == 404


def is_conflict(e: ApiException) -> bool:
    return e.status == 409


# ─────────────────────────────────────────────
# Cluster API wrapper
# ─────────────────────────────────────────────
class KnativeClient:
    """Thin dict-in/dict-out wrapper over the kubernetes client for the kinds we touch."""

    def __init__(self, api_client: Optional[client.ApiClient] = None):
        self.api_client = api_client or client.ApiClient()
        self.custom = client.CustomObjectsApi(self.api_client)
        self.networking = client.NetworkingV1Api(self.api_client)

    def _to_dict(self, obj) -> dict:
        # camelCase keys, same shape as the custom object API returns
        return self.api_client.sanitize_for_serialization(obj)

    # Knative ingresses

    def list_ingresses(self, namespace: str = "") -> List[dict]:
        if namespace:
            res = self.custom.list_namespaced_custom_object(
                group=KNATIVE_GROUP,
                version=KNATIVE_VERSION,
                namespace=namespace,
                plural=INGRESS_PLURAL,
            )
        else:
            res = self.custom.list_cluster_custom_object(
                group=KNATIVE_GROUP,
                version=KNATIVE_VERSION,
                plural=INGRESS_PLURAL,
            )
        return res.get("items", [])

    def get_ingress(self, namespace: str, name: str) -> Optional[dict]:
        try:
            return self.custom.get_namespaced_custom_object(
                group=KNATIVE_GROUP,
                version=KNATIVE_VERSION,
                namespace=namespace,
                plural=INGRESS_PLURAL,
                name=name,
            )
        except ApiException as e:
            if is_not_found(e):
                return None
            raise

    def patch_ingress(self, namespace: str, name: str, body: dict) -> dict:
        return self.custom.patch_namespaced_custom_object(
            group=KNATIVE_GROUP,
            version=KNATIVE_VERSION,
            namespace=namespace,
            plural=INGRESS_PLURAL,
            name=name,
            body=body,
        )

    # OpenShift routes

    def list_routes(self, label_selector: str) -> List[dict]:
        res = self.custom.list_cluster_custom_object(
            group=ROUTE_GROUP,
            version=ROUTE_VERSION,
            plural=ROUTE_PLURAL,
            label_selector=label_selector,
        )
        return res.get("items", [])

    def get_route(self, namespace: str, name: str) -> Optional[dict]:
        try:
            return self.custom.get_namespaced_custom_object(
                group=ROUTE_GROUP,
                version=ROUTE_VERSION,
                namespace=namespace,
                plural=ROUTE_PLURAL,
                name=name,
            )
        except ApiException as e:
            if is_not_found(e):
                return None
            raise

    def create_route(self, namespace: str, body: dict) -> dict:
        return self.custom.create_namespaced_custom_object(
            group=ROUTE_GROUP,
            version=ROUTE_VERSION,
            namespace=namespace,
            plural=ROUTE_PLURAL,
            body=body,
        )

    def replace_route(self, namespace: str, name: str, body: dict) -> dict:
        return self.custom.replace_namespaced_custom_object(
            group=ROUTE_GROUP,
            version=ROUTE_VERSION,
            namespace=namespace,
            plural=ROUTE_PLURAL,
            name=name,
            body=body,
        )

    def delete_route(self, namespace: str, name: str) -> bool:
        try:
            self.custom.delete_namespaced_custom_object(
                group=ROUTE_GROUP,
                version=ROUTE_VERSION,
                namespace=namespace,
                plural=ROUTE_PLURAL,
                name=name,
            )
        except ApiException as e:
            if is_not_found(e):
                return False
            raise
        return True

    # Network policies

    def get_network_policy(self, namespace: str, name: str) -> Optional[dict]:
        try:
            pol = self.networking.read_namespaced_network_policy(name, namespace)
        except ApiException as e:
            if is_not_found(e):
                return None
            raise
        return self._to_dict(pol)

    def create_network_policy(self, namespace: str, body: dict) -> bool:
        """Create the policy; False if something already holds the name."""
        try:
            self.networking.create_namespaced_network_policy(namespace, body)
        except ApiException as e:
            if is_conflict(e):
                return False
            raise
        return True

    def delete_network_policy(self, namespace: str, name: str) -> bool:
        try:
            self.networking.delete_namespaced_network_policy(name, namespace)
        except ApiException as e:
            if is_not_found(e):
                return False
            raise
        return True

    # Service mesh member roll

    def get_roster(self, namespace: str, name: str) -> dict:
        return self.custom.get_namespaced_custom_object(
            group=MAISTRA_GROUP,
            version=MAISTRA_VERSION,
            namespace=namespace,
            plural=SMMR_PLURAL,
            name=name,
        )

    def replace_roster(self, namespace: str, name: str, body: dict) -> dict:
        """Replace the roll; raises ApiException(409) if body's resourceVersion is stale."""
        return self.custom.replace_namespaced_custom_object(
            group=MAISTRA_GROUP,
            version=MAISTRA_VERSION,
            namespace=namespace,
            plural=SMMR_PLURAL,
            name=name,
            body=body,
        )


# ─────────────────────────────────────────────
# Finalizers
# ─────────────────────────────────────────────
def _finalizer_patch(ing: dict, fins: List[str]) -> dict:
    meta = (ing or {}).get("metadata", {}) or {}
    patch_meta = {"finalizers": fins}
    # Carry the resourceVersion so a stale view of the finalizer list is rejected.
    if meta.get("resourceVersion"):
        patch_meta["resourceVersion"] = meta["resourceVersion"]
    return {"metadata": patch_meta}


def _apply_finalizers(kc: KnativeClient, ing: dict, fins: List[str]) -> None:
    meta = ing["metadata"]
    updated = kc.patch_ingress(meta["namespace"], meta["name"], _finalizer_patch(ing, fins))
    # Keep the caller's copy current so later steps in the same pass see the new state.
    meta["finalizers"] = fins
    rv = ((updated or {}).get("metadata", {}) or {}).get("resourceVersion")
    if rv:
        meta["resourceVersion"] = rv


def ensure_finalizer(kc: KnativeClient, ing: dict, finalizer: str = FINALIZER) -> bool:
    meta = ing.get("metadata", {}) or {}
    fins = list(meta.get("finalizers") or [])
    if finalizer in fins:
        return False
    fins.append(finalizer)
    _apply_finalizers(kc, ing, fins)
    return True


def remove_finalizer(kc: KnativeClient, ing: dict, finalizer: str = FINALIZER) -> bool:
    meta = ing.get("metadata", {}) or {}
    fins = list(meta.get("finalizers") or [])
    if finalizer not in fins:
        return False
    fins = [f for f in fins if f != finalizer]
    _apply_finalizers(kc, ing, fins)
    return True


def load_kube() -> None:
    try:
        config.load_incluster_config()
        print("[controller] using in-cluster config", flush=True)
    except Exception:
        config.load_kube_config()
        print("[controller] using kubeconfig (local)", flush=True)
