# policies/allow_all.py
from typing import Dict, Any

ALLOW_ALL_NAME = "knative-serving-allow-all"

MANAGED_BY_LABEL = "serving.knative.openshift.io/managed-by"
MANAGED_BY = "ingress-controller"


def make_network_policy_allow_all(ns: str) -> Dict[str, Any]:
    """
    Allow all ingress traffic to every pod in the namespace.
    Joining the mesh isolates the namespace; this keeps routed traffic flowing.
    """
    return {
        "apiVersion": "networking.k8s.io/v1",
        "kind": "NetworkPolicy",
        "metadata": {
            "name": ALLOW_ALL_NAME,
            "namespace": ns,
            "labels": {
                MANAGED_BY_LABEL: MANAGED_BY,
            },
        },
        "spec": {
            "podSelector": {},
            "ingress": [{}],
        },
    }
