# app.py
from __future__ import annotations

import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List

from kubernetes.client.rest import ApiException

from config import LOOP_SECONDS, WATCH_NAMESPACE, WORKERS, debug
from errors import NoValidLoadbalancerDomain, RosterConflict, UnsupportedTLSTermination
from k8s import KnativeClient, load_kube
from reconcile import reconcile_ingress


def _key(ing: dict) -> str:
    meta = (ing or {}).get("metadata", {}) or {}
    return f"{meta.get('namespace', '')}/{meta.get('name', '')}"


def reconcile_one(kc: KnativeClient, ing: dict) -> bool:
    """Reconcile a single ingress. Returns False when it must be retried on the next loop."""
    key = _key(ing)
    try:
        reconcile_ingress(kc, ing)
    except NoValidLoadbalancerDomain:
        debug(f"[controller] {key}: no internal domain in status yet, requeueing")
        return False
    except UnsupportedTLSTermination as e:
        # Stays broken until someone fixes the annotation.
        print(f"[controller] {key}: ERROR {e}", flush=True)
        return False
    except RosterConflict as e:
        print(f"[controller] {key}: {e}, requeueing", flush=True)
        return False
    except ValueError as e:
        print(f"[controller] {key}: ERROR invalid ingress spec: {e}", flush=True)
        return False
    except ApiException as e:
        print(f"[controller] {key}: API error {e.status} {e.reason}, requeueing", flush=True)
        return False
    return True


def reconcile_namespace(kc: KnativeClient, ingresses: List[dict]) -> int:
    """Ingresses of one namespace run one after another; returns how many need a retry."""
    return sum(0 if reconcile_one(kc, ing) else 1 for ing in ingresses)


def group_by_namespace(ingresses: List[dict]) -> Dict[str, List[dict]]:
    groups: Dict[str, List[dict]] = defaultdict(list)
    for ing in ingresses:
        ns = ((ing or {}).get("metadata", {}) or {}).get("namespace", "")
        groups[ns].append(ing)
    return dict(groups)


def run_once(kc: KnativeClient, pool: ThreadPoolExecutor, namespace: str = WATCH_NAMESPACE) -> int:
    """One pass over all ingresses. Namespaces run concurrently, so the member roll sees contention."""
    groups = group_by_namespace(kc.list_ingresses(namespace))
    futures = [pool.submit(reconcile_namespace, kc, items) for items in groups.values()]
    return sum(f.result() for f in futures)


# ─────────────────────────────────────────────
# Main
# ─────────────────────────────────────────────
def main() -> None:
    load_kube()
    kc = KnativeClient()

    scope = WATCH_NAMESPACE or "all namespaces"
    print(f"[controller] reconciling knative ingresses in {scope} every {LOOP_SECONDS}s with {WORKERS} workers", flush=True)

    last_pending = None

    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        try:
            while True:
                try:
                    pending = run_once(kc, pool)
                except ApiException as e:
                    print(f"[controller] listing ingresses failed: {e.status} {e.reason}", flush=True)
                    pending = None

                if pending != last_pending:
                    print(f"[controller] pending={pending}", flush=True)
                    last_pending = pending

                time.sleep(LOOP_SECONDS)

        except KeyboardInterrupt:
            print("[controller] shutting down", flush=True)


if __name__ == "__main__":
    main()
