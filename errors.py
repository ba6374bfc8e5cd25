# errors.py
from __future__ import annotations


class ControllerError(Exception):
    """Base class for errors raised by the ingress controller."""


class NoValidLoadbalancerDomain(ControllerError):
    """The ingress has no parseable internal domain in its load balancer status yet.

    Not a failure: the ingress is simply not ready. The next loop picks it up again.
    """

    def __init__(self, namespace: str = "", name: str = ""):
        self.namespace = namespace
        self.name = name
        super().__init__(f"no parseable internal domain for ingress {namespace}/{name} found")


class UnsupportedTLSTermination(ControllerError):
    """The tlsTermination annotation holds a value we cannot translate into a route."""

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"unsupported TLS termination {value!r} (only 'passthrough' is supported)")


class RosterConflict(ControllerError):
    """Optimistic-concurrency retries on the member roll were exhausted."""

    def __init__(self, namespace: str, attempts: int):
        self.namespace = namespace
        self.attempts = attempts
        super().__init__(f"gave up updating member roll for {namespace} after {attempts} conflicts")
