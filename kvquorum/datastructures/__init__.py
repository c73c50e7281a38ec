"""Typed datastructures shared across kvquorum components."""

from .cluster_types import (
    ClusterView,
    FailoverRequest,
    KnownMonitor,
    KnownReplica,
    Member,
    MemberAddress,
    Role,
)

__all__ = [
    "ClusterView",
    "FailoverRequest",
    "KnownMonitor",
    "KnownReplica",
    "Member",
    "MemberAddress",
    "Role",
]
