"""
Semantic type aliases for kvquorum datastructures.

These aliases keep signatures self-documenting: a hostname, an IP address
and a monitor identity are all strings on the wire but mean very different
things to the control logic.
"""

from typing import TypeAlias

# Time types
Timestamp: TypeAlias = float
DurationSeconds: TypeAlias = float
DurationMilliseconds: TypeAlias = int

# Naming and addressing
HostName: TypeAlias = str  # short member hostname, e.g. "redis-node-0"
FullHostName: TypeAlias = str  # hostname qualified with the headless service domain
IpAddress: TypeAlias = str
PortNumber: TypeAlias = int
ServiceName: TypeAlias = str  # DNS name of a discovery service
ClusterName: TypeAlias = str  # logical monitored target name, e.g. "mymaster"
Ordinal: TypeAlias = int

# Monitor agents
MonitorIdentity: TypeAlias = str  # 40 hex characters, stable per hostname
QuorumThreshold: TypeAlias = int
ConfigEpoch: TypeAlias = int

# Replication
ReplicationOffset: TypeAlias = int
RequestId: TypeAlias = str
