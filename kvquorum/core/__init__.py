"""
kvquorum core

Control logic for one member: discovery barrier, role resolution, monitor
agent bootstrap, monitor quorum, graceful handover and health probes.
"""
