"""
kvquorum client module

Network clients for DNS discovery and for the monitor and data ports.
"""
