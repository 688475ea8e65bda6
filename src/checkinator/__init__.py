"""Checkinator: claim DHCP-leased devices and see who is at the space."""

__version__ = "0.1.0"
