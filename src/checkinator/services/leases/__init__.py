from .reconciler import REQUIRED_FIELDS, KeaLeaseFile, Lease, find_lease_by_ip, reconcile

__all__ = ["REQUIRED_FIELDS", "KeaLeaseFile", "Lease", "find_lease_by_ip", "reconcile"]
