from .models import Device
from .store import DeviceStore, SQLiteDeviceStore

__all__ = ["Device", "DeviceStore", "SQLiteDeviceStore"]
