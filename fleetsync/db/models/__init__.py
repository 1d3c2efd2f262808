"""Database models"""

from fleetsync.db.models.device_record import DeviceRecord

__all__ = [
    "DeviceRecord",
]
