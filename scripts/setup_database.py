#!/usr/bin/env python3
"""
Device store setup script for FleetSync.

Creates the device-store table and reports what is already persisted: a saved
session and the number of queued offline mutations.
"""

import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(project_root))

from fleetsync.core.config import settings
from fleetsync.core.keys import OFFLINE_QUEUE_KEY, SESSION_KEY
from fleetsync.db.init_db import init_database
from fleetsync.db.session import build_engine
from fleetsync.services.device_store import DeviceStore, StoreCorruptionError


def main():
    """Initialize the device store based on configuration"""
    print("FleetSync Device Store Setup")
    print("=" * 40)
    print(f"Database URL: {settings.DATABASE_URL}")

    print("\nInitializing device store...")
    try:
        engine = build_engine(settings.DATABASE_URL)
        tables = init_database(engine)
        print(f"Tables: {', '.join(tables)}")
    except Exception as e:
        print(f"Device store initialization failed: {e}")
        return False

    store = DeviceStore.from_engine(engine)
    print(f"Saved session: {'yes' if store.get(SESSION_KEY) else 'no'}")
    try:
        queue = store.get_json(OFFLINE_QUEUE_KEY, default=[])
        print(f"Queued offline mutations: {len(queue) if isinstance(queue, list) else 0}")
    except StoreCorruptionError as e:
        print(f"Warning: offline queue is unreadable: {e}")

    print("Device store ready.")
    return True


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
