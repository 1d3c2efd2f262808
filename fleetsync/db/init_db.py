#!/usr/bin/env python3
"""Initialize the device store with proper schema"""

import logging
from typing import List, Optional

from sqlalchemy.engine import Engine

from fleetsync.db.base import Base
from fleetsync.db.models import device_record as _model_device_record  # noqa: F401
from fleetsync.db.session import build_engine

logger = logging.getLogger("fleetsync.database")


def init_database(engine: Optional[Engine] = None) -> List[str]:
    """Create all tables and return their names"""
    engine = engine or build_engine()
    try:
        logger.info("Creating device store tables...")
        Base.metadata.create_all(bind=engine, checkfirst=True)
    except Exception as e:
        logger.error(f"Error initializing device store: {e}", extra={
            "error_type": type(e).__name__,
        })
        raise

    table_names = [table.name for table in Base.metadata.sorted_tables]
    logger.info("Created device store tables", extra={
        "table_count": len(table_names),
        "tables": table_names
    })
    return table_names


if __name__ == "__main__":
    init_database()
