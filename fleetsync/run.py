#!/usr/bin/env python3
"""Run the FleetSync control API"""
import uvicorn

from fleetsync.core.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "fleetsync.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="debug" if settings.DEBUG else "info",
    )
