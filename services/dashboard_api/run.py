#!/usr/bin/env python3
"""
Dashboard API Entry Point

This script starts the devlog bot dashboard API.
"""

import uvicorn

from config.settings import get_settings


def main():
    """Start the dashboard API."""
    settings = get_settings()

    uvicorn.run(
        "services.dashboard_api.main:create_app",
        factory=True,
        host=settings.service.host,
        port=settings.service.port,
        reload=settings.service.reload,
        log_level="debug" if settings.debug else settings.monitoring.log_level.lower(),
    )


if __name__ == "__main__":
    main()
