#!/usr/bin/env python
"""Simple entry point to run the ActionPilot server."""

import uvicorn

from actionpilot.config import settings

if __name__ == "__main__":
    settings.setup_logging()
    uvicorn.run(
        "actionpilot.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.api_reload,
        log_level=settings.log_level.lower(),
    )
