#!/usr/bin/env python3
"""Start the confpay API server."""
import os

import uvicorn

from confpay.config import settings

if __name__ == "__main__":
    # Hosting platforms inject PORT
    port = int(os.environ.get("PORT", settings.port))
    print(f"Starting {settings.app_name} ({settings.app_env}) on {settings.host}:{port}")
    uvicorn.run(
        "confpay.main:app",
        host=settings.host,
        port=port,
        log_level="debug" if settings.debug else "info",
        reload=settings.is_development,
    )
