"""
Run script for SprintSync API.
"""

import uvicorn

from sprintsync.infrastructure.config import get_settings

if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "sprintsync.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
        log_level=settings.log_level,
    )
