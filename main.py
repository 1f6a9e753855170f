#!/usr/bin/env python3
"""
Run the Venue Availability API with uvicorn.

Host, port, reload and log level come from venue_availability.config
(environment or .env).
"""

import uvicorn

from venue_availability.config import API_HOST, API_PORT, API_RELOAD, LOG_LEVEL

if __name__ == "__main__":
    uvicorn.run(
        "venue_availability.main:app",
        host=API_HOST,
        port=API_PORT,
        reload=API_RELOAD,
        log_level=LOG_LEVEL.lower(),
    )
