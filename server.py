"""
GrantGate - application identifier allocation and archive administration.
HTTP entry point.
"""

import os

import uvicorn

from app.main import app
from core.config import logger


# =============================================================================
# Main
# =============================================================================

if __name__ == "__main__":
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8080"))
    logger.info("grantgate_starting", extra={"host": host, "port": port})
    uvicorn.run(app, host=host, port=port)
