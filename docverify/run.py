"""Run script for the DocVerify API"""

import sys
from pathlib import Path

import uvicorn

# Make the repository root importable when run as a script
ROOT_DIR = Path(__file__).resolve().parent
if str(ROOT_DIR.parent) not in sys.path:
    sys.path.append(str(ROOT_DIR.parent))

from docverify.app.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "docverify.app.main:app",
        host=settings.APP_HOST,
        port=settings.APP_PORT,
        reload=settings.DEBUG,
        log_level="info"
    )
