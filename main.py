"""
main.py
========
Central entry point for the audiotext service.

Run with:
    uvicorn main:app
"""

import logging

from dotenv import load_dotenv

load_dotenv()  # Load .env before any module reads env vars

from audiotext.config import get_settings  # noqa: E402

# Configure logging for the entire application
logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)

# Quiet the cloud storage client's transport logs
for _noisy_logger_name in (
    "google",
    "google.auth",
    "google.cloud.storage",
    "urllib3",
    "urllib3.connectionpool",
):
    logging.getLogger(_noisy_logger_name).setLevel(logging.WARNING)

from audiotext.api.upload import app  # noqa: F401, E402

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="127.0.0.1", port=8000)
