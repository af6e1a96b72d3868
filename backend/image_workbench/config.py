"""Application configuration. Loads from environment and .env file."""
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from image_workbench.staging import StagingConfig

BASE_DIR = Path(__file__).resolve().parent.parent
# Load .env from cwd, then backend/.env, then project root .env
load_dotenv()
load_dotenv(BASE_DIR / ".env")
load_dotenv(BASE_DIR.parent / ".env")

# Staging paths (override with env). Created by the store on startup.
UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", str(BASE_DIR / "uploads")))
OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", str(BASE_DIR / "output")))

# Staged files are removed this long after the response was handed off
CLEANUP_DELAY_SECONDS = float(os.getenv("CLEANUP_DELAY_SECONDS", "60"))
SWEEP_INTERVAL_SECONDS = float(os.getenv("SWEEP_INTERVAL_SECONDS", "5"))

# Limits (env)
MAX_UPLOAD_SIZE_MB = int(os.getenv("MAX_UPLOAD_SIZE_MB", "100"))
MAX_UPLOAD_SIZE_BYTES = MAX_UPLOAD_SIZE_MB * 1024 * 1024
MAX_BULK_FILES = int(os.getenv("MAX_BULK_FILES", "50"))

# Compression
DEFAULT_COMPRESS_QUALITY = int(os.getenv("DEFAULT_COMPRESS_QUALITY", "70"))
MIN_COMPRESS_QUALITY = 10
MAX_COMPRESS_QUALITY = 100

# Server (for uvicorn)
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "5000"))
# CORS: comma-separated origins, e.g. "http://localhost:3000,http://127.0.0.1:3000"
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("workbench")


def staging_config() -> StagingConfig:
    return StagingConfig(
        inbound_dir=UPLOAD_DIR,
        outbound_dir=OUTPUT_DIR,
        cleanup_delay=CLEANUP_DELAY_SECONDS,
        sweep_interval=SWEEP_INTERVAL_SECONDS,
    )
