import os
from dotenv import load_dotenv

load_dotenv()

PREVIEW_DIR = os.getenv(
    "PREVIEW_DIR", os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "previews"))
)
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")
MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE_BYTES", str(10 * 1024 * 1024)))
FILE_ID_LENGTH = max(4, min(32, int(os.getenv("FILE_ID_LENGTH", "9"))))

ACCEPTED_MIME_TYPES = [
    item.strip()
    for item in os.getenv(
        "ACCEPTED_MIME_TYPES",
        "image/png,image/jpeg,image/gif,image/webp,application/pdf,application/msword,"
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ).split(",")
    if item.strip()
]

# Compression level selector
DEFAULT_COMPRESSION_LEVEL = max(0, min(100, int(os.getenv("DEFAULT_COMPRESSION_LEVEL", "50"))))
LEVEL_SNAP_POINTS = [int(p) for p in os.getenv("LEVEL_SNAP_POINTS", "").split(",") if p.strip()]
LEVEL_SNAP_THRESHOLD = int(os.getenv("LEVEL_SNAP_THRESHOLD", "5"))
LEVEL_STEP = max(1, int(os.getenv("LEVEL_STEP", "1")))

# Processing
PROCESSING_DELAY_SECONDS = float(os.getenv("PROCESSING_DELAY_SECONDS", "2.0"))
PROCESSING_TIMEOUT_SECONDS = float(os.getenv("PROCESSING_TIMEOUT_SECONDS", "0"))

# Session lifetime
ENABLE_CLEANER = os.getenv("ENABLE_CLEANER", "true").lower() in {"true", "1", "yes"}
SESSION_IDLE_MINUTES = int(os.getenv("SESSION_IDLE_MINUTES", "60"))
