import logging
import os
from pathlib import Path

# SQLite file location (users, authorization requests, audit log)
DATA_DIR = Path(os.getenv("MEDSECURE_DATA_DIR", "./data"))
DATA_DIR.mkdir(parents=True, exist_ok=True)
DB_PATH = DATA_DIR / "medsecure.db"
DB_URL = os.getenv("MEDSECURE_DB_URL", f"sqlite:///{DB_PATH.resolve()}")

# Seconds a store call may block on a locked database before failing
STORE_TIMEOUT_SECONDS = float(os.getenv("STORE_TIMEOUT_SECONDS", "10"))

# Sessions
JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALG = "HS256"
ACCESS_TOKEN_TTL_MIN = int(os.getenv("ACCESS_TOKEN_TTL_MIN", "120"))

# Envelope format (.medsecure files)
MAGIC = "MEDSECURE_2024_ENCRYPTED_FILE"
SEPARATOR = "::"
ENVELOPE_SUFFIX = ".medsecure"
# Static pre-shared passphrase; the default matches files already in circulation
ENCRYPTION_KEY = os.getenv("MEDSECURE_ENCRYPTION_KEY", "MedSecure_Secret_Key_2024_Healthcare_Platform")

MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(100 * 1024 * 1024)))

# External analysis service
ANALYSIS_URL = os.getenv("MEDSECURE_ANALYSIS_URL", "http://localhost:8001/analysis")
ANALYSIS_TIMEOUT_SECONDS = float(os.getenv("ANALYSIS_TIMEOUT_SECONDS", "60"))

# Email promoted to admin by init_db.py, if set
BOOTSTRAP_ADMIN = os.getenv("MEDSECURE_BOOTSTRAP_ADMIN")

LOG_LEVEL = os.getenv("MEDSECURE_LOG_LEVEL", "INFO")


def configure_logging(level: str = LOG_LEVEL) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
