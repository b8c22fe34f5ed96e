import os
import sys
from pathlib import Path

from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent.parent
load_dotenv(ROOT_DIR / ".env")

LINE_CHANNEL_ACCESS_TOKEN = os.environ.get("LINE_CHANNEL_ACCESS_TOKEN", "")
LINE_CHANNEL_SECRET = os.environ.get("LINE_CHANNEL_SECRET", "")
TELEGRAM_BOT_TOKEN = os.environ.get("TELEGRAM_BOT_TOKEN", "")

HOST = os.environ.get("HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "3000"))

AGENT_BACKEND = os.environ.get("AGENT_BACKEND", "http")  # "http" or "claude"
SERVER_URL = os.environ.get("SERVER_URL", "http://server:4096").rstrip("/")
SERVER_PASSWORD = os.environ.get("SERVER_PASSWORD", "")
WORKING_DIR = os.environ.get("WORKING_DIR", str(ROOT_DIR))

# Seconds; PROMPT_TIMEOUT_MS is still honoured for older deployments
if "PROMPT_TIMEOUT_MS" in os.environ and "PROMPT_TIMEOUT" not in os.environ:
    PROMPT_TIMEOUT = int(os.environ["PROMPT_TIMEOUT_MS"]) / 1000
else:
    PROMPT_TIMEOUT = float(os.environ.get("PROMPT_TIMEOUT", "300"))  # 5 min default

ALLOWED_USER_IDS = {
    uid.strip()
    for uid in os.environ.get("ALLOWED_USER_IDS", "").split(",")
    if uid.strip()
}

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

# Platform text limits
LINE_MAX_TEXT = 5000
TELEGRAM_MAX_TEXT = 4096

ERROR_PREVIEW_CHARS = 200


def require(**values: str) -> None:
    """Exit if any of the given settings is empty."""
    missing = [name for name, value in values.items() if not value]
    if missing:
        print(f"FATAL: missing {', '.join(missing)}. Refusing to start.")
        sys.exit(1)
