from __future__ import annotations

import os
import pathlib
from zoneinfo import ZoneInfo

LLM_DEBUG = os.getenv("LLM_DEBUG", "0") == "1"

# -------------------------
# 로컬 모델 서버 설정
# -------------------------
LLM_BASE_URL = os.getenv("LLM_BASE_URL", "http://localhost:11434/v1").rstrip("/")
LLM_API_KEY = os.getenv("LLM_API_KEY", "local")
LLM_MODEL = os.getenv("LLM_MODEL", "gemma3n").strip() or "gemma3n"
LLM_MAX_TOKENS = int(os.getenv("LLM_MAX_TOKENS", "4096"))
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.8"))
LLM_TOP_K = int(os.getenv("LLM_TOP_K", "40"))
LLM_SEED = int(os.getenv("LLM_SEED", "101"))
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "120"))

# -------------------------
# 캘린더 설정
# -------------------------
CALENDAR_TIMEZONE_NAME = os.getenv("CALENDAR_TIMEZONE", "UTC").strip() or "UTC"
LOCAL_TZ = ZoneInfo(CALENDAR_TIMEZONE_NAME)
CALENDAR_ACCESS = os.getenv("CALENDAR_ACCESS", "1") == "1"

BASE_DIR = pathlib.Path(__file__).resolve().parent.parent
EVENTS_DATA_FILE = pathlib.Path(
    os.getenv("EVENTS_DATA_FILE", str(BASE_DIR / "events_data.json")))

TESSERACT_CMD = os.getenv("TESSERACT_CMD", "").strip()

# -------------------------
# 런타임 제한/기본값
# -------------------------
MAX_SUMMARY_EVENTS = 30
UPCOMING_DAYS = 30
DELETE_SEARCH_DAYS = 183
DEFAULT_EVENT_DURATION_MINUTES = 60
FALLBACK_EVENT_OFFSET_MINUTES = 60
MAX_IMAGE_DATA_URL_CHARS = int(os.getenv("MAX_IMAGE_DATA_URL_CHARS", "4500000"))
IMAGE_TOO_LARGE_MESSAGE = "The attached image is too large. Please shrink it to about 3MB or less."

NO_CALENDAR_ACCESS = "Access denied"
NO_CALENDAR_COLLABORATOR = "No calendar access."
NO_EVENTS = "No events."
