from __future__ import annotations

from pathlib import Path
from typing import Dict, List
import os


BASE_DIR = Path(__file__).resolve().parents[1]
OUT_DIR = BASE_DIR / "out"
DB_PATH = OUT_DIR / "cardcraft.db"

LOG_LEVEL = os.environ.get("CARDCRAFT_LOG_LEVEL", "INFO")

HEADER_TEXT = "Thank You"
SIGNATURE_LINE = "With appreciation,"
SIGNERS = os.environ.get("CARDCRAFT_SIGNERS", "The Happy Couple")

DEFAULT_TEMPLATE = "classic"
DEFAULT_CARDS_PER_PAGE = 4
ALLOWED_CARDS_PER_PAGE = (1, 2, 4)

RENDER_TIMEOUT_SECONDS = float(os.environ.get("CARDCRAFT_RENDER_TIMEOUT", "30"))
# first try plus one retry
RENDER_ATTEMPTS = 2

TEMP_PROJECT_TTL_SECONDS = float(os.environ.get("CARDCRAFT_TEMP_TTL", "3600"))

# unpaid projects only get a preview of the first sheet
PREVIEW_CARD_LIMIT = 4

PLAN_PRICES_CENTS: Dict[str, int] = {
    "starter": 1900,
    "premium": 3900,
    "unlimited": 7900,
}
CURRENCY = "usd"

OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY", "")
OPENAI_MODELS: List[str] = [
    m.strip()
    for m in os.environ.get("CARDCRAFT_OPENAI_MODELS", "gpt-4o-mini,gpt-4o,gpt-3.5-turbo").split(",")
    if m.strip()
]
STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")

USER_FAILURE_MESSAGE = "We could not generate your cards, please try again."


def set_out_dir(path: Path) -> None:
    global OUT_DIR, DB_PATH
    OUT_DIR = path
    DB_PATH = OUT_DIR / "cardcraft.db"
