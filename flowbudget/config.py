import os
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = os.path.dirname(os.path.dirname(__file__))
DB_FILE = os.path.join(BASE_DIR, "flowbudget.sqlite")

DATABASE_URL = os.environ.get("FLOWBUDGET_DATABASE_URL", f"sqlite:///{DB_FILE}")
LOG_LEVEL = os.environ.get("FLOWBUDGET_LOG_LEVEL", "INFO").upper()
CURRENCY = os.environ.get("FLOWBUDGET_CURRENCY", "CHF")
DEFAULT_PAYDAY_DAY = int(os.environ.get("FLOWBUDGET_DEFAULT_PAYDAY", "25"))


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in ("1", "true", "yes", "on")


# Settlements may drive the payer's account below zero unless this is switched off.
ALLOW_SETTLEMENT_OVERDRAW = _flag("FLOWBUDGET_ALLOW_OVERDRAW", "true")
