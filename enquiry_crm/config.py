"""
Configuration and shared helpers
"""

import os
import hashlib
import secrets
import logging
from datetime import datetime, timezone, date
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from pathlib import Path
import pytz

logger = logging.getLogger("config")

# Load .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# MongoDB
MONGO_URL = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
DB_NAME = os.environ.get('DB_NAME', 'enquiry_crm')
MONGO_TIMEOUT_MS = int(os.environ.get('MONGO_TIMEOUT_MS', '5000'))

client = AsyncIOMotorClient(MONGO_URL, serverSelectionTimeoutMS=MONGO_TIMEOUT_MS)
db = client[DB_NAME]

# "Today" for follow-ups and date validation is evaluated in this timezone
APP_TIMEZONE = pytz.timezone(os.environ.get('APP_TIMEZONE', 'Asia/Kolkata'))

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')

# Sessions
SESSION_TTL_HOURS = int(os.environ.get('SESSION_TTL_HOURS', '12'))
REMEMBER_ME_TTL_DAYS = int(os.environ.get('REMEMBER_ME_TTL_DAYS', '30'))

# Bootstrap administrator, created when the users collection is empty
DEFAULT_ADMIN_EMAIL = os.environ.get('DEFAULT_ADMIN_EMAIL', 'admin@example.com')
DEFAULT_ADMIN_USERNAME = os.environ.get('DEFAULT_ADMIN_USERNAME', 'admin')
DEFAULT_ADMIN_PASSWORD = os.environ.get('DEFAULT_ADMIN_PASSWORD')

# Scheduler
SCHEDULER_ENABLED = os.environ.get('SCHEDULER_ENABLED', 'true').lower() in ('1', 'true', 'yes')
LEDGER_RECONCILE_HOUR = int(os.environ.get('LEDGER_RECONCILE_HOUR', '3'))


# ==================== HELPERS ====================

PBKDF2_ITERATIONS = 120_000


def hash_password(password: str, salt: str = None) -> str:
    """Salted PBKDF2-SHA256 hash, stored as ``salt$hexdigest``."""
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS)
    return f"{salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    if not stored or "$" not in stored:
        return False
    salt, _ = stored.split("$", 1)
    return secrets.compare_digest(hash_password(password, salt), stored)


def generate_token() -> str:
    """Secure session token"""
    return secrets.token_urlsafe(32)


def now_iso() -> str:
    """Current UTC time as ISO-8601"""
    return datetime.now(timezone.utc).isoformat()


def today_local() -> date:
    """Current calendar date in the application timezone"""
    return datetime.now(APP_TIMEZONE).date()
