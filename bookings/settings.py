import os
from decimal import Decimal

db_url = os.environ.get("DB_URL", "sqlite://:memory:")
users_ms_url = os.environ.get("USERS_MS_URL", "http://localhost:8000")
venues_ms_url = os.environ.get("VENUES_MS_URL", "http://localhost:8001")
payments_ms_url = os.environ.get("PAYMENTS_MS_URL", "http://localhost:8003")
notifications_ms_url = os.environ.get("NOTIFICATIONS_MS_URL", "http://localhost:8004")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
GENERATE_SCHEMAS = os.environ.get("GENERATE_SCHEMAS", "false").lower() == "true"

DEFAULT_CURRENCY = os.environ.get("DEFAULT_CURRENCY", "GBP")

# Cancellation policy defaults; venues may override both per venue.
CANCELLATION_CUTOFF_HOURS = int(os.environ.get("CANCELLATION_CUTOFF_HOURS", "24"))
CANCELLATION_ADMIN_FEE = Decimal(os.environ.get("CANCELLATION_ADMIN_FEE", "2.00"))

WALLET_CREDIT_VALIDITY_DAYS = int(os.environ.get("WALLET_CREDIT_VALIDITY_DAYS", "365"))
WIZARD_TTL_SECONDS = int(os.environ.get("WIZARD_TTL_SECONDS", "3600"))
