import os


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in (
        "1", "true", "yes", "on"
    )


# ----------------------------
# Database
# ----------------------------
DATABASE_URL = os.environ.get("DATABASE_URL", None)
# pool settings apply to Postgres only
DB_POOL_SIZE = int(os.environ.get("DB_POOL_SIZE", "10"))
DB_MAX_OVERFLOW = int(os.environ.get("DB_MAX_OVERFLOW", "10"))
DB_POOL_TIMEOUT = int(os.environ.get("DB_POOL_TIMEOUT", "30"))
# 0: use the pool size
DB_GATE_LIMIT = int(os.environ.get("DB_GATE_LIMIT", "0"))

# ----------------------------
# Telegram
# ----------------------------
TELEGRAM_BOT_TOKEN = os.environ.get("TELEGRAM_BOT_TOKEN", "")
TELEGRAM_ADMIN_CHAT_ID = os.environ.get("TELEGRAM_ADMIN_CHAT_ID", "")
TELEGRAM_CHANNEL_ID = os.environ.get("TELEGRAM_CHANNEL_ID", "")
TELEGRAM_API_URL = os.environ.get(
    "TELEGRAM_API_URL", "https://api.telegram.org"
)
TELEGRAM_TIMEOUT = float(os.environ.get("TELEGRAM_TIMEOUT", "10"))
PUBLIC_BASE_URL = os.environ.get("PUBLIC_BASE_URL", "")
# echoed back by Telegram in X-Telegram-Bot-Api-Secret-Token
TELEGRAM_WEBHOOK_SECRET = os.environ.get("TELEGRAM_WEBHOOK_SECRET", "")

# ----------------------------
# Orders & inventory
# ----------------------------
# rejected orders keep their seats unless this is switched on
RELEASE_ON_REJECT = _flag("RELEASE_ON_REJECT", "false")
LINK_UNIT_PRICE = int(os.environ.get("LINK_UNIT_PRICE", "2990"))
CURRENCY = os.environ.get("CURRENCY", "RUB")
DISPLAY_TZ = os.environ.get("DISPLAY_TZ", "Europe/Moscow")

# ----------------------------
# Admin
# ----------------------------
ADMIN_USERNAME = os.environ.get("ADMIN_USERNAME", "admin")
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "supasecret")
ADMIN_TOKEN_SECRET = os.environ.get(
    "ADMIN_TOKEN_SECRET", "dev-secret-change-me"
)
ADMIN_TOKEN_TTL_SECONDS = int(
    os.environ.get("ADMIN_TOKEN_TTL_SECONDS", str(12 * 3600))
)

# ----------------------------
# Callback de-duplication
# ----------------------------
INTERACTION_BACKEND = os.environ.get("INTERACTION_BACKEND", "sql").lower()
REDIS_URL = os.environ.get("REDIS_URL", "redis://127.0.0.1:6379")

# ----------------------------
# Logging
# ----------------------------
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
LOG_JSON = _flag("LOG_JSON", "true")
