import os

db_url = os.environ.get("DB_URL", "sqlite://:memory:")
users_ms_url = os.environ.get("USERS_MS_URL", "http://localhost:8000")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

OPENING_HOUR = int(os.environ.get("BOOKING_OPENING_HOUR", "8"))
CLOSING_HOUR = int(os.environ.get("BOOKING_CLOSING_HOUR", "20"))
BUFFER_MINUTES = int(os.environ.get("BOOKING_BUFFER_MINUTES", "60"))
DURATIONS = tuple(
    int(d) for d in os.environ.get("BOOKING_DURATIONS", "60,120,240,480").split(",")
)
TIMEZONE = os.environ.get("BOOKING_TIMEZONE", "Europe/Amsterdam")

SLOTS_CACHE_TTL = int(os.environ.get("SLOTS_CACHE_TTL", "60"))
