import os
from decimal import Decimal

# Get DB connection string from environment variables.
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./marketplace.db")

# Platform cut applied when a vendor has no commission rate on record.
DEFAULT_COMMISSION_RATE = Decimal(os.getenv("DEFAULT_COMMISSION_RATE", "10"))

SESSION_TTL_HOURS = int(os.getenv("SESSION_TTL_HOURS", "72"))

# Seeded on startup when both are present.
ADMIN_EMAIL = os.getenv("ADMIN_EMAIL")
ADMIN_PASSWORD = os.getenv("ADMIN_PASSWORD")

# RabbitMQ settings for domain events.
EVENTS_ENABLED = os.getenv("EVENTS_ENABLED", "0").strip().lower() in {"1", "true", "yes"}
RABBITMQ_HOST = os.getenv("RABBITMQ_HOST", "rabbitmq")
EVENTS_EXCHANGE = os.getenv("EVENTS_EXCHANGE", "events")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "console")

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
