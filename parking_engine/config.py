import os
from decimal import Decimal

# Подключение к базе данных
MONGODB_URI = os.getenv("MONGODB_URI", "mongodb://localhost:27017/")
MONGODB_DATABASE = os.getenv("MONGODB_DATABASE", "smart_parking")

# Размеры пулов: сначала места для машин, затем для мотоциклов
CAR_SPOTS = int(os.getenv("CAR_SPOTS", "30"))
MOTORCYCLE_SPOTS = int(os.getenv("MOTORCYCLE_SPOTS", "30"))

# Тарифы в рублях/час
DEFAULT_CAR_RATE = Decimal(os.getenv("DEFAULT_CAR_RATE", "3.00"))
DEFAULT_MOTORCYCLE_RATE = Decimal(os.getenv("DEFAULT_MOTORCYCLE_RATE", "2.00"))
MAX_HOURLY_RATE = Decimal(os.getenv("MAX_HOURLY_RATE", "100"))

# "prorated" или "hourly"
BILLING_MODEL = os.getenv("BILLING_MODEL", "prorated")

TICK_INTERVAL_SECONDS = float(os.getenv("TICK_INTERVAL_SECONDS", "1"))
RESYNC_INTERVAL_SECONDS = float(os.getenv("RESYNC_INTERVAL_SECONDS", "300"))

CURRENCY_SYMBOL = os.getenv("CURRENCY_SYMBOL", "R$")

API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8008"))
