import logging

from pymongo import ASCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import ConnectionFailure, PyMongoError

from parking_engine.config import MONGODB_DATABASE, MONGODB_URI

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def connect(uri: str = MONGODB_URI, name: str = MONGODB_DATABASE) -> Database:
    """Клиент создаётся лениво: соединение устанавливается при первом запросе"""
    logger.info(f"Connecting to MongoDB at {uri}")
    client = MongoClient(uri, serverSelectionTimeoutMS=5000, tz_aware=True)
    return client[name]


def ensure_indexes(db: Database) -> bool:
    """Индексы для выборки активных сессий и профилей с тарифами"""
    try:
        db.parking_sessions.create_index([("user_id", ASCENDING), ("is_active", ASCENDING)])
        db.parking_sessions.create_index([("user_id", ASCENDING), ("license_plate", ASCENDING)])
        db.profiles.create_index("user_id", unique=True)
        logger.info("Подключение к базе данных установлено")
        return True
    except ConnectionFailure as e:
        logger.error(f"Could not connect to MongoDB: {e}")
    except PyMongoError as e:
        logger.error(f"Could not create indexes: {e}")
    return False
