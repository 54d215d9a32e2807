"""MongoDB Client - Connection, Collection and Session Management"""
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Iterator, Optional
from pymongo import MongoClient as PyMongoClient
from pymongo.client_session import ClientSession
from pymongo.database import Database
from pymongo.collection import Collection
from pymongo import ASCENDING
from pymongo.errors import ConnectionFailure

from ..config.settings import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

# Global client instance
_client: Optional[PyMongoClient] = None
_database: Optional[Database] = None

# Session of the unit of work running in this context, if any
_session_var: ContextVar[Optional[ClientSession]] = ContextVar("mongo_session", default=None)


def get_client() -> PyMongoClient:
    """Get or create MongoDB client"""
    global _client
    if _client is None:
        logger.info(f"Connecting to MongoDB: {settings.mongo_uri}")
        _client = PyMongoClient(
            settings.mongo_uri,
            serverSelectionTimeoutMS=5000,
            connectTimeoutMS=5000,
            socketTimeoutMS=30000,
            tz_aware=True,
        )
        try:
            _client.admin.command("ping")
            logger.info("MongoDB connection successful")
        except ConnectionFailure as e:
            logger.error(f"MongoDB connection failed: {e}")
            raise
    return _client


def get_database() -> Database:
    """Get the application database"""
    global _database
    if _database is None:
        client = get_client()
        _database = client[settings.mongo_db]
        logger.info(f"Using database: {settings.mongo_db}")
    return _database


def get_collection(name: str) -> Collection:
    """Get a collection from the database"""
    db = get_database()
    return db[name]


def current_session() -> Optional[ClientSession]:
    """Session bound by the active MongoUnitOfWork, or None outside one"""
    return _session_var.get()


def close_connection() -> None:
    """Close MongoDB connection"""
    global _client, _database
    if _client is not None:
        _client.close()
        _client = None
        _database = None
        logger.info("MongoDB connection closed")


def create_indexes() -> None:
    """Create all required indexes"""
    db = get_database()
    logger.info("Creating MongoDB indexes...")

    definitions = db["workflow_definitions"]
    definitions.create_index("definition_id", unique=True)
    definitions.create_index("company_id")

    # At most one rule per (definition, step, trigger)
    routing_rules = db["routing_rules"]
    routing_rules.create_index("rule_id", unique=True)
    routing_rules.create_index(
        [("definition_id", ASCENDING), ("rule.source_step", ASCENDING), ("rule.trigger_type", ASCENDING)],
        unique=True,
    )

    instances = db["workflow_instances"]
    instances.create_index("instance_id", unique=True)
    instances.create_index([("document.document_id", ASCENDING), ("definition_id", ASCENDING)])
    instances.create_index([("definition_id", ASCENDING), ("status", ASCENDING)])
    instances.create_index("status")

    tasks = db["tasks"]
    tasks.create_index("task_id", unique=True)
    tasks.create_index([("instance_id", ASCENDING), ("step_order", ASCENDING)])
    tasks.create_index([("company_id", ASCENDING), ("status", ASCENDING)])
    tasks.create_index([("status", ASCENDING), ("created_at", ASCENDING)])

    audit_entries = db["audit_entries"]
    audit_entries.create_index("entry_id", unique=True)
    audit_entries.create_index([("instance_id", ASCENDING), ("timestamp", ASCENDING), ("sequence", ASCENDING)])

    memberships = db["memberships"]
    memberships.create_index([("company_id", ASCENDING), ("actor_id", ASCENDING)], unique=True)
    memberships.create_index([("company_id", ASCENDING), ("role_name", ASCENDING)])

    logger.info("MongoDB indexes created successfully")


def health_check() -> Dict[str, Any]:
    """Check MongoDB health"""
    try:
        client = get_client()
        client.admin.command("ping")
        return {
            "status": "healthy",
            "database": settings.mongo_db,
            "connection": "ok"
        }
    except Exception as e:
        logger.error(f"MongoDB health check failed: {e}")
        return {
            "status": "unhealthy",
            "database": settings.mongo_db,
            "error": str(e)
        }


class MongoUnitOfWork:
    """
    One atomic unit of work per engine operation

    Binds a client session with an open transaction to the current context;
    repositories pick it up via current_session(). Commits when the block
    exits normally and aborts when it raises.
    """

    def __init__(self, client: Optional[PyMongoClient] = None):
        self._client = client

    @contextmanager
    def transaction(self) -> Iterator[None]:
        if not settings.mongo_transactions:
            yield
            return

        client = self._client or get_client()
        with client.start_session() as session:
            with session.start_transaction():
                token = _session_var.set(session)
                try:
                    yield
                finally:
                    _session_var.reset(token)
