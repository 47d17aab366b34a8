"""
Persistence layer for promptchain.
"""

import logging

from promptchain.config import Config
from .repository import WorkflowRepository
from .json_store import JSONFileRepository
from .postgres import PostgresRepository

logger = logging.getLogger(__name__)


def create_repository(config: Config) -> WorkflowRepository:
    """
    Pick a repository backend.

    PostgreSQL when ``database_url`` is a postgres URL, otherwise the JSON
    file at ``data_file``.
    """
    database_url = config.database_url
    if database_url:
        if database_url.startswith(("postgres://", "postgresql://")):
            return PostgresRepository(database_url, default_model=config.default_model)
        raise ValueError(f"Unsupported database backend: {database_url}")

    logger.info(f"Using JSON file store at {config.data_file}")
    return JSONFileRepository(config.data_file, default_model=config.default_model)


__all__ = [
    "WorkflowRepository",
    "JSONFileRepository",
    "PostgresRepository",
    "create_repository",
]
