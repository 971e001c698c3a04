"""
Application configuration settings.
"""
from pathlib import Path
from typing import List

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    APP_NAME: str = "SQL Workspace Dependency API"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Workspace scanning
    WORKSPACE_ROOT: str = "."
    DIALECT: str = "MySQL"
    MAX_FILE_SIZE: int = 10 * 1024 * 1024  # bytes
    ADDITIONAL_FILE_EXTENSIONS: List[str] = []
    EXCLUDE_DIRS: List[str] = ["node_modules", ".git", "dist", "build"]

    # Extraction limits
    MAX_SUBQUERY_DEPTH: int = 10
    MAX_COLUMNS_PER_QUERY: int = 500
    EXTRACT_COLUMNS: bool = True

    # Index cache
    CACHE_FILE_PATH: str = str(Path(__file__).parent.parent / "data" / "workspace_index.json")
    CACHE_TTL_HOURS: float = 24  # 0 disables the cache
    CLEAR_CACHE_ON_STARTUP: bool = False
    AUTO_INDEX_THRESHOLD: int = 50

    # Dependency graph
    PROMINENT_TABLE_MIN_FILES: int = 3

    class Config:
        env_file = ".env"


settings = Settings()
