from rds_operator.models.database import (
    Database,
    DatabaseSpec,
    DatabaseState,
    DatabaseStatus,
    DBEndpoint,
    PasswordSecret,
)

__all__ = [
    "Database",
    "DatabaseSpec",
    "DatabaseState",
    "DatabaseStatus",
    "DBEndpoint",
    "PasswordSecret",
]
