from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import inspect, text
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Field, SQLModel, create_engine, Session

from . import config


logger = logging.getLogger(__name__)


class ProjectStatus(str, Enum):
    DRAFT = "DRAFT"
    READY = "READY"
    FAILED = "FAILED"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class Project(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    slug: str = Field(index=True)
    template: str = config.DEFAULT_TEMPLATE
    cards_per_page: int = config.DEFAULT_CARDS_PER_PAGE
    signers: Optional[str] = None
    status: ProjectStatus = Field(default=ProjectStatus.DRAFT)
    payment_status: PaymentStatus = Field(default=PaymentStatus.PENDING)
    payment_id: Optional[str] = None
    fail_code: Optional[str] = None
    fail_detail: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class GuestCard(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="project.id", index=True)
    recipient_name: str
    gift: Optional[str] = None
    message: str
    sort_order: int = 0


class Artifact(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    project_id: int = Field(foreign_key="project.id")
    type: str
    path: str
    created_at: datetime = Field(default_factory=datetime.utcnow)


engine = create_engine(f"sqlite:///{config.DB_PATH}")


def reset_engine() -> None:
    global engine
    engine = create_engine(f"sqlite:///{config.DB_PATH}")


def init_db() -> None:
    config.OUT_DIR.mkdir(parents=True, exist_ok=True)
    SQLModel.metadata.create_all(engine)
    _migrate_db()


# columns added after the first release; older databases get them on startup
_ADDED_COLUMNS = {
    "project": {
        "signers": "TEXT",
        "fail_code": "TEXT",
        "fail_detail": "TEXT",
    },
}


def _migrate_db() -> None:
    try:
        inspector = inspect(engine)
        tables = set(inspector.get_table_names())
        for table, added in _ADDED_COLUMNS.items():
            if table not in tables:
                continue
            columns = {col["name"] for col in inspector.get_columns(table)}
            for name, sql_type in added.items():
                if name in columns:
                    continue
                with engine.begin() as conn:
                    conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {name} {sql_type}"))
    except SQLAlchemyError:
        logger.warning("Schema migration skipped", exc_info=True)


def get_session() -> Session:
    return Session(engine, expire_on_commit=False)
