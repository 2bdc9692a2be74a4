import uuid

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    String,
    Boolean,
    TIMESTAMP,
    Text,
    CheckConstraint,
    Index,
    true,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from querydeck.core.database import Base


def generate_id() -> str:
    return uuid.uuid4().hex


# =========================
# Custom query
# =========================
class CustomQuery(Base):
    """
    A hand-written SQL statement exposed as a named HTTP endpoint.

    `parameters` holds the JSON-encoded parameter contract. Always read it
    through `parameters.load_parameters`, older rows may hold malformed text.
    `method` and `is_readonly` are derived from `sql_query` on every write.
    """

    __tablename__ = "custom_queries"
    __table_args__ = (
        CheckConstraint("method IN ('GET', 'POST')", name="ck_custom_queries_method"),
        CheckConstraint("cache_ttl >= 0", name="ck_custom_queries_cache_ttl"),
    )

    id = Column(String(32), primary_key=True, default=generate_id)

    # URL-friendly identifier for the public endpoint
    slug = Column(String, nullable=False, unique=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)

    sql_query = Column(Text, nullable=False)
    parameters = Column(Text, nullable=False, server_default="[]")

    method = Column(String(4), nullable=False, server_default="GET")
    is_readonly = Column(Boolean, nullable=False, server_default=true())

    # Seconds, 0 means no caching
    cache_ttl = Column(Integer, nullable=False, server_default="0")
    is_enabled = Column(Boolean, nullable=False, server_default=true(), index=True)

    created_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    # Relationships
    logs = relationship(
        "CustomQueryLog",
        back_populates="query",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


# =========================
# Execution log
# =========================
class CustomQueryLog(Base):
    __tablename__ = "custom_query_logs"
    __table_args__ = (
        Index("idx_custom_query_logs_query", "query_id", "executed_at"),
    )

    id = Column(String(32), primary_key=True, default=generate_id)
    query_id = Column(
        String(32),
        ForeignKey("custom_queries.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Milliseconds
    execution_time = Column(Integer, nullable=False)
    row_count = Column(Integer, nullable=False, server_default="0")
    parameters = Column(Text, nullable=True)
    error = Column(Text, nullable=True)

    executed_at = Column(
        TIMESTAMP(timezone=True),
        nullable=False,
        server_default=func.now(),
    )

    query = relationship("CustomQuery", back_populates="logs")
