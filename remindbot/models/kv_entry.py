from sqlalchemy import Column, LargeBinary, JSON, DateTime
from sqlalchemy.sql import func
from remindbot.db.database import Base

class KVEntry(Base):
    """One entry of the ordered key-value store."""
    __tablename__ = "kv_entries"

    key = Column(LargeBinary, primary_key=True)  # Encoded tuple key, compared bytewise
    value = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<KVEntry {self.key!r}>"
