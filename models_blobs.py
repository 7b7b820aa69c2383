from datetime import datetime

from sqlalchemy import Column, DateTime, String, Text

from extensions import db


class StoredBlob(db.Model):
    """Opaque string payload stored under a top-level state key."""

    __tablename__ = "state_blobs"

    key = Column(String(128), primary_key=True)
    payload = Column(Text, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)
