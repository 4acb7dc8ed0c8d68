from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import validates

from ..collation import collation_key
from ..database import Base


class Note(Base):
    """A note assigned to a user.

    Deleting a user does not cascade here; the service layer refuses to
    delete a user while any note still references it.
    """

    __tablename__ = "notes"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), index=True, nullable=False)
    title = Column(String, nullable=False)
    title_key = Column(String, index=True, nullable=False)
    text = Column(Text, nullable=False)
    completed = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @validates("title")
    def _sync_title_key(self, key, value):
        self.title_key = collation_key(value)
        return value
