from sqlalchemy import Column, String, Text, DateTime
from promptkeeper.models.base import Base, utcnow


class Setting(Base):
    __tablename__ = "settings"

    key = Column(String(50), primary_key=True)
    value = Column(Text, nullable=False, default="")
    description = Column(String(255), nullable=False, default="")
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<Setting(key='{self.key}')>"
