from sqlalchemy import Column, String, DateTime, ForeignKey, Table
from promptkeeper.models.base import Base, generate_id, utcnow

project_tags = Table(
    "project_tags",
    Base.metadata,
    Column("project_id", String(36), ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", String(36), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)

prompt_tags = Table(
    "prompt_tags",
    Base.metadata,
    Column("prompt_id", String(36), ForeignKey("prompts.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", String(36), ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)

DEFAULT_TAG_COLOR = "#3b82f6"
DEFAULT_CATEGORY_COLOR = "#6366f1"


class Tag(Base):
    __tablename__ = "tags"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(50), unique=True, index=True, nullable=False)
    color = Column(String(7), nullable=False, default=DEFAULT_TAG_COLOR)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<Tag(name='{self.name}')>"


class Category(Base):
    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(50), unique=True, index=True, nullable=False)
    color = Column(String(7), nullable=False, default=DEFAULT_CATEGORY_COLOR)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<Category(name='{self.name}')>"
