from sqlalchemy import Column, String, Text, DateTime
from sqlalchemy.orm import relationship
from promptkeeper.models.base import Base, generate_id, utcnow
from promptkeeper.models.tag_models import project_tags


class Project(Base):
    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=generate_id)
    name = Column(String(100), nullable=False)
    description = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    prompts = relationship(
        "Prompt",
        back_populates="project",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Prompt.created_at",
    )
    tags = relationship("Tag", secondary=project_tags, lazy="selectin", order_by="Tag.name")
