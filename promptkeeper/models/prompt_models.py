from sqlalchemy import Column, String, Text, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from promptkeeper.models.base import Base, generate_id, utcnow
from promptkeeper.models.tag_models import prompt_tags


class Prompt(Base):
    __tablename__ = "prompts"

    id = Column(String(36), primary_key=True, default=generate_id)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False, default="", index=True)
    version = Column(String(20), nullable=False, index=True)
    content = Column(Text, nullable=False)
    description = Column(Text, nullable=False, default="")
    category = Column(String(50), nullable=False, default="", index=True)
    created_at = Column(DateTime, default=utcnow, index=True)

    project = relationship("Project", back_populates="prompts")
    tags = relationship("Tag", secondary=prompt_tags, lazy="selectin", order_by="Tag.name")
    history = relationship(
        "PromptHistory",
        back_populates="prompt",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    # One row per version inside a (project, name) lineage.
    __table_args__ = (
        UniqueConstraint("project_id", "name", "version", name="uq_prompt_lineage_version"),
    )

    def __repr__(self):
        return f"<Prompt(project_id='{self.project_id}', name='{self.name}', version='{self.version}')>"


class PromptHistory(Base):
    __tablename__ = "prompt_history"

    id = Column(String(36), primary_key=True, default=generate_id)
    prompt_id = Column(String(36), ForeignKey("prompts.id", ondelete="CASCADE"), nullable=False, index=True)
    operation = Column(String(20), nullable=False)
    old_content = Column(Text, nullable=False, default="")
    new_content = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=utcnow, index=True)

    prompt = relationship("Prompt", back_populates="history")
