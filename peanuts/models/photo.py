from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY
from sqlalchemy.orm import relationship
from sqlalchemy.types import JSON

from peanuts.models.base import Base

# VARCHAR[] on PostgreSQL, JSON array elsewhere (SQLite in tests)
TagArray = ARRAY(String).with_variant(JSON(), "sqlite")


class Photo(Base):
    __tablename__ = "photos"
    __table_args__ = (
        CheckConstraint("height_offset >= 0"),
        CheckConstraint("height_offset <= 100"),
        Index("idx_photos_tags", "tags", postgresql_using="gin"),
    )

    id = Column(Integer, primary_key=True)
    # File name without extension, used for deduplication.
    file_stem = Column(String, nullable=False)
    title = Column(String)
    taken_timestamp = Column(String)
    # Percentage offset into the photo used when cropping to size constraints.
    height_offset = Column(
        Integer, nullable=False, default=50, server_default=text("50")
    )
    tags = Column(TagArray, nullable=False, default=list)
    published = Column(Boolean, default=False, server_default=text("false"))

    sources = relationship(
        "Source",
        back_populates="photo",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="Source.width.desc()",
    )
