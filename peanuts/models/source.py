from sqlalchemy import (
    CheckConstraint,
    Column,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from peanuts.models.base import Base

MAX_DIMENSION = 10000


class Source(Base):
    """A single rendition of a photo at a given pixel size."""

    __tablename__ = "sources"
    __table_args__ = (
        CheckConstraint(f"width < {MAX_DIMENSION}"),
        CheckConstraint(f"height < {MAX_DIMENSION}"),
        UniqueConstraint("photo_id", "width", "height"),
        UniqueConstraint("url"),
    )

    photo_id = Column(
        Integer,
        ForeignKey("photos.id", ondelete="CASCADE", onupdate="CASCADE"),
    )
    width = Column(Integer, nullable=False)
    height = Column(Integer, nullable=False)
    url = Column(String, nullable=False)

    photo = relationship("Photo", back_populates="sources")

    # The table has no primary key; url is globally unique and identifies a row.
    __mapper_args__ = {"primary_key": [url]}
