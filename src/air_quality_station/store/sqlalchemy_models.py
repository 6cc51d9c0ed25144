__all__ = ["Base", "BucketORM", "SampleORM"]

from sqlalchemy import ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

Base = declarative_base()


class BucketORM(Base):
    """A named collection of samples together with its persisted sequence counter."""

    __tablename__ = "buckets"

    name: Mapped[str] = mapped_column(String, primary_key=True)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class SampleORM(Base):
    """One key/value pair; keys are compared bytewise so range scans follow key order."""

    __tablename__ = "samples"

    bucket: Mapped[str] = mapped_column(String, ForeignKey("buckets.name"), primary_key=True)
    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
