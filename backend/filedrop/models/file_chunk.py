"""FileChunk model - payload rows for the database storage backend."""
from sqlalchemy import String, Integer, BigInteger, LargeBinary
from sqlalchemy.orm import Mapped, mapped_column
from filedrop.models.base import Base


class FileChunk(Base):
    __tablename__ = "file_chunks"

    location: Mapped[str] = mapped_column(String(255), primary_key=True)
    seq: Mapped[int] = mapped_column(Integer, primary_key=True)
    offset: Mapped[int] = mapped_column(BigInteger, nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    data: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
