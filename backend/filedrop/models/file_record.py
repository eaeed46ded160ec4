"""FileRecord model - catalog entry for one stored object."""
from sqlalchemy import String, BigInteger
from sqlalchemy.orm import Mapped, mapped_column
from filedrop.models.base import Base, CreatedAtMixin


class FileRecord(Base, CreatedAtMixin):
    __tablename__ = "files"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    original_extension: Mapped[str] = mapped_column(String(17), default="")
    original_name: Mapped[str] = mapped_column(String(500), default="")
    content_type: Mapped[str] = mapped_column(String(255), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    storage_backend: Mapped[str] = mapped_column(String(20), nullable=False)
    location: Mapped[str] = mapped_column(String(1000), nullable=False)

    @property
    def public_name(self) -> str:
        return f"{self.id}{self.original_extension}"
