from datetime import datetime
from enum import Enum
from typing import Optional
from sqlmodel import Field, SQLModel
from uuid import UUID, uuid4


class PageSize(Enum):
    A4 = "a4"
    LETTER = "letter"
    LEGAL = "legal"
    A3 = "a3"
    A5 = "a5"


class PageOrientation(Enum):
    PORTRAIT = "portrait"
    LANDSCAPE = "landscape"


class ConversionStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ImageFormat(Enum):
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"
    GIF = "gif"


class Conversion(SQLModel, table=True):
    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True
    )

    page_size: PageSize

    orientation: PageOrientation

    status: ConversionStatus = Field(default=ConversionStatus.PENDING, index=True)

    # Storage name of the generated PDF.
    # Non-null if and only if the conversion is completed.
    pdf_file_path: Optional[str] = None

    # Only ever set while the conversion is failed.
    error_message: Optional[str] = None

    created_at: datetime

    completed_at: Optional[datetime] = None


class Image(SQLModel, table=True):
    id: UUID = Field(
        default_factory=uuid4,
        primary_key=True
    )

    conversion_id: UUID = Field(foreign_key="conversion.id", index=True)

    original_name: str

    # This represents a local file name or blob name,
    # depending on which storage backend is configured.
    file_path: str

    file_size: int

    format: ImageFormat

    # Zero-based position of the image within the generated PDF.
    order_index: int

    uploaded_at: datetime
