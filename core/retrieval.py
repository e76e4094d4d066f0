import logging
from dataclasses import dataclass, field
from io import BytesIO
from typing import Annotated, List, Optional
from uuid import UUID
from fastapi import Depends

from core.database.models import Conversion, ConversionStatus, Image
from core.database.stores import (
    BaseConversionStore,
    BaseImageStore,
    ConversionStoreDependency,
    ImageStoreDependency,
)
from core.storage import BaseFileStorage, StorageDependency

logger = logging.getLogger(__name__)


@dataclass
class ConversionWithImages:
    conversion: Conversion

    # Ascending by order_index.
    images: List[Image] = field(default_factory=list)


class ConversionRetrieval:
    """Read-only queries over conversions, their images and generated PDFs."""

    _conversions: BaseConversionStore
    _images: BaseImageStore
    _storage: BaseFileStorage

    def __init__(
        self,
        conversions: BaseConversionStore,
        images: BaseImageStore,
        storage: BaseFileStorage,
    ):
        self._conversions = conversions
        self._images = images
        self._storage = storage

    def get_conversion(self, conversion_id: UUID) -> Optional[ConversionWithImages]:
        conversion = self._conversions.get(conversion_id)

        if conversion is None:
            return None

        return ConversionWithImages(
            conversion=conversion,
            images=self._images.list_for_conversion(conversion.id),
        )

    def get_pdf_bytes(self, conversion_id: UUID) -> Optional[bytes]:
        conversion = self._conversions.get(conversion_id)

        if conversion is None:
            return None

        if conversion.status != ConversionStatus.COMPLETED or not conversion.pdf_file_path:
            return None

        if not self._storage.file_exists(conversion.pdf_file_path):
            logger.error(
                "PDF file %s of conversion %s does not exist.",
                conversion.pdf_file_path, conversion.id
            )
            return None

        pdf_buffer = BytesIO()
        self._storage.download_file(conversion.pdf_file_path, pdf_buffer)

        return pdf_buffer.getvalue()



def get_conversion_retrieval(
    conversions: ConversionStoreDependency,
    images: ImageStoreDependency,
    storage: StorageDependency,
) -> ConversionRetrieval:
    return ConversionRetrieval(conversions, images, storage)


ConversionRetrievalDependency = Annotated[ConversionRetrieval, Depends(get_conversion_retrieval)]
