"""
Lifecycle of a conversion: creation, page settings and PDF processing.

A conversion moves pending -> processing -> completed, or
processing -> failed. Completed conversions are returned as-is when
processed again, failed ones refuse to be processed until they are
explicitly reset back to pending. A conversion already in processing
belongs to another request and is refused as well.
"""

import logging
from datetime import datetime, timezone
from typing import Annotated, Optional
from uuid import UUID
from fastapi import Depends

from core.database.models import Conversion, ConversionStatus, PageOrientation, PageSize
from core.database.stores import (
    BaseConversionStore,
    BaseImageStore,
    ConversionStoreDependency,
    ImageStoreDependency,
)
from core.errors import AlreadyFailed, EmptyConversion, InvalidState, MaterializationFailure, NotFound
from core.materializer import BasePdfMaterializer, MaterializerDependency

logger = logging.getLogger(__name__)


NO_IMAGES_MESSAGE = "No images found for conversion"


class ConversionManager:
    _conversions: BaseConversionStore
    _images: BaseImageStore
    _materializer: BasePdfMaterializer

    def __init__(
        self,
        conversions: BaseConversionStore,
        images: BaseImageStore,
        materializer: BasePdfMaterializer,
    ):
        self._conversions = conversions
        self._images = images
        self._materializer = materializer

    def _get_existing(self, conversion_id: UUID) -> Conversion:
        conversion = self._conversions.get(conversion_id, lock=True)

        if conversion is None:
            raise NotFound(f"Conversion with ID {conversion_id} not found")

        return conversion

    def create(self, page_size: PageSize, orientation: PageOrientation) -> Conversion:
        conversion = Conversion(
            page_size=page_size,
            orientation=orientation,
            status=ConversionStatus.PENDING,
            pdf_file_path=None,
            error_message=None,
            created_at=datetime.now(tz=timezone.utc),
            completed_at=None,
        )

        self._conversions.add(conversion)
        self._conversions.commit(conversion)

        logger.info("Created conversion %s (%s, %s).", conversion.id, page_size.value, orientation.value)

        return conversion

    def update_settings(
        self,
        conversion_id: UUID,
        page_size: Optional[PageSize] = None,
        orientation: Optional[PageOrientation] = None,
    ) -> Conversion:
        conversion = self._get_existing(conversion_id)

        if conversion.status != ConversionStatus.PENDING:
            raise InvalidState(
                f"Cannot update conversion with status: {conversion.status.value}"
            )

        if page_size is None and orientation is None:
            return conversion

        if page_size is not None:
            conversion.page_size = page_size

        if orientation is not None:
            conversion.orientation = orientation

        self._conversions.save(conversion)
        self._conversions.commit(conversion)

        return conversion

    def process(self, conversion_id: UUID) -> Conversion:
        conversion = self._get_existing(conversion_id)

        # Only the caller whose update moves the row out of pending renders it.
        claimed = False
        if conversion.status == ConversionStatus.PENDING:
            claimed = self._conversions.transition_status(
                conversion.id, ConversionStatus.PENDING, ConversionStatus.PROCESSING
            )
            self._conversions.commit(conversion)

        if not claimed:
            if conversion.status == ConversionStatus.COMPLETED:
                return conversion

            if conversion.status == ConversionStatus.FAILED:
                raise AlreadyFailed(
                    f"Conversion {conversion.id} has already failed: {conversion.error_message}",
                    stored_error=conversion.error_message,
                )

            raise InvalidState(f"Conversion {conversion.id} is already being processed")

        ordered_images = self._images.list_for_conversion(conversion.id)

        if len(ordered_images) == 0:
            self._mark_failed(conversion, NO_IMAGES_MESSAGE)
            raise EmptyConversion(NO_IMAGES_MESSAGE)

        try:
            pdf_file_path = self._materializer.materialize(conversion, ordered_images)
        except Exception as error:
            error_message = str(error) or error.__class__.__name__
            logger.exception("PDF materialization failed for conversion %s.", conversion.id)

            self._mark_failed(conversion, error_message)
            raise MaterializationFailure(error_message) from error

        conversion.status = ConversionStatus.COMPLETED
        conversion.pdf_file_path = pdf_file_path
        conversion.error_message = None
        conversion.completed_at = datetime.now(tz=timezone.utc)
        self._conversions.save(conversion)
        self._conversions.commit(conversion)

        logger.info(
            "Conversion %s completed with %d images: %s.",
            conversion.id, len(ordered_images), pdf_file_path
        )

        return conversion

    def _mark_failed(self, conversion: Conversion, error_message: str):
        # Whatever the materializer left behind in this transaction is discarded first.
        self._conversions.rollback()

        conversion.status = ConversionStatus.FAILED
        conversion.pdf_file_path = None
        conversion.error_message = error_message
        self._conversions.save(conversion)
        self._conversions.commit(conversion)

        logger.warning("Conversion %s failed: %s", conversion.id, error_message)

    def reset_for_retry(self, conversion_id: UUID) -> Conversion:
        conversion = self._get_existing(conversion_id)

        if conversion.status != ConversionStatus.FAILED:
            raise InvalidState(
                f"Only failed conversions can be retried, conversion has status: {conversion.status.value}"
            )

        conversion.status = ConversionStatus.PENDING
        conversion.error_message = None
        self._conversions.save(conversion)
        self._conversions.commit(conversion)

        logger.info("Conversion %s reset to pending for retry.", conversion.id)

        return conversion



def get_conversion_manager(
    conversions: ConversionStoreDependency,
    images: ImageStoreDependency,
    materializer: MaterializerDependency,
) -> ConversionManager:
    return ConversionManager(conversions, images, materializer)


ConversionManagerDependency = Annotated[ConversionManager, Depends(get_conversion_manager)]
