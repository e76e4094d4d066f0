"""
Images of a conversion and their page order.

Images can only be added, reordered or removed while their conversion is
pending. Removing an image closes the gap it leaves, so the remaining
order indices stay contiguous from zero.
"""

import logging
from datetime import datetime, timezone
from io import BytesIO
from typing import Annotated, BinaryIO, Dict, List, NamedTuple, Optional, Sequence
from uuid import UUID, uuid4
from fastapi import Depends

from core.configuration import settings
from core.database.models import Conversion, ConversionStatus, Image, ImageFormat
from core.database.stores import (
    BaseConversionStore,
    BaseImageStore,
    ConversionStoreDependency,
    ImageStoreDependency,
)
from core.errors import DuplicateIndex, InvalidReference, InvalidState, NotFound, UnsupportedImage
from core.storage import BaseFileStorage, StorageDependency

logger = logging.getLogger(__name__)


CONTENT_TYPE_TO_FORMAT: Dict[str, ImageFormat] = {
    "image/jpeg": ImageFormat.JPEG,
    "image/jpg": ImageFormat.JPEG,
    "image/png": ImageFormat.PNG,
    "image/webp": ImageFormat.WEBP,
    "image/gif": ImageFormat.GIF,
}

FORMAT_TO_EXTENSION: Dict[ImageFormat, str] = {
    ImageFormat.JPEG: ".jpg",
    ImageFormat.PNG: ".png",
    ImageFormat.WEBP: ".webp",
    ImageFormat.GIF: ".gif",
}


class ImageOrder(NamedTuple):
    image_id: UUID
    order_index: int


class ImageManager:
    _conversions: BaseConversionStore
    _images: BaseImageStore
    _storage: BaseFileStorage

    def __init__(
        self,
        conversions: BaseConversionStore,
        images: BaseImageStore,
        storage: BaseFileStorage,
        max_upload_size_bytes: Optional[int] = None,
    ):
        self._conversions = conversions
        self._images = images
        self._storage = storage
        self._max_upload_size_bytes = max_upload_size_bytes

        if self._max_upload_size_bytes is None:
            self._max_upload_size_bytes = settings.max_upload_size_bytes

    def _get_pending_conversion(self, conversion_id: UUID, action: str) -> Conversion:
        conversion = self._conversions.get(conversion_id, lock=True)

        if conversion is None:
            raise NotFound(f"Conversion with ID {conversion_id} not found")

        if conversion.status != ConversionStatus.PENDING:
            raise InvalidState(action.format(status=conversion.status.value))

        return conversion

    def upload(
        self,
        conversion_id: UUID,
        original_name: str,
        file_path: str,
        file_size: int,
        format: ImageFormat,
        order_index: int,
    ) -> Image:
        conversion = self._get_pending_conversion(
            conversion_id,
            "Cannot upload images to conversion with status: {status}"
        )

        new_image = Image(
            conversion_id=conversion.id,
            original_name=original_name,
            file_path=file_path,
            file_size=file_size,
            format=format,
            order_index=order_index,
            uploaded_at=datetime.now(tz=timezone.utc),
        )

        self._images.add(new_image)
        self._images.commit(new_image)

        logger.info(
            "Added image %s (%s) to conversion %s at index %d.",
            new_image.id, original_name, conversion_id, order_index
        )

        return new_image

    def upload_file(
        self,
        conversion_id: UUID,
        file_name: str,
        content_type: Optional[str],
        readable: BinaryIO,
        order_index: Optional[int] = None,
    ) -> Image:
        """
        Stores an uploaded image file and records it on the conversion.

        Without an explicit `order_index` the image is appended after
        the current last image.
        """
        self._get_pending_conversion(
            conversion_id,
            "Cannot upload images to conversion with status: {status}"
        )

        image_format = CONTENT_TYPE_TO_FORMAT.get((content_type or "").lower())
        if image_format is None:
            raise UnsupportedImage(
                f"Unsupported image type {content_type!r}, expected one of: jpeg, png, webp, gif"
            )

        # One byte over the limit is enough to know the file is too large.
        file_bytes = readable.read(self._max_upload_size_bytes + 1)

        if len(file_bytes) == 0:
            raise UnsupportedImage("Uploaded image file is empty")

        if len(file_bytes) > self._max_upload_size_bytes:
            raise UnsupportedImage(
                f"Image file size must not exceed {self._max_upload_size_bytes} bytes"
            )

        if order_index is None:
            order_index = len(self._images.list_for_conversion(conversion_id))

        stored_name = self._storage.upload_file(
            f"{uuid4().hex}{FORMAT_TO_EXTENSION[image_format]}",
            BytesIO(file_bytes)
        )

        return self.upload(
            conversion_id,
            original_name=file_name,
            file_path=stored_name,
            file_size=len(file_bytes),
            format=image_format,
            order_index=order_index,
        )

    def reorder(self, conversion_id: UUID, image_orders: Sequence[ImageOrder]) -> List[Image]:
        self._get_pending_conversion(
            conversion_id,
            "Cannot reorder images for conversion in {status} status"
        )

        images_by_id = {
            image.id: image
            for image in self._images.list_for_conversion(conversion_id)
        }

        # Everything is validated before the first write, so a rejected batch changes nothing.
        for image_order in image_orders:
            if image_order.image_id not in images_by_id:
                raise InvalidReference(
                    f"Image with ID {image_order.image_id} not found in conversion {conversion_id}"
                )

        requested_ids = [image_order.image_id for image_order in image_orders]
        if len(set(requested_ids)) != len(requested_ids):
            raise DuplicateIndex("Duplicate image IDs are not allowed")

        requested_indices = [image_order.order_index for image_order in image_orders]
        if len(set(requested_indices)) != len(requested_indices):
            raise DuplicateIndex("Duplicate order indices are not allowed")

        for image_order in image_orders:
            image = images_by_id[image_order.image_id]
            image.order_index = image_order.order_index
            self._images.save(image)

        self._images.commit()

        return self._images.list_for_conversion(conversion_id)

    def delete(self, image_id: UUID) -> bool:
        target_image = self._images.get(image_id)

        if target_image is None:
            return False

        conversion = self._conversions.get(target_image.conversion_id, lock=True)

        if conversion is None or conversion.status != ConversionStatus.PENDING:
            return False

        # Another delete may have compacted the indices before the lock was taken.
        target_image = self._images.get(image_id)

        if target_image is None:
            return False

        try:
            self._storage.delete_file(target_image.file_path)
        except Exception:
            logger.warning(
                "Failed to delete stored file %s of image %s.",
                target_image.file_path, target_image.id,
                exc_info=True
            )

        conversion_id = target_image.conversion_id
        deleted_order_index = target_image.order_index

        self._images.delete(target_image)
        moved_count = self._images.shift_down_after(conversion_id, deleted_order_index)
        self._images.commit()

        logger.info(
            "Deleted image %s from conversion %s, moved %d images up.",
            image_id, conversion_id, moved_count
        )

        return True



def get_image_manager(
    conversions: ConversionStoreDependency,
    images: ImageStoreDependency,
    storage: StorageDependency,
) -> ImageManager:
    return ImageManager(conversions, images, storage)


ImageManagerDependency = Annotated[ImageManager, Depends(get_image_manager)]
