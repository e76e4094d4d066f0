from abc import ABCMeta, abstractmethod
from typing import Annotated, List, Optional
from uuid import UUID
from fastapi import Depends
from sqlmodel import Session, SQLModel, select, update

from . import SessionDependency
from .models import Conversion, ConversionStatus, Image


class BaseStore(metaclass=ABCMeta):
    @abstractmethod
    def commit(self, *instances: SQLModel):
        """Commits pending changes, then reloads the given instances."""
        return NotImplemented

    @abstractmethod
    def rollback(self):
        return NotImplemented


class BaseConversionStore(BaseStore):
    @abstractmethod
    def add(self, conversion: Conversion) -> Conversion:
        return NotImplemented

    @abstractmethod
    def get(self, conversion_id: UUID, lock: bool = False) -> Optional[Conversion]:
        """
        Returns the conversion, or None if there is no such conversion.

        If `lock` is set, the row stays locked against concurrent
        writers until the next commit or rollback.
        """
        return NotImplemented

    @abstractmethod
    def save(self, conversion: Conversion) -> Conversion:
        return NotImplemented

    @abstractmethod
    def transition_status(
        self,
        conversion_id: UUID,
        from_status: ConversionStatus,
        to_status: ConversionStatus,
    ) -> bool:
        """
        Atomically moves the conversion from `from_status` to `to_status`
        and clears its error message. Returns False, changing nothing,
        if the conversion is not in `from_status` at that moment.
        """
        return NotImplemented


class BaseImageStore(BaseStore):
    @abstractmethod
    def add(self, image: Image) -> Image:
        return NotImplemented

    @abstractmethod
    def get(self, image_id: UUID) -> Optional[Image]:
        """Returns the image as currently stored, or None."""
        return NotImplemented

    @abstractmethod
    def list_for_conversion(self, conversion_id: UUID) -> List[Image]:
        """Returns all images of a conversion, ascending by order_index."""
        return NotImplemented

    @abstractmethod
    def save(self, image: Image) -> Image:
        return NotImplemented

    @abstractmethod
    def delete(self, image: Image):
        return NotImplemented

    @abstractmethod
    def shift_down_after(self, conversion_id: UUID, order_index: int) -> int:
        """
        Decrements the order_index of every image of the conversion
        positioned after `order_index`. Returns the number of images moved.
        """
        return NotImplemented



class DatabaseStore(BaseStore):
    _database: Session

    def __init__(self, database: Session):
        super().__init__()

        self._database = database

    def commit(self, *instances: SQLModel):
        self._database.commit()

        for instance in instances:
            self._database.refresh(instance)

    def rollback(self):
        self._database.rollback()


class DatabaseConversionStore(DatabaseStore, BaseConversionStore):
    def add(self, conversion: Conversion) -> Conversion:
        self._database.add(conversion)
        self._database.flush()

        return conversion

    def get(self, conversion_id: UUID, lock: bool = False) -> Optional[Conversion]:
        statement = (
            select(Conversion)
                .where(Conversion.id == conversion_id)
                .execution_options(populate_existing=True)
        )

        # Ignored by SQLite, which serializes writers on its own.
        if lock:
            statement = statement.with_for_update()

        return self._database.exec(statement).one_or_none()

    def save(self, conversion: Conversion) -> Conversion:
        self._database.add(conversion)
        self._database.flush()

        return conversion

    def transition_status(
        self,
        conversion_id: UUID,
        from_status: ConversionStatus,
        to_status: ConversionStatus,
    ) -> bool:
        self._database.flush()

        result = self._database.connection().execute(
            update(Conversion)
                .where(Conversion.id == conversion_id)
                .where(Conversion.status == from_status)
                .values(status=to_status, error_message=None)
        )

        return result.rowcount == 1


class DatabaseImageStore(DatabaseStore, BaseImageStore):
    def add(self, image: Image) -> Image:
        self._database.add(image)
        self._database.flush()

        return image

    def get(self, image_id: UUID) -> Optional[Image]:
        return self._database.exec(
            select(Image)
                .where(Image.id == image_id)
                .execution_options(populate_existing=True)
        ).one_or_none()

    def list_for_conversion(self, conversion_id: UUID) -> List[Image]:
        images = self._database.exec(
            select(Image)
                .where(Image.conversion_id == conversion_id)
                .order_by(Image.order_index)
                .execution_options(populate_existing=True)
        ).all()

        return list(images)

    def save(self, image: Image) -> Image:
        self._database.add(image)
        self._database.flush()

        return image

    def delete(self, image: Image):
        self._database.delete(image)
        self._database.flush()

    def shift_down_after(self, conversion_id: UUID, order_index: int) -> int:
        images_after = self._database.exec(
            select(Image)
                .where(Image.conversion_id == conversion_id)
                .where(Image.order_index > order_index)
                .execution_options(populate_existing=True)
        ).all()

        for image in images_after:
            image.order_index -= 1
            self._database.add(image)

        self._database.flush()

        return len(images_after)



def get_conversion_store(database: SessionDependency) -> BaseConversionStore:
    return DatabaseConversionStore(database)


def get_image_store(database: SessionDependency) -> BaseImageStore:
    return DatabaseImageStore(database)


ConversionStoreDependency = Annotated[BaseConversionStore, Depends(get_conversion_store)]
ImageStoreDependency = Annotated[BaseImageStore, Depends(get_image_store)]
