from contextlib import asynccontextmanager
from datetime import datetime, timezone
from io import BytesIO
import logging
from typing import Annotated, Dict, List, Optional, Self
import uuid
from fastapi import FastAPI, Form, HTTPException, Path, Request, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field
import uvicorn

from core.configuration import settings
from core.conversions import ConversionManagerDependency
from core.database import create_db_and_tables
from core.database.models import (
    Conversion,
    ConversionStatus,
    Image,
    ImageFormat,
    PageOrientation,
    PageSize,
)
from core.errors import ConversionServiceError
from core.images import ImageManagerDependency, ImageOrder
from core.retrieval import ConversionRetrievalDependency, ConversionWithImages


logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Creating database and tables...")
    create_db_and_tables()

    yield


app = FastAPI(title="Image to PDF Conversion Service", lifespan=lifespan)


@app.exception_handler(ConversionServiceError)
async def conversion_service_error_handler(request: Request, error: ConversionServiceError):
    return JSONResponse(
        status_code=error.status_code,
        content={"detail": error.message}
    )


class PublicImage(BaseModel):
    id: uuid.UUID
    conversion_id: uuid.UUID
    original_name: str
    file_path: str
    file_size: int
    format: ImageFormat
    order_index: int
    uploaded_at: datetime

    @classmethod
    def from_database_image_model(
        cls,
        image: Image
    ) -> Self:
        return cls(
            id=image.id,
            conversion_id=image.conversion_id,
            original_name=image.original_name,
            file_path=image.file_path,
            file_size=image.file_size,
            format=image.format,
            order_index=image.order_index,
            uploaded_at=image.uploaded_at,
        )


class PublicConversion(BaseModel):
    id: uuid.UUID
    page_size: PageSize
    orientation: PageOrientation
    status: ConversionStatus
    pdf_file_path: Optional[str]
    error_message: Optional[str]
    created_at: datetime
    completed_at: Optional[datetime]

    @classmethod
    def from_database_conversion_model(
        cls,
        conversion: Conversion
    ) -> Self:
        return cls(
            id=conversion.id,
            page_size=conversion.page_size,
            orientation=conversion.orientation,
            status=conversion.status,
            pdf_file_path=conversion.pdf_file_path,
            error_message=conversion.error_message,
            created_at=conversion.created_at,
            completed_at=conversion.completed_at,
        )


class PublicConversionWithImages(PublicConversion):
    images: List[PublicImage]

    @classmethod
    def from_conversion_with_images(
        cls,
        conversion_with_images: ConversionWithImages
    ) -> Self:
        public_conversion = PublicConversion.from_database_conversion_model(
            conversion_with_images.conversion
        )

        return cls(
            **public_conversion.model_dump(),
            images=[
                PublicImage.from_database_image_model(image)
                for image in conversion_with_images.images
            ]
        )


class PublicSingleConversionResponse(BaseModel):
    conversion: PublicConversion


class PublicConversionWithImagesResponse(BaseModel):
    conversion: PublicConversionWithImages


class PublicSingleImageResponse(BaseModel):
    image: PublicImage


class PublicImagesListResponse(BaseModel):
    images: List[PublicImage]



@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {
        "status": "ok",
        "timestamp": datetime.now(tz=timezone.utc).isoformat(),
    }



class PublicCreateConversionRequest(BaseModel):
    page_size: PageSize
    orientation: PageOrientation


@app.post("/conversions")
def create_conversion(
    conversion_manager: ConversionManagerDependency,
    conversion_specification: PublicCreateConversionRequest,
) -> PublicSingleConversionResponse:
    new_conversion = conversion_manager.create(
        page_size=conversion_specification.page_size,
        orientation=conversion_specification.orientation,
    )

    return PublicSingleConversionResponse(
        conversion=PublicConversion.from_database_conversion_model(new_conversion)
    )


@app.get("/conversions/{conversion_id}")
def get_specific_conversion(
    retrieval: ConversionRetrievalDependency,
    conversion_id: Annotated[uuid.UUID, Path(title="The UUID of the conversion to get.")],
) -> PublicConversionWithImagesResponse:
    conversion_with_images = retrieval.get_conversion(conversion_id)

    if conversion_with_images is None:
        raise HTTPException(status_code=404, detail="No such conversion.")

    return PublicConversionWithImagesResponse(
        conversion=PublicConversionWithImages.from_conversion_with_images(conversion_with_images)
    )



class PublicUpdateConversionRequest(BaseModel):
    page_size: Optional[PageSize] = None
    orientation: Optional[PageOrientation] = None


@app.patch("/conversions/{conversion_id}")
def update_conversion_settings(
    conversion_manager: ConversionManagerDependency,
    conversion_id: Annotated[uuid.UUID, Path(title="The UUID of the conversion to update.")],
    updated_settings: PublicUpdateConversionRequest,
) -> PublicSingleConversionResponse:
    updated_conversion = conversion_manager.update_settings(
        conversion_id,
        page_size=updated_settings.page_size,
        orientation=updated_settings.orientation,
    )

    return PublicSingleConversionResponse(
        conversion=PublicConversion.from_database_conversion_model(updated_conversion)
    )



class PublicUploadImageRequest(BaseModel):
    original_name: str
    file_path: str
    file_size: int = Field(gt=0)
    format: ImageFormat
    order_index: int = Field(ge=0)


@app.post("/conversions/{conversion_id}/images")
def upload_image_metadata(
    image_manager: ImageManagerDependency,
    conversion_id: Annotated[uuid.UUID, Path(title="The UUID of the conversion to add the image to.")],
    image_specification: PublicUploadImageRequest,
) -> PublicSingleImageResponse:
    new_image = image_manager.upload(
        conversion_id,
        original_name=image_specification.original_name,
        file_path=image_specification.file_path,
        file_size=image_specification.file_size,
        format=image_specification.format,
        order_index=image_specification.order_index,
    )

    return PublicSingleImageResponse(
        image=PublicImage.from_database_image_model(new_image)
    )


@app.post("/conversions/{conversion_id}/images/upload")
def upload_image_file(
    image_manager: ImageManagerDependency,
    conversion_id: Annotated[uuid.UUID, Path(title="The UUID of the conversion to add the image to.")],
    uploaded_file: UploadFile,
    order_index: Annotated[Optional[int], Form(ge=0)] = None,
) -> PublicSingleImageResponse:
    new_image = image_manager.upload_file(
        conversion_id,
        file_name=str(uploaded_file.filename),
        content_type=uploaded_file.content_type,
        readable=uploaded_file.file,
        order_index=order_index,
    )

    return PublicSingleImageResponse(
        image=PublicImage.from_database_image_model(new_image)
    )



class PublicImageOrder(BaseModel):
    image_id: uuid.UUID
    order_index: int = Field(ge=0)


class PublicReorderImagesRequest(BaseModel):
    image_orders: List[PublicImageOrder]


@app.put("/conversions/{conversion_id}/images/order")
def reorder_conversion_images(
    image_manager: ImageManagerDependency,
    conversion_id: Annotated[uuid.UUID, Path(title="The UUID of the conversion to reorder images of.")],
    reorder_specification: PublicReorderImagesRequest,
) -> PublicImagesListResponse:
    reordered_images = image_manager.reorder(
        conversion_id,
        [
            ImageOrder(image_id=image_order.image_id, order_index=image_order.order_index)
            for image_order in reorder_specification.image_orders
        ]
    )

    return PublicImagesListResponse(
        images=[
            PublicImage.from_database_image_model(image)
            for image in reordered_images
        ]
    )



@app.post("/conversions/{conversion_id}/process")
def process_conversion(
    conversion_manager: ConversionManagerDependency,
    conversion_id: Annotated[uuid.UUID, Path(title="The UUID of the conversion to process.")],
) -> PublicSingleConversionResponse:
    processed_conversion = conversion_manager.process(conversion_id)

    return PublicSingleConversionResponse(
        conversion=PublicConversion.from_database_conversion_model(processed_conversion)
    )


@app.post("/conversions/{conversion_id}/retry")
def reset_conversion_for_retry(
    conversion_manager: ConversionManagerDependency,
    conversion_id: Annotated[uuid.UUID, Path(title="The UUID of the failed conversion to reset.")],
) -> PublicSingleConversionResponse:
    reset_conversion = conversion_manager.reset_for_retry(conversion_id)

    return PublicSingleConversionResponse(
        conversion=PublicConversion.from_database_conversion_model(reset_conversion)
    )



@app.get("/conversions/{conversion_id}/pdf")
def download_conversion_pdf(
    retrieval: ConversionRetrievalDependency,
    conversion_id: Annotated[uuid.UUID, Path(title="The UUID of the conversion to download the PDF of.")],
):
    pdf_bytes = retrieval.get_pdf_bytes(conversion_id)

    if pdf_bytes is None:
        raise HTTPException(status_code=404, detail="No PDF available for this conversion.")

    return StreamingResponse(
        BytesIO(pdf_bytes),
        status_code=200,
        headers={
            "Accept-Ranges": "bytes",
            "Content-Disposition": f"inline; filename=\"conversion_{conversion_id}.pdf\""
        },
        media_type="application/pdf"
    )



@app.delete("/images/{image_id}")
def delete_specific_image(
    image_manager: ImageManagerDependency,
    image_id: Annotated[uuid.UUID, Path(title="The UUID of the image to delete.")],
):
    was_deleted = image_manager.delete(image_id)

    return { "ok": was_deleted }


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8001)
