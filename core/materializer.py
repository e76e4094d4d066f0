import logging
import threading
import time
from abc import ABCMeta, abstractmethod
from io import BytesIO
from typing import Annotated, Dict, List, Optional, Tuple
from fastapi import Depends
import zmq
from pydantic import BaseModel
import uuid

from core.configuration import settings
from core.database.models import Conversion, Image, PageOrientation, PageSize
from core.storage import BaseFileStorage, StorageDependency

logger = logging.getLogger(__name__)


# Portrait (width, height) in PDF points.
PAGE_DIMENSIONS: Dict[PageSize, Tuple[int, int]] = {
    PageSize.A4: (595, 842),
    PageSize.LETTER: (612, 792),
    PageSize.LEGAL: (612, 1008),
    PageSize.A3: (842, 1191),
    PageSize.A5: (420, 595),
}


def page_dimensions(page_size: PageSize, orientation: PageOrientation) -> Tuple[int, int]:
    width, height = PAGE_DIMENSIONS[page_size]

    if orientation == PageOrientation.LANDSCAPE:
        return height, width

    return width, height


def build_placeholder_pdf(page_count: int, width: int, height: int) -> bytes:
    """
    Builds a structurally valid PDF made of `page_count` blank pages
    of the given size.
    """
    page_object_numbers = [3 + page for page in range(page_count)]
    kids = " ".join(f"{number} 0 R" for number in page_object_numbers)

    objects = [
        "<< /Type /Catalog /Pages 2 0 R >>",
        f"<< /Type /Pages /Kids [{kids}] /Count {page_count} >>",
    ]
    objects.extend(
        f"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 {width} {height}] >>"
        for _ in page_object_numbers
    )

    document = bytearray(b"%PDF-1.4\n")
    offsets = []

    for number, body in enumerate(objects, start=1):
        offsets.append(len(document))
        document += f"{number} 0 obj\n{body}\nendobj\n".encode("ascii")

    xref_offset = len(document)
    document += f"xref\n0 {len(objects) + 1}\n".encode("ascii")
    document += b"0000000000 65535 f \n"
    for offset in offsets:
        document += f"{offset:010d} 00000 n \n".encode("ascii")

    document += (
        f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\n"
        f"startxref\n{xref_offset}\n%%EOF\n"
    ).encode("ascii")

    return bytes(document)


def pdf_file_name_for(conversion: Conversion) -> str:
    return f"conversion_{conversion.id.hex}_{int(time.time() * 1000)}.pdf"



class BasePdfMaterializer(metaclass=ABCMeta):
    @abstractmethod
    def materialize(self, conversion: Conversion, images: List[Image]) -> str:
        """
        Renders `images` (already in page order) into a single PDF using
        the page settings of `conversion`. Returns the storage name of the PDF.
        """
        return NotImplemented



class SimulatedPdfMaterializer(BasePdfMaterializer):
    _storage: BaseFileStorage

    def __init__(self, storage: BaseFileStorage):
        super().__init__()

        self._storage = storage

    def materialize(self, conversion: Conversion, images: List[Image]) -> str:
        width, height = page_dimensions(conversion.page_size, conversion.orientation)
        pdf_bytes = build_placeholder_pdf(len(images), width, height)

        stored_name = self._storage.upload_file(
            pdf_file_name_for(conversion),
            BytesIO(pdf_bytes)
        )

        logger.info(
            "Materialized placeholder PDF %s (%d pages) for conversion %s.",
            stored_name, len(images), conversion.id
        )

        return stored_name



class Singleton(type):
    _instances = {}
    _instances_lock = threading.Lock()

    def __call__(cls, *args, **kwargs):
        with Singleton._instances_lock:
            if cls not in cls._instances:
                cls._instances[cls] = super(Singleton, cls).__call__(*args, **kwargs)

        return cls._instances[cls]



class InternalPdfMaterializationJob(BaseModel):
    conversion_id: uuid.UUID

    page_size: str
    orientation: str

    # These represent image file paths or blob names,
    # depending on which storage backend is configured.
    image_paths: List[str]

class InternalPdfMaterializationConfirmation(BaseModel):
    is_ok: bool
    pdf_file_path: Optional[str] = None
    error: Optional[str] = None



# We shouldn't establish ZeroMQ REQ-REP connections each time
# a dependency is injected, but instead only the first time
# (after which the connection is persisted).
# Sync endpoints run in a thread pool, and a REQ socket must see strict
# send/recv pairs, so every round trip holds `_socket_lock`.
class PdfJobSubmitter(metaclass=Singleton):
    _zmq_context: zmq.Context
    _zmq_socket: zmq.Socket
    _socket_lock: threading.Lock

    def __init__(self):
        logger.info("Initializing PDF materialization job submitter.")

        self._socket_lock = threading.Lock()
        self._zmq_context = zmq.Context()

        self._zmq_socket = self._zmq_context.socket(zmq.REQ)
        self._zmq_socket.connect(f"tcp://{settings.zmq_host}:{settings.zmq_port}")


    def submit_materialization_job(
        self,
        job: InternalPdfMaterializationJob
    ) -> InternalPdfMaterializationConfirmation:
        serialized_job = job.model_dump_json()

        with self._socket_lock:
            self._zmq_socket.send(serialized_job.encode("utf-8"))

            confirmation_reply_bytes = self._zmq_socket.recv()

        return InternalPdfMaterializationConfirmation.model_validate_json(
            confirmation_reply_bytes
        )



class ZeroMqPdfMaterializer(BasePdfMaterializer):
    _submitter: PdfJobSubmitter

    def __init__(self, submitter: Optional[PdfJobSubmitter] = None):
        super().__init__()

        self._submitter = submitter or PdfJobSubmitter()

    def materialize(self, conversion: Conversion, images: List[Image]) -> str:
        job = InternalPdfMaterializationJob(
            conversion_id=conversion.id,
            page_size=conversion.page_size.value,
            orientation=conversion.orientation.value,
            image_paths=[image.file_path for image in images],
        )

        confirmation = self._submitter.submit_materialization_job(job)

        if confirmation.is_ok is not True or confirmation.pdf_file_path is None:
            raise RuntimeError(
                confirmation.error or "Failed to obtain job confirmation."
            )

        logger.info("Got PDF %s from worker for conversion %s.", confirmation.pdf_file_path, conversion.id)

        return confirmation.pdf_file_path



def get_materializer(storage: StorageDependency) -> BasePdfMaterializer:
    materializer_backend: str = settings.materializer_backend.lower()

    if materializer_backend == "simulated":
        return SimulatedPdfMaterializer(storage)
    elif materializer_backend == "zmq":
        return ZeroMqPdfMaterializer()
    else:
        raise RuntimeError(
            "Invalid materializer_backend configuration value: \
             expected either \"simulated\" or \"zmq\"."
        )


MaterializerDependency = Annotated[BasePdfMaterializer, Depends(get_materializer)]
