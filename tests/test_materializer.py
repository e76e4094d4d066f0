"""
Tests for the PDF materializer backends.
"""

import re
import time
import uuid
from concurrent.futures import ThreadPoolExecutor

import pytest

from core.database.models import ImageFormat, PageOrientation, PageSize
import core.materializer as materializer_module
from core.materializer import (
    InternalPdfMaterializationConfirmation,
    InternalPdfMaterializationJob,
    PdfJobSubmitter,
    Singleton,
    ZeroMqPdfMaterializer,
    build_placeholder_pdf,
    page_dimensions,
)


class FakeSubmitter:
    def __init__(self, confirmation):
        self.confirmation = confirmation
        self.jobs = []

    def submit_materialization_job(self, job):
        self.jobs.append(job)
        return self.confirmation


class TestPageGeometry:
    """Tests for page size and orientation handling."""

    def test_portrait_a4(self):
        assert page_dimensions(PageSize.A4, PageOrientation.PORTRAIT) == (595, 842)

    def test_landscape_swaps_sides(self):
        assert page_dimensions(PageSize.LEGAL, PageOrientation.LANDSCAPE) == (1008, 612)


class TestPlaceholderPdf:
    """Tests for the placeholder PDF document."""

    def test_one_page_per_image(self):
        document = build_placeholder_pdf(3, 612, 792)

        assert document.startswith(b"%PDF-1.4\n")
        assert document.count(b"/Type /Page /Parent 2 0 R") == 3
        assert b"/Count 3" in document
        assert b"/MediaBox [0 0 612 792]" in document

    def test_xref_offsets_point_at_objects(self):
        document = build_placeholder_pdf(2, 595, 842)

        xref_start = int(re.search(rb"startxref\n(\d+)\n", document).group(1))
        assert document[xref_start:].startswith(b"xref\n0 5\n")

        entries = re.findall(rb"(\d{10}) 00000 n \n", document[xref_start:])
        assert len(entries) == 4
        for number, offset in enumerate(entries, start=1):
            assert document[int(offset):].startswith(f"{number} 0 obj".encode("ascii"))


class TestSimulatedMaterializer:
    """Tests for the local placeholder backend."""

    def test_writes_pdf_to_storage(self, materializer, make_conversion, add_images, storage):
        conversion = make_conversion(page_size=PageSize.A5, orientation=PageOrientation.LANDSCAPE)
        images = add_images(conversion, ["a", "b"])

        stored_name = materializer.materialize(conversion, images)

        assert stored_name.startswith(f"conversion_{conversion.id.hex}_")
        assert stored_name.endswith(".pdf")
        assert storage.file_exists(stored_name)


class TestZeroMqMaterializer:
    """Tests for the worker backend, with the socket replaced by a fake submitter."""

    def test_sends_ordered_image_paths(self, make_conversion, image_manager):
        conversion = make_conversion(page_size=PageSize.LETTER)
        images = [
            image_manager.upload(conversion.id, "one", "one.png", 1, ImageFormat.PNG, 0),
            image_manager.upload(conversion.id, "two", "two.png", 1, ImageFormat.PNG, 1),
        ]
        submitter = FakeSubmitter(
            InternalPdfMaterializationConfirmation(is_ok=True, pdf_file_path="worker.pdf")
        )

        stored_name = ZeroMqPdfMaterializer(submitter).materialize(conversion, images)

        assert stored_name == "worker.pdf"
        (job,) = submitter.jobs
        assert job.conversion_id == conversion.id
        assert job.page_size == "letter"
        assert job.orientation == "portrait"
        assert job.image_paths == ["one.png", "two.png"]

    def test_rejected_job_raises_worker_error(self, make_conversion, add_images):
        conversion = make_conversion()
        images = add_images(conversion, ["a"])
        submitter = FakeSubmitter(
            InternalPdfMaterializationConfirmation(is_ok=False, error="out of memory")
        )

        with pytest.raises(RuntimeError, match="out of memory"):
            ZeroMqPdfMaterializer(submitter).materialize(conversion, images)


class SerialOnlySocket:
    """Stands in for a REQ socket, failing like one when a send overlaps a pending reply."""

    def __init__(self):
        self.awaiting_reply = False
        self.sent = []

    def connect(self, address):
        self.address = address

    def send(self, payload):
        if self.awaiting_reply:
            raise AssertionError("send while a reply is still pending")

        self.awaiting_reply = True
        self.sent.append(payload)

    def recv(self):
        time.sleep(0.01)
        self.awaiting_reply = False

        return InternalPdfMaterializationConfirmation(is_ok=True, pdf_file_path="worker.pdf").model_dump_json().encode()


class FakeContext:
    created = 0

    def __init__(self):
        FakeContext.created += 1
        self.last_socket = SerialOnlySocket()

    def socket(self, kind):
        return self.last_socket


class TestPdfJobSubmitter:
    """Tests for the shared ZeroMQ submitter under concurrent requests."""

    @pytest.fixture(autouse=True)
    def fake_zmq(self, monkeypatch):
        monkeypatch.setattr(Singleton, "_instances", {})
        monkeypatch.setattr(materializer_module.zmq, "Context", FakeContext)
        FakeContext.created = 0

    def test_concurrent_construction_yields_one_instance(self):
        with ThreadPoolExecutor(max_workers=8) as executor:
            submitters = list(executor.map(lambda _: PdfJobSubmitter(), range(16)))

        assert all(submitter is submitters[0] for submitter in submitters)
        assert FakeContext.created == 1

    def test_concurrent_jobs_do_not_interleave_on_the_socket(self):
        submitter = PdfJobSubmitter()
        jobs = [
            InternalPdfMaterializationJob(
                conversion_id=uuid.uuid4(),
                page_size="a4",
                orientation="portrait",
                image_paths=[f"{number}.png"],
            )
            for number in range(6)
        ]

        with ThreadPoolExecutor(max_workers=6) as executor:
            confirmations = list(executor.map(submitter.submit_materialization_job, jobs))

        assert [confirmation.pdf_file_path for confirmation in confirmations] == ["worker.pdf"] * 6
        assert len(submitter._zmq_socket.sent) == 6
