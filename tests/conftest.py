import asyncio
import base64
import json
import re

import fitz
import pytest

from autograde.database.db_manager import DatabaseManager
from autograde.database.document_store import DocumentStore
from autograde.database.grading_store import GradingStatusStore
from autograde.database.progress_store import ExtractionProgressStore
from autograde.extraction.vision_client import VisionErr, VisionOk
from autograde.ingestion.pdf_converter import PageImage
from autograde.storage.blob_store import LocalBlobStore


def make_pdf(pages=3, encrypted=False):
    doc = fitz.open()
    for i in range(1, pages + 1):
        page = doc.new_page()
        page.insert_text((72, 72), f"Question {i}: what is {i} + {i}?", fontsize=14)
    if encrypted:
        data = doc.tobytes(
            encryption=fitz.PDF_ENCRYPT_AES_256, owner_pw="owner", user_pw="secret"
        )
    else:
        data = doc.tobytes()
    doc.close()
    return data


def decode_data_uri(uri):
    """Split a base64 data URI into its MIME type and decoded bytes."""
    header, payload = uri.split(",", 1)
    return header[len("data:"):-len(";base64")], base64.b64decode(payload)


def make_pages(count):
    return [
        PageImage(
            page_number=i,
            data_uri=f"data:image/png;base64,cGFnZS{i}",
            width=100,
            height=140,
            grayscale=True,
            image_format="png",
        )
        for i in range(1, count + 1)
    ]


def page_text(page_number):
    return f"=== PAGE {page_number} ===\nText of page {page_number}"


class FakeVision:
    """Returns marker text per page; fails or stalls on chosen batches."""

    def __init__(self, fail_on=(), raise_on=(), empty_on=(), delays=None):
        self.fail_on = set(fail_on)
        self.raise_on = set(raise_on)
        self.empty_on = set(empty_on)
        self.delays = delays or {}
        self.calls = []

    async def extract(self, images, document_type, first_page=1):
        self.calls.append((first_page, len(images), document_type))
        delay = self.delays.get(first_page)
        if delay:
            await asyncio.sleep(delay)
        if first_page in self.raise_on:
            raise RuntimeError(f"connection reset at page {first_page}")
        if first_page in self.fail_on:
            return VisionErr("model overloaded")
        if first_page in self.empty_on:
            return VisionOk("")
        return VisionOk("\n\n".join(page_text(first_page + i) for i in range(len(images))))


class RecordingProgressStore:
    """Records every write; writes numbered in ``fail_on_write`` report failure."""

    def __init__(self, fail_on_write=()):
        self.updates = []
        self.fail_on_write = set(fail_on_write)

    def update(self, document_id, status=None, partial_text=None, metadata=None, has_text=None):
        self.updates.append({"status": status, "partial_text": partial_text, "has_text": has_text})
        return len(self.updates) not in self.fail_on_write

    def partials(self):
        return [
            u["partial_text"] for u in self.updates
            if u["status"] == "processing" and u["partial_text"] is not None
        ]


def answer(qno, awarded=1, possible=1, section="Section A", **extra):
    record = {
        "question_no": qno,
        "section": section,
        "question": f"Question {qno}",
        "expected_answer": "4",
        "answer": "4" if awarded else "5",
        "score": [awarded, possible],
        "remarks": "Correct" if awarded else "Incorrect",
        "confidence": 0.9,
        "concepts": ["Addition"],
        "answer_matches": awarded > 0,
    }
    record.update(extra)
    return record


BATCH_NUMBERS_RE = re.compile(r"Process ONLY the following question numbers: ([\d, ]+)")


class FakeChat:
    """
    Scripted chat client.

    ``count_reply`` answers the counting call (or raises if an exception);
    ``single_reply`` answers a single-shot evaluation; batched calls get
    one full-marks answer per requested question unless the batch index
    is in ``failing_batches``.
    """

    def __init__(self, count_reply="3", single_reply=None, failing_batches=()):
        self.count_reply = count_reply
        self.single_reply = single_reply
        self.failing_batches = set(failing_batches)
        self.batch_requests = []
        self.formats = []

    async def complete(self, system, user, response_format="json"):
        self.formats.append(response_format)
        if response_format == "text":
            if isinstance(self.count_reply, Exception):
                raise self.count_reply
            return self.count_reply

        match = BATCH_NUMBERS_RE.search(user)
        if match is None:
            if isinstance(self.single_reply, Exception):
                raise self.single_reply
            return self.single_reply

        numbers = [int(n) for n in match.group(1).replace(" ", "").split(",") if n]
        self.batch_requests.append(numbers)
        if len(self.batch_requests) in self.failing_batches:
            raise TimeoutError("chat request timed out")
        return json.dumps({"answers": [answer(n, 2, 2) for n in numbers]})


@pytest.fixture
def db():
    manager = DatabaseManager("sqlite://")
    manager.init_db()
    yield manager
    manager.dispose()


@pytest.fixture
def blobs(tmp_path):
    return LocalBlobStore(tmp_path / "storage", base_url="https://files.example.test")


@pytest.fixture
def documents(db, blobs):
    return DocumentStore(db, blobs)


@pytest.fixture
def progress(db):
    return ExtractionProgressStore(db)


@pytest.fixture
def grading(db):
    return GradingStatusStore(db)


@pytest.fixture
def pdf_bytes():
    return make_pdf(3)
