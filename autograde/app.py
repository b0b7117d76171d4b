"""
Composition root: builds and wires every service from a Config.

Components take their collaborators through constructors; this is the
only place that reads the process configuration and creates the OpenAI
client, the database engine and the blob store.
"""

from dataclasses import dataclass
from typing import Optional

from autograde.config import Config, get_config
from autograde.database.db_manager import DatabaseManager
from autograde.database.document_store import DocumentStore
from autograde.database.grading_store import GradingStatusStore
from autograde.database.progress_store import ExtractionProgressStore
from autograde.evaluation.chat_client import ChatCompleter, OpenAIChatClient
from autograde.evaluation.evaluator_orchestrator import EvaluationOrchestrator
from autograde.extraction.batcher import ExtractionBatcher
from autograde.extraction.service import DocumentExtractionService
from autograde.extraction.vision_client import OpenAIVisionExtractor, VisionExtractor
from autograde.processing.grading_runner import GradingRunner
from autograde.storage.blob_store import LocalBlobStore
from autograde.utils.logger import get_logger, setup_logging

log = get_logger(__name__)


@dataclass
class Services:
    config: Config
    db: DatabaseManager
    blobs: LocalBlobStore
    documents: DocumentStore
    progress: ExtractionProgressStore
    grading: GradingStatusStore
    batcher: ExtractionBatcher
    extraction: DocumentExtractionService
    orchestrator: EvaluationOrchestrator
    runner: GradingRunner

    def close(self) -> None:
        self.db.dispose()


def _openai_client(config: Config):
    from openai import AsyncOpenAI

    return AsyncOpenAI(api_key=config.OPENAI_API_KEY, base_url=config.OPENAI_BASE_URL)


def build_services(
    config: Optional[Config] = None,
    vision: Optional[VisionExtractor] = None,
    chat: Optional[ChatCompleter] = None,
    db: Optional[DatabaseManager] = None,
) -> Services:
    """
    Build the full object graph.

    Args:
        config: Defaults to :func:`autograde.config.get_config`.
        vision: Vision extractor; an OpenAI one is built when omitted.
        chat: Chat client; an OpenAI one is built when omitted.
        db: Database manager; built from ``DATABASE_URL`` when omitted.
    """
    config = config or get_config()
    setup_logging(config.LOG_LEVEL, config.LOG_DIR)

    if not config.validate():
        log.warning("Configuration has warnings — some features may not work.")

    if vision is None or chat is None:
        client = _openai_client(config)
        if vision is None:
            vision = OpenAIVisionExtractor(
                client, config.OPENAI_VISION_MODEL, config.VISION_TIMEOUT_SECONDS
            )
        if chat is None:
            chat = OpenAIChatClient(
                client, config.OPENAI_CHAT_MODEL, config.CHAT_TIMEOUT_SECONDS
            )

    db = db or DatabaseManager(config.DATABASE_URL)
    db.init_db()

    blobs = LocalBlobStore(config.STORAGE_ROOT, config.STORAGE_BASE_URL)
    documents = DocumentStore(db, blobs)
    progress = ExtractionProgressStore(db)
    grading = GradingStatusStore(db)

    batcher = ExtractionBatcher(
        vision, progress, max_concurrent_batches=config.MAX_CONCURRENT_BATCHES
    )
    extraction = DocumentExtractionService.from_config(config, documents, progress, batcher)
    orchestrator = EvaluationOrchestrator(
        chat,
        single_shot_threshold=config.SINGLE_SHOT_THRESHOLD,
        question_batch_size=config.QUESTION_BATCH_SIZE,
    )
    runner = GradingRunner(documents, grading, orchestrator, extraction)

    log.info("Services ready (database %s, storage %s)",
             db.engine.url.render_as_string(hide_password=True), config.STORAGE_ROOT)
    return Services(config, db, blobs, documents, progress, grading,
                    batcher, extraction, orchestrator, runner)
