"""
Vision text extraction through an OpenAI-compatible chat completions API.

``OpenAIVisionExtractor.extract`` sends 1..K page images in one request
and returns a tagged result: ``VisionOk(text)`` or ``VisionErr(reason)``.
Network errors, API errors and timeouts all become ``VisionErr`` so the
batcher can isolate the failure to one batch.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from typing import Protocol, Sequence, Union

from autograde.utils.logger import get_logger

log = get_logger(__name__)

PAGE_MARKER_RE = re.compile(r"^=== PAGE (\d+) ===", re.MULTILINE)

BASE_SYSTEM_PROMPT = (
    "You are an expert at extracting text from educational documents with perfect accuracy. "
    "Extract every visible detail without skipping anything. Each image is one page. "
    "Start the text of every page with a separator line of the form '=== PAGE n ===' "
    "using the page numbers given to you, in the order the images are provided."
)

TYPE_PROMPTS = {
    "student-sheet": (
        " This is a student answer sheet. Extract handwritten content, question numbers, "
        "student responses, MCQ selections (circled, ticked or marked options A, B, C, D) "
        "exactly as they appear, crossed-out and partial answers, and any annotations."
    ),
    "answer": (
        " This is an answer key. Extract question numbers, all answer options, correct "
        "answers, step-by-step solutions, marking schemes and mark distributions."
    ),
    "question": (
        " This is a question paper. Extract every question with its full structure, all "
        "answer options, section headings, instructions and marks allocation."
    ),
    "chapter-material": (
        " This is study material. Extract headings, body text, tables, definitions "
        "and worked examples in reading order."
    ),
}

FORMATTING_PROMPT = (
    " Convert every mathematical expression to LaTeX between $$ delimiters. Convert "
    "diagrams and flowcharts to Mermaid inside ```mermaid code blocks, one node per line "
    "with complete labels; if a diagram cannot be read reliably, describe it in text. "
    "Mark illegible content as [UNCLEAR] but still attempt it."
)


@dataclass(frozen=True)
class VisionOk:
    text: str


@dataclass(frozen=True)
class VisionErr:
    reason: str


VisionResult = Union[VisionOk, VisionErr]


class VisionExtractor(Protocol):
    """Anything that can turn page images into text."""

    async def extract(
        self, images: Sequence[str], document_type: str, first_page: int = 1
    ) -> VisionResult:
        ...


def build_system_prompt(document_type: str) -> str:
    return BASE_SYSTEM_PROMPT + TYPE_PROMPTS.get(document_type, "") + FORMATTING_PROMPT


def ensure_page_marker(text: str, first_page: int, page_count: int) -> str:
    """Prefix a single-page result with its page marker if the model omitted it."""
    if page_count == 1 and text and not PAGE_MARKER_RE.search(text):
        return f"=== PAGE {first_page} ===\n\n{text}"
    return text


class OpenAIVisionExtractor:
    """Vision extractor backed by ``openai.AsyncOpenAI``."""

    def __init__(self, client, model: str = "gpt-4o", timeout: float = 120.0,
                 max_tokens: int = 4096):
        """
        Args:
            client: Configured ``openai.AsyncOpenAI`` (or Azure) instance.
            model: Vision-capable model or deployment name.
            timeout: Wall-clock limit per request, in seconds.
            max_tokens: Completion token cap per request.
        """
        self.client = client
        self.model = model
        self.timeout = timeout
        self.max_tokens = max_tokens

    async def extract(
        self, images: Sequence[str], document_type: str, first_page: int = 1
    ) -> VisionResult:
        """
        Extract text from *images* (data URIs or URLs), in order.

        Args:
            images: 1..K page images.
            document_type: ``question``, ``answer``, ``student-sheet`` or
                ``chapter-material``; tunes the prompt.
            first_page: Page number of ``images[0]`` in the document.
        """
        if not images:
            return VisionErr("no images provided")

        last_page = first_page + len(images) - 1
        content = [{
            "type": "text",
            "text": (
                f"Extract ALL text from these {document_type} pages exactly as they appear. "
                f"The {len(images)} image(s) are pages {first_page} to {last_page}."
            ),
        }]
        for uri in images:
            content.append({"type": "image_url", "image_url": {"url": uri, "detail": "high"}})

        messages = [
            {"role": "system", "content": build_system_prompt(document_type)},
            {"role": "user", "content": content},
        ]

        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    temperature=0.1,
                    max_tokens=self.max_tokens,
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            log.error("Vision request for pages %d-%d timed out after %.0fs",
                      first_page, last_page, self.timeout)
            return VisionErr(f"Request timed out after {self.timeout:.0f} seconds")
        except Exception as exc:
            log.error("Vision request for pages %d-%d failed: %s", first_page, last_page, exc)
            return VisionErr(str(exc) or exc.__class__.__name__)

        if not response.choices or response.choices[0].message is None:
            return VisionErr("Invalid response from vision API")

        text = (response.choices[0].message.content or "").strip()
        log.debug("Vision pages %d-%d: %d chars", first_page, last_page, len(text))
        return VisionOk(ensure_page_marker(text, first_page, len(images)))
