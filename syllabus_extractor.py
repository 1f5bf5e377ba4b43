"""
Syllabus extraction using Gemini multimodal.

Accepts a photographed/scanned syllabus image or a PDF. Images go to Gemini
as inline parts; PDFs have their text pulled out with PyPDF2 first.
"""

from __future__ import annotations

import io
import base64
import logging

from PyPDF2 import PdfReader
from langchain_core.messages import HumanMessage, SystemMessage

from config import QuestConfig
from errors import GatewayError
from llm import invoke_with_fallback
from models import SyllabusTopic, TopicList

logger = logging.getLogger(__name__)

IMAGE_TYPES = {"image/png", "image/jpeg", "image/jpg", "image/webp", "image/gif", "image/heic"}
PDF_TYPE = "application/pdf"

SYLLABUS_SYSTEM_PROMPT = """\
You are a syllabus analysis engine for a gamified study planner.

Extract every subject in the syllabus and, for each one, its topics in the
order they appear.

Rules:
  - Use the subject names exactly as printed (e.g. "Physics", "Organic Chemistry").
  - One entry per topic; split comma-separated topic lists into separate topics.
  - Do NOT invent topics that are not in the document.
  - Skip administrative text (exam dates, grading, contact info).
  - Return valid JSON matching the schema: {"subjects": [{"subject": ..., "topics": [...]}]}
"""


def is_supported(mime_type: str) -> bool:
    return mime_type in IMAGE_TYPES or mime_type == PDF_TYPE


def pdf_to_text(pdf_bytes: bytes, max_pages: int = 50) -> str:
    """Concatenate the text layer of the first ``max_pages`` pages."""
    try:
        reader = PdfReader(io.BytesIO(pdf_bytes))
        pages = []
        for page in reader.pages[:max_pages]:
            pages.append(page.extract_text() or "")
        return "\n".join(pages)
    except Exception as e:
        logger.error(f"PDF processing error: {e}")
        raise GatewayError("Could not read the PDF. It might be corrupted.") from e


def build_syllabus_message(file_bytes: bytes, mime_type: str, cfg: QuestConfig | None = None) -> HumanMessage:
    """The user turn for extraction: an image part, or the PDF's text."""
    if cfg is None:
        cfg = QuestConfig()

    if mime_type in IMAGE_TYPES:
        b64 = base64.b64encode(file_bytes).decode("utf-8")
        return HumanMessage(content=[
            {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{b64}"}},
            {"type": "text", "text": "Analyze this image of a syllabus. Extract all subjects and their topics."},
        ])

    if mime_type == PDF_TYPE:
        text = pdf_to_text(file_bytes, cfg.max_pdf_pages)
        if not text.strip():
            raise GatewayError(
                "Could not extract any text from the PDF. It might be an image-based PDF or corrupted."
            )
        return HumanMessage(content=(
            f"Here is the text extracted from a syllabus PDF:\n\n---\n{text}\n---\n\n"
            f"Analyze this text. Extract all subjects and their topics."
        ))

    raise GatewayError(f"Unsupported file type: {mime_type or 'unknown'}. Use PDF, PNG, JPG, or WEBP.")


async def extract_topics(
    file_bytes: bytes,
    mime_type: str,
    cfg: QuestConfig | None = None,
) -> list[SyllabusTopic]:
    """
    Extract subjects and topics from a syllabus document.

    Raises:
        GatewayError: unsupported type, unreadable document, Gemini failure,
            or a response with no topics at all
    """
    if cfg is None:
        cfg = QuestConfig()

    message = build_syllabus_message(file_bytes, mime_type, cfg)

    try:
        result: TopicList = await invoke_with_fallback(
            [SystemMessage(content=SYLLABUS_SYSTEM_PROMPT), message],
            schema=TopicList,
            cfg=cfg,
        )
    except Exception as e:
        logger.error(f"Syllabus extraction failed: {e}")
        raise GatewayError("Failed to analyze syllabus. Please try again.") from e

    topics = [
        SyllabusTopic(subject=s.subject.strip(), topics=[t.strip() for t in s.topics if t.strip()])
        for s in result.subjects
        if s.subject.strip()
    ]
    topics = [t for t in topics if t.topics]
    if not topics:
        raise GatewayError("No topics were found in the syllabus.")

    logger.info(f"Extracted {sum(len(t.topics) for t in topics)} topics across {len(topics)} subjects")
    return topics
