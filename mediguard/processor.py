import base64
import io
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import fitz
import openai
from openai import OpenAI
from PIL import Image

from .analysis import BillAnalysis, parse_analysis
from .config import Settings
from .errors import ClientInputError, ServerConfigurationError, UpstreamFailure
from .prompts import build_image_instruction, build_messages, build_text_message, format_insurance

logger = logging.getLogger(__name__)

ANALYSIS_TEMPERATURE = 0.2
PDF_RENDER_ZOOM = 2.0

PDF_MIME_TYPE = "application/pdf"
DEFAULT_IMAGE_MIME_TYPE = "image/png"
# Raster formats chat-completion image parts accept as-is
PASSTHROUGH_IMAGE_TYPES = {"image/png", "image/jpeg", "image/gif", "image/webp"}

MISSING_INPUT_MESSAGE = "Please upload a bill image/PDF or paste the bill text."
MISSING_TEXT_MESSAGE = "billText is required."


def resolve_mime_type(content_type: Optional[str], data: bytes) -> str:
    """Normalize the declared upload type. Unspecified types default to PNG."""
    mime = (content_type or "").split(";")[0].strip().lower()
    if data.startswith(b"%PDF") and mime in ("", "application/octet-stream"):
        return PDF_MIME_TYPE
    return mime or DEFAULT_IMAGE_MIME_TYPE


def is_supported_mime_type(mime: str) -> bool:
    return mime == PDF_MIME_TYPE or mime.startswith("image/")


@dataclass
class BillUpload:
    filename: str
    content_type: Optional[str]
    data: bytes

    @property
    def mime_type(self) -> str:
        return resolve_mime_type(self.content_type, self.data)

    @property
    def is_usable(self) -> bool:
        return bool(self.data) and is_supported_mime_type(self.mime_type)


@dataclass
class BillSubmission:
    """One analysis request: either bill text or a bill file, never both."""

    bill_text: Optional[str] = None
    bill_file: Optional[BillUpload] = None
    user_question: str = ""
    insurance_provider: str = ""

    @property
    def insurance_context(self) -> str:
        return format_insurance(self.insurance_provider)


def _optional_str(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def submission_from_json(body: Any) -> BillSubmission:
    if not isinstance(body, dict):
        raise ClientInputError(MISSING_TEXT_MESSAGE)
    bill_text = body.get("billText")
    if not isinstance(bill_text, str) or not bill_text.strip():
        raise ClientInputError(MISSING_TEXT_MESSAGE)
    return BillSubmission(
        bill_text=bill_text,
        user_question=_optional_str(body.get("userQuestion")),
        insurance_provider=_optional_str(body.get("insuranceProvider")),
    )


def submission_from_form(
    bill_text: Any,
    upload: Optional[BillUpload],
    user_question: Any = None,
    insurance_provider: Any = None,
    max_upload_bytes: Optional[int] = None,
) -> BillSubmission:
    """Pick the input from a multipart form. A usable file wins over pasted text."""
    question = _optional_str(user_question)
    provider = _optional_str(insurance_provider)

    if upload is not None and upload.is_usable:
        if max_upload_bytes and len(upload.data) > max_upload_bytes:
            limit_mb = max_upload_bytes / (1024 * 1024)
            raise ClientInputError(f"File too large (max {limit_mb:g} MB).")
        return BillSubmission(bill_file=upload, user_question=question, insurance_provider=provider)

    if upload is not None:
        logger.info(f"Ignoring unusable upload {upload.filename!r} ({upload.mime_type}, {len(upload.data)} bytes)")

    if isinstance(bill_text, str) and bill_text.strip():
        return BillSubmission(bill_text=bill_text.strip(), user_question=question, insurance_provider=provider)

    raise ClientInputError(MISSING_INPUT_MESSAGE)


def to_data_uri(mime_type: str, data: bytes) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('utf-8')}"


def render_pdf_pages(pdf_bytes: bytes, max_pages: int) -> List[bytes]:
    """Rasterize the first pages of a PDF to PNG bytes."""
    try:
        doc = fitz.open(stream=pdf_bytes, filetype="pdf")
    except (RuntimeError, ValueError) as e:
        raise ClientInputError("Could not read the uploaded PDF.") from e

    with doc:
        if doc.needs_pass:
            raise ClientInputError("The uploaded PDF is password protected.")
        if doc.page_count == 0:
            raise ClientInputError("The uploaded PDF has no pages.")
        if doc.page_count > max_pages:
            logger.warning(f"PDF has {doc.page_count} pages, only the first {max_pages} are analyzed")
        pages = []
        for index in range(min(doc.page_count, max_pages)):
            page = doc.load_page(index)
            pix = page.get_pixmap(matrix=fitz.Matrix(PDF_RENDER_ZOOM, PDF_RENDER_ZOOM))
            pages.append(pix.tobytes("png"))
    return pages


def reencode_as_png(image_bytes: bytes) -> bytes:
    try:
        with Image.open(io.BytesIO(image_bytes)) as image:
            if image.mode not in ("RGB", "RGBA", "L", "LA", "P"):
                image = image.convert("RGB")
            buffer = io.BytesIO()
            image.save(buffer, format="PNG")
            return buffer.getvalue()
    except OSError as e:
        raise ClientInputError("Could not read the uploaded image.") from e


def prepare_image_urls(upload: BillUpload, max_pdf_pages: int) -> List[str]:
    """Data URIs for every image part to attach to the chat message."""
    mime = upload.mime_type
    if mime == PDF_MIME_TYPE:
        pages = render_pdf_pages(upload.data, max_pdf_pages)
        logger.info(f"Rendered {len(pages)} PDF page(s) from {upload.filename!r}")
        return [to_data_uri(DEFAULT_IMAGE_MIME_TYPE, page) for page in pages]
    if mime in PASSTHROUGH_IMAGE_TYPES:
        return [to_data_uri(mime, upload.data)]
    logger.info(f"Re-encoding {mime} upload {upload.filename!r} as PNG")
    return [to_data_uri(DEFAULT_IMAGE_MIME_TYPE, reencode_as_png(upload.data))]


def build_submission_messages(submission: BillSubmission, max_pdf_pages: int = 5) -> List[Dict[str, Any]]:
    if submission.bill_file is not None:
        image_urls = prepare_image_urls(submission.bill_file, max_pdf_pages)
        instruction = build_image_instruction(
            submission.insurance_context, submission.user_question, page_count=len(image_urls)
        )
        content = [{"type": "text", "text": instruction}]
        content.extend({"type": "image_url", "image_url": {"url": url}} for url in image_urls)
        return build_messages(content)

    if not submission.bill_text:
        raise ClientInputError(MISSING_INPUT_MESSAGE)
    return build_messages(
        build_text_message(submission.bill_text, submission.insurance_context, submission.user_question)
    )


def create_llm_client(settings: Settings) -> OpenAI:
    if not settings.openai_api_key:
        logger.error("OPENAI_API_KEY is not set.")
        raise ServerConfigurationError(detail="OPENAI_API_KEY is not set")
    # Retrying is the caller's decision
    return OpenAI(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout=settings.openai_timeout,
        max_retries=0,
    )


def request_analysis(client: OpenAI, messages: List[Dict[str, Any]], model: str) -> str:
    """Send one chat completion and return the trimmed answer text."""
    try:
        completion = client.chat.completions.create(
            model=model,
            messages=messages,
            temperature=ANALYSIS_TEMPERATURE,
        )
    except openai.APIStatusError as e:
        body = e.response.text if e.response is not None else None
        logger.error(f"OpenAI error ({e.status_code}): {body}")
        raise UpstreamFailure("OpenAI request failed.", body=body) from e
    except openai.OpenAIError as e:
        logger.error(f"OpenAI request failed: {type(e).__name__}: {e}")
        raise UpstreamFailure("OpenAI request failed.") from e

    answer = ""
    if completion.choices:
        answer = (completion.choices[0].message.content or "").strip()
    if not answer:
        logger.error("No answer returned from OpenAI.")
        raise UpstreamFailure("No answer returned from OpenAI.")
    return answer


def analyze_submission(client: OpenAI, submission: BillSubmission, settings: Settings) -> BillAnalysis:
    messages = build_submission_messages(submission, settings.max_pdf_pages)
    answer = request_analysis(client, messages, settings.openai_model)
    return parse_analysis(answer)
