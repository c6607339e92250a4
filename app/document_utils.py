import io
from typing import Any, Dict

from pypdf import PdfReader

from .mime_utils import TEXT_TYPES


def read_pdf_metadata(data: bytes) -> Dict[str, Any]:
    reader = PdfReader(io.BytesIO(data))
    info = reader.metadata
    result: Dict[str, Any] = {"pages": len(reader.pages), "encrypted": reader.is_encrypted}
    if info is not None:
        for key, value in (("author", info.author), ("title", info.title),
                           ("subject", info.subject), ("creator", info.creator)):
            if value:
                result[key] = str(value)
    return result


def read_text_metadata(data: bytes) -> Dict[str, Any]:
    text = data.decode("utf-8", errors="replace")
    return {
        "lines": len(text.splitlines()),
        "words": len(text.split()),
        "characters": len(text),
    }


def extract_document_metadata(data: bytes, mime_type: str) -> Dict[str, Any]:
    """Best-effort metadata for document uploads; {} for unsupported types."""
    if mime_type == "application/pdf":
        return read_pdf_metadata(data)
    if mime_type in TEXT_TYPES:
        return read_text_metadata(data)
    return {}
