"""Turn downloaded document bytes into text for classification."""

import csv
import io
import logging
from dataclasses import dataclass
from typing import Optional

import openpyxl
import pypdf

from app.services.collaborators import OcrClient, UnsupportedFileTypeError

logger = logging.getLogger(__name__)

PDF = "application/pdf"
XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
CSV = "text/csv"

SUPPORTED_MIME_TYPES = frozenset(
    {
        PDF,
        "image/jpeg",
        "image/png",
        "image/heic",
        "image/heif",
        DOCX,
        XLSX,
        CSV,
    }
)

# Classifier context is limited; longer text is truncated
MAX_TEXT_CHARS = 10000


def is_supported_file_type(mime_type: str) -> bool:
    return mime_type in SUPPORTED_MIME_TYPES


@dataclass
class ExtractionResult:
    text: str
    method: str  # 'text' or 'ocr'
    page_count: int


class DocumentExtractor:
    """Extract text locally where possible and fall back to OCR."""

    def __init__(self, ocr_client: Optional[OcrClient] = None):
        self.ocr_client = ocr_client

    async def extract(self, content: bytes, mime_type: str) -> ExtractionResult:
        """
        Extract text from a document.

        Digital PDFs, spreadsheets and CSV files are read locally. Scanned
        PDFs, images and Word documents go to the OCR client.

        Raises:
            UnsupportedFileTypeError: for unknown MIME types, or when OCR is
                required and no OCR client is configured.
        """
        if not is_supported_file_type(mime_type):
            raise UnsupportedFileTypeError(
                f"File type {mime_type} is not supported. "
                f"Supported types: PDF, JPG, PNG, HEIC, DOCX, XLSX, CSV"
            )

        if mime_type == PDF:
            result = self._extract_pdf(content)
            if result is not None:
                return self._truncate(result)
        elif mime_type == XLSX:
            return self._truncate(self._extract_excel(content))
        elif mime_type == CSV:
            return self._truncate(self._extract_csv(content))

        return self._truncate(await self._ocr(content, mime_type))

    def _extract_pdf(self, content: bytes) -> Optional[ExtractionResult]:
        """Read embedded text; None when the PDF looks scanned."""
        try:
            reader = pypdf.PdfReader(io.BytesIO(content))
            pages = [page.extract_text() or "" for page in reader.pages]
        except pypdf.errors.PdfReadError as e:
            logger.warning(f"PDF text extraction failed, falling back to OCR: {e}")
            return None

        combined_text = "\n".join(text for text in pages if text)
        words = combined_text.split()
        # Scanned if very little text, or text looks garbled
        is_scanned = (
            len(combined_text.strip()) < 200
            or len(words) < 20
            or sum(1 for w in words if len(w) > 15) / max(len(words), 1) > 0.3
        )
        if is_scanned:
            logger.info("PDF appears to be scanned or has poor text extraction")
            return None

        return ExtractionResult(text=combined_text, method="text", page_count=len(pages))

    def _extract_excel(self, content: bytes) -> ExtractionResult:
        workbook = openpyxl.load_workbook(io.BytesIO(content), data_only=True, read_only=True)
        text_content = []
        for sheet_name in workbook.sheetnames:
            sheet = workbook[sheet_name]
            text_content.append(f"Sheet: {sheet_name}\n")
            for row in sheet.iter_rows(values_only=True):
                row_data = [str(cell) if cell is not None else "" for cell in row]
                if any(row_data):
                    text_content.append("\t".join(row_data))
            text_content.append("\n")
        page_count = len(workbook.sheetnames)
        workbook.close()
        return ExtractionResult(text="\n".join(text_content), method="text", page_count=page_count)

    def _extract_csv(self, content: bytes) -> ExtractionResult:
        reader = csv.reader(io.StringIO(content.decode("utf-8", errors="ignore")))
        rows = ["\t".join(row) for row in reader if row]
        return ExtractionResult(text="\n".join(rows), method="text", page_count=1)

    async def _ocr(self, content: bytes, mime_type: str) -> ExtractionResult:
        if self.ocr_client is None:
            raise UnsupportedFileTypeError(f"OCR is required for {mime_type} but no OCR client is configured")
        text = await self.ocr_client.extract(content, mime_type)
        return ExtractionResult(text=text, method="ocr", page_count=1)

    @staticmethod
    def _truncate(result: ExtractionResult) -> ExtractionResult:
        if len(result.text) > MAX_TEXT_CHARS:
            result.text = result.text[:MAX_TEXT_CHARS]
        return result
