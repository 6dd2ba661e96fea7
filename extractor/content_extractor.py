"""Content extraction for uploaded timetable files."""
import asyncio
import csv
import io
import logging
import zipfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, time as dt_time
from typing import Any, Dict, Iterable, List, Optional

import openpyxl
from bs4 import BeautifulSoup
from openpyxl.utils.exceptions import InvalidFileException

from processor.errors import UnsupportedFormat
from processor.models import ExtractedContent

logger = logging.getLogger(__name__)

FORMATS = ('csv', 'excel', 'text', 'html', 'image', 'pdf')

IMAGE_EXTENSIONS = ('.png', '.jpg', '.jpeg', '.gif', '.webp', '.bmp', '.tif', '.tiff')


@dataclass
class UploadedFile:
    """File uploaded by the user."""
    name: str
    content: bytes
    content_type: str = ''


def detect_format(file: UploadedFile, declared_format: Optional[str] = None) -> str:
    """
    Classify an uploaded file from its name and declared MIME type.

    Args:
        file: Uploaded file
        declared_format: Either one of FORMATS or a MIME type overriding
            file.content_type

    Returns:
        One of FORMATS

    Raises:
        UnsupportedFormat: If the file cannot be classified
    """
    if declared_format and declared_format.lower() in FORMATS:
        return declared_format.lower()

    name = file.name.lower()
    mime = (declared_format or file.content_type or '').lower()

    if name.endswith('.csv') or 'csv' in mime:
        return 'csv'
    if name.endswith('.xls') or mime == 'application/vnd.ms-excel':
        raise UnsupportedFormat(
            f"Unsupported file type: legacy .xls spreadsheet {file.name}; save it as .xlsx"
        )
    if name.endswith(('.xlsx', '.xlsm')) or 'spreadsheet' in mime:
        return 'excel'
    if name.endswith(('.html', '.htm')) or 'html' in mime:
        return 'html'
    if name.endswith('.pdf') or 'pdf' in mime:
        return 'pdf'
    if name.endswith(IMAGE_EXTENSIONS) or mime.startswith('image/'):
        return 'image'
    if name.endswith('.txt') or 'text' in mime:
        return 'text'

    raise UnsupportedFormat(
        f"Unsupported file type: {file.content_type or file.name}"
    )


class TextExtractionBackend(ABC):
    """Extracts plain text from image and PDF uploads."""

    @abstractmethod
    async def extract_text(self, file: UploadedFile, file_format: str) -> str:
        """Return the text content of an image or PDF file."""


class PlaceholderTextExtractor(TextExtractionBackend):
    """
    Stand-in for an OCR / PDF text service.

    Returns a fixed illustrative timetable after a short simulated delay.
    Production deployments must inject a real backend.
    """

    IMAGE_TEXT = """
UNIVERSITY TIMETABLE - COMPUTER SCIENCE DEPARTMENT

Monday:
09:00-10:30 Advanced Algorithms (CS401) - Room 101, CS Building - Dr. Smith
11:00-12:30 Database Systems Lab (CS302) - Lab 205, Engineering Building - Prof. Johnson
14:00-15:30 Machine Learning (CS501) - Lecture Hall A - Dr. Williams

Tuesday:
10:00-11:30 Software Engineering (CS301) - Room 303, CS Building - Dr. Brown
13:00-14:30 Computer Networks (CS402) - Room 201, CS Building - Prof. Davis

Wednesday:
09:00-10:30 Advanced Algorithms (CS401) - Room 101, CS Building - Dr. Smith
15:00-16:00 Project Meeting - Conference Room B - Team Lead
"""

    PDF_TEXT = """
Course Schedule - Fall 2024

Course: Advanced Algorithms
Code: CS401
Time: Monday, Wednesday 09:00-10:30
Location: Room 101, Computer Science Building
Instructor: Dr. Smith

Course: Database Systems Lab
Code: CS302
Time: Monday 11:00-12:30
Location: Lab 205, Engineering Building
Instructor: Prof. Johnson
"""

    def __init__(self, image_delay: float = 1.0, pdf_delay: float = 1.5):
        self.image_delay = image_delay
        self.pdf_delay = pdf_delay

    async def extract_text(self, file: UploadedFile, file_format: str) -> str:
        logger.warning(
            f"Using placeholder text extraction for '{file.name}'; "
            f"no OCR/PDF backend is configured"
        )
        if file_format == 'pdf':
            await asyncio.sleep(self.pdf_delay)
            return self.PDF_TEXT
        await asyncio.sleep(self.image_delay)
        return self.IMAGE_TEXT


class ContentExtractor:
    """Produces raw text and header-keyed rows from uploaded files."""

    def __init__(self, text_backend: Optional[TextExtractionBackend] = None):
        """
        Initialize the content extractor.

        Args:
            text_backend: Backend used for image and PDF uploads
        """
        self.text_backend = text_backend or PlaceholderTextExtractor()

    async def extract(self, file: UploadedFile,
                      declared_format: Optional[str] = None) -> ExtractedContent:
        """
        Extract raw content from an uploaded file.

        Args:
            file: Uploaded file
            declared_format: Optional format name or MIME type

        Returns:
            ExtractedContent with rows for structured sources and text for
            textual ones

        Raises:
            UnsupportedFormat: If the file format cannot be classified or read
        """
        file_format = detect_format(file, declared_format)
        logger.info(f"Extracting '{file.name}' as {file_format}")

        if file_format == 'excel':
            rows = await asyncio.to_thread(self._read_workbook, file.content)
            return ExtractedContent(format=file_format, rows=rows)

        if file_format in ('image', 'pdf'):
            text = await self.text_backend.extract_text(file, file_format)
            return ExtractedContent(format=file_format, text=text)

        text = self._decode(file.content)

        if file_format == 'csv':
            return ExtractedContent(
                format=file_format,
                rows=self.parse_delimited(text),
                text=text
            )

        if file_format == 'html':
            return self._read_html(text)

        # Plain text is only treated as rows when it looks delimited
        lines = [line for line in text.splitlines() if line.strip()]
        if any(',' in line or ';' in line for line in lines):
            delimiter = ';' if ';' in text else ','
            return ExtractedContent(
                format=file_format,
                rows=self.parse_delimited(text, delimiter),
                text=text
            )

        logger.info("Unstructured text detected - requires AI parsing")
        return ExtractedContent(format=file_format, text=text)

    @staticmethod
    def parse_delimited(text: str, delimiter: str = ',') -> List[Dict[str, str]]:
        """Parse delimited text with a header row into header-keyed rows."""
        reader = csv.reader(io.StringIO(text), delimiter=delimiter)
        return rows_from_table(reader)

    @staticmethod
    def _decode(content: bytes) -> str:
        return content.decode('utf-8-sig', errors='replace')

    def _read_workbook(self, content: bytes) -> List[Dict[str, str]]:
        try:
            workbook = openpyxl.load_workbook(
                io.BytesIO(content), read_only=True, data_only=True
            )
        except (InvalidFileException, zipfile.BadZipFile, KeyError) as e:
            raise UnsupportedFormat(f"Unreadable spreadsheet: {e}") from e

        try:
            if not workbook.worksheets:
                return []
            sheet = workbook.worksheets[0]
            table = (
                [_cell_to_text(value) for value in row]
                for row in sheet.iter_rows(values_only=True)
            )
            return rows_from_table(table)
        finally:
            workbook.close()

    def _read_html(self, text: str) -> ExtractedContent:
        soup = BeautifulSoup(text, 'html.parser')
        table = soup.find('table')

        if table is None:
            return ExtractedContent(
                format='html',
                text=soup.get_text(separator='\n', strip=True)
            )

        cells = (
            [cell.get_text(strip=True) for cell in tr.find_all(['th', 'td'])]
            for tr in table.find_all('tr')
        )
        return ExtractedContent(
            format='html',
            rows=rows_from_table(cells),
            text=table.get_text(separator=' ', strip=True)
        )


def rows_from_table(table: Iterable[List[str]]) -> List[Dict[str, str]]:
    """
    Convert a table into header-keyed rows.

    The first non-empty row is the header row; headers are trimmed and
    lower-cased. Empty rows are skipped and missing cells become "".
    """
    headers = None
    rows = []

    for values in table:
        if not any(str(value).strip() for value in values):
            continue
        if headers is None:
            headers = [str(value).strip().lower() for value in values]
            continue
        row = {}
        for index, header in enumerate(headers):
            if not header:
                continue
            row[header] = values[index] if index < len(values) else ''
        rows.append(row)

    return rows


def _cell_to_text(value: Any) -> str:
    """Render a spreadsheet cell value as text."""
    if value is None:
        return ''
    if isinstance(value, datetime):
        if value.time() == dt_time(0, 0):
            return value.date().isoformat()
        return value.strftime('%Y-%m-%d %H:%M')
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dt_time):
        return value.strftime('%H:%M')
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()
