"""
Decoding and parsing of uploaded Ads Manager export files.

Exports arrive as UTF-8, UTF-16LE (Excel "Unicode text") or Windows-1252, with
comma or tab delimiters, stray BOMs and control characters. parse_csv_bytes
copes with all of these and never raises for malformed content: broken rows
become diagnostics and everything that could be recovered is returned.
"""

import csv
import io
import re
import codecs
import logging
from dataclasses import dataclass, field, asdict
from typing import Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

CONTROL_CHARS = re.compile(r"[\x01-\x08\x0B\x0C\x0E-\x1F\x7F]")

# Header substrings used to spot the columns an import cannot do without
ESSENTIAL_FIELDS = {
    "campaign_name": (("campaign", "name"),),
    "campaign_status": (("campaign", "status"),),
    "campaign_objective": (("campaign", "objective"),),
    "budget": (("budget",),),
    "targeting": (("address",), ("location",), ("countr",)),
    "content": (("body",), ("message",)),
    "page_reference": (("link object",), ("permalink",)),
    "post_reference": (("permalink",), ("story id",), ("post id",)),
    "optimization_goal": (("optimization",),),
}

TEMPLATE_HEADERS = [
    "Campaign Name",
    "Campaign Status",
    "Campaign Objective",
    "Campaign Daily Budget",
    "Campaign Bid Strategy",
    "Optimization Goal",
    "Billing Event",
    "Countries",
    "Age Min",
    "Age Max",
    "Gender",
    "Advantage Audience",
    "Link Object ID",
    "Permalink",
    "Story ID",
    "Destination Type",
    "Call to Action",
    "Body",
    "Display Link",
]

TEMPLATE_SAMPLE = [
    "Campaign Test",
    "PAUSED",
    "Outcome Engagement",
    "50000",
    "Automatic",
    "Post Engagement",
    "Impressions",
    "VN",
    "18",
    "45",
    "All",
    "Yes",
    "o:104882489141131",
    "https://www.facebook.com/104882489141131/posts/724361597203916",
    "s:724361597203916",
    "MESSENGER",
    "LEARN_MORE",
    "Discover our amazing products and services!",
    "https://facebook.com",
]


@dataclass
class EncodingReport:
    encoding: str = "utf-8"
    fallback_used: bool = False
    bom_removed: bool = False
    null_bytes_removed: int = 0
    control_chars_removed: int = 0
    original_length: int = 0
    cleaned_length: int = 0
    notes: List[str] = field(default_factory=list)


@dataclass
class ParseDiagnostic:
    row_index: int
    message: str


@dataclass
class ParseResult:
    rows: List[Dict[str, str]] = field(default_factory=list)
    diagnostics: List[ParseDiagnostic] = field(default_factory=list)
    headers: List[str] = field(default_factory=list)
    delimiter: str = ","
    encoding: EncodingReport = field(default_factory=EncodingReport)
    empty_rows: int = 0


def _looks_like_utf16le(data: bytes) -> bool:
    if data.startswith(codecs.BOM_UTF16_LE):
        return True
    odd_bytes = data[1::2]
    if not odd_bytes:
        return False
    return odd_bytes.count(0) / len(odd_bytes) > 0.3


def decode_bytes(data: bytes) -> Tuple[str, EncodingReport]:
    """
    Decode an upload, trying UTF-8, UTF-16LE, Windows-1252, then lossy UTF-8.

    UTF-16LE is only attempted when the bytes carry its BOM or the NUL-byte
    pattern of two-byte text, since nearly any even-length buffer decodes as
    UTF-16 without error.
    """
    report = EncodingReport()

    try:
        return data.decode("utf-8"), report
    except UnicodeDecodeError:
        logger.debug("Upload is not valid UTF-8, trying fallbacks")

    report.fallback_used = True
    if _looks_like_utf16le(data):
        try:
            text = data.decode("utf-16-le")
            report.encoding = "utf-16-le"
            report.notes.append("UTF-16 encoding detected")
            return text, report
        except UnicodeDecodeError:
            logger.debug("Upload is not valid UTF-16LE")

    try:
        text = data.decode("cp1252")
        report.encoding = "cp1252"
        report.notes.append("Windows-1252 encoding detected")
        return text, report
    except UnicodeDecodeError:
        logger.debug("Upload is not valid Windows-1252")

    report.encoding = "utf-8"
    report.notes.append("Encoding detection failed, using UTF-8 with replacement")
    return data.decode("utf-8", errors="replace"), report


def clean_text(text: str, report: EncodingReport) -> str:
    """Strip the BOM, NUL bytes and control characters, recording what was removed."""
    report.original_length = len(text)

    if text.startswith("\ufeff"):
        text = text[1:]
        report.bom_removed = True
        report.notes.append("BOM removed")

    null_count = text.count("\x00")
    if null_count:
        text = text.replace("\x00", "")
        report.null_bytes_removed = null_count
        report.notes.append(f"{null_count} null bytes removed")

    text, control_count = CONTROL_CHARS.subn("", text)
    if control_count:
        report.control_chars_removed = control_count
        report.notes.append(f"{control_count} control characters removed")

    report.cleaned_length = len(text)
    return text


def detect_delimiter(text: str) -> str:
    return "\t" if "\t" in text else ","


def _is_blank(record: List[str]) -> bool:
    return not any(value.strip() for value in record)


class _LineFeed:
    """Line iterator for csv.reader that can be rewound after a broken record."""

    def __init__(self, text: str):
        self.lines = io.StringIO(text, newline="").readlines()
        self.position = 0

    def __iter__(self):
        return self

    def __next__(self) -> str:
        if self.position >= len(self.lines):
            raise StopIteration
        line = self.lines[self.position]
        self.position += 1
        return line

    @property
    def exhausted(self) -> bool:
        return self.position >= len(self.lines)


def parse_csv_text(
    text: str,
    delimiter: Optional[str] = None,
    logger: Optional[logging.Logger] = None,
) -> ParseResult:
    """
    Parse cleaned export text into rows keyed by trimmed header names.

    Quoted fields may contain the delimiter, doubled quotes and newlines.
    Blank lines are skipped. Rows that cannot be parsed are reported in
    diagnostics with their 1-based data row index and do not stop the parse.
    A quote left open swallows the rest of the input, so the parse resumes on
    the line after the record that opened it.
    """
    logger = logger or logging.getLogger(__name__)
    result = ParseResult(delimiter=delimiter or detect_delimiter(text))
    feed = _LineFeed(text)
    reader = csv.reader(
        feed,
        delimiter=result.delimiter,
        quotechar='"',
        doublequote=True,
        strict=True,
    )

    header_positions: List[Tuple[int, str]] = []
    header_width = 0
    row_index = 0

    while True:
        start = feed.position
        try:
            record = next(reader)
        except StopIteration:
            break
        except csv.Error as e:
            if header_positions:
                row_index += 1
            result.diagnostics.append(ParseDiagnostic(row_index, f"line {start + 1}: {e}"))
            logger.warning(f"Skipping unparseable row {row_index}: {e}")
            if feed.exhausted and feed.position > start + 1:
                feed.position = start + 1
            continue

        if not header_positions:
            if _is_blank(record):
                continue
            seen = set()
            for position, name in enumerate(record):
                name = name.strip()
                if not name:
                    continue
                if name in seen:
                    result.diagnostics.append(
                        ParseDiagnostic(0, f"duplicate header '{name}' ignored")
                    )
                    continue
                seen.add(name)
                header_positions.append((position, name))
                result.headers.append(name)
            header_width = len(record)
            continue

        if _is_blank(record):
            result.empty_rows += 1
            continue

        row_index += 1
        if len(record) > header_width and not _is_blank(record[header_width:]):
            result.diagnostics.append(
                ParseDiagnostic(
                    row_index,
                    f"line {start + 1}: expected {header_width} fields, "
                    f"found {len(record)}",
                )
            )
            logger.warning(f"Dropping row {row_index}: too many fields")
            continue
        if len(record) < header_width:
            result.diagnostics.append(
                ParseDiagnostic(
                    row_index,
                    f"line {start + 1}: expected {header_width} fields, "
                    f"found {len(record)}; missing values left empty",
                )
            )
            record = record + [""] * (header_width - len(record))

        result.rows.append({name: record[position] for position, name in header_positions})

    if not header_positions:
        result.diagnostics.append(ParseDiagnostic(0, "no header row found"))

    return result


def parse_csv_bytes(data: bytes, logger: Optional[logging.Logger] = None) -> ParseResult:
    """
    Decode, clean and parse an uploaded export.

    Args:
        data: Raw bytes of the uploaded file
        logger: Logger for parse warnings; the module logger when omitted

    Returns:
        ParseResult with rows, diagnostics, headers, delimiter and encoding report
    """
    logger = logger or logging.getLogger(__name__)
    text, report = decode_bytes(data)
    text = clean_text(text, report)
    result = parse_csv_text(text, logger=logger)
    result.encoding = report
    logger.info(
        f"Parsed {len(result.rows)} rows ({report.encoding}, "
        f"delimiter={'TAB' if result.delimiter == chr(9) else 'COMMA'}, "
        f"{len(result.diagnostics)} diagnostics)"
    )
    return result


def find_essential_fields(headers: List[str]) -> Dict[str, Optional[str]]:
    """Return, for each essential field, the first header that looks like it."""
    found: Dict[str, Optional[str]] = {}
    for key, alternatives in ESSENTIAL_FIELDS.items():
        found[key] = None
        for header in headers:
            lowered = header.lower()
            if any(all(part in lowered for part in parts) for parts in alternatives):
                found[key] = header
                break
    return found


def preview_csv(
    data: bytes, sample_size: int = 3, logger: Optional[logging.Logger] = None
) -> dict:
    """
    Summarize an upload without importing it.

    Returns:
        Dictionary with delimiter, headers, essential field detection, sample rows,
        parse errors, encoding information and row statistics
    """
    result = parse_csv_bytes(data, logger)
    headers = result.headers
    report = result.encoding

    return {
        "delimiter": result.delimiter,
        "total_headers": len(headers),
        "headers": headers[:20],
        "campaign_fields": [
            h for h in headers if "campaign" in h.lower() or "name" in h.lower()
        ],
        "essential_fields": find_essential_fields(headers),
        "sample_data": result.rows[:sample_size],
        "parse_errors": [asdict(d) for d in result.diagnostics[:5]],
        "warnings": [f"Row {d.row_index}: {d.message}" for d in result.diagnostics],
        "encoding": {
            "detected_encoding": report.encoding,
            "fallback_used": report.fallback_used,
            "encoding_issues": list(report.notes),
            "original_length": report.original_length,
            "cleaned_length": report.cleaned_length,
            "has_issues": bool(report.notes or result.diagnostics),
        },
        "stats": {
            "total_rows": len(result.rows) + result.empty_rows,
            "valid_rows": len(result.rows),
            "empty_rows": result.empty_rows,
        },
    }


def generate_csv_template() -> str:
    """Return a one-row example export with every column the importer reads."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(TEMPLATE_HEADERS)
    writer.writerow(TEMPLATE_SAMPLE)
    return buffer.getvalue()
