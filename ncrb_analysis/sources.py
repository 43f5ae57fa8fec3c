"""
Source readers for the NCRB victims dataset.

Two front ends deliver the same rows: the portal's CSV download (or the
pipeline's own cleaned CSV) and the data.gov.in XML feed.  Both hand the
core a list of raw ``field name -> value`` mappings together with the fixed
alias table that resolves their field names to the canonical schema.
"""

from __future__ import annotations

import logging
import os
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol

import pandas as pd
import requests

from .config import (
    API_KEY_ENV,
    CSV_HEADER_ALIASES,
    DEFAULT_SEP,
    FEED_LIMIT,
    FEED_TIMEOUT,
    FEED_URL,
    SAMPLE_API_KEY,
    XML_METADATA_TAGS,
    XML_TAG_ALIASES,
)

logger = logging.getLogger(__name__)

RawRecord = Dict[str, Any]


class SourceUnavailable(RuntimeError):
    """Raised when the source cannot be fetched or parsed; aborts the run."""


class RecordSource(Protocol):
    """Anything that yields raw region rows for :func:`pipeline.run_pipeline`."""

    name: str
    aliases: Mapping[str, str]
    metadata: Dict[str, str]

    def read(self) -> List[RawRecord]:
        ...


# ---------------------------------------------------------------------------
# Tabular file
# ---------------------------------------------------------------------------


class CsvSource:
    """Read raw rows from a delimited file.

    Every cell is read as text (no NA inference) so the values reaching the
    normalizer look exactly like the ones extracted from the XML feed.
    """

    name = "csv"
    aliases: Mapping[str, str] = CSV_HEADER_ALIASES

    def __init__(self, path: str | Path, sep: str = DEFAULT_SEP) -> None:
        self.path = Path(path)
        self.sep = sep
        self.metadata: Dict[str, str] = {"source": str(self.path)}

    def read(self) -> List[RawRecord]:
        logger.info("Loading CSV data from %s", self.path)
        try:
            frame = pd.read_csv(
                self.path,
                sep=self.sep,
                dtype=str,
                keep_default_na=False,
                encoding="utf-8",
            )
        except (OSError, UnicodeDecodeError, pd.errors.ParserError) as exc:
            raise SourceUnavailable(f"Could not read {self.path}: {exc}") from exc
        except pd.errors.EmptyDataError as exc:
            raise SourceUnavailable(f"{self.path} is empty") from exc

        frame.columns = [str(column).strip() for column in frame.columns]
        records = frame.to_dict(orient="records")
        logger.info("Read %d rows from %s", len(records), self.path.name)
        return records


# ---------------------------------------------------------------------------
# Structured markup feed
# ---------------------------------------------------------------------------


def resolve_api_key(api_key: Optional[str] = None) -> str:
    """Explicit key, then ``DATA_GOV_IN_API_KEY``, then the portal sample key."""
    return api_key or os.getenv(API_KEY_ENV) or SAMPLE_API_KEY


def fetch_feed(
    url: str = FEED_URL,
    *,
    api_key: Optional[str] = None,
    limit: int = FEED_LIMIT,
    timeout: int = FEED_TIMEOUT,
) -> str:
    """Download the resource as XML text."""
    params = {"api-key": resolve_api_key(api_key), "format": "xml", "limit": limit}
    logger.info("Fetching XML feed from %s (limit=%d)", url, limit)
    try:
        response = requests.get(url, params=params, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise SourceUnavailable(f"Fetching {url} failed: {exc}") from exc

    response.encoding = "utf-8"
    return response.text


def _element_text(element: Optional[ET.Element]) -> str:
    if element is None or element.text is None:
        return ""
    return element.text.strip()


def parse_feed(xml_text: str) -> tuple[Dict[str, str], List[RawRecord]]:
    """Split the feed into header metadata and one mapping per ``records/item``.

    Child elements of each item are taken verbatim (tag -> text); alias
    resolution happens in the normalizer.
    """
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise SourceUnavailable(f"Feed is not well-formed XML: {exc}") from exc

    metadata = {
        tag: _element_text(root.find(f".//{tag}")) for tag in XML_METADATA_TAGS
    }

    items = root.findall(".//records/item")
    if not items and root.find(".//records") is None:
        raise SourceUnavailable("Feed has no <records> element")

    records: List[RawRecord] = []
    for item in items:
        records.append({child.tag: _element_text(child) for child in item})
    return metadata, records


class XmlFeedSource:
    """Read raw rows from the data.gov.in XML feed.

    Use :meth:`from_text` to parse an already downloaded document.
    """

    name = "xml"
    aliases: Mapping[str, str] = XML_TAG_ALIASES

    def __init__(
        self,
        url: str = FEED_URL,
        *,
        api_key: Optional[str] = None,
        limit: int = FEED_LIMIT,
        timeout: int = FEED_TIMEOUT,
    ) -> None:
        self.url = url
        self.api_key = api_key
        self.limit = limit
        self.timeout = timeout
        self.metadata: Dict[str, str] = {}
        self._text: Optional[str] = None

    @classmethod
    def from_text(cls, xml_text: str) -> "XmlFeedSource":
        source = cls()
        source._text = xml_text
        return source

    def read(self) -> List[RawRecord]:
        text = self._text
        if text is None:
            text = fetch_feed(
                self.url, api_key=self.api_key, limit=self.limit, timeout=self.timeout
            )
        self.metadata, records = parse_feed(text)

        expected = self.metadata.get("total", "")
        if expected.isdigit() and int(expected) != len(records):
            logger.warning(
                "Feed reports %s records but returned %d; raise the limit to fetch all",
                expected,
                len(records),
            )
        logger.info("Parsed %d records from XML feed", len(records))
        return records
