"""
parsers.py — Strategy cascade for scraped markup.

Government bulletin pages change layout without notice, so extraction is
split into independent strategies tried in order:

    1. TableRowStrategy  — structured <tr>/<td> rows
    2. TextRegexStrategy — regex over the text of selected blocks
    3. PageWideStrategy  — best-effort search over the whole page text

ParserCascade stops at the first strategy that yields at least one
plausible record. A record is plausible when its coordinates and its
intensity both parse as numbers; anything else is dropped silently.

Usage:
    cascade = ParserCascade([
        TableRowStrategy(parse_row, min_cells=6),
        PageWideStrategy(scan_text),
    ])
    records = cascade.try_extract(cascade.parse(html))
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import Callable, Iterable, List, Optional, Pattern, Sequence, Union

from bs4 import BeautifulSoup
from bs4.element import Tag

from hazardwatch.hazards.models import ProvisionalRecord
from hazardwatch.hazards.normalizer import parse_number

logger = logging.getLogger(__name__)

RowParser = Callable[[List[str], Tag], Optional[ProvisionalRecord]]
MatchBuilder = Callable[["re.Match[str]", str], Optional[ProvisionalRecord]]
TextScanner = Callable[[str], List[ProvisionalRecord]]


def is_plausible(record: ProvisionalRecord) -> bool:
    """Coordinates and intensity all parse as numbers."""
    return (
        parse_number(record.latitude) is not None
        and parse_number(record.longitude) is not None
        and parse_number(record.intensity) is not None
    )


def cell_texts(row: Tag) -> List[str]:
    return [" ".join(c.get_text(" ").split()) for c in row.find_all(["td", "th"])]


class ExtractionStrategy(ABC):
    """One way of pulling provisional records out of a parsed page."""

    name: str = "strategy"

    @abstractmethod
    def try_extract(self, page: BeautifulSoup) -> List[ProvisionalRecord]:
        ...


class TableRowStrategy(ExtractionStrategy):
    """
    Hand each table row with at least min_cells cells to row_parser.

    table_filter, when given, restricts rows to tables whose text it accepts
    (e.g. tables containing a "Date - Time" header).
    """

    name = "table_rows"

    def __init__(
        self,
        row_parser: RowParser,
        *,
        min_cells: int = 2,
        table_selector: str = "table",
        table_filter: Optional[Callable[[str], bool]] = None,
    ):
        self.row_parser = row_parser
        self.min_cells = min_cells
        self.table_selector = table_selector
        self.table_filter = table_filter

    def try_extract(self, page: BeautifulSoup) -> List[ProvisionalRecord]:
        records: List[ProvisionalRecord] = []
        for table in page.select(self.table_selector):
            if self.table_filter and not self.table_filter(table.get_text(" ")):
                continue
            for row in table.find_all("tr"):
                cells = cell_texts(row)
                if len(cells) < self.min_cells:
                    continue
                record = self.row_parser(cells, row)
                if record is not None:
                    records.append(record)
            if records:
                break
        return records


class TextRegexStrategy(ExtractionStrategy):
    """
    Run a regex over the text of each block matched by selectors.

    Selectors are tried in order and the first one producing records wins.
    With first_match_only, only the leftmost match of each block counts.
    Blocks shorter than min_length or already seen (by their leading text)
    are skipped.
    """

    name = "text_regex"

    def __init__(
        self,
        pattern: Union[str, Pattern[str]],
        builder: MatchBuilder,
        *,
        selectors: Sequence[str] = ("article", ".content", "p", "div"),
        min_length: int = 0,
        block_filter: Optional[Callable[[str], bool]] = None,
        first_match_only: bool = False,
    ):
        self.first_match_only = first_match_only
        self.pattern = re.compile(pattern, re.IGNORECASE) if isinstance(pattern, str) else pattern
        self.builder = builder
        self.selectors = tuple(selectors)
        self.min_length = min_length
        self.block_filter = block_filter

    def try_extract(self, page: BeautifulSoup) -> List[ProvisionalRecord]:
        seen = set()
        for selector in self.selectors:
            records: List[ProvisionalRecord] = []
            for element in page.select(selector):
                text = " ".join(element.get_text(" ").split())
                if len(text) < self.min_length:
                    continue
                if self.block_filter and not self.block_filter(text):
                    continue
                fingerprint = text[:100]
                if fingerprint in seen:
                    continue
                seen.add(fingerprint)
                if self.first_match_only:
                    first = self.pattern.search(text)
                    matches = [first] if first else []
                else:
                    matches = self.pattern.finditer(text)
                for match in matches:
                    record = self.builder(match, text)
                    if record is not None:
                        records.append(record)
            if records:
                return records
        return []


class PageWideStrategy(ExtractionStrategy):
    """Feed the whole visible page text to a scanner function."""

    name = "page_wide"

    def __init__(self, scanner: TextScanner):
        self.scanner = scanner

    def try_extract(self, page: BeautifulSoup) -> List[ProvisionalRecord]:
        body = page.body or page
        return self.scanner(" ".join(body.get_text(" ").split()))


class ParserCascade:
    """Ordered strategies; the first with a plausible result wins."""

    def __init__(self, strategies: Iterable[ExtractionStrategy]):
        self.strategies = list(strategies)

    @staticmethod
    def parse(html: str) -> BeautifulSoup:
        return BeautifulSoup(html, "html.parser")

    def try_extract(self, page: Union[BeautifulSoup, str]) -> List[ProvisionalRecord]:
        if isinstance(page, str):
            page = self.parse(page)
        for strategy in self.strategies:
            try:
                candidates = strategy.try_extract(page)
            except (AttributeError, IndexError, KeyError, ValueError) as exc:
                logger.debug("Strategy %s failed: %s", strategy.name, exc)
                continue
            plausible = [r for r in candidates if is_plausible(r)]
            if plausible:
                logger.debug(
                    "Strategy %s extracted %d records (%d dropped)",
                    strategy.name, len(plausible), len(candidates) - len(plausible),
                )
                return plausible
        return []
