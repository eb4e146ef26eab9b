"""
Page parsers: turn a fetched Document into child job descriptors or terminal records.

The crawl core only relies on PageParser.parse; the concrete selectors live
here and can be swapped by passing another parser to the Crawler.
"""

from typing import Iterable, Iterator
from urllib.parse import urljoin

from bs4 import BeautifulSoup, Tag

from cnes_crawler.errors import ParseError
from cnes_crawler.jobs import ChildJob, Job, JobKind, Record
from cnes_crawler.service import Document

ParsedItem = ChildJob | Record


class PageParser:
    """
    Parser contract. parse() returns a finite, possibly lazy sequence of
    ChildJob descriptors and/or Records. Raise ParseError for documents that
    do not have the expected shape.
    """

    name: str = "base"
    version: str = "0"

    def parse(self, job: Job, document: Document) -> Iterable[ParsedItem]:
        raise NotImplementedError


# Listing containers are absolutely positioned divs identified only by their inline style
STATES_SEL = (
    "div[style='width:300; height:209; POSITION: absolute; TOP: 185px; LEFT: 400px; overflow:auto'] table tr"
)
CITIES_SEL = (
    "div[style='width:450; height:300; POSITION: absolute; TOP: 201px; LEFT: 180px; overflow:auto'] table tr"
)
ENTITIES_SEL = (
    "div[style='width:539; height:500; POSITION: absolute; TOP:198px; LEFT: 121px; overflow:auto'] table a"
)


def _text(node: Tag | None) -> str:
    return node.get_text(" ", strip=True) if node is not None else ""


def _select(soup: BeautifulSoup, selector: str, url: str, what: str) -> list[Tag]:
    nodes = soup.select(selector)
    if not nodes:
        raise ParseError(url, f"no {what} listing found (page layout changed?)")
    return nodes


class CnesParser(PageParser):
    """Parser for the CNES establishment catalog: states -> municipalities -> establishments."""

    name = "cnes"
    version = "absolute-layout-1"

    def parse(self, job: Job, document: Document) -> Iterator[ParsedItem]:
        if job.kind == JobKind.ROOT:
            return self._states(document)
        if job.kind == JobKind.REGION:
            return self._cities(job, document)
        if job.kind == JobKind.SUBREGION:
            return self._entities(job, document)
        raise ParseError(job.url, f"no parser for job kind {job.kind.value}")

    def _states(self, document: Document) -> Iterator[ParsedItem]:
        for row in _select(document.soup, STATES_SEL, document.url, "state"):
            cells = row.find_all("td")
            if not cells:
                continue
            link = cells[0].find("a")
            name = _text(cells[0])
            if link is None:
                # Header and spacer rows carry no link
                continue
            yield ChildJob(JobKind.REGION, name, link.get("href"), parent_key=name)

    def _cities(self, job: Job, document: Document) -> Iterator[ParsedItem]:
        for row in _select(document.soup, CITIES_SEL, document.url, "municipality"):
            cells = row.find_all("td")
            if len(cells) < 2:
                continue
            link = cells[1].find("a")
            if link is None:
                continue
            ibge = _text(cells[0])
            yield ChildJob(JobKind.SUBREGION, _text(cells[1]), link.get("href"), parent_key=ibge or job.parent_key)

    def _entities(self, job: Job, document: Document) -> Iterator[ParsedItem]:
        # A municipality may legitimately list no establishments
        for link in document.soup.select(ENTITIES_SEL):
            name = _text(link)
            if not name:
                continue
            href = link.get("href")
            yield Record(
                name=name,
                url=urljoin(document.url, href.strip()) if href else None,
                parent_key=job.parent_key,
                data={"municipality": job.display_name},
            )
