"""Data acquisition utilities: NHANES listing pages and XPT downloads."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from pathlib import Path
from typing import Iterable
from urllib.parse import urlparse

import requests
from bs4 import BeautifulSoup


logger = logging.getLogger(__name__)

SITE_ORIGIN = "https://wwwn.cdc.gov"
LISTING_PAGE_URL = f"{SITE_ORIGIN}/nchs/nhanes/search/datapage.aspx"
CYCLE_BEGIN_YEAR = 2017

LISTING_URLS = {
    component: f"{LISTING_PAGE_URL}?Component={component}&CycleBeginYear={CYCLE_BEGIN_YEAR}"
    for component in ("Demographics", "Examination", "Questionnaire")
}

DATA_FILE_EXTENSION = ".xpt"
DOC_SUFFIX = " Doc"

REQUEST_TIMEOUT_SECONDS = 120
USER_AGENT = "nhanes-diabetes-report/1.0"


@dataclass(frozen=True)
class CatalogEntry:
    code: str
    description: str
    url: str


@dataclass(frozen=True)
class Catalog:
    category: str
    urls: set[str] = field(default_factory=set)
    descriptions: dict[str, str] = field(default_factory=dict)
    entries: list[CatalogEntry] = field(default_factory=list)


def _absolute_url(href: str) -> str:
    if urlparse(href).scheme:
        return href
    return SITE_ORIGIN + ("" if href.startswith("/") else "/") + href


def _file_code(url: str) -> str:
    return Path(urlparse(url).path).stem.upper()


def parse_catalog(category: str, html: str) -> Catalog:
    """Extract XPT links and code descriptions from a listing page."""
    soup = BeautifulSoup(html, "html.parser")

    urls: set[str] = set()
    for link in soup.find_all("a", href=True):
        href = link["href"].strip()
        if href.lower().endswith(DATA_FILE_EXTENSION):
            urls.add(_absolute_url(href))

    descriptions: dict[str, str] = {}
    for row in soup.find_all("tr"):
        cells = row.find_all("td")
        if len(cells) < 2:
            continue
        description = cells[0].get_text(" ", strip=True)
        code = cells[1].get_text(" ", strip=True)
        if code.endswith(DOC_SUFFIX):
            code = code[: -len(DOC_SUFFIX)].strip()
        if code and description:
            descriptions[code] = description

    entries = [
        CatalogEntry(
            code=_file_code(url),
            description=descriptions.get(_file_code(url), _file_code(url)),
            url=url,
        )
        for url in sorted(urls)
    ]
    return Catalog(category=category, urls=urls, descriptions=descriptions, entries=entries)


def fetch_catalog(
    category: str, listing_url: str, session: requests.Session | None = None
) -> Catalog:
    """Fetch one listing page. Fetch errors propagate to the caller."""
    http = session or requests
    response = http.get(
        listing_url,
        timeout=REQUEST_TIMEOUT_SECONDS,
        headers={"User-Agent": USER_AGENT},
    )
    response.raise_for_status()
    catalog = parse_catalog(category, response.text)
    logger.info("%s: %d data files listed", category, len(catalog.urls))
    return catalog


def merge_catalogs(catalogs: Iterable[Catalog]) -> Catalog:
    """Combine per-category catalogs; later categories win on duplicate codes."""
    urls: set[str] = set()
    descriptions: dict[str, str] = {}
    entries: dict[str, CatalogEntry] = {}
    categories: list[str] = []
    for catalog in catalogs:
        categories.append(catalog.category)
        urls |= catalog.urls
        descriptions.update(catalog.descriptions)
        for entry in catalog.entries:
            entries[entry.url] = entry
    return Catalog(
        category="+".join(categories),
        urls=urls,
        descriptions=descriptions,
        entries=[entries[url] for url in sorted(entries)],
    )


def select_urls(entries: Iterable[CatalogEntry], codes: Iterable[str] | None = None) -> list[str]:
    """URLs of the catalog entries whose file code is one of ``codes``.

    Every entry is selected when ``codes`` is ``None``.
    """
    wanted = None if codes is None else {code.upper() for code in codes}
    selected = [entry for entry in entries if wanted is None or entry.code in wanted]
    for entry in selected:
        logger.debug("Selected %s (%s)", entry.code, entry.description)
    return sorted(entry.url for entry in selected)


def download_file(
    url: str, destination_dir: Path, session: requests.Session | None = None
) -> Path | None:
    """Download one file unless it already exists.

    Returns the local path, or ``None`` when the fetch failed.
    """
    destination_dir.mkdir(parents=True, exist_ok=True)
    file_name = Path(urlparse(url).path).name
    destination = destination_dir / file_name
    if destination.exists():
        return destination

    http = session or requests
    try:
        response = http.get(
            url,
            timeout=REQUEST_TIMEOUT_SECONDS,
            headers={"User-Agent": USER_AGENT},
        )
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.warning("Skipping %s: %s", file_name, exc)
        return None

    destination.write_bytes(response.content)
    logger.info("Saved %s", destination)
    return destination


def download_files(
    urls: Iterable[str], destination_dir: Path, session: requests.Session | None = None
) -> list[Path]:
    """Download each URL in order; failed fetches are logged and skipped."""
    paths: list[Path] = []
    for url in urls:
        path = download_file(url, destination_dir, session=session)
        if path is not None:
            paths.append(path)
    return paths


def download_nhanes_data(
    raw_root: Path,
    codes: Iterable[str] | None = None,
    listing_urls: dict[str, str] | None = None,
) -> tuple[Catalog, list[Path]]:
    """Fetch every listing page and download its XPT files into ``raw_root``."""
    raw_root.mkdir(parents=True, exist_ok=True)
    with requests.Session() as session:
        catalogs = [
            fetch_catalog(category, url, session=session)
            for category, url in (listing_urls or LISTING_URLS).items()
        ]
        catalog = merge_catalogs(catalogs)
        urls = select_urls(catalog.entries, codes)
        paths = download_files(urls, raw_root, session=session)
    logger.info("%d of %d files available in %s", len(paths), len(urls), raw_root)
    return catalog, paths
