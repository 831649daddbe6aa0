"""Page metadata extraction over a rendered document."""
from __future__ import annotations

import logging
from urllib.parse import urljoin

from bs4 import BeautifulSoup

from .models import Link, PageData

logger = logging.getLogger(__name__)

_SKIPPED_HREF_PREFIXES = ("#", "javascript:")


class PageDocument:
    """The page an agent lives in: its URL, markup and text selection."""

    def __init__(
        self,
        url: str,
        html: str,
        selected_text: str = "",
        device_pixel_ratio: float = 1.0,
    ) -> None:
        self.url = url
        self.html = html
        self.selected_text = selected_text
        self.device_pixel_ratio = device_pixel_ratio
        self._soup = BeautifulSoup(html, "html.parser")

    @property
    def base_uri(self) -> str:
        base = self._soup.find("base", href=True)
        if base is not None:
            return urljoin(self.url, str(base["href"]))
        return self.url

    def select(self, text: str) -> None:
        self.selected_text = text

    def selection(self) -> str:
        return self.selected_text.strip()

    def page_data(self) -> PageData:
        soup = self._soup
        title_tag = soup.find("title")
        title = title_tag.get_text(strip=True) if title_tag is not None else ""
        root = soup.find("html")
        lang = root.get("lang") if root is not None else None

        data = PageData(
            url=self.url,
            title=title or "Untitled Page",
            lang=str(lang) if lang else None,
            description=self._meta("description"),
            keywords=self._meta("keywords"),
            links=self._links(),
            text=self._text(),
            html=self.html,
        )
        logger.debug(
            "Extracted page data: url=%s title=%r links=%d text_len=%d",
            data.url, data.title, len(data.links), len(data.text),
        )
        return data

    def _meta(self, name: str) -> str | None:
        tag = self._soup.find("meta", attrs={"name": name})
        if tag is None:
            return None
        content = tag.get("content")
        return str(content) if content is not None else None

    def _text(self) -> str:
        body = self._soup.find("body")
        if body is None:
            return ""
        return body.get_text("\n", strip=True)

    def _links(self) -> list[Link]:
        body = self._soup.find("body")
        if body is None:
            return []
        base = self.base_uri
        links: list[Link] = []
        for anchor in body.find_all("a"):
            href = anchor.get("href")
            if not href or str(href).startswith(_SKIPPED_HREF_PREFIXES):
                continue
            try:
                url = urljoin(base, str(href))
            except ValueError:
                logger.debug("Skipping invalid href %r", href)
                continue
            text = " ".join(anchor.get_text(" ", strip=True).split())
            links.append(Link(text=text, url=url))
        return links
