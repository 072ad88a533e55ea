"""
Document Fetcher - Retrieves llms.txt and website documentation sources.
"""

import re
from dataclasses import dataclass
from urllib.parse import urldefrag, urljoin, urlparse

import httpx
import structlog
from bs4 import BeautifulSoup
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from orchestrator.config import get_settings

settings = get_settings()
logger = structlog.get_logger(__name__)

_MARKDOWN_LINK = re.compile(r"\[([^\]]+)\]\((https?://[^)\s]+)\)")


@dataclass
class FetchedDocument:
    url: str
    title: str
    content: str


def _is_retryable(exception: BaseException) -> bool:
    if isinstance(exception, httpx.HTTPStatusError):
        status = exception.response.status_code
        return status == 429 or status >= 500
    return isinstance(exception, httpx.TransportError)


def html_to_text(html: str) -> tuple[str, str]:
    """Strip markup, scripts and navigation; return (title, text)."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "nav", "footer", "header", "noscript"]):
        tag.decompose()
    title = soup.title.get_text(strip=True) if soup.title else ""
    body = soup.find("main") or soup.body or soup
    lines = [line.strip() for line in body.get_text("\n").splitlines()]
    return title, "\n".join(line for line in lines if line)


def extract_llms_links(content: str, base_url: str) -> list[tuple[str, str]]:
    """Return (title, url) pairs for the markdown links of an llms.txt file."""
    seen: set[str] = set()
    links = []
    for title, url in _MARKDOWN_LINK.findall(content):
        absolute = urldefrag(urljoin(base_url, url))[0]
        if absolute not in seen:
            seen.add(absolute)
            links.append((title.strip(), absolute))
    return links


class DocumentFetcher:
    """Fetches documentation pages over HTTP with retries."""

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
        max_links: int | None = None,
    ) -> None:
        self._client = client
        self.timeout = timeout or settings.crawler_timeout_seconds
        self.max_links = max_links or settings.crawler_max_links

    @retry(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _get(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        response = await client.get(url)
        response.raise_for_status()
        return response

    async def fetch(self, url: str, source_type: str) -> list[FetchedDocument]:
        """
        Fetch every document reachable from a source.

        Args:
            url: llms.txt location or website root
            source_type: "llmstxt" or "website"

        Returns:
            Documents in discovery order

        Raises:
            httpx.HTTPError: If the entry point cannot be fetched
        """
        if self._client is not None:
            return await self._fetch(self._client, url, source_type)
        async with httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            headers={"User-Agent": f"{settings.app_name}/docs-fetcher"},
        ) as client:
            return await self._fetch(client, url, source_type)

    async def _fetch(
        self,
        client: httpx.AsyncClient,
        url: str,
        source_type: str,
    ) -> list[FetchedDocument]:
        if source_type == "llmstxt":
            return await self._fetch_llms_txt(client, url)
        return await self._crawl_website(client, url)

    async def _fetch_llms_txt(
        self,
        client: httpx.AsyncClient,
        url: str,
    ) -> list[FetchedDocument]:
        response = await self._get(client, url)
        index = response.text
        documents = [FetchedDocument(url=url, title="llms.txt", content=index)]

        for title, link in extract_llms_links(index, url)[: self.max_links]:
            try:
                linked = await self._get(client, link)
            except httpx.HTTPError as e:
                await logger.awarning("docs_link_fetch_failed", url=link, error=str(e))
                continue
            content = linked.text
            if "html" in linked.headers.get("content-type", ""):
                page_title, content = html_to_text(content)
                title = title or page_title
            documents.append(FetchedDocument(url=link, title=title, content=content))

        return documents

    async def _crawl_website(
        self,
        client: httpx.AsyncClient,
        root: str,
    ) -> list[FetchedDocument]:
        origin = urlparse(root)
        queue = [root]
        seen: set[str] = set()
        documents: list[FetchedDocument] = []

        while queue and len(seen) < self.max_links:
            url = queue.pop(0)
            if url in seen:
                continue
            seen.add(url)

            try:
                response = await self._get(client, url)
            except httpx.HTTPError:
                if url == root:
                    raise
                await logger.awarning("docs_page_fetch_failed", url=url)
                continue

            if "html" not in response.headers.get("content-type", "text/html"):
                continue

            title, text = html_to_text(response.text)
            if text:
                documents.append(FetchedDocument(url=url, title=title or url, content=text))

            soup = BeautifulSoup(response.text, "html.parser")
            for anchor in soup.select("a[href]"):
                link = urldefrag(urljoin(url, anchor["href"]))[0]
                parsed = urlparse(link)
                if parsed.netloc == origin.netloc and parsed.path.startswith(origin.path.rstrip("/")):
                    if link not in seen:
                        queue.append(link)

        return documents
