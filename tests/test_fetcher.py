import httpx
import pytest

from orchestrator.core.fetcher import DocumentFetcher, extract_llms_links, html_to_text

PAGE = """
<html>
  <head><title>Install</title><script>track()</script></head>
  <body>
    <nav>Home | Blog</nav>
    <main>
      <h1>Installing</h1>
      <p>Run the installer.</p>
    </main>
    <footer>(c) Widget</footer>
  </body>
</html>
"""


def test_html_to_text_keeps_main_content():
    title, text = html_to_text(PAGE)

    assert title == "Install"
    assert text == "Installing\nRun the installer."


def test_extract_llms_links_dedupes_fragments():
    content = (
        "- [Guide](https://docs.example.com/guide#top)\n"
        "- [Guide again](https://docs.example.com/guide)\n"
        "- [Reference](https://docs.example.com/ref.md): all of it\n"
        "- not a link\n"
    )

    assert extract_llms_links(content, "https://docs.example.com/llms.txt") == [
        ("Guide", "https://docs.example.com/guide"),
        ("Reference", "https://docs.example.com/ref.md"),
    ]


def site(pages: dict[str, str]):
    def handler(request: httpx.Request) -> httpx.Response:
        body = pages.get(request.url.path)
        if body is None:
            return httpx.Response(404)
        return httpx.Response(200, html=body)

    return handler


async def crawl(pages, root, **kwargs):
    async with httpx.AsyncClient(transport=httpx.MockTransport(site(pages))) as client:
        return await DocumentFetcher(client=client, **kwargs).fetch(root, "website")


async def test_crawl_stays_under_the_root_path():
    pages = {
        "/guide/": (
            "<html><head><title>Guide</title></head><body>"
            '<a href="/guide/install">Install</a>'
            '<a href="/guide/install#windows">Install on Windows</a>'
            '<a href="/guide/missing">Missing</a>'
            '<a href="/blog/post">Blog</a>'
            '<a href="https://elsewhere.example.org/guide/">Elsewhere</a>'
            "</body></html>"
        ),
        "/guide/install": PAGE,
        "/blog/post": "<html><body>blog</body></html>",
    }

    documents = await crawl(pages, "https://docs.example.com/guide/")

    assert [d.url for d in documents] == [
        "https://docs.example.com/guide/",
        "https://docs.example.com/guide/install",
    ]
    assert documents[1].title == "Install"


async def test_crawl_respects_link_budget():
    links = "".join(f'<a href="/p{i}">p{i}</a>' for i in range(10))
    pages = {"/": f"<html><body>{links}</body></html>"}
    pages.update({f"/p{i}": f"<html><body>page {i}</body></html>" for i in range(10)})

    documents = await crawl(pages, "https://docs.example.com/", max_links=4)

    assert len(documents) == 4


async def test_unreachable_root_raises():
    with pytest.raises(httpx.HTTPStatusError):
        await crawl({}, "https://docs.example.com/")
