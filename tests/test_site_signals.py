import asyncio

import httpx

from icp_scout import site_signals
from icp_scout.models import AnalysisResult
from icp_scout.site_signals import SiteSignals, extract_signals, inspect_site

from helpers import GOOD_PAYLOAD

HOMEPAGE = """
<html>
  <head>
    <link rel="stylesheet" href="/wp-content/themes/bella/style.css">
    <script>fbq('init', '123');</script>
  </head>
  <body>
    <a href="https://www.instagram.com/p/abc123">post</a>
    <a href="https://instagram.com/clinicabella/">Instagram</a>
    <a href="https://wa.me/5521999990000">WhatsApp</a>
    <form><input type="password" name="senha"></form>
  </body>
</html>
"""


def test_extract_signals_reads_markers() -> None:
    signals = extract_signals(HOMEPAGE)

    assert signals.has_pixel is True
    assert signals.site_tech == ["WordPress", "WhatsApp"]
    assert signals.instagram == "clinicabella"
    assert signals.tem_login is True


def test_plain_page_has_no_signals() -> None:
    signals = extract_signals("<html><body><p>Bem-vindo</p></body></html>")

    assert signals.empty
    assert signals.as_notes() == "pixel de rastreamento: não"


def test_merge_keeps_model_instagram() -> None:
    result = AnalysisResult.coerce({**GOOD_PAYLOAD, "instagram": "bella.oficial"})
    merged = SiteSignals(has_pixel=True, site_tech=["Wix"], instagram="outra", tem_login=True).merge_into(result)

    assert merged.instagram == "bella.oficial"
    assert merged.has_pixel is True
    assert merged.site_tech == ["Wix"]
    assert merged.sinais_vitais.tem_login is True
    assert merged.icp_level == "N1"


def test_inspect_site_fetches_homepage(monkeypatch) -> None:
    monkeypatch.setattr(site_signals, "_allowed_by_robots", lambda url: True)
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(f"{request.url.scheme}://{request.url.host}")
        return httpx.Response(200, text=HOMEPAGE)

    async def scenario() -> SiteSignals:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await inspect_site("bella.com.br", client=client)

    signals = asyncio.run(scenario())

    assert seen == ["https://bella.com.br"]
    assert signals.instagram == "clinicabella"


def test_inspect_site_failures_yield_empty_signals(monkeypatch) -> None:
    monkeypatch.setattr(site_signals, "_allowed_by_robots", lambda url: True)

    async def scenario() -> SiteSignals:
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        async with httpx.AsyncClient(transport=transport) as client:
            return await inspect_site("https://bella.com.br", client=client)

    assert asyncio.run(scenario()).empty


def test_inspect_site_respects_robots(monkeypatch) -> None:
    monkeypatch.setattr(site_signals, "_allowed_by_robots", lambda url: False)

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("should not fetch")

    async def scenario() -> SiteSignals:
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await inspect_site("https://bella.com.br", client=client)

    assert asyncio.run(scenario()).empty


def test_unreadable_robots_allows_fetch(monkeypatch) -> None:
    def undecodable(self) -> None:
        raise UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")

    monkeypatch.setattr(site_signals.RobotFileParser, "read", undecodable)

    assert site_signals._allowed_by_robots("https://bella.com.br") is True
