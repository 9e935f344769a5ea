from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse
from urllib.robotparser import RobotFileParser

import httpx
from bs4 import BeautifulSoup

from .models import AnalysisResult, SinaisVitais

logger = logging.getLogger(__name__)

USER_AGENT = "icp-scout/0.1"

PIXEL_MARKERS = ["fbq(", "connect.facebook.net", "googletagmanager.com/gtag", "gtag(", "tiktok.com/i18n/pixel"]

TECH_MARKERS = {
    "WordPress": ["wp-content", "wp-includes"],
    "Wix": ["wix.com", "wixstatic.com"],
    "Shopify": ["cdn.shopify.com"],
    "Squarespace": ["squarespace.com"],
    "Elementor": ["elementor"],
    "React": ["data-reactroot", "__next"],
    "Google Tag Manager": ["googletagmanager.com/gtm.js"],
    "Meta Pixel": ["connect.facebook.net"],
    "RD Station": ["rdstation"],
    "WhatsApp": ["wa.me/", "api.whatsapp.com"],
}

INSTAGRAM_RE = re.compile(r"instagram\.com/([A-Za-z0-9_.]+)", re.IGNORECASE)
IGNORED_INSTAGRAM_PATHS = {"p", "reel", "explore", "accounts", "stories"}


@dataclass
class SiteSignals:
    has_pixel: bool = False
    site_tech: list[str] = field(default_factory=list)
    instagram: Optional[str] = None
    tem_login: bool = False

    @property
    def empty(self) -> bool:
        return not (self.has_pixel or self.site_tech or self.instagram or self.tem_login)

    def as_notes(self) -> str:
        parts = [f"pixel de rastreamento: {'sim' if self.has_pixel else 'não'}"]
        if self.site_tech:
            parts.append(f"tecnologias: {', '.join(self.site_tech)}")
        if self.instagram:
            parts.append(f"instagram: @{self.instagram}")
        if self.tem_login:
            parts.append("área de login")
        return "; ".join(parts)

    def merge_into(self, result: AnalysisResult) -> AnalysisResult:
        vitals = result.sinais_vitais or SinaisVitais()
        return result.model_copy(
            update={
                "has_pixel": self.has_pixel,
                "site_tech": self.site_tech or result.site_tech,
                "instagram": result.instagram or self.instagram,
                "sinais_vitais": vitals.model_copy(update={"tem_login": vitals.tem_login or self.tem_login}),
            }
        )


def _allowed_by_robots(url: str) -> bool:
    parsed = urlparse(url)
    parser = RobotFileParser()
    try:
        parser.set_url(f"{parsed.scheme}://{parsed.netloc}/robots.txt")
        parser.read()
        return parser.can_fetch(USER_AGENT, url)
    except Exception:
        return True


def extract_signals(html: str) -> SiteSignals:
    lower = html.lower()
    soup = BeautifulSoup(html, "html.parser")

    instagram = None
    for link in soup.find_all("a"):
        match = INSTAGRAM_RE.search(link.get("href") or "")
        if match and match.group(1).lower() not in IGNORED_INSTAGRAM_PATHS:
            instagram = match.group(1).rstrip("/.")
            break

    tem_login = bool(soup.find("input", attrs={"type": "password"})) or any(
        token in lower for token in ["/login", "area-do-cliente", "área do cliente"]
    )

    return SiteSignals(
        has_pixel=any(marker in lower for marker in PIXEL_MARKERS),
        site_tech=[name for name, markers in TECH_MARKERS.items() if any(marker in lower for marker in markers)],
        instagram=instagram,
        tem_login=tem_login,
    )


async def inspect_site(url: str, client: Optional[httpx.AsyncClient] = None) -> SiteSignals:
    """Fetch a lead's homepage and read marketing/tech signals from it.

    Any fetch failure yields empty signals; inspection never fails a lead.
    """
    if not url:
        return SiteSignals()
    if not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    if not await asyncio.to_thread(_allowed_by_robots, url):
        logger.info("[SITE] %s disallowed by robots.txt", url)
        return SiteSignals()

    owns_client = client is None
    client = client or httpx.AsyncClient(headers={"User-Agent": USER_AGENT}, timeout=20.0)
    try:
        resp = await client.get(url, follow_redirects=True)
        resp.raise_for_status()
        return extract_signals(resp.text)
    except httpx.HTTPError as exc:
        logger.info("[SITE] could not fetch %s: %s", url, exc)
        return SiteSignals()
    finally:
        if owns_client:
            await client.aclose()
