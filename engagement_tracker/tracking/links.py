"""
Tracking link rewriting for outgoing mail.

Routes every link of an HTML body through the click endpoint, injects the
open pixel and appends one invisible honeypot ("ghost") link that only
automated scanners follow.
"""

from __future__ import annotations

import html as html_lib
import re
from dataclasses import dataclass, field
from typing import List
from urllib.parse import quote

OPEN_PATH = "/open"
CLICK_PATH = "/click"

_TOKEN_RE = re.compile(
    r"(?P<raw><(?P<raw_tag>style|script)\b[^>]*>.*?</(?P=raw_tag)\s*>)"
    r"|(?P<anchor><a\b[^>]*>.*?</a\s*>)"
    r"|(?P<tag><[^>]+>)"
    r"|(?P<url>https?://[^\s<>\"']+)",
    re.IGNORECASE | re.DOTALL,
)
# Only navigational tags; <link>, <base> etc. are fetched on render.
_LINK_TAG_RE = re.compile(r"<(?:a|area)\b", re.IGNORECASE)
_HREF_RE = re.compile(
    r"((?<![\w-])href\s*=\s*)([\"'])(https?://[^\"']+)\2", re.IGNORECASE
)
_BODY_CLOSE_RE = re.compile(r"(</body>)", re.IGNORECASE)
_TRAILING_PUNCTUATION = ".,;:!?)"


@dataclass
class RewriteResult:
    html: str
    tracked_urls: List[str] = field(default_factory=list)


def _query(campaign_id: str, recipient_id: str) -> str:
    return (
        f"campaign_id={quote(campaign_id, safe='')}"
        f"&recipient_id={quote(recipient_id, safe='')}"
    )


def open_pixel_url(base_url: str, campaign_id: str, recipient_id: str) -> str:
    return f"{base_url.rstrip('/')}{OPEN_PATH}?{_query(campaign_id, recipient_id)}"


def tracked_click_url(
    base_url: str,
    campaign_id: str,
    recipient_id: str,
    target: str,
    ghost: bool = False,
) -> str:
    """Return the click endpoint URL carrying ``target`` percent-encoded."""
    url = (
        f"{base_url.rstrip('/')}{CLICK_PATH}?{_query(campaign_id, recipient_id)}"
        f"&url={quote(target, safe='')}"
    )
    if ghost:
        url += "&type=ghost"
    return url


def rewrite_links(
    html_body: str, base_url: str, campaign_id: str, recipient_id: str
) -> RewriteResult:
    """
    Replace all links in the body with tracking links.

    ``href`` values of ``<a>``/``<area>`` tags are rewritten in place; bare
    URLs in text are wrapped in an anchor so they become clickable.  URLs
    already pointing at the click endpoint, other tags and the contents of
    ``<style>``/``<script>`` blocks are left alone.
    """
    result = RewriteResult(html=html_body)
    tracking_prefix = f"{base_url.rstrip('/')}{CLICK_PATH}"

    def track(original: str) -> str:
        tracked = tracked_click_url(base_url, campaign_id, recipient_id, original)
        result.tracked_urls.append(tracked)
        return tracked

    def replace_href(match: re.Match[str]) -> str:
        original = html_lib.unescape(match.group(3))
        if original.startswith(tracking_prefix):
            return match.group(0)
        quote_char = match.group(2)
        return f"{match.group(1)}{quote_char}{track(original)}{quote_char}"

    def replace_token(match: re.Match[str]) -> str:
        if match.group("raw") is not None:
            return match.group(0)
        anchor = match.group("anchor")
        if anchor is not None:
            open_end = anchor.index(">") + 1
            return (
                _HREF_RE.sub(replace_href, anchor[:open_end], count=1)
                + anchor[open_end:]
            )
        tag = match.group("tag")
        if tag is not None:
            if _LINK_TAG_RE.match(tag):
                return _HREF_RE.sub(replace_href, tag, count=1)
            return tag

        bare = match.group("url")
        trailing = ""
        while bare and bare[-1] in _TRAILING_PUNCTUATION:
            trailing = bare[-1] + trailing
            bare = bare[:-1]
        if bare.startswith(tracking_prefix):
            return match.group(0)
        original = html_lib.unescape(bare)
        return f'<a href="{track(original)}">{bare}</a>{trailing}'

    result.html = _TOKEN_RE.sub(replace_token, html_body)
    return result


def inject_tracking_pixel(
    html_body: str, base_url: str, campaign_id: str, recipient_id: str
) -> str:
    """
    Inject a 1x1 tracking pixel into the email body.

    Adds the pixel just before the closing </body> tag,
    or at the end if no </body> tag exists.
    """
    pixel_url = open_pixel_url(base_url, campaign_id, recipient_id)
    pixel_html = (
        f'<img src="{pixel_url}" width="1" height="1" '
        'style="display:block;width:1px;height:1px;border:0;" alt="" />'
    )
    if _BODY_CLOSE_RE.search(html_body):
        return _BODY_CLOSE_RE.sub(
            lambda m: pixel_html + m.group(1), html_body, count=1
        )
    return html_body + pixel_html


def ghost_link(
    base_url: str, campaign_id: str, recipient_id: str, decoy_url: str
) -> str:
    """Return the invisible honeypot anchor for one message."""
    url = tracked_click_url(
        base_url, campaign_id, recipient_id, decoy_url, ghost=True
    )
    return (
        f'<a href="{url}" style="display:none; visibility:hidden; opacity:0; '
        'position:absolute; left:-9999px;">Unsubscribe</a>'
    )


def prepare_tracked_html(
    html_body: str,
    base_url: str,
    campaign_id: str,
    recipient_id: str,
    decoy_url: str,
) -> RewriteResult:
    """
    Prepare an email body for tracking.

    Wraps all links, injects the tracking pixel and appends one ghost link.
    """
    result = rewrite_links(html_body, base_url, campaign_id, recipient_id)
    body = inject_tracking_pixel(result.html, base_url, campaign_id, recipient_id)
    hidden = ghost_link(base_url, campaign_id, recipient_id, decoy_url)
    if _BODY_CLOSE_RE.search(body):
        body = _BODY_CLOSE_RE.sub(lambda m: hidden + m.group(1), body, count=1)
    else:
        body += hidden
    result.html = body
    return result


__all__ = [
    "RewriteResult",
    "open_pixel_url",
    "tracked_click_url",
    "rewrite_links",
    "inject_tracking_pixel",
    "ghost_link",
    "prepare_tracked_html",
]
