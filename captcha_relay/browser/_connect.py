"""Attach to an already running Chrome over the DevTools protocol."""

import logging
from contextlib import contextmanager

from captcha_relay._errors import BrowserUnavailable

logger = logging.getLogger("captcha_relay")

DEFAULT_CDP_PORT = 18800


def cdp_endpoint(port: int, host: str = "127.0.0.1") -> str:
    return f"http://{host}:{port}"


def select_page(pages, hint: str = "recaptcha"):
    """The page whose URL mentions ``hint``, else the first page."""
    for page in pages:
        try:
            if hint in page.url:
                return page
        except Exception:
            continue
    return pages[0] if pages else None


@contextmanager
def connect_over_cdp(endpoint: str, hint: str = "recaptcha"):
    """Yield the page hosting the challenge in the browser at ``endpoint``.

    Disconnects on exit without closing the user's tabs.
    """
    try:
        from patchright.sync_api import sync_playwright
    except ImportError:
        raise ImportError(
            "patchright is required for browser attach. "
            "Install with: pip install captcha-relay[browser]"
        ) from None

    pw = sync_playwright().start()
    try:
        try:
            browser = pw.chromium.connect_over_cdp(endpoint)
        except Exception as e:
            raise BrowserUnavailable(endpoint, str(e)) from e

        try:
            pages = [p for ctx in browser.contexts for p in ctx.pages]
            page = select_page(pages, hint)
            if page is None:
                raise BrowserUnavailable(endpoint, "no open pages")
            logger.info("Attached to %s (%s)", endpoint, page.url)
            yield page
        finally:
            try:
                browser.close()
            except Exception:
                logger.debug("CDP disconnect failed", exc_info=True)
    finally:
        pw.stop()
