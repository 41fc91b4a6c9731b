"""Retrieval session: one long-lived browser page (Playwright) or HTTP client (httpx) per worker."""

import subprocess
import sys
import time

import httpx
from bs4 import BeautifulSoup
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeout
from playwright.sync_api import sync_playwright

from mdharvest.errors import FetchFailure, FetchTimeout

# Browser-like UA to reduce 403 from sites that block scrapers
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)
DEFAULT_TIMEOUT = 15.0

DEFAULT_HEADERS = {
    "User-Agent": DEFAULT_USER_AGENT,
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}

# Playwright wait_until values; httpx mode ignores them
WAIT_MINIMAL = "domcontentloaded"
WAIT_IDLE = "networkidle"


class Session:
    """
    Page handle owned by exactly one worker thread.

    Browser mode keeps one Playwright instance, browser, context and page for the
    session's lifetime (the sync API is bound to the thread that started it).
    Static mode uses a pooled httpx client and parses the response with
    BeautifulSoup so the same calls (title, selector wait, content) work.
    """

    def __init__(
        self,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        headers: dict[str, str] | None = None,
        use_browser: bool = True,
        headed: bool = False,
    ) -> None:
        self._timeout = timeout
        self._headers = {**DEFAULT_HEADERS, **(headers or {})}
        self._use_browser = use_browser
        self._headed = headed
        self._client: httpx.Client | None = None
        self._playwright = None
        self._browser = None
        self._browser_context = None
        self._page = None
        # Static mode state from the last goto
        self._html = ""
        self._soup: BeautifulSoup | None = None
        self.url: str | None = None
        self.status: int | None = None

    def spawn(self) -> "Session":
        """Return a new, unstarted Session with the same config (for another worker)."""
        return Session(
            timeout=self._timeout,
            headers=self._headers,
            use_browser=self._use_browser,
            headed=self._headed,
        )

    @property
    def use_browser(self) -> bool:
        return self._use_browser

    def start(self) -> "Session":
        """Acquire the underlying handle. Errors propagate to the caller."""
        if self._use_browser:
            self._get_page()
        else:
            self._get_client()
        return self

    def _get_client(self) -> httpx.Client:
        if self._client is None or self._client.is_closed:
            self._client = httpx.Client(
                follow_redirects=True,
                timeout=self._timeout,
                headers=self._headers,
            )
        return self._client

    def _get_page(self):
        """Lazy-init Playwright browser, context and the single page this session drives."""
        if self._page is not None:
            return self._page
        self._playwright = sync_playwright().start()
        headless = not self._headed
        launch_args = ["--no-sandbox", "--disable-setuid-sandbox"]
        try:
            self._browser = self._playwright.chromium.launch(headless=headless, args=launch_args)
        except PlaywrightError as e:
            exc_str = str(e).lower()
            if "executable doesn't exist" in exc_str or "executable does not exist" in exc_str:
                print("Installing Playwright Chromium (one-time)...", file=sys.stderr)
                subprocess.run(
                    [sys.executable, "-m", "playwright", "install", "chromium"],
                    check=True,
                    timeout=300,
                )
                self._browser = self._playwright.chromium.launch(headless=headless, args=launch_args)
            else:
                raise
        self._browser_context = self._browser.new_context(
            viewport={"width": 1280, "height": 720},
            user_agent=self._headers.get("User-Agent", DEFAULT_USER_AGENT),
        )
        self._page = self._browser_context.new_page()
        return self._page

    def close(self) -> None:
        if self._client and not self._client.is_closed:
            self._client.close()
        for attr in ("_page", "_browser_context", "_browser"):
            handle = getattr(self, attr)
            if handle is not None:
                try:
                    handle.close()
                except PlaywrightError:
                    pass
                setattr(self, attr, None)
        if self._playwright is not None:
            try:
                self._playwright.stop()
            except PlaywrightError:
                pass
            self._playwright = None

    def __enter__(self) -> "Session":
        return self.start()

    def __exit__(self, *args: object) -> None:
        self.close()

    def goto(self, url: str, *, wait_until: str = WAIT_MINIMAL, timeout: float | None = None) -> None:
        """
        Navigate to url and wait for wait_until.
        Raises FetchTimeout when the wait condition is not met in time, FetchFailure otherwise.
        """
        timeout = self._timeout if timeout is None else timeout
        self.url = url
        self.status = None
        if self._use_browser:
            page = self._get_page()
            try:
                resp = page.goto(url, wait_until=wait_until, timeout=int(timeout * 1000))
            except PlaywrightTimeout as e:
                raise FetchTimeout(f"Timeout {int(timeout * 1000)}ms exceeded navigating to {url}") from e
            except PlaywrightError as e:
                raise FetchFailure(str(e).splitlines()[0]) from e
            self.status = resp.status if resp is not None else None
            return
        try:
            resp = self._get_client().get(url, timeout=timeout)
        except httpx.TimeoutException as e:
            raise FetchTimeout(f"Timeout after {timeout:.0f}s fetching {url}") from e
        except httpx.RequestError as e:
            raise FetchFailure(f"{type(e).__name__}: {e}") from e
        self.status = resp.status_code
        # 404 pages still carry a title; the direct strategy reads it
        if resp.status_code >= 400 and resp.status_code != 404:
            raise FetchFailure(f"HTTP {resp.status_code} for url '{url}'")
        self._html = resp.text
        self._soup = BeautifulSoup(self._html, "lxml")

    def settle(self, seconds: float) -> None:
        """Give client-side rendering time to finish."""
        if seconds <= 0:
            return
        if self._use_browser:
            self._get_page().wait_for_timeout(seconds * 1000)
        else:
            time.sleep(seconds)

    def wait_for_selector(self, selector: str, *, timeout: float) -> bool:
        """True if selector matched before timeout. A miss is not an error."""
        if self._use_browser:
            try:
                self._get_page().wait_for_selector(selector, timeout=int(timeout * 1000))
                return True
            except PlaywrightTimeout:
                return False
        return self._soup is not None and self._soup.select_one(selector) is not None

    def title(self) -> str:
        if self._use_browser:
            return self._get_page().title()
        if self._soup is None or self._soup.title is None:
            return ""
        return self._soup.title.get_text(strip=True)

    def content(self) -> str:
        if self._use_browser:
            return self._get_page().content()
        return self._html
