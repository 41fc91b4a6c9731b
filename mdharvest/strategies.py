"""Two interchangeable ways of resolving a document path to a FetchResult."""

import sys
from enum import Enum

from mdharvest.config import HarvestConfig, StrategyOrder
from mdharvest.extractors import FetchResult, extract_content
from mdharvest.fetcher import WAIT_MINIMAL, Session

# Containers that appear once the client-rendered document is in the DOM
CONTENT_SELECTORS = 'div[class*="content"], main, article, .markdown-body, .dynamic-markdown-component'

NOT_FOUND_TITLES = ("404", "Not Found")


class Strategy(str, Enum):
    DIRECT = "direct"
    RENDERED = "rendered"


def looks_not_found(title: str, status: int | None = None) -> bool:
    """True if the page announces a missing document."""
    if status == 404:
        return True
    return any(marker in title for marker in NOT_FOUND_TITLES)


class DirectStrategy:
    """Navigate to base_url + path and extract what the server rendered."""

    name = Strategy.DIRECT

    def __init__(self, config: HarvestConfig) -> None:
        self.config = config
        # Set when the last fetch hit a not-found page; read by the processor
        self.not_found = False

    def url_for(self, path: str) -> str:
        return self.config.direct_url(path)

    def fetch(self, session: Session, path: str, *, log_prefix: str = "") -> FetchResult | None:
        cfg = self.config
        url = self.url_for(path)
        self.not_found = False
        session.goto(url, wait_until=WAIT_MINIMAL, timeout=cfg.timeout)
        session.settle(cfg.direct_settle)
        if looks_not_found(session.title(), session.status):
            self.not_found = True
            print(f"{log_prefix}  Not found at {url}", file=sys.stderr)
            return None
        return extract_content(
            session.content(), url, path,
            min_chars=cfg.extract_min_chars, strategy=self.name.value,
        )


class RenderedStrategy:
    """Navigate to the client-rendering viewer for path and wait for it to settle."""

    name = Strategy.RENDERED

    def __init__(self, config: HarvestConfig) -> None:
        self.config = config

    def url_for(self, path: str) -> str:
        return self.config.rendered_url(path)

    def fetch(self, session: Session, path: str, *, log_prefix: str = "") -> FetchResult | None:
        cfg = self.config
        url = self.url_for(path)
        session.goto(url, wait_until=WAIT_MINIMAL, timeout=cfg.timeout)
        session.settle(cfg.render_settle)
        if not session.wait_for_selector(CONTENT_SELECTORS, timeout=cfg.selector_timeout):
            print(f"{log_prefix}  No content selector matched; extracting anyway", file=sys.stderr)
        return extract_content(
            session.content(), url, path,
            min_chars=cfg.extract_min_chars, strategy=self.name.value,
        )


def strategy_order(
    config: HarvestConfig,
    direct: DirectStrategy,
    rendered: RenderedStrategy,
    path: str,
    prior_url: str | None = None,
) -> list:
    """
    Strategies to try, in order, for one attempt. Prior-first puts the strategy
    whose URL the previous run last used at the front.
    """
    if (
        config.strategy_order is StrategyOrder.PRIOR_FIRST
        and prior_url
        and config.dynamic_url
        and prior_url == rendered.url_for(path)
    ):
        return [rendered, direct]
    return [direct, rendered]
