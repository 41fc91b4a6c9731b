"""
Link discovery: render the start page once and collect the document paths it links to.
Depends only on a Session and the extractors; runs before the worker pool starts.
"""

import sys

from bs4 import BeautifulSoup

from mdharvest.config import HarvestConfig
from mdharvest.extractors import find_doc_paths
from mdharvest.fetcher import WAIT_IDLE, Session

# Navigation menus are often populated after network idle
DISCOVERY_SETTLE = 2.0


def discover_links(session: Session, config: HarvestConfig) -> list[str]:
    """Document paths under config.prefix linked from config.start_url, deduped in page order."""
    print(f"Visiting start page: {config.start_url}", file=sys.stderr)
    session.goto(config.start_url, wait_until=WAIT_IDLE, timeout=config.timeout)
    session.settle(DISCOVERY_SETTLE)
    soup = BeautifulSoup(session.content(), "lxml")
    return find_doc_paths(soup, config.start_url, config.base_url, config.prefix)
