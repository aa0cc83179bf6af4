import logging
from typing import Awaitable, Callable, Generic, Sequence, TypeVar
from urllib.parse import urlsplit

from playwright.async_api import ElementHandle, Error as PlaywrightError, Page

logger = logging.getLogger(__name__)

T = TypeVar('T')

Extractor = Callable[[str, ElementHandle], Awaitable[T | None]]


class PriorityMatcher(Generic[T]):
    """Ordered list of CSS candidates evaluated lazily against a page.

    Candidates are tried in order and each matched element is turned into a
    value by ``extract`` (``None`` means unusable). Values rejected by
    ``exclude`` or already collected are skipped. Collection stops once
    ``limit`` values are found, there is no backtracking.
    """

    def __init__(
        self,
        candidates: Sequence[str],
        extract: Extractor,
        exclude: Callable[[T], bool] | None = None,
        limit: int = 1,
        first_element_only: bool = False,
    ):
        self.candidates = tuple(candidates)
        self.extract = extract
        self.exclude = exclude
        self.limit = limit
        self.first_element_only = first_element_only

    async def _elements(self, page: Page, selector: str) -> list[ElementHandle]:
        if self.first_element_only:
            element = await page.query_selector(selector)
            return [element] if element else []
        return await page.query_selector_all(selector)

    async def find_all(self, page: Page) -> list[T]:
        found: list[T] = []
        for selector in self.candidates:
            try:
                elements = await self._elements(page, selector)
                for element in elements:
                    if len(found) >= self.limit:
                        break
                    value = await self.extract(selector, element)
                    if value is None or value in found:
                        continue
                    if self.exclude is not None and self.exclude(value):
                        continue
                    found.append(value)
            except PlaywrightError as e:
                logger.debug(f'Skipping candidate {selector!r}: {e.message}')
                continue
            if len(found) >= self.limit:
                break
        return found

    async def first(self, page: Page) -> T | None:
        found = await self.find_all(page)
        return found[0] if found else None


async def visible_selector(selector: str, element: ElementHandle) -> str | None:
    return selector if await element.is_visible() else None


async def visible_href(selector: str, element: ElementHandle) -> str | None:
    if not await element.is_visible():
        return None
    return await element.get_attribute('href')


def internal_path(href: str, base_url: str) -> str | None:
    """Path to navigate to for ``href``, or ``None`` if it leaves the site."""
    href = href.strip()
    if not href or href.startswith('#') or href.lower().startswith('javascript:'):
        return None
    parts = urlsplit(href)
    if parts.scheme or parts.netloc:
        base = urlsplit(base_url)
        if parts.scheme not in ('http', 'https') or parts.netloc != base.netloc:
            return None
        href = parts.path or '/'
        if parts.query:
            href += '?' + parts.query
    elif not href.startswith('/'):
        href = '/' + href
    return href


def is_site_root(path: str) -> bool:
    return path in ('/', '')
