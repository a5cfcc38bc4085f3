"""Paged collection fetching over `@odata.nextLink` continuation links."""

import logging
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from .backoff import BackoffCaller
from .cache import RunCache
from .errors import FatalError, GratBoxError

logger = logging.getLogger(__name__)

PageFn = Callable[[str, Optional[dict]], Tuple[List[Dict[str, Any]], Optional[str]]]


class PagedFetcher:
    """Iterates a complete remote collection, one backoff-wrapped request per page.

    Iteration is lazy and always restarts from `initial_url`; it cannot resume mid-collection.
    A page that still fails after retries aborts the fetch with a FatalError that records how
    many pages had succeeded. Use `fetch_all()` when a partial collection must never be seen.
    """

    def __init__(
        self,
        caller: BackoffCaller,
        get_page: PageFn,
        initial_url: str,
        params: Optional[dict] = None,
        to_record: Optional[Callable[[Dict[str, Any]], Any]] = None,
        cache: Optional[RunCache] = None,
    ):
        self.caller = caller
        self.get_page = get_page
        self.initial_url = initial_url
        self.params = params
        self.to_record = to_record
        self.cache = cache
        self.pages_fetched = 0

    def __iter__(self) -> Iterator[Any]:
        self.pages_fetched = 0
        url: Optional[str] = self.initial_url
        # Query parameters apply to the first request only; nextLink carries them afterwards
        params = self.params
        while url:
            try:
                items, next_link = self.caller.call(self.get_page, url, params)
            except GratBoxError as exc:
                raise FatalError(
                    f"Fetch of {self.initial_url} aborted after {self.pages_fetched} page(s): {exc}",
                    status_code=getattr(exc, "status_code", None),
                    category="paged_fetch",
                ) from exc
            self.pages_fetched += 1
            logger.debug("Page %d of %s: %d item(s)", self.pages_fetched, self.initial_url, len(items))
            for item in items:
                yield self._convert(item)
            url = next_link
            params = None

    def _convert(self, item: Dict[str, Any]) -> Any:
        if not self.to_record:
            return item
        try:
            return self.to_record(item)
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise FatalError(
                f"Fetch of {self.initial_url} aborted after {self.pages_fetched} page(s): "
                f"malformed item {exc.__class__.__name__}: {exc}",
                category="paged_fetch",
            ) from exc

    def cache_key(self) -> str:
        return f"{self.initial_url}?{sorted((self.params or {}).items())}"

    def fetch_all(self) -> List[Any]:
        """Materialize the whole collection, or raise without returning any of it."""
        if self.cache is not None:
            return self.cache.get_or_load(self.cache_key(), self._load)
        return self._load()

    def _load(self) -> List[Any]:
        records = list(self)
        logger.info("Fetched %d item(s) from %s in %d page(s)", len(records), self.initial_url, self.pages_fetched)
        return records
