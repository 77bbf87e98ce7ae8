from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional

from .errors import QueryError, ValidationError
from .observability import NULL_SINK, ObservabilitySink

ASC = "asc"
DESC = "desc"
SORT_DIRECTIONS = (ASC, DESC)

STATUS_IDLE = "idle"
STATUS_LOADING = "loading"
STATUS_ERROR = "error"


@dataclass
class PageResult:
    items: List[Any]
    total: int


# (filters, page, page_size, sort_field, sort_direction) -> PageResult
Fetcher = Callable[[Dict[str, Any], int, int, str, str], Awaitable[Any]]


@dataclass
class QueryState:
    filters: Dict[str, Any] = field(default_factory=dict)
    sort_field: str = ""
    sort_direction: str = DESC
    page: int = 1
    page_size: int = 10
    total: int = 0
    items: List[Any] = field(default_factory=list)
    loading: bool = False
    error: Optional[str] = None
    request_token: int = 0

    @property
    def status(self) -> str:
        if self.loading:
            return STATUS_LOADING
        if self.error is not None:
            return STATUS_ERROR
        return STATUS_IDLE

    def as_dict(self) -> Dict[str, Any]:
        return {
            "filters": dict(self.filters),
            "sort_field": self.sort_field,
            "sort_direction": self.sort_direction,
            "page": self.page,
            "page_size": self.page_size,
            "total": self.total,
            "items": [
                item.as_dict() if hasattr(item, "as_dict") else item
                for item in self.items
            ],
            "loading": self.loading,
            "error": self.error,
            "request_token": self.request_token,
            "status": self.status,
        }


def clean_filters(filters: Mapping[str, Any]) -> Dict[str, Any]:
    """Drop blank strings and unset values; booleans always survive."""
    cleaned: Dict[str, Any] = {}
    for key, value in filters.items():
        if isinstance(value, bool):
            cleaned[key] = value
        elif isinstance(value, str):
            if value.strip():
                cleaned[key] = value
        elif value is not None:
            cleaned[key] = value
    return cleaned


def coerce_page_result(result: Any) -> PageResult:
    if isinstance(result, PageResult):
        items, total = result.items, result.total
    elif isinstance(result, Mapping) and "items" in result and "total" in result:
        items, total = result["items"], result["total"]
    else:
        raise ValidationError(
            "Fetcher returned %s, expected items and total" % type(result).__name__
        )
    if not isinstance(items, (list, tuple)):
        raise ValidationError("items must be a sequence, got %s" % type(items).__name__)
    if isinstance(total, bool) or not isinstance(total, int) or total < 0:
        raise ValidationError("total must be a non-negative integer, got %r" % (total,))
    return PageResult(items=list(items), total=total)


def _validate_paging(page: int, page_size: int) -> None:
    if page < 1:
        raise ValueError("page must be >= 1, got %d" % page)
    if page_size <= 0:
        raise ValueError("page_size must be > 0, got %d" % page_size)


def _validate_direction(direction: str) -> None:
    if direction not in SORT_DIRECTIONS:
        raise ValueError("Unsupported sort direction: %s" % direction)


class QueryCoordinator:
    """Filter/sort/page state for one list view over an external source.

    Every operation ends in ``fetch()``. Responses are applied only when they
    belong to the most recently issued request; anything older is dropped.
    A failed request keeps the previously loaded items and total.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        resource: str = "resource",
        sink: Optional[ObservabilitySink] = None,
        filters: Optional[Mapping[str, Any]] = None,
        sort_field: str = "",
        sort_direction: str = DESC,
        page: int = 1,
        page_size: int = 10,
    ) -> None:
        self.fetcher = fetcher
        self.resource = resource
        self.sink = sink or NULL_SINK
        self._state = QueryState()
        self._defaults: Dict[str, Any] = {}
        self.initialize(filters or {}, sort_field, sort_direction, page, page_size)

    def initialize(
        self,
        default_filters: Mapping[str, Any],
        default_sort_field: str,
        default_sort_direction: str = DESC,
        default_page: int = 1,
        default_page_size: int = 10,
    ) -> None:
        _validate_direction(default_sort_direction)
        _validate_paging(default_page, default_page_size)
        self._defaults = {
            "filters": dict(default_filters),
            "sort_field": default_sort_field,
            "sort_direction": default_sort_direction,
            "page": default_page,
            "page_size": default_page_size,
        }
        # Bump the token so responses to requests issued before the reset are dropped.
        self._state = QueryState(
            filters=dict(default_filters),
            sort_field=default_sort_field,
            sort_direction=default_sort_direction,
            page=default_page,
            page_size=default_page_size,
            request_token=self._state.request_token + 1,
        )

    def reset(self) -> None:
        defaults = self._defaults
        self.initialize(
            defaults["filters"],
            defaults["sort_field"],
            defaults["sort_direction"],
            defaults["page"],
            defaults["page_size"],
        )

    def snapshot(self) -> QueryState:
        return replace(
            self._state,
            filters=dict(self._state.filters),
            items=list(self._state.items),
        )

    async def fetch(self) -> None:
        self._state.request_token += 1
        token = self._state.request_token
        self._state.loading = True
        self._state.error = None

        try:
            result = await self.fetcher(
                dict(self._state.filters),
                self._state.page,
                self._state.page_size,
                self._state.sort_field,
                self._state.sort_direction,
            )
            page = coerce_page_result(result)
        except QueryError as exc:
            if token != self._state.request_token:
                return
            message = str(exc) or exc.__class__.__name__
            self._state.error = message
            self._state.loading = False
            self.sink.record_fetch_failure(self.resource, message, token)
            return
        except Exception:
            if token == self._state.request_token:
                self._state.loading = False
            raise

        if token != self._state.request_token:
            return
        self._state.items = page.items
        self._state.total = page.total
        self._state.loading = False

    async def submit_search(self, filters: Mapping[str, Any]) -> None:
        self._state.filters = clean_filters(filters)
        self._state.page = 1
        await self.fetch()

    async def clear_search(self) -> None:
        self._state.filters = {}
        self._state.page = 1
        await self.fetch()

    async def change_page(self, page: int, page_size: Optional[int] = None) -> None:
        if page_size is None:
            page_size = self._state.page_size
        _validate_paging(page, page_size)
        if page_size != self._state.page_size:
            self._state.page_size = page_size
            self._state.page = 1
        else:
            self._state.page = page
        await self.fetch()

    async def change_sort(self, sort_field: str) -> None:
        # Same field toggles; a sort definition is never removed.
        if sort_field != self._state.sort_field:
            self._state.sort_field = sort_field
            self._state.sort_direction = DESC
            self._state.page = 1
        elif self._state.sort_direction == DESC:
            self._state.sort_direction = ASC
        else:
            self._state.sort_direction = DESC
        await self.fetch()
