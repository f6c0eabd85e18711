import math
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from errors import UnsafeSortParameter
from validator import Validator, permitted_value, unique

MOVIE_SORT_SAFELIST = (
    "id",
    "title",
    "year",
    "runtime",
    "-id",
    "-title",
    "-year",
    "-runtime",
)


class Movie(BaseModel):
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    title: str = ""
    year: int = 0
    runtime: int = 0  # minutes
    genres: Optional[list[str]] = None
    version: Optional[int] = None  # 1 on insert, +1 per update


class Filters(BaseModel):
    """Page, page size and sort for a listing request.

    ``sort_safelist`` is fixed by the caller, never taken from the request. The
    derived sort column and direction are interpolated into SQL text, so they
    are only ever produced from a value found in the safelist.
    """

    model_config = ConfigDict(frozen=True)

    page: int = 1
    page_size: int = 20
    sort: str = "id"
    sort_safelist: tuple[str, ...] = ()

    def _safe_sort(self) -> str:
        if self.sort in self.sort_safelist:
            return self.sort
        raise UnsafeSortParameter(f"unsafe sort parameter: {self.sort!r}")

    def sort_column(self) -> str:
        return self._safe_sort().removeprefix("-")

    def sort_direction(self) -> str:
        return "DESC" if self._safe_sort().startswith("-") else "ASC"

    def limit(self) -> int:
        return self.page_size

    def offset(self) -> int:
        # Bounded by validate_filters(): at most 9_999_999 * 100.
        return (self.page - 1) * self.page_size


class Metadata(BaseModel):
    current_page: int = 0
    page_size: int = 0
    first_page: int = 0
    last_page: int = 0
    total_records: int = 0


def validate_movie(v: Validator, movie: Movie) -> None:
    v.check(movie.title != "", "title", "must be provided")
    v.check(len(movie.title.encode("utf-8")) <= 500, "title", "must not be more than 500 bytes long")

    v.check(movie.year != 0, "year", "must be provided")
    v.check(movie.year >= 1888, "year", "must be 1888 or later")
    v.check(movie.year <= datetime.now().year, "year", "must not be in the future")

    v.check(movie.runtime != 0, "runtime", "must be provided")
    v.check(movie.runtime > 0, "runtime", "must be a positive integer")

    genres = movie.genres or []
    v.check(movie.genres is not None, "genres", "must be provided")
    v.check(len(genres) >= 1, "genres", "must contain at least 1 genre")
    v.check(len(genres) <= 5, "genres", "must not contain more than 5 genres")
    v.check(unique(genres), "genres", "must not contain duplicate values")


def validate_filters(v: Validator, f: Filters) -> None:
    v.check(f.page > 0, "page", "must be greater than zero")
    v.check(f.page <= 10_000_000, "page", "must be a maximum of 10 million")
    v.check(f.page_size > 0, "page_size", "must be greater than zero")
    v.check(f.page_size <= 100, "page_size", "must be a maximum of 100")
    v.check(permitted_value(f.sort, *f.sort_safelist), "sort", "invalid sort value")


def calculate_metadata(total_records: int, page: int, page_size: int) -> Metadata:
    """Pagination summary for a result page; empty when nothing matched."""
    if total_records == 0:
        return Metadata()

    return Metadata(
        current_page=page,
        page_size=page_size,
        first_page=1,
        last_page=int(math.ceil(total_records / page_size)),
        total_records=total_records,
    )
