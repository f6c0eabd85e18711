from datetime import datetime

import pytest
from pydantic import ValidationError

from errors import UnsafeSortParameter
from models import (
    MOVIE_SORT_SAFELIST,
    Filters,
    Metadata,
    Movie,
    calculate_metadata,
    validate_filters,
    validate_movie,
)
from validator import Validator


def _filters(**kwargs) -> Filters:
    return Filters(sort_safelist=MOVIE_SORT_SAFELIST, **kwargs)


def _movie(**kwargs) -> Movie:
    fields = {"title": "Casablanca", "year": 1942, "runtime": 102, "genres": ["Drama", "Romance"]}
    fields.update(kwargs)
    return Movie(**fields)


def test_movie_defaults():
    movie = Movie()
    assert movie.id is None
    assert movie.created_at is None
    assert movie.version is None
    assert movie.genres is None


@pytest.mark.parametrize("page,page_size,offset", [(1, 20, 0), (2, 20, 20), (7, 3, 18), (10_000_000, 100, 999_999_900)])
def test_limit_and_offset(page, page_size, offset):
    f = _filters(page=page, page_size=page_size)
    assert f.limit() == page_size
    assert f.offset() == offset


def test_sort_ascending():
    f = _filters(sort="title")
    assert f.sort_column() == "title"
    assert f.sort_direction() == "ASC"


def test_sort_descending_strips_prefix():
    f = _filters(sort="-runtime")
    assert f.sort_column() == "runtime"
    assert f.sort_direction() == "DESC"


def test_sort_outside_safelist_is_a_programming_error():
    f = _filters(sort="title; DROP TABLE movies")
    with pytest.raises(UnsafeSortParameter):
        f.sort_column()
    with pytest.raises(UnsafeSortParameter):
        f.sort_direction()


def test_empty_safelist_rejects_everything():
    with pytest.raises(UnsafeSortParameter):
        Filters(sort="id").sort_column()


def test_filters_are_immutable():
    f = _filters()
    with pytest.raises(ValidationError):
        f.page = 2


def test_validate_filters_accepts_defaults():
    v = Validator()
    validate_filters(v, _filters())
    assert v.valid()


def test_validate_filters_rejects_out_of_range_values():
    v = Validator()
    validate_filters(v, _filters(page=0, page_size=101, sort="rating"))
    assert v.errors == {
        "page": "must be greater than zero",
        "page_size": "must be a maximum of 100",
        "sort": "invalid sort value",
    }


def test_validate_filters_upper_page_bound():
    v = Validator()
    validate_filters(v, _filters(page=10_000_001, page_size=0))
    assert v.errors["page"] == "must be a maximum of 10 million"
    assert v.errors["page_size"] == "must be greater than zero"


def test_validate_filters_does_not_raise_for_unsafe_sort():
    v = Validator()
    validate_filters(v, _filters(sort="-created_at"))
    assert "sort" in v.errors


@pytest.mark.parametrize("page,page_size", [(1, 1), (3, 20), (9, 100)])
def test_metadata_empty_when_no_records(page, page_size):
    assert calculate_metadata(0, page, page_size) == Metadata()


def test_metadata_rounds_last_page_up():
    assert calculate_metadata(195, 2, 20) == Metadata(
        current_page=2,
        page_size=20,
        first_page=1,
        last_page=10,
        total_records=195,
    )


def test_metadata_exact_multiple():
    assert calculate_metadata(200, 1, 20).last_page == 10


def test_metadata_single_record():
    meta = calculate_metadata(1, 1, 100)
    assert meta.first_page == 1
    assert meta.last_page == 1
    assert meta.total_records == 1


def test_validate_movie_accepts_valid_movie():
    v = Validator()
    validate_movie(v, _movie())
    assert v.valid()


def test_validate_movie_rejects_six_genres():
    v = Validator()
    validate_movie(v, _movie(genres=["a", "b", "c", "d", "e", "f"]))
    assert v.errors == {"genres": "must not contain more than 5 genres"}


def test_validate_movie_rejects_duplicate_genres():
    v = Validator()
    validate_movie(v, _movie(genres=["Drama", "Drama"]))
    assert v.errors == {"genres": "must not contain duplicate values"}


def test_validate_movie_rejects_future_year():
    v = Validator()
    validate_movie(v, _movie(year=datetime.now().year + 1))
    assert v.errors == {"year": "must not be in the future"}


def test_validate_movie_rejects_empty_title():
    v = Validator()
    validate_movie(v, _movie(title=""))
    assert v.errors == {"title": "must be provided"}


def test_validate_movie_title_limit_counts_bytes():
    v = Validator()
    validate_movie(v, _movie(title="é" * 251))
    assert v.errors == {"title": "must not be more than 500 bytes long"}


def test_validate_movie_missing_fields():
    v = Validator()
    validate_movie(v, Movie())
    assert v.errors == {
        "title": "must be provided",
        "year": "must be provided",
        "runtime": "must be provided",
        "genres": "must be provided",
    }


def test_validate_movie_rejects_early_year_and_negative_runtime():
    v = Validator()
    validate_movie(v, _movie(year=1887, runtime=-90, genres=[]))
    assert v.errors == {
        "year": "must be 1888 or later",
        "runtime": "must be a positive integer",
        "genres": "must contain at least 1 genre",
    }
