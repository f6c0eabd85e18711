import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.requests import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

import database
from config import settings
from errors import (
    EditConflictError,
    FailedValidationError,
    QueryTimeoutError,
    RecordNotFoundError,
    StorageError,
)
from models import MOVIE_SORT_SAFELIST, Filters, Movie, validate_filters, validate_movie
from validator import Validator

VERSION = "1.0.0"

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)


class MovieInput(BaseModel):
    title: str = ""
    year: int = 0
    runtime: int = 0
    genres: Optional[list[str]] = None


class MovieChanges(BaseModel):
    # None means "leave as is".
    title: Optional[str] = None
    year: Optional[int] = None
    runtime: Optional[int] = None
    genres: Optional[list[str]] = None


def get_movies() -> database.MovieStore:
    return database.MovieStore(settings.database_path, settings.query_timeout)


def _movie_json(movie: Movie) -> dict:
    return movie.model_dump(mode="json", exclude={"created_at"})


def _error(status_code: int, message) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _raise_if_invalid(v: Validator) -> None:
    if not v.valid():
        raise FailedValidationError(v.errors)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await database.init_db(settings.database_path)
    logger.info("Database ready at %s (env: %s)", settings.database_path, settings.env)
    yield


app = FastAPI(lifespan=lifespan)


@app.exception_handler(RecordNotFoundError)
async def record_not_found(request: Request, exc: RecordNotFoundError):
    return _error(404, "the requested resource could not be found")


@app.exception_handler(EditConflictError)
async def edit_conflict(request: Request, exc: EditConflictError):
    return _error(409, "unable to update the record due to an edit conflict, please try again")


@app.exception_handler(FailedValidationError)
async def failed_validation(request: Request, exc: FailedValidationError):
    return _error(422, exc.errors)


@app.exception_handler(RequestValidationError)
async def malformed_request(request: Request, exc: RequestValidationError):
    errors: dict[str, str] = {}
    for err in exc.errors():
        loc = err.get("loc") or ("body",)
        # An id that is not a number names no resource.
        if tuple(loc) == ("path", "movie_id"):
            return _error(404, "the requested resource could not be found")
        errors.setdefault(str(loc[-1]), err.get("msg", "invalid value"))
    return _error(422, errors)


@app.exception_handler(QueryTimeoutError)
async def query_timeout(request: Request, exc: QueryTimeoutError):
    logger.error("%s %s timed out: %s", request.method, request.url.path, exc)
    return _error(504, "the server took too long to process your request")


@app.exception_handler(StorageError)
async def storage_failure(request: Request, exc: StorageError):
    logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return _error(500, "the server encountered a problem and could not process your request")


@app.get("/v1/healthcheck")
async def healthcheck():
    return {
        "status": "available",
        "system_info": {"environment": settings.env, "version": VERSION},
    }


@app.get("/v1/movies")
async def list_movies(
    title: str = "",
    genres: str = "",
    page: int = 1,
    page_size: int = 20,
    sort: str = "id",
    movies: database.MovieStore = Depends(get_movies),
):
    filters = Filters(page=page, page_size=page_size, sort=sort, sort_safelist=MOVIE_SORT_SAFELIST)
    v = Validator()
    validate_filters(v, filters)
    _raise_if_invalid(v)

    genre_list = [g.strip() for g in genres.split(",") if g.strip()]
    results, metadata = await movies.get_all(title, genre_list, filters)
    return {
        "metadata": metadata.model_dump(exclude_defaults=True),
        "movies": [_movie_json(m) for m in results],
    }


@app.post("/v1/movies", status_code=201)
async def create_movie(payload: MovieInput, movies: database.MovieStore = Depends(get_movies)):
    movie = Movie(**payload.model_dump())
    v = Validator()
    validate_movie(v, movie)
    _raise_if_invalid(v)

    await movies.insert(movie)
    logger.info("Created movie %d: %s", movie.id, movie.title)
    return JSONResponse(
        status_code=201,
        content={"movie": _movie_json(movie)},
        headers={"Location": f"/v1/movies/{movie.id}"},
    )


@app.get("/v1/movies/{movie_id}")
async def show_movie(movie_id: int, movies: database.MovieStore = Depends(get_movies)):
    movie = await movies.get(movie_id)
    return {"movie": _movie_json(movie)}


@app.patch("/v1/movies/{movie_id}")
async def update_movie(
    movie_id: int, payload: MovieChanges, movies: database.MovieStore = Depends(get_movies)
):
    movie = await movies.get(movie_id)
    movie = movie.model_copy(update=payload.model_dump(exclude_unset=True, exclude_none=True))

    v = Validator()
    validate_movie(v, movie)
    _raise_if_invalid(v)

    await movies.update(movie)
    return {"movie": _movie_json(movie)}


@app.delete("/v1/movies/{movie_id}")
async def delete_movie(movie_id: int, movies: database.MovieStore = Depends(get_movies)):
    await movies.delete(movie_id)
    logger.info("Deleted movie %d", movie_id)
    return {"message": "movie successfully deleted"}
