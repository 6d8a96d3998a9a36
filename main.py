import logging

# Module-level logger for consistent logging across the module
logger = logging.getLogger(__name__)

import asyncio
import os
import re
import time
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager, suppress
from contextvars import ContextVar
from datetime import datetime
from typing import Any, Optional

import httpx
import psutil
import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

import relay as routes
from audio_energy import AudioFetchError, download_audio, estimate_band_energy, is_valid_audio_url
from image_cache import DEFAULT_QUERIES, CacheUnavailableError, ImageCache, PexelsClient
from models import AudioAnalysisResponse, BackgroundImageError, BackgroundImageResponse
from relay import DeezerRelay, RelayRoute, ResourceNotFoundError, UpstreamError

ORIENTATIONS = {"landscape", "portrait", "square"}
IMAGE_SIZES = {"large", "medium", "small"}
SEARCH_KINDS = ("track", "album", "playlist", "user", "artist")


# --- Configuration ---
class Config(BaseSettings):
    PEXELS_API_KEY: str = Field(..., description="Pexels API key; the service refuses to start without it")
    ENVIRONMENT: str = Field("development", description="development / production")
    LOG_LEVEL: str = "INFO"
    PORT: int = 5000

    DEEZER_BASE_URL: str = "https://api.deezer.com"
    PEXELS_BASE_URL: str = "https://api.pexels.com/v1"
    UPSTREAM_TIMEOUT_SECONDS: float = Field(30.0, description="Timeout for catalog/image calls; 0 disables it")

    AUDIO_FETCH_TIMEOUT_SECONDS: float = Field(5.0, description="Hard deadline for downloading audio to analyze")
    MAX_AUDIO_DOWNLOAD_MB: int = Field(50, description="Reject audio downloads larger than this")

    MAX_PAGES: int = Field(100, description="Most pages followed for one paginated collection")

    # Background image cache
    IMAGE_CACHE_SECONDS: float = Field(60, description="Age after which a request refreshes the image")
    IMAGE_REFRESH_INTERVAL_SECONDS: float = Field(60, description="Period of the background refresh timer")
    IMAGE_QUERIES: list[str] = Field(default_factory=lambda: list(DEFAULT_QUERIES))
    ENABLE_IMAGE_REFRESH_TIMER: bool = True

    FEATURED_ARTIST_ID: int = 27
    FEATURED_PLAYLIST_IDS: list[int] = Field(default_factory=lambda: [908622995, 908622981, 987654321])

    RATE_LIMIT: str = Field("60/minute", description="Per-IP limit applied to /api routes")
    RATE_LIMIT_ENABLED: bool = True

    CORS_ORIGINS: list[str] = Field(
        default_factory=lambda: [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ],
        description="List of allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        extra='ignore'  # Ignore extra environment variables to prevent errors
    )

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT.lower() in ["development", "dev", "local"]

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() in ["production", "prod"]

    @property
    def MAX_AUDIO_DOWNLOAD_BYTES(self) -> int:
        return self.MAX_AUDIO_DOWNLOAD_MB * 1024 * 1024

    @field_validator('PEXELS_API_KEY')
    def validate_api_key(cls, v):
        if not v or not v.strip():
            raise ValueError('PEXELS_API_KEY must not be blank')
        return v.strip()

    @field_validator('IMAGE_CACHE_SECONDS', 'IMAGE_REFRESH_INTERVAL_SECONDS', 'AUDIO_FETCH_TIMEOUT_SECONDS')
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError('must be greater than 0')
        return v

    @field_validator('MAX_PAGES')
    def validate_max_pages(cls, v):
        if v < 1:
            raise ValueError('MAX_PAGES must be at least 1')
        return v

    @field_validator('IMAGE_QUERIES')
    def validate_queries(cls, v):
        if not v:
            raise ValueError('IMAGE_QUERIES needs at least one query')
        return v


try:
    config = Config()
except ValidationError as e:
    logging.basicConfig(level="INFO")
    logger.critical(f"Invalid configuration, refusing to start: {e}")
    raise


# --- Error types ---
class InvalidParameterError(Exception):
    pass


# Initialize rate limiter - limits requests based on client IP address
limiter = Limiter(key_func=get_remote_address, enabled=config.RATE_LIMIT_ENABLED)


# Configure logging using the config LOG_LEVEL
request_context: ContextVar[dict] = ContextVar("request_context", default={})

logging.basicConfig(
    level=config.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s"
)

class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        ctx = request_context.get({})
        record.request_id = ctx.get("request_id", "no-req")
        return True

for handler in logging.getLogger().handlers:
    handler.addFilter(ContextFilter())


# --- Simple Metrics Collection ---
class SimpleMetrics:
    """Simple in-memory metrics collection for monitoring"""
    def __init__(self):
        self.request_count = defaultdict(int)
        self.error_count = defaultdict(int)
        self.upstream_times = []

    def record_request(self, endpoint: str):
        self.request_count[endpoint] += 1

    def record_error(self, endpoint: str, error_type: str):
        self.error_count[f"{endpoint}:{error_type}"] += 1

    def record_upstream_time(self, endpoint: str, duration: float):
        self.upstream_times.append((datetime.now(), endpoint, duration))
        # Keep only last 100 entries to prevent memory growth
        if len(self.upstream_times) > 100:
            self.upstream_times = self.upstream_times[-100:]

    def get_stats(self) -> dict:
        avg_time = 0.0
        if self.upstream_times:
            avg_time = sum(t[2] for t in self.upstream_times) / len(self.upstream_times)

        return {
            "requests": dict(self.request_count),
            "errors": dict(self.error_count),
            "avg_upstream_time_seconds": round(avg_time, 3),
            "total_requests": sum(self.request_count.values()),
            "total_errors": sum(self.error_count.values()),
            "current_memory_usage_mb": round(psutil.Process().memory_info().rss / 1024 / 1024, 1),
        }


# --- FastAPI app and lifespan ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    client = httpx.AsyncClient(timeout=httpx.Timeout(config.UPSTREAM_TIMEOUT_SECONDS or None))
    app.state.http_client = client
    app.state.relay = DeezerRelay(client, base_url=config.DEEZER_BASE_URL, max_pages=config.MAX_PAGES)
    app.state.image_cache = ImageCache(
        PexelsClient(client, config.PEXELS_API_KEY, base_url=config.PEXELS_BASE_URL),
        queries=config.IMAGE_QUERIES,
        cache_seconds=config.IMAGE_CACHE_SECONDS,
    )
    refresher = None
    if config.ENABLE_IMAGE_REFRESH_TIMER:
        # First run happens immediately so early requests usually find a warm cache
        refresher = asyncio.create_task(app.state.image_cache.run_periodic(config.IMAGE_REFRESH_INTERVAL_SECONDS))
    logger.info(f"Relay started ({config.ENVIRONMENT}), catalog={config.DEEZER_BASE_URL}")
    try:
        yield
    finally:
        if refresher is not None:
            refresher.cancel()
            with suppress(asyncio.CancelledError):
                await refresher
        await client.aclose()


app = FastAPI(
    title="Music Relay Backend",
    description="Relays Deezer catalog and Pexels image requests for the music web app",
    version="1.0.0",
    docs_url="/docs" if config.is_development else None,
    redoc_url="/redoc" if config.is_development else None,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.state.metrics = SimpleMetrics()

# --- Request ID Middleware ---
@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Add unique request ID for tracing"""
    request_id = str(uuid.uuid4())
    request.state.request_id = request_id
    token = request_context.set({
        "request_id": request_id,
        "method": request.method,
        "path": request.url.path,
        "client_ip": get_remote_address(request)
    })
    try:
        response = await call_next(request)
    finally:
        request_context.reset(token)
    response.headers["X-Request-ID"] = request_id
    return response

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_methods=["GET"],
    allow_headers=["Content-Type"],
    expose_headers=["X-Request-ID"],
)


# --- Exception Handlers ---
# Every failure reaches the client as a JSON object with an "error" key.

def _error_body(message: str, exc: Optional[BaseException] = None) -> dict:
    body = {"error": message}
    if exc is not None and not config.is_production:
        body["details"] = str(exc)
    return body

@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    retry_after = exc.limit.limit.get_expiry()
    logger.info(f"Rate limit hit by {get_remote_address(request)} on {request.url.path}")
    return JSONResponse(
        status_code=429,
        content={"error": "Too many requests", "retryAfter": retry_after},
        headers={"Retry-After": str(retry_after)},
    )

@app.exception_handler(InvalidParameterError)
async def invalid_parameter_handler(request: Request, exc: InvalidParameterError):
    return JSONResponse(status_code=400, content={"error": str(exc)})

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content=_error_body("Invalid request parameters", exc))

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)

@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Handles any exception not caught by more specific handlers."""
    logger.error(f"Unhandled exception for request {request.url}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content=_error_body("An unexpected internal server error occurred.", exc))


# --- Dependency Injection & Validation Helpers ---

def get_metrics_collector(request: Request) -> SimpleMetrics:
    return request.app.state.metrics

def get_relay(request: Request) -> DeezerRelay:
    return request.app.state.relay

def get_image_cache(request: Request) -> ImageCache:
    return request.app.state.image_cache

def get_http_client(request: Request) -> httpx.AsyncClient:
    return request.app.state.http_client

_ID_RE = re.compile(r"[0-9]+")

def require_id(value: Optional[str], label: str = "id") -> str:
    """Reject missing or non-numeric ids before anything is sent upstream."""
    value = (value or "").strip()
    if not value:
        raise InvalidParameterError(f"Missing {label}")
    if not _ID_RE.fullmatch(value):
        raise InvalidParameterError(f"Invalid {label}: must be numeric")
    return value

def require_query(q: Optional[str]) -> str:
    if not q or not q.strip():
        raise InvalidParameterError("Missing search query 'q'")
    return q.strip()


async def dispatch(route: RelayRoute, relay: DeezerRelay, metrics: SimpleMetrics,
                   path_params: Optional[dict] = None, query: Optional[dict] = None,
                   pass_client_errors: bool = False) -> Any:
    """Run one relayed call and turn its failures into JSON error responses."""
    metrics.record_request(route.name)
    start = time.time()
    try:
        body = await relay.relay(route, path_params=path_params, query=query)
    except ResourceNotFoundError as e:
        metrics.record_error(route.name, "not_found")
        return JSONResponse(status_code=404, content={"error": str(e)})
    except UpstreamError as e:
        logger.warning(f"{route.name} failed: {e}")
        metrics.record_error(route.name, type(e).__name__)
        status_code = 500
        if pass_client_errors and e.status_code in (400, 404):
            status_code = e.status_code
        message = route.error_message.format(**(path_params or {}))
        return JSONResponse(status_code=status_code, content=_error_body(message, e))
    metrics.record_upstream_time(route.name, time.time() - start)
    return body


# --- Status ---

@app.get("/", summary="API Root", tags=["Status"])
async def root():
    return {
        "service": "Music Relay Backend",
        "version": app.version,
        "environment": config.ENVIRONMENT,
    }

@app.get("/health", summary="Health Check", tags=["Status"])
async def health_check(request: Request):
    cache: Optional[ImageCache] = getattr(request.app.state, "image_cache", None)
    warm = cache is not None and not cache.current.is_empty
    return {
        "status": "healthy",
        "image_cache_warm": warm,
        "image_cache_stale": cache.is_stale() if cache is not None else True,
        "timestamp": time.time(),
    }

@app.get("/metrics", summary="Get API Metrics", tags=["Status"])
async def get_metrics(metrics: SimpleMetrics = Depends(get_metrics_collector)):
    return metrics.get_stats()


# --- Featured / legacy catalog routes ---

@app.get("/deezer-chart", tags=["Catalog"])
async def deezer_chart(relay: DeezerRelay = Depends(get_relay), metrics: SimpleMetrics = Depends(get_metrics_collector)):
    return await dispatch(routes.CHART_ARTISTS, relay, metrics)

@app.get("/deezer-top-artists", tags=["Catalog"])
async def deezer_top_artists(relay: DeezerRelay = Depends(get_relay), metrics: SimpleMetrics = Depends(get_metrics_collector)):
    return await dispatch(routes.FEATURED_TOP, relay, metrics, path_params={"artist_id": config.FEATURED_ARTIST_ID})

@app.get("/fetch-chart", tags=["Catalog"])
async def fetch_chart(relay: DeezerRelay = Depends(get_relay), metrics: SimpleMetrics = Depends(get_metrics_collector)):
    return await dispatch(routes.FEATURED_PLAYLISTS, relay, metrics, path_params={"artist_id": config.FEATURED_ARTIST_ID})

@app.get("/search-artist", tags=["Search"])
async def search_artist(q: Optional[str] = None, relay: DeezerRelay = Depends(get_relay),
                        metrics: SimpleMetrics = Depends(get_metrics_collector)):
    term = (q or "").strip() or "eminem"
    return await dispatch(routes.SEARCH_ANY, relay, metrics, query={"q": term})

@app.get("/fetch-playlists", tags=["Catalog"])
async def fetch_playlists(relay: DeezerRelay = Depends(get_relay), metrics: SimpleMetrics = Depends(get_metrics_collector)):
    """Featured playlists, fetched one by one. One failed playlist fails the whole request."""
    metrics.record_request("featured_playlist_details")
    try:
        return await relay.fetch_many([f"/playlist/{pid}" for pid in config.FEATURED_PLAYLIST_IDS])
    except UpstreamError as e:
        logger.warning(f"Error fetching featured playlists: {e}")
        metrics.record_error("featured_playlist_details", type(e).__name__)
        return JSONResponse(status_code=500, content=_error_body("Unable to fetch playlist data", e))


# --- /api routes ---

@app.get("/api/search/{kind}", tags=["Search"])
@limiter.limit(config.RATE_LIMIT)
async def search(request: Request, kind: str, q: Optional[str] = None, relay: DeezerRelay = Depends(get_relay),
                 metrics: SimpleMetrics = Depends(get_metrics_collector)):
    if kind not in SEARCH_KINDS:
        return JSONResponse(status_code=404, content={"error": f"Unknown search type '{kind}'"})
    term = require_query(q)
    return await dispatch(routes.SEARCH_ROUTES[kind], relay, metrics, query={"q": term})

@app.get("/api/album/{album_id}", tags=["Catalog"])
@limiter.limit(config.RATE_LIMIT)
async def get_album(request: Request, album_id: str, relay: DeezerRelay = Depends(get_relay),
                    metrics: SimpleMetrics = Depends(get_metrics_collector)):
    return await dispatch(routes.ALBUM, relay, metrics, path_params={"id": require_id(album_id, "album id")})

@app.get("/api/playlist/{playlist_id}", tags=["Catalog"])
@limiter.limit(config.RATE_LIMIT)
async def get_playlist(request: Request, playlist_id: str, relay: DeezerRelay = Depends(get_relay),
                       metrics: SimpleMetrics = Depends(get_metrics_collector)):
    return await dispatch(routes.PLAYLIST, relay, metrics, path_params={"id": require_id(playlist_id, "playlist id")})

@app.get("/api/chart", tags=["Charts"])
@limiter.limit(config.RATE_LIMIT)
async def get_chart(request: Request, relay: DeezerRelay = Depends(get_relay),
                    metrics: SimpleMetrics = Depends(get_metrics_collector)):
    return await dispatch(routes.CHART, relay, metrics)

@app.get("/api/chart/{genre_id}", tags=["Charts"])
@limiter.limit(config.RATE_LIMIT)
async def get_genre_chart(request: Request, genre_id: str, relay: DeezerRelay = Depends(get_relay),
                          metrics: SimpleMetrics = Depends(get_metrics_collector)):
    return await dispatch(routes.GENRE_CHART, relay, metrics, path_params={"id": require_id(genre_id, "genre id")})

@app.get("/api/editorial", tags=["Charts"])
@limiter.limit(config.RATE_LIMIT)
async def get_editorial(request: Request, relay: DeezerRelay = Depends(get_relay),
                        metrics: SimpleMetrics = Depends(get_metrics_collector)):
    return await dispatch(routes.EDITORIAL, relay, metrics)

@app.get("/api/editorial/{editorial_id}/charts", tags=["Charts"])
@limiter.limit(config.RATE_LIMIT)
async def get_editorial_charts(request: Request, editorial_id: str, relay: DeezerRelay = Depends(get_relay),
                               metrics: SimpleMetrics = Depends(get_metrics_collector)):
    return await dispatch(routes.EDITORIAL_CHARTS, relay, metrics,
                          path_params={"id": require_id(editorial_id, "editorial id")})

@app.get("/api/artist/{artist_id}", tags=["Artists"])
@limiter.limit(config.RATE_LIMIT)
async def get_artist(request: Request, artist_id: str, relay: DeezerRelay = Depends(get_relay),
                     metrics: SimpleMetrics = Depends(get_metrics_collector)):
    return await dispatch(routes.ARTIST, relay, metrics, path_params={"id": require_id(artist_id, "artist id")})

@app.get("/api/artist/{artist_id}/albums", tags=["Artists"])
@limiter.limit(config.RATE_LIMIT)
async def get_artist_albums(request: Request, artist_id: str, relay: DeezerRelay = Depends(get_relay),
                            metrics: SimpleMetrics = Depends(get_metrics_collector)):
    """Artist albums, most recent release first."""
    return await dispatch(routes.ARTIST_ALBUMS, relay, metrics, path_params={"id": require_id(artist_id, "artist id")})

@app.get("/api/artist/{artist_id}/playlists", tags=["Artists"])
@limiter.limit(config.RATE_LIMIT)
async def get_artist_playlists(request: Request, artist_id: str, relay: DeezerRelay = Depends(get_relay),
                               metrics: SimpleMetrics = Depends(get_metrics_collector)):
    """Every playlist featuring the artist, all pages collected."""
    return await dispatch(routes.ARTIST_PLAYLISTS, relay, metrics,
                          path_params={"id": require_id(artist_id, "artist id")})

@app.get("/api/artist/{artist_id}/top", tags=["Artists"])
@limiter.limit(config.RATE_LIMIT)
async def get_artist_top(request: Request, artist_id: str, relay: DeezerRelay = Depends(get_relay),
                         metrics: SimpleMetrics = Depends(get_metrics_collector)):
    """Every top track of the artist, all pages collected."""
    return await dispatch(routes.ARTIST_TOP, relay, metrics, path_params={"id": require_id(artist_id, "artist id")})

@app.get("/api/artist/{artist_id}/related", tags=["Artists"])
@limiter.limit(config.RATE_LIMIT)
async def get_related_artists(request: Request, artist_id: str, relay: DeezerRelay = Depends(get_relay),
                              metrics: SimpleMetrics = Depends(get_metrics_collector)):
    return await dispatch(routes.ARTIST_RELATED, relay, metrics, path_params={"id": require_id(artist_id, "artist id")})

@app.get("/api/artist/{artist_id}/radio", tags=["Artists"])
@limiter.limit(config.RATE_LIMIT)
async def get_artist_radio(request: Request, artist_id: str, relay: DeezerRelay = Depends(get_relay),
                           metrics: SimpleMetrics = Depends(get_metrics_collector)):
    return await dispatch(routes.ARTIST_RADIO, relay, metrics, path_params={"id": require_id(artist_id, "artist id")})

@app.get("/api/fetchTracks/album/{album_id}", tags=["Tracks"])
@limiter.limit(config.RATE_LIMIT)
async def fetch_album_tracks(request: Request, album_id: str, relay: DeezerRelay = Depends(get_relay),
                             metrics: SimpleMetrics = Depends(get_metrics_collector)):
    return await dispatch(routes.ALBUM_TRACKS, relay, metrics, path_params={"id": require_id(album_id, "album id")})

@app.get("/api/fetchTracks/playlist/{playlist_id}", tags=["Tracks"])
@limiter.limit(config.RATE_LIMIT)
async def fetch_playlist_tracks(request: Request, playlist_id: str, relay: DeezerRelay = Depends(get_relay),
                                metrics: SimpleMetrics = Depends(get_metrics_collector)):
    """Playlist tracks flattened to id, title, duration, artist, album and preview."""
    return await dispatch(routes.PLAYLIST_TRACKS, relay, metrics,
                          path_params={"id": require_id(playlist_id, "playlist id")}, pass_client_errors=True)

@app.get("/api/fetchAlbumTracks/{album_id}", tags=["Tracks"])
@limiter.limit(config.RATE_LIMIT)
async def fetch_album_track_list(request: Request, album_id: str, relay: DeezerRelay = Depends(get_relay),
                                 metrics: SimpleMetrics = Depends(get_metrics_collector)):
    return await dispatch(routes.ALBUM_TRACK_LIST, relay, metrics, path_params={"id": require_id(album_id, "album id")})


# --- Background image ---

@app.get("/api/background-image", tags=["Images"], response_model=BackgroundImageResponse,
         responses={500: {"model": BackgroundImageError}})
@limiter.limit(config.RATE_LIMIT)
async def background_image(
    request: Request,
    query: Optional[str] = None,
    orientation: str = "landscape",
    size: Optional[str] = None,
    color: Optional[str] = None,
    forceRefresh: bool = False,
    cache: ImageCache = Depends(get_image_cache),
    metrics: SimpleMetrics = Depends(get_metrics_collector),
):
    """
    Serve the cached background image, fetching a new one when forced, empty or older than
    IMAGE_CACHE_SECONDS. A failed fetch falls back to the cached image when there is one.
    """
    metrics.record_request("background_image")
    if orientation not in ORIENTATIONS:
        raise InvalidParameterError(f"Invalid orientation '{orientation}'")
    if size and size not in IMAGE_SIZES:
        raise InvalidParameterError(f"Invalid size '{size}'")
    try:
        result = await cache.lookup(
            force_refresh=forceRefresh,
            query=(query or "").strip() or None,
            orientation=orientation,
            size=size,
            color=color,
        )
    except CacheUnavailableError as e:
        logger.error(f"No background image available: {e}")
        metrics.record_error("background_image", "unavailable")
        current = cache.current
        body = BackgroundImageError(
            error="Failed to fetch background image",
            cachedImageAvailable=not current.is_empty,
            cachedImageUrl=current.url,
            details=None if config.is_production else str(e),
        ).model_dump()
        if body["details"] is None:
            body.pop("details")
        return JSONResponse(status_code=500, content=body)

    return BackgroundImageResponse(
        imageUrl=result.image.url,
        queryUsed=result.image.source_query,
        cached=result.cached,
        lastUpdated=result.image.last_updated,
    )


# --- Audio analysis ---

@app.get("/api/analyze-audio", tags=["Audio"], response_model=AudioAnalysisResponse)
@limiter.limit(config.RATE_LIMIT)
async def analyze_audio(
    request: Request,
    url: Optional[str] = None,
    client: httpx.AsyncClient = Depends(get_http_client),
    metrics: SimpleMetrics = Depends(get_metrics_collector),
):
    """
    Download an audio file and return 32 normalized byte-energy values.
    The values come from raw bytes, not decoded audio, and the duration assumes 44.1 kHz.
    """
    metrics.record_request("analyze_audio")
    if not is_valid_audio_url(url):
        return JSONResponse(status_code=400, content={"error": "Invalid audio URL"})
    try:
        buffer = await download_audio(
            client, url.strip(),
            timeout=config.AUDIO_FETCH_TIMEOUT_SECONDS,
            max_bytes=config.MAX_AUDIO_DOWNLOAD_BYTES,
        )
    except AudioFetchError as e:
        logger.warning(f"Audio analysis error for {url}: {e}")
        metrics.record_error("analyze_audio", "fetch")
        return JSONResponse(status_code=500, content=_error_body("Audio analysis failed", e))
    return AudioAnalysisResponse(**estimate_band_energy(buffer))


# --- Main Execution Block ---
if __name__ == "__main__":
    port = int(os.getenv("PORT", config.PORT))
    uvicorn.run(app, host="0.0.0.0", port=port, log_level=config.LOG_LEVEL.lower())
