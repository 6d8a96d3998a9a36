"""Deezer relay: route descriptors, upstream fetch, cursor pagination and response shaping."""
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Callable, Dict, List, Optional

import httpx

from models import TrackSummary

logger = logging.getLogger(__name__)


class UpstreamError(Exception):
    """An upstream call failed (transport, status or content-type)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class PaginationLimitError(UpstreamError):
    pass


class ResourceNotFoundError(Exception):
    pass


@dataclass(frozen=True)
class RelayRoute:
    """Describes one relayed endpoint.

    ``path`` is formatted with the path parameters given to :meth:`DeezerRelay.relay`.
    ``shape`` receives the upstream body (or the aggregated item list when ``paginate`` is set).
    """
    name: str
    path: str
    params: Dict[str, Any] = field(default_factory=dict)
    paginate: bool = False
    shape: Optional[Callable[[Any], Any]] = None
    error_message: str = "Failed to fetch data from Deezer API"


# --- Response shapers ---

def _release_key(album: dict) -> date:
    try:
        return date.fromisoformat(str(album.get("release_date", ""))[:10])
    except ValueError:
        return date.min


def sort_albums_by_release(body: Any) -> dict:
    """Newest album first. Albums with an unreadable release date sort last."""
    albums = body.get("data") if isinstance(body, dict) else None
    if not isinstance(albums, list):
        raise ResourceNotFoundError("No albums found")
    return {"success": True, "albums": sorted(albums, key=_release_key, reverse=True)}


def _tracks_of(body: Any) -> Optional[list]:
    if not isinstance(body, dict):
        return None
    tracks = body.get("tracks")
    if not isinstance(tracks, dict) or not isinstance(tracks.get("data"), list):
        return None
    return tracks["data"]


def album_tracks(body: Any) -> list:
    tracks = _tracks_of(body)
    if tracks is None:
        raise ResourceNotFoundError("Tracks not found for this album")
    return tracks


def flatten_playlist_tracks(body: Any) -> List[dict]:
    """Project each playlist track onto the fields the player needs, keeping upstream order."""
    tracks = _tracks_of(body)
    if tracks is None:
        raise ResourceNotFoundError("Tracks not found for this playlist")
    return [TrackSummary.model_validate(track).model_dump() for track in tracks]


def wrap_items(items: list) -> dict:
    return {"data": items}


# --- Relay ---

class DeezerRelay:
    """Issues GET calls against the catalog API and applies a route's shaping."""

    def __init__(self, client: httpx.AsyncClient, base_url: str = "https://api.deezer.com", max_pages: int = 100):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.max_pages = max_pages

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def fetch_json(self, url: str, params: Optional[dict] = None) -> Any:
        try:
            response = await self.client.get(url, params=params)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Request to {url} failed: {e}") from e

        if not response.is_success:
            raise UpstreamError(
                f"Upstream returned {response.status_code} {response.reason_phrase} for {url}",
                status_code=response.status_code,
            )
        # Outage pages come back as HTML with a 200
        content_type = response.headers.get("content-type", "")
        if "application/json" not in content_type:
            raise UpstreamError(f"Expected JSON from {url}, got '{content_type or 'no content type'}'")
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError(f"Invalid JSON from {url}: {e}") from e

    async def paginate(self, url: str, params: Optional[dict] = None) -> list:
        """Follow ``next`` cursors until exhausted and return every page's ``data`` items in order.

        Fails as a whole if any page fails or more than ``max_pages`` pages are needed.
        """
        items: list = []
        next_url: Optional[str] = url
        pages = 0
        while next_url:
            if pages >= self.max_pages:
                raise PaginationLimitError(f"Gave up after {self.max_pages} pages from {url}")
            # The cursor URL already carries the query string
            page = await self.fetch_json(next_url, params=params if pages == 0 else None)
            pages += 1
            if not isinstance(page, dict):
                raise UpstreamError(f"Unexpected page shape from {next_url}")
            items.extend(page.get("data") or [])
            next_url = page.get("next") or None
        logger.debug(f"Collected {len(items)} items from {pages} page(s) of {url}")
        return items

    async def fetch_many(self, paths: List[str]) -> list:
        """Fetch several resources one after another; the first failure aborts the batch."""
        results = []
        for path in paths:
            results.append(await self.fetch_json(self.url_for(path)))
        return results

    async def relay(self, route: RelayRoute, path_params: Optional[dict] = None, query: Optional[dict] = None) -> Any:
        url = self.url_for(route.path.format(**(path_params or {})))
        params = {**route.params, **(query or {})} or None
        if route.paginate:
            body = await self.paginate(url, params=params)
        else:
            body = await self.fetch_json(url, params=params)
        return route.shape(body) if route.shape else body


# --- Route table ---

def _search_route(kind: str) -> RelayRoute:
    return RelayRoute(name=f"search_{kind}", path=f"/search/{kind}", error_message="Failed to fetch data")


SEARCH_ROUTES = {kind: _search_route(kind) for kind in ("track", "album", "playlist", "user", "artist")}

CHART_ARTISTS = RelayRoute("chart_artists", "/chart/0/artists")
FEATURED_TOP = RelayRoute("featured_top", "/artist/{artist_id}/top")
FEATURED_PLAYLISTS = RelayRoute("featured_playlists", "/artist/{artist_id}/playlists",
                                error_message="Unable to fetch chart data")
SEARCH_ANY = RelayRoute("search", "/search", error_message="Error fetching data from Deezer")
ALBUM = RelayRoute("album", "/album/{id}", error_message="Failed to fetch album")
PLAYLIST = RelayRoute("playlist", "/playlist/{id}", error_message="Failed to fetch playlist")
CHART = RelayRoute("chart", "/chart", error_message="Failed to fetch Deezer chart data")
GENRE_CHART = RelayRoute("genre_chart", "/chart/{id}", error_message="Failed to fetch Deezer chart data")
EDITORIAL = RelayRoute("editorial", "/editorial", error_message="Failed to fetch editorial data")
EDITORIAL_CHARTS = RelayRoute("editorial_charts", "/editorial/{id}/charts",
                              error_message="Failed to fetch editorial charts")
ARTIST = RelayRoute("artist", "/artist/{id}", error_message="Error fetching ARTIST for {id}")
ARTIST_ALBUMS = RelayRoute("artist_albums", "/artist/{id}/albums", shape=sort_albums_by_release,
                           error_message="Internal server error")
ARTIST_PLAYLISTS = RelayRoute("artist_playlists", "/artist/{id}/playlists", paginate=True, shape=wrap_items,
                              error_message="Failed to fetch playlists for {id}")
ARTIST_TOP = RelayRoute("artist_top", "/artist/{id}/top", params={"limit": 50}, paginate=True, shape=wrap_items,
                        error_message="Failed to fetch top tracks for artist {id}")
ARTIST_RELATED = RelayRoute("artist_related", "/artist/{id}/related",
                            error_message="Failed to fetch related artists for {id}")
ARTIST_RADIO = RelayRoute("artist_radio", "/artist/{id}/radio", error_message="Failed to fetch radio for artist {id}")
ALBUM_TRACKS = RelayRoute("album_tracks", "/album/{id}", shape=album_tracks,
                          error_message="Error fetching album tracks")
PLAYLIST_TRACKS = RelayRoute("playlist_tracks", "/playlist/{id}", shape=flatten_playlist_tracks,
                             error_message="Error fetching playlist tracks")
ALBUM_TRACK_LIST = RelayRoute("album_track_list", "/album/{id}/tracks", error_message="Failed to fetch album tracks")
