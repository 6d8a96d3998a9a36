import httpx
import pytest

from relay import (
    ARTIST_TOP,
    DeezerRelay,
    PaginationLimitError,
    ResourceNotFoundError,
    UpstreamError,
    album_tracks,
    flatten_playlist_tracks,
    sort_albums_by_release,
)

BASE = "https://api.deezer.com"


def _playlist_track(n):
    return {
        "id": n,
        "title": f"Track {n}",
        "duration": 200 + n,
        "rank": 1000,
        "explicit_lyrics": False,
        "preview": f"https://cdn.example/preview/{n}.mp3",
        "artist": {"id": 10 + n, "name": f"Artist {n}", "link": "https://deezer.com/artist"},
        "album": {
            "id": 100 + n,
            "title": f"Album {n}",
            "cover_small": "s.jpg",
            "cover_medium": "m.jpg",
            "cover_big": "b.jpg",
            "cover_xl": "xl.jpg",
        },
        "type": "track",
    }


def _paged(pages):
    """Serve ``pages`` (lists of items) via ``index`` cursors on the same path."""
    def handler(request):
        index = int(request.url.params.get("index", 0))
        page_no = index // 10
        body = {"data": pages[page_no], "total": sum(len(p) for p in pages)}
        if page_no + 1 < len(pages):
            body["next"] = f"{BASE}{request.url.path}?index={(page_no + 1) * 10}"
        return httpx.Response(200, json=body)
    return handler


class TestPaginate:
    @pytest.mark.asyncio
    async def test_collects_three_pages_in_order(self, upstream, http_client):
        upstream.on("/artist/1/playlists", _paged([[1, 2], [3, 4], [5]]))
        relay = DeezerRelay(http_client, BASE)

        items = await relay.paginate(f"{BASE}/artist/1/playlists")

        assert items == [1, 2, 3, 4, 5]
        assert len(upstream.requests) == 3

    @pytest.mark.asyncio
    async def test_null_next_ends_loop(self, upstream, http_client):
        upstream.json("/artist/1/top", {"data": [{"id": 1}], "next": None})
        relay = DeezerRelay(http_client, BASE)

        assert await relay.paginate(f"{BASE}/artist/1/top") == [{"id": 1}]
        assert len(upstream.requests) == 1

    @pytest.mark.asyncio
    async def test_initial_params_only_sent_on_first_page(self, upstream, http_client):
        upstream.on("/artist/5/top", _paged([["a"], ["b"]]))
        relay = DeezerRelay(http_client, BASE)

        body = await relay.relay(ARTIST_TOP, path_params={"id": "5"})

        assert body == {"data": ["a", "b"]}
        first, second = upstream.requests
        assert first.url.params["limit"] == "50"
        assert "limit" not in second.url.params

    @pytest.mark.asyncio
    async def test_failing_page_fails_everything(self, upstream, http_client):
        def handler(request):
            if "index" in request.url.params:
                return httpx.Response(503, json={"error": "busy"})
            return httpx.Response(200, json={"data": [1], "next": f"{BASE}/artist/1/playlists?index=10"})
        upstream.on("/artist/1/playlists", handler)
        relay = DeezerRelay(http_client, BASE)

        with pytest.raises(UpstreamError) as exc_info:
            await relay.paginate(f"{BASE}/artist/1/playlists")
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_cyclic_cursor_hits_page_ceiling(self, upstream, http_client):
        upstream.json("/artist/1/playlists", {"data": [1], "next": f"{BASE}/artist/1/playlists"})
        relay = DeezerRelay(http_client, BASE, max_pages=4)

        with pytest.raises(PaginationLimitError):
            await relay.paginate(f"{BASE}/artist/1/playlists")
        assert len(upstream.requests) == 4

    @pytest.mark.asyncio
    async def test_page_without_data_adds_nothing(self, upstream, http_client):
        upstream.json("/artist/1/playlists", {"total": 0})
        relay = DeezerRelay(http_client, BASE)

        assert await relay.paginate(f"{BASE}/artist/1/playlists") == []


class TestFetchJson:
    @pytest.mark.asyncio
    async def test_html_body_is_a_failure(self, upstream, http_client):
        upstream.html("/artist/1")
        relay = DeezerRelay(http_client, BASE)

        with pytest.raises(UpstreamError, match="Expected JSON"):
            await relay.fetch_json(f"{BASE}/artist/1")

    @pytest.mark.asyncio
    async def test_status_is_kept_on_error(self, upstream, http_client):
        upstream.json("/album/9", {"error": "gone"}, status_code=404)
        relay = DeezerRelay(http_client, BASE)

        with pytest.raises(UpstreamError) as exc_info:
            await relay.fetch_json(f"{BASE}/album/9")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_transport_error(self, upstream, http_client):
        upstream.fail("/chart")
        relay = DeezerRelay(http_client, BASE)

        with pytest.raises(UpstreamError) as exc_info:
            await relay.fetch_json(f"{BASE}/chart")
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_fetch_many_stops_at_first_failure(self, upstream, http_client):
        upstream.json("/playlist/1", {"id": 1})
        upstream.json("/playlist/2", {"error": "x"}, status_code=500)
        upstream.json("/playlist/3", {"id": 3})
        relay = DeezerRelay(http_client, BASE)

        with pytest.raises(UpstreamError):
            await relay.fetch_many(["/playlist/1", "/playlist/2", "/playlist/3"])
        assert [r.url.path for r in upstream.requests] == ["/playlist/1", "/playlist/2"]


class TestShapers:
    def test_flatten_keeps_order_and_six_fields(self):
        body = {"id": 55, "tracks": {"data": [_playlist_track(3), _playlist_track(1), _playlist_track(2)]}}

        tracks = flatten_playlist_tracks(body)

        assert [t["id"] for t in tracks] == [3, 1, 2]
        for track in tracks:
            assert set(track) == {"id", "title", "duration", "artist", "album", "preview"}
            assert set(track["artist"]) == {"id", "name"}
            assert set(track["album"]) == {"id", "title", "cover_medium", "cover_big"}
        assert tracks[0]["album"]["cover_big"] == "b.jpg"

    def test_flatten_without_tracks_is_not_found(self):
        with pytest.raises(ResourceNotFoundError):
            flatten_playlist_tracks({"error": {"type": "DataException", "code": 800}})

    def test_album_tracks_passthrough(self):
        assert album_tracks({"tracks": {"data": [{"id": 1}]}}) == [{"id": 1}]
        with pytest.raises(ResourceNotFoundError):
            album_tracks({"id": 1})

    def test_albums_sorted_newest_first(self):
        body = {"data": [
            {"id": 1, "release_date": "2001-05-01"},
            {"id": 2, "release_date": "2019-11-22"},
            {"id": 3},
            {"id": 4, "release_date": "2010-01-15"},
        ]}

        shaped = sort_albums_by_release(body)

        assert shaped["success"] is True
        assert [a["id"] for a in shaped["albums"]] == [2, 4, 1, 3]

    def test_albums_missing_data_is_not_found(self):
        with pytest.raises(ResourceNotFoundError):
            sort_albums_by_release({"error": {}})
