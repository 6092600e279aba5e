import httpx
import pytest

from viewing_rec import metadata


HEAT = {
    "Title": "Heat",
    "Genre": "Action, Crime, Drama",
    "Actors": "Al Pacino, Robert De Niro, Val Kilmer",
    "Director": "Michael Mann",
    "Runtime": "170 min",
    "Poster": "N/A",
    "Response": "True",
}


@pytest.fixture
def no_sleep(monkeypatch):
    waits = []

    async def fake_sleep(seconds):
        waits.append(seconds)

    monkeypatch.setattr(metadata.asyncio, "sleep", fake_sleep)
    return waits


def test_parse_omdb_payload_drops_sentinel():
    meta = metadata.parse_omdb_payload(HEAT)

    assert meta.title == "Heat"
    assert meta.genre == "Action, Crime, Drama"
    assert meta.cast == "Al Pacino, Robert De Niro, Val Kilmer"
    assert meta.director == "Michael Mann"
    assert meta.runtime == "170 min"
    assert meta.poster_url is None


@pytest.mark.asyncio
async def test_lookup_sends_title_and_key():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        seen["path"] = request.url.path
        return httpx.Response(200, json=HEAT)

    transport = httpx.MockTransport(handler)
    async with httpx.AsyncClient(transport=transport) as client:
        omdb = metadata.OMDbClient(api_key="secret", base_url="https://omdb.test", client=client)
        meta = await omdb.lookup("Heat")

    assert seen["params"] == {"t": "Heat", "apikey": "secret"}
    assert seen["path"] == "/"
    assert meta.director == "Michael Mann"


@pytest.mark.asyncio
async def test_lookup_returns_none_for_unknown_title():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"Response": "False", "Error": "Movie not found!"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        omdb = metadata.OMDbClient(api_key="k", client=client)
        assert await omdb.lookup("Nope") is None


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [401, 404, 500])
async def test_lookup_returns_none_on_http_errors(status):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"Response": "False"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        omdb = metadata.OMDbClient(api_key="k", client=client)
        assert await omdb.lookup("Heat") is None


@pytest.mark.asyncio
async def test_lookup_returns_none_on_malformed_body():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>not json</html>")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        omdb = metadata.OMDbClient(api_key="k", client=client)
        assert await omdb.lookup("Heat") is None


@pytest.mark.asyncio
async def test_lookup_waits_out_rate_limit(no_sleep):
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(429, headers={"Retry-After": "2"})
        return httpx.Response(200, json=HEAT)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        omdb = metadata.OMDbClient(api_key="k", client=client)
        meta = await omdb.lookup("Heat")

    assert meta.title == "Heat"
    assert calls["n"] == 2
    assert len(no_sleep) == 1
    assert 2 <= no_sleep[0] <= 2.5


@pytest.mark.asyncio
async def test_lookup_retries_timeouts_then_gives_up(no_sleep):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        omdb = metadata.OMDbClient(api_key="k", client=client)
        assert await omdb.lookup("Heat") is None

    assert no_sleep == [1, 2, 4]


@pytest.mark.asyncio
async def test_lookup_without_client_raises():
    with pytest.raises(RuntimeError):
        await metadata.OMDbClient(api_key="k").lookup("Heat")


@pytest.mark.asyncio
async def test_context_manager_closes_own_client():
    omdb = metadata.OMDbClient(api_key="k")
    async with omdb:
        assert isinstance(omdb.client, httpx.AsyncClient)
    assert omdb.client is None
