"""Tests for the GraphQL Location Provider, Entity Directory and geofence source."""

import asyncio
import json

import pytest
from aiohttp import web
from aiohttp import test_utils

from trackfence.models.geofence import GeofencePolygon
from trackfence.provider.base import ProviderError
from trackfence.provider.graphql import (
    GraphQLClient,
    GraphQLEntityDirectory,
    GraphQLLocationProvider,
    GraphQLPolygonSource,
    parse_event_geofence,
    parse_teams,
    parse_updates,
)


def _updates_payload():
    return {
        "data": {
            "updates": [
                {"id": 1, "team": "alpha", "event": 3, "lat": 48.85, "lon": 2.34,
                 "timestamp": "2025-06-01T10:00:00"},
                {"id": 2, "team": "alpha", "event": 3, "lat": 48.86, "lon": 2.35,
                 "timestamp": "2025-06-01T10:00:05"},
            ]
        }
    }


async def _serve(handler, scenario):
    """Run `scenario(url)` against a local GraphQL endpoint served by `handler`."""
    app = web.Application()
    app.router.add_post("/api", handler)
    server = test_utils.TestServer(app)
    await server.start_server()
    try:
        return await scenario(str(server.make_url("/api")))
    finally:
        await server.close()


class TestParseUpdates:
    def test_preserves_order(self):
        samples = parse_updates(_updates_payload())
        assert [s.lat for s in samples] == [48.85, 48.86]
        assert samples[-1].timestamp == "2025-06-01T10:00:05"

    def test_null_updates_is_empty(self):
        assert parse_updates({"data": {"updates": None}}) == []
        assert parse_updates({"data": None}) == []

    def test_malformed_update_raises(self):
        with pytest.raises(ProviderError):
            parse_updates({"data": {"updates": [{"lat": 1}]}})

    def test_non_list_raises(self):
        with pytest.raises(ProviderError):
            parse_updates({"data": {"updates": "nope"}})


class TestParseTeams:
    def test_teams(self):
        entities = parse_teams({"data": {"teams": [
            {"id": 4, "name": "alpha", "color": "#FF6B6B", "event_id": 3},
            {"id": 5, "name": "bravo", "color": None, "event_id": 3},
        ]}})
        assert [e.id for e in entities] == ["4", "5"]
        assert entities[0].color == "#FF6B6B"
        assert entities[1].color == "#3b82f6"

    def test_missing_name_raises(self):
        with pytest.raises(ProviderError):
            parse_teams({"data": {"teams": [{"id": 4}]}})


class TestGraphQLLocationProvider:
    def test_fetch_sends_query_variables(self):
        received = []

        async def handler(request):
            received.append(await request.json())
            return web.json_response(_updates_payload())

        async def scenario(url):
            provider = GraphQLLocationProvider(GraphQLClient(url))
            try:
                return await provider.fetch("alpha", 5000)
            finally:
                await provider.close()

        samples = asyncio.run(_serve(handler, scenario))

        assert len(samples) == 2
        assert received[0]["variables"] == {"team": "alpha", "limit": 5000}
        assert "updates(team: $team, limit: $limit)" in received[0]["query"]

    def test_http_error_raises_provider_error(self):
        async def handler(request):
            return web.json_response({"message": "down"}, status=503)

        async def scenario(url):
            provider = GraphQLLocationProvider(GraphQLClient(url))
            try:
                await provider.fetch("alpha", 10)
            finally:
                await provider.close()

        with pytest.raises(ProviderError) as exc_info:
            asyncio.run(_serve(handler, scenario))
        assert "503" in str(exc_info.value)
        assert exc_info.value.entity_name == "alpha"

    def test_graphql_errors_raise_provider_error(self):
        async def handler(request):
            return web.json_response({"errors": [{"message": "team not found"}], "data": None})

        async def scenario(url):
            provider = GraphQLLocationProvider(GraphQLClient(url))
            try:
                await provider.fetch("ghost", 10)
            finally:
                await provider.close()

        with pytest.raises(ProviderError, match="team not found"):
            asyncio.run(_serve(handler, scenario))

    def test_timeout_raises_provider_error(self):
        async def handler(request):
            await asyncio.sleep(1)
            return web.json_response(_updates_payload())

        async def scenario(url):
            provider = GraphQLLocationProvider(GraphQLClient(url, timeout_seconds=0.1))
            try:
                await provider.fetch("alpha", 10)
            finally:
                await provider.close()

        with pytest.raises(ProviderError):
            asyncio.run(_serve(handler, scenario))

    def test_unreachable_server_raises_provider_error(self):
        async def scenario():
            provider = GraphQLLocationProvider(GraphQLClient("http://127.0.0.1:9/api"))
            try:
                await provider.fetch("alpha", 10)
            finally:
                await provider.close()

        with pytest.raises(ProviderError):
            asyncio.run(scenario())


class TestGraphQLEntityDirectory:
    def test_list_entities(self):
        received = []

        async def handler(request):
            received.append(await request.json())
            return web.json_response({"data": {"teams": [
                {"id": 1, "name": "alpha", "color": "#4ECDC4", "event_id": 3},
            ]}})

        async def scenario(url):
            client = GraphQLClient(url)
            try:
                return await GraphQLEntityDirectory(client).list_entities("3")
            finally:
                await client.close()

        entities = asyncio.run(_serve(handler, scenario))

        assert entities[0].name == "alpha"
        assert received[0]["variables"] == {"eventId": 3}

    def test_non_numeric_event_id(self):
        directory = GraphQLEntityDirectory(GraphQLClient("http://127.0.0.1:9/api"))
        with pytest.raises(ProviderError):
            asyncio.run(directory.list_entities("abc"))


class TestParseEventGeofence:
    def test_geofence_data(self):
        payload = {"data": {"exportEventData": {"event": {"id": 3, "geofence_data": "[[0, 0]]"}}}}
        assert parse_event_geofence(payload) == "[[0, 0]]"

    def test_missing_event_is_none(self):
        assert parse_event_geofence({"data": {"exportEventData": None}}) is None
        assert parse_event_geofence({"data": None}) is None


class TestGraphQLPolygonSource:
    def test_fetch_raw_sends_keycode(self):
        received = []

        async def handler(request):
            received.append(await request.json())
            return web.json_response({"data": {"exportEventData": {"event": {
                "id": 3, "geofence_data": "[[0, 0], [0, 1], [1, 1]]",
            }}}})

        async def scenario(url):
            client = GraphQLClient(url)
            try:
                return await GraphQLPolygonSource(client, "K3Y").fetch_raw("3")
            finally:
                await client.close()

        raw = asyncio.run(_serve(handler, scenario))

        assert raw == "[[0, 0], [0, 1], [1, 1]]"
        assert received[0]["variables"] == {"eventId": 3, "keycode": "K3Y"}

    def test_save_sends_json_payload(self):
        received = []

        async def handler(request):
            received.append(await request.json())
            return web.json_response({"data": {"updateEventGeofence": {"id": 3}}})

        async def scenario(url):
            client = GraphQLClient(url)
            polygon = GeofencePolygon(vertices=[(0, 0), (0, 1), (1, 1)])
            try:
                await GraphQLPolygonSource(client, "K3Y").save("3", polygon)
            finally:
                await client.close()

        asyncio.run(_serve(handler, scenario))

        variables = received[0]["variables"]
        assert variables["keycode"] == "K3Y"
        assert json.loads(variables["geofenceData"]) == [[0, 0], [0, 1], [1, 1]]
        assert "updateEventGeofence" in received[0]["query"]

    def test_rejected_delete_raises(self):
        async def handler(request):
            return web.json_response({"errors": [{"message": "invalid keycode"}], "data": None})

        async def scenario(url):
            client = GraphQLClient(url)
            try:
                await GraphQLPolygonSource(client, "wrong").delete("3")
            finally:
                await client.close()

        with pytest.raises(ProviderError, match="invalid keycode"):
            asyncio.run(_serve(handler, scenario))
