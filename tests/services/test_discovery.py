"""Tests for endpoint resolution and server metadata discovery."""

import asyncio
import logging

import httpx
import pytest

from oauthclient.models.discovery import EndpointKind
from oauthclient.models.errors import ConfigurationError

METADATA_PATH = "/.well-known/oauth-authorization-server"


class TestEndpointResolution:
    """Test the configured > discovered > convention resolution order."""

    async def test_configured_absolute_endpoint_skips_discovery(
        self, auth_server, make_client
    ):
        client = make_client(token_endpoint="https://other.example/oauth/token")

        uri = await client.resolve_endpoint(EndpointKind.TOKEN)

        assert uri == "https://other.example/oauth/token"
        assert auth_server.requests == []

    async def test_configured_relative_endpoint_resolves_against_server(
        self, auth_server, make_client
    ):
        client = make_client(
            server="https://auth.example/", token_endpoint="/oauth/token"
        )

        uri = await client.resolve_endpoint("token_endpoint")

        assert uri == "https://auth.example/oauth/token"
        assert auth_server.requests == []

    async def test_falls_back_to_convention_when_discovery_unreachable(
        self, auth_server, make_client
    ):
        # Arrange - no metadata route, the fake server answers 404
        client = make_client(server="https://auth.example/")

        # Act
        uri = await client.resolve_endpoint("token_endpoint")

        # Assert
        assert uri == "https://auth.example/token"
        assert len(auth_server.requests_to(METADATA_PATH)) == 1

    @pytest.mark.parametrize(
        "kind,path",
        [
            (EndpointKind.AUTHORIZATION, "/authorize"),
            (EndpointKind.TOKEN, "/token"),
            (EndpointKind.INTROSPECTION, "/introspect"),
            (EndpointKind.REVOCATION, "/revoke"),
            (EndpointKind.DISCOVERY, METADATA_PATH),
        ],
    )
    async def test_convention_paths(self, make_client, kind, path):
        client = make_client(server="https://auth.example/")

        uri = await client.resolve_endpoint(kind)

        assert uri == f"https://auth.example{path}"

    async def test_discovery_endpoint_does_not_trigger_discovery(
        self, auth_server, make_client
    ):
        client = make_client(server="https://auth.example/")

        await client.resolve_endpoint(EndpointKind.DISCOVERY)

        assert auth_server.requests == []

    async def test_no_server_and_no_endpoint_raises(self, auth_server, make_client):
        client = make_client()

        with pytest.raises(ConfigurationError) as exc_info:
            await client.resolve_endpoint(EndpointKind.TOKEN)

        assert "token_endpoint" in str(exc_info.value)
        assert auth_server.requests == []

    async def test_unknown_endpoint_kind_rejected(self, make_client):
        client = make_client(server="https://auth.example/")

        with pytest.raises(ValueError):
            await client.resolve_endpoint("userinfo_endpoint")


class TestDiscovery:
    """Test one-time, best-effort server metadata discovery."""

    def setup_method(self):
        self.metadata = {
            "issuer": "https://auth.example",
            "authorization_endpoint": "https://auth.example/oauth2/authorize",
            "token_endpoint": "/oauth2/token",
            "revocation_endpoint": "https://auth.example/oauth2/revoke",
            "token_endpoint_auth_methods_supported": ["client_secret_post"],
            "code_challenge_methods_supported": ["S256"],
        }

    async def test_metadata_fills_unset_endpoints(self, auth_server, make_client):
        # Arrange
        auth_server.route(METADATA_PATH, httpx.Response(200, json=self.metadata))
        client = make_client(server="https://auth.example/")

        # Act
        token_uri = await client.resolve_endpoint(EndpointKind.TOKEN)
        authorize_uri = await client.resolve_endpoint(EndpointKind.AUTHORIZATION)
        introspect_uri = await client.resolve_endpoint(EndpointKind.INTROSPECTION)

        # Assert
        assert token_uri == "https://auth.example/oauth2/token"
        assert authorize_uri == "https://auth.example/oauth2/authorize"
        # Not advertised, so the convention applies
        assert introspect_uri == "https://auth.example/introspect"
        assert client.server_metadata is not None
        assert client.server_metadata.issuer == "https://auth.example"
        assert len(auth_server.requests_to(METADATA_PATH)) == 1

    async def test_metadata_does_not_override_configured_values(
        self, auth_server, make_client
    ):
        auth_server.route(METADATA_PATH, httpx.Response(200, json=self.metadata))
        client = make_client(
            server="https://auth.example/",
            authorization_endpoint="/custom/authorize",
            authentication_method="client_secret_basic",
        )

        await client.discover()

        assert client.settings.authorization_endpoint == "/custom/authorize"
        assert client.settings.authentication_method == "client_secret_basic"

    async def test_metadata_sets_authentication_method(self, auth_server, make_client):
        auth_server.route(METADATA_PATH, httpx.Response(200, json=self.metadata))
        client = make_client(server="https://auth.example/")

        await client.discover()

        assert client.settings.authentication_method == "client_secret_post"

    async def test_discovered_auth_method_used_for_requests(
        self, auth_server, make_client
    ):
        # Arrange
        auth_server.route(METADATA_PATH, httpx.Response(200, json=self.metadata))
        auth_server.route(
            "/oauth2/token", httpx.Response(200, json={"access_token": "a"})
        )
        client = make_client(server="https://auth.example/", client_secret="s")

        # Act
        await client.client_credentials()

        # Assert
        request = auth_server.requests_to("/oauth2/token")[0]
        assert "Authorization" not in request.headers
        assert auth_server.form(request)["client_secret"] == ["s"]

    async def test_concurrent_resolution_discovers_once(self, auth_server, make_client):
        # Arrange
        async def slow_metadata(request):
            await asyncio.sleep(0.01)
            return httpx.Response(200, json=self.metadata)

        auth_server.route(METADATA_PATH, slow_metadata)
        client = make_client(server="https://auth.example/")

        # Act
        uris = await asyncio.gather(
            client.resolve_endpoint(EndpointKind.TOKEN),
            client.resolve_endpoint(EndpointKind.AUTHORIZATION),
            client.resolve_endpoint(EndpointKind.REVOCATION),
        )

        # Assert
        assert uris == [
            "https://auth.example/oauth2/token",
            "https://auth.example/oauth2/authorize",
            "https://auth.example/oauth2/revoke",
        ]
        assert len(auth_server.requests_to(METADATA_PATH)) == 1

    async def test_failed_discovery_is_not_retried(self, auth_server, make_client):
        client = make_client(server="https://auth.example/")

        await client.resolve_endpoint(EndpointKind.TOKEN)
        await client.resolve_endpoint(EndpointKind.AUTHORIZATION)

        assert len(auth_server.requests_to(METADATA_PATH)) == 1

    async def test_non_json_metadata_logs_warning(
        self, auth_server, make_client, caplog
    ):
        # Arrange
        auth_server.route(METADATA_PATH, httpx.Response(200, text="<html></html>"))
        client = make_client(server="https://auth.example/")

        # Act
        with caplog.at_level(logging.WARNING):
            uri = await client.resolve_endpoint(EndpointKind.TOKEN)

        # Assert
        assert uri == "https://auth.example/token"
        assert client.server_metadata is None
        assert "discovery failed" in caplog.text

    async def test_server_error_falls_back(self, auth_server, make_client, caplog):
        auth_server.route(METADATA_PATH, httpx.Response(500, json={"oops": True}))
        client = make_client(server="https://auth.example/")

        with caplog.at_level(logging.WARNING):
            uri = await client.resolve_endpoint(EndpointKind.REVOCATION)

        assert uri == "https://auth.example/revoke"
        assert "HTTP 500" in caplog.text

    async def test_network_error_falls_back(self, auth_server, make_client):
        def unreachable(request):
            raise httpx.ConnectError("Connection refused", request=request)

        auth_server.route(METADATA_PATH, unreachable)
        client = make_client(server="https://auth.example/")

        uri = await client.resolve_endpoint(EndpointKind.TOKEN)

        assert uri == "https://auth.example/token"

    async def test_invalid_metadata_shape_falls_back(self, auth_server, make_client):
        auth_server.route(
            METADATA_PATH, httpx.Response(200, json={"token_endpoint": 42})
        )
        client = make_client(server="https://auth.example/")

        uri = await client.resolve_endpoint(EndpointKind.TOKEN)

        assert uri == "https://auth.example/token"

    async def test_explicit_discovery_endpoint(self, auth_server, make_client):
        auth_server.route(
            "/tenant/.well-known/openid-configuration",
            httpx.Response(200, json={"token_endpoint": "token"}),
        )
        client = make_client(
            discovery_endpoint=(
                "https://auth.example/tenant/.well-known/openid-configuration"
            )
        )

        uri = await client.resolve_endpoint(EndpointKind.TOKEN)

        # Relative endpoints resolve against the discovery document URL
        assert uri == "https://auth.example/tenant/.well-known/token"


class TestMalformedDiscoveryEndpoint:
    async def test_invalid_discovery_url_falls_back(
        self, auth_server, make_client, caplog
    ):
        # Arrange
        client = make_client(
            server="https://auth.example/", discovery_endpoint="http://[bad"
        )

        # Act
        with caplog.at_level(logging.WARNING):
            first = await client.resolve_endpoint(EndpointKind.TOKEN)
            second = await client.resolve_endpoint(EndpointKind.REVOCATION)

        # Assert
        assert first == "https://auth.example/token"
        assert second == "https://auth.example/revoke"
        assert "not a valid URL" in caplog.text
        assert auth_server.requests == []
