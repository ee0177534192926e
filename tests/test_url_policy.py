"""Tests for the outbound webhook URL policy."""

from __future__ import annotations

import socket
from unittest.mock import patch

import pytest

from conduit.exceptions import UnsafeURLError
from conduit.webhooks.url_policy import (
    ensure_safe_target,
    generate_webhook_secret,
    is_private_address,
    validate_webhook_url,
)


class TestIsPrivateAddress:
    """Tests for address classification."""

    @pytest.mark.parametrize(
        "address",
        [
            "127.0.0.1",
            "10.1.2.3",
            "172.16.0.1",
            "192.168.1.1",
            "169.254.169.254",
            "0.0.0.0",
            "::1",
            "fe80::1",
            "fc00::1",
            "::ffff:127.0.0.1",
            "not-an-ip",
        ],
    )
    def test_internal_addresses(self, address: str) -> None:
        """Loopback, private, link-local and unparseable addresses are internal."""
        assert is_private_address(address)

    @pytest.mark.parametrize("address", ["93.184.216.34", "8.8.8.8", "2606:4700:4700::1111"])
    def test_public_addresses(self, address: str) -> None:
        assert not is_private_address(address)


class TestValidateWebhookUrl:
    def test_accepts_public_https(self) -> None:
        url = "https://hooks.example.com/orders"
        assert validate_webhook_url(url) == url

    @pytest.mark.parametrize(
        "url",
        [
            "",
            "ftp://example.com/hook",
            "file:///etc/passwd",
            "https:///missing-host",
            "http://localhost:8080/hook",
            "http://api.localhost/hook",
            "http://printer.local/hook",
            "http://127.0.0.1/hook",
            "http://10.0.0.5/hook",
            "http://[::1]/hook",
            "http://169.254.169.254/latest/meta-data",
        ],
    )
    def test_rejects_unsafe(self, url: str) -> None:
        with pytest.raises(UnsafeURLError):
            validate_webhook_url(url)

    def test_allow_private_skips_address_checks(self) -> None:
        assert validate_webhook_url("http://127.0.0.1:9000/hook", allow_private=True)

    def test_allow_private_still_requires_http(self) -> None:
        with pytest.raises(UnsafeURLError):
            validate_webhook_url("gopher://127.0.0.1/", allow_private=True)


def _addrinfo(*addresses: str) -> list[tuple]:
    return [
        (socket.AF_INET, socket.SOCK_STREAM, socket.IPPROTO_TCP, "", (address, 443))
        for address in addresses
    ]


class TestEnsureSafeTarget:
    """Tests for resolution-time checks."""

    @pytest.mark.asyncio
    async def test_public_resolution_passes(self) -> None:
        with patch(
            "asyncio.base_events.BaseEventLoop.getaddrinfo",
            return_value=_addrinfo("93.184.216.34"),
        ):
            await ensure_safe_target("https://hooks.example.com/orders")

    @pytest.mark.asyncio
    async def test_rebinding_to_private_is_blocked(self) -> None:
        """A public-looking name that resolves inward is refused."""
        with patch(
            "asyncio.base_events.BaseEventLoop.getaddrinfo",
            return_value=_addrinfo("93.184.216.34", "10.0.0.7"),
        ):
            with pytest.raises(UnsafeURLError, match="10.0.0.7"):
                await ensure_safe_target("https://internal.example.com/hook")

    @pytest.mark.asyncio
    async def test_resolution_failure_is_not_a_violation(self) -> None:
        with patch(
            "asyncio.base_events.BaseEventLoop.getaddrinfo",
            side_effect=socket.gaierror("Name or service not known"),
        ):
            await ensure_safe_target("https://nowhere.invalid/hook")

    @pytest.mark.asyncio
    async def test_skips_lookup_when_disabled(self) -> None:
        with patch("asyncio.base_events.BaseEventLoop.getaddrinfo") as lookup:
            await ensure_safe_target("https://hooks.example.com/orders", resolve_dns=False)
        lookup.assert_not_called()

    @pytest.mark.asyncio
    async def test_literal_checked_without_lookup(self) -> None:
        with pytest.raises(UnsafeURLError):
            await ensure_safe_target("http://192.168.0.10/hook")


def test_generated_secret_is_64_hex_chars() -> None:
    secret = generate_webhook_secret()
    assert len(secret) == 64
    int(secret, 16)
    assert secret != generate_webhook_secret()
