"""Tests for security module."""

import socket
from unittest.mock import patch

import pytest

from offlinecache.security import MAX_CACHE_NAME_LENGTH, SSRFError, validate_cache_name, validate_url_for_ssrf


def _resolves_to(*ips: str):
    """Patch DNS so every hostname resolves to the given addresses."""
    infos = [(socket.AF_INET, socket.SOCK_STREAM, socket.IPPROTO_TCP, "", (ip, 443)) for ip in ips]
    return patch("offlinecache.security.socket.getaddrinfo", return_value=infos)


class TestValidateUrlForSSRF:
    """Tests for webhook URL validation."""

    def test_allows_public_https(self) -> None:
        with _resolves_to("93.184.216.34"):
            validate_url_for_ssrf("https://hooks.example.com/notify")

    def test_allows_high_port(self) -> None:
        validate_url_for_ssrf("http://hooks.example.com:8080/", allow_private=True)

    @pytest.mark.parametrize("url", ["file:///etc/passwd", "ftp://example.com/x", "gopher://example.com"])
    def test_blocks_non_http_schemes(self, url: str) -> None:
        with pytest.raises(SSRFError, match="not allowed"):
            validate_url_for_ssrf(url)

    @pytest.mark.parametrize("url", ["http://localhost/admin", "http://127.0.0.1/", "http://[::1]/", "http://0.0.0.0/"])
    def test_blocks_localhost(self, url: str) -> None:
        with pytest.raises(SSRFError, match="Localhost access not allowed"):
            validate_url_for_ssrf(url)

    @pytest.mark.parametrize("port", [22, 3306, 6379, 11211])
    def test_blocks_internal_ports(self, port: int) -> None:
        with pytest.raises(SSRFError, match=f"Port {port} is blocked"):
            validate_url_for_ssrf(f"http://hooks.example.com:{port}/")

    def test_blocks_missing_hostname(self) -> None:
        with pytest.raises(SSRFError, match="No hostname"):
            validate_url_for_ssrf("http:///path")

    def test_blocks_invalid_port(self) -> None:
        with pytest.raises(SSRFError, match="Invalid port"):
            validate_url_for_ssrf("http://hooks.example.com:99999/")

    @pytest.mark.parametrize("ip", ["10.0.0.1", "172.16.0.1", "192.168.1.1", "169.254.169.254"])
    def test_blocks_private_addresses(self, ip: str) -> None:
        with _resolves_to(ip), pytest.raises(SSRFError, match="Private IP address not allowed"):
            validate_url_for_ssrf("https://hooks.example.com/")

    def test_checks_every_resolved_address(self) -> None:
        with _resolves_to("93.184.216.34", "10.1.2.3"), pytest.raises(SSRFError, match="10.1.2.3"):
            validate_url_for_ssrf("https://hooks.example.com/")

    def test_unresolvable_host(self) -> None:
        with patch("offlinecache.security.socket.getaddrinfo", side_effect=socket.gaierror("no such host")):
            with pytest.raises(SSRFError, match="Cannot resolve hostname"):
                validate_url_for_ssrf("https://nowhere.invalid/")

    def test_allow_private_skips_resolution(self) -> None:
        with patch("offlinecache.security.socket.getaddrinfo") as mock_resolve:
            validate_url_for_ssrf("http://192.168.1.1/", allow_private=True)
            mock_resolve.assert_not_called()


class TestValidateCacheName:
    """Tests for cache namespace name validation."""

    @pytest.mark.parametrize("name", ["static-v3", "heaven-of-munroe-v3", "api_v3", "images.v3"])
    def test_allows_namespace_names(self, name: str) -> None:
        assert validate_cache_name(name) == name

    def test_allows_max_length(self) -> None:
        name = "a" * MAX_CACHE_NAME_LENGTH
        assert validate_cache_name(name) == name

    def test_rejects_too_long(self) -> None:
        assert validate_cache_name("a" * (MAX_CACHE_NAME_LENGTH + 1)) is None

    def test_rejects_empty(self) -> None:
        assert validate_cache_name("") is None
        assert validate_cache_name(None) is None

    @pytest.mark.parametrize("name", ["..", "../static-v3", "a/b", "a\\b"])
    def test_rejects_path_traversal(self, name: str) -> None:
        assert validate_cache_name(name) is None

    @pytest.mark.parametrize("name", ["static\x00v3", "static\nv3"])
    def test_rejects_control_chars(self, name: str) -> None:
        assert validate_cache_name(name) is None

    @pytest.mark.parametrize("name", ["static v3", "static%20v3", "static@v3", "static#v3"])
    def test_rejects_special_chars(self, name: str) -> None:
        assert validate_cache_name(name) is None
