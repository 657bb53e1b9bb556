"""Endpoint URL validation with SSRF protection.

Runs when an endpoint is registered, so a bad URL is a configuration
error rather than a delivery failure.
"""

import ipaddress
import socket
from collections.abc import Iterable
from urllib.parse import urlparse

BLOCKED_HOSTNAMES = {
    "localhost",
    "localhost.localdomain",
    "ip6-localhost",
    "ip6-loopback",
    "metadata.google.internal",
    "metadata",
}


class SSRFError(ValueError):
    """Raised when a URL targets a private, loopback or metadata address."""


def is_ip_blocked(ip_str: str) -> bool:
    """Check whether an address is non-public.

    Returns False for strings that are not IP addresses.
    """
    try:
        ip = ipaddress.ip_address(ip_str)
    except ValueError:
        return False

    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
    )


def validate_endpoint_url(
    url: str,
    allowed_hosts: Iterable[str] = (),
    resolve_dns: bool = False,
) -> str:
    """Validate a subscriber URL.

    Args:
        url: The URL to validate
        allowed_hosts: Hostnames exempt from SSRF checks
        resolve_dns: Also check the addresses the hostname resolves to

    Returns:
        The URL, stripped of surrounding whitespace

    Raises:
        SSRFError: If the URL targets a blocked host
        ValueError: If the URL is malformed
    """
    url = url.strip()
    parsed = urlparse(url)

    if parsed.scheme not in ("http", "https"):
        raise ValueError(f"URL scheme must be http or https, got: {parsed.scheme or 'none'}")

    hostname = parsed.hostname
    if not hostname:
        raise ValueError("URL must have a hostname")

    hostname = hostname.lower()
    if hostname in {host.lower() for host in allowed_hosts}:
        return url

    if hostname in BLOCKED_HOSTNAMES:
        raise SSRFError(f"Hostname '{hostname}' is blocked")

    if is_ip_blocked(hostname):
        raise SSRFError(f"IP address '{hostname}' is in a blocked range")

    if resolve_dns:
        port = parsed.port or (443 if parsed.scheme == "https" else 80)
        try:
            addrinfo = socket.getaddrinfo(hostname, port, proto=socket.IPPROTO_TCP)
        except socket.gaierror:
            # Unresolvable now; deliveries will fail and be retried
            return url
        for *_, sockaddr in addrinfo:
            if is_ip_blocked(str(sockaddr[0])):
                raise SSRFError(f"Hostname '{hostname}' resolves to blocked IP '{sockaddr[0]}'")

    return url
