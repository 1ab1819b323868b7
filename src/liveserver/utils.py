"""
Small helpers for addresses, URLs and paths.
"""

import ipaddress
import logging
import os
import socket
from typing import Dict, Optional
from urllib.parse import quote


logger = logging.getLogger(__name__)

LOOPBACK = "127.0.0.1"
_WILDCARD_HOSTS = {"", "0.0.0.0", "::"}


def get_local_ip_address() -> str:
    """
    First non-loopback IPv4 address of this machine, or 127.0.0.1.

    Connecting a UDP socket sends nothing; it only asks the kernel which
    interface would route to the target.
    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("10.255.255.255", 1))
            address = sock.getsockname()[0]
        if not ipaddress.ip_address(address).is_loopback:
            return address
    except OSError as e:
        logger.debug(f"Route lookup for LAN address failed: {e}")

    try:
        for info in socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET):
            address = info[4][0]
            if not ipaddress.ip_address(address).is_loopback:
                return address
    except OSError as e:
        logger.debug(f"Hostname lookup for LAN address failed: {e}")

    return LOOPBACK


def _url_host(host: str) -> str:
    if ":" in host and not host.startswith("["):
        return f"[{host}]"
    return host


def generate_urls(
    port: int,
    file_path: str = "",
    protocol: str = "http",
    host: Optional[str] = None,
) -> Dict[str, str]:
    """
    Build the local and LAN URLs for a running server.

    Args:
        port: Bound port.
        file_path: Path relative to the served root, appended to both URLs.
        protocol: "http" or "https".
        host: Bind host. A loopback bind has no LAN URL of its own, so the
              network URL falls back to the local one. A specific
              non-loopback bind is not reachable through localhost, so
              both URLs use it.

    Returns:
        {"local": ..., "network": ...}
    """
    suffix = quote(file_path.replace(os.sep, "/").lstrip("/"))
    local_host = "localhost"
    network_host = get_local_ip_address()

    if host and host not in _WILDCARD_HOSTS:
        try:
            loopback = ipaddress.ip_address(host).is_loopback
        except ValueError:
            loopback = host.lower() == "localhost"
        if loopback:
            network_host = local_host
        else:
            local_host = network_host = host

    return {
        "local": f"{protocol}://{_url_host(local_host)}:{port}/{suffix}",
        "network": f"{protocol}://{_url_host(network_host)}:{port}/{suffix}",
    }


def get_relative_path(root: str, path: str) -> str:
    """
    ``path`` relative to ``root`` with forward slashes.

    Returns an empty string when ``path`` is not inside ``root``.
    """
    root = os.path.realpath(root)
    path = os.path.realpath(path)
    try:
        if os.path.commonpath([root, path]) != root:
            return ""
    except ValueError:
        # Different drives on Windows
        return ""
    relative = os.path.relpath(path, root)
    return "" if relative == "." else relative.replace(os.sep, "/")
