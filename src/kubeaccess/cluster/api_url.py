"""Selection of the externally reachable API endpoint of a cluster."""

import ipaddress

from kubeaccess.domain.models import DEFAULT_API_PORT, ClusterAddressConfig


class NoAddressConfiguredError(Exception):
    """Raised when none of the address fields is set."""

    pass


class MalformedAddressError(Exception):
    """Raised when the selected address cannot be turned into host:port."""

    def __init__(self, address: str, reason: str) -> None:
        super().__init__(f"Malformed API address {address!r}: {reason}")
        self.address = address


def select_address(cfg: ClusterAddressConfig) -> tuple[str, str]:
    """Return ``(source_field, address)`` for the first non-blank address field.

    Order: external_address, internal_address, address.
    """
    candidates = (
        ("external_address", cfg.external_address),
        ("internal_address", cfg.internal_address),
        ("address", cfg.address),
    )
    for source, value in candidates:
        if value and value.strip():
            return source, value.strip()
    raise NoAddressConfiguredError(
        "No API address configured: externalAddress, internalAddress and address are all empty"
    )


def _format_host(address: str) -> str:
    if "://" in address or "/" in address or any(c.isspace() for c in address):
        raise MalformedAddressError(address, "expected a bare host name or IP address")

    if address.startswith("["):
        if not address.endswith("]"):
            raise MalformedAddressError(address, "address already carries a port")
        inner = address[1:-1]
        try:
            if ipaddress.ip_address(inner).version == 6:
                return address
        except ValueError:
            pass
        raise MalformedAddressError(address, "brackets are only valid around IPv6 literals")

    try:
        ip = ipaddress.ip_address(address)
    except ValueError:
        if ":" in address:
            raise MalformedAddressError(address, "address already carries a port") from None
        return address

    if ip.version == 6:
        return f"[{address}]"
    return address


def resolve_api_url(cfg: ClusterAddressConfig) -> str:
    """Build ``https://<host>:<port>`` from the first configured address.

    No name resolution or connectivity check is done. A port of 0 or None means
    the default API port.

    Raises:
        NoAddressConfiguredError: If no address field is set.
        MalformedAddressError: If the selected address carries a port, scheme or
            path, or the port is out of range.
    """
    _, address = select_address(cfg)

    port = cfg.port or DEFAULT_API_PORT
    if not 1 <= port <= 65535:
        raise MalformedAddressError(address, f"port {port} is out of range")

    return f"https://{_format_host(address)}:{port}"
