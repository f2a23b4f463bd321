"""Turn the load-balancer Service's addresses into external-dns endpoints."""

from __future__ import annotations

import ipaddress
from typing import Any

import structlog

from contour_plus.models import DEFAULT_RECORD_TTL, Endpoint, RecordType

logger = structlog.get_logger(__name__)

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def service_addresses(service: dict[str, Any]) -> list[IPAddress]:
    """Return the IPs in ``status.loadBalancer.ingress`` of a Service.

    Entries without an ``ip`` (hostname-only load balancers) are ignored, as
    are literals that do not parse. Repeated addresses are kept once, in the
    order they first appear.
    """
    status = service.get("status") or {}
    ingress = (status.get("loadBalancer") or {}).get("ingress") or []

    addresses: list[IPAddress] = []
    for entry in ingress:
        raw = (entry or {}).get("ip") or ""
        if not raw:
            continue
        try:
            address = ipaddress.ip_address(raw)
        except ValueError:
            logger.warning("invalid_service_address", ip=raw)
            continue
        if address not in addresses:
            addresses.append(address)
    return addresses


def make_endpoints(fqdn: str, addresses: list[IPAddress]) -> list[Endpoint]:
    """Build the DNSEndpoint records publishing ``fqdn`` at ``addresses``.

    IPv4 addresses become one ``A`` record and IPv6 addresses one ``AAAA``
    record. ``addresses`` must not be empty.
    """
    ipv4 = [str(ip) for ip in addresses if ip.version == 4]
    ipv6 = [str(ip) for ip in addresses if ip.version == 6]

    endpoints: list[Endpoint] = []
    if ipv4:
        endpoints.append(
            Endpoint(dns_name=fqdn, targets=ipv4, record_type=RecordType.A, record_ttl=DEFAULT_RECORD_TTL)
        )
    if ipv6:
        endpoints.append(
            Endpoint(dns_name=fqdn, targets=ipv6, record_type=RecordType.AAAA, record_ttl=DEFAULT_RECORD_TTL)
        )
    return endpoints
