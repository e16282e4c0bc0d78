"""
btc-handshake - Seed Resolution
=================================
Trasforma DNS seed e stringhe host:port in liste di Endpoint.
"""

from __future__ import annotations
from typing import Iterable, List, Optional
import asyncio
import socket

# Internal imports
from btc_handshake.config import HandshakeSettings
from btc_handshake.errors import SeedResolutionError
from btc_handshake.logging_setup import get_logger
from btc_handshake.network.address import Endpoint
from btc_handshake.utils.validators import validate_port


logger = get_logger("network.seeds")


async def resolve_seed(host: str, port: int) -> List[Endpoint]:
    """
    Risolve un hostname in endpoint TCP (IPv4 e IPv6).

    L'ordine del resolver viene mantenuto, i duplicati rimossi.

    Raises:
        SeedResolutionError: Se la risoluzione fallisce o non restituisce indirizzi
    """
    loop = asyncio.get_running_loop()

    try:
        infos = await loop.getaddrinfo(host, port, type=socket.SOCK_STREAM, proto=socket.IPPROTO_TCP)
    except socket.gaierror as e:
        raise SeedResolutionError(
            f"Cannot resolve seed {host}: {e}",
            code="SEED_RESOLUTION_FAILED",
            details={"host": host, "port": port}
        ) from e

    endpoints = list(dict.fromkeys(
        Endpoint.from_sockaddr(sockaddr)
        for family, _, _, _, sockaddr in infos
        if family in (socket.AF_INET, socket.AF_INET6)
    ))

    if not endpoints:
        raise SeedResolutionError(
            f"Seed {host} resolved to no addresses",
            code="SEED_EMPTY",
            details={"host": host, "port": port}
        )

    logger.info(f"Resolved seed {host} to {len(endpoints)} endpoints")
    return endpoints


def parse_endpoints(values: Iterable[str], default_port: int = 0) -> List[Endpoint]:
    """
    Parse di indirizzi IP letterali (host:port, [v6]:port, host).

    Raises:
        ValueError: Se un valore non è un indirizzo IP letterale
    """
    return [Endpoint.parse(value, default_port=default_port) for value in values]


async def resolve_endpoints(values: Iterable[str], default_port: int) -> List[Endpoint]:
    """
    Come parse_endpoints, ma gli hostname vengono risolti via DNS.
    """
    endpoints: List[Endpoint] = []

    for value in values:
        try:
            endpoints.append(Endpoint.parse(value, default_port=default_port))
            continue
        except ValueError:
            pass

        host, port = _split_host_port(value, default_port)
        endpoints.extend(await resolve_seed(host, port))

    return list(dict.fromkeys(endpoints))


async def discover_endpoints(
    settings: HandshakeSettings,
    peers: Optional[Iterable[str]] = None
) -> List[Endpoint]:
    """
    Endpoint da contattare: peer espliciti, poi peer configurati, poi DNS seed.

    Il risultato è troncato a settings.max_peers se impostato.
    """
    explicit = list(peers or []) or settings.peers

    if explicit:
        endpoints = await resolve_endpoints(explicit, settings.network_port)
    else:
        endpoints = await resolve_seed(settings.dns_seed, settings.network_port)

    if settings.max_peers is not None:
        endpoints = endpoints[:settings.max_peers]

    return endpoints


def _split_host_port(value: str, default_port: int):
    host, sep, port_str = value.rpartition(":")
    if not sep:
        return value, default_port
    try:
        return host, validate_port(int(port_str))
    except ValueError:
        raise SeedResolutionError(
            f"Invalid endpoint: {value}",
            code="INVALID_ENDPOINT",
            details={"value": value}
        )


__all__ = [
    "resolve_seed",
    "parse_endpoints",
    "resolve_endpoints",
    "discover_endpoints",
]
