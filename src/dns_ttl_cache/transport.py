"""httpx transport whose connections resolve hostnames through a DNS cache."""
import asyncio
import random
from typing import Callable, List, Optional
import httpcore
import httpx
from .cache import ForwardDNSCache
from .config import logger
from .errors import ResolutionError
from .resolvers import is_ip_address


class CachedDNSNetworkBackend(httpcore.AsyncNetworkBackend):
    """
    Network backend that looks connection hosts up in a ForwardDNSCache.

    Connections dial a cached address chosen at random. If that address
    refuses or times out, the host is re-resolved (replacing its cache
    entry) and the connection is retried once against the new answer.
    httpcore passes the origin hostname to ``start_tls``, so SNI and
    certificate checks are unaffected by dialling an IP.
    """

    def __init__(self, cache: ForwardDNSCache):
        self.cache = cache
        self._default_backend = httpcore.AnyIOBackend()

    async def resolve(self, host: str, refresh: bool = False) -> str:
        """Return the IP to dial for ``host``; ``refresh`` bypasses the cached entry."""
        if is_ip_address(host):
            return host
        lookup: Callable[[str], List[str]] = self.cache.resolve if refresh else self.cache.fetch
        try:
            addresses = await asyncio.to_thread(lookup, host)
        except ResolutionError as e:
            raise httpcore.ConnectError(str(e)) from e
        if not addresses:
            raise httpcore.ConnectError(f"{host}: no addresses")
        ip = random.choice(addresses)
        logger.debug(f"Connecting to {host} via {ip}")
        return ip

    async def connect_tcp(
        self,
        host: str,
        port: int,
        timeout: Optional[float] = None,
        local_address: Optional[str] = None,
        socket_options=None,
    ):
        kwargs = dict(port=port, timeout=timeout, local_address=local_address, socket_options=socket_options)
        ip = await self.resolve(host)
        try:
            return await self._default_backend.connect_tcp(host=ip, **kwargs)
        except (httpcore.ConnectError, httpcore.ConnectTimeout) as e:
            if ip == host:
                raise
            logger.warning(f"Connecting to {host} via {ip} failed ({e}), re-resolving")

        ip = await self.resolve(host, refresh=True)
        return await self._default_backend.connect_tcp(host=ip, **kwargs)

    async def connect_unix_socket(self, path: str, timeout: Optional[float] = None, socket_options=None):
        return await self._default_backend.connect_unix_socket(
            path=path,
            timeout=timeout,
            socket_options=socket_options,
        )

    async def sleep(self, seconds: float):
        return await self._default_backend.sleep(seconds)


class CachedDNSTransport(httpx.AsyncHTTPTransport):
    """
    AsyncHTTPTransport that dials hosts resolved through a ForwardDNSCache.

    Only the connection pool differs from httpx's own transport; request
    translation and exception mapping are inherited.

    Example:
        cache = ForwardDNSCache(default_ttl=60)
        async with httpx.AsyncClient(transport=CachedDNSTransport(cache)) as client:
            resp = await client.get("https://example.com")
    """

    def __init__(
        self,
        cache: ForwardDNSCache,
        verify=True,
        cert=None,
        http1: bool = True,
        http2: bool = False,
        limits: Optional[httpx.Limits] = None,
        trust_env: bool = True,
        local_address: Optional[str] = None,
        retries: int = 0,
        socket_options=None,
    ):
        if limits is None:
            limits = httpx.Limits()
        self.cache = cache
        ssl_context = httpx.create_ssl_context(verify=verify, cert=cert, trust_env=trust_env)
        self._pool = httpcore.AsyncConnectionPool(
            ssl_context=ssl_context,
            max_connections=limits.max_connections,
            max_keepalive_connections=limits.max_keepalive_connections,
            keepalive_expiry=limits.keepalive_expiry,
            http1=http1,
            http2=http2,
            local_address=local_address,
            retries=retries,
            socket_options=socket_options,
            network_backend=CachedDNSNetworkBackend(cache),
        )
