"""Resolution backends the cache can sit on top of.

A resolver is any callable taking a key and returning an ordered list of
strings, raising on failure. The system resolvers wrap the socket module;
``UDPResolver`` and ``DoHResolver`` query a specific server directly.
"""
import abc
import ipaddress
import socket
from typing import Iterable, List, Optional
import httpx
from dnslib import DNSRecord, QTYPE, RCODE
from .config import logger, BOOTSTRAP_DNS, DOH_UPSTREAM, RESOLVER_TIMEOUT
from .errors import ResolutionError


def _unique(values: Iterable[str]) -> List[str]:
    """De-duplicate while keeping resolver order."""
    return list(dict.fromkeys(values))


def is_ip_address(value: str) -> bool:
    try:
        ipaddress.ip_address(value)
    except ValueError:
        return False
    return True


def ipv4_only(addresses: Iterable[str]) -> List[str]:
    """Filter addresses down to the IPv4 family."""
    result = []
    for address in addresses:
        try:
            if ipaddress.ip_address(address).version == 4:
                result.append(address)
        except ValueError:
            continue
    return result


def reverse_lookup(address: str) -> List[str]:
    """Resolve an address to its hostnames using the system resolver."""
    try:
        hostname, aliases, _ = socket.gethostbyaddr(address)
    except (socket.herror, socket.gaierror, OSError) as e:
        raise ResolutionError(address, f"reverse lookup failed: {e}") from e
    return _unique([hostname, *aliases])


def forward_lookup(hostname: str) -> List[str]:
    """Resolve a hostname to its IP addresses using the system resolver."""
    try:
        infos = socket.getaddrinfo(hostname, None, proto=socket.IPPROTO_TCP)
    except (socket.gaierror, OSError) as e:
        raise ResolutionError(hostname, f"lookup failed: {e}") from e
    return _unique(info[4][0] for info in infos)


def _answers(response: DNSRecord, qtype: str) -> List[str]:
    wanted = getattr(QTYPE, qtype)
    return [str(rr.rdata).rstrip('.') if qtype == 'PTR' else str(rr.rdata)
            for rr in response.rr if rr.rtype == wanted]


def _check_rcode(key: str, response: DNSRecord):
    rcode = response.header.rcode
    if rcode != RCODE.NOERROR:
        raise ResolutionError(key, f"server answered {RCODE.get(rcode, rcode)}")


class _DNSServerResolver(abc.ABC):
    """Shared forward/reverse logic for resolvers that speak to one server."""

    @abc.abstractmethod
    def _query(self, name: str, qtype: str) -> DNSRecord:
        """Send one question and return the parsed reply."""

    def forward(self, hostname: str) -> List[str]:
        """Resolve a hostname to its A then AAAA records."""
        if is_ip_address(hostname):
            return [hostname]
        addresses = []
        for qtype in ('A', 'AAAA'):
            response = self._query(hostname, qtype)
            _check_rcode(hostname, response)
            addresses.extend(_answers(response, qtype))
        if not addresses:
            raise ResolutionError(hostname, "no address records")
        return _unique(addresses)

    def reverse(self, address: str) -> List[str]:
        """Resolve an address to its PTR hostnames."""
        try:
            name = ipaddress.ip_address(address).reverse_pointer
        except ValueError as e:
            raise ResolutionError(address, "not an IP address") from e
        response = self._query(name, 'PTR')
        _check_rcode(address, response)
        hostnames = _answers(response, 'PTR')
        if not hostnames:
            raise ResolutionError(address, "no PTR records")
        return _unique(hostnames)

    __call__ = forward


class UDPResolver(_DNSServerResolver):
    """
    Queries a single DNS server over plain UDP.

    Args:
        server: IP address of the DNS server
        timeout: Socket timeout in seconds
        port: Server port
    """

    def __init__(self, server: str = BOOTSTRAP_DNS, timeout: float = RESOLVER_TIMEOUT, port: int = 53):
        self.server = server
        self.timeout = timeout
        self.port = port

    def _query(self, name: str, qtype: str) -> DNSRecord:
        q = DNSRecord.question(name, qtype)
        logger.debug(f"Querying {name} ({qtype}) via {self.server}")
        try:
            with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
                sock.settimeout(self.timeout)
                sock.sendto(q.pack(), (self.server, self.port))
                response_data, _ = sock.recvfrom(4096)
            response = DNSRecord.parse(response_data)
        except Exception as e:
            raise ResolutionError(name, f"query to {self.server} failed: {e}") from e

        if response.header.id != q.header.id:
            raise ResolutionError(name, f"reply from {self.server} has mismatched id {response.header.id}")
        if response.header.tc:
            raise ResolutionError(name, f"reply from {self.server} was truncated")
        return response


class DoHResolver(_DNSServerResolver):
    """
    Queries a DNS over HTTPS upstream (RFC 8484 wire format).

    Args:
        upstream: DoH endpoint URL
        client: Optional ``httpx.Client`` to reuse; one is created otherwise
        timeout: Request timeout in seconds
    """

    headers = {
        "Content-Type": "application/dns-message",
        "Accept": "application/dns-message"
    }

    def __init__(self, upstream: str = DOH_UPSTREAM, client: Optional[httpx.Client] = None,
                 timeout: float = RESOLVER_TIMEOUT):
        self.upstream = upstream
        self.timeout = timeout
        self._owns_client = client is None
        self._client = client if client is not None else httpx.Client(timeout=timeout)

    def _query(self, name: str, qtype: str) -> DNSRecord:
        q = DNSRecord.question(name, qtype)
        try:
            resp = self._client.post(self.upstream, content=q.pack(), headers=self.headers,
                                     timeout=self.timeout)
            resp.raise_for_status()
            return DNSRecord.parse(resp.content)
        except httpx.HTTPError as e:
            logger.error(f"DoH Request to {self.upstream} failed: {e}")
            raise ResolutionError(name, f"DoH request failed: {e}") from e
        except Exception as e:
            raise ResolutionError(name, f"invalid DoH response: {e}") from e

    def close(self):
        if self._owns_client:
            self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
