"""Unit tests for the resolution backends."""
import socket
import pytest
import httpx
from unittest.mock import MagicMock, patch
from dnslib import DNSRecord, QTYPE, RCODE, RR, A, AAAA, PTR
from dns_ttl_cache.errors import ResolutionError
from dns_ttl_cache.resolvers import (
    DoHResolver,
    UDPResolver,
    _DNSServerResolver,
    forward_lookup,
    ipv4_only,
    is_ip_address,
    reverse_lookup,
)


def make_response(request_bytes, answers=(), rcode=RCODE.NOERROR):
    """Build a packed reply to ``request_bytes`` carrying ``answers``."""
    request = DNSRecord.parse(request_bytes)
    reply = request.reply()
    reply.header.rcode = rcode
    qname = str(request.q.qname)
    for rtype, rdata in answers:
        if QTYPE[request.q.qtype] == rtype:
            reply.add_answer(RR(qname, getattr(QTYPE, rtype), rdata=rdata, ttl=300))
    return reply.pack()


def mock_udp_socket(answers=(), rcode=RCODE.NOERROR, edit=None):
    """Socket mock replying to each sendto with a matching DNS answer.

    ``edit`` may alter the parsed reply before it is packed and returned.
    """
    sock = MagicMock()
    sock.__enter__.return_value = sock
    sock.__exit__.return_value = False
    sent = []

    def recvfrom(size):
        data = make_response(sent[-1], answers, rcode)
        if edit is not None:
            reply = DNSRecord.parse(data)
            edit(reply)
            data = reply.pack()
        return data, ("8.8.8.8", 53)

    sock.sendto.side_effect = lambda data, addr: sent.append(data)
    sock.recvfrom.side_effect = recvfrom
    return sock
    return sock


class TestHelpers:
    """Tests for the address helpers."""

    def test_is_ip_address(self):
        assert is_ip_address("1.1.1.1")
        assert is_ip_address("::1")
        assert not is_ip_address("example.com")

    def test_ipv4_only_keeps_order(self):
        """Test that only IPv4 addresses survive, in their original order."""
        addresses = ["::1", "10.0.0.2", "2001:db8::1", "10.0.0.1", "not-an-ip"]
        assert ipv4_only(addresses) == ["10.0.0.2", "10.0.0.1"]


class TestSystemResolvers:
    """Tests for the socket based resolvers."""

    def test_reverse_lookup_success(self):
        """Test that the primary name comes first followed by aliases."""
        with patch('socket.gethostbyaddr', return_value=("localhost", ["localhost.localdomain", "localhost"], ["127.0.0.1"])):
            assert reverse_lookup("127.0.0.1") == ["localhost", "localhost.localdomain"]

    def test_reverse_lookup_failure(self):
        """Test that lookup errors surface as ResolutionError."""
        with patch('socket.gethostbyaddr', side_effect=socket.herror(1, "Unknown host")):
            with pytest.raises(ResolutionError) as exc_info:
                reverse_lookup("192.0.2.1")

        assert exc_info.value.key == "192.0.2.1"
        assert isinstance(exc_info.value.__cause__, socket.herror)

    def test_forward_lookup_deduplicates(self):
        """Test that duplicate addresses from getaddrinfo are collapsed."""
        infos = [
            (socket.AF_INET, socket.SOCK_STREAM, 6, '', ("93.184.216.34", 0)),
            (socket.AF_INET6, socket.SOCK_STREAM, 6, '', ("2606:2800:220:1::1", 0, 0, 0)),
            (socket.AF_INET, socket.SOCK_STREAM, 6, '', ("93.184.216.34", 0)),
        ]
        with patch('socket.getaddrinfo', return_value=infos):
            assert forward_lookup("example.com") == ["93.184.216.34", "2606:2800:220:1::1"]

    def test_forward_lookup_failure(self):
        """Test that gaierror surfaces as ResolutionError."""
        with patch('socket.getaddrinfo', side_effect=socket.gaierror(-2, "Name or service not known")):
            with pytest.raises(ResolutionError):
                forward_lookup("nonexistent.invalid")


class TestDNSServerResolver:
    """Tests for the shared server resolver base."""

    def test_base_cannot_be_instantiated(self):
        """Test that the base class requires a _query implementation."""
        with pytest.raises(TypeError):
            _DNSServerResolver()

    def test_subclass_without_query_cannot_be_instantiated(self):
        class Incomplete(_DNSServerResolver):
            pass

        with pytest.raises(TypeError):
            Incomplete()


class TestUDPResolver:
    """Tests for the UDPResolver class."""

    def test_forward_success(self):
        """Test that A and AAAA answers are combined."""
        sock = mock_udp_socket([("A", A("93.184.216.34")), ("AAAA", AAAA("2001:db8::1"))])
        with patch('socket.socket', return_value=sock):
            result = UDPResolver("8.8.8.8", timeout=5.0).forward("example.com")

        assert result == ["93.184.216.34", "2001:db8::1"]
        sock.settimeout.assert_called_with(5.0)
        assert sock.sendto.call_args_list[0].args[1] == ("8.8.8.8", 53)

    def test_forward_ip_literal_skips_query(self):
        """Test that an IP literal is returned without network access."""
        with patch('socket.socket') as mock_socket:
            assert UDPResolver().forward("1.1.1.1") == ["1.1.1.1"]
        mock_socket.assert_not_called()

    def test_forward_no_records(self):
        """Test that an empty answer is a resolution failure."""
        sock = mock_udp_socket([])
        with patch('socket.socket', return_value=sock):
            with pytest.raises(ResolutionError):
                UDPResolver().forward("empty.example.com")

    def test_forward_nxdomain(self):
        """Test that a non-zero rcode is a resolution failure."""
        sock = mock_udp_socket([], rcode=RCODE.NXDOMAIN)
        with patch('socket.socket', return_value=sock):
            with pytest.raises(ResolutionError) as exc_info:
                UDPResolver().forward("nonexistent.example.com")

        assert "NXDOMAIN" in str(exc_info.value)

    def test_timeout(self):
        """Test that a socket timeout is a resolution failure."""
        sock = MagicMock()
        sock.__enter__.return_value = sock
        sock.__exit__.return_value = False
        sock.recvfrom.side_effect = socket.timeout("Timeout")
        with patch('socket.socket', return_value=sock):
            with pytest.raises(ResolutionError):
                UDPResolver().forward("timeout.example.com")
        sock.__exit__.assert_called_once()

    def test_reverse_success(self):
        """Test that PTR answers are returned without the trailing dot."""
        sock = mock_udp_socket([("PTR", PTR("localhost."))])
        with patch('socket.socket', return_value=sock):
            assert UDPResolver().reverse("127.0.0.1") == ["localhost"]

        query = DNSRecord.parse(sock.sendto.call_args.args[0])
        assert str(query.q.qname) == "1.0.0.127.in-addr.arpa."
        assert QTYPE[query.q.qtype] == "PTR"

    def test_reverse_rejects_non_address(self):
        """Test that reverse lookups need an IP address."""
        with pytest.raises(ResolutionError):
            UDPResolver().reverse("example.com")

    def test_mismatched_reply_id_is_rejected(self):
        """Test that a reply not matching the question id is a resolution failure."""
        def bump_id(reply):
            reply.header.id = (reply.header.id + 1) % 65536

        sock = mock_udp_socket([("A", A("203.0.113.66"))], edit=bump_id)
        with patch('socket.socket', return_value=sock):
            with pytest.raises(ResolutionError) as exc_info:
                UDPResolver().forward("example.com")

        assert "mismatched id" in str(exc_info.value)

    def test_truncated_reply_is_rejected(self):
        """Test that a reply with the TC bit set is a resolution failure."""
        def truncate(reply):
            reply.header.tc = 1

        sock = mock_udp_socket([("A", A("93.184.216.34"))], edit=truncate)
        with patch('socket.socket', return_value=sock):
            with pytest.raises(ResolutionError) as exc_info:
                UDPResolver().forward("example.com")

        assert "truncated" in str(exc_info.value)

    def test_callable_is_forward(self):
        """Test that calling the resolver performs a forward lookup."""
        sock = mock_udp_socket([("A", A("10.0.0.1"))])
        with patch('socket.socket', return_value=sock):
            assert UDPResolver()("example.com") == ["10.0.0.1"]


class TestDoHResolver:
    """Tests for the DoHResolver class."""

    def make_client(self, answers=(), status_code=200, requests=None):
        def handler(request):
            if requests is not None:
                requests.append(request)
            if status_code != 200:
                return httpx.Response(status_code)
            return httpx.Response(200, content=make_response(request.content, answers))
        return httpx.Client(transport=httpx.MockTransport(handler))

    def test_forward_success(self):
        """Test a forward lookup posted as application/dns-message."""
        requests = []
        client = self.make_client([("A", A("93.184.216.34"))], requests=requests)
        resolver = DoHResolver("https://1.1.1.1/dns-query", client=client)

        assert resolver.forward("example.com") == ["93.184.216.34"]
        assert len(requests) == 2
        assert requests[0].method == "POST"
        assert requests[0].headers['content-type'] == "application/dns-message"
        assert requests[0].headers['accept'] == "application/dns-message"
        assert str(requests[0].url) == "https://1.1.1.1/dns-query"

    def test_reverse_success(self):
        """Test a PTR lookup over DoH."""
        client = self.make_client([("PTR", PTR("one.one.one.one."))])
        resolver = DoHResolver("https://1.1.1.1/dns-query", client=client)

        assert resolver.reverse("1.1.1.1") == ["one.one.one.one"]

    def test_http_error(self):
        """Test that HTTP failures surface as ResolutionError."""
        client = self.make_client(status_code=503)
        resolver = DoHResolver("https://1.1.1.1/dns-query", client=client)

        with pytest.raises(ResolutionError) as exc_info:
            resolver.forward("example.com")
        assert isinstance(exc_info.value.__cause__, httpx.HTTPStatusError)

    def test_close_leaves_borrowed_client_open(self):
        """Test that a caller supplied client is not closed by the resolver."""
        client = self.make_client()
        with DoHResolver(client=client):
            pass
        assert client.is_closed is False

    def test_close_owned_client(self):
        """Test that the resolver closes the client it created."""
        resolver = DoHResolver()
        resolver.close()
        assert resolver._client.is_closed is True
