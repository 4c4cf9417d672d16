"""
Tests for the Quake 3 getstatus/rcon protocol helpers.
"""

import socket
import threading
import pytest
from unittest.mock import patch

from etl_launcher.query import (
    OOB, QueryError, parse_infostring, parse_status_response, player_count,
    query_status, rcon_packet, send_rcon,
)

STATUS = (OOB + b"statusResponse\n"
          b"\\sv_hostname\\^1Test\\mapname\\supply\\sv_maxclients\\24\n"
          b'5 48 "^2Alice"\n'
          b'0 999 "Bob Smith"\n')


class _UdpServer:
    """One-shot UDP responder on localhost."""

    def __init__(self, replies):
        self.replies = replies
        self.received = []
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self.sock.bind(("127.0.0.1", 0))
        self.port = self.sock.getsockname()[1]
        self.thread = threading.Thread(target=self._serve, daemon=True)

    def _serve(self):
        self.sock.settimeout(2)
        try:
            data, addr = self.sock.recvfrom(65535)
        except socket.timeout:
            return
        self.received.append(data)
        for r in self.replies:
            self.sock.sendto(r, addr)

    def __enter__(self):
        self.thread.start()
        return self

    def __exit__(self, *exc):
        self.thread.join(timeout=3)
        self.sock.close()


class TestParsing:
    def test_infostring(self):
        assert parse_infostring("\\a\\1\\b\\2") == {"a": "1", "b": "2"}

    def test_status_response(self):
        status = parse_status_response(STATUS)
        assert status.info["mapname"] == "supply"
        assert status.player_count == 2
        assert status.players[0].name == "^2Alice"
        assert status.players[1].name == "Bob Smith"
        assert status.players[1].ping == 999

    def test_empty_server(self):
        status = parse_status_response(OOB + b"statusResponse\n\\mapname\\radar\n")
        assert status.player_count == 0
        assert status.to_dict()["map"] == "radar"

    def test_wrong_header(self):
        with pytest.raises(QueryError):
            parse_status_response(OOB + b"infoResponse\n")

    def test_rcon_packet(self):
        assert rcon_packet("pw", "status") == b"\xff\xff\xff\xffrcon pw status"


class TestNetwork:
    def test_query_status_round_trip(self):
        with _UdpServer([STATUS]) as srv:
            status = query_status("127.0.0.1", srv.port, timeout=2)
        assert srv.received == [OOB + b"getstatus\n"]
        assert status.player_count == 2

    def test_send_rcon_collects_print_packets(self):
        replies = [OOB + b"print\nmap: supply\n", OOB + b"print\nnum score ping\n"]
        with _UdpServer(replies) as srv:
            out = send_rcon("127.0.0.1", srv.port, "secret", "status", timeout=0.5)
        assert srv.received == [rcon_packet("secret", "status")]
        assert out == "map: supply\nnum score ping\n"

    def test_send_rcon_requires_password(self):
        with pytest.raises(QueryError):
            send_rcon("127.0.0.1", 27960, "", "status")

    def test_player_count_none_when_silent(self):
        with patch("etl_launcher.query._exchange", return_value=[]):
            assert player_count("127.0.0.1", 27960, timeout=0.1) is None

    def test_player_count(self):
        with patch("etl_launcher.query._exchange", return_value=[STATUS]):
            assert player_count() == 2
