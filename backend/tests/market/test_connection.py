"""Tests for QuoteConnection against a fake websocket."""

import asyncio

import pytest
from websockets.exceptions import InvalidHandshake

from quotestream.market.connection import QuoteConnection
from quotestream.market.models import ConnectionState


def _make_connection(api_key="test-key", symbols=("AAPL", "MSFT"), heartbeat_interval=60.0):
    quotes = []
    closes = []
    connection = QuoteConnection(
        api_key=api_key,
        symbols=lambda: list(symbols),
        on_quote=quotes.append,
        on_closed=closes.append,
        url="wss://stream.test/v1/quotes/price",
        heartbeat_interval=heartbeat_interval,
    )
    return connection, quotes, closes


@pytest.mark.asyncio
class TestQuoteConnection:
    """Unit tests for the shared streaming connection."""

    async def test_open_without_key_is_unavailable(self, feed):
        connection, _, closes = _make_connection(api_key=None)

        assert await connection.open() is False
        assert connection.state is ConnectionState.DISCONNECTED
        feed.connect.assert_not_called()
        assert closes == []

    async def test_open_sends_single_resubscribe(self, feed):
        connection, _, _ = _make_connection()

        assert await connection.open() is True

        assert connection.state is ConnectionState.OPEN
        assert feed.latest.url == "wss://stream.test/v1/quotes/price?apikey=test-key"
        assert feed.latest.sent == [{"action": "subscribe", "params": {"symbols": "AAPL,MSFT"}}]
        await connection.close()

    async def test_open_with_no_symbols_sends_nothing(self, feed):
        connection, _, _ = _make_connection(symbols=())

        await connection.open()

        assert feed.latest.sent == []
        await connection.close()

    async def test_open_twice_reuses_connection(self, feed):
        connection, _, _ = _make_connection()
        await connection.open()
        await connection.open()

        assert feed.connect.call_count == 1
        await connection.close()

    async def test_price_frames_become_quotes(self, feed, wait_until):
        connection, quotes, _ = _make_connection()
        await connection.open()

        feed.latest.push({"event": "price", "symbol": "AAPL", "price": "190.50", "change_percent": "0.3"})
        await wait_until(lambda: quotes)

        assert quotes[0].symbol == "AAPL"
        assert quotes[0].price == 190.50
        assert quotes[0].change_percent == 0.3
        await connection.close()

    async def test_malformed_frames_do_not_close(self, feed, wait_until):
        connection, quotes, closes = _make_connection()
        await connection.open()

        feed.latest.push("{garbage")
        feed.latest.push({"event": "price", "symbol": "AAPL", "price": "oops"})
        feed.latest.push({"event": "subscribe-status", "status": "ok"})
        feed.latest.push({"event": "price", "symbol": "MSFT", "price": "420"})
        await wait_until(lambda: quotes)

        assert [q.symbol for q in quotes] == ["MSFT"]
        assert connection.state is ConnectionState.OPEN
        assert closes == []
        await connection.close()

    async def test_send_when_not_open_is_dropped(self, feed):
        connection, _, _ = _make_connection()

        assert await connection.send({"action": "heartbeat"}) is False  # Should not raise

    async def test_unexpected_close_reports_and_stops_heartbeat(self, feed, wait_until):
        connection, _, closes = _make_connection()
        await connection.open()
        assert connection.heartbeat_running

        feed.latest.drop()
        await wait_until(lambda: closes)

        assert closes == [False]
        assert connection.state is ConnectionState.DISCONNECTED
        assert not connection.heartbeat_running

    async def test_requested_close_reports_expected(self, feed):
        connection, _, closes = _make_connection()
        await connection.open()
        ws = feed.latest

        await connection.close()

        assert ws.closed
        assert closes == [True]
        assert connection.state is ConnectionState.DISCONNECTED
        assert not connection.heartbeat_running

    async def test_close_when_disconnected_is_noop(self, feed):
        connection, _, closes = _make_connection()
        await connection.close()
        assert closes == []

    async def test_heartbeat_sent_while_open(self, feed, wait_until):
        connection, _, _ = _make_connection(heartbeat_interval=0.01)
        await connection.open()

        await wait_until(lambda: len(feed.latest.actions("heartbeat")) >= 2)
        await connection.close()

        count = len(feed.latest.actions("heartbeat"))
        await asyncio.sleep(0.05)
        assert len(feed.latest.actions("heartbeat")) == count

    async def test_reopen_restarts_single_heartbeat(self, feed, wait_until):
        connection, _, closes = _make_connection()
        await connection.open()
        first_heartbeat = connection._heartbeat._task

        feed.latest.drop()
        await wait_until(lambda: closes)
        await connection.open()
        await asyncio.sleep(0.01)

        assert first_heartbeat.cancelled()
        assert connection._heartbeat._task is not first_heartbeat
        assert connection.heartbeat_running
        await connection.close()

    async def test_rejected_handshake_is_unavailable(self, feed):
        feed.failures.append(InvalidHandshake("401 Unauthorized"))
        connection, _, closes = _make_connection()

        assert await connection.open() is False
        assert connection.state is ConnectionState.DISCONNECTED
        assert closes == []

    async def test_transient_failure_reported_as_unexpected_close(self, feed):
        feed.failures.append(OSError("connection refused"))
        connection, _, closes = _make_connection()

        assert await connection.open() is True
        assert connection.state is ConnectionState.DISCONNECTED
        assert closes == [False]

    async def test_close_waits_for_inflight_open(self, feed):
        feed.delay = 0.02
        connection, _, closes = _make_connection()

        opening = asyncio.create_task(connection.open())
        await asyncio.sleep(0)
        assert connection.state is ConnectionState.CONNECTING

        await connection.close()
        await opening

        assert feed.latest.closed
        assert connection.state is ConnectionState.DISCONNECTED
        assert closes == [True]

    async def test_illegal_transition_raises(self):
        connection, _, _ = _make_connection()
        with pytest.raises(RuntimeError):
            connection._transition(ConnectionState.OPEN)
