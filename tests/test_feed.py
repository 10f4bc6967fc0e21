"""
Feed listener tests: deduplication, heartbeats, stop and cancellation paths.
"""

import asyncio
import pytest
from decimal import Decimal

from conftest import FakeQuoteStream
from ticks_service.errors import FeedStalledError, ListenerStoppedError, SentryUnreachableError
from ticks_service.protocols import Quote
from ticks_service.services.feed import FeedHandle, FeedListener

NOW = 1700000000.0


def make_listener(stream: FakeQuoteStream) -> FeedListener:
    return FeedListener(stream, "BTC-USDT", clock=lambda: NOW)


@pytest.mark.deterministic
class TestDeduplication:

    def test_identical_quotes_produce_one_tick(self):
        listener = make_listener(FakeQuoteStream())
        first = listener.accept(Quote("50000", "50001"))
        second = listener.accept(Quote("50000", "50001"))

        assert first is not None
        assert first.price == Decimal("50000.5")
        assert first.venue == "binance"
        assert first.instrument == "BTC-USDT"
        assert first.observed_at.timestamp() == NOW
        assert second is None
        assert listener.duplicates_dropped == 1

    def test_each_change_produces_one_tick(self):
        listener = make_listener(FakeQuoteStream())
        quotes = [("1", "3"), ("1", "3"), ("1", "5"), ("2", "5"), ("2", "5"), ("1", "3")]
        ticks = [listener.accept(Quote(b, a)) for b, a in quotes]
        assert [str(t.price) for t in ticks if t is not None] == ["2", "3", "3.5", "2"]

    def test_compares_raw_strings(self):
        listener = make_listener(FakeQuoteStream())
        assert listener.accept(Quote("50000", "50001")) is not None
        # Same value, different venue formatting
        assert listener.accept(Quote("50000.0", "50001")) is not None

    def test_unparseable_quote_is_skipped(self):
        listener = make_listener(FakeQuoteStream())
        assert listener.accept(Quote("bad", "50001")) is None
        assert listener.invalid_quotes == 1
        # Not remembered as forwarded
        assert listener.accept(Quote("50000", "50001")) is not None


class TestListen:

    @pytest.mark.asyncio
    async def test_ticks_stream_deduplicates(self):
        stream = FakeQuoteStream()
        listener = make_listener(stream)
        stream.push("50000", "50001")
        stream.push("50000", "50001")
        stream.push("50000", "50002")
        stream.close()

        ticks = [t async for t in listener.ticks()]

        assert [t.price for t in ticks] == [Decimal("50000.5"), Decimal("50001")]
        assert stream.open_count == 1

    @pytest.mark.asyncio
    async def test_upstream_close_raises_listener_stopped(self):
        stream = FakeQuoteStream()
        received = []

        async def sink(tick):
            received.append(tick)

        stream.push("50000", "50001")
        stream.close()

        with pytest.raises(ListenerStoppedError, match="listener stopped"):
            await make_listener(stream).listen(sink)
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_upstream_error_is_wrapped(self):
        stream = FakeQuoteStream()
        stream.fail(ConnectionError("connection reset"))

        async def sink(tick):
            pass

        with pytest.raises(ListenerStoppedError) as exc_info:
            await make_listener(stream).listen(sink)
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    @pytest.mark.asyncio
    async def test_unreachable_sentry_ends_cleanly(self):
        stream = FakeQuoteStream()

        async def sink(tick):
            raise SentryUnreachableError()

        stream.push("50000", "50001")
        assert await make_listener(stream).listen(sink) is None
        assert stream.close_count == 1

    @pytest.mark.asyncio
    async def test_heartbeats_while_connected(self, wait_until):
        stream = FakeQuoteStream()
        beats = []

        async def sink(tick):
            pass

        task = asyncio.create_task(
            make_listener(stream).listen(sink, on_heartbeat=lambda: beats.append(1), heartbeat_interval_s=0.01)
        )
        await wait_until(lambda: len(beats) >= 3)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert stream.close_count == 1
        assert stream.connected is False


class TestFeedHandle:

    @pytest.mark.asyncio
    async def test_cancel_is_acknowledged(self, wait_until):
        stream = FakeQuoteStream()

        async def sink(tick):
            pass

        handle = FeedHandle(make_listener(stream), sink, name="feed:test-cancel")
        await wait_until(lambda: stream.connected)

        assert await handle.cancel() is True
        assert handle.cancel_calls == 1
        assert handle.running is False
        assert handle.error() is None
        assert stream.close_count == 1

    @pytest.mark.asyncio
    async def test_feed_that_never_connects_is_reported(self, wait_until):
        stream = FakeQuoteStream()
        stream.stalled = True

        async def sink(tick):
            pass

        handle = FeedHandle(
            make_listener(stream), sink,
            name="feed:test-stall",
            heartbeat_interval_s=0.01,
            heartbeat_timeout_s=0.05,
            connect_timeout_s=0.1,
        )
        await wait_until(lambda: not handle.running)

        assert isinstance(handle.error(), FeedStalledError)
        assert stream.close_count == 1

    @pytest.mark.asyncio
    async def test_healthy_feed_is_not_stalled(self, wait_until):
        stream = FakeQuoteStream()
        received = []

        async def sink(tick):
            received.append(tick)

        handle = FeedHandle(
            make_listener(stream), sink,
            name="feed:test-healthy",
            heartbeat_interval_s=0.01,
            heartbeat_timeout_s=0.1,
        )
        await asyncio.sleep(0.3)
        stream.push("1", "3")
        await wait_until(lambda: len(received) == 1)

        assert handle.running
        assert handle.heartbeats > 5
        await handle.cancel()

    @pytest.mark.asyncio
    async def test_clean_close_is_listener_stopped(self, wait_until):
        stream = FakeQuoteStream()

        async def sink(tick):
            pass

        handle = FeedHandle(make_listener(stream), sink, name="feed:test-close")
        stream.close()
        await wait_until(lambda: not handle.running)

        error = handle.error()
        assert isinstance(error, ListenerStoppedError)
        assert not isinstance(error, FeedStalledError)
        assert await handle.cancel() is True

    @pytest.mark.asyncio
    async def test_slow_handshake_is_not_a_stall(self, wait_until):
        stream = FakeQuoteStream()
        stream.connect_delay = 0.3
        received = []

        async def sink(tick):
            received.append(tick)

        handle = FeedHandle(
            make_listener(stream), sink,
            name="feed:test-slow-connect",
            heartbeat_interval_s=0.01,
            heartbeat_timeout_s=0.05,
            connect_timeout_s=2.0,
        )
        await wait_until(lambda: stream.connected)
        stream.push("50000", "50001")
        await wait_until(lambda: len(received) == 1)

        assert handle.running
        assert handle.error() is None
        assert received[0].price == Decimal("50000.5")
        await handle.cancel()

    @pytest.mark.asyncio
    async def test_lost_heartbeats_after_connect_are_reported(self, wait_until):
        stream = FakeQuoteStream()

        async def sink(tick):
            pass

        handle = FeedHandle(
            make_listener(stream), sink,
            name="feed:test-lost-heartbeats",
            heartbeat_interval_s=0.01,
            heartbeat_timeout_s=0.05,
            connect_timeout_s=2.0,
        )
        await wait_until(lambda: handle.heartbeats > 0)
        # Socket silently dead: the stream no longer reports itself connected
        stream.connected = False
        await wait_until(lambda: not handle.running)

        assert isinstance(handle.error(), FeedStalledError)
        assert stream.close_count == 1
