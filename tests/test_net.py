from __future__ import annotations

import errno
import io
import socket
import threading

import pytest

from conftest import FailingWriter
from rsubl.constants import COPY_CHUNK_SIZE
from rsubl.errors import ChannelFatalError
from rsubl.net import Channel, FatalLatch


def test_latch_first_error_wins():
    latch = FatalLatch()
    first = ChannelFatalError("first")
    assert latch.check_and_set(first) is False
    assert latch.check_and_set(ChannelFatalError("second")) is True
    assert latch.error is first


def test_latch_single_winner_across_threads():
    latch = FatalLatch()
    results = []
    barrier = threading.Barrier(8)

    def racer(i):
        barrier.wait()
        results.append(latch.check_and_set(ChannelFatalError(str(i))))

    threads = [threading.Thread(target=racer, args=(i,)) for i in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert results.count(False) == 1


def test_send_is_buffered_until_flush(make_channel):
    chan, sock = make_channel()
    chan.send(b"open\n")
    chan.send_string("token: x\n")
    chan.flush()
    assert sock.sent == b"open\ntoken: x\n"


def test_flush_failure_is_latched(make_channel):
    writer = FailingWriter()
    chan, sock = make_channel(b"hello\n", writer=writer)
    chan.send(b"open\n")

    with pytest.raises(ChannelFatalError) as first:
        chan.flush()
    assert isinstance(first.value.__cause__, BrokenPipeError)
    assert sock.shutdowns == 1
    assert sock.closes == 1

    writes, flushes = writer.writes, writer.flushes
    for op in (lambda: chan.send(b"x"), chan.flush, chan.receive_line, lambda: chan.copy_n(io.BytesIO(), 1)):
        with pytest.raises(ChannelFatalError) as again:
            op()
        assert again.value is first.value

    assert (writer.writes, writer.flushes) == (writes, flushes)
    assert sock.reader.tell() == 0
    assert sock.shutdowns == 1
    assert sock.closes == 1
    assert chan.err is first.value


def test_receive_line_reply_kinds(make_channel):
    chan, _ = make_channel(b"Sublime Text 3 (rsub plugin)\n\n")
    assert chan.receive_line().data == b"Sublime Text 3 (rsub plugin)"
    assert chan.receive_line().is_empty
    assert chan.receive_line().is_eof
    assert chan.err is None


def test_receive_line_applies_timeouts(make_channel):
    chan, sock = make_channel(b"a\nb\n")
    chan.read_timeout = 2.5
    chan.receive_line()
    chan.receive_line(timeout=0)
    assert sock.timeouts == [2.5, None]


def test_bad_terminator_is_fatal(make_channel):
    chan, sock = make_channel(b"partial")
    with pytest.raises(ChannelFatalError, match="bad response line terminator"):
        chan.receive_line()
    assert sock.closes == 1


def test_copy_n_exact(make_channel):
    chan, _ = make_channel(b"howdyclose\n")
    sink = io.BytesIO()
    chan.copy_n(sink, 5)
    assert sink.getvalue() == b"howdy"
    assert chan.receive_line().data == b"close"


def test_copy_n_short_read_is_fatal(make_channel):
    chan, sock = make_channel(b"abc")
    with pytest.raises(ChannelFatalError, match="unexpected EOF"):
        chan.copy_n(io.BytesIO(), 10)
    assert sock.closes == 1


def test_close_is_idempotent(make_channel):
    chan, sock = make_channel()
    chan.send(b"pending")
    chan.close()
    chan.close()
    assert sock.sent == b"pending"
    assert sock.closes == 1
    with pytest.raises(ChannelFatalError, match="channel closed"):
        chan.send(b"x")


def test_close_unblocks_reader_on_real_socket():
    a, b = socket.socketpair()
    chan = Channel(a)
    errors = []

    def reader():
        try:
            chan.receive_line()
        except ChannelFatalError as e:
            errors.append(e)
        else:
            errors.append(None)

    t = threading.Thread(target=reader)
    t.start()
    chan.close()
    t.join(timeout=5)
    b.close()
    assert not t.is_alive()
    assert len(errors) == 1


def test_write_deadline_applied_on_send_and_flush(make_channel):
    chan, sock = make_channel()
    chan.write_timeout = 1.5
    chan.send(b"open\n")
    chan.flush()
    assert sock.timeouts == [1.5, 1.5]

    chan.write_timeout = 0
    chan.flush()
    assert sock.timeouts[-1] is None


class FullSink:
    def __init__(self):
        self.writes = 0

    def write(self, data):
        self.writes += 1
        raise OSError(errno.ENOSPC, "No space left on device")


def test_copy_n_sink_failure_consumes_whole_payload(make_channel):
    size = COPY_CHUNK_SIZE * 3 + 17
    chan, _ = make_channel(b"P" * size + b"close\n")
    sink = FullSink()

    with pytest.raises(OSError) as e:
        chan.copy_n(sink, size)

    assert e.value.errno == errno.ENOSPC
    assert sink.writes == 1
    assert chan.err is None
    assert chan.receive_line().data == b"close"
