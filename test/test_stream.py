from __future__ import annotations

import threading

from pyhecate.errors import DaemonError
from pyhecate.llm.stream import StreamSession, chunks_from_lines, iter_frames
from pyhecate.llm.types import Chunk, Usage

from conftest import drain, scripted


def test_iter_frames_handles_sse_and_ndjson():
    skipped = []
    lines = [
        ": keep-alive",
        "event: message",
        'data: {"message": {"content": "a"}}',
        "",
        '{"message": {"content": "b"}}',
        b'data: {"done": true}',
        "data: [DONE]",
        "id: 7",
        "not json at all",
        "data: [1, 2]",
    ]
    frames = list(iter_frames(lines, on_skip=lambda line, err: skipped.append(line)))
    assert frames == [{"message": {"content": "a"}}, {"message": {"content": "b"}}, {"done": True}]
    assert skipped == ["not json at all", "[1, 2]"]


def test_chunks_from_lines():
    chunks = list(chunks_from_lines(['{"message": {"content": "x"}}', '{"done": true, "eval_count": 3}']))
    assert [c.text for c in chunks] == ["x", ""]
    assert chunks[-1].done


def test_session_delivers_chunks_then_closes():
    session = scripted([Chunk(text="a"), Chunk(text="b", usage=Usage(completion_tokens=2))])
    chunks, err = drain(session)
    assert [c.text for c in chunks] == ["a", "b"]
    assert err is None
    assert session.finished
    assert session.usage.completion_tokens == 2
    assert session.poll() is None


def test_error_is_not_reported_as_clean_close():
    def source(cancelled):
        yield Chunk(text="partial")
        raise DaemonError("connection reset")

    session = StreamSession(source).start()
    chunks, err = drain(session)
    assert [c.text for c in chunks] == ["partial"]
    assert isinstance(err, DaemonError)


def test_cancel_stops_reader_and_calls_on_close():
    gate = threading.Event()
    closed = []

    def source(cancelled):
        yield Chunk(text="first")
        gate.wait(2)
        yield Chunk(text="never")

    session = StreamSession(source, on_close=lambda: (closed.append(True), gate.set())).start()
    session.cancel()
    assert session.cancelled.is_set()
    assert closed == [True]
    # the reader exits without delivering the second chunk to a cancelled owner
    chunks, err = drain(session)
    assert "never" not in [c.text for c in chunks]
    assert err is None


def test_elapsed_grows():
    session = scripted([])
    drain(session)
    assert session.elapsed >= 0
