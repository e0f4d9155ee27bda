from src.forge.services.streaming import CancellableStream


def _source(log):
    try:
        for i in range(5):
            yield i
    finally:
        log.append("closed")


def test_iterates_to_completion():
    assert list(CancellableStream(range(3))) == [0, 1, 2]


def test_cancel_stops_and_closes_source():
    log = []
    stream = CancellableStream(_source(log))
    assert next(stream) == 0
    stream.cancel()
    assert list(stream) == []
    assert stream.cancelled
    assert log == ["closed"]


def test_item_arriving_after_cancel_is_dropped():
    holder = {}

    def source():
        yield "a"
        holder["stream"].cancel()
        yield "b"

    stream = CancellableStream(source())
    holder["stream"] = stream
    assert list(stream) == ["a"]


def test_close_is_idempotent():
    log = []
    stream = CancellableStream(_source(log))
    next(stream)
    stream.close()
    stream.close()
    assert log == ["closed"]
