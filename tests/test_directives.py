import io
import threading

from snap.directives import MAX_PROMPTS, DirectiveQueue, DirectiveReader
from snap.ui import SwitchWriter
from snap.workflow import StepContext


def test_queue_preserves_insertion_order() -> None:
    queue = DirectiveQueue()
    for prompt in ("first", "second", "third"):
        assert queue.enqueue(prompt) is True

    assert len(queue) == 3
    assert queue.dequeue() == "first"
    assert queue.drain_all() == ["second", "third"]
    assert len(queue) == 0
    assert queue.dequeue() is None


def test_queue_rejects_when_full() -> None:
    queue = DirectiveQueue()
    for index in range(MAX_PROMPTS):
        queue.enqueue(f"prompt {index}")

    assert queue.enqueue("overflow") is False
    assert len(queue) == MAX_PROMPTS


def test_queue_accepts_concurrent_producers() -> None:
    queue = DirectiveQueue(max_prompts=1000)

    def produce(prefix: str) -> None:
        for index in range(100):
            queue.enqueue(f"{prefix}-{index}")

    threads = [threading.Thread(target=produce, args=(name,)) for name in "abcd"]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    drained = queue.drain_all()
    assert len(drained) == 400
    assert [item for item in drained if item.startswith("a-")] == [f"a-{i}" for i in range(100)]


def test_switch_writer_buffers_while_paused() -> None:
    stream = io.StringIO()
    writer = SwitchWriter(stream)

    writer.write("before\n")
    writer.pause()
    writer.write("held\n")
    writer.direct("notice\n")

    assert stream.getvalue() == "before\nnotice\n"

    writer.resume()
    assert stream.getvalue() == "before\nnotice\nheld\n"


def test_switch_writer_translates_newlines() -> None:
    stream = io.StringIO()
    SwitchWriter(stream, lf_to_crlf=True).write("a\nb\r\n")

    assert stream.getvalue() == "a\r\nb\r\n"


def _reader() -> tuple[DirectiveReader, DirectiveQueue, SwitchWriter, io.StringIO]:
    stream = io.StringIO()
    writer = SwitchWriter(stream)
    queue = DirectiveQueue()
    step_info = StepContext()
    step_info.set(3, 10, "Lint & test")
    return DirectiveReader(queue, writer, step_info), queue, writer, stream


def test_reader_composes_and_queues_directive(monkeypatch) -> None:
    monkeypatch.setenv("NO_COLOR", "1")
    reader, queue, writer, stream = _reader()

    for char in "add tests\x7fs\r":
        if char == "\r":
            writer.write("agent output\n")
        reader.handle_char(char)

    assert queue.all() == ["add tests"]
    output = stream.getvalue()
    assert "📌 Queued" in output
    assert "Step 3/10: Lint & test" in output
    assert output.endswith("agent output\n")
    assert writer.paused is False


def test_reader_escape_discards_composition(monkeypatch) -> None:
    monkeypatch.setenv("NO_COLOR", "1")
    reader, queue, writer, _ = _reader()

    for char in "oops":
        reader.handle_char(char)
    assert writer.paused is True
    reader.handle_char("\x1b")

    assert len(queue) == 0
    assert writer.paused is False


def test_reader_empty_enter_shows_queue(monkeypatch) -> None:
    monkeypatch.setenv("NO_COLOR", "1")
    reader, queue, _, stream = _reader()
    queue.enqueue("pending one")

    reader.handle_char("\n")

    assert "Queue (1 prompt pending)" in stream.getvalue()
    assert "1. pending one" in stream.getvalue()


def test_reader_reports_full_queue(monkeypatch) -> None:
    monkeypatch.setenv("NO_COLOR", "1")
    reader, queue, _, stream = _reader()
    queue.max_prompts = 0

    for char in "late\r":
        reader.handle_char(char)

    assert "Queue full (0 prompts), directive dropped" in stream.getvalue()
