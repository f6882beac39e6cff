import iocapture, sys, os

class Foo:
    def __init__(self, x):
        self.x = x

    def __call__(self):
        print(self.x)


def test():
    c = iocapture.capture(lambda: print("test"))
    assert c.succeeded and not c.error
    assert c.output == "test"
    assert c.value is None
    assert len(c.trace) == 0


def test_stderr():
    c = iocapture.capture(lambda: print("test", file=sys.stderr))
    assert c.succeeded
    assert c.output == "test"


def test_return_value():
    def work():
        print("test")
        return 42
    c = iocapture.capture(work)
    assert (c.succeeded, c.value, c.output) == (True, 42, "test")


def test_no_output():
    c = iocapture.capture(lambda: [1, 2, 3])
    assert c.output == ""
    assert c.value == [1, 2, 3]


def test_interleaved():
    def work():
        print("a")
        print("b", file=sys.stderr)
        sys.stdout.write("c")
    c = iocapture.capture(work)
    assert c.output == "a\nb\nc"


def test_single_newline_trimmed():
    c = iocapture.capture(lambda: print("test\n"))
    assert c.output == "test\n"


def test_callable_object():
    c = iocapture.capture(Foo("callable test"))
    assert c.succeeded
    assert c.output == "callable test"
    assert c.value is None


def test_fileno_write():
    def work():
        os.write(sys.stdout.fileno(), b"1234\n")
        print("5678")
    c = iocapture.capture(work)
    assert c.output == "1234\n5678"


def test_buffer_write():
    c = iocapture.capture(lambda: sys.stdout.buffer.write("1234\n".encode()))
    assert c.output == "1234"
    assert c.value == 5


def test_streams_restored():
    before = (sys.stdout, sys.stderr)
    first = iocapture.capture(lambda: print("same"))
    assert (sys.stdout, sys.stderr) == before
    second = iocapture.capture(lambda: print("same"))
    assert (sys.stdout, sys.stderr) == before
    assert first.output == second.output == "same"


def test_context_manager():
    with iocapture.OutputCapture() as cap:
        print("hello")
        print("world", file=sys.stderr)
    assert cap.output == "hello\nworld"
    assert cap.close() == "hello\nworld"


def test_fileno_write_after_partial_line():
    def work():
        sys.stdout.write("a")
        os.write(sys.stdout.fileno(), b"b")
        sys.stdout.write("c")
    c = iocapture.capture(work)
    assert c.output == "abc"


def test_undecodable_bytes_and_crlf():
    c = iocapture.capture(lambda: os.write(sys.stdout.fileno(), b"a\xffb\r\n"))
    assert c.output == "a\ufffdb"

    c = iocapture.capture(lambda: os.write(sys.stdout.fileno(), b"x\r\n\r\n"))
    assert c.output == "x\r\n"
