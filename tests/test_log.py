import io
import re

import pytest

from ndnsrouter import log
from ndnsrouter.log import Log, format_message

STAMP = r"\d{4}/\d{2}/\d{2} \d{2}:\d{2}:\d{2}"


def test_format_message_shape():
    result = format_message("INFO", "hello")
    stamp, rest = result[:19], result[19:]
    assert rest == " [INFO] hello"
    assert re.fullmatch(STAMP, stamp) is not None


def _streams():
    return io.StringIO(), io.StringIO()


def test_info_goes_to_stdout_with_double_stamp():
    out, err = _streams()
    Log(out, err).info("started")
    assert err.getvalue() == ""
    assert re.fullmatch(rf"{STAMP} {STAMP} \[INFO\] started\n", out.getvalue())


@pytest.mark.parametrize(
    ("method", "level"),
    [("debug", "DEBUG"), ("info", "INFO"), ("warn", "WARN")],
)
def test_low_levels_use_stdout(method, level):
    out, err = _streams()
    getattr(Log(out, err), method)("msg")
    assert out.getvalue().rstrip("\n").endswith(f"[{level}] msg")
    assert err.getvalue() == ""


def test_error_goes_to_stderr():
    out, err = _streams()
    Log(out, err).error("failed %s", "badly")
    assert out.getvalue() == ""
    assert err.getvalue().rstrip("\n").endswith("[ERROR] failed badly")


def test_arguments_are_formatted():
    out, err = _streams()
    Log(out, err).info("score: %.2f, count: %d", 91.256, 7)
    assert out.getvalue().rstrip("\n").endswith("score: 91.26, count: 7")


def test_message_without_args_is_left_alone():
    out, err = _streams()
    Log(out, err).warn("100%")
    assert out.getvalue().rstrip("\n").endswith("[WARN] 100%")


def test_fatal_writes_and_exits():
    out, err = _streams()
    with pytest.raises(SystemExit) as excinfo:
        Log(out, err).fatal("cannot start: %s", "port busy")
    assert excinfo.value.code == 1
    assert err.getvalue().rstrip("\n").endswith("[FATAL] cannot start: port busy")


def test_module_functions_use_current_streams(capsys):
    log.info("hello %s", "world")
    log.error("oops")
    captured = capsys.readouterr()
    assert captured.out.rstrip("\n").endswith("[INFO] hello world")
    assert captured.err.rstrip("\n").endswith("[ERROR] oops")


def test_module_fatal_exits(capsys):
    with pytest.raises(SystemExit) as excinfo:
        log.fatal("stop")
    assert excinfo.value.code == 1
    assert capsys.readouterr().err.rstrip("\n").endswith("[FATAL] stop")