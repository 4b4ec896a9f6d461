from zenhanzi.logger import DebugLogger, Timer


def test_lines_are_tagged_by_category(capsys):
    log = DebugLogger()
    log.transition("PRESENTING", "CHECKING")
    log.task_complete("check", duration_ms=12.4)

    lines = capsys.readouterr().out.splitlines()
    assert "[  UI]" in lines[0] and "PRESENTING → CHECKING" in lines[0]
    assert "[TASK]" in lines[1] and "✓ Completed: check (12ms)" in lines[1]


def test_disabled_logger_is_silent(capsys):
    log = DebugLogger(enabled=False)
    log.warning("hidden")
    log.separator("hidden")
    assert capsys.readouterr().out == ""


def test_only_used_helpers_remain():
    assert not hasattr(DebugLogger, "info")
    assert not hasattr(DebugLogger, "task")


def test_timer_measures_block():
    with Timer() as timer:
        sum(range(1000))
    assert timer.duration_ms >= 0
