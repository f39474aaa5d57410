import logging
import threading

from jobpilot.workers.runner import BackgroundRunner, InlineRunner


def test_background_runner_executes_off_the_calling_thread():
    runner = BackgroundRunner(max_workers=2)
    seen = []

    future = runner.submit("search", lambda: seen.append(threading.current_thread().name))
    future.result(timeout=5)
    runner.shutdown()

    assert seen and seen[0].startswith("pipeline-stage")
    assert runner.pending() == 0


def test_background_runner_reports_pending_work():
    runner = BackgroundRunner(max_workers=1)
    release = threading.Event()

    future = runner.submit("tailor", lambda: release.wait(5))
    assert runner.pending() == 1

    release.set()
    future.result(timeout=5)
    runner.shutdown()
    assert runner.pending() == 0


def test_background_runner_logs_crashed_stage(caplog):
    runner = BackgroundRunner(max_workers=1)

    def crash():
        raise RuntimeError("boom")

    with caplog.at_level(logging.ERROR, logger="jobpilot.workers.runner"):
        runner.submit("send", crash)
        runner.shutdown(wait=True)

    assert any("Background stage crashed" in record.getMessage() for record in caplog.records)


def test_inline_runner_runs_immediately_and_records_names():
    runner = InlineRunner()
    calls = []

    runner.submit("search", lambda: calls.append("ran"))

    assert calls == ["ran"]
    assert runner.ran == ["search"]
    assert runner.pending() == 0
