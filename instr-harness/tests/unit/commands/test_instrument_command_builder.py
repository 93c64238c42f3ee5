from __future__ import annotations

from fakes import instrumentation_output

from instr_harness.commands.listener import TestRunResultCollector, TestStatus
from instr_harness.commands.runner import (
    InstrumentationResultReceiver,
    build_instrument_command,
)
from instr_harness.config import InstrumentalConfig

TARGET = "com.app.test/android.test.InstrumentationTestRunner"


def _config(**overrides) -> InstrumentalConfig:
    data = {"application_id": "test.appId", "instrumental_package": "com.app.test"}
    data.update(overrides)
    return InstrumentalConfig.from_dict(data)


def test_command_without_coverage() -> None:
    assert build_instrument_command(_config()) == f"am instrument -w -r {TARGET}"


def test_command_with_coverage_and_test_filter() -> None:
    cmd = build_instrument_command(
        _config(),
        tests=["com.app.LoginTest#ok"],
        coverage_file="/data/data/test.appId/coverage.ec",
    )
    assert cmd == (
        "am instrument -w -r -e class 'com.app.LoginTest#ok' "
        "-e coverageFile /data/data/test.appId/coverage.ec -e coverage true "
        f"{TARGET}"
    )


def test_command_joins_several_tests_into_one_class_filter() -> None:
    cmd = build_instrument_command(
        _config(),
        tests=["a.b.X#m1", "a.b.X#m2", "a.c.Y#m1"],
        coverage_file="/data/data/test.appId/coverage.ec",
    )
    assert cmd.count("-e class ") == 1
    assert "-e class 'a.b.X#m1,a.b.X#m2,a.c.Y#m1'" in cmd


def test_command_carries_instrumentation_args() -> None:
    cfg = _config(instrumentation_args={"debug": False, "size": "small"})
    cmd = build_instrument_command(cfg, extra_args={"notAnnotation": "a b"})
    assert cmd == (
        "am instrument -w -r -e debug false -e size small "
        f"-e notAnnotation 'a b' {TARGET}"
    )


def _feed(text: str, *, expected_test: str | None = None) -> TestRunResultCollector:
    collector = TestRunResultCollector()
    receiver = InstrumentationResultReceiver(collector, expected_test=expected_test)
    # Split mid-line to exercise buffering.
    data = text.encode("utf-8")
    receiver.add_output(data[:37])
    receiver.add_output(data[37:])
    receiver.flush()
    return collector


def test_receiver_reports_passing_test() -> None:
    report = _feed(instrumentation_output("com.app.LoginTest#ok")).run_result()

    assert report.results["com.app.LoginTest#ok"].status is TestStatus.PASSED
    assert report.run_failures == []
    assert report.has_failed_tests() is False


def test_receiver_keeps_multiline_stack_trace() -> None:
    stack = "java.lang.AssertionError: expected\r\n\tat com.app.LoginTest.bad(LoginTest.java:42)"
    report = _feed(
        instrumentation_output("com.app.LoginTest#bad", status=-2, stack=stack)
    ).run_result()

    result = report.results["com.app.LoginTest#bad"]
    assert result.status is TestStatus.FAILURE
    assert result.stack_trace == (
        "java.lang.AssertionError: expected\n\tat com.app.LoginTest.bad(LoginTest.java:42)"
    )
    assert report.has_failed_tests() is True


def test_receiver_reports_ignored_and_assumption_failure() -> None:
    ignored = _feed(instrumentation_output("a.T#skip", status=-3)).run_result()
    assumed = _feed(instrumentation_output("a.T#assume", status=-4, stack="x")).run_result()

    assert ignored.results["a.T#skip"].status is TestStatus.IGNORED
    assert assumed.results["a.T#assume"].status is TestStatus.ASSUMPTION_FAILURE
    assert ignored.has_failed_tests() is False
    assert assumed.has_failed_tests() is False


def test_receiver_reports_process_crash() -> None:
    text = "\r\n".join(
        [
            "INSTRUMENTATION_STATUS: class=com.app.LoginTest",
            "INSTRUMENTATION_STATUS: test=crash",
            "INSTRUMENTATION_STATUS_CODE: 1",
            "INSTRUMENTATION_RESULT: shortMsg=Process crashed.",
            "INSTRUMENTATION_CODE: 0",
            "",
        ]
    )
    report = _feed(text).run_result()

    result = report.results["com.app.LoginTest#crash"]
    assert result.status is TestStatus.FAILURE
    assert result.stack_trace == "Process crashed."
    assert report.run_failures == ["Process crashed."]


def test_receiver_reports_instrumentation_failed() -> None:
    report = _feed(
        "INSTRUMENTATION_FAILED: com.app.test/android.test.InstrumentationTestRunner\r\n"
        "INSTRUMENTATION_CODE: 0\r\n"
    ).run_result()

    assert report.run_failures == ["com.app.test/android.test.InstrumentationTestRunner"]
    assert report.is_run_failure is True


def test_receiver_reports_truncated_output() -> None:
    text = (
        "INSTRUMENTATION_STATUS: class=com.app.LoginTest\r\n"
        "INSTRUMENTATION_STATUS: test=hang\r\n"
        "INSTRUMENTATION_STATUS_CODE: 1\r\n"
    )
    report = _feed(text, expected_test="com.app.LoginTest#hang").run_result()

    assert report.results["com.app.LoginTest#hang"].status is TestStatus.FAILURE
    assert len(report.run_failures) == 1
    assert report.run_failures[0].startswith("Test run incomplete")
