import sys

import pytest

from diskpool.commands import CommandError, CommandExecutor

PY = sys.executable


@pytest.fixture
def executor():
    return CommandExecutor()


def test_execute_command_runs(executor, tmp_path):
    target = tmp_path / "made"
    executor.execute_command(PY, "-c", f"open({str(target)!r}, 'w').write('x')")
    assert target.read_text() == "x"


def test_execute_command_failure_reports_exit_status(executor):
    with pytest.raises(CommandError) as excinfo:
        executor.execute_command(PY, "-c", "import sys; sys.exit(2)")
    assert excinfo.value.returncode == 2
    assert "exit status 2" in str(excinfo.value)


def test_execute_command_with_output_returns_stdout(executor):
    out = executor.execute_command_with_output(PY, "-c", "print('  hello  ')")
    assert out == "hello"


def test_execute_command_with_output_failure_carries_stderr(executor):
    script = "import sys; sys.stderr.write('Failed to find logical volume'); sys.exit(5)"
    with pytest.raises(CommandError) as excinfo:
        executor.execute_command_with_output(PY, "-c", script)
    assert "Failed to find logical volume" in excinfo.value.output
    assert excinfo.value.returncode == 5


def test_combined_output_holds_both_streams(executor):
    script = "import sys; print('out', flush=True); sys.stderr.write('err')"
    out = executor.execute_command_with_combined_output(PY, "-c", script)
    assert "out" in out and "err" in out


def test_missing_binary_raises_command_error(executor):
    with pytest.raises(CommandError) as excinfo:
        executor.execute_command("/nonexistent/diskpool-tool")
    assert excinfo.value.returncode is None
    assert excinfo.value.argv == ["/nonexistent/diskpool-tool"]


def test_resident_binary_keeps_running(executor):
    process = executor.execute_command_resident_binary(0.2, PY, "-c", "import time; time.sleep(30)")
    try:
        assert process.poll() is None
    finally:
        process.kill()
        process.wait()


def test_resident_binary_early_failure_raises(executor):
    with pytest.raises(CommandError) as excinfo:
        executor.execute_command_resident_binary(5, PY, "-c", "import sys; sys.exit(3)")
    assert excinfo.value.returncode == 3