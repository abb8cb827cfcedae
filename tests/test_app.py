"""devctl 命令行测试。

测试：
- 退出码映射
- secret 子命令（set/get/rm、密码错误）
- demux 子命令
- run 子命令
"""

from __future__ import annotations

import json
import sys

import pytest

from devctl import app as app_module
from devctl.app import (
    EXIT_CANCELLED,
    EXIT_SPAWN_FAILED,
    build_parser,
    exit_status,
    run_cli,
)
from devctl.config import get_config
from devctl.runtime import ProcessResult
from devctl.streams import StreamType, encode_frame


@pytest.fixture
def password(monkeypatch: pytest.MonkeyPatch) -> str:
    monkeypatch.setenv("DEVCTL_KEYSTORE_PASSWORD", "test-password")
    return "test-password"


# =============================================================================
# Exit Status Tests
# =============================================================================


class TestExitStatus:
    """ProcessResult 到退出码的映射。"""

    def test_exit_code_passthrough(self):
        assert exit_status(ProcessResult.exited(0)) == 0
        assert exit_status(ProcessResult.exited(3)) == 3

    def test_signal(self):
        assert exit_status(ProcessResult.signaled("SIGKILL")) == 137
        assert exit_status(ProcessResult.signaled("SIGTERM")) == 143

    def test_spawn_failed(self):
        assert exit_status(ProcessResult.spawn_failed("boom")) == EXIT_SPAWN_FAILED

    def test_cancelled(self):
        assert exit_status(ProcessResult.was_cancelled()) == EXIT_CANCELLED


class TestParser:
    """参数解析。"""

    def test_subcommand_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_secret_action_choices(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["secret", "list", "X"])

    def test_run_keeps_command_options(self):
        args = build_parser().parse_args(["run", "--inherit", "ls", "-la"])
        assert args.inherit is True
        assert args.command[-2:] == ["ls", "-la"]


# =============================================================================
# Secret Command Tests
# =============================================================================


class TestSecretCommand:
    """secret 子命令。"""

    def test_set_then_get(self, password, capsys):
        assert run_cli(["secret", "set", "API_KEY", "--value", "abc123"]) == 0
        capsys.readouterr()

        assert run_cli(["secret", "get", "API_KEY"]) == 0
        assert capsys.readouterr().out == "abc123\n"

    def test_keystore_written_under_home(self, password):
        run_cli(["secret", "set", "API_KEY", "--value", "abc123"])

        path = get_config().keystore_path
        data = json.loads(path.read_text())
        assert data["version"] == 1
        assert set(data["secrets"]["API_KEY"]) == {"salt", "hash", "value"}
        assert "abc123" not in path.read_text()

    def test_get_missing(self, password):
        assert run_cli(["secret", "get", "NOPE"]) == 1

    def test_rm(self, password):
        run_cli(["secret", "set", "API_KEY", "--value", "abc123"])

        assert run_cli(["secret", "rm", "API_KEY"]) == 0
        assert run_cli(["secret", "rm", "API_KEY"]) == 1
        assert run_cli(["secret", "get", "API_KEY"]) == 1

    def test_wrong_password(self, password, monkeypatch, capsys):
        run_cli(["secret", "set", "API_KEY", "--value", "abc123"])
        monkeypatch.setenv("DEVCTL_KEYSTORE_PASSWORD", "other-password")
        capsys.readouterr()

        assert run_cli(["secret", "get", "API_KEY"]) == 1
        assert "abc123" not in capsys.readouterr().out

    def test_prompts_when_no_env_password(self, monkeypatch):
        answers = {"Secret value: ": "prompted-value", "Keystore password: ": "prompted"}
        monkeypatch.setattr("devctl.app.getpass.getpass", lambda prompt="": answers[prompt])

        assert run_cli(["secret", "set", "TOKEN"]) == 0
        assert run_cli(["secret", "get", "TOKEN"]) == 0

    def test_unknown_provider(self, password, monkeypatch):
        monkeypatch.setenv("DEVCTL_KEYSTORE", "keytar")
        from devctl.config import reload_config

        reload_config()
        assert run_cli(["secret", "get", "API_KEY"]) == 1


# =============================================================================
# Demux Command Tests
# =============================================================================


class TestDemuxCommand:
    """demux 子命令。"""

    def test_demux_file(self, tmp_path, capsysbinary):
        path = tmp_path / "logs.bin"
        path.write_bytes(
            encode_frame(StreamType.STDOUT, b"out-1\n")
            + encode_frame(StreamType.STDERR, b"err-1\n")
            + encode_frame(StreamType.STDOUT, b"out-2\n")
        )

        assert run_cli(["demux", str(path)]) == 0

        captured = capsysbinary.readouterr()
        assert captured.out == b"out-1\nout-2\n"
        assert b"err-1\n" in captured.err

    def test_demux_reads_fixed_size_chunks(self, tmp_path, monkeypatch, capsysbinary):
        """没有换行的二进制流按固定大小分块读取，而不是按行。"""
        payload = b"\x00" * 300_000
        path = tmp_path / "logs.bin"
        path.write_bytes(encode_frame(StreamType.STDOUT, payload))

        chunk_sizes: list[int] = []
        real_pump_frames = app_module.pump_frames

        async def recording_source(source):
            async for chunk in source:
                chunk_sizes.append(len(chunk))
                yield chunk

        async def spy_pump_frames(source, stdout, stderr, **kwargs):
            return await real_pump_frames(recording_source(source), stdout, stderr, **kwargs)

        monkeypatch.setattr(app_module, "pump_frames", spy_pump_frames)

        assert run_cli(["demux", str(path)]) == 0
        assert capsysbinary.readouterr().out == payload
        assert len(chunk_sizes) > 1
        assert max(chunk_sizes) <= 65536

    def test_demux_truncated_file(self, tmp_path, capsysbinary):
        path = tmp_path / "logs.bin"
        path.write_bytes(encode_frame(StreamType.STDOUT, b"complete")[:-3])

        assert run_cli(["demux", str(path)]) == 1

    def test_demux_missing_file(self, tmp_path):
        assert run_cli(["demux", str(tmp_path / "missing.bin")]) == 1


# =============================================================================
# Run Command Tests
# =============================================================================


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell commands")
class TestRunCommand:
    """run 子命令。"""

    def test_success(self):
        assert run_cli(["run", "--", "true"]) == 0

    def test_exit_code_propagated(self):
        assert run_cli(["run", "--", "sh", "-c", "exit 3"]) == 3

    def test_output_forwarded(self, capsysbinary):
        assert run_cli(["run", "--", "sh", "-c", "echo hi; echo oops >&2"]) == 0

        captured = capsysbinary.readouterr()
        assert captured.out == b"hi\n"
        assert b"oops\n" in captured.err

    def test_missing_binary(self):
        assert run_cli(["run", "--", "/nonexistent/devctl-test-binary"]) == EXIT_SPAWN_FAILED

    def test_no_command(self):
        assert run_cli(["run"]) == 2
