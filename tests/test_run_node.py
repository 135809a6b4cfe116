from __future__ import annotations

import asyncio
import json
import signal
import subprocess
import sys
from pathlib import Path

import pytest

from echonode import run_node
from echonode.errors import TransportError
from echonode.run_node import parse_args, run


ROOT = Path(__file__).resolve().parents[1]

INIT = '{"src":"c1","dest":"n1","body":{"type":"init","msg_id":1,"node_id":"n1","node_ids":["n1"]}}\n'
ECHO = '{"src":"c1","dest":"n1","body":{"type":"echo","msg_id":2,"echo":"hello"}}\n'


def _run(stdin: str, *args: str) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "echonode.run_node", *args],
        input=stdin.encode("utf-8"),
        capture_output=True,
        cwd=ROOT,
        timeout=30,
    )


# -------------------------
# Whole process over stdio
# -------------------------

def test_process_answers_handshake_and_echo_then_exits_zero() -> None:
    proc = _run(INIT + ECHO)

    assert proc.returncode == 0, proc.stderr
    lines = proc.stdout.decode("utf-8").splitlines()
    assert [json.loads(line) for line in lines] == [
        {"src": "n1", "dest": "c1", "body": {"type": "init_ok", "in_reply_to": 1}},
        {"src": "n1", "dest": "c1", "body": {"type": "echo_ok", "msg_id": 0, "in_reply_to": 2, "echo": "hello"}},
    ]


def test_process_without_handshake_exits_nonzero_and_names_payload() -> None:
    proc = _run(ECHO)

    assert proc.returncode == 1
    assert proc.stdout == b""
    # One diagnostic line, naming the offending payload.
    assert proc.stderr.count(b"hello") == 1


def test_process_on_empty_input_exits_nonzero() -> None:
    proc = _run("")
    assert proc.returncode == 1
    assert proc.stdout == b""


def test_process_rejects_malformed_first_line() -> None:
    proc = _run("{not json}\n")
    assert proc.returncode == 1
    assert proc.stdout == b""


def test_debug_logs_go_to_stderr_only() -> None:
    proc = _run(INIT + ECHO, "--log-level", "debug")
    assert proc.returncode == 0
    assert len(proc.stdout.splitlines()) == 2
    assert b"initialized as n1" in proc.stderr


# -------------------------
# Configuration
# -------------------------

def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("ECHONODE_TRANSPORT", "ECHONODE_HOST", "ECHONODE_PORT", "ECHONODE_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    args = parse_args([])
    assert (args.transport, args.host, args.port, args.log_level) == ("stdio", "127.0.0.1", 8080, "WARNING")


def test_env_vars_feed_defaults_and_flags_win(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ECHONODE_TRANSPORT", "tcp")
    monkeypatch.setenv("ECHONODE_PORT", "9100")
    args = parse_args([])
    assert args.transport == "tcp"
    assert args.port == 9100

    args = parse_args(["--transport", "stdio", "--port", "9200"])
    assert args.transport == "stdio"
    assert args.port == 9200


@pytest.mark.parametrize("name,value", [
    ("ECHONODE_TRANSPORT", "carrier-pigeon"),
    ("ECHONODE_PORT", "eighty"),
])
def test_bad_env_values_exit(monkeypatch: pytest.MonkeyPatch, name: str, value: str) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(SystemExit):
        parse_args([])


@pytest.mark.skipif(sys.platform == "win32", reason="needs POSIX signals")
def test_ctrl_c_while_waiting_for_input_exits_130() -> None:
    proc = subprocess.Popen(
        [sys.executable, "-m", "echonode.run_node"],
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        cwd=ROOT,
    )
    try:
        proc.stdin.write(INIT.encode("utf-8"))
        proc.stdin.flush()
        # The reply proves the node is up and now blocked on the next line.
        assert json.loads(proc.stdout.readline())["body"]["type"] == "init_ok"

        proc.send_signal(signal.SIGINT)
        assert proc.wait(timeout=10) == 130
    finally:
        if proc.poll() is None:
            proc.kill()
            proc.wait()
        for pipe in (proc.stdin, proc.stdout, proc.stderr):
            pipe.close()


def test_module_logger_follows_module_name() -> None:
    assert run_node.log.name == "echonode.run_node"


class _FailingStream:
    async def readline(self) -> bytes:
        return INIT.encode("utf-8")

    async def write(self, data: bytes) -> None:
        raise TransportError("stdout write failed: broken pipe")

    async def close(self) -> None:
        raise TransportError("stdout flush failed: broken pipe")


def test_close_failure_does_not_hide_the_serve_error(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_open_stream(transport, host, port):
        return _FailingStream()

    monkeypatch.setattr(run_node, "open_stream", fake_open_stream)
    with pytest.raises(TransportError, match="write failed"):
        asyncio.run(run("stdio", "127.0.0.1", 0))
