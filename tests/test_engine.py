"""Tests for the docker CLI engine wrapper."""

from __future__ import annotations

import asyncio
import subprocess
from unittest.mock import AsyncMock, patch

import pytest
from conftest import make_spec

from hugobox.engine import DockerEngine, EngineError, build_create_args
from hugobox.types import BindMount


def _completed(stdout: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(args=[], returncode=0, stdout=stdout, stderr="")


class TestBuildCreateArgs:
    def test_server_spec(self):
        spec = make_spec(
            interactive=True,
            mounts=(
                BindMount("/home/me/site", "/home/UserRepo"),
                BindMount("/home/me/site/hugo.toml", "/home/CentralRepo/hugo.toml"),
            ),
            command=("server", "--bind", "0.0.0.0"),
        )
        args = build_create_args(spec, "hugobox-1-1")
        assert args == [
            "create",
            "--name",
            "hugobox-1-1",
            "--interactive",
            "--expose",
            "1313/tcp",
            "--publish",
            "0.0.0.0:1313:1313/tcp",
            "--mount",
            "type=bind,source=/home/me/site,target=/home/UserRepo",
            "--mount",
            "type=bind,source=/home/me/site/hugo.toml,target=/home/CentralRepo/hugo.toml",
            "fortinet-hugo:latest",
            "server",
            "--bind",
            "0.0.0.0",
        ]

    def test_non_interactive_omits_interactive_flag(self):
        args = build_create_args(make_spec(interactive=False), "n")
        assert "--interactive" not in args
        assert "--tty" not in args

    def test_distinct_host_and_container_ports(self):
        args = build_create_args(make_spec(host_port=8080, container_port=1313), "n")
        i = args.index("--publish")
        assert args[i + 1] == "0.0.0.0:8080:1313/tcp"
        assert args[args.index("--expose") + 1] == "1313/tcp"

    def test_entrypoint_tty_and_readonly(self):
        spec = make_spec(
            entrypoint="/bin/sh",
            tty=True,
            command=(),
            mounts=(BindMount("/a", "/b", readonly=True),),
        )
        args = build_create_args(spec, "n")
        assert args[args.index("--entrypoint") + 1] == "/bin/sh"
        assert "--tty" in args
        assert "type=bind,source=/a,target=/b,readonly" in args
        assert args[-1] == "fortinet-hugo:latest"


class TestDockerEngine:
    async def test_create_returns_container_id(self):
        engine = DockerEngine()
        with patch("hugobox.engine.subprocess.run", return_value=_completed("abc123def456\n")) as run:
            cid = await engine.create(make_spec(), "hugobox-1-1")
        assert cid == "abc123def456"
        cmd = run.call_args[0][0]
        assert cmd[:4] == ["docker", "create", "--name", "hugobox-1-1"]
        assert run.call_args.kwargs["check"] is True

    async def test_create_falls_back_to_name_on_empty_output(self):
        with patch("hugobox.engine.subprocess.run", return_value=_completed("")):
            assert await DockerEngine().create(make_spec(), "n") == "n"

    async def test_called_process_error_becomes_engine_error(self):
        err = subprocess.CalledProcessError(
            125, ["docker", "start"], stderr="Error: No such container: x\n"
        )
        with patch("hugobox.engine.subprocess.run", side_effect=err):
            with pytest.raises(EngineError, match="No such container"):
                await DockerEngine().start("x")

    async def test_timeout_becomes_engine_error(self):
        err = subprocess.TimeoutExpired(["docker", "rm"], 30)
        with patch("hugobox.engine.subprocess.run", side_effect=err):
            with pytest.raises(EngineError, match="timed out"):
                await DockerEngine().remove("x")

    async def test_missing_cli_becomes_engine_error(self):
        with patch("hugobox.engine.subprocess.run", side_effect=FileNotFoundError("podman")):
            with pytest.raises(EngineError, match="could not run"):
                await DockerEngine("podman").start("x")

    async def test_stop_passes_grace_and_headroom(self):
        with patch("hugobox.engine.subprocess.run", return_value=_completed()) as run:
            await DockerEngine().stop("x", timeout=7)
        assert run.call_args[0][0] == ["docker", "stop", "-t", "7", "x"]
        assert run.call_args.kwargs["timeout"] == 37

    async def test_remove_forces(self):
        with patch("hugobox.engine.subprocess.run", return_value=_completed()) as run:
            await DockerEngine().remove("x")
        assert run.call_args[0][0] == ["docker", "rm", "-f", "x"]

    async def test_wait_parses_exit_code(self):
        with patch("hugobox.engine.subprocess.run", return_value=_completed("2\n")) as run:
            assert await DockerEngine().wait("x") == 2
        assert run.call_args.kwargs["timeout"] is None

    async def test_wait_rejects_garbage(self):
        with patch("hugobox.engine.subprocess.run", return_value=_completed("oops\n")):
            with pytest.raises(EngineError, match="unexpected output"):
                await DockerEngine().wait("x")

    async def test_is_running(self):
        with patch("hugobox.engine.subprocess.run", return_value=_completed("true\n")):
            assert await DockerEngine().is_running("x") is True
        with patch("hugobox.engine.subprocess.run", return_value=_completed("false\n")):
            assert await DockerEngine().is_running("x") is False
        err = subprocess.CalledProcessError(1, ["docker"], stderr="No such object")
        with patch("hugobox.engine.subprocess.run", side_effect=err):
            assert await DockerEngine().is_running("x") is False

    async def test_attach_refuses_stopped_instance(self):
        with (
            patch("hugobox.engine.subprocess.run", return_value=_completed("false\n")),
            patch("hugobox.engine.asyncio.create_subprocess_exec", new=AsyncMock()) as spawn,
        ):
            with pytest.raises(EngineError, match="not running"):
                await DockerEngine().attach("x", stdin=False)
        spawn.assert_not_called()

    async def test_attach_without_stdin(self):
        with (
            patch("hugobox.engine.subprocess.run", return_value=_completed("true\n")),
            patch("hugobox.engine.asyncio.create_subprocess_exec", new=AsyncMock()) as spawn,
        ):
            await DockerEngine().attach("x", stdin=False)
        args = spawn.call_args[0]
        assert args == ("docker", "attach", "--sig-proxy=false", "--no-stdin", "x")
        assert spawn.call_args.kwargs["stdin"] == asyncio.subprocess.DEVNULL
        assert spawn.call_args.kwargs["stderr"] == asyncio.subprocess.STDOUT

    async def test_attach_with_stdin(self):
        with (
            patch("hugobox.engine.subprocess.run", return_value=_completed("true\n")),
            patch("hugobox.engine.asyncio.create_subprocess_exec", new=AsyncMock()) as spawn,
        ):
            await DockerEngine().attach("x", stdin=True)
        assert "--no-stdin" not in spawn.call_args[0]
        assert spawn.call_args.kwargs["stdin"] == asyncio.subprocess.PIPE

    async def test_start_attached(self):
        with patch("hugobox.engine.asyncio.create_subprocess_exec", new=AsyncMock()) as spawn:
            await DockerEngine().start_attached("x", stdin=True)
        assert spawn.call_args[0] == ("docker", "start", "--attach", "--interactive", "x")
