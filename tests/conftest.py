"""Shared fixtures: throwaway engine scripts standing in for the PicoLM binary."""

from __future__ import annotations

import asyncio
import os
import sys
import textwrap
from pathlib import Path
from typing import Callable

import pytest

from picolm_gateway.config import PicoLMConfig


def is_running(pid: int) -> bool:
    """True if a process with ``pid`` still exists."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    return True


def read_pid(path: Path) -> int:
    return int(path.read_text().strip())


async def wait_for_pid(path: Path, timeout: float = 10.0) -> int:
    """Wait until a fake engine has recorded its pid, then return it."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if path.exists() and path.read_text().strip():
            return read_pid(path)
        await asyncio.sleep(0.02)
    raise AssertionError(f"engine never wrote {path}")


@pytest.fixture
def make_engine(tmp_path: Path) -> Callable[..., str]:
    """Write an executable Python script and return its path.

    The body runs with ``json``, ``os``, ``sys`` and ``time`` imported and
    ``PIDFILE`` set to ``tmp_path / "engine.pid"``; the script records its pid
    there before running the body.
    """

    def _make(body: str, name: str = "picolm") -> str:
        path = tmp_path / name
        header = (
            f"#!{sys.executable}\n"
            "import json, os, sys, time\n"
            f"PIDFILE = {str(tmp_path / 'engine.pid')!r}\n"
            "with open(PIDFILE, 'w') as f:\n"
            "    f.write(str(os.getpid()))\n"
        )
        path.write_text(header + textwrap.dedent(body))
        path.chmod(0o755)
        return str(path)

    return _make


@pytest.fixture
def pidfile(tmp_path: Path) -> Path:
    return tmp_path / "engine.pid"


@pytest.fixture
def model_file(tmp_path: Path) -> str:
    path = tmp_path / "model.bin"
    path.write_bytes(b"\0" * 16)
    return str(path)


@pytest.fixture
def picolm_config(model_file: str) -> Callable[..., PicoLMConfig]:
    def _config(binary: str, **overrides) -> PicoLMConfig:
        return PicoLMConfig(binary=binary, model_path=model_file, **overrides)

    return _config
