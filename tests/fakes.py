"""
Test doubles for the command runner and the HTTP session.

External commands and HTTP calls never leave the process: ``FakeRunner``
records every argv and answers from scripted results, ``FakeSession``
serves canned responses per URL.
"""

import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import requests

from shivish_deploy.errors import CommandError
from shivish_deploy.utils.shell import CommandResult


def _contains(argv: Sequence[str], pattern: Sequence[str]) -> bool:
    size = len(pattern)
    return any(list(argv[i:i + size]) == list(pattern) for i in range(len(argv) - size + 1))


@dataclass
class Call:
    argv: List[str]
    sudo: bool = False
    cwd: Optional[str] = None
    input: Optional[str] = None
    env: Optional[Dict[str, str]] = None


@dataclass
class _Scripted:
    pattern: List[str]
    returncode: int
    stdout: str
    stderr: str
    once: bool


class FakeRunner:
    """Stand-in for ``CommandRunner`` that records calls instead of running them."""

    def __init__(self, available: Sequence[str] = (), dry_run: bool = False) -> None:
        self.calls: List[Call] = []
        self.available = set(available)
        self.dry_run = dry_run
        self.use_sudo = False
        self._scripted: List[_Scripted] = []

    def on(self, pattern: Sequence[str], returncode: int = 0, stdout: str = "", stderr: str = "",
           once: bool = False) -> "FakeRunner":
        """Answer commands containing ``pattern``; the first matching script wins."""
        self._scripted.append(_Scripted(list(pattern), returncode, stdout, stderr, once))
        return self

    def which(self, tool: str) -> bool:
        return tool in self.available

    def run(self, argv, *, sudo=False, check=True, env=None, cwd=None, input=None, timeout=None):
        argv = list(argv)
        self.calls.append(Call(argv, sudo, str(cwd) if cwd else None, input, dict(env) if env else None))

        returncode, stdout, stderr = 0, "", ""
        for scripted in self._scripted:
            if _contains(argv, scripted.pattern):
                returncode, stdout, stderr = scripted.returncode, scripted.stdout, scripted.stderr
                if scripted.once:
                    self._scripted.remove(scripted)
                break

        if check and returncode != 0:
            raise CommandError(argv, returncode, stdout, stderr)
        return CommandResult(argv=argv, returncode=returncode, stdout=stdout, stderr=stderr)

    @property
    def commands(self) -> List[List[str]]:
        return [call.argv for call in self.calls]

    def ran(self, *pattern: str) -> bool:
        return any(_contains(call.argv, pattern) for call in self.calls)

    def calls_matching(self, *pattern: str) -> List[Call]:
        return [call for call in self.calls if _contains(call.argv, pattern)]


class FakeResponse:
    def __init__(self, status_code: int = 200, text: str = "", headers: Optional[Dict[str, str]] = None) -> None:
        self.status_code = status_code
        self.text = text
        self.headers = headers or {}


@dataclass
class FakeSession:
    """``requests.Session`` look-alike; unknown URLs fail to connect."""

    routes: Dict[str, List[Any]] = field(default_factory=dict)
    calls: List[Dict[str, Any]] = field(default_factory=list)

    def add(self, url: str, *outcomes: Any) -> "FakeSession":
        """Queue responses or exceptions for ``url``; the last one repeats."""
        self.routes[url] = list(outcomes)
        return self

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"url": url, **kwargs})
        if url not in self.routes:
            raise requests.exceptions.ConnectionError(f"no route to {url}")
        queue = self.routes[url]
        outcome = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def urls(self) -> List[str]:
        return [call["url"] for call in self.calls]


class RenewingRunner(FakeRunner):
    """``FakeRunner`` whose ``certbot renew`` renews: the deploy hook's ``touch`` is carried out."""

    def run(self, argv, **kwargs):
        argv = list(argv)
        if "--deploy-hook" in argv:
            Path(shlex.split(argv[argv.index("--deploy-hook") + 1])[-1]).touch()
        return super().run(argv, **kwargs)
