"""Recovers the m3u8 URL hidden in a redirector page's packed player script.

The packed script normally ends with ``eval(<deobfuscated source>)``. Here
``eval(`` becomes ``console.log(``, so running the script prints the
payload instead of executing it. The run happens in a throwaway js2py
interpreter inside a child process that is killed on timeout.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import multiprocessing
import re
from typing import Any, Tuple

from bs4 import BeautifulSoup

from ..utils.http_client import USER_AGENT

DEFAULT_TIMEOUT = 2.0
# Every extraction spawns a fresh interpreter that imports js2py, about 1s
# before the script even starts. DEFAULT_TIMEOUT only counts after that.
STARTUP_TIMEOUT = 15.0

SOURCE_ASSIGN_RE = re.compile(r"(?:var|let|const)\s+source\s*=\s*['\"]([^'\"]+\.m3u8)['\"]")
BARE_URL_RE = re.compile(r"https?://[^\s'\"]+\.m3u8")

# Applied in order; names stay in line with the stubs defined by _PRELUDE.
# js2py predefines ``console``, so the prelude patches ``console.log`` in place.
SUBSTITUTIONS: Tuple[Tuple[re.Pattern, str], ...] = (
    (re.compile(r"\bdocument\b"), "process"),
    (re.compile(r"\bwindow\b"), "globalThis"),
    (re.compile(r"\bquerySelector\b"), "exit"),
    (re.compile(r"\beval\("), "console.log("),
)

_PRELUDE = """
var __captured = [];
console.log = function () {
    var parts = [];
    for (var i = 0; i < arguments.length; i++) { parts.push(String(arguments[i])); }
    __captured.push(parts.join(' '));
};
var process = {};
var globalThis = {};
var navigator = {userAgent: %s};
"""


def find_candidate_script(html: str) -> str:
    """Returns the first inline script that evals a payload or assigns an m3u8 source."""

    soup = BeautifulSoup(html or "", "html.parser")
    for tag in soup.find_all("script"):
        script = tag.string or tag.get_text() or ""
        if not script:
            continue
        if "eval(" in script:
            return script
        if "source=" in script and ".m3u8" in script:
            return script
    return ""


def transform_script(script: str) -> str:
    for pattern, replacement in SUBSTITUTIONS:
        script = pattern.sub(replacement, script)
    return script


def parse_source_from_output(output: str) -> str:
    """Picks the manifest URL out of captured console output.

    A ``var source = '...m3u8'`` assignment anywhere in the output is
    preferred over a bare URL; within each tier the first line wins.
    """

    lines = output.splitlines()
    for line in lines:
        match = SOURCE_ASSIGN_RE.search(line)
        if match:
            return match.group(1)
    for line in lines:
        match = BARE_URL_RE.search(line)
        if match:
            return match.group(0)
    return ""


def _js_text(value: Any) -> str:
    to_python = getattr(value, "to_python", None)
    if callable(to_python):
        value = to_python()
    return "" if value is None else str(value)


def _atob(data: Any) -> str:
    return base64.b64decode(_js_text(data)).decode("latin-1")


def _btoa(data: Any) -> str:
    return base64.b64encode(_js_text(data).encode("latin-1")).decode("ascii")


def _run_in_child(script: str, user_agent: str, conn) -> None:
    """Child-process entry point: evaluates ``script`` and sends back its console output."""

    import js2py

    # Without this, ``pyimport`` inside the script reaches host Python modules.
    js2py.disable_pyimport()
    conn.send(("ready", ""))
    context = js2py.EvalJs({"atob": _atob, "btoa": _btoa})
    status = "ok"
    try:
        context.execute(_PRELUDE % json.dumps(user_agent))
        context.execute(script)
    except Exception as exc:  # js2py raises its own error types for JS throws
        status = f"error: {exc}"
    try:
        output = _js_text(context.eval("__captured.join('\\n')"))
    except Exception:
        output = ""
    conn.send((status, output))
    conn.close()


class ScriptSandbox:
    """Runs transformed player scripts under a hard wall-clock limit."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = USER_AGENT,
        startup_timeout: float = STARTUP_TIMEOUT,
    ) -> None:
        self.timeout = timeout
        self.user_agent = user_agent
        self.startup_timeout = startup_timeout
        self._mp = multiprocessing.get_context("spawn")

    async def extract(self, html: str) -> str:
        """Returns the manifest URL embedded in ``html`` or ``""`` when there is none."""

        script = find_candidate_script(html)
        if not script:
            logging.debug("No player script found on redirector page")
            return ""
        output = await asyncio.to_thread(self.evaluate, transform_script(script))
        url = parse_source_from_output(output)
        if not url:
            logging.debug("Player script produced no m3u8 URL (%s bytes of output)", len(output))
        return url

    def evaluate(self, script: str) -> str:
        """Blocking: runs ``script`` in a fresh child process and returns its console output."""

        receiver, sender = self._mp.Pipe(duplex=False)
        proc = self._mp.Process(
            target=_run_in_child,
            args=(script, self.user_agent, sender),
            daemon=True,
        )
        proc.start()
        sender.close()
        try:
            if not receiver.poll(self.startup_timeout):
                logging.warning("Script sandbox did not start within %.1fs", self.startup_timeout)
                return ""
            receiver.recv()
            if not receiver.poll(self.timeout):
                logging.debug("Player script exceeded %.1fs and was killed", self.timeout)
                return ""
            status, output = receiver.recv()
            if status != "ok":
                logging.debug("Player script raised, keeping partial output: %s", status)
            return output
        except (EOFError, OSError) as exc:
            logging.debug("Script sandbox exited without a result: %s", exc)
            return ""
        finally:
            receiver.close()
            if proc.is_alive():
                proc.terminate()
            proc.join(1)
