"""Pandoc-backed Markdown to HTML rendering.

Two transports are supported: a long-lived ``pandoc server`` child process
spoken to over HTTP, or one ``pandoc`` subprocess per render. Both read
GitHub-flavoured Markdown with raw HTML disabled, so HTML in a body is
escaped as text, and both pass the output through the allowlist sanitizer.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Literal, Protocol

import httpx

from contentsync.exceptions import RenderError
from contentsync.rendering.sanitizer import add_heading_anchors, sanitize_html

if TYPE_CHECKING:
    from contentsync.config import Settings

logger = logging.getLogger(__name__)

# gfm brings tables, strikethrough and task lists; auto identifiers are added
# afterwards so they match the stored table of contents
PANDOC_INPUT_FORMAT = "gfm-raw_html-auto_identifiers"
PANDOC_OUTPUT_FORMAT = "html5"

_JSON_HEADERS = {"Accept": "application/json"}
_STOP_TIMEOUT = 5.0


class Renderer(Protocol):
    """Anything that turns a Markdown body into embeddable HTML."""

    async def render(self, markdown: str) -> str: ...


def _render_request(markdown: str) -> dict[str, Any]:
    return {
        "text": markdown,
        "from": PANDOC_INPUT_FORMAT,
        "to": PANDOC_OUTPUT_FORMAT,
        "wrap": "none",
    }


def _server_output(response: httpx.Response) -> str:
    """Unwrap a ``pandoc server`` JSON reply, raising RenderError on failure."""
    try:
        data = response.json()
    except ValueError:
        raise RenderError(
            f"Pandoc server returned non-JSON response (HTTP {response.status_code})"
        ) from None
    if not isinstance(data, dict):
        raise RenderError("Pandoc server returned an unexpected response")
    if "error" in data:
        raise RenderError(f"Pandoc rendering error: {str(data['error'])[:200]}")
    return str(data.get("output", ""))


class PandocServerProcess:
    """A ``pandoc server`` child process listening on localhost.

    Startup is confirmed by converting a one-line document in the input
    format the renderer uses, so a pandoc build that cannot read it fails
    when the app starts instead of on the first synced file.
    """

    def __init__(
        self,
        port: int = 3031,
        timeout: int = 10,
        *,
        startup_attempts: int = 5,
        startup_interval: float = 0.5,
    ) -> None:
        self.port = port
        self.timeout = timeout
        self.startup_attempts = startup_attempts
        self.startup_interval = startup_interval
        self.restarts = 0
        self._process: asyncio.subprocess.Process | None = None
        self._restart_lock = asyncio.Lock()

    @property
    def url(self) -> str:
        return f"http://127.0.0.1:{self.port}/"

    @property
    def alive(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def start(self, client: httpx.AsyncClient) -> None:
        """Spawn the server and wait until it renders.

        Raises:
            RuntimeError: If pandoc is missing, was built without server
                support, exits early, or never produces a rendering.
        """
        await self.stop()
        if "+server" not in await pandoc_version():
            raise RuntimeError(
                "Installed pandoc does not support server mode (+server feature flag missing). "
                "Set PANDOC_MODE=subprocess or install a pandoc build with server support."
            )
        self._process = await asyncio.create_subprocess_exec(
            "pandoc",
            "server",
            "--port",
            str(self.port),
            "--timeout",
            str(self.timeout),
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        logger.info("Spawned pandoc server (pid=%s, port=%d)", self._process.pid, self.port)
        await self._await_first_render(client)

    async def _await_first_render(self, client: httpx.AsyncClient) -> None:
        for attempt in range(1, self.startup_attempts + 1):
            process = self._process
            if process is not None and process.returncode is not None:
                stderr = await process.stderr.read() if process.stderr is not None else b""
                raise RuntimeError(
                    f"Pandoc server exited during startup (exit code {process.returncode}): "
                    f"{stderr.decode(errors='replace').strip()[:500]}"
                )

            try:
                response = await client.post(
                    self.url, json=_render_request("ok"), headers=_JSON_HEADERS
                )
            except httpx.TransportError:
                if attempt < self.startup_attempts:
                    await asyncio.sleep(self.startup_interval)
                continue

            try:
                _server_output(response)
            except RenderError as exc:
                raise RuntimeError(
                    f"Pandoc server cannot render {PANDOC_INPUT_FORMAT!r}: {exc}"
                ) from None
            logger.info("Pandoc server ready on port %d (attempt %d)", self.port, attempt)
            return

        raise RuntimeError(
            f"Pandoc server not ready after {self.startup_attempts} attempts on port {self.port}"
        )

    async def stop(self) -> None:
        """Terminate the process, killing it if SIGTERM is ignored. Idempotent."""
        process, self._process = self._process, None
        if process is None or process.returncode is not None:
            return

        logger.info("Stopping pandoc server (pid=%s)", process.pid)
        process.terminate()
        try:
            await asyncio.wait_for(process.wait(), timeout=_STOP_TIMEOUT)
        except TimeoutError:
            logger.warning("Pandoc server did not exit after %.1fs, killing", _STOP_TIMEOUT)
            process.kill()
            await process.wait()

    async def restart_if_dead(self, client: httpx.AsyncClient) -> None:
        """Start a fresh process unless another caller already has."""
        async with self._restart_lock:
            if self.alive:
                return
            self.restarts += 1
            logger.warning("Pandoc server not running, restart #%d", self.restarts)
            await self.start(client)


async def pandoc_version() -> str:
    """Return ``pandoc --version`` output.

    Raises:
        RuntimeError: If pandoc is missing or the version check fails.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            "pandoc",
            "--version",
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await proc.communicate()
    except FileNotFoundError:
        raise RuntimeError(
            "Pandoc is not installed. Install pandoc to enable markdown rendering. "
            "See https://pandoc.org/installing.html"
        ) from None
    except OSError as exc:
        raise RuntimeError(f"Failed to check pandoc version: {exc}") from None

    if proc.returncode != 0:
        raise RuntimeError(
            f"Failed to check pandoc version (exit code {proc.returncode}): "
            f"{stderr.decode(errors='replace')[:200]}"
        )
    return stdout.decode(errors="replace")


def _finish(output: str) -> str:
    return add_heading_anchors(sanitize_html(output))


class PandocRenderer:
    """Renders Markdown with pandoc and sanitizes the result.

    Call :meth:`start` before the first render and :meth:`close` on shutdown.
    """

    def __init__(
        self,
        mode: Literal["server", "subprocess"] = "server",
        port: int = 3031,
        timeout: int = 10,
    ) -> None:
        self._mode = mode
        self._timeout = timeout
        self._server = (
            PandocServerProcess(port=port, timeout=timeout) if mode == "server" else None
        )
        self._http_client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> PandocRenderer:
        return cls(
            mode=settings.pandoc_mode,
            port=settings.pandoc_port,
            timeout=settings.pandoc_timeout_seconds,
        )

    @property
    def mode(self) -> str:
        return self._mode

    async def start(self) -> None:
        if self._server is None:
            await pandoc_version()
            logger.info("Pandoc renderer using one subprocess per render")
            return
        self._http_client = httpx.AsyncClient(timeout=float(self._timeout))
        try:
            await self._server.start(self._http_client)
        except Exception:
            await self.close()
            raise
        logger.info("Pandoc renderer using server at %s", self._server.url)

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
        if self._server is not None:
            await self._server.stop()

    async def render(self, markdown: str) -> str:
        """Render a Markdown body to sanitized HTML.

        Raises:
            RenderError: On any pandoc failure (unreachable server, timeout,
                parse error, non-zero exit).
        """
        if self._server is None:
            return await self._render_subprocess(markdown)
        return await self._render_server(markdown)

    async def _render_server(self, markdown: str) -> str:
        if self._server is None or self._http_client is None:
            raise RenderError("Pandoc renderer not started")

        payload = _render_request(markdown)
        try:
            response = await self._http_client.post(
                self._server.url, json=payload, headers=_JSON_HEADERS
            )
        except httpx.ConnectError:
            logger.warning("Pandoc server connection failed, attempting restart")
            try:
                await self._server.restart_if_dead(self._http_client)
                response = await self._http_client.post(
                    self._server.url, json=payload, headers=_JSON_HEADERS
                )
            except (httpx.HTTPError, RuntimeError) as retry_exc:
                raise RenderError(
                    f"Pandoc server unreachable after restart: {retry_exc}"
                ) from None
        except httpx.TimeoutException:
            raise RenderError(f"Pandoc rendering timed out after {self._timeout}s") from None
        except httpx.HTTPError as exc:
            raise RenderError(f"Pandoc request failed: {exc}") from None

        return _finish(_server_output(response))

    async def _render_subprocess(self, markdown: str) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                "pandoc",
                "--from",
                PANDOC_INPUT_FORMAT,
                "--to",
                PANDOC_OUTPUT_FORMAT,
                "--wrap",
                "none",
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise RenderError(f"Failed to run pandoc: {exc}") from None

        try:
            stdout, stderr = await asyncio.wait_for(
                proc.communicate(markdown.encode("utf-8")), timeout=self._timeout
            )
        except TimeoutError:
            proc.kill()
            await proc.wait()
            raise RenderError(f"Pandoc rendering timed out after {self._timeout}s") from None

        if proc.returncode != 0:
            raise RenderError(
                f"Pandoc exited with code {proc.returncode}: "
                f"{stderr.decode(errors='replace').strip()[:200]}"
            )
        return _finish(stdout.decode("utf-8", errors="replace"))
