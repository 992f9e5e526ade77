"""HTML → PDF rasterization through a headless Chromium driven by Playwright.

Every call owns its own driver and browser process.  Each step runs under
its own deadline and the process is torn down on every exit path,
including step timeouts and task cancellation::

    idle → launching → page_open → content_loaded → pdf_written → closed
      any non-terminal state ──→ failed
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from invoice_dispatch.core.exceptions import (
    RasterizationError,
    RasterizerUnavailableError,
    StepTimeoutError,
)
from invoice_dispatch.core.types import RasterizerState

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from invoice_dispatch.core.config import InvoicingConfig

logger = logging.getLogger(__name__)

_TERMINAL = frozenset({RasterizerState.CLOSED, RasterizerState.FAILED})


class RasterizationJob:
    """State of one :meth:`PdfRasterizer.rasterize` call.

    The job holds the driver and browser handles so teardown can reach them
    no matter which step was interrupted.  ``state`` ends as ``closed`` on
    success or ``failed`` otherwise; ``released`` becomes True once both
    handles have been shut down.
    """

    def __init__(self, output_path: Path) -> None:
        self.output_path = output_path
        self.state = RasterizerState.IDLE
        self.history: list[RasterizerState] = [RasterizerState.IDLE]
        self.failed_step: str | None = None
        self.released = False
        self.driver: Any = None
        self.browser: Any = None

    @property
    def finished(self) -> bool:
        return self.state in _TERMINAL

    def transition(self, state: RasterizerState) -> None:
        if self.finished:
            raise RuntimeError(f"rasterization job already {self.state.value}")
        self.state = state
        self.history.append(state)
        logger.debug("PDF job %s -> %s", self.output_path.name, state.value)

    def fail(self, step: str) -> None:
        if self.finished:
            return
        self.failed_step = step
        self.transition(RasterizerState.FAILED)


class PdfRasterizer:
    """Render an HTML string to an A4 PDF file.

    Args:
        config: Supplies the step budgets, browser path and launch flags.
        playwright_factory: Callable returning an object with an async
            ``start()`` (``async_playwright`` by default).

    Example::

        rasterizer = PdfRasterizer(config)
        path = await rasterizer.rasterize(html, Path("invoices/ACME-Invoice-1001.pdf"))
    """

    def __init__(
        self,
        config: InvoicingConfig,
        playwright_factory: Callable[[], Any] | None = None,
    ) -> None:
        self.config = config
        self._playwright_factory = playwright_factory or async_playwright

    async def rasterize(self, html: str, output_path: Path | str) -> Path:
        """Write *html* as a PDF to *output_path* and return the path.

        Raises:
            RasterizerUnavailableError: No browser executable could be found
            StepTimeoutError: A step exceeded its budget (not retried)
            RasterizationError: The browser failed during a step
        """
        job = RasterizationJob(Path(output_path))
        await self.run(job, html)
        return job.output_path

    async def run(self, job: RasterizationJob, html: str) -> None:
        """Drive *job* through every step, releasing the browser on exit."""
        config = self.config
        step = "launch"
        try:
            job.output_path.parent.mkdir(parents=True, exist_ok=True)
            job.transition(RasterizerState.LAUNCHING)
            await self._within(step, config.launch_timeout, self._open_browser(job))

            step = "new_page"
            page = await self._within(step, config.new_page_timeout, job.browser.new_page())
            job.transition(RasterizerState.PAGE_OPEN)

            step = "content_loaded"
            await self._within(
                step,
                config.content_timeout,
                # timeout=0 leaves the step budget as the only deadline
                page.set_content(html, wait_until="networkidle", timeout=0),
            )
            job.transition(RasterizerState.CONTENT_LOADED)

            step = "pdf_write"
            await self._within(
                step,
                config.pdf_timeout,
                page.pdf(path=str(job.output_path), format="A4", print_background=True),
            )
            job.transition(RasterizerState.PDF_WRITTEN)
        except BaseException:
            job.fail(step)
            logger.error("PDF generation failed step=%s path=%s", step, job.output_path)
            raise
        finally:
            await self._release(job)

        logger.info("PDF generated path=%s", job.output_path)

    async def _within(self, step: str, budget: float, awaitable: Awaitable[Any]) -> Any:
        try:
            async with asyncio.timeout(budget):
                return await awaitable
        except TimeoutError as exc:
            raise StepTimeoutError(step, budget) from exc
        except PlaywrightError as exc:
            raise RasterizationError(step, exc.message or str(exc)) from exc

    def resolve_executable(self, driver: Any) -> str:
        """Return the browser executable, preferring the configured path.

        Raises:
            RasterizerUnavailableError: If the executable does not exist
        """
        executable = self.config.browser_executable_path or driver.chromium.executable_path
        if not executable:
            raise RasterizerUnavailableError(
                "no Chromium executable; set INVOICING_BROWSER_EXECUTABLE_PATH "
                "or run `playwright install chromium`"
            )
        if not Path(executable).is_file():
            raise RasterizerUnavailableError(f"executable not found at {executable}")
        return executable

    async def _open_browser(self, job: RasterizationJob) -> None:
        try:
            job.driver = await self._playwright_factory().start()
            executable = self.resolve_executable(job.driver)
            logger.info("Launching headless browser executable=%s", executable)
            job.browser = await job.driver.chromium.launch(
                headless=True,
                executable_path=executable,
                args=list(self.config.browser_args),
            )
        except PlaywrightError as exc:
            raise RasterizerUnavailableError(str(exc)) from exc

    async def _release(self, job: RasterizationJob) -> None:
        # Runs on every exit path; shutdown errors must not mask the original one.
        closers = []
        if job.browser is not None:
            closers.append(("browser", job.browser.close))
        if job.driver is not None:
            closers.append(("driver", job.driver.stop))
        for name, closer in closers:
            try:
                async with asyncio.timeout(self.config.launch_timeout):
                    await closer()
            except (PlaywrightError, TimeoutError, OSError) as exc:
                logger.warning("Could not shut down %s cleanly: %s", name, exc)
        job.released = True
        if not job.finished:
            job.transition(RasterizerState.CLOSED)
        logger.debug("PDF job released history=%s", [s.value for s in job.history])


__all__ = ["PdfRasterizer", "RasterizationJob"]
