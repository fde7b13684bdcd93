"""
Page-load verification for freshly triggered Jenkins jobs.

A trigger URL opened in a browser window either lands on a populated job
page or on a blank/error page (bad parameter, wrong job name). There is no
structured API for that distinction, so the rendered text is inspected:

    Loading -> LoadFailed               -> show error, close, fallback
            -> Loaded -> Probing -> Empty      -> close, fallback
                                 -> NonEmpty   -> annotate label, keep open
                                 -> ProbeError -> show error, close, fallback

Every state is terminal; the page load itself is never retried and the
fallback runs at most once.
"""
import asyncio
import logging
import re
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from playwright.async_api import (
    async_playwright, Error as PlaywrightError, TimeoutError as PlaywrightTimeoutError
)

from nightly_stats.models.jenkins_models import (
    PageSnapshot, PageProbeResult, VerificationState, VerificationOutcome
)
from nightly_stats.utils.browser import BrowserLauncher

logger = logging.getLogger(__name__)

ERROR_SELECTORS = (
    'h1', 'h2', '.error', '.alert', '.alert-danger',
    '[class*="error"]', '[class*="Error"]', '[id*="error"]',
)
ERROR_KEYWORDS = ('error', 'failed', 'exception', 'not found')
MAX_FRAGMENT_LENGTH = 200
SHORT_PAGE_LENGTH = 500
BODY_FRAGMENT_LENGTH = 100

NET_ERROR_PATTERN = re.compile(r'net::(ERR_[A-Z0-9_]+)')
API_PREFIX_PATTERN = re.compile(r'^\w+\.\w+:\s*')

SNAPSHOT_SCRIPT = """
(selectors) => {
    const body = document.body ? (document.body.innerText || document.body.textContent || '') : '';
    const candidates = [];
    for (const selector of selectors) {
        try {
            for (const el of document.querySelectorAll(selector)) {
                candidates.push(el.innerText || el.textContent || '');
            }
        } catch (e) {}
    }
    return {body: body, candidates: candidates};
}
"""


class PageLoadError(Exception):
    """
    Navigation to the target URL failed.

    code is the browser's net error (e.g. net::ERR_NAME_NOT_RESOLVED),
    TIMEOUT, or LOAD_FAILED when neither applies.
    """

    def __init__(self, description: str, code: str = 'LOAD_FAILED'):
        super().__init__(description)
        self.description = description
        self.code = code


def load_error_from_playwright(error: PlaywrightError) -> PageLoadError:
    """Turn a failed page.goto into a PageLoadError with code and description."""
    message = error.message or str(error)
    first_line = API_PREFIX_PATTERN.sub('', message.splitlines()[0] if message else '').strip()

    match = NET_ERROR_PATTERN.search(first_line)
    if match:
        description = match.group(1)[len('ERR_'):].replace('_', ' ').lower()
        return PageLoadError(description, code=f"net::{match.group(1)}")
    if isinstance(error, PlaywrightTimeoutError):
        return PageLoadError(first_line, code='TIMEOUT')
    return PageLoadError(first_line)


class PageProbeError(Exception):
    """Inspecting the rendered page failed."""
    pass


def probe_page(snapshot: PageSnapshot) -> PageProbeResult:
    """
    Decide whether a rendered page has content and extract an error hint.

    The first candidate element text that is non-empty and under 200
    characters is the error fragment. Failing that, a short page (under
    500 characters) mentioning error/failed/exception/not found yields its
    first 100 characters.
    """
    body = snapshot.body_text or ''
    if not body.strip():
        return PageProbeResult(has_text=False)

    for text in snapshot.candidate_texts:
        if text and text.strip() and len(text) < MAX_FRAGMENT_LENGTH:
            return PageProbeResult(has_text=True, error_text=text.strip())

    if len(body) < SHORT_PAGE_LENGTH:
        lowered = body.lower()
        if any(keyword in lowered for keyword in ERROR_KEYWORDS):
            return PageProbeResult(has_text=True, error_text=body[:BODY_FRAGMENT_LENGTH].strip())

    return PageProbeResult(has_text=True)


class DisplaySurface:
    """
    A window that can load a URL and report its rendered text.

    Subclasses implement the async operations; is_open() must be cheap and
    is checked before every step.
    """

    async def load(self, url: str) -> None:
        """Navigate to url. Raises PageLoadError on navigation failure."""
        raise NotImplementedError

    async def snapshot(self) -> PageSnapshot:
        """Capture rendered text. Raises PageProbeError on failure."""
        raise NotImplementedError

    async def set_label(self, text: str) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        raise NotImplementedError

    def is_open(self) -> bool:
        raise NotImplementedError

    async def wait_closed(self) -> None:
        """Block until the operator closes the surface."""
        raise NotImplementedError


class PlaywrightSurface(DisplaySurface):
    """DisplaySurface backed by a headed Chromium page."""

    def __init__(self, page, load_timeout: float = 30.0, headless: bool = False):
        self.page = page
        self.load_timeout_ms = load_timeout * 1000
        self.headless = headless

    @classmethod
    @asynccontextmanager
    async def launch(cls, headless: bool = False, load_timeout: float = 30.0) -> AsyncIterator["PlaywrightSurface"]:
        """Start Chromium and yield a surface; the browser is shut down on exit."""
        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(headless=headless)
            try:
                page = await browser.new_page(viewport={'width': 1200, 'height': 800})
                yield cls(page, load_timeout, headless)
            finally:
                await browser.close()

    async def load(self, url: str) -> None:
        try:
            await self.page.goto(url, wait_until='load', timeout=self.load_timeout_ms)
        except PlaywrightError as e:
            raise load_error_from_playwright(e) from e

    async def snapshot(self) -> PageSnapshot:
        try:
            data = await self.page.evaluate(SNAPSHOT_SCRIPT, list(ERROR_SELECTORS))
        except PlaywrightError as e:
            raise PageProbeError(e.message or str(e)) from e
        return PageSnapshot(body_text=data.get('body') or '', candidate_texts=data.get('candidates') or [])

    async def set_label(self, text: str) -> None:
        try:
            await self.page.evaluate("(title) => { document.title = title; }", text)
        except PlaywrightError as e:
            logger.warning(f"Could not update window title: {e}")

    async def close(self) -> None:
        if not self.page.is_closed():
            await self.page.close()

    def is_open(self) -> bool:
        return not self.page.is_closed()

    async def wait_closed(self) -> None:
        """Wait for the operator to close the page; a headless page has no operator."""
        if self.is_open() and not self.headless:
            await self.page.wait_for_event('close', timeout=0)


class PageVerifier:
    """Runs one verification per call; see the module docstring."""

    def __init__(
        self,
        launcher: BrowserLauncher,
        sleep=asyncio.sleep,
        error_display_seconds: float = 2.0,
        settle_initial_interval: float = 0.25,
        settle_max_wait: float = 2.0
    ):
        """
        Args:
            launcher: Fallback browser launcher
            sleep: Awaitable sleep, injectable for tests
            error_display_seconds: How long an error stays visible before closing
            settle_initial_interval: First delay between content probes (doubles each time)
            settle_max_wait: Upper bound on time spent waiting for content
        """
        self.launcher = launcher
        self._sleep = sleep
        self.error_display_seconds = error_display_seconds
        self.settle_initial_interval = settle_initial_interval
        self.settle_max_wait = settle_max_wait

    async def _wait_for_content(self, surface: DisplaySurface) -> Optional[PageSnapshot]:
        """
        Poll the page until it shows text or settle_max_wait elapses.

        Returns:
            The last snapshot, or None if the surface was closed meanwhile
        """
        waited = 0.0
        interval = self.settle_initial_interval
        while True:
            if not surface.is_open():
                return None
            snapshot = await surface.snapshot()
            if snapshot.body_text.strip() or waited >= self.settle_max_wait:
                return snapshot

            delay = min(interval, self.settle_max_wait - waited)
            await self._sleep(delay)
            waited += delay
            interval *= 2

    async def _show_error_then_fallback(
        self,
        surface: DisplaySurface,
        label: str,
        error: str,
        fallback_url: str,
        state: VerificationState
    ) -> VerificationOutcome:
        if surface.is_open():
            await surface.set_label(label)
            await self._sleep(self.error_display_seconds)
            if surface.is_open():
                await surface.close()
        fallback = self.launcher.open_default(fallback_url)
        return VerificationOutcome(state=state, label=label, error=error, fallback=fallback)

    async def verify(self, target_url: str, fallback_url: str, surface: DisplaySurface) -> VerificationOutcome:
        """
        Load target_url in surface and react to what renders.

        Args:
            target_url: Trigger or job URL to show
            fallback_url: Job landing page opened when the target is unusable
            surface: Display surface owned by this verification

        Returns:
            VerificationOutcome with the terminal state reached
        """
        base_label = f"Jenkins Job - {target_url}"

        try:
            await surface.load(target_url)
        except PageLoadError as e:
            logger.warning(f"Failed to load {target_url}: {e.code} {e}")
            return await self._show_error_then_fallback(
                surface, f"{base_label} - Error {e.code}: {e.description}", str(e), fallback_url,
                VerificationState.LOAD_FAILED_FALLBACK
            )

        try:
            snapshot = await self._wait_for_content(surface)
        except PageProbeError as e:
            logger.error(f"Error checking page content: {e}")
            return await self._show_error_then_fallback(
                surface, f"{base_label} - Error: {e}", str(e), fallback_url,
                VerificationState.PROBE_FAILED_FALLBACK
            )

        if snapshot is None:
            logger.info(f"Window for {target_url} closed before verification finished")
            return VerificationOutcome(state=VerificationState.CLOSED)

        result = probe_page(snapshot)

        if not result.has_text:
            logger.info(f"Blank page at {target_url}, falling back to {fallback_url}")
            if surface.is_open():
                await surface.close()
            fallback = self.launcher.open(fallback_url, prefer_alternate=True)
            return VerificationOutcome(state=VerificationState.BLANK_FALLBACK, fallback=fallback)

        if not surface.is_open():
            return VerificationOutcome(state=VerificationState.CLOSED, error=result.error_text)

        label = base_label
        if result.error_text:
            label += f" - Error: {result.error_text}"
        await surface.set_label(label)
        return VerificationOutcome(state=VerificationState.ANNOTATED, label=label, error=result.error_text)
