import logging
import re
import time
from pathlib import Path

from playwright.async_api import (
    Browser,
    BrowserContext,
    ConsoleMessage,
    Error as PlaywrightError,
    Page,
    Playwright,
    Request,
    Response,
    async_playwright,
)

from probebox.const import USER_AGENT, VIEWPORT
from probebox.exceptions import ProbeboxError
from probebox.schemas import FlowStep, UiFlowResult, UiFlowStep
from probebox.utils import describe_error, elapsed_ms, join_url

logger = logging.getLogger(__name__)


class AutomationError(ProbeboxError):
    pass


class ErrorLog:
    """Console and network failures seen during one browser session."""

    console: list[str]
    network: list[str]

    def __init__(self):
        self.console = []
        self.network = []

    def on_console(self, message: ConsoleMessage):
        if message.type == 'error':
            self.console.append(message.text)

    def on_page_error(self, error: PlaywrightError):
        self.console.append(error.message)

    def on_response(self, response: Response):
        if response.status >= 400:
            self.network.append(f'{response.status} {response.url}')

    def on_request_failed(self, request: Request):
        self.network.append(f'FAILED: {request.url} - {request.failure or "Unknown"}')

    def attach(self, page: Page):
        page.on('console', self.on_console)
        page.on('pageerror', self.on_page_error)
        page.on('response', self.on_response)
        page.on('requestfailed', self.on_request_failed)


class BrowserSession:
    """Headless Chromium page, closed on exit however the block ends."""

    page: Page | None
    errors: ErrorLog
    _playwright: Playwright | None
    _browser: Browser | None
    _context: BrowserContext | None

    def __init__(self, headless: bool = True):
        self.headless = headless
        self.page = None
        self.errors = ErrorLog()
        self._playwright = None
        self._browser = None
        self._context = None

    async def __aenter__(self) -> 'BrowserSession':
        try:
            self._playwright = await async_playwright().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless
            )
            self._context = await self._browser.new_context(
                viewport=VIEWPORT, user_agent=USER_AGENT
            )
            self.page = await self._context.new_page()
        except BaseException:
            await self.close()
            raise
        self.errors.attach(self.page)
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def close(self):
        logger.debug('Closing browser')
        for closer in (self._context, self._browser):
            if closer is None:
                continue
            try:
                await closer.close()
            except PlaywrightError as e:
                logger.warning(f'Error while closing browser: {e.message}')
        if self._playwright is not None:
            await self._playwright.stop()
        self._context = self._browser = self._playwright = None
        self.page = None


def _slug(name: str) -> str:
    return re.sub(r'[^a-z0-9]+', '-', name.lower()).strip('-')


async def take_screenshot(page: Page, name: str, screenshot_dir: Path) -> str:
    screenshot_dir.mkdir(parents=True, exist_ok=True)
    path = screenshot_dir / f'{name}.png'
    await page.screenshot(path=str(path), full_page=False)
    return str(path)


class FlowRunner:
    """Executes flows step by step on one page, stopping a flow at its first failure."""

    page: Page
    errors: ErrorLog
    base_url: str
    screenshot_dir: Path
    timeout_ms: float

    def __init__(
        self,
        page: Page,
        errors: ErrorLog,
        base_url: str,
        screenshot_dir: Path,
        timeout: float,
    ):
        self.page = page
        self.errors = errors
        self.base_url = base_url
        self.screenshot_dir = screenshot_dir
        self.timeout_ms = timeout * 1000

    async def _execute(self, step: FlowStep) -> str | None:
        page = self.page
        if step.action == 'navigate':
            await page.goto(
                join_url(self.base_url, step.target or '/'),
                timeout=self.timeout_ms,
                wait_until='domcontentloaded',
            )
        elif step.action == 'wait':
            await page.wait_for_selector(step.target or 'body', timeout=self.timeout_ms)
        elif step.action == 'click':
            await page.click(step.target, timeout=self.timeout_ms)
        elif step.action == 'fill':
            await page.fill(step.target, step.value or '', timeout=self.timeout_ms)
        elif step.action == 'screenshot':
            return await take_screenshot(
                page, step.value or 'screenshot', self.screenshot_dir
            )
        elif step.action == 'check_element':
            if await page.query_selector(step.target) is None:
                raise AutomationError(f'Element not found: {step.target}')
        elif step.action == 'check_text':
            text = await page.text_content(step.target or 'body', timeout=self.timeout_ms)
            if (step.value or '') not in (text or ''):
                raise AutomationError(f'Text not found: {step.value}')
        return None

    async def _error_screenshot(self, flow_name: str, step: FlowStep) -> str | None:
        try:
            return await take_screenshot(
                self.page,
                f'{_slug(flow_name)}-error-{step.action}',
                self.screenshot_dir,
            )
        except (PlaywrightError, OSError) as e:
            logger.debug(f'Error screenshot failed: {describe_error(e)}')
            return None

    async def run(self, name: str, steps: list[FlowStep]) -> UiFlowResult:
        started = time.monotonic()
        results = []
        for step in steps:
            step_started = time.monotonic()
            screenshot = error = None
            try:
                screenshot = await self._execute(step)
            except (PlaywrightError, AutomationError, OSError) as e:
                error = e.message if isinstance(e, PlaywrightError) else describe_error(e)
                logger.info(f'{name}: {step.action} {step.target or ""} failed: {error}')
                screenshot = await self._error_screenshot(name, step)

            results.append(
                UiFlowStep(
                    action=step.action,
                    target=step.target,
                    value=step.value,
                    passed=error is None,
                    screenshot=screenshot,
                    error=error,
                    duration_ms=elapsed_ms(step_started),
                )
            )
            if error is not None:
                break

        return UiFlowResult(
            name=name,
            steps=results,
            passed=all(step.passed for step in results),
            duration_ms=elapsed_ms(started),
            console_errors=list(self.errors.console),
            network_errors=list(self.errors.network),
        )
