import os
import shutil
import logging
from typing import List, Optional, Tuple

from playwright.async_api import async_playwright, Browser, Playwright

from flight_tracker.exceptions import BrowserLaunchError

logger = logging.getLogger(__name__)


# Browser launch arguments for headless operation in containers
BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
]

EXECUTABLE_ENV_VARS = [
    "PLAYWRIGHT_CHROMIUM_EXECUTABLE_PATH",
    "CHROME_BIN",
    "CHROMIUM_BIN",
]

# Looked up on PATH
EXECUTABLE_NAMES = [
    "chromium",
    "google-chrome-stable",
    "google-chrome",
    "chromium-browser",
]

EXECUTABLE_PATHS = [
    "/usr/bin/chromium",
    "/usr/bin/google-chrome",
    "/usr/bin/chromium-browser",
]

MAX_REPORTED_FAILURES = 6


class BrowserSession:
    """A launched Chromium plus the Playwright driver that owns it."""

    def __init__(self, playwright: Playwright, browser: Browser, executable: str):
        self.playwright = playwright
        self.browser = browser
        self.executable = executable
        self._closed = False

    async def acquire(self) -> "BrowserSession":
        return self

    @property
    def is_closed(self) -> bool:
        return self._closed

    async def close(self):
        if self._closed:
            return
        self._closed = True
        try:
            await self.browser.close()
        except Exception as e:
            logger.warning(f"Error closing browser: {e}")
        try:
            await self.playwright.stop()
        except Exception as e:
            logger.warning(f"Error stopping playwright: {e}")


class BrowserLauncher:
    """
    Launches Chromium from the first candidate that works.

    Order: Playwright's bundled build, the configured executable, the
    executable environment variables, common command names on PATH, then
    well-known absolute paths. Every failure is remembered and reported
    together when nothing launches.
    """

    def __init__(self, executable_path: str = "", headless: bool = True):
        self.executable_path = executable_path
        self.headless = headless

    def executable_candidates(self) -> List[str]:
        candidates: List[str] = []

        configured = [self.executable_path] + [os.environ.get(name, "") for name in EXECUTABLE_ENV_VARS]
        for value in configured:
            value = (value or "").strip()
            if value:
                candidates.append(self._resolve(value))

        for name in EXECUTABLE_NAMES:
            resolved = shutil.which(name)
            if resolved:
                candidates.append(resolved)

        candidates.extend(EXECUTABLE_PATHS)

        # De-duplicate, keeping the first occurrence
        return list(dict.fromkeys(candidates))

    @staticmethod
    def _resolve(candidate: str) -> str:
        if os.path.isabs(candidate) or "/" in candidate:
            return candidate
        return shutil.which(candidate) or candidate

    async def launch(self) -> BrowserSession:
        playwright = await async_playwright().start()
        failures: List[Tuple[str, str]] = []

        attempts: List[Optional[str]] = [None] + self.executable_candidates()
        for executable in attempts:
            label = executable or "(bundled)"
            try:
                kwargs = {"headless": self.headless, "args": BROWSER_ARGS}
                if executable:
                    kwargs["executable_path"] = executable
                browser = await playwright.chromium.launch(**kwargs)
            except Exception as e:
                first_line = str(e).strip().split("\n")[0]
                failures.append((label, first_line))
                continue

            logger.info(f"Browser launched ({label})")
            return BrowserSession(playwright, browser, label)

        await playwright.stop()
        details = " | ".join(f"{label}: {error}" for label, error in failures[:MAX_REPORTED_FAILURES])
        raise BrowserLaunchError(
            "Unable to launch Chromium. Run `playwright install chromium` or set "
            f"BROWSER_EXECUTABLE_PATH.\nTried: {details}"
        )


class SharedBrowser:
    """
    Lazily launched browser shared by several scrapes in one job.

    Nothing is launched until the first scrape asks for it. A failed launch
    is retried on the next request.
    """

    def __init__(self, launcher: BrowserLauncher):
        self.launcher = launcher
        self._session: Optional[BrowserSession] = None

    @property
    def launched(self) -> bool:
        return self._session is not None

    async def acquire(self) -> BrowserSession:
        if self._session is None or self._session.is_closed:
            self._session = await self.launcher.launch()
        return self._session

    async def close(self):
        if self._session is not None:
            await self._session.close()
            self._session = None
