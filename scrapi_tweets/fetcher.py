"""Fetching TweetDetail payloads through a real browser session.

Navigating to a status page makes the web client call
``/i/api/graphql/{hash}/TweetDetail``; that response is captured and handed
back untouched. One page is reused for every request, so a fetcher must only
be driven from a single thread.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from urllib.parse import urlparse

from playwright.sync_api import BrowserContext, Page, Playwright, Response, sync_playwright
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError

from .errors import ErrorKind, TweetError

logger = logging.getLogger(__name__)

TWEET_HOSTS = {"twitter.com", "www.twitter.com", "mobile.twitter.com", "x.com", "www.x.com"}
TWEET_DETAIL_PATTERN = r"https://(?:twitter|x)\.com/i/api/graphql/[^/]+/TweetDetail"
HOME_URL = "https://x.com/home"
LOGIN_URL = "https://x.com/i/flow/login"

LOGIN_USERNAME_SELECTOR = 'input[autocomplete*="username"]'
LOGIN_PASSWORD_SELECTOR = 'input[autocomplete*="password"]'
LOGIN_VALIDATE_SELECTOR = 'input[data-testid="ocfEnterTextTextInput"]'
LOGIN_BUTTON_SELECTOR_NEXT = 'div[role="button"][style*="background-color"], button[role="button"]:has-text("Next")'
LOGIN_BUTTON_SELECTOR_VERIFY = '[data-testid="ocfEnterTextNextButton"]'
LOGIN_BUTTON_SELECTOR_LOGIN = '[data-testid="LoginForm_Login_Button"]'
PROFILE_LINK_SELECTOR = 'a[data-testid="AppTabBar_Profile_Link"]'

RATE_LIMIT_MESSAGES = ("Rate limit exceeded", "OverCapacity")


@dataclass(slots=True, frozen=True)
class Credentials:
    username: str
    password: str
    verification: str | None = None


class FetchCapability(Protocol):
    """What the orchestrator needs from a fetcher."""

    def fetch_tweet(self, url: str) -> str: ...

    def login(self, credentials: Credentials | None = None) -> None: ...

    def current_username(self) -> str | None: ...

    def close(self) -> None: ...


def check_tweet_body(status: int, body: str) -> str:
    """Validate a captured TweetDetail body, raising on rate limits."""
    if status == 429:
        raise TweetError(ErrorKind.RATE_LIMITED, "HTTP 429")
    if not body.lstrip().startswith("{"):
        if "limit" in body.lower():
            raise TweetError(ErrorKind.RATE_LIMITED, body[:200])
        raise TweetError(ErrorKind.OTHER, "invalid TweetDetail return")
    try:
        obj = json.loads(body)
    except ValueError as exc:
        raise TweetError(ErrorKind.JSON_MALFORMED, str(exc)) from exc
    if not isinstance(obj, dict):
        raise TweetError(ErrorKind.OTHER, "invalid TweetDetail return")
    for error in obj.get("errors") or []:
        message = error.get("message", "") if isinstance(error, dict) else ""
        if any(marker in message for marker in RATE_LIMIT_MESSAGES):
            raise TweetError(ErrorKind.RATE_LIMITED, message)
    return body


class BrowserFetcher:
    """Playwright-backed :class:`FetchCapability` using a persistent profile."""

    def __init__(
        self,
        user_data_dir: Path,
        *,
        headless: bool = True,
        response_timeout: float = 30.0,
    ) -> None:
        self.user_data_dir = Path(user_data_dir)
        self.headless = headless
        self.response_timeout = response_timeout
        self._detail_pattern = re.compile(TWEET_DETAIL_PATTERN)
        self._playwright: Playwright | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    def __enter__(self) -> BrowserFetcher:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def start(self) -> Page:
        if self._page is not None:
            return self._page
        self.user_data_dir.mkdir(parents=True, exist_ok=True)
        self._playwright = sync_playwright().start()
        self._context = self._playwright.chromium.launch_persistent_context(
            str(self.user_data_dir),
            headless=self.headless,
            args=["--disable-blink-features=AutomationControlled"],
        )
        pages = self._context.pages
        self._page = pages[0] if pages else self._context.new_page()
        return self._page

    def close(self) -> None:
        if self._context is not None:
            self._context.close()
            self._context = None
        if self._playwright is not None:
            self._playwright.stop()
            self._playwright = None
        self._page = None

    @property
    def page(self) -> Page:
        return self.start()

    def _is_tweet_detail(self, response: Response) -> bool:
        return bool(self._detail_pattern.match(response.url))

    def fetch_tweet(self, url: str) -> str:
        if urlparse(url).netloc.lower() not in TWEET_HOSTS:
            raise TweetError(ErrorKind.NOT_A_TWEET, url)
        page = self.page
        try:
            with page.expect_response(
                self._is_tweet_detail, timeout=self.response_timeout * 1000
            ) as response_info:
                page.goto(url, wait_until="commit")
            response = response_info.value
            body = response.text()
        except PlaywrightTimeoutError as exc:
            raise TweetError(ErrorKind.OTHER, f"cannot wait for data: {exc}") from exc
        except PlaywrightError as exc:
            raise TweetError(ErrorKind.OTHER, str(exc)) from exc
        finally:
            try:
                page.goto("about:blank")
            except PlaywrightError:
                logger.debug("Failed to reset page after %s", url)
        return check_tweet_body(response.status, body)

    def current_username(self) -> str | None:
        page = self.page
        try:
            page.goto(HOME_URL, wait_until="domcontentloaded")
            link = page.wait_for_selector(PROFILE_LINK_SELECTOR, timeout=15000)
        except PlaywrightTimeoutError:
            return None
        if link is None:
            return None
        href = link.get_attribute("href") or ""
        username = href.strip("/").split("/")[0]
        return username or None

    def login(self, credentials: Credentials | None = None) -> None:
        page = self.page
        page.goto(LOGIN_URL)
        if credentials is None:
            logger.info("Using manual login. Log in inside the browser window.")
            input("Press Enter after you are logged in...")
        else:
            logger.info("Login with username %s", credentials.username)
            try:
                self._fill_login_form(page, credentials)
            except PlaywrightError as exc:
                raise TweetError(ErrorKind.LOGIN_FAILED, str(exc)) from exc
        username = self.current_username()
        if username is None:
            logger.error("Login failed, can't get username.")
            raise TweetError(ErrorKind.LOGIN_FAILED, "can't get username")
        logger.info("Successfully logged in as %s", username)

    def _fill_login_form(self, page: Page, credentials: Credentials) -> None:
        page.wait_for_selector(LOGIN_USERNAME_SELECTOR, timeout=10000).fill(credentials.username)
        page.click(LOGIN_BUTTON_SELECTOR_NEXT)
        box = page.wait_for_selector(
            f"{LOGIN_VALIDATE_SELECTOR}, {LOGIN_PASSWORD_SELECTOR}", timeout=10000
        )
        if box.get_attribute("type") != "password":
            logger.debug("Login needs verification.")
            if not credentials.verification:
                raise TweetError(ErrorKind.LOGIN_FAILED, "no verification provided")
            box.fill(credentials.verification)
            page.click(LOGIN_BUTTON_SELECTOR_VERIFY)
            box = page.wait_for_selector(LOGIN_PASSWORD_SELECTOR, timeout=10000)
        box.fill(credentials.password)
        page.click(LOGIN_BUTTON_SELECTOR_LOGIN)
        page.wait_for_url(re.compile(r".*/home"), timeout=60000)


__all__ = [
    "BrowserFetcher",
    "Credentials",
    "FetchCapability",
    "check_tweet_body",
]
