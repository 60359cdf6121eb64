"""
WhatsApp Client - Selenium-Based WhatsApp Web Automation
=========================================================

Blocking driver wrapper. Everything here runs in a worker thread; the
async side lives in ``SeleniumProvider``.
"""

import logging
import time
import random
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from selenium import webdriver
from selenium.webdriver.common.by import By
from selenium.webdriver.common.keys import Keys
from selenium.webdriver.chrome.service import Service as ChromeService
from selenium.webdriver.support.ui import WebDriverWait
from selenium.webdriver.support import expected_conditions as EC
from selenium.common.exceptions import (
    NoSuchElementException,
    TimeoutException,
    WebDriverException,
)

try:
    from webdriver_manager.chrome import ChromeDriverManager
except ImportError:
    ChromeDriverManager = None

from .errors import WhatsAppClientError

logger = logging.getLogger(__name__)

WHATSAPP_WEB_URL = "https://web.whatsapp.com/"


class PageState(Enum):
    LOADING = "loading"
    QR = "qr"
    QR_EXPIRED = "qr_expired"
    READY = "ready"
    CONFLICT = "conflict"
    BLOCKED = "blocked"


@dataclass
class PageProbe:
    """What the WhatsApp Web page currently shows."""
    state: PageState
    qr_ref: Optional[str] = None
    qr_image: Optional[str] = None


class WhatsAppClient:
    """
    Selenium-based WhatsApp Web client.
    """

    # CSS Selectors - WhatsApp Web 2024/2025
    SELECTORS = {
        "search_box": 'div[contenteditable="true"][data-tab="3"]',
        "chat_list": '#pane-side',
        "qr_container": 'div[data-ref]',
        "qr_canvas": 'div[data-ref] canvas',
        "qr_reload": 'div[data-ref] button',
        "message_input": 'div[contenteditable="true"][data-tab="10"]',
        "message_input_alt": 'footer div[contenteditable="true"]',
        "attach_button": 'div[title="Attach"]',
        "attach_button_alt": 'span[data-icon="plus"]',
        "image_input": 'input[type="file"][accept*="image"]',
        "media_caption": 'div[contenteditable="true"][aria-label="Add a caption"]',
        "media_caption_alt": 'div[contenteditable="true"][data-tab="10"]',
        "media_send": 'span[data-icon="send"]',
        "menu": 'span[data-icon="menu"]',
        "logout_item": 'div[aria-label="Log out"]',
        "confirm_button": 'div[data-animate-modal-popup] button',
        "invalid_number": 'div[data-animate-modal-popup]',
    }

    BLOCK_INDICATORS = [
        "temporarily banned",
        "account is temporarily",
        "verify your phone",
        "unusual activity",
    ]

    CONFLICT_INDICATORS = [
        "whatsapp is open on another computer or browser",
        "use here",
    ]

    def __init__(self, profile_dir: Path, headless: bool = True, page_load_timeout: float = 10):
        self._profile_dir = Path(profile_dir)
        self._page_load_timeout = page_load_timeout

        self.driver = self._create_driver(headless)
        self._navigate_to_whatsapp()

    def _create_driver(self, headless: bool) -> webdriver.Chrome:
        """Create and configure Chrome WebDriver."""
        options = webdriver.ChromeOptions()

        if headless:
            options.add_argument("--headless=new")
            options.add_argument("--window-size=1280,900")
        else:
            options.add_argument("--start-maximized")

        options.add_argument("--disable-gpu")
        options.add_argument("--no-sandbox")
        options.add_argument("--disable-dev-shm-usage")

        self._profile_dir.mkdir(parents=True, exist_ok=True)
        options.add_argument(f"--user-data-dir={self._profile_dir.resolve()}")
        logger.info(f"Using Chrome profile at: {self._profile_dir}")

        if ChromeDriverManager:
            service = ChromeService(ChromeDriverManager().install())
            driver = webdriver.Chrome(service=service, options=options)
        else:
            driver = webdriver.Chrome(options=options)
        driver.set_page_load_timeout(self._page_load_timeout * 3)
        return driver

    def _navigate_to_whatsapp(self) -> None:
        """Navigate to WhatsApp Web."""
        self.driver.get(WHATSAPP_WEB_URL)
        logger.info("Opened WhatsApp Web")

    def _random_delay(self, min_s: float = 0.3, max_s: float = 0.8) -> None:
        """Short pause so the page can keep up with input."""
        time.sleep(random.uniform(min_s, max_s))

    def _find(self, *selector_names: str):
        """First element matching any of the named selectors, or None."""
        for name in selector_names:
            try:
                return self.driver.find_element(By.CSS_SELECTOR, self.SELECTORS[name])
            except NoSuchElementException:
                continue
        return None

    def _wait_for(self, selector_name: str, timeout: float):
        try:
            return WebDriverWait(self.driver, timeout).until(
                EC.presence_of_element_located((By.CSS_SELECTOR, self.SELECTORS[selector_name]))
            )
        except TimeoutException:
            return None

    def _page_text(self) -> str:
        try:
            return self.driver.find_element(By.TAG_NAME, "body").text.lower()
        except NoSuchElementException:
            return ""

    # ── Connection state ───────────────────────────────────────────

    def probe(self) -> PageProbe:
        """Classify the current page. Driver errors propagate to the caller."""
        page_text = self._page_text()

        for indicator in self.BLOCK_INDICATORS:
            if indicator in page_text:
                logger.error(f"Block indicator detected: {indicator}")
                return PageProbe(PageState.BLOCKED)

        if self._find("chat_list", "search_box"):
            return PageProbe(PageState.READY)

        if all(indicator in page_text for indicator in self.CONFLICT_INDICATORS):
            return PageProbe(PageState.CONFLICT)

        container = self._find("qr_container")
        if container is None:
            return PageProbe(PageState.LOADING)

        if self._find("qr_reload"):
            return PageProbe(PageState.QR_EXPIRED)

        canvas = self._find("qr_canvas")
        ref = container.get_attribute("data-ref")
        if canvas is None or not ref:
            return PageProbe(PageState.LOADING)

        image = f"data:image/png;base64,{canvas.screenshot_as_base64}"
        return PageProbe(PageState.QR, qr_ref=ref, qr_image=image)

    # ── Messaging ──────────────────────────────────────────────────

    def open_chat(self, phone: str) -> None:
        """Open the chat for a phone number (digits, with country code)."""
        logger.debug(f"Opening chat with: {phone}")
        self.driver.get(f"{WHATSAPP_WEB_URL}send?phone={phone}")

        if self._wait_for("message_input", self._page_load_timeout * 3) is None:
            if self._find("message_input_alt"):
                return
            if self._find("invalid_number"):
                raise WhatsAppClientError(f"Phone number {phone} is not on WhatsApp")
            raise WhatsAppClientError(f"Could not open chat with {phone}")
        logger.info(f"Chat opened: {phone}")

    def _type_lines(self, element, text: str) -> None:
        """Type multi-line text; Shift+Enter keeps it in one message."""
        lines = text.split("\n")
        for index, line in enumerate(lines):
            if line:
                element.send_keys(line)
            if index < len(lines) - 1:
                element.send_keys(Keys.SHIFT, Keys.ENTER)

    def send_message(self, text: str) -> None:
        """Send a text message in the current chat."""
        input_box = self._find("message_input", "message_input_alt")
        if not input_box:
            raise WhatsAppClientError("Could not find message input box")

        input_box.click()
        self._random_delay()
        self._type_lines(input_box, text)
        self._random_delay()
        input_box.send_keys(Keys.ENTER)

        logger.info(f"Sent message: {text[:50]}...")

    def send_image(self, path: str, caption: Optional[str] = None) -> None:
        """Attach an image file in the current chat and send it."""
        attach = self._find("attach_button", "attach_button_alt")
        if not attach:
            raise WhatsAppClientError("Could not find attach button")
        attach.click()
        self._random_delay()

        file_input = self._wait_for("image_input", self._page_load_timeout)
        if file_input is None:
            raise WhatsAppClientError("Could not find image upload input")
        file_input.send_keys(path)

        send_button = self._wait_for("media_send", self._page_load_timeout * 2)
        if send_button is None:
            raise WhatsAppClientError("Image preview did not open")

        if caption:
            caption_box = self._find("media_caption", "media_caption_alt")
            if not caption_box:
                raise WhatsAppClientError("Could not find caption box")
            caption_box.click()
            self._type_lines(caption_box, caption)
            self._random_delay()

        send_button.click()
        # Leave time for the upload before the next navigation
        self._random_delay(1.5, 2.5)
        logger.info(f"Sent image {Path(path).name}{' with caption' if caption else ''}")

    def logout(self) -> None:
        """Unlink this browser from the phone via the chat list menu."""
        menu = self._find("menu")
        if not menu:
            raise WhatsAppClientError("Menu not found; session is not linked")
        menu.click()
        self._random_delay()

        item = self._wait_for("logout_item", self._page_load_timeout)
        if item is None:
            raise WhatsAppClientError("Log out menu item not found")
        item.click()

        confirm = self._wait_for("confirm_button", self._page_load_timeout)
        if confirm is not None:
            confirm.click()
        logger.info("Logged out of WhatsApp Web")

    def close(self) -> None:
        """Close browser and cleanup."""
        try:
            self.driver.quit()
            logger.info("Browser closed")
        except WebDriverException as e:
            logger.debug(f"Error closing browser: {e}")
