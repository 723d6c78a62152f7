"""
Tally HTTP connector.

Every request goes through one lock with a fixed cooldown in front of it:
Tally stops responding when it receives parallel or rapid-fire exports.
Transport failures and soft errors embedded in a 200 body share one
retry path with capped exponential backoff.
"""
from __future__ import annotations
import re
import threading
import time
from typing import Callable, Optional

import requests
from loguru import logger
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import TallySnapshotConfig
from .errors import ProtocolError, SourceUnreachableError, TransportError
from .parsers.base import extract_company_name
from .requests import RequestBuilder

DEFAULT_HEADERS = {
    "Content-Type": "text/xml; charset=utf-8",
    "Accept": "text/xml",
    "User-Agent": "tally-snapshot/1.0",
    # Keep-alive connections leave Tally hanging between batches
    "Connection": "close",
}

_ERROR_PATTERNS = [
    r"<LINEERROR>(.*?)</LINEERROR>",
    r"<ERRORMSG>(.*?)</ERRORMSG>",
    r"<ERROR>(.*?)</ERROR>",
    r'"LINEERROR"\s*:\s*"([^"]*)"',
]


def is_connection_refused(error: BaseException) -> bool:
    """
    True when a ConnectionRefusedError sits anywhere in the error's chain.

    requests wraps the socket error in urllib3's MaxRetryError and
    NewConnectionError, reachable through args, `reason` and `__cause__`.
    """
    pending = [error]
    seen = set()
    while pending:
        current = pending.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        if isinstance(current, ConnectionRefusedError):
            return True
        pending.append(current.__cause__)
        pending.append(current.__context__)
        pending.append(getattr(current, "reason", None))
        pending.extend(arg for arg in current.args if isinstance(arg, BaseException))
    return False


def find_soft_error(text: str) -> Optional[str]:
    """
    Return the error message embedded in an otherwise successful response.

    Returns None when the body carries no error marker.
    """
    is_error = False
    if "<STATUS>0</STATUS>" in text:
        is_error = True
    elif "<LINEERROR>" in text or "<ERRORMSG>" in text or '"LINEERROR"' in text:
        is_error = True
    elif "Could not find" in text and "Report" in text:
        is_error = True

    if not is_error:
        return None

    for pattern in _ERROR_PATTERNS:
        match = re.search(pattern, text, re.IGNORECASE | re.DOTALL)
        if match:
            msg = match.group(1).strip()
            msg = msg.replace("&apos;", "'").replace("&quot;", '"')
            msg = msg.replace("&lt;", "<").replace("&gt;", ">")
            msg = msg.replace("&amp;", "&")
            return msg or "Unknown Tally error"

    match = re.search(r"(Could not find[^<]+)", text)
    if match:
        return match.group(1).strip().replace("&apos;", "'")

    return "Tally returned STATUS=0"


class TallyConnector:
    """
    Single-flight HTTP client for the Tally XML API.

    Features:
    - One request in flight at a time, with a cooldown before each call
    - Automatic retry with capped exponential backoff
    - Soft-error detection in 200 responses
    - Typed errors once the retry budget is spent
    """

    def __init__(
        self,
        config: Optional[TallySnapshotConfig] = None,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config or TallySnapshotConfig.from_env()
        self.base_url = self.config.tally_url.rstrip("/")
        self.builder = RequestBuilder(self.config)
        self.session = session or requests.Session()
        self.session.headers.update(DEFAULT_HEADERS)
        self._sleep = sleep
        self._lock = threading.Lock()

    def _retrying(self) -> Retrying:
        return Retrying(
            wait=wait_exponential(
                multiplier=self.config.retry_delay,
                min=self.config.retry_delay,
                max=self.config.retry_max_delay,
            ),
            stop=stop_after_attempt(self.config.retry_attempts),
            retry=retry_if_exception_type((TransportError, ProtocolError)),
            before_sleep=lambda retry_state: logger.warning(
                f"Retrying Tally request (attempt {retry_state.attempt_number}"
                f"/{self.config.retry_attempts}): {retry_state.outcome.exception()}"
            ),
            sleep=self._sleep,
            reraise=True,
        )

    def send(self, payload: str, timeout: Optional[int] = None) -> str:
        """
        Post a request envelope to Tally and return the raw response body.

        Raises:
            SourceUnreachableError: Tally refused the connection on every attempt
            TransportError: Timeouts or HTTP failures exhausted the retry budget
            ProtocolError: Every attempt returned an error marker or empty body
        """
        with self._lock:
            if self.config.cooldown > 0:
                self._sleep(self.config.cooldown)
            try:
                return self._retrying()(self._execute, payload, timeout)
            except TransportError as e:
                logger.error(f"Tally request failed after {self.config.retry_attempts} attempts: {e}")
                raise
            except ProtocolError as e:
                logger.error(f"Tally kept returning errors after {self.config.retry_attempts} attempts: {e}")
                raise

    def _execute(self, payload: str, timeout: Optional[int]) -> str:
        timeout = timeout or self.config.request_timeout
        try:
            r = self.session.post(
                self.base_url, data=payload.encode("utf-8"), timeout=timeout
            )
            r.raise_for_status()
        except requests.Timeout as e:
            logger.warning(f"Tally request timed out after {timeout}s")
            raise TransportError(f"Request timeout: {e}") from e
        except requests.ConnectionError as e:
            if is_connection_refused(e):
                # Logged on the first attempt so a stopped Tally is obvious right away
                logger.error(f"Tally not reachable at {self.base_url}. Is Tally running? ({e})")
                raise SourceUnreachableError(f"Cannot connect to Tally at {self.base_url}: {e}") from e
            logger.warning(f"Connection to Tally dropped: {e}")
            raise TransportError(f"Connection error: {e}") from e
        except requests.RequestException as e:
            logger.warning(f"Tally request failed: {e}")
            raise TransportError(f"Request failed: {e}") from e

        text = r.text
        if not text or not text.strip():
            raise ProtocolError("Empty response from Tally")

        error_msg = find_soft_error(text)
        if error_msg:
            raise ProtocolError(f"Tally error: {error_msg}")

        return text

    def probe(self) -> str:
        """
        Check that Tally is up and return the name of the active company.

        Returns "Unknown" when Tally answers but no company name can be found.
        """
        logger.info(f"Checking Tally connection at {self.base_url}...")
        response = self.send(self.builder.probe(), timeout=30)
        name = extract_company_name(response) or "Unknown"
        logger.info(f"Connected to Tally. Active company: {name}")
        return name

    def close(self):
        """Close the session."""
        self.session.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
