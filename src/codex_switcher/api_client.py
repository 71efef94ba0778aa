"""
Codex Usage API Client

Handles communication with the ChatGPT usage endpoint, including:
- Bearer authentication with the per-profile account id
- A hard timeout on every request
- Classifying failures into snapshots instead of raising

There are no retries here. Refetching is driven by the usage cache TTL.
"""

import json
import logging
import re
import time
from pathlib import Path
from typing import Dict, Optional, Union

import requests

from .token_reader import read_auth_tokens
from .usage_types import (
    ERROR_BODY_LIMIT,
    REQUEST_TIMEOUT,
    USAGE_ENDPOINT,
    USAGE_REFERER,
    Snapshot,
    SnapshotState,
)


TIMEOUT_MESSAGE = "Usage request timed out."
FAILED_MESSAGE = "Usage request failed."

# A read returns only once it has a full chunk, so a trickling body is
# read byte by byte to keep checking the deadline
BODY_CHUNK_SIZE = 1


class UsageAPI:
    """Client for the Codex usage endpoint"""

    def __init__(self, endpoint: str = USAGE_ENDPOINT, timeout: float = REQUEST_TIMEOUT,
                 debug: bool = False, session: Optional[requests.Session] = None):
        self.endpoint = endpoint
        self.timeout = timeout
        self.debug = debug

        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': 'codex-switcher/1.0',
            'Accept': 'application/json',
        })

        self.logger = logging.getLogger("UsageAPI")
        if debug:
            self.logger.setLevel(logging.DEBUG)
        else:
            self.logger.setLevel(logging.INFO)

    @classmethod
    def from_config(cls, config_manager, debug: Optional[bool] = None) -> 'UsageAPI':
        """Build a client from a ConfigManager's usage settings"""
        return cls(
            endpoint=config_manager.usage_endpoint,
            timeout=config_manager.usage_request_timeout,
            debug=config_manager.debug if debug is None else debug,
        )

    def _filter_sensitive_headers(self, headers: Dict[str, str]) -> Dict[str, str]:
        """Filter out any potentially sensitive headers from debug output"""
        sensitive_headers = {'authorization', 'chatgpt-account-id', 'cookie', 'set-cookie'}

        filtered = {}
        for key, value in headers.items():
            if key.lower() in sensitive_headers:
                filtered[key] = "[REDACTED]"
            else:
                filtered[key] = value
        return filtered

    def _sanitize_debug_text(self, text: str) -> str:
        """Remove tokens from debug text output"""
        # JWTs and other long base64-ish runs
        return re.sub(r'[A-Za-z0-9+/_\-.]{44,}={0,2}', '[REDACTED_TOKEN]', text)

    def _build_headers(self, access_token: str, account_id: str) -> Dict[str, str]:
        return {
            'Authorization': f"Bearer {access_token}",
            'chatgpt-account-id': account_id,
            'oai-language': 'en-US',
            'referer': USAGE_REFERER,
            'priority': 'u=1, i',
        }

    def _read_body(self, response: requests.Response, deadline: float) -> Optional[str]:
        """Read the streamed body, or None once the deadline has passed"""
        chunks = []
        for chunk in response.iter_content(chunk_size=BODY_CHUNK_SIZE):
            if time.monotonic() >= deadline:
                return None
            chunks.append(chunk)
        return b"".join(chunks).decode(response.encoding or 'utf-8', errors='replace')

    def _error_detail(self, body: str) -> str:
        """Up to ERROR_BODY_LIMIT characters of the response body"""
        if not body:
            return ""
        if len(body) > ERROR_BODY_LIMIT:
            body = f"{body[:ERROR_BODY_LIMIT]}…"
        return f": {body}"

    def fetch_usage(self, access_token: str, account_id: str) -> Snapshot:
        """Fetch the usage snapshot for one account

        The whole request, body included, must finish within ``timeout``
        seconds. Never raises for network or HTTP failures; they come back
        as error snapshots.
        """
        headers = self._build_headers(access_token, account_id)
        deadline = time.monotonic() + self.timeout

        if self.debug:
            self.logger.debug(f"GET {self.endpoint}")
            self.logger.debug(f"Request headers: {self._filter_sensitive_headers(headers)}")

        try:
            response = self.session.get(self.endpoint, headers=headers, timeout=self.timeout, stream=True)
        except requests.Timeout:
            self.logger.debug("Usage request timed out")
            return Snapshot.error(TIMEOUT_MESSAGE)
        except requests.RequestException as e:
            self.logger.debug(f"Usage request failed: {self._sanitize_debug_text(str(e))}")
            return Snapshot.error(str(e) or FAILED_MESSAGE)

        try:
            if self.debug:
                self.logger.debug(f"Response status: {response.status_code}")
                safe_headers = self._filter_sensitive_headers(dict(response.headers))
                self.logger.debug(f"Response headers: {safe_headers}")

            try:
                body = self._read_body(response, deadline)
            except requests.Timeout:
                body = None
            except requests.RequestException as e:
                # requests reports a socket read timeout here as ConnectionError
                if time.monotonic() >= deadline:
                    body = None
                else:
                    self.logger.debug(f"Reading the usage response failed: {self._sanitize_debug_text(str(e))}")
                    return Snapshot.error(str(e) or FAILED_MESSAGE)
            if body is None:
                self.logger.debug("Usage request timed out while reading the response")
                return Snapshot.error(TIMEOUT_MESSAGE)
        finally:
            response.close()

        if not response.ok:
            detail = self._error_detail(body)
            if self.debug:
                self.logger.debug(f"HTTP {response.status_code} error{self._sanitize_debug_text(detail)}")
            return Snapshot.error(f"Usage request failed (HTTP {response.status_code}){detail}")

        try:
            data = json.loads(body)
        except ValueError as e:
            return Snapshot.error(f"Invalid JSON response from usage API: {e}")

        if self.debug:
            sanitized = self._sanitize_debug_text(json.dumps(data)) if data else 'None'
            self.logger.debug(f"Parsed JSON: {sanitized[:500]}")

        if not isinstance(data, dict):
            data = {}
        return Snapshot(state=SnapshotState.OK, data=data)

    def fetch_snapshot(self, auth_file: Optional[Union[str, Path]]) -> Snapshot:
        """Read a profile's credentials and fetch its usage

        The network call is skipped when the credentials are unusable.
        """
        token = read_auth_tokens(auth_file)
        if not token.ok:
            self.logger.debug(f"Skipping usage request for {auth_file}: {token.state.value}")
            return Snapshot.from_token_result(token)

        return self.fetch_usage(token.access_token, token.account_id)

    def close(self):
        self.session.close()
