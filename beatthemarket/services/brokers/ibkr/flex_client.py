"""IBKR Flex Web Service client."""

import logging
import time
import xml.etree.ElementTree as ET

import requests

from beatthemarket.config import settings

logger = logging.getLogger(__name__)

STATEMENT_IN_PROGRESS = "1019"
MAX_POLL_INTERVAL = 10


class FlexClientError(Exception):
    """Raised when the Flex Web Service refuses or fails a request."""

    def __init__(self, message: str, error_code: str | None = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


def redact(text: str, token: str) -> str:
    """Remove the token from text that is about to be logged or returned."""
    return text.replace(token, "***") if token else text


def split_query_ids(query_ids: str) -> list[str]:
    """'123, 456,' -> ['123', '456']"""
    return [q.strip() for q in query_ids.split(",") if q.strip()]


class IBKRFlexClient:
    """Client for IBKR Flex Web Service API."""

    def __init__(
        self,
        base_url: str | None = None,
        version: str | None = None,
        timeout: int | None = None,
        poll_interval: float | None = None,
    ):
        self.base_url = base_url or settings.ibkr_flex_base_url
        self.version = version or settings.ibkr_flex_version
        self.timeout = timeout if timeout is not None else settings.ibkr_flex_poll_timeout
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.ibkr_flex_poll_interval
        )

    def request_flex_query(self, token: str, query_id: str) -> str:
        """
        Request flex query execution.

        Args:
            token: IBKR Flex Web Service token
            query_id: Flex Query ID

        Returns:
            reference_code for polling

        Raises:
            FlexClientError: If the request is refused or the response is unusable
        """
        url = f"{self.base_url}/FlexStatementService.SendRequest"
        params = {"t": token, "q": query_id, "v": self.version}

        logger.info(f"Requesting IBKR Flex Query {query_id}")
        root = self._get_xml(url, params, token, timeout=30)

        if root.tag == "FlexStatementResponse" and root.findtext("Status") == "Success":
            reference_code = root.findtext("ReferenceCode")
            if reference_code:
                logger.info(f"Flex Query request successful. Reference code: {reference_code}")
                return reference_code

        error_code = root.findtext("ErrorCode")
        error_message = root.findtext("ErrorMessage") or "Unexpected response from IBKR"
        logger.error(f"Flex Query request failed: {error_code} - {error_message}")
        raise FlexClientError(f"IBKR Error: {error_message}", error_code)

    def get_statement(self, token: str, reference_code: str) -> bytes | None:
        """
        Poll once for the generated statement.

        Args:
            token: IBKR Flex Web Service token
            reference_code: Reference code from request_flex_query

        Returns:
            Statement XML as bytes, or None while generation is in progress

        Raises:
            FlexClientError: If IBKR reports an error
        """
        url = f"{self.base_url}/FlexStatementService.GetStatement"
        params = {"t": token, "q": reference_code, "v": self.version}
        response = self._get(url, params, token, timeout=60)

        try:
            root = ET.fromstring(response.content)
        except ET.ParseError:
            # Not XML at all; hand it to the parser, which reports the format problem
            return response.content

        if root.tag in ("FlexStatementResponse", "Status"):
            error_code = root.findtext("ErrorCode")
            status = root.findtext("Status")
            if error_code == STATEMENT_IN_PROGRESS or status == "Warn":
                return None
            error_message = root.findtext("ErrorMessage") or "Statement generation failed"
            logger.error(f"IBKR Flex Query status error: {error_code} - {error_message}")
            raise FlexClientError(f"IBKR Error: {error_message}", error_code)

        logger.info(f"Successfully downloaded Flex Query data ({len(response.content)} bytes)")
        return response.content

    def fetch_flex_report(self, token: str, query_id: str) -> bytes:
        """
        Orchestrator: Request, poll, and download a flex query.

        Handles polling with exponential backoff.

        Args:
            token: IBKR Flex Web Service token
            query_id: Flex Query ID

        Returns:
            XML data as bytes

        Raises:
            FlexClientError: On broker failure or when the statement is not ready in time
        """
        reference_code = self.request_flex_query(token, query_id)

        start_time = time.monotonic()
        current_interval = self.poll_interval

        while True:
            content = self.get_statement(token, reference_code)
            if content is not None:
                return content

            if time.monotonic() - start_time >= self.timeout:
                break

            logger.debug(f"Flex Query still processing, waiting {current_interval}s...")
            time.sleep(current_interval)
            current_interval = min(current_interval * 1.5, MAX_POLL_INTERVAL)

        logger.error(f"Flex Query timeout after {self.timeout} seconds")
        raise FlexClientError(f"Timed out waiting for IBKR statement after {self.timeout}s")

    def test_connection(self, token: str, query_id: str) -> bool:
        """
        Check that a token and query id produce a statement.

        Raises:
            FlexClientError: If IBKR rejects the credentials or the query
        """
        self.fetch_flex_report(token, query_id)
        return True

    def _get(self, url: str, params: dict, token: str, timeout: int) -> requests.Response:
        try:
            response = requests.get(url, params=params, timeout=timeout)
            response.raise_for_status()
        except requests.Timeout as e:
            logger.error(f"Timeout connecting to IBKR Flex Service: {redact(str(e), token)}")
            raise FlexClientError("Timeout connecting to IBKR Flex Service") from e
        except requests.RequestException as e:
            message = redact(str(e), token)
            logger.error(f"Connection error to IBKR Flex Service: {message}")
            raise FlexClientError(f"Connection error to IBKR Flex Service: {message}") from e
        return response

    def _get_xml(self, url: str, params: dict, token: str, timeout: int) -> ET.Element:
        response = self._get(url, params, token, timeout)
        try:
            return ET.fromstring(response.content)
        except ET.ParseError as e:
            logger.error(f"Error parsing IBKR XML response: {e}")
            raise FlexClientError("Invalid response from IBKR Flex Service") from e
