"""
Low-level HTTP request library for backend communication.
This module handles all HTTP requests with automatic retry logic and proper error handling.
"""
import asyncio
import logging
import aiohttp

from .const import AVAILABILITY_TIMEOUT, REQUEST_ATTEMPTS, REQUEST_TIMEOUT


_LOGGER = logging.getLogger(__name__)

SUCCESS_STATUSES = (200, 201, 204)


class ApiResponseError(Exception):
    """Exception raised when the backend returns a JSON error response."""
    def __init__(self, status: int, error_json: dict):
        self.status = status
        self.error_json = error_json
        super().__init__(f"API Error ({status}): {error_json}")


async def check_availability(url: str, timeout: int = AVAILABILITY_TIMEOUT) -> bool:
    """
    Check if the backend is reachable by sending a HEAD request.

    Args:
        url: URL to probe
        timeout: Timeout in seconds for the HEAD request

    Returns:
        True if the backend answered with anything below 500, False otherwise
    """
    try:
        timeout_config = aiohttp.ClientTimeout(total=timeout)
        async with aiohttp.ClientSession(timeout=timeout_config) as session:
            async with session.head(url) as response:
                if response.status >= 500:
                    _LOGGER.warning("Backend is not healthy (status %s)", response.status)
                    return False
                return True

    except (asyncio.TimeoutError, TimeoutError):
        _LOGGER.warning("Timeout while checking backend availability")
        return False
    except aiohttp.ClientError as e:
        _LOGGER.debug("Backend unreachable: %s", e)
        return False


async def make_request(
    method: str,
    url: str,
    headers: dict,
    payload=None,
    params: dict = None,
    timeout: int = REQUEST_TIMEOUT,
    max_attempts: int = REQUEST_ATTEMPTS
):
    """
    Make an HTTP request with automatic retry on timeout.

    Args:
        method: HTTP method (GET, POST, PATCH, DELETE)
        url: Target URL for the request
        headers: HTTP headers dictionary
        payload: JSON payload for POST/PATCH requests (optional)
        params: URL query parameters (optional)
        timeout: Base timeout in seconds (multiplied by attempt number for each retry)
        max_attempts: Maximum number of retry attempts

    Returns:
        Parsed JSON response, or None for an empty success response

    Raises:
        asyncio.TimeoutError: If all retry attempts timeout
        ApiResponseError: If the backend answers with a JSON error body
        ValueError: If response has unexpected content type
    """
    method = method.upper()
    if method not in ("GET", "POST", "PATCH", "DELETE"):
        raise ValueError(f"Unsupported HTTP method: {method}")

    for attempt in range(max_attempts):
        try:
            # Timeout grows with each attempt
            timeout_config = aiohttp.ClientTimeout(total=timeout * (attempt + 1))
            async with aiohttp.ClientSession(timeout=timeout_config) as session:
                async with session.request(
                    method, url, headers=headers, json=payload, params=params
                ) as response:
                    return await _process_response(response, url)

        except (asyncio.TimeoutError, TimeoutError):
            if attempt < max_attempts - 1:
                continue
            _LOGGER.warning(
                "Timeout on %s request to %s after %s attempts",
                method, url, max_attempts
            )
            raise

    return None


async def _process_response(response, url: str):
    """
    Process HTTP response and extract JSON data.

    Args:
        response: aiohttp response object
        url: Request URL (for logging)

    Returns:
        Parsed JSON response, or None when a success response has no body

    Raises:
        ApiResponseError: For JSON error responses
        ValueError: For non-JSON error responses or unexpected content types
    """
    content_type = response.headers.get('Content-Type', '')

    # Handle successful response
    if response.status in SUCCESS_STATUSES:
        if 'application/json' in content_type:
            text = await response.text()
            if not text.strip():
                return None
            return await response.json()
        if response.status in (201, 204) or not content_type:
            return None
        _LOGGER.warning(
            "Unexpected content type in successful response: %s (status %s) from %s",
            content_type, response.status, url
        )
        text = await response.text()
        raise ValueError(f"Expected JSON but got {content_type}: {text[:200]}")

    # Handle error responses
    if 'application/json' in content_type:
        try:
            error_json = await response.json()
        except (aiohttp.ContentTypeError, ValueError) as e:
            _LOGGER.error(
                "Failed to parse error response as JSON from %s: %s (status %s, content-type: %s)",
                url, e, response.status, content_type
            )
            raise ValueError(f"HTTP {response.status} with unreadable JSON body from {url}") from e
        raise ApiResponseError(response.status, error_json)

    # Non-JSON error response (e.g., HTML error page)
    text = await response.text()
    _LOGGER.warning(
        "Received non-JSON error response from %s: status %s, content-type: %s, body preview: %s",
        url, response.status, content_type, text[:200]
    )
    raise ValueError(
        f"HTTP {response.status} with {content_type} "
        f"(expected application/json) from {url}"
    )
