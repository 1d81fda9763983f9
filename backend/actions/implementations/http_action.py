"""API call action.

Makes HTTP requests to external APIs. The action owns its transport
concerns: request timeout, per-host rate limiting and a short retry of
transient failures (timeouts, connection errors, 429/502/503/504). A
step-level retry policy, if any, wraps all of this.
"""

import ipaddress
import json
from typing import Any, Dict, Optional
from urllib.parse import urlparse

import httpx
import structlog

from actions.base import ActionResult, BaseAction
from app.config import get_settings
from core.rate_limit import AsyncRateLimiter
from workflow.retry_strategies import RetryStrategy, execute_with_retry

logger = structlog.get_logger(__name__)

_TRANSIENT_STATUS = {429, 502, 503, 504}


class TransientHTTPError(Exception):
    """Retryable HTTP status."""


def _validate_url_safety(url: str) -> None:
    """Reject non-HTTP schemes and loopback/private addresses.

    Raises:
        ValueError: If URL is unsafe
    """
    parsed = urlparse(url)
    if parsed.scheme.lower() not in ("http", "https"):
        raise ValueError(f"Unsupported scheme: {parsed.scheme}. Only HTTP and HTTPS allowed.")

    hostname = parsed.hostname
    if not hostname:
        raise ValueError("URL must have a valid hostname")
    if hostname.lower() == "localhost":
        raise ValueError("Connections to localhost are not allowed")

    try:
        ip = ipaddress.ip_address(hostname)
    except ValueError:
        return  # A domain name, not an IP literal
    if ip.is_private or ip.is_loopback or ip.is_reserved:
        raise ValueError(f"Connections to private IP {hostname} are not allowed")


class ApiCallAction(BaseAction):
    """Call an HTTP API.

    Template config (ActionConfig.config):
        base_url: Prefix for relative step urls
        headers: Default headers
        timeout: Request timeout in seconds
        allow_private_hosts: Skip the private address check

    Step parameters:
        url: Absolute URL, or path relative to base_url (required)
        method: GET, POST, PUT, PATCH, DELETE (default: GET)
        headers: Extra headers
        params: Query parameters
        body: JSON body for POST/PUT/PATCH
    """

    action_type = "api_call"
    display_name = "API Call"
    description = "Call an HTTP API and return its JSON response"

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rate_limiter: Optional[AsyncRateLimiter] = None,
        retry_strategy: Optional[RetryStrategy] = None,
    ):
        settings = get_settings()
        self._transport = transport
        self._rate_limiter = rate_limiter or AsyncRateLimiter(settings.HTTP_ACTION_RATE_LIMIT)
        self._retry_strategy = retry_strategy or RetryStrategy.transient(
            max_retries=settings.HTTP_ACTION_MAX_RETRIES
        )
        self._default_timeout = settings.HTTP_ACTION_TIMEOUT

    async def execute(
        self,
        action_config: Dict[str, Any],
        step_config: Dict[str, Any],
        data: Any,
        context: Dict[str, Any],
    ) -> ActionResult:
        url = step_config.get("url") or action_config.get("url")
        if not url:
            return ActionResult(success=False, error="Missing required parameter: url")
        base_url = action_config.get("base_url")
        if base_url and not urlparse(url).scheme:
            url = f"{base_url.rstrip('/')}/{url.lstrip('/')}"

        if not action_config.get("allow_private_hosts", False):
            try:
                _validate_url_safety(url)
            except ValueError as e:
                return ActionResult(success=False, error=str(e))

        method = str(step_config.get("method", action_config.get("method", "GET"))).upper()
        headers = {
            "Content-Type": "application/json",
            **action_config.get("headers", {}),
            **step_config.get("headers", {}),
        }
        timeout = step_config.get("timeout", action_config.get("timeout", self._default_timeout))
        request: Dict[str, Any] = {
            "method": method,
            "url": url,
            "headers": headers,
            "params": step_config.get("params", {}),
        }
        body = step_config.get("body")
        if body is not None and method in ("POST", "PUT", "PATCH"):
            request["json"] = json.loads(body) if isinstance(body, str) else body

        host = urlparse(url).hostname or url

        async def _send() -> httpx.Response:
            await self._rate_limiter.acquire(host)
            async with httpx.AsyncClient(transport=self._transport, timeout=timeout) as client:
                response = await client.request(**request)
            if response.status_code in _TRANSIENT_STATUS:
                raise TransientHTTPError(f"HTTP {response.status_code} from {host}")
            return response

        try:
            response = await execute_with_retry(_send, self._retry_strategy)
        except TransientHTTPError as e:
            return ActionResult(success=False, error=f"API call failed: {e}")
        except httpx.TimeoutException:
            return ActionResult(success=False, error=f"API call timed out after {timeout}s")
        except httpx.HTTPError as e:
            return ActionResult(success=False, error=f"API call failed: {e}")

        if not response.is_success:
            return ActionResult(
                success=False,
                error=f"API call failed: {response.status_code} {response.reason_phrase}",
                metadata={"status_code": response.status_code},
            )

        try:
            payload = response.json()
        except ValueError:
            payload = response.text
        return ActionResult(
            success=True,
            output=payload,
            metadata={"status_code": response.status_code, "url": str(response.url)},
        )

    @classmethod
    def get_config_schema(cls) -> Dict[str, Any]:
        return {
            "type": "object",
            "required": ["url"],
            "properties": {
                "url": {"type": "string"},
                "method": {"type": "string", "enum": ["GET", "POST", "PUT", "PATCH", "DELETE"]},
                "headers": {"type": "object"},
                "params": {"type": "object"},
                "body": {"description": "JSON request body"},
                "timeout": {"type": "number"},
            },
        }
