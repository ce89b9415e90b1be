"""
Lookup API clients for people and property searches.

``SkipTraceClient`` wraps the skip-trace API (name, address, phone and email
searches plus person detail). ``PropertyClient`` wraps the property API.
Responses are returned as the raw decoded JSON; turning them into entities is
the extraction layer's job.

Failures are classified into the lookup error taxonomy. Only transient
failures (network errors, 5xx) are retried; rate limits and subscription
errors surface immediately.
"""

from __future__ import annotations

from typing import Any, Optional, Protocol

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential
from tenacity.wait import wait_base

from tracegraph.config import get_settings
from tracegraph.errors import (
    LookupClientError,
    LookupFailedError,
    RateLimitedError,
    SubscriptionError,
    classify_lookup_error,
)
from tracegraph.extraction.normalize import split_address_line
from tracegraph.models import Address, SearchKind
from tracegraph.observability import metrics
from tracegraph.tools.rate_limiter import HostRateLimiter

logger = structlog.get_logger()


def _is_retryable_lookup_error(exc: BaseException) -> bool:
    """Only retry transient failures (network, 5xx), never throttling or auth."""
    if isinstance(exc, (RateLimitedError, SubscriptionError)):
        return False
    if isinstance(exc, LookupFailedError):
        return exc.is_transient
    return isinstance(exc, httpx.TransportError)


def _error_text(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(data, dict):
        return str(data.get("message") or data.get("error") or data)[:500]
    return str(data)[:500]


def raise_for_lookup_status(response: httpx.Response) -> None:
    """Map a non-success response onto the lookup error taxonomy."""
    if response.is_success:
        return
    status = response.status_code
    text = _error_text(response)
    lowered = text.lower()
    if status == 429 or "rate limit" in lowered:
        raise RateLimitedError(f"rate limit exceeded: {text}", status_code=status)
    if status in (401, 403) or "not subscribed" in lowered:
        raise SubscriptionError(f"lookup API not subscribed or key rejected: {text}", status_code=status)
    raise LookupFailedError(f"lookup API error {status}: {text}", status_code=status)


class LookupClient(Protocol):
    """What the investigation controller needs from a lookup backend."""

    async def search(self, kind: SearchKind, params: dict[str, Any]) -> Any: ...

    async def person_details(self, person_id: str) -> Any: ...

    async def address_intel(self, address: Address) -> Any: ...


class _RapidApiClient:
    """Shared plumbing: lazily created AsyncClient, pacing, retries, classification."""

    provider = "rapidapi"

    def __init__(
        self,
        host: str,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        rate_limiter: Optional[HostRateLimiter] = None,
        retry_wait: Optional[wait_base] = None,
    ) -> None:
        settings = get_settings().lookup
        self.host = host
        self.api_key = api_key if api_key is not None else settings.rapidapi_key
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self.max_retries = max(1, max_retries if max_retries is not None else settings.max_retries)
        self._transport = transport
        self._limiter = rate_limiter or HostRateLimiter()
        self._retry_wait = retry_wait or wait_exponential(min=1, max=10)
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=f"https://{self.host}",
                timeout=self.timeout,
                transport=self._transport,
                headers={"x-rapidapi-host": self.host, "x-rapidapi-key": self.api_key},
            )
        return self._client

    async def _get(self, path: str, params: dict[str, Any], kind: str) -> Any:
        if not self.api_key:
            logger.warning("lookup_no_api_key", provider=self.provider, kind=kind)
            raise SubscriptionError("RapidAPI key is not configured", status_code=401)

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=self._retry_wait,
            retry=retry_if_exception(_is_retryable_lookup_error),
            reraise=True,
        )
        return await retrying(self._get_once, path, params, kind)

    async def _get_once(self, path: str, params: dict[str, Any], kind: str) -> Any:
        client = await self._get_client()
        async with self._limiter.acquire(self.host), metrics.track_lookup(kind):
            try:
                response = await client.get(path, params=params)
            except httpx.TransportError as e:
                logger.warning("lookup_transport_error", kind=kind, path=path, error=str(e))
                raise LookupFailedError(f"{kind} lookup failed: {e}") from e
            try:
                raise_for_lookup_status(response)
                data = response.json()
            except LookupClientError as e:
                logger.warning(
                    "lookup_error", kind=kind, path=path, status=e.status_code, error_type=type(e).__name__
                )
                raise
            except ValueError as e:
                raise LookupFailedError(f"{kind} lookup returned invalid JSON", status_code=response.status_code) from e

        # Some providers answer 200 with an error message body
        message = data.get("message") or data.get("error") if isinstance(data, dict) else None
        if message and set(data) <= {"message", "error", "status"}:
            raise classify_lookup_error(Exception(str(message)))
        logger.info("lookup_complete", kind=kind, path=path, status=response.status_code)
        return data

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()


class SkipTraceClient(_RapidApiClient):
    """Skip-trace people searches and person detail."""

    provider = "skiptrace"

    def __init__(self, **kwargs: Any) -> None:
        host = kwargs.pop("host", None) or get_settings().lookup.skiptrace_api_host
        super().__init__(host, **kwargs)

    async def search_by_name(self, name: str) -> Any:
        return await self._get("/search/byname", {"name": name, "page": 1}, SearchKind.NAME_SEARCH.value)

    async def search_by_address(self, street: str, city_state_zip: str) -> Any:
        return await self._get(
            "/search/byaddress",
            {"street": street, "citystatezip": city_state_zip, "page": 1},
            SearchKind.SKIP_TRACE.value,
        )

    async def search_by_phone(self, phone: str) -> Any:
        return await self._get("/search/byphone", {"phoneno": phone, "page": 1}, SearchKind.PHONE_SEARCH.value)

    async def search_by_email(self, email: str) -> Any:
        return await self._get("/search/byemail", {"email": email, "phone": 1}, SearchKind.EMAIL_SEARCH.value)

    async def person_details(self, person_id: str) -> Any:
        return await self._get("/search/detailsbyID", {"peo_id": person_id}, SearchKind.PERSON_DETAILS.value)


class PropertyClient(_RapidApiClient):
    """Property listing lookups by address or zpid."""

    provider = "property"

    def __init__(self, **kwargs: Any) -> None:
        host = kwargs.pop("host", None) or get_settings().lookup.property_api_host
        super().__init__(host, **kwargs)

    async def property_by_zpid(self, zpid: str) -> Any:
        return await self._get("/property", {"zpid": zpid}, SearchKind.ZILLOW_SEARCH.value)

    async def property_by_address(self, address: str) -> Any:
        return await self._get("/search_address", {"address": address}, SearchKind.ZILLOW_SEARCH.value)


def _address_param(params: dict[str, Any]) -> Address:
    """An Address from ``params["address"]`` (object or one-line string) or the params themselves."""
    raw = params.get("address")
    if isinstance(raw, Address):
        return raw
    if isinstance(raw, str):
        parts = split_address_line(raw)
        return Address(street=parts["street"], city=parts["city"], state=parts["state"], zip=parts["postal"])
    return Address.model_validate(raw or params)


class LookupService:
    """Routes search kinds to the right client. Implements ``LookupClient``."""

    def __init__(
        self,
        skiptrace: Optional[SkipTraceClient] = None,
        properties: Optional[PropertyClient] = None,
    ) -> None:
        self.skiptrace = skiptrace or SkipTraceClient()
        self.properties = properties or PropertyClient()

    async def search(self, kind: SearchKind, params: dict[str, Any]) -> Any:
        kind = SearchKind(kind)
        if kind in (SearchKind.SKIP_TRACE, SearchKind.ADDRESS_INTEL):
            address = _address_param(params)
            return await self.address_intel(address)
        if kind == SearchKind.NAME_SEARCH:
            name = params.get("name") or " ".join(
                str(params.get(k) or "").strip() for k in ("firstName", "middleInitial", "lastName")
            ).strip()
            if not name:
                raise ValueError("name is required for a name search")
            return await self.skiptrace.search_by_name(" ".join(name.split()))
        if kind == SearchKind.PHONE_SEARCH:
            if not params.get("phone"):
                raise ValueError("phone is required for a phone search")
            return await self.skiptrace.search_by_phone(str(params["phone"]))
        if kind == SearchKind.EMAIL_SEARCH:
            if not params.get("email"):
                raise ValueError("email is required for an email search")
            return await self.skiptrace.search_by_email(str(params["email"]))
        if kind == SearchKind.ZILLOW_SEARCH:
            if params.get("zpid"):
                return await self.properties.property_by_zpid(str(params["zpid"]))
            address = _address_param(params)
            if not address.street:
                raise ValueError("a street address or zpid is required for a property search")
            return await self.properties.property_by_address(address.one_line())
        if kind == SearchKind.PERSON_DETAILS:
            return await self.person_details(str(params.get("personId") or params.get("apiPersonId") or ""))
        raise ValueError(f"{kind.value} is not a searchable kind")

    async def person_details(self, person_id: str) -> Any:
        if not person_id:
            raise ValueError("person id is required for a person detail lookup")
        return await self.skiptrace.person_details(person_id)

    async def address_intel(self, address: Address) -> Any:
        if not address.street:
            raise ValueError("a street address is required for an address search")
        return await self.skiptrace.search_by_address(address.street, address.city_state_zip())

    async def close(self) -> None:
        await self.skiptrace.close()
        await self.properties.close()
