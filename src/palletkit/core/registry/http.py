"""Registry implementation speaking the crates.io JSON API over httpx."""

import logging

import httpx
from pydantic import BaseModel, ValidationError

from palletkit.core.errors import AuthFailure, NetworkFailure, NotFound, SourceResolutionError
from palletkit.core.registry.abc import CrateInfo, CrateVersion, Registry

logger = logging.getLogger(__name__)

CRATES_IO_API = "https://crates.io"
USER_AGENT = "palletkit (https://github.com/palletkit/palletkit)"


class _CrateMeta(BaseModel):
    name: str


class _VersionMeta(BaseModel):
    num: str
    yanked: bool = False


class _CrateResponse(BaseModel):
    crate: _CrateMeta
    versions: list[_VersionMeta]


class HttpRegistry(Registry):
    """Query `GET {api_url}/api/v1/crates/{name}`.

    Custom registries must expose the same API shape. The token, when given,
    is passed through opaquely in the Authorization header.
    """

    def __init__(
        self,
        *,
        api_url: str,
        timeout: float,
        token: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._api_url = api_url.rstrip("/")
        headers = {"User-Agent": USER_AGENT, "Accept": "application/json"}
        if token is not None:
            headers["Authorization"] = token
        self._client = httpx.Client(
            base_url=self._api_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @property
    def location(self) -> str:
        return self._api_url

    def fetch_crate(self, name: str) -> CrateInfo:
        url = f"/api/v1/crates/{name}"
        logger.debug("GET %s%s", self._api_url, url)
        try:
            response = self._client.get(url)
        except httpx.TransportError as e:
            raise NetworkFailure(f"Could not reach registry {self._api_url}: {e}") from e

        status = response.status_code
        if status == 404:
            raise NotFound(f"Crate '{name}' not found in registry {self._api_url}")
        if status in (401, 403):
            raise AuthFailure(f"Registry {self._api_url} rejected credentials (HTTP {status})")
        if status == 429 or status >= 500:
            raise NetworkFailure(f"Registry {self._api_url} returned HTTP {status}")
        if status != 200:
            raise SourceResolutionError(
                f"Unexpected HTTP {status} from registry {self._api_url} for crate '{name}'"
            )

        try:
            payload = _CrateResponse.model_validate(response.json())
        except (ValidationError, ValueError) as e:
            raise SourceResolutionError(
                f"Malformed response from registry {self._api_url} for crate '{name}': {e}"
            ) from e

        return CrateInfo(
            name=payload.crate.name,
            versions=tuple(CrateVersion(num=v.num, yanked=v.yanked) for v in payload.versions),
        )

    def close(self) -> None:
        self._client.close()
