"""
Metadata Resolver

Turns the hex-encoded URI stored on an NFT into descriptive metadata.

PRINCIPLES:
===========
1. Failed fetches are first-class results, never exceptions
2. A failure resolves to empty metadata - the token is still recorded
3. ipfs:// URIs are read through an HTTP gateway
"""

from __future__ import annotations
from typing import Any, List, Optional, Tuple
from datetime import datetime, timezone
import logging

import httpx

from .config import DEFAULT_IPFS_GATEWAY
from .contracts import FetchResult, FetchStatus, TokenMetadata, Trait


logger = logging.getLogger(__name__)

IPFS_SCHEME = "ipfs://"


def decode_hex_uri(uri_hex: Optional[str]) -> str:
    """Decode a hex string to UTF-8 text. Anything undecodable gives ''."""
    if not uri_hex:
        return ""
    try:
        return bytes.fromhex(uri_hex).decode('utf-8')
    except (ValueError, TypeError) as e:
        logger.warning("Could not decode URI hex %r: %s", str(uri_hex)[:64], e)
        return ""


def gateway_url(uri: str, gateway: str = DEFAULT_IPFS_GATEWAY) -> str:
    """Rewrite an ipfs:// URI to a gateway URL; other URIs pass through."""
    if not uri.startswith(IPFS_SCHEME):
        return uri
    content_path = uri[len(IPFS_SCHEME):]
    if content_path.startswith('ipfs/'):
        content_path = content_path[len('ipfs/'):]
    return f"{gateway.rstrip('/')}/{content_path}"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class MetadataResolver:
    """
    Fetches and parses token metadata JSON.

    The HTTP client is owned by the caller so one connection pool serves the
    whole process.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        gateway: str = DEFAULT_IPFS_GATEWAY,
        user_agent: str = "NFTIndexer/1.0"
    ):
        self._client = client
        self._gateway = gateway
        self._user_agent = user_agent

    async def resolve(self, uri: str) -> TokenMetadata:
        """Metadata for a URI, empty on any failure."""
        _, metadata = await self.fetch(uri)
        return metadata

    async def fetch(self, uri: str) -> Tuple[FetchResult, TokenMetadata]:
        """
        Fetch metadata for a URI.

        Returns:
            - FetchResult (always)
            - TokenMetadata (empty unless the fetch succeeded)
        """
        attempted_at = _now()

        if not uri:
            return self._result(uri, "", attempted_at, FetchStatus.EMPTY_URI), TokenMetadata.empty()

        url = gateway_url(uri, self._gateway)

        try:
            response = await self._client.get(
                url,
                headers={'User-Agent': self._user_agent},
                follow_redirects=True
            )
        except httpx.TimeoutException:
            logger.warning("Timed out fetching metadata from %s", url)
            return self._result(uri, url, attempted_at, FetchStatus.TIMEOUT,
                                error_message="Request timed out"), TokenMetadata.empty()
        except httpx.HTTPError as e:
            logger.warning("Error fetching metadata from %s: %s", url, e)
            return self._result(uri, url, attempted_at, FetchStatus.NETWORK_ERROR,
                                error_message=str(e)), TokenMetadata.empty()

        if response.status_code != 200:
            logger.warning("HTTP error fetching metadata! status: %s (%s)", response.status_code, url)
            return self._result(uri, url, attempted_at, FetchStatus.HTTP_ERROR,
                                http_status=response.status_code,
                                error_message=f"HTTP {response.status_code}"), TokenMetadata.empty()

        try:
            document = response.json()
        except ValueError as e:
            logger.warning("Metadata at %s is not valid JSON: %s", url, e)
            return self._result(uri, url, attempted_at, FetchStatus.PARSE_ERROR,
                                http_status=response.status_code,
                                error_message=str(e)), TokenMetadata.empty()

        if not isinstance(document, dict):
            logger.warning("Metadata at %s is not a JSON object", url)
            return self._result(uri, url, attempted_at, FetchStatus.PARSE_ERROR,
                                http_status=response.status_code,
                                error_message="expected a JSON object"), TokenMetadata.empty()

        result = self._result(uri, url, attempted_at, FetchStatus.SUCCESS,
                              http_status=response.status_code)
        logger.debug("Fetched metadata from %s in %.0f ms", url, result.duration_ms)
        return result, self.parse(document)

    def parse(self, document: dict) -> TokenMetadata:
        """Build TokenMetadata from a metadata document."""
        name = document.get('name')
        image = document.get('image')
        return TokenMetadata(
            name=name if isinstance(name, str) else "",
            image=gateway_url(image, self._gateway) if isinstance(image, str) else "",
            attributes=tuple(_parse_traits(document.get('attributes')))
        )

    def _result(
        self,
        uri: str,
        url: str,
        attempted_at: datetime,
        status: FetchStatus,
        http_status: Optional[int] = None,
        error_message: Optional[str] = None
    ) -> FetchResult:
        return FetchResult(
            uri=uri,
            url=url,
            attempted_at=attempted_at,
            completed_at=_now(),
            status=status,
            http_status=http_status,
            error_message=error_message
        )


def _parse_traits(attributes: Any) -> List[Trait]:
    """Traits with a non-empty string trait_type, in document order."""
    if not isinstance(attributes, list):
        return []
    traits = []
    for attr in attributes:
        if not isinstance(attr, dict):
            continue
        trait_type = attr.get('trait_type')
        if isinstance(trait_type, str) and trait_type:
            traits.append(Trait(trait_type=trait_type, value=attr.get('value')))
    return traits
