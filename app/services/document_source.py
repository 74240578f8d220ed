# =====================================================
# FILE: app/services/document_source.py
# Fetch certificate documents from the object store or a shared link
# =====================================================

import asyncio
import ipaddress
import socket
import httpx
import logging
from typing import Awaitable, Callable, List, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)

MAX_REDIRECTS = 5

HostResolver = Callable[[str], Awaitable[List[str]]]


class DocumentFetchError(Exception):
    """Document could not be downloaded"""


class DocumentTooLargeError(DocumentFetchError):
    pass


class InvalidDocumentLinkError(DocumentFetchError):
    """Link is malformed, not http(s), or points at a non-public address"""


async def resolve_host(host: str) -> List[str]:
    """All addresses a hostname resolves to"""
    loop = asyncio.get_running_loop()
    infos = await loop.getaddrinfo(host, None, type=socket.SOCK_STREAM)
    return [info[4][0].split("%", 1)[0] for info in infos]


def _is_public(address: str) -> bool:
    ip = ipaddress.ip_address(address)
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return ip.is_global and not ip.is_multicast


async def check_public_url(url: httpx.URL, resolve: Optional[HostResolver] = None) -> None:
    """
    Refuse links whose host is, or resolves to, a loopback, private,
    link-local or otherwise non-global address.
    """
    if url.scheme not in ("http", "https"):
        raise InvalidDocumentLinkError("Only http(s) links are supported")
    host = url.host
    if not host:
        raise InvalidDocumentLinkError("Document link has no host")

    try:
        addresses = [str(ipaddress.ip_address(host))]
    except ValueError:
        try:
            addresses = await (resolve or resolve_host)(host)
        except OSError as e:
            raise DocumentFetchError(f"Could not resolve {host}") from e

    if not addresses:
        raise DocumentFetchError(f"Could not resolve {host}")
    for address in addresses:
        if not _is_public(address):
            logger.warning(f"⚠️ Refused document link to non-public address {address} ({host})")
            raise InvalidDocumentLinkError("Document link points at a non-public address")


async def fetch_document(
    url: str,
    max_size: Optional[int] = None,
    timeout: Optional[float] = None,
    client: Optional[httpx.AsyncClient] = None,
    resolve: Optional[HostResolver] = None,
) -> bytes:
    """
    Download a document, refusing anything over max_size bytes.
    The body is streamed so an oversize file is cut off early.
    Redirects are followed by hand so every hop passes check_public_url.
    """
    limit = max_size or settings.MAX_UPLOAD_SIZE
    try:
        target = httpx.URL(url)
    except httpx.InvalidURL as e:
        raise InvalidDocumentLinkError(f"Malformed document link: {str(e)}") from e

    request_kwargs = {"follow_redirects": False}
    if timeout is not None:
        request_kwargs["timeout"] = timeout

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=timeout or settings.DOCUMENT_FETCH_TIMEOUT)
    try:
        for _ in range(MAX_REDIRECTS + 1):
            await check_public_url(target, resolve)
            async with client.stream("GET", target, **request_kwargs) as response:
                if response.is_redirect:
                    location = response.headers.get("location")
                    if not location:
                        raise DocumentFetchError("Redirect without a Location header")
                    target = response.url.join(location)
                    continue

                if response.status_code >= 400:
                    raise DocumentFetchError(f"Document link returned HTTP {response.status_code}")

                chunks = []
                received = 0
                async for chunk in response.aiter_bytes():
                    received += len(chunk)
                    if received > limit:
                        raise DocumentTooLargeError(f"Document exceeds {limit} bytes")
                    chunks.append(chunk)
                break
        else:
            raise DocumentFetchError(f"More than {MAX_REDIRECTS} redirects")
    except httpx.InvalidURL as e:
        raise InvalidDocumentLinkError(f"Malformed document link: {str(e)}") from e
    except httpx.TimeoutException as e:
        raise DocumentFetchError("Document download timed out") from e
    except httpx.HTTPError as e:
        raise DocumentFetchError(f"Document download failed: {str(e) or type(e).__name__}") from e
    finally:
        if owns_client:
            await client.aclose()

    logger.info(f"📄 Fetched {received} bytes from document link")
    return b"".join(chunks)
