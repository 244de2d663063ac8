from __future__ import annotations

import os
from typing import Iterable
from urllib.parse import urlsplit, urlunsplit

import docker
import requests
from docker.errors import DockerException

from .docker_ops import _client
from .errors import DownloadError, LoadError
from .eventlog import log_event
from .runtime import ArtifactRef
from .settings import settings

CHUNK_SIZE = 1024 * 1024


def archive_url(base_url: str, image: str) -> str:
    """`<base>/<image>.tar`, keeping any query string (e.g. a SAS token) on the end."""
    parts = urlsplit(base_url)
    path = parts.path.rstrip("/") + f"/{image}.tar"
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, ""))


def plan(images: Iterable[str], base_url: str, staging_dir: str) -> list[ArtifactRef]:
    return [
        ArtifactRef(image_name=img, source_url=archive_url(base_url, img), local_path=os.path.join(staging_dir, f"{img}.tar"))
        for img in images
    ]


def download(ref: ArtifactRef, session: requests.Session | None = None, timeout_s: int | None = None) -> None:
    """Stream the archive to its staging path, overwriting any previous copy."""
    http = session or requests.Session()
    os.makedirs(os.path.dirname(ref.local_path) or ".", exist_ok=True)
    try:
        with http.get(ref.source_url, stream=True, timeout=timeout_s or settings.download_timeout_s) as resp:
            resp.raise_for_status()
            with open(ref.local_path, "wb") as f:
                for chunk in resp.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
    except (requests.RequestException, OSError) as e:
        if os.path.exists(ref.local_path):
            os.unlink(ref.local_path)
        raise DownloadError(f"Download failed: {type(e).__name__}: {e}", resource=ref.image_name) from e


def load(ref: ArtifactRef, client: docker.DockerClient | None = None) -> list[str]:
    """Load the staged archive into the local image store; returns the loaded tags."""
    c = client or _client()
    try:
        with open(ref.local_path, "rb") as f:
            images = c.images.load(f)
    except (DockerException, OSError) as e:
        raise LoadError(f"docker load failed: {type(e).__name__}: {e}", resource=ref.image_name) from e
    tags = [t for img in images for t in (img.tags or [])]
    if not tags:
        raise LoadError("Archive contained no tagged image", resource=ref.image_name)
    return tags


def fetch_images(
    images: Iterable[str],
    base_url: str,
    staging_dir: str,
    client: docker.DockerClient | None = None,
    session: requests.Session | None = None,
) -> list[str]:
    """Download, load and discard each archive in order.

    The first failure stops the loop; nothing is rolled back since a rerun
    simply downloads everything again.
    """
    c = client or _client()
    http = session or requests.Session()
    loaded: list[str] = []
    for ref in plan(images, base_url, staging_dir):
        log_event("INFO", "Downloading image archive", resource=ref.image_name)
        try:
            download(ref, http)
            tags = load(ref, c)
        finally:
            if os.path.exists(ref.local_path):
                os.unlink(ref.local_path)
        log_event("INFO", f"Loaded {', '.join(tags)}", resource=ref.image_name)
        loaded.extend(tags)
    return loaded
