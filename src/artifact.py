"""
Update-info records for installer artifacts.

An auto-updater needs, per downloadable file, its name, size and a base64
SHA-512; older clients also read a hex SHA-256 ("sha2"). Both digests are
computed as two independent concurrent requests over the same file.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, Field

from digest import (
    CHUNK_SIZE,
    Algorithm,
    DigestRequest,
    Encoding,
    compute_digest_async,
    digests_match,
)
from errors import (
    AccessDeniedError,
    ChecksumMismatchError,
    DigestIOError,
    InvalidArgumentError,
    NotFoundError,
)
from logs import get_logger

log = get_logger("idg.artifact")


class ArtifactInfo(BaseModel):
    url: str = Field(description="File name as published next to the metadata")
    path: Path
    size: int = Field(ge=0)
    sha512: str = Field(description="base64 SHA-512 of the file")
    sha2: Optional[str] = Field(default=None, description="hex SHA-256 of the file")


def _stat(path: Path) -> Tuple[int, int]:
    try:
        st = os.stat(path)
    except FileNotFoundError as exc:
        raise NotFoundError(f"File not found: {path}") from exc
    except PermissionError as exc:
        raise AccessDeniedError(f"Permission denied: {path}") from exc
    except OSError as exc:
        raise DigestIOError(f"Cannot stat {path}: {exc}") from exc
    return st.st_size, st.st_mtime_ns


async def describe_artifact(
    path: Union[str, Path], *, with_sha2: bool = True, chunk_size: int = CHUNK_SIZE
) -> ArtifactInfo:
    """
    Size and digests of one file.

    Raises:
        DigestIOError: if the file's size or mtime changed while it was hashed.
    """
    p = Path(path)
    before = await asyncio.to_thread(_stat, p)
    jobs = [
        compute_digest_async(
            DigestRequest(p, Algorithm.SHA512, Encoding.BASE64), chunk_size=chunk_size
        )
    ]
    if with_sha2:
        jobs.append(
            compute_digest_async(
                DigestRequest(p, Algorithm.SHA256, Encoding.HEX), chunk_size=chunk_size
            )
        )
    digests = await asyncio.gather(*jobs)
    after = await asyncio.to_thread(_stat, p)
    if after != before:
        raise DigestIOError(f"File changed while hashing: {p}")
    size = before[0]
    log.debug(f"described {p} ({size} bytes)")
    return ArtifactInfo(
        url=p.name,
        path=p,
        size=size,
        sha512=digests[0],
        sha2=digests[1] if with_sha2 else None,
    )


async def describe_artifacts(
    paths: Sequence[Union[str, Path]],
    *,
    with_sha2: bool = True,
    chunk_size: int = CHUNK_SIZE,
    concurrency: int = 4,
    return_exceptions: bool = False,
) -> List[Union[ArtifactInfo, BaseException]]:
    """
    Describe several files, at most `concurrency` at a time; output follows
    input order. With `return_exceptions` a failed file yields its exception
    in place of a record instead of aborting the batch.
    """
    if concurrency < 1:
        raise InvalidArgumentError(f"concurrency must be >= 1, got {concurrency}")
    gate = asyncio.Semaphore(concurrency)

    async def one(p: Union[str, Path]) -> ArtifactInfo:
        async with gate:
            return await describe_artifact(p, with_sha2=with_sha2, chunk_size=chunk_size)

    return list(
        await asyncio.gather(*(one(p) for p in paths), return_exceptions=return_exceptions)
    )


async def verify_artifact(info: ArtifactInfo, *, chunk_size: int = CHUNK_SIZE) -> None:
    """
    Re-hash `info.path` and compare with the recorded digests.

    Raises:
        ChecksumMismatchError: if the size or any recorded digest differs.
    """
    current = await describe_artifact(
        info.path, with_sha2=info.sha2 is not None, chunk_size=chunk_size
    )
    if current.size != info.size:
        raise ChecksumMismatchError(
            f"{info.path}: size {current.size} != recorded {info.size}"
        )
    if not digests_match(current.sha512, info.sha512, Encoding.BASE64):
        raise ChecksumMismatchError(f"{info.path}: sha512 mismatch")
    if info.sha2 is not None and not digests_match(
        current.sha2 or "", info.sha2, Encoding.HEX
    ):
        raise ChecksumMismatchError(f"{info.path}: sha2 mismatch")
