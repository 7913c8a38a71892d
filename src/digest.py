"""
Streaming file digests.

- SHA-2 / SHA-1 / BLAKE2 via hashlib, BLAKE3 via the blake3 package.
- Files are read in fixed-size chunks so memory stays bounded whatever the
  file size; the chunk size never changes the digest.
- Result rendered as lowercase hex or padded standard base64.
- Sync and asyncio entry points. The async variants push every blocking
  open/read onto a worker thread and release the handle on cancellation.

The defaults (SHA-512, base64) match the sha512 field of auto-update
metadata; integrity checks usually ask for SHA-256 in hex.
"""

from __future__ import annotations

import asyncio
import base64
import functools
import hashlib
import hmac
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO, Dict, Iterable, List, Union

from blake3 import blake3  # type: ignore[import-untyped]

from errors import (
    AccessDeniedError,
    DigestIOError,
    InvalidArgumentError,
    NotARegularFileError,
    NotFoundError,
)
from logs import get_logger


CHUNK_SIZE = 1024 * 1024  # 1 MiB

log = get_logger("idg.digest")

PathLike = Union[str, "os.PathLike[str]"]


class Algorithm(str, Enum):
    SHA1 = "sha1"
    SHA224 = "sha224"
    SHA256 = "sha256"
    SHA384 = "sha384"
    SHA512 = "sha512"
    BLAKE2B = "blake2b"
    BLAKE2S = "blake2s"
    BLAKE3 = "blake3"

    @classmethod
    def parse(cls, value: Union["Algorithm", str]) -> "Algorithm":
        """Accept a member or a name such as "SHA256", "sha-256" or "sha_512"."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower().replace("-", "").replace("_", "")
            for member in cls:
                if member.value == key:
                    return member
        choices = ", ".join(m.value for m in cls)
        raise InvalidArgumentError(
            f"Unsupported algorithm: {value!r} (choose from {choices})"
        )


class Encoding(str, Enum):
    HEX = "hex"
    BASE64 = "base64"

    @classmethod
    def parse(cls, value: Union["Encoding", str]) -> "Encoding":
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            for member in cls:
                if member.value == key:
                    return member
        raise InvalidArgumentError(
            f"Unsupported encoding: {value!r} (choose from hex, base64)"
        )


class DigestState(str, Enum):
    """Lifecycle of a single computation, reported in debug logs."""

    IDLE = "idle"
    OPENED = "opened"
    STREAMING = "streaming"
    FINALIZED = "finalized"
    RENDERED = "rendered"
    ERRORED = "errored"


@dataclass(frozen=True)
class DigestRequest:
    """
    One (file, algorithm, encoding) tuple.

    Strings are accepted for algorithm/encoding and normalized here, so an
    invalid choice fails on construction, before the file is touched.
    The path is kept verbatim (no resolution, non-ASCII is fine).
    """

    path: Path
    algorithm: Algorithm = Algorithm.SHA512
    encoding: Encoding = Encoding.BASE64

    def __post_init__(self) -> None:
        try:
            raw = os.fspath(self.path)
        except TypeError as exc:
            raise InvalidArgumentError(f"Invalid path: {self.path!r}") from exc
        if isinstance(raw, bytes):
            raw = os.fsdecode(raw)
        if not raw:
            raise InvalidArgumentError("File path must not be empty")
        object.__setattr__(self, "path", Path(raw))
        object.__setattr__(self, "algorithm", Algorithm.parse(self.algorithm))
        object.__setattr__(self, "encoding", Encoding.parse(self.encoding))


def render(raw: bytes, encoding: Union[Encoding, str]) -> str:
    """Render raw digest bytes as lowercase hex or padded standard base64."""
    enc = Encoding.parse(encoding)
    if enc is Encoding.HEX:
        return raw.hex()
    return base64.b64encode(raw).decode("ascii")


def _new_accumulator(algorithm: Algorithm) -> Any:
    if algorithm is Algorithm.BLAKE3:
        return blake3()
    return hashlib.new(algorithm.value)


def _check_chunk_size(chunk_size: int) -> int:
    if isinstance(chunk_size, bool) or not isinstance(chunk_size, int):
        raise InvalidArgumentError(f"chunk_size must be an int, got {chunk_size!r}")
    if chunk_size <= 0:
        raise InvalidArgumentError(f"chunk_size must be positive, got {chunk_size}")
    return chunk_size


def _unique_algorithms(algorithms: Iterable[Union[Algorithm, str]]) -> List[Algorithm]:
    out: List[Algorithm] = []
    for a in algorithms:
        alg = Algorithm.parse(a)
        if alg not in out:
            out.append(alg)
    if not out:
        raise InvalidArgumentError("At least one algorithm is required")
    return out


def _open(path: Path) -> BinaryIO:
    """
    Open `path` for binary reading, mapping OSError to typed errors.

    Raises:
        NotFoundError, AccessDeniedError, NotARegularFileError, DigestIOError
    """
    try:
        return open(path, "rb")
    except FileNotFoundError as exc:
        raise NotFoundError(f"File not found: {path}") from exc
    except IsADirectoryError as exc:
        raise NotARegularFileError(f"Not a regular file: {path}") from exc
    except PermissionError as exc:
        raise AccessDeniedError(f"Permission denied: {path}") from exc
    except OSError as exc:
        raise DigestIOError(f"Cannot open {path}: {exc}") from exc


def _finalize(path: Path, accs: Dict[Algorithm, Any], total: int) -> Dict[Algorithm, bytes]:
    raw = {alg: acc.digest() for alg, acc in accs.items()}
    log.debug(f"{DigestState.FINALIZED.value}: {path} ({total} bytes)")
    return raw


def _read_failed(path: Path, total: int, exc: OSError) -> DigestIOError:
    log.debug(f"{DigestState.ERRORED.value}: {path} after {total} bytes: {exc}")
    return DigestIOError(f"Read failed after {total} bytes: {path}: {exc}")


def _digest_stream(
    path: Path, algorithms: List[Algorithm], chunk_size: int
) -> Dict[Algorithm, bytes]:
    """Single pass over the file feeding one accumulator per algorithm."""
    with _open(path) as f:
        log.debug(f"{DigestState.OPENED.value}: {path}")
        accs = {alg: _new_accumulator(alg) for alg in algorithms}
        log.debug(f"{DigestState.STREAMING.value}: {path} chunk_size={chunk_size}")
        total = 0
        try:
            while True:
                chunk = f.read(chunk_size)
                if not chunk:
                    break
                for acc in accs.values():
                    acc.update(chunk)
                total += len(chunk)
        except OSError as exc:
            raise _read_failed(path, total, exc) from exc
    return _finalize(path, accs, total)


def _close_abandoned(fut: "asyncio.Future[BinaryIO]") -> None:
    # Open finished after the waiting task was cancelled: nobody owns the handle.
    if not fut.cancelled() and fut.exception() is None:
        fut.result().close()


async def _open_async(path: Path) -> BinaryIO:
    loop = asyncio.get_running_loop()
    pending = loop.run_in_executor(None, _open, path)
    try:
        return await asyncio.shield(pending)
    except asyncio.CancelledError:
        pending.add_done_callback(_close_abandoned)
        raise


def _close_after_read(f: BinaryIO, fut: "asyncio.Future[bytes]") -> None:
    # The read outlived its cancelled task; close only once it has returned.
    if not fut.cancelled():
        fut.exception()
    f.close()


async def _read_async(f: BinaryIO, chunk_size: int) -> bytes:
    read = asyncio.get_running_loop().run_in_executor(None, f.read, chunk_size)
    try:
        return await asyncio.shield(read)
    except asyncio.CancelledError:
        read.add_done_callback(functools.partial(_close_after_read, f))
        raise


async def _digest_stream_async(
    path: Path, algorithms: List[Algorithm], chunk_size: int
) -> Dict[Algorithm, bytes]:
    f = await _open_async(path)
    # On cancellation the handle belongs to the pending read's callback.
    handed_off = False
    total = 0
    try:
        log.debug(f"{DigestState.OPENED.value}: {path}")
        accs = {alg: _new_accumulator(alg) for alg in algorithms}
        log.debug(f"{DigestState.STREAMING.value}: {path} chunk_size={chunk_size}")
        while True:
            chunk = await _read_async(f, chunk_size)
            if not chunk:
                break
            for acc in accs.values():
                acc.update(chunk)
            total += len(chunk)
    except OSError as exc:
        raise _read_failed(path, total, exc) from exc
    except asyncio.CancelledError:
        handed_off = True
        log.debug(f"{DigestState.ERRORED.value}: {path} cancelled after {total} bytes")
        raise
    finally:
        if not handed_off:
            f.close()
    return _finalize(path, accs, total)


def compute_digest(request: DigestRequest, *, chunk_size: int = CHUNK_SIZE) -> str:
    """
    Stream the file named by `request` and return its rendered digest.

    Raises:
        InvalidArgumentError: bad chunk size (checked before opening).
        NotFoundError, AccessDeniedError, NotARegularFileError: open failed.
        DigestIOError: read failed mid-stream; no digest is produced.
    """
    _check_chunk_size(chunk_size)
    raw = _digest_stream(request.path, [request.algorithm], chunk_size)
    out = render(raw[request.algorithm], request.encoding)
    log.debug(f"{DigestState.RENDERED.value}: {request.path} {request.algorithm.value}")
    return out


async def compute_digest_async(
    request: DigestRequest, *, chunk_size: int = CHUNK_SIZE
) -> str:
    """
    Asyncio flavour of compute_digest(). Opening and every chunk read run in a
    worker thread; the event loop stays free while the file streams in.

    Cancelling the awaiting task closes the file and yields no digest.
    """
    _check_chunk_size(chunk_size)
    raw = await _digest_stream_async(request.path, [request.algorithm], chunk_size)
    out = render(raw[request.algorithm], request.encoding)
    log.debug(f"{DigestState.RENDERED.value}: {request.path} {request.algorithm.value}")
    return out


def hash_file(
    path: PathLike,
    algorithm: Union[Algorithm, str] = Algorithm.SHA512,
    encoding: Union[Encoding, str] = Encoding.BASE64,
    *,
    chunk_size: int = CHUNK_SIZE,
) -> str:
    """Shorthand for compute_digest(DigestRequest(path, algorithm, encoding))."""
    request = DigestRequest(path, algorithm, encoding)  # type: ignore[arg-type]
    return compute_digest(request, chunk_size=chunk_size)


async def hash_file_async(
    path: PathLike,
    algorithm: Union[Algorithm, str] = Algorithm.SHA512,
    encoding: Union[Encoding, str] = Encoding.BASE64,
    *,
    chunk_size: int = CHUNK_SIZE,
) -> str:
    request = DigestRequest(path, algorithm, encoding)  # type: ignore[arg-type]
    return await compute_digest_async(request, chunk_size=chunk_size)


def compute_digests(
    path: PathLike,
    algorithms: Iterable[Union[Algorithm, str]],
    encoding: Union[Encoding, str] = Encoding.BASE64,
    *,
    chunk_size: int = CHUNK_SIZE,
) -> Dict[Algorithm, str]:
    """
    Compute several digests of one file in a single read pass.

    Each algorithm gets its own accumulator; results are keyed by algorithm
    in the order first requested.
    """
    algs = _unique_algorithms(algorithms)
    request = DigestRequest(path, algs[0], encoding)  # type: ignore[arg-type]
    _check_chunk_size(chunk_size)
    raw = _digest_stream(request.path, algs, chunk_size)
    return {alg: render(raw[alg], request.encoding) for alg in algs}


async def compute_digests_async(
    path: PathLike,
    algorithms: Iterable[Union[Algorithm, str]],
    encoding: Union[Encoding, str] = Encoding.BASE64,
    *,
    chunk_size: int = CHUNK_SIZE,
) -> Dict[Algorithm, str]:
    algs = _unique_algorithms(algorithms)
    request = DigestRequest(path, algs[0], encoding)  # type: ignore[arg-type]
    _check_chunk_size(chunk_size)
    raw = await _digest_stream_async(request.path, algs, chunk_size)
    return {alg: render(raw[alg], request.encoding) for alg in algs}


def digests_match(actual: str, expected: str, encoding: Union[Encoding, str]) -> bool:
    """Constant-time comparison; hex is compared case-insensitively."""
    exp = expected.strip()
    if Encoding.parse(encoding) is Encoding.HEX:
        exp = exp.lower()
    return hmac.compare_digest(actual.encode("utf-8"), exp.encode("utf-8"))


def verify_digest(
    request: DigestRequest, expected: str, *, chunk_size: int = CHUNK_SIZE
) -> bool:
    """Return True if the file's digest equals `expected`."""
    return digests_match(
        compute_digest(request, chunk_size=chunk_size), expected, request.encoding
    )
