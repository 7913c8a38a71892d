from __future__ import annotations

import asyncio
import hashlib
import os
import threading
import time
from pathlib import Path

import pytest

import digest
from digest import (
    Algorithm,
    DigestRequest,
    compute_digest_async,
    compute_digests_async,
    hash_file,
    hash_file_async,
)
from errors import DigestIOError, InvalidArgumentError, NotFoundError


class _FakeFile:
    def __init__(self, chunks: list[bytes], fail_at: int | None = None) -> None:
        self.chunks = list(chunks)
        self.fail_at = fail_at
        self.reads = 0
        self.closed = False

    def read(self, n: int) -> bytes:
        self.reads += 1
        if self.fail_at is not None and self.reads == self.fail_at:
            raise OSError(5, "Input/output error")
        return self.chunks.pop(0) if self.chunks else b""

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> "_FakeFile":
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()


async def _wait_closed(handle, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while not handle.closed and time.monotonic() < deadline:
        await asyncio.sleep(0.01)
    return handle.closed


@pytest.mark.asyncio
async def test_async_matches_sync(tmp_path: Path) -> None:
    f = tmp_path / "setup.dmg"
    f.write_bytes(b"x" * 300_000)
    got = await hash_file_async(f, "sha512", "base64", chunk_size=4096)
    assert got == hash_file(f)


@pytest.mark.asyncio
async def test_async_invalid_argument_before_io(tmp_path: Path) -> None:
    with pytest.raises(InvalidArgumentError):
        await hash_file_async(tmp_path / "missing", "crc32", "hex")
    with pytest.raises(InvalidArgumentError):
        await compute_digest_async(DigestRequest(tmp_path / "missing"), chunk_size=-1)


@pytest.mark.asyncio
async def test_async_missing_file(tmp_path: Path) -> None:
    with pytest.raises(NotFoundError):
        await hash_file_async(tmp_path / "missing.exe", "sha256", "hex")


@pytest.mark.asyncio
async def test_async_read_error_closes_handle(monkeypatch) -> None:
    fake = _FakeFile([b"a" * 8] * 10, fail_at=4)
    monkeypatch.setattr(digest, "_open", lambda p: fake)
    with pytest.raises(DigestIOError):
        await compute_digest_async(DigestRequest("big.bin", "sha256", "hex"), chunk_size=8)
    assert fake.closed is True
    assert fake.reads == 4


@pytest.mark.asyncio
async def test_cancel_mid_stream_closes_handle(monkeypatch) -> None:
    started = threading.Event()
    release = threading.Event()

    class BlockingFile(_FakeFile):
        def read(self, n: int) -> bytes:
            self.reads += 1
            if self.reads == 2:
                started.set()
                release.wait(5)
            return b"z" * n

    fake = BlockingFile([])
    monkeypatch.setattr(digest, "_open", lambda p: fake)

    task = asyncio.create_task(
        compute_digest_async(DigestRequest("huge.iso", "sha256", "hex"), chunk_size=16)
    )
    assert await asyncio.to_thread(started.wait, 5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    release.set()
    assert await _wait_closed(fake)


@pytest.mark.asyncio
async def test_concurrent_requests_do_not_mix(tmp_path: Path) -> None:
    a = tmp_path / "a.exe"
    b = tmp_path / "b.exe"
    data_a = b"A" * 100_000
    data_b = b"B" * 70_001
    a.write_bytes(data_a)
    b.write_bytes(data_b)

    results = await asyncio.gather(
        compute_digest_async(DigestRequest(a, "sha256", "hex"), chunk_size=997),
        compute_digest_async(DigestRequest(b, "sha256", "hex"), chunk_size=991),
        compute_digest_async(DigestRequest(a, "sha512", "hex"), chunk_size=4096),
        compute_digest_async(DigestRequest(b, "sha512", "hex"), chunk_size=13),
    )
    assert results == [
        hashlib.sha256(data_a).hexdigest(),
        hashlib.sha256(data_b).hexdigest(),
        hashlib.sha512(data_a).hexdigest(),
        hashlib.sha512(data_b).hexdigest(),
    ]


@pytest.mark.asyncio
async def test_compute_digests_async(tmp_path: Path) -> None:
    f = tmp_path / "app.AppImage"
    f.write_bytes(b"abc")
    out = await compute_digests_async(f, [Algorithm.SHA256, "sha1"], "hex")
    assert out == {
        Algorithm.SHA256: hashlib.sha256(b"abc").hexdigest(),
        Algorithm.SHA1: hashlib.sha1(b"abc").hexdigest(),
    }


@pytest.mark.asyncio
async def test_cancel_during_open_closes_late_handle(monkeypatch) -> None:
    entered = threading.Event()
    release = threading.Event()
    fake = _FakeFile([b"never read"])

    def slow_open(p: Path) -> _FakeFile:
        entered.set()
        release.wait(5)
        return fake

    monkeypatch.setattr(digest, "_open", slow_open)
    task = asyncio.create_task(compute_digest_async(DigestRequest("slow.nfs", "sha256", "hex")))
    assert await asyncio.to_thread(entered.wait, 5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert fake.closed is False
    release.set()
    assert await _wait_closed(fake)
    assert fake.reads == 0


@pytest.mark.asyncio
@pytest.mark.skipif(not hasattr(os, "mkfifo"), reason="needs named pipes")
async def test_cancel_with_read_in_flight_does_not_block_loop(
    tmp_path: Path, monkeypatch
) -> None:
    fifo = tmp_path / "stalled.pipe"
    os.mkfifo(fifo)
    release = threading.Event()

    def writer() -> None:
        with open(fifo, "wb", buffering=0) as w:
            w.write(b"x" * 10)
            release.wait(5)

    handles: list = []
    real_open = digest._open

    def tracking_open(p: Path):
        h = real_open(p)
        handles.append(h)
        return h

    monkeypatch.setattr(digest, "_open", tracking_open)
    feeder = threading.Thread(target=writer, daemon=True)
    feeder.start()

    task = asyncio.create_task(compute_digest_async(DigestRequest(fifo, "sha256", "hex")))
    await asyncio.sleep(0.3)
    task.cancel()
    started = time.monotonic()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert time.monotonic() - started < 1.0

    release.set()
    await asyncio.to_thread(feeder.join, 5)
    assert handles and await _wait_closed(handles[0])
