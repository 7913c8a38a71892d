"""
CLI entrypoint:
- hash: digest one or more files (SHA-512/base64 unless told otherwise)
- verify: compare a file against an expected digest
- update-info: size + sha512 + sha2 records for installer artifacts
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

import typer

from artifact import describe_artifacts
from config import AppConfig, DigestConfig
from digest import (
    Algorithm,
    DigestRequest,
    Encoding,
    compute_digest_async,
    compute_digests_async,
    verify_digest,
)
from errors import ConfigLoadError, DigestError, InternalError, InvalidArgumentError
from logs import get_logger, init_logging

__version__ = "0.1.0"

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="Installer Digest: streaming file checksums for release artifacts",
)

log = get_logger("idg")


@app.callback()
def main(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose (DEBUG) logging"
    ),
) -> None:
    init_logging(level="DEBUG" if verbose else None)
    global log
    log = get_logger("idg.cli")
    if verbose:
        log.debug("Verbose logging enabled")


@app.command("version")
def version_cmd() -> None:
    typer.echo(f"installer-digest v{__version__}")


def _settings(
    config_file: Optional[Path],
    algorithm: Optional[List[str]],
    encoding: Optional[str],
) -> Tuple[DigestConfig, List[Algorithm], Encoding]:
    cfg = AppConfig.load(config_file).digest
    algs = [Algorithm.parse(a) for a in algorithm] if algorithm else [cfg.algorithm]
    enc = Encoding.parse(encoding) if encoding else cfg.encoding
    return cfg, algs, enc


async def _hash_all(
    files: List[Path], algs: List[Algorithm], enc: Encoding, cfg: DigestConfig
) -> List[Union[Dict[Algorithm, str], BaseException]]:
    gate = asyncio.Semaphore(cfg.concurrency)

    async def one(path: Path) -> Dict[Algorithm, str]:
        async with gate:
            if len(algs) == 1:
                request = DigestRequest(path, algs[0], enc)
                return {algs[0]: await compute_digest_async(request, chunk_size=cfg.chunk_size)}
            return await compute_digests_async(path, algs, enc, chunk_size=cfg.chunk_size)

    return await asyncio.gather(*(one(p) for p in files), return_exceptions=True)


# -------------------------------- hash ----------------------------------------


@app.command("hash")
def hash_cmd(
    files: List[Path] = typer.Argument(..., help="Files to digest"),
    algorithm: Optional[List[str]] = typer.Option(
        None, "--algorithm", "-a", help="Digest algorithm (repeatable)"
    ),
    encoding: Optional[str] = typer.Option(
        None, "--encoding", "-e", help="hex or base64"
    ),
    json_out: bool = typer.Option(False, "--json", help="Emit JSON"),
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to digest.toml"
    ),
) -> None:
    """Print `<digest>  <path>` for each file."""
    try:
        cfg, algs, enc = _settings(config_file, algorithm, encoding)
        results = asyncio.run(_hash_all(files, algs, enc, cfg))
    except (InvalidArgumentError, ConfigLoadError) as exc:
        log.error(f"[red]Error:[/] {exc}")
        raise typer.Exit(code=2)

    failed = 0
    payload = []
    for path, res in zip(files, results):
        if isinstance(res, DigestError):
            failed += 1
            log.error(f"[red]Error:[/] {res}")
            continue
        if isinstance(res, BaseException):
            log.error(f"Unexpected error while hashing {path}", exc_info=res)
            raise typer.Exit(code=1) from InternalError(
                "Unexpected failure. Re-run with -v for details."
            )
        if json_out:
            payload.append(
                {
                    "path": str(path),
                    "encoding": enc.value,
                    "digests": {alg.value: d for alg, d in res.items()},
                }
            )
        elif len(algs) == 1:
            typer.echo(f"{res[algs[0]]}  {path}")
        else:
            for alg, d in res.items():
                typer.echo(f"{alg.value}  {d}  {path}")

    if json_out:
        typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))
    if failed:
        raise typer.Exit(code=1)


# ------------------------------- verify ---------------------------------------


@app.command("verify")
def verify_cmd(
    file: Path = typer.Argument(..., help="File to check"),
    expected: str = typer.Argument(..., help="Expected digest"),
    algorithm: Optional[str] = typer.Option(None, "--algorithm", "-a"),
    encoding: Optional[str] = typer.Option(None, "--encoding", "-e"),
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to digest.toml"
    ),
) -> None:
    """Exit 0 if FILE matches EXPECTED, 1 otherwise."""
    try:
        cfg, algs, enc = _settings(config_file, [algorithm] if algorithm else None, encoding)
        ok = verify_digest(DigestRequest(file, algs[0], enc), expected, chunk_size=cfg.chunk_size)
    except (InvalidArgumentError, ConfigLoadError) as exc:
        log.error(f"[red]Error:[/] {exc}")
        raise typer.Exit(code=2)
    except DigestError as exc:
        log.error(f"[red]Error:[/] {exc}")
        raise typer.Exit(code=1)

    if not ok:
        typer.echo(f"MISMATCH  {file}")
        raise typer.Exit(code=1)
    typer.echo(f"OK  {file}")


# ---------------------------- update-info -------------------------------------


@app.command("update-info")
def update_info_cmd(
    files: List[Path] = typer.Argument(..., help="Installer artifacts"),
    sha2: bool = typer.Option(True, "--sha2/--no-sha2", help="Include hex SHA-256"),
    config_file: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to digest.toml"
    ),
) -> None:
    """Emit JSON records (url, size, sha512, sha2) for auto-update metadata."""
    try:
        cfg = AppConfig.load(config_file).digest
        results = asyncio.run(
            describe_artifacts(
                files,
                with_sha2=sha2,
                chunk_size=cfg.chunk_size,
                concurrency=cfg.concurrency,
                return_exceptions=True,
            )
        )
    except ConfigLoadError as exc:
        log.error(f"[red]Error:[/] {exc}")
        raise typer.Exit(code=2)

    failed = 0
    payload = []
    for path, res in zip(files, results):
        if isinstance(res, DigestError):
            failed += 1
            log.error(f"[red]Error:[/] {res}")
            continue
        if isinstance(res, BaseException):
            log.error(f"Unexpected error while describing {path}", exc_info=res)
            raise typer.Exit(code=1) from InternalError(
                "Unexpected failure. Re-run with -v for details."
            )
        payload.append(res.model_dump(mode="json", exclude_none=True))

    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2))
    if failed:
        raise typer.Exit(code=1)
