# orchestration/cli_runner.py
"""Runs a YAML manifest of generation operations through the runtime."""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any

import structlog

from caching.keys import generate_cache_key
from models.batch_models import BatchOperation, BatchResult
from utils.logging import setup_logging
from utils.yaml_loader import load_yaml_file

from .runtime import PagewrightRuntime

logger = structlog.get_logger(__name__)


class ManifestError(ValueError):
    """The manifest file is missing or malformed."""


def operations_from_manifest(manifest: dict[str, Any]) -> list[BatchOperation]:
    entries = manifest.get("operations")
    if not isinstance(entries, list) or not entries:
        raise ManifestError("Manifest must contain a non-empty 'operations' list")

    operations: list[BatchOperation] = []
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict) or "type" not in entry:
            raise ManifestError(f"Operation #{index} must be a mapping with a 'type'")
        params = entry.get("params") or {}
        cache_key = entry.get("cache_key")
        if cache_key is None and entry.get("cache", True):
            cache_key = generate_cache_key(
                json.dumps(params, sort_keys=True, default=str),
                model=params.get("model"),
                max_tokens=params.get("max_tokens"),
                temperature=params.get("temperature"),
                system_prompt=params.get("system_prompt"),
                operation=str(entry["type"]),
            )
        try:
            operations.append(
                BatchOperation(
                    type=entry["type"],
                    params=params,
                    priority=int(entry.get("priority", 0)),
                    cache_key=cache_key,
                    id=str(entry.get("id") or ""),
                )
            )
        except ValueError as exc:
            raise ManifestError(f"Operation #{index}: {exc}") from exc
    return operations


def _result_row(result: BatchResult) -> dict[str, Any]:
    return {
        "id": result.id,
        "success": result.success,
        "cached": result.cached,
        "cost": result.cost,
        "processing_time_ms": round(result.processing_time_ms, 1),
        "attempts": result.attempts,
        "error": result.error,
        "content": result.content,
    }


async def run_manifest(
    manifest_path: str,
    output_path: str | None = None,
    runtime: PagewrightRuntime | None = None,
) -> dict[str, BatchResult]:
    manifest = load_yaml_file(manifest_path)
    if manifest is None:
        raise ManifestError(f"Could not load manifest '{manifest_path}'")
    operations = operations_from_manifest(manifest)

    async with runtime or PagewrightRuntime() as rt:
        ids = [await rt.submit_work(op) for op in operations]
        timeout = manifest.get("await_timeout")
        if timeout is None:
            results = await rt.run_all()
        else:
            results = {r.id: r for r in await rt.await_results(ids, float(timeout))}

        for op_id in ids:
            result = results[op_id]
            log = logger.info if result.success else logger.error
            log(
                "Operation finished",
                op_id=op_id,
                success=result.success,
                cached=result.cached,
                cost=round(result.cost, 6),
                error=result.error,
            )
        logger.info("Scheduler stats", **rt.get_scheduler_stats())
        cache_stats = await rt.get_cache_stats()
        logger.info(
            "Cache stats",
            hot_hit_rate=cache_stats["hot"]["hit_rate"],
            hot_size=cache_stats["hot"]["size"],
            rejected_writes=cache_stats["rejected_writes"],
        )

    if output_path:
        out_dir = os.path.dirname(output_path)
        if out_dir:
            os.makedirs(out_dir, exist_ok=True)
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump([_result_row(results[i]) for i in ids], f, indent=2)
        logger.info("Results written", path=output_path)
    return {op_id: results[op_id] for op_id in ids}


def run(manifest_path: str, output_path: str | None = None) -> int:
    """Run a manifest and return a process exit code."""
    setup_logging()
    try:
        results = asyncio.run(run_manifest(manifest_path, output_path))
    except ManifestError as err:
        logger.error("Invalid manifest", error=str(err))
        return 2
    except KeyboardInterrupt:
        logger.info("Pagewright shutting down due to KeyboardInterrupt...")
        return 130
    failed = sum(1 for r in results.values() if not r.success)
    return 1 if failed else 0
