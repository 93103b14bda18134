"""Entry point for the OS share hook.

Runs as its own short-lived process next to the main app. Both processes
build their own EngineRuntime over the same data dir, so quota and cache are
shared, and an invocation lock keeps a double-fired share trigger from being
analyzed (and charged) twice.
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from worthit_config import LOG_LEVEL, EngineSettings
from worthit_engine.analysis import ContentAnalysis
from worthit_engine.errors import PartialFetchFailure, QuotaExceeded, ValidationError, WorthItError
from worthit_engine.orchestrator import PipelineState
from worthit_engine.state_store.quota import PaywallContext
from worthit_engine.state_store.runtime import EngineRuntime
from worthit_utils import VIDEO_ID_RE, extract_youtube_id

logger = logging.getLogger(__name__)

STATUS_READY = "ready"
STATUS_DUPLICATE = "duplicate"
STATUS_DENIED = "denied"
STATUS_INVALID = "invalid"
STATUS_FAILED = "failed"
STATUS_SUPERSEDED = "superseded"

_EXIT_CODES = {
    STATUS_READY: 0,
    STATUS_DUPLICATE: 0,
    STATUS_SUPERSEDED: 0,
    STATUS_FAILED: 1,
    STATUS_INVALID: 2,
    STATUS_DENIED: 3,
}


@dataclass
class ShareOutcome:
    status: str
    content_id: str = ""
    analysis: Optional[ContentAnalysis] = None
    cached: bool = False
    paywall: Optional[PaywallContext] = None
    error: str = ""
    retryable: bool = False

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "content_id": self.content_id,
            "cached": self.cached,
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "paywall": self.paywall.to_dict() if self.paywall else None,
            "error": self.error,
            "retryable": self.retryable,
        }


def share_lock_scope(reference: str, owner_scope: str) -> str:
    ref = str(reference or "").strip()
    vid = extract_youtube_id(ref) or (ref if VIDEO_ID_RE.match(ref) else "")
    return f"share:{owner_scope}:{vid or ref}"


async def run_share_flow(
    reference: str,
    owner_scope: str,
    runtime: EngineRuntime,
    *,
    is_subscribed: bool = False,
    is_complimentary: bool = False,
    languages: Optional[Sequence[str]] = None,
    lock_timeout: Optional[float] = None,
) -> ShareOutcome:
    scope = share_lock_scope(reference, owner_scope)
    timeout = runtime.settings.lock_timeout_sec if lock_timeout is None else lock_timeout
    handle = await runtime.locks.try_acquire(scope, timeout)
    if handle is None:
        logger.info("Share for %s already running; ignoring duplicate trigger", scope)
        return ShareOutcome(status=STATUS_DUPLICATE)

    try:
        try:
            result = await runtime.orchestrator.analyze(
                reference,
                owner_scope,
                is_subscribed=is_subscribed,
                is_complimentary=is_complimentary,
                languages=languages,
            )
        except ValidationError as exc:
            return ShareOutcome(status=STATUS_INVALID, error=str(exc))
        except QuotaExceeded as exc:
            return ShareOutcome(status=STATUS_DENIED, paywall=exc.paywall, error=str(exc))
        except PartialFetchFailure as exc:
            logger.warning("Share analysis failed for %s: %s", scope, exc)
            return ShareOutcome(status=STATUS_FAILED, error=str(exc), retryable=True)
        except WorthItError as exc:
            logger.warning("Share analysis failed for %s: %s", scope, exc)
            return ShareOutcome(status=STATUS_FAILED, error=str(exc), retryable=exc.retryable)

        if result.state == PipelineState.SUPERSEDED:
            return ShareOutcome(status=STATUS_SUPERSEDED, content_id=result.content_id)
        return ShareOutcome(
            status=STATUS_READY,
            content_id=result.content_id,
            analysis=result.analysis,
            cached=result.cached,
        )
    finally:
        await runtime.locks.release(handle)


async def _main_async(args) -> ShareOutcome:
    settings = EngineSettings.from_env(Path(args.data_dir).expanduser() if args.data_dir else None)
    runtime = EngineRuntime(settings)
    try:
        return await run_share_flow(
            args.reference,
            args.owner,
            runtime,
            is_subscribed=args.subscribed,
            is_complimentary=args.complimentary,
            languages=[x.strip() for x in args.langs.split(",") if x.strip()] if args.langs else None,
        )
    finally:
        await runtime.close(timeout=args.refresh_wait)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Analyze a shared video link and print one JSON line.")
    parser.add_argument("reference", help="Video URL or id as received from the share sheet.")
    parser.add_argument("--owner", default="local", help="Owner scope the daily allowance is counted against.")
    parser.add_argument("--subscribed", action="store_true", help="Caller holds an active subscription.")
    parser.add_argument("--complimentary", action="store_true", help="Caller has complimentary access.")
    parser.add_argument("--langs", default="", help="Comma-separated transcript language fallbacks.")
    parser.add_argument("--data-dir", default="", help="Override WORTHIT_DATA_DIR.")
    parser.add_argument(
        "--refresh-wait",
        type=float,
        default=10.0,
        help="Seconds to let a background cache refresh finish before exiting.",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        level=getattr(logging, LOG_LEVEL, logging.INFO),
        stream=sys.stderr,
    )
    outcome = asyncio.run(_main_async(args))
    print(json.dumps(outcome.to_dict(), ensure_ascii=False))
    return _EXIT_CODES.get(outcome.status, 1)


if __name__ == "__main__":
    raise SystemExit(main())
