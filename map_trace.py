"""
Request-scoped tracing of map backend calls.

A thread-local TraceContext collects one record per outbound call (or cache
hit / fallback) made while serving a driver-console request:

    from map_trace import TraceContext, get_trace, set_trace, clear_trace

    ctx = TraceContext(trace_id=request_id)
    set_trace(ctx)
    ...
    ctx.log_summary()
    clear_trace()

API clients record into whatever context is active:

    trace = get_trace()
    if trace:
        trace.record_api_call(...)
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class APICallRecord:
    """One map data call as seen from the client."""
    service: str          # "map_api"
    endpoint: str         # "search", "reverse", "nearby", "route", ...
    elapsed_ms: int
    status_code: int      # 0 when no HTTP response was received
    provider_status: str = ""   # "cache_hit", "rate_limit", "fallback", "timeout", ...


@dataclass
class TraceContext:
    """Accumulates call records for a single driver-console request."""
    trace_id: str
    request_start: float = field(default_factory=time.time)
    api_calls: List[APICallRecord] = field(default_factory=list)

    def record_api_call(
        self,
        service: str,
        endpoint: str,
        elapsed_ms: int,
        status_code: int,
        provider_status: str = "",
    ):
        rec = APICallRecord(
            service=service,
            endpoint=endpoint,
            elapsed_ms=elapsed_ms,
            status_code=status_code,
            provider_status=provider_status,
        )
        self.api_calls.append(rec)
        logger.info(
            "  [api] trace=%s svc=%s ep=%s ms=%d http=%d provider=%s",
            self.trace_id,
            service,
            endpoint,
            elapsed_ms,
            status_code,
            provider_status,
        )

    def summary_dict(self) -> Dict[str, Any]:
        total_elapsed = int((time.time() - self.request_start) * 1000)
        cache_hits = sum(1 for c in self.api_calls if c.provider_status == "cache_hit")
        fallbacks = sum(1 for c in self.api_calls if c.provider_status == "fallback")
        network = [c for c in self.api_calls if c.provider_status not in ("cache_hit", "fallback")]
        # Successful network calls carry an empty provider_status.
        failed = [c for c in network if c.provider_status]
        return {
            "trace_id": self.trace_id,
            "total_elapsed_ms": total_elapsed,
            "network_calls": len(network),
            "failed_calls": len(failed),
            "cache_hits": cache_hits,
            "fallbacks": fallbacks,
        }

    def log_summary(self):
        """Emit a single structured summary log line."""
        s = self.summary_dict()
        logger.info(
            "[trace-summary] trace=%s total_ms=%d network=%d failed=%d cache_hits=%d fallbacks=%d",
            s["trace_id"],
            s["total_elapsed_ms"],
            s["network_calls"],
            s["failed_calls"],
            s["cache_hits"],
            s["fallbacks"],
        )

    def api_calls_to_list(self) -> List[Dict[str, Any]]:
        return [
            {
                "service": c.service,
                "endpoint": c.endpoint,
                "elapsed_ms": c.elapsed_ms,
                "status_code": c.status_code,
                "provider_status": c.provider_status,
            }
            for c in self.api_calls
        ]


# =============================================================================
# Thread-local storage
# =============================================================================

_trace_local = threading.local()


def get_trace() -> Optional[TraceContext]:
    """Get the current request's trace context, or None."""
    return getattr(_trace_local, "ctx", None)


def set_trace(ctx: Optional[TraceContext]):
    _trace_local.ctx = ctx


def clear_trace():
    _trace_local.ctx = None
