"""
Thread-safe in-memory metrics for the pipeline worker.

Counters are namespaced by prefix:
  - requests.<op>   provider attempts (one per HTTP attempt)
  - retries.<op>    transient failures that were retried
  - errors.<kind>   terminal failures, by error class or stage
  - renders.<state> scene video render outcomes

Everything resets on restart; the render ledger in Supabase is the durable
record.
"""

import time
import threading
from collections import defaultdict, deque
from typing import Deque, Dict

_lock = threading.Lock()

MAX_SAMPLES = 100
MAX_ERRORS = 50

_counters: Dict[str, int] = defaultdict(int)
_gauges: Dict[str, float] = {}
_latency_samples: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=MAX_SAMPLES))
_recent_errors: Deque[dict] = deque(maxlen=MAX_ERRORS)


def inc_counter(name: str, amount: int = 1):
    with _lock:
        _counters[name] += amount


def get_counter(name: str) -> int:
    with _lock:
        return _counters.get(name, 0)


def set_gauge(name: str, value: float):
    with _lock:
        _gauges[name] = value


def record_latency(op: str, duration_ms: float):
    with _lock:
        _latency_samples[op].append(duration_ms)


def record_error(op: str, error_type: str, message: str, project_id: str = ""):
    """Keep the last MAX_ERRORS failures for root-cause analysis."""
    with _lock:
        _counters[f"errors.{error_type}"] += 1
        _recent_errors.append({
            "timestamp": time.time(),
            "op": op,
            "error_type": error_type,
            "message": message[:300],
            "project_id": project_id,
        })


def _percentiles(samples) -> dict:
    ordered = sorted(samples)
    n = len(ordered)
    return {
        "p50": ordered[n // 2],
        "p95": ordered[min(n - 1, int(n * 0.95))],
        "avg": sum(ordered) / n,
        "count": n,
    }


def get_snapshot() -> dict:
    now = time.time()
    with _lock:
        return {
            "timestamp": now,
            "uptime_seconds": now - _gauges.get("start_time", now),
            "counters": dict(_counters),
            "gauges": dict(_gauges),
            "latency": {
                op: _percentiles(samples)
                for op, samples in _latency_samples.items()
                if samples
            },
            "recent_errors": list(_recent_errors)[-10:],
        }


def reset():
    """Drop all collected data (used between tests)."""
    with _lock:
        _counters.clear()
        _gauges.clear()
        _latency_samples.clear()
        _recent_errors.clear()
