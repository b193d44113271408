import logging
import time
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Callable, Dict, List, Optional, Tuple, TypeVar

import numpy as np

from .exceptions import DegenerateWeightsError

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(level: str = "INFO", fmt: str = LOG_FORMAT) -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=fmt)


R = TypeVar("R")


def parallel_map(fn: Callable[[int], R], n_items: int, n_threads: int = 1) -> List[R]:
    """
    Apply fn to 0..n_items-1 on up to n_threads worker threads.

    Results come back in index order. An exception raised by fn is
    re-raised in the calling thread.
    """
    if n_threads <= 1 or n_items <= 1:
        return [fn(i) for i in range(n_items)]

    with ThreadPoolExecutor(max_workers=min(n_threads, n_items)) as executor:
        return list(executor.map(fn, range(n_items)))


def logsumexp(a: np.ndarray, axis: Optional[int] = None) -> np.ndarray:
    """
    Numerically stable log(sum(exp(a))).

    Returns -inf for an empty input or when every entry is -inf.
    """
    a = np.asarray(a, dtype=np.float64)
    if a.size == 0:
        return -np.inf

    a_max = np.max(a, axis=axis, keepdims=True)
    a_max = np.where(np.isfinite(a_max), a_max, 0.0)

    with np.errstate(divide="ignore"):
        out = np.log(np.sum(np.exp(a - a_max), axis=axis, keepdims=True)) + a_max

    if axis is None:
        return float(out.reshape(()))
    return np.squeeze(out, axis=axis)


def check_log_weights(log_weights: np.ndarray) -> np.ndarray:
    """
    Validate a log-weight vector before any exponential is taken.

    Raises:
        DegenerateWeightsError: on NaN or +inf entries, or when every
            entry is -inf (all particles have zero weight).
    """
    log_weights = np.asarray(log_weights, dtype=np.float64)
    if np.any(np.isnan(log_weights)):
        raise DegenerateWeightsError("log-weights contain NaN")
    if np.any(np.isposinf(log_weights)):
        raise DegenerateWeightsError("log-weights contain +inf")
    if log_weights.size and not np.any(np.isfinite(log_weights)):
        raise DegenerateWeightsError("all particle weights are zero")
    return log_weights


def normalize_log_weights(log_weights: np.ndarray) -> Tuple[np.ndarray, float]:
    """
    Turn unnormalised log-weights into probabilities.

    Args:
        log_weights: Unnormalised log-weights (shape: [N])

    Returns:
        Tuple of (probabilities summing to one, log normalising constant)
    """
    log_weights = check_log_weights(log_weights)
    if log_weights.size == 0:
        return np.array([], dtype=np.float64), -np.inf

    log_z = logsumexp(log_weights)
    probs = np.exp(log_weights - log_z)
    probs /= probs.sum()
    return probs, float(log_z)


def compute_ess(log_weights: np.ndarray) -> float:
    """
    Effective sample size from log-weights.

        ESS = exp(2 * log(sum exp(w_i)) - log(sum exp(2 * w_i)))

    Sums are taken in extended precision after shifting by the maximum
    log-weight, which leaves the ratio unchanged. The result lies in
    [1, N]: N for uniform weights, 1 when a single particle holds the mass.

    Raises:
        DegenerateWeightsError: if the weights cannot be normalised.
    """
    log_weights = check_log_weights(log_weights)
    n = log_weights.size
    if n == 0:
        return 0.0

    w = log_weights.astype(np.longdouble)
    w = w - np.max(w)
    total = np.sum(np.exp(w))
    total_sq = np.sum(np.exp(2 * w))
    ess = (total * total) / total_sq

    return float(min(max(ess, 1.0), float(n)))


class TimingStats:
    """Accumulates wall-clock time per named stage."""

    def __init__(self):
        self._totals: Dict[str, float] = defaultdict(float)
        self._counts: Dict[str, int] = defaultdict(int)

    @contextmanager
    def time(self, name: str):
        start = time.perf_counter()
        try:
            yield
        finally:
            self._totals[name] += time.perf_counter() - start
            self._counts[name] += 1

    def reset(self):
        self._totals.clear()
        self._counts.clear()

    def get_stats(self) -> Dict[str, Dict[str, float]]:
        return {
            name: {
                "total": total,
                "count": self._counts[name],
                "mean": total / max(self._counts[name], 1),
            }
            for name, total in self._totals.items()
        }

    def summary(self) -> str:
        lines = ["Timing summary:"]
        for name, stats in sorted(self.get_stats().items(), key=lambda kv: -kv[1]["total"]):
            lines.append(
                f"  {name}: {stats['total']:.3f}s over {stats['count']} calls "
                f"({stats['mean'] * 1000:.2f}ms/call)"
            )
        return "\n".join(lines)
