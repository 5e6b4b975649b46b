"""
Parallel map used by the ensembles.

Every task handed to :func:`parallel_map` must be independent: it receives
its own data slice and pre-drawn seed and returns a fresh result. Results
come back in input order, so reductions over them are identical whether
the tasks ran sequentially or on a worker pool.
"""

from __future__ import annotations

from typing import Any, Callable, Iterable, List, Optional

from joblib import Parallel, delayed


def parallel_map(
    func: Callable[..., Any],
    items: Iterable[Any],
    n_jobs: Optional[int] = None,
) -> List[Any]:
    """
    Apply ``func`` to every item, optionally on a joblib worker pool.

    Parameters
    ----------
    func : callable
        Function of one argument.
    items : iterable
        Arguments, one task per item.
    n_jobs : int or None, default=None
        None or 1 runs a plain loop in the calling thread. Any other value
        is passed to ``joblib.Parallel`` (-1 uses all CPUs).

    Returns
    -------
    results : list
        ``[func(item) for item in items]`` in input order.
    """
    if n_jobs is None or n_jobs == 1:
        return [func(item) for item in items]
    return Parallel(n_jobs=n_jobs, prefer="threads")(
        delayed(func)(item) for item in items
    )


__all__ = ["parallel_map"]
