import threading
from collections.abc import Iterable

from codeowners_reconcile.utils.ruleset import normalize_username


class DiffResultCache:
    """
    Thread-safe memo of diff-suppression results, keyed by
    `<identity>.<field>`.

    A miss is always safe: callers recompute the comparison and the
    outcome is the same, only slower.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._results: dict[str, bool] = {}

    def get(self, key: str) -> bool | None:
        with self._lock:
            return self._results.get(key)

    def set(self, key: str, value: bool) -> None:
        with self._lock:
            self._results[key] = value

    def clear(self) -> None:
        with self._lock:
            self._results.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._results)


def usernames_diff_suppressed(
    identity: str,
    field: str,
    old: Iterable[str] | None,
    new: Iterable[str] | None,
    cache: DiffResultCache | None = None,
) -> bool:
    """
    True when two username collections only differ by the `@` prefix
    or by ordering.

    `field` may point to a single element of the collection
    (`rules.0.usernames.1`), results are cached per collection.
    """
    field = field.rsplit(".", 1)[0] if field.rsplit(".", 1)[-1].isdigit() else field
    cache_key = f"{identity}.{field}"
    if cache is not None:
        cached = cache.get(cache_key)
        if cached is not None:
            return cached

    if old is None or new is None:
        return False

    result = sorted(normalize_username(u) for u in old) == sorted(
        normalize_username(u) for u in new
    )
    if cache is not None:
        cache.set(cache_key, result)
    return result
