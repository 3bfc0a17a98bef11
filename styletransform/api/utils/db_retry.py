# styletransform/api/utils/db_retry.py
from sqlalchemy.exc import OperationalError

from styletransform.runtime.retry import with_retry


def _is_transient_lock(err: BaseException) -> bool:
    if not isinstance(err, OperationalError):
        return False
    msg = str(err).lower()
    return "database is locked" in msg or "timeout" in msg


def commit_with_retry(db, retries: int = 5, base_delay: float = 0.05):
    """
    Commits the current transaction with exponential backoff if SQLite is briefly locked.
    Retries up to `retries` times, waiting base_delay * (2**attempt) seconds between tries.
    Raises the last error if all retries fail.
    """
    with_retry(
        db.commit,
        max_attempts=retries + 1,
        is_retryable=_is_transient_lock,
        base_delay=base_delay,
        backoff="exponential",
        label="db.commit",
    )
