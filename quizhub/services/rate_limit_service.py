"""Fixed-window rate limiting, shared through Firestore with an in-process fallback."""

import hashlib

from quizhub.repositories import system_repo

MAX_LOCAL_WINDOWS = 5000


def window_start_for(now_ts, window_seconds):
    return int(now_ts // window_seconds) * int(window_seconds)


def window_counter_id(key, window_seconds, window_start):
    raw = f"{key}|{window_seconds}|{int(window_start)}".encode('utf-8')
    return hashlib.sha256(raw).hexdigest()


def check_rate_limit_firestore(
    key,
    limit,
    window_seconds,
    now_ts,
    *,
    firestore_enabled,
    db,
    firestore_module,
    counter_collection,
    logger=None,
):
    """Return ``(allowed, retry_after)`` or None when the shared store is unusable."""
    if not firestore_enabled or db is None:
        return None
    window_start = window_start_for(now_ts, window_seconds)
    retry_after = max(1, int((window_start + window_seconds) - now_ts))
    counter_ref = system_repo.counter_doc_ref(
        db,
        counter_collection,
        window_counter_id(key, window_seconds, window_start),
    )

    @firestore_module.transactional
    def _consume(txn):
        snapshot = counter_ref.get(transaction=txn)
        count = int((snapshot.to_dict() or {}).get('count', 0) or 0) if snapshot.exists else 0
        if count >= limit:
            return False, retry_after
        txn.set(counter_ref, {
            'key': key,
            'count': count + 1,
            'windowStart': window_start,
            'windowSeconds': int(window_seconds),
            'updatedAt': now_ts,
            'expiresAt': window_start + (window_seconds * 3),
        }, merge=True)
        return True, 0

    try:
        return _consume(db.transaction())
    except Exception as exc:
        if logger is not None:
            logger.warning(f"Shared rate limit unavailable for {key}, using local window: {exc}")
        return None


def consume_local_window(key, limit, window_seconds, now_ts, *, windows, lock):
    if len(windows) > MAX_LOCAL_WINDOWS:
        prune_local_windows(windows, lock, now_ts)
    with lock:
        window = windows.get(key)
        if not window or now_ts >= window['reset_at']:
            window = {'count': 0, 'reset_at': now_ts + window_seconds}
        if window['count'] >= limit:
            windows[key] = window
            return False, max(1, int(window['reset_at'] - now_ts))
        window['count'] += 1
        windows[key] = window
    return True, 0


def prune_local_windows(windows, lock, now_ts):
    with lock:
        expired = [key for key, window in windows.items() if now_ts >= window['reset_at']]
        for key in expired:
            windows.pop(key, None)
    return len(expired)


def check_rate_limit(
    key,
    limit,
    window_seconds,
    *,
    firestore_enabled,
    db,
    firestore_module,
    counter_collection,
    in_memory_windows,
    in_memory_lock,
    time_module,
    logger=None,
):
    now_ts = time_module.time()
    shared_result = check_rate_limit_firestore(
        key,
        limit,
        window_seconds,
        now_ts,
        firestore_enabled=firestore_enabled,
        db=db,
        firestore_module=firestore_module,
        counter_collection=counter_collection,
        logger=logger,
    )
    if shared_result is not None:
        return shared_result
    return consume_local_window(
        key,
        limit,
        window_seconds,
        now_ts,
        windows=in_memory_windows,
        lock=in_memory_lock,
    )
