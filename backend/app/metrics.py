"""
In-process counters for observability. Process-local; for multi-worker use external metrics (e.g. Prometheus).
"""
import threading

# Message send hit the (pair_key, index_message) unique constraint and retried.
message_index_conflicts_total: int = 0
# Demand accept lost a race (conditional update matched nothing or single-mentor index rejected the commit).
demand_accept_conflicts_total: int = 0
# Notification delivery raised; persistence was already committed.
notification_failures_total: int = 0
_lock = threading.Lock()


def increment_message_index_conflicts_total() -> int:
    """Increment message_index_conflicts_total; return new value. Thread-safe."""
    global message_index_conflicts_total
    with _lock:
        message_index_conflicts_total += 1
        return message_index_conflicts_total


def increment_demand_accept_conflicts_total() -> int:
    global demand_accept_conflicts_total
    with _lock:
        demand_accept_conflicts_total += 1
        return demand_accept_conflicts_total


def increment_notification_failures_total() -> int:
    global notification_failures_total
    with _lock:
        notification_failures_total += 1
        return notification_failures_total
