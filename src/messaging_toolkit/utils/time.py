import time


def get_current_timestamp() -> int:
    """Milliseconds since the epoch, the unit used for every stored timestamp."""
    return int(time.time() * 1000)
