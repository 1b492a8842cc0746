"""Parallel upload utilities."""
def get_parallel_count(avg_size: float, max_parallel: int) -> int:
    """
    Get parallel pipeline count based on average file size.

    Small photos benefit from more parallelism; large ones are capped lower
    to keep decoded images in memory bounded. Never exceeds ``max_parallel``.
    """
    MB = 1024 * 1024

    if avg_size < 1 * MB:
        count = 8  # Small files: high parallelism
    elif avg_size < 10 * MB:
        count = 4  # Medium files: moderate parallelism
    else:
        count = 2  # Large files: each decode holds the full bitmap

    return max(1, min(count, max_parallel))
