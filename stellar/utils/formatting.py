"""Human-readable formatting for sizes and durations."""

KB = 1024
MB = KB * 1024
GB = MB * 1024


def format_size(num_bytes: int) -> str:
    """Format a byte count, e.g. ``1536`` -> ``"1.50 KB"``."""
    if num_bytes >= GB:
        return f"{num_bytes / GB:.2f} GB"
    if num_bytes >= MB:
        return f"{num_bytes / MB:.2f} MB"
    if num_bytes >= KB:
        return f"{num_bytes / KB:.2f} KB"
    return f"{num_bytes} B"


def format_duration(duration_ms: float) -> str:
    """Format a duration in milliseconds, e.g. ``2500`` -> ``"2.5 s"``."""
    if duration_ms >= 60000:
        return f"{duration_ms / 60000:.1f} min"
    if duration_ms >= 1000:
        return f"{duration_ms / 1000:.1f} s"
    return f"{int(duration_ms)} ms"
