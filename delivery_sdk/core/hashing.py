"""
Deterministic hash primitives used for experiment bucketing.

These must stay bit-for-bit compatible with the other SDKs that assign the
same users, so `hash_code` wraps to a signed 32-bit int on UTF-16 code units
while `combine_hash` does not truncate.
"""

_INT32_MASK = 0xFFFFFFFF
_INT32_SIGN = 0x80000000


def hash_code(value: str) -> int:
    """Java-style `String.hashCode`: `h = h * 31 + c` over UTF-16 code units."""
    if not value:
        return 0
    data = value.encode("utf-16-le", "surrogatepass")
    h = 0
    for i in range(0, len(data), 2):
        h = (h * 31 + (data[i] | (data[i + 1] << 8))) & _INT32_MASK
    if h & _INT32_SIGN:
        h -= 1 << 32
    return h


def combine_hash(hash1: int, hash2: int) -> int:
    """Effective Java combination. No overflow truncation."""
    h = 17
    h = h * 31 + hash1
    h = h * 31 + hash2
    return h


def mod(n: int, m: int) -> int:
    """Mathematical modulo, always in [0, m)."""
    return ((n % m) + m) % m
