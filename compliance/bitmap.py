"""
Eligibility Bitmap Codec
========================

[LAYOUT] Mask-friendly bit layout:
- bit 0       -> accredited investor
- bits 1..5   -> region (EU, US, APAC, LATAM, OTHER)
- bits 10..14 -> trade-size bucket (100 .. 1000000)

A bitmap built from a profile has exactly one region bit and one bucket
bit. A rule mask is an arbitrary combination of bits, all of which must be
present in the user's bitmap.

[BUCKETS] Containment is exact-bit: a pool requiring bucket 1000 does not
accept bucket 10000.
"""

from enum import Enum
from typing import Iterable, List


class Region(str, Enum):
    EU = "EU"
    US = "US"
    APAC = "APAC"
    LATAM = "LATAM"
    OTHER = "OTHER"


class Bucket(str, Enum):
    B100 = "100"
    B1K = "1000"
    B10K = "10000"
    B100K = "100000"
    B1M = "1000000"


ACCREDITED_BIT = 0

REGION_BITS = {
    Region.EU: 1,
    Region.US: 2,
    Region.APAC: 3,
    Region.LATAM: 4,
    Region.OTHER: 5,
}

BUCKET_BITS = {
    Bucket.B100: 10,
    Bucket.B1K: 11,
    Bucket.B10K: 12,
    Bucket.B100K: 13,
    Bucket.B1M: 14,
}


def build_bitmap(accredited: bool, region: Region, bucket: Bucket) -> int:
    """
    Pack eligibility attributes into a bitmap.

    Args:
        accredited: Accredited-investor flag
        region: Declared region (sets exactly one region bit)
        bucket: Max trade-size bucket (sets exactly one bucket bit)

    Returns:
        Integer bitmap
    """
    bitmap = 0
    if accredited:
        bitmap |= 1 << ACCREDITED_BIT
    bitmap |= 1 << REGION_BITS[Region(region)]
    bitmap |= 1 << BUCKET_BITS[Bucket(bucket)]
    return bitmap


def build_rule_mask(
    accredited: bool = False,
    regions: Iterable[Region] = (),
    buckets: Iterable[Bucket] = (),
) -> int:
    """
    Build a pool policy mask from required attributes.

    Every bit set here must be present in a user's bitmap. Requiring two
    regions therefore admits nobody built by `build_bitmap`.
    """
    mask = 0
    if accredited:
        mask |= 1 << ACCREDITED_BIT
    for region in regions:
        mask |= 1 << REGION_BITS[Region(region)]
    for bucket in buckets:
        mask |= 1 << BUCKET_BITS[Bucket(bucket)]
    return mask


def default_rule_mask() -> int:
    """Demo policy: accredited + EU + bucket=1000."""
    return build_rule_mask(accredited=True, regions=[Region.EU], buckets=[Bucket.B1K])


def evaluate(user_bitmap: int, rule_mask: int) -> bool:
    """
    Eligibility predicate: every bit of the rule must be set for the user.

    A zero mask is trivially satisfied. Whether a zero mask means "pool not
    configured" is decided by the evaluator, not here.
    """
    return (user_bitmap & rule_mask) == rule_mask


def describe_bitmap(bits: int) -> List[str]:
    """Human-readable labels for the set bits, e.g. ['accredited', 'region:EU']."""
    labels = []
    if bits & (1 << ACCREDITED_BIT):
        labels.append("accredited")
    for region, bit in REGION_BITS.items():
        if bits & (1 << bit):
            labels.append(f"region:{region.value}")
    for bucket, bit in BUCKET_BITS.items():
        if bits & (1 << bit):
            labels.append(f"bucket:{bucket.value}")
    return labels


def parse_mask(text: str) -> int:
    """
    Parse a mask typed by an operator.

    Accepts decimal ("2051") or hex ("0x803"). Negative values are rejected.
    """
    value = int(str(text).strip(), 0)
    if value < 0:
        raise ValueError(f"Mask must be non-negative: {text}")
    return value
