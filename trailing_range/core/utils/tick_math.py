"""Concentrated-liquidity tick math. Pure functions, integer Q64.96 arithmetic."""

from __future__ import annotations

import math

from trailing_range.core.errors import ValidationError

Q96 = 1 << 96
Q32 = 1 << 32
TICK_BASE = 1.0001

MIN_TICK = -887272
MAX_TICK = 887272


def sqrt_price_x96_from_tick(tick: int) -> int:
    if tick < MIN_TICK or tick > MAX_TICK:
        raise ValueError(f"tick {tick} out of range [{MIN_TICK}, {MAX_TICK}]")

    abs_tick = tick if tick >= 0 else -tick
    ratio = 0x100000000000000000000000000000000

    if abs_tick & 0x1:
        ratio = (ratio * 0xFFFCB933BD6FAD37AA2D162D1A594001) >> 128
    if abs_tick & 0x2:
        ratio = (ratio * 0xFFF97272373D413259A46990580E213A) >> 128
    if abs_tick & 0x4:
        ratio = (ratio * 0xFFF2E50F5F656932EF12357CF3C7FDCC) >> 128
    if abs_tick & 0x8:
        ratio = (ratio * 0xFFE5CACA7E10E4E61C3624EAA0941CD0) >> 128
    if abs_tick & 0x10:
        ratio = (ratio * 0xFFCB9843D60F6159C9DB58835C926644) >> 128
    if abs_tick & 0x20:
        ratio = (ratio * 0xFF973B41FA98C081472E6896DFB254C0) >> 128
    if abs_tick & 0x40:
        ratio = (ratio * 0xFF2EA16466C96A3843EC78B326B52861) >> 128
    if abs_tick & 0x80:
        ratio = (ratio * 0xFE5DEE046A99A2A811C461F1969C3053) >> 128
    if abs_tick & 0x100:
        ratio = (ratio * 0xFCBE86C7900A88AEDCFFC83B479AA3A4) >> 128
    if abs_tick & 0x200:
        ratio = (ratio * 0xF987A7253AC413176F2B074CF7815E54) >> 128
    if abs_tick & 0x400:
        ratio = (ratio * 0xF3392B0822B70005940C7A398E4B70F3) >> 128
    if abs_tick & 0x800:
        ratio = (ratio * 0xE7159475A2C29B7443B29C7FA6E889D9) >> 128
    if abs_tick & 0x1000:
        ratio = (ratio * 0xD097F3BDFD2022B8845AD8F792AA5825) >> 128
    if abs_tick & 0x2000:
        ratio = (ratio * 0xA9F746462D870FDF8A65DC1F90E061E5) >> 128
    if abs_tick & 0x4000:
        ratio = (ratio * 0x70D869A156D2A1B890BB3DF62BAF32F7) >> 128
    if abs_tick & 0x8000:
        ratio = (ratio * 0x31BE135F97D08FD981231505542FCFA6) >> 128
    if abs_tick & 0x10000:
        ratio = (ratio * 0x9AA508B5B7A84E1C677DE54F3E99BC9) >> 128
    if abs_tick & 0x20000:
        ratio = (ratio * 0x5D6AF8DEDB81196699C329225EE604) >> 128
    if abs_tick & 0x40000:
        ratio = (ratio * 0x2216E584F5FA1EA926041BEDFE98) >> 128
    if abs_tick & 0x80000:
        ratio = (ratio * 0x48A170391F7DC42444E8FA2) >> 128

    if tick > 0:
        ratio = (1 << 256) // ratio

    sqrt_price_x96 = ratio >> 32
    if ratio & (Q32 - 1):
        sqrt_price_x96 += 1
    return int(sqrt_price_x96)


def round_tick_down(tick: int, spacing: int) -> int:
    # floor division rounds toward -inf for negative ticks too
    return (tick // spacing) * spacing


def round_tick_up(tick: int, spacing: int) -> int:
    remainder = tick % spacing
    if remainder == 0:
        return tick
    return tick + (spacing - remainder)


def usable_tick_bounds(spacing: int) -> tuple[int, int]:
    """Most extreme ticks that are multiples of ``spacing`` inside the global bounds."""
    return round_tick_up(MIN_TICK, spacing), round_tick_down(MAX_TICK, spacing)


def bps_to_ticks(bps: int) -> int:
    """Number of whole ticks covering a relative price move of ``bps``."""
    if bps <= 0:
        return 0
    return math.floor(math.log(1 + bps / 10_000) / math.log(TICK_BASE))


def compute_new_range(
    current_tick: int, range_width_ticks: int, tick_spacing: int
) -> tuple[int, int]:
    """Center a range of ``range_width_ticks`` on ``current_tick``.

    Both bounds are floor-aligned to ``tick_spacing`` and clamped to the usable
    tick bounds. The result always spans at least one spacing.
    """
    if tick_spacing <= 0:
        raise ValidationError("tick spacing must be positive", tick_spacing=tick_spacing)
    if range_width_ticks <= 0:
        raise ValidationError(
            "range width must be positive", range_width_ticks=range_width_ticks
        )

    half_width = range_width_ticks // 2
    min_usable, max_usable = usable_tick_bounds(tick_spacing)

    lower = round_tick_down(current_tick - half_width, tick_spacing)
    upper = round_tick_down(current_tick + half_width, tick_spacing)
    lower = min(max(lower, min_usable), max_usable)
    upper = min(max(upper, min_usable), max_usable)

    if upper <= lower:
        upper = lower + tick_spacing
        if upper > max_usable:
            upper = max_usable
            lower = max_usable - tick_spacing
    return lower, upper


def _liquidity_for_amount0(sqrt_a: int, sqrt_b: int, amount0: int) -> int:
    """L = amount0 * sqrtA * sqrtB / ((sqrtB - sqrtA) * Q96)"""
    if sqrt_b <= sqrt_a:
        return 0
    return (amount0 * sqrt_a * sqrt_b) // ((sqrt_b - sqrt_a) * Q96)


def _liquidity_for_amount1(sqrt_a: int, sqrt_b: int, amount1: int) -> int:
    """L = amount1 * Q96 / (sqrtB - sqrtA)"""
    if sqrt_b <= sqrt_a:
        return 0
    return (amount1 * Q96) // (sqrt_b - sqrt_a)


def _amount0_for_liquidity(sqrt_a: int, sqrt_b: int, liquidity: int) -> int:
    if sqrt_b <= sqrt_a or sqrt_a == 0:
        return 0
    return (liquidity * Q96 * (sqrt_b - sqrt_a)) // (sqrt_a * sqrt_b)


def _amount1_for_liquidity(sqrt_a: int, sqrt_b: int, liquidity: int) -> int:
    if sqrt_b <= sqrt_a:
        return 0
    return (liquidity * (sqrt_b - sqrt_a)) // Q96


def liquidity_for_amounts(
    sqrt_price_x96: int,
    tick_lower: int,
    tick_upper: int,
    amount0: int,
    amount1: int,
) -> int:
    """Largest liquidity the two balances can fund at ``sqrt_price_x96``.

    Below the range only token0 counts, above it only token1, inside it the
    binding side wins.
    """
    sqrt_a = sqrt_price_x96_from_tick(tick_lower)
    sqrt_b = sqrt_price_x96_from_tick(tick_upper)

    if sqrt_price_x96 <= sqrt_a:
        return _liquidity_for_amount0(sqrt_a, sqrt_b, amount0)
    if sqrt_price_x96 >= sqrt_b:
        return _liquidity_for_amount1(sqrt_a, sqrt_b, amount1)
    liq0 = _liquidity_for_amount0(sqrt_price_x96, sqrt_b, amount0)
    liq1 = _liquidity_for_amount1(sqrt_a, sqrt_price_x96, amount1)
    return min(liq0, liq1)


def amounts_for_liquidity(
    sqrt_price_x96: int,
    tick_lower: int,
    tick_upper: int,
    liquidity: int,
) -> tuple[int, int]:
    sqrt_a = sqrt_price_x96_from_tick(tick_lower)
    sqrt_b = sqrt_price_x96_from_tick(tick_upper)

    if sqrt_price_x96 <= sqrt_a:
        return (_amount0_for_liquidity(sqrt_a, sqrt_b, liquidity), 0)
    if sqrt_price_x96 >= sqrt_b:
        return (0, _amount1_for_liquidity(sqrt_a, sqrt_b, liquidity))
    return (
        _amount0_for_liquidity(sqrt_price_x96, sqrt_b, liquidity),
        _amount1_for_liquidity(sqrt_a, sqrt_price_x96, liquidity),
    )


def liquidity_at_mid_price(
    tick_lower: int, tick_upper: int, amount0: int, amount1: int
) -> int:
    """Size liquidity assuming the price sits at the middle of the range."""
    mid_tick = (tick_lower + tick_upper) // 2
    return liquidity_for_amounts(
        sqrt_price_x96_from_tick(mid_tick), tick_lower, tick_upper, amount0, amount1
    )
