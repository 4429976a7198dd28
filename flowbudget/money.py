from decimal import Decimal, ROUND_HALF_UP, ROUND_FLOOR
from typing import Dict, List, Sequence, Tuple

Q2 = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


def D(x) -> Decimal:
    if x is None:
        return Decimal("0")
    if isinstance(x, Decimal):
        return x
    return Decimal(str(x))


def round2(x) -> Decimal:
    return D(x).quantize(Q2, rounding=ROUND_HALF_UP)


def absorb_remainder(parts: List[Decimal], total: Decimal = HUNDRED) -> List[Decimal]:
    """Push whatever rounding left over onto the last part so the list sums to ``total``.

    A residue that would drive the last part below zero goes to the largest
    part instead (first one on ties).
    """
    if not parts:
        return parts
    out = list(parts)
    residue = round2(total - sum(out, ZERO))
    target = len(out) - 1
    if out[target] + residue < 0:
        target = max(range(len(out)), key=lambda i: (out[i], -i))
    out[target] = round2(out[target] + residue)
    return out


def even_percentages(count: int) -> List[Decimal]:
    if count <= 0:
        return []
    share = round2(HUNDRED / count)
    return absorb_remainder([share] * count)


def proportional_percentages(weights: Sequence[Decimal]) -> List[Decimal]:
    total = sum((D(w) for w in weights), ZERO)
    if total <= 0:
        return even_percentages(len(weights))
    # round((w / total) * 10000) / 100
    parts = [round2(D(w) * HUNDRED / total) for w in weights]
    return absorb_remainder(parts)


def percentage_of(amount, percentage) -> Decimal:
    return round2(D(amount) * D(percentage) / HUNDRED)


def split_amount(total, weights: Dict[str, Decimal]) -> Dict[str, Decimal]:
    """Split ``total`` by ``weights`` to the centime; parts always sum to ``total``.

    Each share is floored to centimes first, then leftover centimes go one at a
    time to the largest fractional remainders (ties: larger weight, then key).
    """
    if not weights:
        return {}
    total = round2(total)
    if total <= 0:
        return {k: ZERO for k in weights}
    weight_sum = sum((D(w) for w in weights.values()), ZERO)
    if weight_sum <= 0:
        weights = {k: Decimal("1") for k in weights}
        weight_sum = D(len(weights))

    centimes = int(total * 100)
    floored: Dict[str, int] = {}
    ranking: List[Tuple[Decimal, Decimal, str]] = []
    for key, weight in weights.items():
        raw = D(centimes) * D(weight) / weight_sum
        base = int(raw.to_integral_value(rounding=ROUND_FLOOR))
        floored[key] = base
        ranking.append((raw - base, D(weight), key))

    leftover = centimes - sum(floored.values())
    ranking.sort(key=lambda r: (-r[0], -r[1], r[2]))
    for _, _, key in ranking[:leftover]:
        floored[key] += 1
    return {k: (D(v) / 100).quantize(Q2) for k, v in floored.items()}
