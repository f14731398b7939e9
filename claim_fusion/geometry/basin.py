"""Basin inversion: discover the similarity valley T_v from the substrate's own shape.

The pairwise similarity distribution is histogrammed, smoothed with a moving
average, and searched for its two most prominent peaks. The lowest smoothed
bin between them is the valley; its centre becomes T_v, the threshold that
separates related from unrelated paragraph pairs. When no valley of sufficient
depth exists the result is degenerate and consumers fall back to mu + sigma.

Health comes from the discrimination range D = P90 - P10:
    D >= 0.10 usable, 0.05 <= D < 0.10 marginal, D < 0.05 untrusted.
"""

from __future__ import annotations

import math

from claim_fusion.contracts import (
    Basin,
    BasinInversion,
    BasinStatus,
    BridgePair,
    Peak,
    SubstrateHealth,
)
from claim_fusion.geometry.embeddings import mean_std, percentile

USABLE_RANGE = 0.10
MARGINAL_RANGE = 0.05
MIN_PROMINENCE_RATIO = 0.05
DEFAULT_MIN_VALLEY_DEPTH_SIGMA = 0.25
# A valley must also clear the counting noise of its bins and the sample as a
# whole must look bimodal (Sarle's coefficient above the uniform value 5/9).
VALLEY_NOISE_Z = 3.0
MIN_BIMODALITY = 5 / 9


# --- Histogram helpers ---


def nearest_odd(n: float) -> int:
    if not math.isfinite(n):
        return 3
    k = max(3, round(n))
    return k + 1 if k % 2 == 0 else k


def kernel_width(bin_count: int, bandwidth: int = 0) -> int:
    """Smoothing kernel width; bandwidth 0 selects the adaptive default (10% of bins)."""
    if bandwidth > 0:
        return nearest_odd(bandwidth)
    return nearest_odd(max(3, bin_count * 0.1))


def histogram(values: list[float], bin_count: int, lo: float, width: float) -> list[int]:
    counts = [0] * bin_count
    for v in values:
        idx = math.floor((v - lo) / width)
        counts[min(max(idx, 0), bin_count - 1)] += 1
    return counts


def smooth(counts: list[int], width: int) -> list[float]:
    """Centered moving average, truncated at the edges."""
    n = len(counts)
    if n == 0:
        return []
    cap = n if n % 2 == 1 else max(1, n - 1)
    w = max(3, min(width, cap))
    r = w // 2
    out = []
    for i in range(n):
        window = counts[max(0, i - r) : min(n, i + r + 1)]
        out.append(sum(window) / len(window))
    return out


def _prominence(values: list[float], i: int) -> float:
    """Height above the higher of the two bases reached before a taller bin."""
    h = values[i]
    bases = []
    for step in (-1, 1):
        j = i + step
        low = None
        while 0 <= j < len(values) and values[j] <= h:
            low = values[j] if low is None else min(low, values[j])
            j += step
        if low is not None:
            bases.append(low)
    return h - max(bases) if bases else h


def detect_peaks(smoothed: list[float], lo: float, width: float) -> list[Peak]:
    """Local maxima (edges included) with prominence >= 5% of the tallest bin.

    Sorted by prominence, then height, then bin index.
    """
    n = len(smoothed)
    if n < 3:
        return []
    min_prominence = max(0.0, max(smoothed)) * MIN_PROMINENCE_RATIO
    peaks: list[Peak] = []
    for i, h in enumerate(smoothed):
        left = smoothed[i - 1] if i > 0 else -math.inf
        right = smoothed[i + 1] if i < n - 1 else -math.inf
        if not (h > left and h >= right):
            continue
        prom = _prominence(smoothed, i)
        if prom <= 0 or prom < min_prominence:
            continue
        peaks.append(Peak(bin=i, center=lo + (i + 0.5) * width, height=h, prominence=prom))
    peaks.sort(key=lambda p: (-p["prominence"], -p["height"], p["bin"]))
    return peaks


def bimodality_coefficient(values: list[float]) -> float | None:
    """Sarle's bimodality coefficient with small-sample corrections; None below 4 values.

    About 1/3 for a normal sample, 5/9 for a uniform one, approaching 1 for two
    well separated groups.
    """
    n = len(values)
    if n < 4:
        return None
    mu, sigma = mean_std(values)
    if sigma == 0:
        return None
    m3 = sum((v - mu) ** 3 for v in values) / n
    m4 = sum((v - mu) ** 4 for v in values) / n
    g1 = m3 / sigma**3
    g2 = m4 / sigma**4 - 3
    skew = g1 * math.sqrt(n * (n - 1)) / (n - 2)
    excess = ((n + 1) * g2 + 6) * (n - 1) / ((n - 2) * (n - 3))
    denom = excess + 3 * (n - 1) ** 2 / ((n - 2) * (n - 3))
    if denom <= 0:
        return None
    return (skew**2 + 1) / denom


def valley_clears_noise(peak_height: float, trough_height: float, kernel: int) -> bool:
    """Is the peak-to-trough drop larger than Poisson noise on the smoothed counts?

    A smoothed bin averages `kernel` raw counts, so its noise is about
    sqrt(height / kernel).
    """
    noise = math.sqrt(max(0.0, peak_height + trough_height) / max(1, kernel))
    return peak_height - trough_height >= VALLEY_NOISE_Z * noise


def health_from_range(d: float | None) -> SubstrateHealth:
    if d is None or d < MARGINAL_RANGE:
        return SubstrateHealth.UNTRUSTED
    if d < USABLE_RANGE:
        return SubstrateHealth.MARGINAL
    return SubstrateHealth.USABLE


# --- Distribution analysis ---


def analyze_distribution(
    similarities: list[float],
    *,
    bandwidth: int = 0,
    min_valley_depth_sigma: float = DEFAULT_MIN_VALLEY_DEPTH_SIGMA,
) -> BasinInversion:
    """Find T_v in a similarity distribution. Basins and bridges are left empty.

    Valley depth is the drop from the lower of the two peaks to the trough,
    in standard deviations of the smoothed histogram heights. A valley also has
    to clear the bins' counting noise, and the whole sample has to pass the
    bimodality coefficient, so small single-peak samples stay degenerate.
    """
    pair_count = len(similarities)
    if pair_count == 0:
        return empty_basin(0, 0)

    mu, sigma = mean_std(similarities)
    ordered = sorted(similarities)
    p10 = percentile(ordered, 0.1)
    p90 = percentile(ordered, 0.9)
    d = p90 - p10

    bin_count = max(3, math.ceil(math.sqrt(pair_count)))
    lo, hi = ordered[0], ordered[-1]
    width = max(1e-9, hi - lo) / bin_count
    counts = histogram(similarities, bin_count, lo, width)
    kernel = kernel_width(bin_count, bandwidth)
    smoothed = smooth(counts, kernel)
    peaks = detect_peaks(smoothed, lo, width)

    t_low, t_high = mu - sigma, mu + sigma
    high = sum(1 for s in similarities if s >= t_high)
    low = sum(1 for s in similarities if s <= t_low)
    pct_high = high / pair_count * 100
    pct_low = low / pair_count * 100

    bimodality = bimodality_coefficient(similarities)
    status = BasinStatus.OK
    t_v = None
    depth = None
    if d <= sigma:
        status = BasinStatus.UNDIFFERENTIATED
    elif len(peaks) < 2:
        status = BasinStatus.NO_BASIN_STRUCTURE
    else:
        a, b = sorted((peaks[0]["bin"], peaks[1]["bin"]))
        if b == a + 1:
            trough = a + 1
            t_v = lo + trough * width
            trough_height = min(smoothed[a], smoothed[b])
        else:
            trough = min(range(a + 1, b), key=lambda i: (smoothed[i], i))
            t_v = lo + (trough + 0.5) * width
            trough_height = smoothed[trough]
        _, spread = mean_std(smoothed)
        drop = min(smoothed[a], smoothed[b]) - trough_height
        depth = drop / spread if spread > 0 else 0.0
        noisy = not valley_clears_noise(min(smoothed[a], smoothed[b]), trough_height, kernel)
        unimodal = bimodality is None or bimodality < MIN_BIMODALITY
        if depth < min_valley_depth_sigma or noisy or unimodal:
            status = BasinStatus.NO_BASIN_STRUCTURE
            t_v = None

    health = health_from_range(d)
    return BasinInversion(
        status=status,
        health=health,
        degenerate=status != BasinStatus.OK or health == SubstrateHealth.UNTRUSTED,
        node_count=0,
        pair_count=pair_count,
        mu=mu,
        sigma=sigma,
        p10=p10,
        p90=p90,
        discrimination_range=d,
        t_v=t_v,
        t_low=t_low,
        t_high=t_high,
        pct_high=pct_high,
        pct_mid=max(0.0, 100 - pct_high - pct_low),
        pct_low=pct_low,
        bin_count=bin_count,
        bin_width=width,
        bandwidth=kernel,
        histogram=counts,
        smoothed=smoothed,
        peaks=peaks,
        valley_depth_sigma=depth,
        bimodality=bimodality,
        basins=[],
        bridge_pairs=[],
    )


# --- Basin assignment ---


def _union_find(n: int):
    parent = list(range(n))

    def find(x: int) -> int:
        while parent[x] != x:
            parent[x] = parent[parent[x]]
            x = parent[x]
        return x

    def union(a: int, b: int) -> None:
        ra, rb = find(a), find(b)
        if ra != rb:
            parent[max(ra, rb)] = min(ra, rb)

    return find, union


def compute_basin_inversion(
    ids: list[str],
    matrix: list[list[float]],
    *,
    bandwidth: int = 0,
    min_valley_depth_sigma: float = DEFAULT_MIN_VALLEY_DEPTH_SIGMA,
) -> BasinInversion:
    """Basin inversion over the full pairwise matrix of the given nodes.

    With a valley, nodes joined by any pair at or above T_v share a basin;
    each basin's trench depth is its highest similarity to an outside node.
    Pairs within half a bin of T_v are reported as bridge pairs.
    """
    n = len(ids)
    if n < 2:
        result = empty_basin(n, 0)
        result["basins"] = [Basin(basin_id=0, node_ids=list(ids), trench_depth=0.0)] if ids else []
        return result

    pairs = [(i, j) for i in range(n) for j in range(i + 1, n)]
    sims = [matrix[i][j] for i, j in pairs]
    result = analyze_distribution(
        sims, bandwidth=bandwidth, min_valley_depth_sigma=min_valley_depth_sigma
    )
    result["node_count"] = n

    t_v = result["t_v"]
    find, union = _union_find(n)
    if t_v is not None:
        for (i, j), s in zip(pairs, sims):
            if s >= t_v:
                union(i, j)

    members: dict[int, list[int]] = {}
    for i in range(n):
        members.setdefault(find(i), []).append(i)
    groups = sorted(members.values(), key=lambda g: (-len(g), g[0]))
    basin_of = {i: b for b, g in enumerate(groups) for i in g}

    trench = [-math.inf] * len(groups)
    if len(groups) > 1:
        for (i, j), s in zip(pairs, sims):
            bi, bj = basin_of[i], basin_of[j]
            if bi != bj:
                trench[bi] = max(trench[bi], s)
                trench[bj] = max(trench[bj], s)

    result["basins"] = [
        Basin(
            basin_id=b,
            node_ids=[ids[i] for i in g],
            trench_depth=trench[b] if math.isfinite(trench[b]) else 0.0,
        )
        for b, g in enumerate(groups)
    ]

    if t_v is not None:
        half = result["bin_width"] / 2
        bridges = [
            BridgePair(node_a=ids[i], node_b=ids[j], similarity=s, delta_from_valley=s - t_v)
            for (i, j), s in zip(pairs, sims)
            if abs(s - t_v) <= half
        ]
        bridges.sort(key=lambda bp: abs(bp["delta_from_valley"]))
        result["bridge_pairs"] = bridges

    return result


def empty_basin(node_count: int, pair_count: int) -> BasinInversion:
    return BasinInversion(
        status=BasinStatus.INSUFFICIENT_DATA,
        health=SubstrateHealth.UNTRUSTED,
        degenerate=True,
        node_count=node_count,
        pair_count=pair_count,
        mu=0.0,
        sigma=0.0,
        p10=0.0,
        p90=0.0,
        discrimination_range=0.0,
        t_v=None,
        t_low=0.0,
        t_high=0.0,
        pct_high=0.0,
        pct_mid=0.0,
        pct_low=0.0,
        bin_count=0,
        bin_width=0.0,
        bandwidth=0,
        histogram=[],
        smoothed=[],
        peaks=[],
        valley_depth_sigma=None,
        bimodality=None,
        basins=[],
        bridge_pairs=[],
    )
