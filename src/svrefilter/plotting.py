from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, List

import matplotlib.pyplot as plt

logger = logging.getLogger(__name__)


def plot_verdict_counts(
    *,
    counts: Dict[str, int],
    out_png: str | Path,
    title: str = "Breakpoint classification",
) -> None:
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    labels = ["PASS", "LOWLOD", "LOWSOMATICLOD", "Somatic", "In dbSNP"]
    values = [
        int(counts.get("records_pass", 0)),
        int(counts.get("fail_LOWLOD", 0)),
        int(counts.get("fail_LOWSOMATICLOD", 0)),
        int(counts.get("records_somatic", 0)),
        int(counts.get("records_dbsnp", 0)),
    ]

    plt.figure()
    plt.bar(labels, values)
    plt.ylabel("Breakpoints")
    plt.title(title)
    plt.xticks(rotation=15, ha="right")
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()


def plot_lod_hist(
    *,
    bin_edges: List[float],
    counts: List[int],
    out_png: str | Path,
    cutoff: float | None = None,
    xlabel: str = "LOD",
    title: str = "LOD distribution",
) -> None:
    """Bar plot of a pre-binned LOD histogram.

    The outermost bins also hold values beyond the plotted range. ``cutoff``
    draws a vertical line at the default decision boundary.
    """
    out_png = Path(out_png)
    out_png.parent.mkdir(parents=True, exist_ok=True)

    widths = [bin_edges[i + 1] - bin_edges[i] for i in range(len(counts))]
    centers = [bin_edges[i] + widths[i] / 2.0 for i in range(len(counts))]

    plt.figure()
    plt.bar(centers, counts, width=widths, align="center")
    if cutoff is not None:
        plt.axvline(cutoff, color="red", linestyle="--", linewidth=1)
    plt.xlabel(xlabel)
    plt.ylabel("Breakpoints")
    plt.title(title)
    plt.tight_layout()
    plt.savefig(out_png, dpi=160)
    plt.close()
