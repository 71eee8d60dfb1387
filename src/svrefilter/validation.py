from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Tuple

import pysam

from .utils import require_readable

logger = logging.getLogger(__name__)


_UCSC_PREFIX = "chr"


def read_alignment_contigs(path: str | Path) -> List[Tuple[str, int]]:
    """Return ``(name, length)`` for every @SQ line of a SAM/BAM/CRAM header."""
    p = require_readable(path, "Alignment header source")
    try:
        with pysam.AlignmentFile(str(p), "r", check_sq=False) as aln:
            return list(zip(aln.header.references, aln.header.lengths))
    except ValueError as e:
        raise ValueError(f"Could not read alignment header from {p}: {e}") from e


def detect_contig_style(contigs: Iterable[str]) -> str:
    """Infer contig style: 'ucsc' if most contigs start with 'chr', else 'ensembl'."""
    names = [c for c in contigs if c]
    if not names:
        return "unknown"
    chr_like = [c for c in names if c.startswith(_UCSC_PREFIX)]
    if len(chr_like) >= max(1, int(0.5 * len(names))):
        return "ucsc"
    return "ensembl"


def remap_contig(contig: str, style: str) -> str:
    """Remap a contig name to the requested style (ucsc or ensembl)."""
    if style == "ucsc":
        if contig.startswith(_UCSC_PREFIX):
            return contig
        if contig == "MT":
            return "chrM"
        return f"{_UCSC_PREFIX}{contig}"
    if style == "ensembl":
        if contig.startswith(_UCSC_PREFIX):
            core = contig[len(_UCSC_PREFIX) :]
            if core == "M":
                return "MT"
            return core
        return contig
    return contig
