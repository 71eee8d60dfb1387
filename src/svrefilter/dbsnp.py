from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pysam

from .breakpoints import BreakpointRecord
from .models import PopulationMatch
from .utils import is_readable
from .validation import remap_contig

logger = logging.getLogger(__name__)

MATCH_MODES = ("sequence", "length")
_NO_MATCH = PopulationMatch(in_database=False, record_id="")


class DatabaseUnavailableError(OSError):
    """Raised when the population variant VCF cannot be opened or read."""


@dataclass(frozen=True)
class DbsnpSite:
    """A population indel, stored by its VCF anchor position (1-based)."""

    pos: int
    kind: str  # 'INS' or 'DEL'
    seq: str
    record_id: str


@dataclass(frozen=True)
class PopulationDatabase:
    """Read-only lookup of known indel and SV loci, keyed by contig then position."""

    indels: Dict[str, Dict[int, List[DbsnpSite]]] = field(default_factory=dict)
    sv_sites: Dict[str, Dict[int, str]] = field(default_factory=dict)
    stats: Dict[str, int] = field(default_factory=dict)
    path: Optional[str] = None

    def __len__(self) -> int:
        n = sum(len(v) for by_pos in self.indels.values() for v in by_pos.values())
        return n + sum(len(by_pos) for by_pos in self.sv_sites.values())


def indel_signature(ref: str, alt: str) -> Optional[Tuple[str, str]]:
    """Return ``(kind, inserted_or_deleted_sequence)`` for an indel allele pair.

    VCF-style alleles share their first (anchor) base; it is dropped from the
    sequence. Returns None when the alleles do not describe an indel.
    """
    ref = ref.upper()
    alt = alt.upper()
    if not ref or not alt or len(ref) == len(alt):
        return None
    longer, shorter = (alt, ref) if len(alt) > len(ref) else (ref, alt)
    kind = "INS" if len(alt) > len(ref) else "DEL"
    if longer.startswith(shorter):
        return kind, longer[len(shorter) :]
    if longer[0] == shorter[0]:
        return kind, longer[1:]
    return kind, longer


def _is_sv_allele(alt: str) -> bool:
    return alt.startswith("<") or "[" in alt or "]" in alt


def load_dbsnp(path: str | Path, *, contig_style: Optional[str] = None) -> PopulationDatabase:
    """Load population indels (and symbolic/breakend SVs) from a VCF.

    Parameters
    ----------
    path:
        dbSNP-style VCF (.vcf or .vcf.gz).
    contig_style:
        'ucsc' or 'ensembl' to rename contigs so they match the breakpoint
        table; None keeps the names as written.
    """
    path = Path(path)
    if not is_readable(path):
        raise DatabaseUnavailableError(f"Cannot read population database: {path}")

    stats: Dict[str, int] = {
        "records_total": 0,
        "sites_indel": 0,
        "sites_sv": 0,
        "skipped_snv": 0,
    }
    indels: Dict[str, Dict[int, List[DbsnpSite]]] = {}
    sv_sites: Dict[str, Dict[int, str]] = {}

    try:
        with pysam.VariantFile(str(path)) as vcf:
            for rec in vcf:
                stats["records_total"] += 1
                chrom = str(rec.contig)
                if contig_style is not None:
                    chrom = remap_contig(chrom, contig_style)
                ref = rec.ref or ""
                for alt in rec.alts or ():
                    rid = rec.id if rec.id is not None else f"{rec.contig}:{rec.pos}:{ref}:{alt}"
                    if _is_sv_allele(alt):
                        sv_sites.setdefault(chrom, {}).setdefault(int(rec.pos), rid)
                        stats["sites_sv"] += 1
                        continue
                    sig = indel_signature(ref, alt)
                    if sig is None:
                        stats["skipped_snv"] += 1
                        continue
                    kind, seq = sig
                    site = DbsnpSite(pos=int(rec.pos), kind=kind, seq=seq, record_id=rid)
                    indels.setdefault(chrom, {}).setdefault(site.pos, []).append(site)
                    stats["sites_indel"] += 1
    except (ValueError, OSError) as e:
        raise DatabaseUnavailableError(f"Cannot read population database {path}: {e}") from e

    logger.info(
        "Loaded population database %s: %d indel sites, %d SV sites (%d SNV alleles skipped)",
        path,
        stats["sites_indel"],
        stats["sites_sv"],
        stats["skipped_snv"],
    )
    return PopulationDatabase(indels=indels, sv_sites=sv_sites, stats=stats, path=str(path))


def _match_indel(
    db: PopulationDatabase, record: BreakpointRecord, match_mode: str
) -> Optional[PopulationMatch]:
    sig = indel_signature(record.ref, record.alt)
    if sig is None:
        return None
    kind, seq = sig
    for site in db.indels.get(record.chrom1, {}).get(record.pos1, ()):
        if site.kind != kind:
            continue
        if match_mode == "sequence" and site.seq == seq:
            return PopulationMatch(in_database=True, record_id=site.record_id)
        if match_mode == "length" and len(site.seq) == len(seq):
            return PopulationMatch(in_database=True, record_id=site.record_id)
    return None


def _match_sv(db: PopulationDatabase, record: BreakpointRecord) -> Optional[PopulationMatch]:
    for chrom, pos in ((record.chrom1, record.pos1), (record.chrom2, record.pos2)):
        rid = db.sv_sites.get(chrom, {}).get(pos)
        if rid is not None:
            return PopulationMatch(in_database=True, record_id=rid)
    return None


def query(db: PopulationDatabase, record: BreakpointRecord, *, match_mode: str = "sequence") -> PopulationMatch:
    """Look ``record`` up in ``db``. Never modifies either argument."""
    if match_mode not in MATCH_MODES:
        raise ValueError(f"match_mode must be one of {MATCH_MODES}, got '{match_mode}'")
    if record.is_indel:
        match = _match_indel(db, record, match_mode)
    else:
        match = _match_sv(db, record)
    return match if match is not None else _NO_MATCH


def annotate(
    db: Optional[PopulationDatabase],
    record: BreakpointRecord,
    *,
    match_mode: str = "sequence",
) -> BreakpointRecord:
    """Attach the population match to ``record``; without a database it is returned as is."""
    if db is None:
        return record
    return replace(record, population_match=query(db, record, match_mode=match_mode))
