from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import pysam

from . import __version__
from .breakpoints import EMPTY, BreakpointRecord, MalformedRecordError
from .models import LOWLOD, LOWSOMATICLOD

logger = logging.getLogger(__name__)

_INFO_FIELDS: List[Tuple[str, object, str, str]] = [
    ("SVTYPE", 1, "String", "Type of structural variant"),
    ("MATEID", 1, "String", "ID of the mate breakend"),
    ("EVDNC", 1, "String", "Evidence class supporting the breakpoint (ASSMB, ASDIS, DSCRD, COMPL, INDEL)"),
    ("SOMATIC", 0, "Flag", "Variant passes the somatic test against the matched normal"),
    ("SOMLOD", 1, "Float", "Log10 odds that the normal is reference (AF=0) versus heterozygous (AF=0.5)"),
    ("MAXLOD", 1, "Float", "Highest per-sample log10 odds of AF=MLE versus AF=0"),
    ("DBSNP", 1, "String", "ID of the matching population database record"),
    ("HOMSEQ", 1, "String", "Microhomology at the breakpoint"),
    ("INSERTION", 1, "String", "Non-templated sequence inserted at the breakpoint"),
    ("REPSEQ", 1, "String", "Repeat sequence near the breakpoint"),
    ("SPAN", 1, "Integer", "Distance between breakends (-1 for interchromosomal)"),
]

_FORMAT_FIELDS: List[Tuple[str, object, str, str]] = [
    ("AD", 1, "Integer", "Reads supporting the variant allele"),
    ("DP", 1, "Integer", "Read depth at the breakpoint"),
    ("SR", 1, "Integer", "Split reads supporting the breakpoint"),
    ("DR", 1, "Integer", "Discordant read pairs supporting the breakpoint"),
    ("LO", 1, "Float", "Log10 odds that this sample is non-reference (AF=MLE versus AF=0)"),
]

_COMPLEMENT = str.maketrans("ACGTN", "TGCAN")

_FILTERS = {
    LOWLOD: "Log10 odds of a non-reference allele is below the cutoff in every sample",
    LOWSOMATICLOD: "Log10 odds that the normal is reference is below the somatic cutoff",
}


def is_selected(record: BreakpointRecord, pass_only: bool) -> bool:
    if not pass_only:
        return True
    return record.classification is not None and record.classification.is_pass


def select_for_vcf(records: Iterable[BreakpointRecord], pass_only: bool) -> Iterator[BreakpointRecord]:
    """Yield the records that go to VCF, in input order.

    With ``pass_only`` only PASS records are kept; otherwise every record is.
    """
    for record in records:
        if is_selected(record, pass_only):
            yield record


def build_vcf_header(
    *,
    contigs: Sequence[Tuple[str, int]],
    sample_names: Sequence[str],
    source: Optional[str] = None,
) -> pysam.VariantHeader:
    header = pysam.VariantHeader()
    header.add_meta("fileformat", "VCFv4.2")
    header.add_meta("fileDate", _dt.date.today().strftime("%Y%m%d"))
    header.add_meta("source", source or f"svrefilter {__version__}")
    for name, length in contigs:
        header.contigs.add(name, length=length)
    for fid, desc in _FILTERS.items():
        header.filters.add(fid, None, None, desc)
    for fid, number, ftype, desc in _INFO_FIELDS:
        header.info.add(fid, number, ftype, desc)
    for fid, number, ftype, desc in _FORMAT_FIELDS:
        header.formats.add(fid, number, ftype, desc)
    for name in sample_names:
        header.add_sample(name)
    return header


def _present(value: str) -> bool:
    return value not in ("", EMPTY)


def _bnd_alts(record: BreakpointRecord) -> Tuple[str, str]:
    """ALT strings for both mates of an SV breakpoint.

    A '+' strand keeps the sequence left of the break and a '-' strand the
    sequence right of it (VCF 4.2 section 5.4 bracket rules).
    """

    def alt_for(own: str, mate: str, mate_chrom: str, mate_pos: int, ins: str) -> str:
        p = f"{mate_chrom}:{mate_pos}"
        bracket = "[" if mate == "-" else "]"
        if own == "+":
            return f"N{ins}{bracket}{p}{bracket}"
        return f"{bracket}{p}{bracket}{ins}N"

    ins = record.insertion.upper() if _present(record.insertion) else ""
    # Same-strand joins read the inserted sequence from the opposite strand at the mate.
    mate_ins = ins.translate(_COMPLEMENT)[::-1] if record.strand1 == record.strand2 else ins
    alt1 = alt_for(record.strand1, record.strand2, record.chrom2, record.pos2, ins)
    alt2 = alt_for(record.strand2, record.strand1, record.chrom1, record.pos1, mate_ins)
    return alt1, alt2


class VcfSink:
    """Writes one policy's VCF pair: ``<basename>indel.vcf`` and ``<basename>sv.vcf``."""

    def __init__(self, basename: str | Path, header: pysam.VariantHeader) -> None:
        base = str(basename)
        self.indel_path = Path(base + "indel.vcf")
        self.sv_path = Path(base + "sv.vcf")
        self.indel_path.parent.mkdir(parents=True, exist_ok=True)
        self._indel = pysam.VariantFile(str(self.indel_path), "w", header=header)
        self._sv = pysam.VariantFile(str(self.sv_path), "w", header=header)
        self.counts: Dict[str, int] = {"indel": 0, "sv": 0, "skipped_no_alleles": 0}

    def __enter__(self) -> "VcfSink":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self._indel.close()
        self._sv.close()

    def _check_contig(self, vcf: pysam.VariantFile, chrom: str) -> None:
        if chrom not in vcf.header.contigs:
            raise MalformedRecordError(f"contig '{chrom}' is not present in the alignment header")

    def _fill(self, rec: pysam.VariantRecord, record: BreakpointRecord) -> None:
        cls = record.classification
        if cls is not None:
            for f in cls.failed_tests:
                rec.filter.add(f)
            if not cls.failed_tests:
                rec.filter.add("PASS")
            rec.info["MAXLOD"] = float(cls.max_lod)
            if cls.somatic_lod is not None:
                rec.info["SOMLOD"] = float(cls.somatic_lod)
            if cls.somatic:
                rec.info["SOMATIC"] = True

        rec.info["EVDNC"] = record.evidence
        if record.in_database:
            rec.info["DBSNP"] = record.population_match.record_id
        if _present(record.homology):
            rec.info["HOMSEQ"] = record.homology
        if _present(record.insertion):
            rec.info["INSERTION"] = record.insertion
        if _present(record.repeat):
            rec.info["REPSEQ"] = record.repeat
        span = record.passthrough.get("span", "")
        if span.lstrip("-").isdigit():
            rec.info["SPAN"] = int(span)

        for name, allele in record.alleles.items():
            sample = rec.samples[name]
            sample["AD"] = int(allele.alt)
            sample["DP"] = int(allele.cov)
            sample["SR"] = int(allele.split)
            sample["DR"] = int(allele.disc)
            if cls is not None and name in cls.sample_lods:
                sample["LO"] = float(cls.sample_lods[name])

    def _write_indel(self, record: BreakpointRecord) -> None:
        if not (_present(record.ref) and _present(record.alt)):
            self.counts["skipped_no_alleles"] += 1
            logger.warning(
                "Indel at %s:%d has no REF/ALT alleles; not written to %s",
                record.chrom1,
                record.pos1,
                self.indel_path,
            )
            return
        self._check_contig(self._indel, record.chrom1)
        ref = record.ref.upper()
        rec = self._indel.new_record(
            contig=record.chrom1,
            start=record.pos1 - 1,
            stop=record.pos1 - 1 + len(ref),
            alleles=(ref, record.alt.upper()),
            id=f"{record.chrom1}:{record.pos1}:{ref}:{record.alt.upper()}",
        )
        self._fill(rec, record)
        self._indel.write(rec)
        self.counts["indel"] += 1

    def _write_sv(self, record: BreakpointRecord) -> None:
        self._check_contig(self._sv, record.chrom1)
        self._check_contig(self._sv, record.chrom2)
        bnd_id = f"{record.chrom1}:{record.pos1}-{record.chrom2}:{record.pos2}"
        alt1, alt2 = _bnd_alts(record)
        mates = (
            (record.chrom1, record.pos1, alt1, f"{bnd_id}:1", f"{bnd_id}:2"),
            (record.chrom2, record.pos2, alt2, f"{bnd_id}:2", f"{bnd_id}:1"),
        )
        for chrom, pos, alt, rid, mate_id in mates:
            rec = self._sv.new_record(
                contig=chrom,
                start=pos - 1,
                stop=pos,
                alleles=("N", alt),
                id=rid,
            )
            rec.info["SVTYPE"] = "BND"
            rec.info["MATEID"] = mate_id
            self._fill(rec, record)
            self._sv.write(rec)
        self.counts["sv"] += 1

    def write(self, record: BreakpointRecord) -> None:
        if record.is_indel:
            self._write_indel(record)
        else:
            self._write_sv(record)


def write_vcfs(
    records: Iterable[BreakpointRecord],
    sink: VcfSink,
    *,
    pass_only: bool,
) -> int:
    """Write the records selected under ``pass_only`` to ``sink``; return how many."""
    n = 0
    for record in select_for_vcf(records, pass_only):
        sink.write(record)
        n += 1
    return n
