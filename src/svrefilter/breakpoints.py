"""Breakpoint table records: parsing, sample naming and serialization.

A ``bps.txt`` table is tab-delimited with a header row. The first 38 columns
(:data:`BPS_COLUMNS`) describe the breakpoint; every column from there on holds
one sample's evidence. Data rows carry the sample payload positionally, so a
row is first parsed into numbered allele slots (:func:`parse_raw`) and only then
given the sample names from the header (:func:`attach_sample_names`).
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, TextIO, Tuple

from .models import Classification, DiscordantCounts, PopulationMatch, SampleAllele
from .utils import open_textmaybe_gzip

logger = logging.getLogger(__name__)

BPS_COLUMNS: Tuple[str, ...] = (
    "chr1",
    "pos1",
    "strand1",
    "chr2",
    "pos2",
    "strand2",
    "ref",
    "alt",
    "span",
    "split",
    "alt_count",
    "cov",
    "cigar",
    "cigar_near",
    "dmq1",
    "dmq2",
    "dcn",
    "dct",
    "mapq1",
    "mapq2",
    "nm1",
    "nm2",
    "as1",
    "as2",
    "sub1",
    "sub2",
    "homol",
    "insert",
    "repeat",
    "contig_and_region",
    "naligned",
    "conf",
    "evidence",
    "somatic",
    "somlod",
    "maxlod",
    "dbsnp",
    "reads",
)
N_FIXED_COLUMNS = len(BPS_COLUMNS)

# Columns owned by the typed fields of BreakpointRecord. The rest of the fixed
# prefix is copied through; conf, somatic, somlod and maxlod are rewritten once
# the record is scored.
_TYPED_COLUMNS = frozenset(
    [
        "chr1",
        "pos1",
        "strand1",
        "chr2",
        "pos2",
        "strand2",
        "ref",
        "alt",
        "homol",
        "insert",
        "repeat",
        "evidence",
        "dcn",
        "dct",
        "reads",
        "dbsnp",
    ]
)

SAMPLE_FIELDS: Tuple[str, ...] = ("split", "cigar", "alt", "cov", "disc", "af", "lod", "reads")
_MIN_SAMPLE_FIELDS = 5

EMPTY = "x"
INDEL_EVIDENCE = "INDEL"
SAMPLE_PREFIXES = ("t", "n")


class MalformedRecordError(ValueError):
    """Raised when a header or data row does not follow the table layout."""

    def __init__(self, message: str, *, line_number: Optional[int] = None) -> None:
        if line_number is not None:
            message = f"line {line_number}: {message}"
        super().__init__(message)
        self.line_number = line_number


@dataclass(frozen=True)
class BreakpointRecord:
    """One candidate SV or indel breakpoint with its per-sample evidence."""

    chrom1: str
    pos1: int
    strand1: str
    chrom2: str
    pos2: int
    strand2: str
    ref: str
    alt: str
    homology: str
    insertion: str
    repeat: str
    evidence: str
    read_names: Tuple[str, ...] = ()
    alleles: Mapping[str, SampleAllele] = field(default_factory=dict)
    discordant: DiscordantCounts = field(default_factory=DiscordantCounts)
    population_match: Optional[PopulationMatch] = None
    classification: Optional[Classification] = None
    passthrough: Mapping[str, str] = field(default_factory=dict)

    @property
    def is_indel(self) -> bool:
        return self.evidence == INDEL_EVIDENCE

    @property
    def identity(self) -> Tuple[Any, ...]:
        if self.is_indel:
            return (self.chrom1, self.pos1, self.ref, self.alt)
        return (self.chrom1, self.pos1, self.chrom2, self.pos2)

    @property
    def sample_names(self) -> Tuple[str, ...]:
        return tuple(self.alleles)

    @property
    def repeat_length(self) -> int:
        if self.repeat in ("", EMPTY):
            return 0
        return len(self.repeat)

    @property
    def in_database(self) -> bool:
        return self.population_match is not None and self.population_match.in_database

    @property
    def has_normal(self) -> bool:
        return any(name.startswith("n") for name in self.alleles)


@dataclass(frozen=True)
class RawBreakpoint:
    """A parsed row whose alleles are still keyed by position, not by sample."""

    core: Mapping[str, Any]
    slots: Tuple[SampleAllele, ...]
    line_number: Optional[int] = None


def parse_header(line: str, *, line_number: Optional[int] = 1) -> List[str]:
    """Validate the header row and return the sample names in payload order."""
    cols = line.rstrip("\r\n").split("\t")
    if len(cols) <= N_FIXED_COLUMNS:
        raise MalformedRecordError(
            f"header has {len(cols)} columns; expected at least {N_FIXED_COLUMNS + 1} "
            f"({N_FIXED_COLUMNS} breakpoint columns followed by one column per sample)",
            line_number=line_number,
        )
    names = cols[N_FIXED_COLUMNS:]
    for name in names:
        if not name or name[0] not in SAMPLE_PREFIXES:
            raise MalformedRecordError(
                f"sample column '{name}' must start with 't' (tumor) or 'n' (normal)",
                line_number=line_number,
            )
    if len(set(names)) != len(names):
        raise MalformedRecordError(f"duplicate sample columns in header: {names}", line_number=line_number)
    return names


def header_line(sample_names: Sequence[str]) -> str:
    return "\t".join(list(BPS_COLUMNS) + list(sample_names))


def _to_int(value: str, what: str, line_number: Optional[int]) -> int:
    try:
        return int(value)
    except ValueError:
        raise MalformedRecordError(f"{what} is not an integer: '{value}'", line_number=line_number) from None


def _split_names(value: str) -> Tuple[str, ...]:
    if value in ("", EMPTY):
        return ()
    return tuple(v for v in value.split(",") if v)


def _join_names(names: Sequence[str]) -> str:
    return ",".join(names) if names else EMPTY


def _parse_population_match(value: str) -> Optional[PopulationMatch]:
    if value in ("", EMPTY):
        return None
    return PopulationMatch(in_database=True, record_id=value)


def parse_sample_field(value: str, *, line_number: Optional[int] = None) -> SampleAllele:
    """Parse one ``split:cigar:alt:cov:disc[:af:lod[:reads]]`` payload.

    ``af`` and ``lod`` are recomputed on every scoring pass and are ignored here.
    """
    parts = value.split(":")
    if len(parts) < _MIN_SAMPLE_FIELDS:
        raise MalformedRecordError(
            f"sample field '{value}' has {len(parts)} parts; expected at least {_MIN_SAMPLE_FIELDS}",
            line_number=line_number,
        )
    split, cigar, alt, cov, disc = (
        _to_int(parts[i], f"sample {SAMPLE_FIELDS[i]}", line_number) for i in range(_MIN_SAMPLE_FIELDS)
    )
    reads = _split_names(parts[7]) if len(parts) > 7 else ()
    return SampleAllele(split=split, cigar=cigar, alt=alt, cov=cov, disc=disc, read_names=reads)


def parse_raw(line: str, *, line_number: Optional[int] = None) -> RawBreakpoint:
    """First parsing phase: fixed columns plus positionally keyed allele slots."""
    cols = line.rstrip("\r\n").split("\t")
    if len(cols) <= N_FIXED_COLUMNS:
        raise MalformedRecordError(
            f"row has {len(cols)} fields; expected at least {N_FIXED_COLUMNS + 1}",
            line_number=line_number,
        )
    row = dict(zip(BPS_COLUMNS, cols[:N_FIXED_COLUMNS]))

    core: Dict[str, Any] = {
        "chrom1": row["chr1"],
        "pos1": _to_int(row["pos1"], "pos1", line_number),
        "strand1": row["strand1"],
        "chrom2": row["chr2"],
        "pos2": _to_int(row["pos2"], "pos2", line_number),
        "strand2": row["strand2"],
        "ref": row["ref"],
        "alt": row["alt"],
        "homology": row["homol"],
        "insertion": row["insert"],
        "repeat": row["repeat"],
        "evidence": row["evidence"],
        "read_names": _split_names(row["reads"]),
        "discordant": DiscordantCounts(
            tumor=_to_int(row["dct"], "dct", line_number),
            normal=_to_int(row["dcn"], "dcn", line_number),
        ),
        "population_match": _parse_population_match(row["dbsnp"]),
        "passthrough": {k: v for k, v in row.items() if k not in _TYPED_COLUMNS},
    }
    slots = tuple(parse_sample_field(v, line_number=line_number) for v in cols[N_FIXED_COLUMNS:])
    return RawBreakpoint(core=core, slots=slots, line_number=line_number)


def attach_sample_names(raw: RawBreakpoint, sample_names: Sequence[str]) -> BreakpointRecord:
    """Second parsing phase: key each allele slot by its header sample name."""
    if len(raw.slots) != len(sample_names):
        raise MalformedRecordError(
            f"row carries {len(raw.slots)} sample fields but the header declares "
            f"{len(sample_names)} samples {list(sample_names)}",
            line_number=raw.line_number,
        )
    alleles = {name: allele for name, allele in zip(sample_names, raw.slots)}
    return BreakpointRecord(alleles=alleles, **raw.core)


def parse(line: str, sample_names: Sequence[str], *, line_number: Optional[int] = None) -> BreakpointRecord:
    return attach_sample_names(parse_raw(line, line_number=line_number), sample_names)


def _fmt_lod(value: Optional[float]) -> str:
    if value is None:
        return "NA"
    return f"{value:.2f}"


def _sample_field(
    name: str,
    allele: SampleAllele,
    classification: Optional[Classification],
    suppress_read_tracking: bool,
) -> str:
    if classification is not None and name in classification.sample_afs:
        af = classification.sample_afs[name]
    else:
        af = allele.alt / allele.cov if allele.cov > 0 else 0.0
    lod = classification.sample_lods.get(name) if classification is not None else None
    reads = EMPTY if suppress_read_tracking else _join_names(allele.read_names)
    return ":".join(
        [
            str(allele.split),
            str(allele.cigar),
            str(allele.alt),
            str(allele.cov),
            str(allele.disc),
            f"{af:.3f}",
            _fmt_lod(lod),
            reads,
        ]
    )


def to_line(record: BreakpointRecord, suppress_read_tracking: bool = False) -> str:
    """Render a record in the same column layout :func:`parse` accepts.

    With ``suppress_read_tracking`` the qname lists are written as ``x``; no
    other field changes.
    """
    row: Dict[str, str] = dict(record.passthrough)
    row.update(
        {
            "chr1": record.chrom1,
            "pos1": str(record.pos1),
            "strand1": record.strand1,
            "chr2": record.chrom2,
            "pos2": str(record.pos2),
            "strand2": record.strand2,
            "ref": record.ref,
            "alt": record.alt,
            "homol": record.homology,
            "insert": record.insertion,
            "repeat": record.repeat,
            "evidence": record.evidence,
            "dcn": str(record.discordant.normal),
            "dct": str(record.discordant.tumor),
            "reads": EMPTY if suppress_read_tracking else _join_names(record.read_names),
            "dbsnp": record.population_match.record_id if record.in_database else EMPTY,
        }
    )

    cls = record.classification
    if cls is not None:
        row["conf"] = cls.filter_string
        row["somatic"] = "1" if cls.somatic else "0"
        row["somlod"] = _fmt_lod(cls.somatic_lod)
        row["maxlod"] = _fmt_lod(cls.max_lod)

    cols = [row.get(c, EMPTY) for c in BPS_COLUMNS]
    cols.extend(
        _sample_field(name, allele, cls, suppress_read_tracking) for name, allele in record.alleles.items()
    )
    return "\t".join(cols)


def iter_records(
    fh: TextIO,
    sample_names: Sequence[str],
    *,
    first_line_number: int = 2,
) -> Iterator[BreakpointRecord]:
    for line_number, line in enumerate(fh, start=first_line_number):
        if not line.strip():
            continue
        yield parse(line, sample_names, line_number=line_number)


@contextmanager
def open_bps_table(path: str | Path) -> Iterator[Tuple[List[str], Iterator[BreakpointRecord]]]:
    """Open a (optionally gzipped) breakpoint table.

    Yields the header sample names and a lazy record iterator; the file is
    closed when the context exits.
    """
    with open_textmaybe_gzip(path, "rt") as fh:
        header = fh.readline()
        if not header:
            raise MalformedRecordError(f"breakpoint table is empty: {path}", line_number=1)
        sample_names = parse_header(header, line_number=1)
        logger.debug("Samples in %s: %s", path, ", ".join(sample_names))
        yield sample_names, iter_records(fh, sample_names)
