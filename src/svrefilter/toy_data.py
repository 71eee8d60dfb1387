from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Mapping, Sequence, Tuple

import pysam

from .breakpoints import BPS_COLUMNS, header_line
from .utils import ensure_outdir, open_textmaybe_gzip, write_json

TOY_CONTIGS: List[Tuple[str, int]] = [("chr1", 200), ("chr2", 200)]
TOY_SAMPLES = ["t000", "n000"]

_ROW_DEFAULTS: Dict[str, str] = {
    "chr1": "chr1",
    "pos1": "100",
    "strand1": "+",
    "chr2": "chr1",
    "pos2": "100",
    "strand2": "-",
    "ref": "x",
    "alt": "x",
    "span": "0",
    "split": "0",
    "alt_count": "0",
    "cov": "0",
    "cigar": "0",
    "cigar_near": "0",
    "dmq1": "60",
    "dmq2": "60",
    "dcn": "0",
    "dct": "0",
    "mapq1": "60",
    "mapq2": "60",
    "nm1": "0",
    "nm2": "0",
    "as1": "0",
    "as2": "0",
    "sub1": "0",
    "sub2": "0",
    "homol": "x",
    "insert": "x",
    "repeat": "x",
    "contig_and_region": "c_1_1_200",
    "naligned": "1",
    "conf": "PASS",
    "evidence": "INDEL",
    "somatic": "0",
    "somlod": "0",
    "maxlod": "0",
    "dbsnp": "x",
    "reads": "x",
}


def sample_field(
    alt: int,
    cov: int,
    *,
    split: int = 0,
    cigar: int = 0,
    disc: int = 0,
    reads: Sequence[str] = (),
) -> str:
    """Encode one sample's evidence the way upstream writes it."""
    read_str = ",".join(reads) if reads else "x"
    return f"{split}:{cigar}:{alt}:{cov}:{disc}:0.000:NA:{read_str}"


def bps_row(samples: Sequence[str], **fields: object) -> str:
    """Build a breakpoint table row; unspecified columns get neutral defaults."""
    row = dict(_ROW_DEFAULTS)
    row.update({k: str(v) for k, v in fields.items()})
    unknown = set(row) - set(BPS_COLUMNS)
    if unknown:
        raise KeyError(f"Unknown breakpoint columns: {sorted(unknown)}")
    return "\t".join([row[c] for c in BPS_COLUMNS] + list(samples))


def write_bps_table(path: str | Path, sample_names: Sequence[str], rows: Sequence[str]) -> Path:
    path = Path(path)
    with open_textmaybe_gzip(path, "wt") as fh:
        fh.write(header_line(sample_names) + "\n")
        for row in rows:
            fh.write(row + "\n")
    return path


def write_header_bam(path: str | Path, contigs: Sequence[Tuple[str, int]]) -> Path:
    """Write a read-less BAM that only carries @SQ lines."""
    path = Path(path)
    header = {
        "HD": {"VN": "1.6"},
        "SQ": [{"SN": name, "LN": length} for name, length in contigs],
    }
    with pysam.AlignmentFile(str(path), "wb", header=header):
        pass
    return path


def write_dbsnp_vcf(
    path: str | Path,
    contigs: Sequence[Tuple[str, int]],
    sites: Sequence[Mapping[str, object]],
) -> Path:
    """Write a bgzipped, tabix-indexed population VCF.

    ``sites`` items need ``contig``, ``pos`` (1-based), ``ref``, ``alt`` and ``id``.
    """
    path = Path(path)
    plain = path.with_suffix("") if path.suffix == ".gz" else path
    header = pysam.VariantHeader()
    header.add_meta("fileformat", "VCFv4.2")
    for name, length in contigs:
        header.contigs.add(name, length=length)

    with pysam.VariantFile(str(plain), "w", header=header) as vcf:
        for site in sites:
            ref = str(site["ref"])
            pos0 = int(site["pos"]) - 1
            rec = vcf.new_record(
                contig=str(site["contig"]),
                start=pos0,
                stop=pos0 + len(ref),
                alleles=(ref, str(site["alt"])),
                id=str(site["id"]),
            )
            vcf.write(rec)

    if path.suffix != ".gz":
        return plain
    pysam.tabix_compress(str(plain), str(path), force=True)
    pysam.tabix_index(str(path), preset="vcf", force=True)
    return path


def make_toy_data(*, outdir: str | Path) -> Dict[str, str]:
    """Create a tiny BAM header, breakpoint table and dbSNP VCF for demos/tests.

    The table holds four tumor/normal breakpoints:

    - chr1:50 deletion, tumor only (somatic PASS)
    - chr1:120 insertion, present in the normal and in dbSNP (LOWSOMATICLOD)
    - chr1:30 -> chr1:170 deletion-type SV with one supporting read (LOWLOD)
    - chr1:60 -> chr2:40 translocation, tumor only (somatic PASS)

    Returns
    -------
    dict
        Paths to the generated files.
    """
    outdir_p = ensure_outdir(outdir)

    ref_seq = ("ACGT" * 50)[:200]

    bam = write_header_bam(outdir_p / "tumor.bam", TOY_CONTIGS)

    rows = [
        bps_row(
            [sample_field(12, 30, split=10, cigar=12), sample_field(0, 35)],
            pos1=50,
            pos2=53,
            ref=ref_seq[49:53],
            alt=ref_seq[49],
            span=3,
        ),
        bps_row(
            [sample_field(15, 30, split=12, cigar=15), sample_field(14, 28, split=11, cigar=14)],
            pos1=120,
            pos2=121,
            ref=ref_seq[119],
            alt=ref_seq[119] + "TT",
            span=2,
            insert="TT",
            repeat="TTTT",
        ),
        bps_row(
            [sample_field(1, 40, split=1, disc=2), sample_field(0, 30)],
            pos1=30,
            pos2=170,
            strand1="+",
            strand2="-",
            span=140,
            evidence="ASDIS",
        ),
        bps_row(
            [sample_field(10, 25, split=6, disc=8, reads=["r1", "r2"]), sample_field(0, 30, disc=1)],
            pos1=60,
            chr2="chr2",
            pos2=40,
            strand1="+",
            strand2="+",
            span=-1,
            homol="AC",
            evidence="ASDIS",
            reads="r1,r2",
        ),
    ]
    bps = write_bps_table(outdir_p / "toy.bps.txt.gz", TOY_SAMPLES, rows)

    dbsnp = write_dbsnp_vcf(
        outdir_p / "dbsnp.vcf.gz",
        TOY_CONTIGS,
        [
            {"contig": "chr1", "pos": 90, "ref": ref_seq[89], "alt": "A" if ref_seq[89] != "A" else "C", "id": "rs100"},
            {"contig": "chr1", "pos": 120, "ref": ref_seq[119], "alt": ref_seq[119] + "TT", "id": "rs120"},
        ],
    )

    summary = {
        "bam": str(bam),
        "bps": str(bps),
        "dbsnp_vcf": str(dbsnp),
        "outdir": str(outdir_p),
    }

    write_json(outdir_p / "toy_summary.json", summary)
    return summary
