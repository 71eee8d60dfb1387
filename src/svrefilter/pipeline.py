from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, TextIO, Tuple

import numpy as np
from tqdm import tqdm

from .aggregate import aggregate
from .breakpoints import BreakpointRecord, header_line, open_bps_table, to_line
from .dbsnp import PopulationDatabase, annotate
from .models import LOWLOD, LOWSOMATICLOD, ScoringParams
from .scoring import score_record
from .utils import chunked, ensure_outdir, open_textmaybe_gzip, require_readable, write_json
from .validation import read_alignment_contigs
from .vcf import VcfSink, build_vcf_header, write_vcfs

logger = logging.getLogger(__name__)

LOD_BIN_EDGES = np.arange(-20.0, 205.0, 5.0)
_CHUNK_SIZE = 10_000


def process_record(
    record: BreakpointRecord,
    *,
    params: ScoringParams,
    dbsnp: Optional[PopulationDatabase] = None,
    dbsnp_match: str = "sequence",
) -> BreakpointRecord:
    """Annotate, aggregate and score one parsed record."""
    record = annotate(dbsnp, record, match_mode=dbsnp_match)
    record = aggregate(record)
    return score_record(record, params)


def _lod_histogram(values: Sequence[float]) -> List[int]:
    if not values:
        return [0] * (len(LOD_BIN_EDGES) - 1)
    clipped = np.clip(np.asarray(values, dtype=float), LOD_BIN_EDGES[0], LOD_BIN_EDGES[-1] - 1e-9)
    return np.histogram(clipped, bins=LOD_BIN_EDGES)[0].tolist()


def _remove_outputs(paths: Sequence[Path]) -> None:
    for p in paths:
        if p.exists():
            logger.warning("Removing incomplete output: %s", p)
            p.unlink()


def refilter_stream(
    records: Iterable[BreakpointRecord],
    *,
    table_out: TextIO,
    vcf_sinks: Sequence[Tuple[VcfSink, bool]],
    params: ScoringParams,
    dbsnp: Optional[PopulationDatabase] = None,
    dbsnp_match: str = "sequence",
    read_tracking: bool = False,
    chunk_size: int = _CHUNK_SIZE,
) -> Dict[str, object]:
    """Score ``records`` and write them to the table stream and each VCF sink.

    ``vcf_sinks`` pairs each sink with its ``pass_only`` policy. Every output
    keeps the input order.
    """
    counts = {
        "records_total": 0,
        "records_pass": 0,
        "records_fail": 0,
        f"fail_{LOWLOD}": 0,
        f"fail_{LOWSOMATICLOD}": 0,
        "records_somatic": 0,
        "records_indel": 0,
        "records_sv": 0,
        "records_dbsnp": 0,
    }
    max_lods: List[float] = []
    somatic_lods: List[float] = []

    for chunk in chunked(records, chunk_size):
        scored = [process_record(r, params=params, dbsnp=dbsnp, dbsnp_match=dbsnp_match) for r in chunk]

        for record in scored:
            table_out.write(to_line(record, not read_tracking) + "\n")

            cls = record.classification
            if cls is None:
                raise RuntimeError(f"Breakpoint {record.chrom1}:{record.pos1} was not scored")
            counts["records_total"] += 1
            counts["records_indel" if record.is_indel else "records_sv"] += 1
            if cls.is_pass:
                counts["records_pass"] += 1
            else:
                counts["records_fail"] += 1
            for test in cls.failed_tests:
                counts[f"fail_{test}"] += 1
            if cls.somatic:
                counts["records_somatic"] += 1
            if record.in_database:
                counts["records_dbsnp"] += 1
            max_lods.append(cls.max_lod)
            if cls.somatic_lod is not None:
                somatic_lods.append(cls.somatic_lod)

        for sink, pass_only in vcf_sinks:
            write_vcfs(scored, sink, pass_only=pass_only)

    return {
        "counts": counts,
        "lod_hist": {
            "bin_edges": LOD_BIN_EDGES.tolist(),
            "max_lod": _lod_histogram(max_lods),
            "somatic_lod": _lod_histogram(somatic_lods),
        },
    }


def refilter_breakpoints(
    *,
    input_bps: str | Path,
    bam_path: str | Path,
    contigs: Optional[Sequence[Tuple[str, int]]] = None,
    outdir: str | Path = ".",
    analysis_id: str = "refilter",
    params: Optional[ScoringParams] = None,
    dbsnp: Optional[PopulationDatabase] = None,
    dbsnp_match: str = "sequence",
    read_tracking: bool = False,
    pass_only: bool = False,
    progress: bool = True,
) -> Dict[str, object]:
    """Re-score a breakpoint table and write the refreshed table plus VCFs.

    Outputs, all prefixed with ``analysis_id`` inside ``outdir``:

    - ``.bps.txt.gz``: every record, same layout as the input
    - ``.unfiltered.indel.vcf`` / ``.unfiltered.sv.vcf``: every record, or
      only PASS records when ``pass_only`` is set
    - ``.indel.vcf`` / ``.sv.vcf``: PASS records
    - ``.summary.json``: counts, parameters and LOD histograms

    ``contigs`` are the alignment header (name, length) pairs; when omitted they
    are read from ``bam_path``. If the run fails part way, the table and VCFs
    written so far are removed before the error propagates.
    """
    t0 = time.time()
    params = params or ScoringParams()
    input_path = require_readable(input_bps, "Input breakpoint table")
    if contigs is None:
        contigs = read_alignment_contigs(bam_path)
    outdir_path = ensure_outdir(outdir)

    out_bps = outdir_path / f"{analysis_id}.bps.txt.gz"
    if out_bps.resolve() == input_path.resolve():
        raise ValueError(
            f"Output table {out_bps} would overwrite the input; choose another --analysis-id or --outdir."
        )

    logger.info("Input bps file:  %s", input_path)
    logger.info("Output bps file: %s", out_bps)
    logger.info("Analysis id: %s", analysis_id)
    logger.info("    LOD cutoff (non-REF):            %s", params.lod)
    logger.info("    LOD cutoff (non-REF, at DBSNP):  %s", params.lod_db)
    logger.info("    LOD somatic cutoff:              %s", params.lod_somatic)
    logger.info("    LOD somatic cutoff (at DBSNP):   %s", params.lod_somatic_db)
    logger.info("    Error scale (repeat context):    %s", params.scale_errors)
    logger.info("    DBSNP database: %s", dbsnp.path if dbsnp is not None else "none")

    unfiltered_base = outdir_path / f"{analysis_id}.unfiltered."
    filtered_base = outdir_path / f"{analysis_id}."
    partial_outputs = [out_bps] + [
        Path(f"{base}{kind}.vcf") for base in (unfiltered_base, filtered_base) for kind in ("indel", "sv")
    ]

    try:
        with open_bps_table(input_path) as (sample_names, records):
            if len(sample_names) == 1:
                logger.info("Single-sample mode (%s); somatic test disabled.", sample_names[0])
            header = build_vcf_header(contigs=contigs, sample_names=sample_names)

            it: Iterable[BreakpointRecord] = records
            if progress:
                it = tqdm(it, unit="bp", desc="Re-scoring breakpoints")

            with open_textmaybe_gzip(out_bps, "wt") as table_out, VcfSink(
                unfiltered_base, header
            ) as all_vcf, VcfSink(filtered_base, header) as pass_vcf:
                table_out.write(header_line(sample_names) + "\n")
                run = refilter_stream(
                    it,
                    table_out=table_out,
                    vcf_sinks=[(all_vcf, pass_only), (pass_vcf, True)],
                    params=params,
                    dbsnp=dbsnp,
                    dbsnp_match=dbsnp_match,
                    read_tracking=read_tracking,
                )
    except Exception:
        _remove_outputs(partial_outputs)
        raise

    dt = time.time() - t0
    counts = run["counts"]
    logger.info(
        "Scored %d breakpoints: %d PASS, %d FAIL (%d somatic, %d in population database)",
        counts["records_total"],
        counts["records_pass"],
        counts["records_fail"],
        counts["records_somatic"],
        counts["records_dbsnp"],
    )

    summary = {
        "input_bps": str(input_path),
        "bam_path": str(bam_path),
        "analysis_id": analysis_id,
        "samples": list(sample_names),
        "params": params.as_dict(),
        "dbsnp": dbsnp.path if dbsnp is not None else None,
        "dbsnp_match": dbsnp_match,
        "dbsnp_stats": dict(dbsnp.stats) if dbsnp is not None else {},
        "read_tracking": bool(read_tracking),
        "pass_only": bool(pass_only),
        "outputs": {
            "bps": str(out_bps),
            "unfiltered_indel_vcf": str(all_vcf.indel_path),
            "unfiltered_sv_vcf": str(all_vcf.sv_path),
            "indel_vcf": str(pass_vcf.indel_path),
            "sv_vcf": str(pass_vcf.sv_path),
        },
        "vcf_counts": {"unfiltered": all_vcf.counts, "filtered": pass_vcf.counts},
        "counts": counts,
        "lod_hist": run["lod_hist"],
        "runtime_seconds": float(dt),
    }
    write_json(outdir_path / f"{analysis_id}.summary.json", summary)
    return summary
