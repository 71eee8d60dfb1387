import json
from pathlib import Path

import pysam
import pytest

from svrefilter.breakpoints import MalformedRecordError, open_bps_table
from svrefilter.dbsnp import load_dbsnp
from svrefilter.models import ScoringParams
from svrefilter.pipeline import refilter_breakpoints
from svrefilter.toy_data import TOY_CONTIGS, TOY_SAMPLES, bps_row, make_toy_data, sample_field, write_bps_table


@pytest.fixture()
def toy(tmp_path: Path) -> dict:
    return make_toy_data(outdir=tmp_path / "toy")


def test_toy_run_counts_and_outputs(toy: dict, tmp_path: Path):
    outdir = tmp_path / "out"
    db = load_dbsnp(toy["dbsnp_vcf"])
    run = refilter_breakpoints(
        input_bps=toy["bps"],
        bam_path=toy["bam"],
        outdir=outdir,
        analysis_id="toy",
        dbsnp=db,
        progress=False,
    )

    counts = run["counts"]
    assert counts["records_total"] == 4
    assert counts["records_pass"] == 2
    assert counts["records_fail"] == 2
    assert counts["fail_LOWLOD"] == 1
    assert counts["fail_LOWSOMATICLOD"] == 1
    assert counts["records_somatic"] == 2
    assert (counts["records_indel"], counts["records_sv"]) == (2, 2)
    assert counts["records_dbsnp"] == 1

    assert run["dbsnp_stats"]["skipped_snv"] == 1
    assert run["vcf_counts"]["unfiltered"]["indel"] == 2
    assert run["vcf_counts"]["unfiltered"]["sv"] == 2
    assert run["vcf_counts"]["filtered"]["indel"] == 1
    assert run["vcf_counts"]["filtered"]["sv"] == 1

    for key in ("bps", "unfiltered_indel_vcf", "unfiltered_sv_vcf", "indel_vcf", "sv_vcf"):
        assert Path(run["outputs"][key]).exists()
    assert run["outputs"]["bps"] == str(outdir / "toy.bps.txt.gz")

    summary = json.loads((outdir / "toy.summary.json").read_text())
    assert summary["counts"] == counts
    assert summary["samples"] == ["t000", "n000"]
    assert len(summary["lod_hist"]["max_lod"]) == len(summary["lod_hist"]["bin_edges"]) - 1
    assert sum(summary["lod_hist"]["max_lod"]) == 4


def test_refreshed_table_keeps_order_and_layout(toy: dict, tmp_path: Path):
    db = load_dbsnp(toy["dbsnp_vcf"])
    run = refilter_breakpoints(
        input_bps=toy["bps"], bam_path=toy["bam"], outdir=tmp_path / "out", dbsnp=db, progress=False
    )

    with open_bps_table(toy["bps"]) as (_, records):
        before = [(r.chrom1, r.pos1) for r in records]
    with open_bps_table(run["outputs"]["bps"]) as (names, records):
        after = list(records)

    assert names == ["t000", "n000"]
    assert [(r.chrom1, r.pos1) for r in after] == before
    assert [r.passthrough["conf"] for r in after] == ["PASS", "LOWSOMATICLOD", "LOWLOD", "PASS"]
    assert [r.population_match.record_id if r.in_database else "x" for r in after] == ["x", "rs120", "x", "x"]
    assert [r.passthrough["somatic"] for r in after] == ["1", "0", "0", "1"]
    # read tracking is off by default
    assert all(r.read_names == () for r in after)


def test_read_tracking_keeps_qnames(toy: dict, tmp_path: Path):
    run = refilter_breakpoints(
        input_bps=toy["bps"], bam_path=toy["bam"], outdir=tmp_path / "out", read_tracking=True, progress=False
    )
    with open_bps_table(run["outputs"]["bps"]) as (_, records):
        last = list(records)[-1]
    assert last.read_names == ("r1", "r2")
    assert last.alleles["t000"].read_names == ("r1", "r2")


def test_without_database_nothing_is_matched(toy: dict, tmp_path: Path):
    run = refilter_breakpoints(input_bps=toy["bps"], bam_path=toy["bam"], outdir=tmp_path / "out", progress=False)
    assert run["counts"]["records_dbsnp"] == 0
    assert run["dbsnp"] is None
    assert run["dbsnp_stats"] == {}


def test_pass_only_limits_unfiltered_vcfs(toy: dict, tmp_path: Path):
    run = refilter_breakpoints(
        input_bps=toy["bps"], bam_path=toy["bam"], outdir=tmp_path / "out", pass_only=True, progress=False
    )
    assert run["vcf_counts"]["unfiltered"] == run["vcf_counts"]["filtered"]
    with pysam.VariantFile(run["outputs"]["unfiltered_indel_vcf"]) as vcf:
        assert [r.pos for r in vcf] == [50]


def test_thresholds_move_verdicts(toy: dict, tmp_path: Path):
    run = refilter_breakpoints(
        input_bps=toy["bps"],
        bam_path=toy["bam"],
        outdir=tmp_path / "out",
        params=ScoringParams(lod=0.5),
        progress=False,
    )
    # the single-read SV now clears the non-REF cutoff
    assert run["counts"]["fail_LOWLOD"] == 0
    assert run["counts"]["records_pass"] == 3


def test_refuses_to_overwrite_input(toy: dict):
    outdir = Path(toy["outdir"])
    with pytest.raises(ValueError, match="overwrite"):
        refilter_breakpoints(
            input_bps=toy["bps"], bam_path=toy["bam"], outdir=outdir, analysis_id="toy", progress=False
        )


def test_missing_input(toy: dict, tmp_path: Path):
    with pytest.raises(FileNotFoundError, match="Input breakpoint table"):
        refilter_breakpoints(
            input_bps=tmp_path / "nope.bps.txt.gz", bam_path=toy["bam"], outdir=tmp_path / "out", progress=False
        )


def _outputs_in(outdir: Path) -> list:
    return sorted(p.name for p in outdir.glob("refilter.*"))


def test_malformed_row_leaves_no_outputs(toy: dict, tmp_path: Path):
    good = bps_row([sample_field(12, 30), sample_field(0, 35)], pos1=50, ref="CG", alt="C")
    bad = good.replace("\t50\t", "\tnope\t", 1)
    bps = write_bps_table(tmp_path / "in.bps.txt.gz", TOY_SAMPLES, [good, bad])
    outdir = tmp_path / "out"

    with pytest.raises(MalformedRecordError, match="line 3"):
        refilter_breakpoints(input_bps=bps, bam_path=toy["bam"], outdir=outdir, progress=False)
    assert _outputs_in(outdir) == []


def test_given_contigs_are_used_instead_of_the_header(toy: dict, tmp_path: Path):
    run = refilter_breakpoints(
        input_bps=toy["bps"],
        bam_path=tmp_path / "never-opened.bam",
        contigs=TOY_CONTIGS,
        outdir=tmp_path / "out",
        progress=False,
    )
    assert run["counts"]["records_total"] == 4

    # the translocation mate on chr2 is unknown to a chr1-only header
    outdir = tmp_path / "chr1_only"
    with pytest.raises(MalformedRecordError, match="chr2"):
        refilter_breakpoints(
            input_bps=toy["bps"], bam_path=toy["bam"], contigs=[("chr1", 200)], outdir=outdir, progress=False
        )
    assert _outputs_in(outdir) == []
