from pathlib import Path

import pysam
import pytest

from svrefilter.breakpoints import MalformedRecordError, parse
from svrefilter.models import ScoringParams
from svrefilter.scoring import score_record
from svrefilter.toy_data import bps_row, sample_field
from svrefilter.vcf import VcfSink, build_vcf_header, select_for_vcf, write_vcfs

CONTIGS = [("chr1", 1000), ("chr2", 1000)]
SAMPLES = ["t1", "n1"]


def _scored(line: str):
    return score_record(parse(line, SAMPLES), ScoringParams())


def _records():
    passing = _scored(bps_row([sample_field(20, 20), sample_field(0, 30)], pos1=100, ref="AC", alt="A"))
    failing = _scored(bps_row([sample_field(1, 40), sample_field(0, 30)], pos1=200, ref="A", alt="AT"))
    sv = _scored(
        bps_row(
            [sample_field(12, 30, disc=4), sample_field(0, 30)],
            pos1=300,
            strand1="+",
            chr2="chr2",
            pos2=700,
            strand2="-",
            evidence="ASDIS",
            insert="GA",
        )
    )
    return [passing, failing, sv]


def test_select_subset_and_order():
    recs = _records()
    everything = list(select_for_vcf(recs, False))
    only_pass = list(select_for_vcf(recs, True))
    assert everything == recs
    assert only_pass == [r for r in recs if r.classification.is_pass]
    assert [r.pos1 for r in only_pass] == [100, 300]


def test_select_drops_unscored_when_pass_only():
    rec = parse(bps_row([sample_field(1, 2)]), ["t1"])
    assert list(select_for_vcf([rec], True)) == []
    assert list(select_for_vcf([rec], False)) == [rec]


def test_write_vcfs(tmp_path: Path):
    header = build_vcf_header(contigs=CONTIGS, sample_names=SAMPLES)
    with VcfSink(tmp_path / "run.", header) as sink:
        n = write_vcfs(_records(), sink, pass_only=False)
    assert n == 3
    assert sink.indel_path == tmp_path / "run.indel.vcf"
    assert sink.counts == {"indel": 2, "sv": 1, "skipped_no_alleles": 0}

    with pysam.VariantFile(str(sink.indel_path)) as vcf:
        assert list(vcf.header.samples) == SAMPLES
        indels = list(vcf)
    assert [(r.pos, r.ref, r.alts[0]) for r in indels] == [(100, "AC", "A"), (200, "A", "AT")]
    assert list(indels[0].filter) == ["PASS"]
    assert "SOMATIC" in indels[0].info
    assert list(indels[1].filter) == ["LOWLOD"]
    assert indels[0].samples["t1"]["AD"] == 20
    assert indels[0].samples["n1"]["DP"] == 30

    with pysam.VariantFile(str(sink.sv_path)) as vcf:
        mates = list(vcf)
    assert [(r.chrom, r.pos) for r in mates] == [("chr1", 300), ("chr2", 700)]
    assert mates[0].info["MATEID"] == mates[1].id
    assert mates[1].info["MATEID"] == mates[0].id
    assert mates[0].alts[0] == "NGA[chr2:700["
    assert mates[1].alts[0] == "]chr1:300]GAN"
    assert mates[0].samples["t1"]["DR"] == 4


def test_pass_only_sink(tmp_path: Path):
    header = build_vcf_header(contigs=CONTIGS, sample_names=SAMPLES)
    with VcfSink(tmp_path / "run.", header) as sink:
        assert write_vcfs(_records(), sink, pass_only=True) == 2
    assert sink.counts["indel"] == 1
    assert sink.counts["sv"] == 1


def test_same_strand_insertion_is_reverse_complemented(tmp_path: Path):
    rec = _scored(
        bps_row(
            [sample_field(12, 30), sample_field(0, 30)],
            pos1=300,
            strand1="+",
            pos2=800,
            strand2="+",
            evidence="ASSMB",
            insert="AAC",
        )
    )
    header = build_vcf_header(contigs=CONTIGS, sample_names=SAMPLES)
    with VcfSink(tmp_path / "inv.", header) as sink:
        write_vcfs([rec], sink, pass_only=False)
    with pysam.VariantFile(str(sink.sv_path)) as vcf:
        alts = [r.alts[0] for r in vcf]
    assert alts == ["NAAC]chr1:800]", "NGTT]chr1:300]"]


def test_indel_without_alleles_is_skipped(tmp_path: Path):
    rec = _scored(bps_row([sample_field(20, 20), sample_field(0, 30)], ref="x", alt="x"))
    header = build_vcf_header(contigs=CONTIGS, sample_names=SAMPLES)
    with VcfSink(tmp_path / "run.", header) as sink:
        write_vcfs([rec], sink, pass_only=False)
    assert sink.counts == {"indel": 0, "sv": 0, "skipped_no_alleles": 1}


def test_unknown_contig_is_an_input_error(tmp_path: Path):
    rec = _scored(bps_row([sample_field(20, 20), sample_field(0, 30)], chr1="chr9", ref="AC", alt="A"))
    header = build_vcf_header(contigs=CONTIGS, sample_names=SAMPLES)
    with VcfSink(tmp_path / "run.", header) as sink:
        with pytest.raises(MalformedRecordError, match="chr9"):
            write_vcfs([rec], sink, pass_only=False)
