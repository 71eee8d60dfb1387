from pathlib import Path

import pytest

from svrefilter.breakpoints import (
    BPS_COLUMNS,
    MalformedRecordError,
    attach_sample_names,
    header_line,
    open_bps_table,
    parse,
    parse_header,
    parse_raw,
    to_line,
)
from svrefilter.aggregate import aggregate
from svrefilter.dbsnp import annotate, load_dbsnp
from svrefilter.models import PopulationMatch, ScoringParams
from svrefilter.scoring import score_record
from svrefilter.toy_data import bps_row, sample_field, write_bps_table, write_dbsnp_vcf


def _indel_row() -> str:
    return bps_row(
        [sample_field(20, 20, split=8, cigar=12, reads=["q1", "q2"]), sample_field(0, 30, disc=1)],
        pos1=1000,
        pos2=1003,
        ref="ACGT",
        alt="A",
        repeat="GTGT",
        reads="q1,q2",
        dct=5,
    )


def test_header_roundtrip():
    names = parse_header(header_line(["t1", "n1"]))
    assert names == ["t1", "n1"]


def test_header_tumor_only_is_valid():
    assert parse_header(header_line(["t000"])) == ["t000"]


def test_header_without_samples_is_rejected():
    with pytest.raises(MalformedRecordError, match="line 1"):
        parse_header("\t".join(BPS_COLUMNS))


def test_header_rejects_bad_sample_prefix():
    with pytest.raises(MalformedRecordError, match="must start with"):
        parse_header(header_line(["t1", "x1"]))


def test_header_rejects_duplicate_samples():
    with pytest.raises(MalformedRecordError, match="duplicate"):
        parse_header(header_line(["t1", "t1"]))


def test_rename_follows_header_order():
    raw = parse_raw(_indel_row(), line_number=2)
    rec = attach_sample_names(raw, ["t1", "n1"])
    assert rec.sample_names == ("t1", "n1")
    assert rec.alleles["t1"] is raw.slots[0]
    assert rec.alleles["n1"] is raw.slots[1]

    swapped = attach_sample_names(raw, ["n1", "t1"])
    assert swapped.alleles["n1"].alt == 20
    assert swapped.alleles["t1"].alt == 0


def test_rename_count_mismatch():
    raw = parse_raw(_indel_row(), line_number=7)
    with pytest.raises(MalformedRecordError, match="line 7"):
        attach_sample_names(raw, ["t1"])


def test_parse_fields():
    rec = parse(_indel_row(), ["t1", "n1"])
    assert rec.is_indel
    assert (rec.chrom1, rec.pos1, rec.ref, rec.alt) == ("chr1", 1000, "ACGT", "A")
    assert rec.repeat_length == 4
    assert rec.read_names == ("q1", "q2")
    assert rec.alleles["t1"].read_names == ("q1", "q2")
    assert rec.alleles["n1"].disc == 1
    assert rec.discordant.tumor == 5
    assert rec.has_normal
    assert rec.classification is None


def test_parse_rejects_non_integer_position():
    line = _indel_row().replace("\t1000\t", "\tabc\t", 1)
    with pytest.raises(MalformedRecordError, match="pos1"):
        parse(line, ["t1", "n1"], line_number=3)


def test_parse_rejects_short_sample_field():
    line = bps_row(["1:2:3"])
    with pytest.raises(MalformedRecordError, match="sample field"):
        parse(line, ["t1"])


def test_parse_rejects_truncated_row():
    with pytest.raises(MalformedRecordError, match="fields"):
        parse("chr1\t100\t+", ["t1"], line_number=9)


def test_to_line_roundtrip_keeps_classification():
    names = ["t1", "n1"]
    scored = score_record(parse(_indel_row(), names), ScoringParams())
    line = to_line(scored)

    cols = line.split("\t")
    assert cols[BPS_COLUMNS.index("conf")] == scored.classification.filter_string
    assert cols[BPS_COLUMNS.index("maxlod")] == f"{scored.classification.max_lod:.2f}"

    again = score_record(parse(line, names), ScoringParams())
    assert again.classification == scored.classification
    assert to_line(again) == line


def test_to_line_roundtrip_keeps_population_match(tmp_path: Path):
    db = load_dbsnp(
        write_dbsnp_vcf(
            tmp_path / "db.vcf.gz",
            [("chr1", 1000)],
            [{"contig": "chr1", "pos": 20, "ref": "A", "alt": "AC", "id": "rs2"}],
        )
    )
    names = ["t1", "n1"]
    params = ScoringParams(scale_errors=0)
    line = bps_row([sample_field(10, 30), sample_field(0, 30)], pos1=20, pos2=21, ref="A", alt="AC")
    scored = score_record(aggregate(annotate(db, parse(line, names))), params)
    # normal LOD ~9.03 clears the novel-site cutoff but not the dbSNP one
    assert scored.classification.failed_tests == ("LOWSOMATICLOD",)

    out = to_line(scored)
    assert out.split("\t")[BPS_COLUMNS.index("dbsnp")] == "rs2"

    again = parse(out, names)
    assert again.population_match == PopulationMatch(in_database=True, record_id="rs2")
    rescored = score_record(aggregate(again), params)
    assert rescored.classification == scored.classification
    assert to_line(rescored) == out


def test_dbsnp_column_x_means_no_match():
    rec = parse(bps_row([sample_field(3, 10)], dbsnp="x"), ["t1"])
    assert rec.population_match is None
    assert not rec.in_database


def test_to_line_suppresses_read_names_only():
    rec = score_record(parse(_indel_row(), ["t1", "n1"]), ScoringParams())
    full = to_line(rec).split("\t")
    quiet = to_line(rec, suppress_read_tracking=True).split("\t")

    reads_i = BPS_COLUMNS.index("reads")
    assert full[reads_i] == "q1,q2"
    assert quiet[reads_i] == "x"
    assert quiet[-2].split(":")[-1] == "x"
    assert quiet[-2].split(":")[:-1] == full[-2].split(":")[:-1]
    assert [c for i, c in enumerate(quiet[:-2]) if i != reads_i] == [
        c for i, c in enumerate(full[:-2]) if i != reads_i
    ]


def test_passthrough_columns_are_kept():
    line = bps_row([sample_field(3, 10)], mapq1=37, contig_and_region="c_7_100_300")
    rec = parse(line, ["t1"])
    cols = to_line(rec).split("\t")
    assert cols[BPS_COLUMNS.index("mapq1")] == "37"
    assert cols[BPS_COLUMNS.index("contig_and_region")] == "c_7_100_300"


def test_open_bps_table_streams_records(tmp_path: Path):
    path = write_bps_table(tmp_path / "in.bps.txt.gz", ["t1", "n1"], [_indel_row(), "", _indel_row()])
    with open_bps_table(path) as (names, records):
        assert names == ["t1", "n1"]
        got = list(records)
    assert len(got) == 2


def test_open_bps_table_reports_bad_line(tmp_path: Path):
    bad = _indel_row().replace("\t1000\t", "\tnope\t", 1)
    path = write_bps_table(tmp_path / "in.bps.txt", ["t1", "n1"], [_indel_row(), bad])
    with open_bps_table(path) as (names, records):
        with pytest.raises(MalformedRecordError, match="line 3"):
            list(records)


def test_open_bps_table_empty_file(tmp_path: Path):
    path = tmp_path / "empty.bps.txt"
    path.write_text("")
    with pytest.raises(MalformedRecordError, match="empty"):
        with open_bps_table(path):
            pass
