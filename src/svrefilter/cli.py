from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from . import __version__
from .dbsnp import MATCH_MODES, load_dbsnp
from .models import ScoringParams
from .pipeline import refilter_breakpoints
from .plotting import plot_lod_hist, plot_verdict_counts
from .report import render_report
from .toy_data import make_toy_data
from .validation import detect_contig_style, read_alignment_contigs


def _setup_logging(verbosity: int, *, logfile: Optional[Path] = None) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity >= 2:
        level = logging.DEBUG

    log_fmt = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    logging.basicConfig(level=level, format=log_fmt, stream=sys.stderr)

    if logfile is not None:
        logfile.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(logfile)
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(log_fmt))
        logging.getLogger().addHandler(fh)


def _path_exists(p: str) -> str:
    if not Path(p).exists():
        raise argparse.ArgumentTypeError(f"Path does not exist: {p}")
    return p


def _log_path(outdir: Path, name: str) -> Path:
    return outdir / "logs" / name


def _handle_error(err: Exception, *, log_path: Optional[Path] = None) -> int:
    msg = f"{err.__class__.__name__}: {err}"
    sys.stderr.write(msg + "\n")
    if log_path is not None:
        sys.stderr.write(f"See log: {log_path}\n")
    return 2


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="svrefilter",
        description=(
            "svrefilter: re-score SV/indel breakpoint tables (bps.txt.gz) with new LOD cutoffs "
            "and an optional dbSNP database, and write refreshed tables and VCFs."
        ),
    )
    p.add_argument("--version", action="version", version=f"svrefilter {__version__}")

    sub = p.add_subparsers(dest="cmd", required=True)

    # -----------------
    # refilter
    # -----------------
    r = sub.add_parser(
        "refilter",
        help="Re-score a bps.txt.gz table and write the refreshed table and VCFs.",
    )
    r.add_argument(
        "-i",
        "--input-bps",
        required=True,
        type=_path_exists,
        help="Original bps.txt(.gz) breakpoint table.",
    )
    r.add_argument(
        "-b",
        "--bam",
        required=True,
        type=_path_exists,
        help="BAM/SAM/CRAM to take the contig header from.",
    )
    r.add_argument(
        "-a",
        "--analysis-id",
        default="refilter",
        help="Analysis ID, used as the prefix of every output file.",
    )
    r.add_argument("-o", "--outdir", default=".", help="Output directory.")
    r.add_argument(
        "-v",
        "--verbose",
        type=int,
        default=1,
        help="Verbosity level (0 = warnings only, 1 = info, 2+ = debug).",
    )
    r.add_argument(
        "-D",
        "--dbsnp-vcf",
        default=None,
        help="dbSNP (VCF) to compare indels against.",
    )
    r.add_argument(
        "--dbsnp-match",
        choices=list(MATCH_MODES),
        default="sequence",
        help="How an indel must match a dbSNP indel at the same position: identical sequence or length.",
    )

    # LOD cutoffs
    r.add_argument(
        "--lod",
        type=float,
        default=8.0,
        help="LOD cutoff to classify a breakpoint as non-REF (AF=0 vs AF=MLE).",
    )
    r.add_argument(
        "--lod-dbsnp",
        type=float,
        default=6.0,
        help="LOD cutoff to classify a breakpoint as non-REF at a dbSNP site.",
    )
    r.add_argument(
        "--lod-somatic",
        type=float,
        default=6.0,
        help="LOD cutoff to classify a breakpoint as somatic (AF=0 in normal vs AF=0.5).",
    )
    r.add_argument(
        "--lod-somatic-dbsnp",
        type=float,
        default=10.0,
        help="LOD cutoff to classify a breakpoint as somatic at a dbSNP site.",
    )
    r.add_argument(
        "--scale-errors",
        type=float,
        default=1.0,
        help="Scale the prior that a site is an artifact with its repeat length. 0 assumes a constant error rate.",
    )

    # Outputs
    r.add_argument(
        "--read-tracking",
        action="store_true",
        help="Keep supporting read names in the output table. Increases file sizes.",
    )
    r.add_argument(
        "--pass-only",
        action="store_true",
        help="Only write PASS breakpoints to the unfiltered VCFs as well.",
    )
    r.add_argument("--no-report", action="store_true", help="Do not write the HTML report and plots.")
    r.add_argument("--dry-run", action="store_true", help="Validate inputs and print planned outputs.")

    # -----------------
    # make-toy-data
    # -----------------
    t = sub.add_parser(
        "make-toy-data",
        help="Generate a tiny BAM header, bps table, and dbSNP VCF for demos/tests.",
    )
    t.add_argument("--outdir", required=True, help="Output directory for toy data.")
    t.add_argument("--dry-run", action="store_true", help="Validate paths without writing files.")

    return p


# -----------------
# Command handlers
# -----------------

def cmd_make_toy_data(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    if args.dry_run:
        print(f"Would write toy data into: {outdir}")
        return 0

    summary = make_toy_data(outdir=outdir)
    print(json.dumps(summary, indent=2))
    return 0


def _write_report(run: dict, outdir: Path, params: ScoringParams) -> Path:
    plots_dir = outdir / "plots"
    plots_dir.mkdir(parents=True, exist_ok=True)
    prefix = run["analysis_id"]

    verdict_png = plots_dir / f"{prefix}.verdict_counts.png"
    max_lod_png = plots_dir / f"{prefix}.max_lod_hist.png"
    somatic_png = plots_dir / f"{prefix}.somatic_lod_hist.png"

    plot_verdict_counts(counts=run["counts"], out_png=verdict_png)
    hist = run["lod_hist"]
    plot_lod_hist(
        bin_edges=hist["bin_edges"],
        counts=hist["max_lod"],
        out_png=max_lod_png,
        cutoff=params.lod,
        xlabel="Max per-sample LOD (AF=MLE vs AF=0)",
        title="Non-REF LOD",
    )
    plots = {
        "verdict_counts": str(Path("plots") / verdict_png.name),
        "max_lod_hist": str(Path("plots") / max_lod_png.name),
    }
    if sum(hist["somatic_lod"]) > 0:
        plot_lod_hist(
            bin_edges=hist["bin_edges"],
            counts=hist["somatic_lod"],
            out_png=somatic_png,
            cutoff=params.lod_somatic,
            xlabel="Normal LOD (AF=0 vs AF=0.5)",
            title="Somatic LOD",
        )
        plots["somatic_lod_hist"] = str(Path("plots") / somatic_png.name)

    return render_report(outdir=outdir, version=__version__, run=run, plots=plots)


def cmd_refilter(args: argparse.Namespace) -> int:
    outdir = Path(args.outdir).expanduser().resolve()
    log_path = _log_path(outdir, f"{args.analysis_id}.refilter.log")
    _setup_logging(args.verbose, logfile=None if args.dry_run else log_path)

    logger = logging.getLogger("svrefilter")
    logger.info("svrefilter %s", __version__)

    params = ScoringParams(
        lod=args.lod,
        lod_db=args.lod_dbsnp,
        lod_somatic=args.lod_somatic,
        lod_somatic_db=args.lod_somatic_dbsnp,
        scale_errors=args.scale_errors,
    )

    try:
        contigs = read_alignment_contigs(args.bam)

        if args.dry_run:
            prefix = outdir / args.analysis_id
            print("Dry-run: inputs look OK.")
            print(f"Alignment header contigs: {len(contigs)}")
            print(f"Population database: {args.dbsnp_vcf or 'none'}")
            print("Planned outputs:")
            print(f"  {prefix}.bps.txt.gz")
            print(f"  {prefix}.unfiltered.indel.vcf, {prefix}.unfiltered.sv.vcf")
            print(f"  {prefix}.indel.vcf, {prefix}.sv.vcf")
            print(f"  {prefix}.summary.json")
            return 0

        dbsnp = None
        if args.dbsnp_vcf:
            logger.info("...loading the DBsnp database")
            style = detect_contig_style(name for name, _ in contigs)
            dbsnp = load_dbsnp(args.dbsnp_vcf, contig_style=None if style == "unknown" else style)
            logger.info("...loaded DBsnp database")

        run = refilter_breakpoints(
            input_bps=args.input_bps,
            bam_path=args.bam,
            contigs=contigs,
            outdir=outdir,
            analysis_id=args.analysis_id,
            params=params,
            dbsnp=dbsnp,
            dbsnp_match=args.dbsnp_match,
            read_tracking=bool(args.read_tracking),
            pass_only=bool(args.pass_only),
            progress=args.verbose > 0,
        )

        if not args.no_report:
            report_path = _write_report(run, outdir, params)
            logger.info("Report written: %s", report_path)

        print(run["outputs"]["bps"])
        return 0
    except Exception as e:
        return _handle_error(e, log_path=log_path)


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cmd == "refilter":
        return cmd_refilter(args)
    if args.cmd == "make-toy-data":
        return cmd_make_toy_data(args)

    parser.error(f"Unknown command: {args.cmd}")
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
