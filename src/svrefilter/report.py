from __future__ import annotations

import datetime as _dt
import logging
from pathlib import Path
from typing import Any, Dict

from jinja2 import Template

logger = logging.getLogger(__name__)


_REPORT_TEMPLATE = Template(
    """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <title>svrefilter report: {{ analysis_id }}</title>
  <style>
    body { font-family: Arial, Helvetica, sans-serif; margin: 24px; }
    code, pre { background: #f6f8fa; padding: 2px 4px; border-radius: 4px; }
    h1, h2, h3 { margin-top: 1.2em; }
    table { border-collapse: collapse; margin-top: 0.6em; }
    th, td { border: 1px solid #ddd; padding: 8px; }
    th { background: #f2f2f2; text-align: left; }
    .grid { display: grid; grid-template-columns: 1fr 1fr; gap: 16px; }
    .card { border: 1px solid #ddd; border-radius: 8px; padding: 12px; }
    .small { color: #666; font-size: 0.9em; }
    img { max-width: 100%; height: auto; border: 1px solid #eee; border-radius: 6px; }
  </style>
</head>
<body>

<h1>svrefilter report: {{ analysis_id }}</h1>
<p class="small">Generated: {{ generated_at }}</p>

<h2>Run summary</h2>
<div class="grid">
  <div class="card">
    <h3>Inputs</h3>
    <table>
      <tr><th>Breakpoint table</th><td><code>{{ input_bps }}</code></td></tr>
      <tr><th>Alignment header</th><td><code>{{ bam_path }}</code></td></tr>
      <tr><th>Population database</th><td><code>{{ dbsnp or "none" }}</code></td></tr>
      <tr><th>Samples</th><td>{{ samples | join(", ") }}</td></tr>
    </table>
  </div>
  <div class="card">
    <h3>Cutoffs</h3>
    <table>
      <tr><th>LOD non-REF</th><td>{{ params.lod }}</td></tr>
      <tr><th>LOD non-REF at dbSNP site</th><td>{{ params.lod_db }}</td></tr>
      <tr><th>LOD somatic</th><td>{{ params.lod_somatic }}</td></tr>
      <tr><th>LOD somatic at dbSNP site</th><td>{{ params.lod_somatic_db }}</td></tr>
      <tr><th>Repeat error scale</th><td>{{ params.scale_errors }}</td></tr>
    </table>
  </div>
</div>

<h2>Classification</h2>
<table>
  <tr><th>Breakpoints</th><td>{{ counts.records_total }}</td></tr>
  <tr><th>Indels / SVs</th><td>{{ counts.records_indel }} / {{ counts.records_sv }}</td></tr>
  <tr><th>PASS</th><td>{{ counts.records_pass }}</td></tr>
  <tr><th>FAIL</th><td>{{ counts.records_fail }}</td></tr>
  <tr><th>Failed non-REF test (LOWLOD)</th><td>{{ counts.fail_LOWLOD }}</td></tr>
  <tr><th>Failed somatic test (LOWSOMATICLOD)</th><td>{{ counts.fail_LOWSOMATICLOD }}</td></tr>
  <tr><th>Somatic</th><td>{{ counts.records_somatic }}</td></tr>
  <tr><th>Matched population database</th><td>{{ counts.records_dbsnp }}</td></tr>
</table>

<h2>Plots</h2>
<div class="grid">
  <div class="card">
    <h3>Classification counts</h3>
    <img src="{{ plots.verdict_counts }}" alt="classification counts">
  </div>
  <div class="card">
    <h3>Max non-REF LOD</h3>
    <img src="{{ plots.max_lod_hist }}" alt="max LOD histogram">
  </div>
</div>
{% if plots.somatic_lod_hist %}
<div class="grid" style="margin-top:16px;">
  <div class="card">
    <h3>Somatic LOD</h3>
    <img src="{{ plots.somatic_lod_hist }}" alt="somatic LOD histogram">
  </div>
</div>
{% endif %}

<h2>Outputs</h2>
<ul>
  <li><code>{{ outputs.bps }}</code> (re-scored breakpoint table)</li>
  <li><code>{{ outputs.unfiltered_indel_vcf }}</code>, <code>{{ outputs.unfiltered_sv_vcf }}</code>
    ({{ "PASS only" if pass_only else "all breakpoints" }})</li>
  <li><code>{{ outputs.indel_vcf }}</code>, <code>{{ outputs.sv_vcf }}</code> (PASS only)</li>
</ul>

<hr>
<p class="small">svrefilter {{ version }}</p>
</body>
</html>"""
)


def render_report(
    *,
    outdir: str | Path,
    version: str,
    run: Dict[str, Any],
    plots: Dict[str, str],
) -> Path:
    outdir = Path(outdir)
    outdir.mkdir(parents=True, exist_ok=True)

    html = _REPORT_TEMPLATE.render(
        generated_at=_dt.datetime.now().isoformat(timespec="seconds"),
        version=version,
        analysis_id=run.get("analysis_id"),
        input_bps=run.get("input_bps"),
        bam_path=run.get("bam_path"),
        dbsnp=run.get("dbsnp"),
        samples=run.get("samples", []),
        params=run.get("params", {}),
        counts=run.get("counts", {}),
        outputs=run.get("outputs", {}),
        pass_only=run.get("pass_only", False),
        plots=plots,
    )

    out_path = outdir / f"{run.get('analysis_id', 'refilter')}.report.html"
    out_path.write_text(html, encoding="utf-8")
    return out_path
