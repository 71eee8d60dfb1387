"""LOD scoring of breakpoints.

Two log-odds tests are run on every record, both in log10 units:

* non-reference: ``LL(alt, cov | AF = alt/cov) - LL(alt, cov | AF = 0)`` per
  sample; the record passes when any sample with coverage beats the cutoff.
* somatic: on the summed normal evidence,
  ``LL(alt, cov | AF = 0) - LL(alt, cov | AF = 0.5)``; large values mean the
  normal looks reference, so the variant is not a heterozygous germline call.

A population database hit lowers the non-reference cutoff and raises the
somatic cutoff. Repeat context raises the non-reference cutoff by the log
prior odds of an artifact, ``scale_errors * log10(1 + repeat_length)``.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Dict, List, Tuple

import numpy as np

from .breakpoints import BreakpointRecord
from .models import LOWLOD, LOWSOMATICLOD, Classification, SampleAllele, ScoringParams
from .utils import clamp

logger = logging.getLogger(__name__)

SEQ_ERROR = 1e-4
GERMLINE_AF = 0.5


def log_likelihood(cov: int, alt: int, af: float, *, error: float = SEQ_ERROR) -> float:
    """log10 P(alt of cov reads support the allele | allele fraction af)."""
    f = clamp(af, 0.0, 1.0)
    p_alt = f * (1.0 - error) + (1.0 - f) * error
    p_ref = f * error + (1.0 - f) * (1.0 - error)

    # Numerical guards
    p_alt = max(p_alt, 1e-300)
    p_ref = max(p_ref, 1e-300)

    ll = 0.0
    if alt > 0:
        ll += alt * float(np.log10(p_alt))
    if cov - alt > 0:
        ll += (cov - alt) * float(np.log10(p_ref))
    return ll


def _counts(allele: SampleAllele) -> Tuple[int, int]:
    alt = max(allele.alt, 0)
    cov = max(allele.cov, alt)
    return alt, cov


def nonref_lod(alt: int, cov: int) -> float:
    """LOD of AF at its maximum-likelihood estimate versus AF = 0.

    No coverage carries no evidence either way and scores 0.
    """
    if cov <= 0:
        return 0.0
    af = alt / cov
    return log_likelihood(cov, alt, af) - log_likelihood(cov, alt, 0.0)


def somatic_lod(alt: int, cov: int) -> float:
    """LOD that the normal is reference (AF = 0) rather than heterozygous."""
    if cov <= 0:
        return 0.0
    return log_likelihood(cov, alt, 0.0) - log_likelihood(cov, alt, GERMLINE_AF)


def repeat_prior_adjustment(repeat_length: int, scale_errors: float) -> float:
    """log10 prior odds of an artifact at a repeat, relative to non-repetitive sequence.

    Models the artifact rate as ``a0 * (1 + repeat_length) ** scale_errors``;
    ``scale_errors == 0`` keeps the rate constant.
    """
    if scale_errors == 0 or repeat_length <= 0:
        return 0.0
    return float(scale_errors) * float(np.log10(1.0 + repeat_length))


def nonref_cutoff(record: BreakpointRecord, params: ScoringParams) -> float:
    base = params.lod_db if record.in_database else params.lod
    return float(base) + repeat_prior_adjustment(record.repeat_length, params.scale_errors)


def somatic_cutoff(record: BreakpointRecord, params: ScoringParams) -> float:
    return float(params.lod_somatic_db if record.in_database else params.lod_somatic)


def classify(record: BreakpointRecord, params: ScoringParams) -> Classification:
    """Run both LOD tests on ``record`` and assemble the verdict."""
    cut_nonref = nonref_cutoff(record, params)

    sample_lods: Dict[str, float] = {}
    sample_afs: Dict[str, float] = {}
    nonref_pass = False
    normal_alt = 0
    normal_cov = 0
    n_normals = 0

    for name, allele in record.alleles.items():
        alt, cov = _counts(allele)
        lod = nonref_lod(alt, cov)
        sample_lods[name] = lod
        sample_afs[name] = alt / cov if cov > 0 else 0.0
        if cov > 0 and lod > cut_nonref:
            nonref_pass = True
        if name.startswith("n"):
            n_normals += 1
            normal_alt += alt
            normal_cov += cov

    max_lod = max(sample_lods.values()) if sample_lods else 0.0

    failed: List[str] = []
    if not nonref_pass:
        failed.append(LOWLOD)

    if n_normals > 0:
        cut_somatic = somatic_cutoff(record, params)
        som_lod = somatic_lod(normal_alt, normal_cov)
        som_pass = som_lod > cut_somatic
        if not som_pass:
            failed.append(LOWSOMATICLOD)
        return Classification(
            max_lod=max_lod,
            somatic_lod=som_lod,
            nonref_cutoff=cut_nonref,
            somatic_cutoff=cut_somatic,
            nonref_pass=nonref_pass,
            somatic_pass=som_pass,
            sample_lods=sample_lods,
            sample_afs=sample_afs,
            failed_tests=tuple(failed),
        )

    # Tumor-only: no somatic test.
    return Classification(
        max_lod=max_lod,
        somatic_lod=None,
        nonref_cutoff=cut_nonref,
        somatic_cutoff=None,
        nonref_pass=nonref_pass,
        somatic_pass=None,
        sample_lods=sample_lods,
        sample_afs=sample_afs,
        failed_tests=tuple(failed),
    )


def score(
    record: BreakpointRecord,
    lod_nonref: float,
    lod_nonref_db: float,
    lod_somatic: float,
    lod_somatic_db: float,
    error_scale: float,
) -> Classification:
    params = ScoringParams(
        lod=lod_nonref,
        lod_db=lod_nonref_db,
        lod_somatic=lod_somatic,
        lod_somatic_db=lod_somatic_db,
        scale_errors=error_scale,
    )
    return classify(record, params)


def score_record(record: BreakpointRecord, params: ScoringParams) -> BreakpointRecord:
    """Return ``record`` with its classification attached."""
    return replace(record, classification=classify(record, params))
