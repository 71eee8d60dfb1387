from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple

PASS = "PASS"
LOWLOD = "LOWLOD"
LOWSOMATICLOD = "LOWSOMATICLOD"


@dataclass(frozen=True)
class SampleAllele:
    """Per-sample evidence for one breakpoint.

    Attributes
    ----------
    split:
        Split reads supporting the breakpoint (carried through, not re-derived).
    cigar:
        Reads with a matching indel in their CIGAR (carried through).
    alt:
        Total supporting reads used by the LOD model.
    cov:
        Read coverage at the break.
    disc:
        Discordant read pairs supporting the breakpoint.
    read_names:
        Supporting read qnames (empty unless read tracking was on upstream).
    """

    split: int
    cigar: int
    alt: int
    cov: int
    disc: int
    read_names: Tuple[str, ...] = ()


@dataclass(frozen=True)
class DiscordantCounts:
    tumor: int = 0
    normal: int = 0


@dataclass(frozen=True)
class PopulationMatch:
    """Result of a population database lookup."""

    in_database: bool
    record_id: str


@dataclass(frozen=True)
class Classification:
    """Scoring outcome for one breakpoint.

    ``sample_lods`` and ``sample_afs`` are keyed by sample name in header order.
    ``somatic_lod`` is None in tumor-only mode, where no somatic test is run.
    """

    max_lod: float
    somatic_lod: Optional[float]
    nonref_cutoff: float
    somatic_cutoff: Optional[float]
    nonref_pass: bool
    somatic_pass: Optional[bool]
    sample_lods: Mapping[str, float] = field(default_factory=dict)
    sample_afs: Mapping[str, float] = field(default_factory=dict)
    failed_tests: Tuple[str, ...] = ()

    @property
    def verdict(self) -> str:
        return PASS if not self.failed_tests else "FAIL"

    @property
    def is_pass(self) -> bool:
        return not self.failed_tests

    @property
    def somatic(self) -> bool:
        """A passing call whose normal looks reference."""
        return self.is_pass and bool(self.somatic_pass)

    @property
    def filter_string(self) -> str:
        """Value for the ``conf`` column and the VCF FILTER field."""
        return PASS if self.is_pass else ";".join(self.failed_tests)


@dataclass(frozen=True)
class ScoringParams:
    """LOD cutoffs and repeat-context error scaling.

    Any float is accepted; values only move the decision boundary.
    """

    lod: float = 8.0
    lod_db: float = 6.0
    lod_somatic: float = 6.0
    lod_somatic_db: float = 10.0
    scale_errors: float = 1.0

    def as_dict(self) -> Dict[str, float]:
        return {
            "lod": float(self.lod),
            "lod_db": float(self.lod_db),
            "lod_somatic": float(self.lod_somatic),
            "lod_somatic_db": float(self.lod_somatic_db),
            "scale_errors": float(self.scale_errors),
        }
