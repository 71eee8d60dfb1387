from __future__ import annotations

from dataclasses import replace

from .breakpoints import BreakpointRecord
from .models import DiscordantCounts


def aggregate(record: BreakpointRecord) -> BreakpointRecord:
    """Fold per-sample discordant support into tumor/normal totals.

    Samples named ``t*`` count toward the tumor total and ``n*`` toward the
    normal total. The allele mapping itself is left as is.
    """
    tumor = 0
    normal = 0
    for name, allele in record.alleles.items():
        if name.startswith("t"):
            tumor += allele.disc
        else:
            normal += allele.disc
    return replace(record, discordant=DiscordantCounts(tumor=tumor, normal=normal))
