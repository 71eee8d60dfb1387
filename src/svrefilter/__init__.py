"""svrefilter: re-score SV and indel breakpoint tables against LOD cutoffs.

Most users should use the CLI:

    svrefilter refilter -i sample.bps.txt.gz -b tumor.bam -a sample

"""

from __future__ import annotations

__all__ = ["__version__"]

__version__ = "0.1.0"
