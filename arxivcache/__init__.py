"""arxivcache - local arXiv metadata, artifact and citation cache.

Harvests metadata over OAI-PMH, downloads PDFs and TeX sources on demand,
and derives a citation graph from the downloaded sources.
"""

__version__ = "1.0.0"

from arxivcache.config import Settings
from arxivcache.models.paper import Paper
from arxivcache.cache import ArxivCache

__all__ = ["ArxivCache", "Paper", "Settings", "__version__"]
