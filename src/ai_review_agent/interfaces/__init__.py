"""Protocol definitions for pluggable adapters."""

from .analysis import AnalysisProvider
from .comments import CommentSource
from .progress import NullProgressListener, ProgressListener

__all__ = ["AnalysisProvider", "CommentSource", "NullProgressListener", "ProgressListener"]
