"""Score-to-performance alignment: score timelines and alignment sessions."""

__version__ = "1.0.0"
