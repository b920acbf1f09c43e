"""filemirror - one-way mirroring of a watched directory to SSH targets."""

__version__ = "0.1.0"
