"""ZenHanzi: handwriting practice for Chinese characters, graded by a vision model."""

__version__ = "0.1.0"
