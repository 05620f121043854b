"""Chart Converter - batch conversion of rhythm-game charts through a node graph."""

__version__ = "0.1.0"
