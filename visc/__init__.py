"""visc - layout-structure visual regression engine."""

__version__ = "0.1.0"
