"""Build WebAssembly web applications from an annotated index.html."""

__version__ = "0.1.0"