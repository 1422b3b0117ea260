"""upkg: resolve, fetch and unpack packages from many ecosystems without root."""

__version__ = "0.3.0"
