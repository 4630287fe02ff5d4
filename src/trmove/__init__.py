"""trmove - crash-safe relocation of completed torrent payloads."""

__version__ = "0.4.0"
