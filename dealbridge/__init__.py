"""Bridge from IPFS content identifiers to Filecoin storage deals."""

__version__ = "0.1.0"
