"""CertChain: certificate issuance anchored to IPFS and a public ledger."""

__version__ = "0.1.0"
