"""Certificate issuance, verification and side-table access."""
