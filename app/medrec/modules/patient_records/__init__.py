"""
Patient records module.

- A record has exactly one owner; other principals see only the files
  granted to them (intersected with current content).
- Access moves through request -> grant / reject / cancel, plus
  owner-initiated share, manage (replace) and revoke.
- Every committed change appends one provenance event; the store applies each
  operation atomically per record id.
"""
