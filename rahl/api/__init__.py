"""HTTP interface for rahl."""
