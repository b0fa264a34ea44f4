"""Adventure archive export and import."""
