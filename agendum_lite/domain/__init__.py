"""Pure event derivation: normalization, enrichment, filtering and session ordinals."""
