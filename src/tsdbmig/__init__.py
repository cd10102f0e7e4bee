"""
tsdbmig: migrate a legacy per-series chunk store into a block-partitioned time series store.

## Packages
- tsdbmig.core: constants, errors, label helpers and shared models.
- tsdbmig.legacy: chunk decoding, heads index loading and per-series sample readers.
- tsdbmig.migrate: interval grouping, k-way merge, output writer and the pipeline driver.
- tsdbmig.store: destination block store (Parquet parts, JSON manifest, transactions).
- tsdbmig.config: MigrateSettings / StoreSettings (env > TOML > defaults).
- tsdbmig.cli: `tsdbmig migrate | groups | show`.
"""

from __future__ import annotations

__version__ = "0.1.0"
