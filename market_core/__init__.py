"""Core (UI-agnostic) market research dashboard logic.

This package contains:
- record loading (CSV/JSON/XLSX -> pandas) and formatting helpers
- filter normalization and evaluation
- aggregation into chart-ready series, plus KPI summaries
- page compute functions (JSON-serializable payloads)
- chart helpers (Altair -> Vega-Lite spec dict)
"""
