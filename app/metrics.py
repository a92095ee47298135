from prometheus_client import Counter

save_outcomes_total = Counter(
    "esign_save_outcomes_total",
    "Save requests by reconciliation outcome",
    ["outcome"],
)

storage_fallbacks_total = Counter(
    "esign_storage_fallbacks_total",
    "Writes that fell back to a lower-trust writer",
    ["stage"],
)

field_render_skips_total = Counter(
    "esign_field_render_skips_total",
    "Fields skipped while rendering a signed document",
    ["reason"],
)
