from prometheus_client import Counter, Histogram

# --- Versioning Metrics ---

PROMPT_VERSIONS_MINTED_TOTAL = Counter(
    'promptkeeper_prompt_versions_minted_total',
    'Total number of prompt rows inserted with a freshly minted version',
    ['operation']
)

HISTORY_RECORDS_TOTAL = Counter(
    'promptkeeper_history_records_total',
    'Total number of prompt history rows appended',
    ['operation']
)

VERSION_MINT_CONFLICTS_TOTAL = Counter(
    'promptkeeper_version_mint_conflicts_total',
    'Total number of version collisions caught by the lineage unique constraint'
)

# --- Import / Export Metrics ---

IMPORT_ROWS_TOTAL = Counter(
    'promptkeeper_import_rows_total',
    'Prompt rows processed by the importer',
    ['format', 'outcome']  # outcome: imported, skipped, error
)

EXPORTS_TOTAL = Counter(
    'promptkeeper_exports_total',
    'Total number of export payloads produced',
    ['format']
)

# --- LLM Metrics ---

LLM_CALLS_TOTAL = Counter(
    'promptkeeper_llm_calls_total',
    'Total number of chat-completion calls made to model providers',
    ['llm_provider', 'llm_model', 'status']  # status: success, error_http, error_connection, error_response
)

LLM_CALL_LATENCY_SECONDS = Histogram(
    'promptkeeper_llm_call_latency_seconds',
    'Latency of chat-completion calls to model providers',
    ['llm_provider', 'llm_model']
)
