from prometheus_client import Counter, Histogram

DB_STATEMENT_TOTAL = Counter(
    "tablegate_db_statement_total",
    "Statements executed through tablegate",
    ["table", "op_type", "status"],
)

DB_STATEMENT_LATENCY_SECONDS = Histogram(
    "tablegate_db_statement_latency_seconds",
    "Statement execution latency in seconds",
    ["table", "op_type"],
)
