"""Token ledger, specialist registry and LLM access."""
