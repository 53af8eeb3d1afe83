"""
Billing package - subscriptions, plan catalog, usage quotas.

Lifecycle events arrive from the payment provider's membership webhooks (or
the internal lifecycle endpoints); quota evaluation and usage commits are
served by QuotaService against the per-period usage ledger.
"""
