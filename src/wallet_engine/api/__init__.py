"""HTTP API for payment flows, gateway notifications and invoices."""
