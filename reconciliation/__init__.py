"""Payout reconciliation and refund-voucher engine."""
