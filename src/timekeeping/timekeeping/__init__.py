"""Timekeeping ledger ingestion package.

This package is organized by feature modules (ledger, attendance, employees,
ingestion) with a thin Flask controller layer and service/repository layers
that only talk to storage through Protocol contracts.
"""
