"""Mercado Libre order sync.

Reconciles marketplace order notifications into local order records and
mirrors terminal states to the business-process and spreadsheet systems.
"""
