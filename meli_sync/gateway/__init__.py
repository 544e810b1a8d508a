"""Outbound HTTP clients: marketplace, business-process system, spreadsheet webhook."""
