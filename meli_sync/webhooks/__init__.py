"""Inbound marketplace notifications.

Each notification is validated, acknowledged with 200 straight away, and
reconciled on a background worker.
"""
