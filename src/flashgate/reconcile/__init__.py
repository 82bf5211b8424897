"""Reconcilers mapping stored desired state onto the update engine."""
