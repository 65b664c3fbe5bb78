"""Operator scripts: CoreService CLI and audit trail."""
