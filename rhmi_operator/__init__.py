"""RHMI operator: staged install and uninstall of the managed integration products."""
