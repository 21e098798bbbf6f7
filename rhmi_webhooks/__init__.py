"""Admission webhooks for the RHMIConfig upgrade schedule."""
