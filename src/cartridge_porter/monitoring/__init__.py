"""Monitoring and metrics for cartridge-porter."""
