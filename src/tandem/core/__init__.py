"""Tandem core — config, logging, metrics, errors and failure policy."""
