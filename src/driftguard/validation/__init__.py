"""Endpoint validation: schema conformance, sample payloads, validator implementations."""
