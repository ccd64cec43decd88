"""
x402 Payment Protocol Integration Module.

This module implements the x402 challenge/response protocol for the
gateway's paid resources: unpaid requests receive HTTP 402 with payment
requirements, and retried requests carrying an X-PAYMENT proof are
validated before the resource is released.

Key components:
- encoding: base64 JSON codec for X-PAYMENT / X-PAYMENT-RESPONSE
- requirements: payment requirement descriptors and 402 responses
- validation: strict and presence-only proof policies, dev bypass gate
- middleware: FastAPI middleware running the UNPAID/PAID state machine
- credits: conversion of paid amounts to ledger credits
- ledger: credit ledger adapters
- audit: payment event audit logging

Configuration is loaded from environment variables via app.core.config.
"""

__version__ = "0.1.0"
