# src/resilience/__init__.py — v1
