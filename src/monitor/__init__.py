# src/monitor/__init__.py — v1
