"""
shared/__init__.py

Shared utilities and models used across multiple modules.

This package contains common functionality that is used by multiple
components of the routing engine:
- models: Messages, classification results, model bindings, handler results
- errors: The failure taxonomy and its recovery semantics
- utils: Utility functions and helpers

These modules promote code reuse and keep the handler contracts consistent.
"""
