"""
core/__init__.py

Core orchestration and routing modules.

This package contains the central coordination logic of the routing engine:
- classifier: override / tool command / AI sorting classification
- sorter: LLM-driven topic and language selection
- inference_router: intent to handler routing with chat fallback
- orchestrator: end-to-end processing of one inbound message
- reprocess: "try again" with a chosen prompt and/or model
- model_selection: eligible models and predicted-next suggestions
- bootstrap: composition root wiring stores, providers and handlers

These modules handle the high-level flow of user requests through the system.
"""
