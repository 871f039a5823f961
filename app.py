#!/usr/bin/env python3
"""
app.py - Hugging Face Spaces entrypoint for the LHP Report Exporter Gradio app.

Spaces expects a top-level variable referencing the Gradio app. This file
imports the builder from src/gradio_ui.py and exposes it as `demo` so the
platform can serve it. Do NOT call demo.launch() here.
"""

from src.gradio_ui import _build_ui

demo = _build_ui()
