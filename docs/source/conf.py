import os
import sys

sys.path.insert(0, os.path.abspath("../.."))

project = "ParkSlot"
copyright = "2026, ParkSlot contributors"
author = "ParkSlot contributors"
release = "1.0.0"

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
    "sphinx.ext.viewcode",
]

autodoc_mock_imports = ["pika"]

templates_path = ["_templates"]
exclude_patterns: list[str] = []

html_theme = "sphinx_rtd_theme"
html_static_path = ["_static"]
