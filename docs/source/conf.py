# Sphinx configuration for the Smart Traffic Light docs.
# Build with:  sphinx-build -b html docs/source docs/build

import os
import sys

import sphinx_rtd_dark_mode  # noqa: F401  (registers the dark-mode toggle)

# Root modules (config, logging_setup, main) and the sim/bus/server packages
sys.path.insert(0, os.path.abspath("../.."))

project = "Smart Traffic Light"
author = "Smart Traffic Light contributors"
copyright = "2026, " + author
release = "1.0"

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",   # sim/ uses NumPy style, bus/ uses Google style
    "sphinx.ext.viewcode",
    "sphinx_rtd_dark_mode",
]

autodoc_member_order = "bysource"
napoleon_numpy_docstring = True
napoleon_google_docstring = True

# Optional at docs build time: HTTP server and Telegram sink
autodoc_mock_imports = ["uvicorn", "requests"]

templates_path = ["_templates"]
exclude_patterns = []

html_theme = "sphinx_rtd_theme"
default_dark_mode = True
html_static_path = ["_static"]
