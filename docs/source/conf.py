# Sphinx configuration for the cropsim documentation.
#
# Build with ``sphinx-build -b html docs/source docs/build`` after installing
# the ``docs`` extra.

import os
import sys

# The docs build from a source checkout; the package is not installed.
sys.path.insert(0, os.path.abspath("../.."))

import cropsim  # after sys.path insert

# -- Project information -----------------------------------------------------

project = "cropsim"
copyright = "2025, cropsim developers"
author = "cropsim developers"
release = cropsim.__version__
version = ".".join(release.split(".")[:2])

# -- General configuration ---------------------------------------------------

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
    "sphinx.ext.autosummary",
    "sphinx.ext.intersphinx",
    "sphinx.ext.viewcode",
    "sphinx_autodoc_typehints",
    "nbsphinx",  # season walkthrough notebooks
    "sphinx_copybutton",
    "sphinx_design",
]

# API pages for cropsim.core and cropsim.library
autosummary_generate = True

autodoc_default_options = {
    "members": True,
    "member-order": "bysource",
    "undoc-members": False,
    "show-inheritance": True,
    "inherited-members": False,
    "imported-members": False,
}

# Frozen dataclasses document their fields in the "Parameters" section.
napoleon_numpy_docstring = True
napoleon_google_docstring = False
napoleon_attr_annotations = False
napoleon_use_ivar = True

autodoc_typehints = "description"

# Notebooks with live weather need network access; render them as stored.
nbsphinx_execute = "never"

intersphinx_mapping = {
    "python": ("https://docs.python.org/3", None),
    "numpy": ("https://numpy.org/doc/stable/", None),
    "pandas": ("https://pandas.pydata.org/docs/", None),
    "matplotlib": ("https://matplotlib.org/stable/", None),
    "requests": ("https://requests.readthedocs.io/en/latest/", None),
}

exclude_patterns = ["**.ipynb_checkpoints"]

# -- Options for HTML output -------------------------------------------------

html_theme = "pydata_sphinx_theme"
html_title = f"cropsim {release}"
html_short_title = "cropsim"

html_theme_options = {
    "show_nav_level": 2,
    "navigation_depth": 3,
    "collapse_navigation": True,
    "secondary_sidebar_items": ["page-toc"],
    "show_prev_next": True,
    "navigation_with_keys": True,
    "header_links_before_dropdown": 4,
    "footer_start": ["copyright"],
    "footer_end": ["sphinx-version"],
}

html_context = {
    "default_mode": "light",
}

pygments_style = "default"
pygments_dark_style = "github-dark"
