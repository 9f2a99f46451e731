import os
import sys

sys.path.insert(0, os.path.abspath(".."))

project   = "pilotmatch"
copyright = "2026, pilotmatch developers"
author    = "pilotmatch developers"

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
    "sphinx_autodoc_typehints",
    "sphinx_copybutton",
]

html_theme = "sphinx_rtd_theme"

autodoc_member_order    = "bysource"
autodoc_typehints       = "description"
always_document_param_types = True

# NumPy-style Parameters / Raises sections
napoleon_numpy_docstring = True
napoleon_google_docstring = False
napoleon_use_param  = True
napoleon_use_rtype  = False
