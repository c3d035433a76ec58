"""Entry point for ``python -m cerfa_prefill``"""

from cerfa_prefill.cli import app

app()
