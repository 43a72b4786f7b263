"""Entry point for python -m clinical_nlp execution.

This module enables running clinical-nlp as a module:
    python -m clinical_nlp --help
    python -m clinical_nlp batch ./reports/
"""

from clinical_nlp.cli import app

if __name__ == "__main__":
    app()
