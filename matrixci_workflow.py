# matrixci_workflow.py
# Workflow for checking matrixci itself: lint, format, tests
from __future__ import annotations

from matrixci.dsl import job, sh, wf


def workflow():
    return wf(
        "matrixci",
        job(
            "lint",
            sh("Ruff check", "ruff check src tests"),
        ),
        job(
            "format-check",
            sh("Ruff format check", "ruff format --check src tests"),
        ),
        job(
            "test",
            sh("Install package", "python -m pip install -e '.[test]'"),
            sh("Run pytest", "python -m pytest -q"),
            needs=["lint"],
            matrix={"python": ["3.11", "3.12"]},
            env={"PYTHON_VERSION": "${{ matrix.python }}"},
        ),
        on=["push", "pull_request"],
    )
