# stepci_workflow.py
# stepci's own CI: install, run the test suite, smoke-test the CLI.
from __future__ import annotations

from stepci.dsl import checkout, pipeline, sh


def workflow():
    return pipeline(
        "stepci",
        checkout(),
        sh("Install package", "python -m pip install -e '.[test]'"),
        sh("Run pytest", "pytest -q"),
        sh("Plan example pipeline", "stepci plan --workflow examples/rust/ci.yml"),
        env={"PYTHONUNBUFFERED": "1"},
    )
