# stepci_workflow.py
# The Rust workspace pipeline from ci.yml, written with the Python DSL.
from __future__ import annotations

from stepci.dsl import checkout, pipeline, sh, toolchain


def workflow():
    return pipeline(
        "ci",
        checkout(),

        toolchain("nightly", "rustfmt", name="toolchain nightly (fmt)"),
        sh("fmt", "cargo +nightly fmt --all -- --check"),

        toolchain("stable"),
        sh("build", "cargo build"),
        sh("test", "cargo test -p rstml"),
        sh("clippy", "cargo clippy --workspace"),

        toolchain("nightly"),
        sh("test on Nightly", "cargo test --workspace"),

        sh(
            "coverage",
            "cargo install cargo-tarpaulin\n"
            "cargo tarpaulin --out xml\n"
            "bash <(curl -s https://codecov.io/bash)\n",
        ),
    )
