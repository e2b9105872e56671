# matrixci_workflow.py
# The Rust crate's CI: format/clippy gate, a toolchain x OS build matrix,
# then coverage once the stable Linux build is green.
from __future__ import annotations

from matrixci import pipeline, job, sh, uses, matrix


def workflow():
    return pipeline(
        "Rust",
        job(
            "rustfmt-clippy",
            uses("actions/checkout@v3"),
            uses(
                "dtolnay/rust-toolchain@stable",
                name="Install stable",
                with_={"toolchain": "stable", "components": "clippy, rustfmt"},
            ),
            sh("Run rustfmt", "cargo fmt --all -- --check"),
            uses(
                "actions-rs/clippy-check@v1",
                name="Run clippy",
                with_={"token": "${{ secrets.GITHUB_TOKEN }}", "args": "--all -- -D warnings --verbose"},
            ),
            display_name="Format and Clippy",
            runs_on="ubuntu-latest",
        ),
        job(
            "arch-test",
            uses("actions/checkout@v3"),
            uses(
                "dtolnay/rust-toolchain@stable",
                name="Install ${{ matrix.toolchain }}",
                with_={"toolchain": "${{ matrix.toolchain }}"},
            ),
            sh("Build", "cargo build --verbose"),
            sh("Run tests", "cargo test --verbose"),
            needs=["rustfmt-clippy"],
            matrix=matrix(
                os=["ubuntu-latest", "windows-latest", "macos-12"],
                toolchain=["nightly", "stable"],
            )
            .include(toolchain="nightly-gnu", os="windows-latest")
            .include(toolchain="stable-gnu", os="windows-latest"),
            display_name="${{ matrix.os }}-${{ matrix.toolchain }}",
            runs_on="${{ matrix.os }}",
        ),
        job(
            "coverage",
            uses("actions/checkout@v3"),
            uses("dtolnay/rust-toolchain@stable", name="Install toolchain", with_={"toolchain": "stable"}),
            sh(
                "Install grcov",
                'curl -L "$LINK/v$GRCOV_VERSION/grcov-x86_64-unknown-linux-gnu.tar.bz2" | tar xj -C $HOME/.cargo/bin',
                env={
                    "LINK": "https://github.com/mozilla/grcov/releases/download",
                    "GRCOV_VERSION": "0.8.7",
                },
            ),
            uses("egor-tensin/setup-mingw@v2", name="Set up MinGW", with_={"platform": "x64", "cc": "false"}),
            sh("Run grcov", "bash coverage.sh", id="coverage"),
            uses("codecov/codecov-action@v3", name="Codecov upload", with_={"files": "coverage.lcov"}),
            needs=["arch-test"],
            # coverage only needs the reference platform, not the whole matrix
            needs_matrix={"arch-test": {"os": "ubuntu-latest", "toolchain": "stable"}},
            display_name="Code coverage",
            runs_on="ubuntu-latest",
        ),
        on=["push", "pull_request"],
    )
