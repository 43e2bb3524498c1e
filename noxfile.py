from __future__ import annotations

import os
import pathlib
import secrets

import nox

ROOT = pathlib.Path(__file__).parent
CONSTRAINTS = ROOT / "requirements-dev.lock"

nox.options.sessions = ["lint", "typecheck", "tests", "property", "coverage"]
nox.options.reuse_existing_virtualenvs = False
nox.options.error_on_missing_interpreters = True


def install_with_constraints(session: nox.Session, *args: str) -> None:
    constraint = [f"--constraint={CONSTRAINTS}"] if CONSTRAINTS.exists() else []
    session.install(*constraint, *args)


@nox.session(python=["3.10", "3.11", "3.12"])
def tests(session: nox.Session) -> None:
    install_with_constraints(session, "coverage[toml]", "pytest", "hypothesis", ".")
    session.env["PYTHONHASHSEED"] = os.environ.get(
        "PYTHONHASHSEED", str(secrets.randbits(32))
    )
    session.run("coverage", "run", "-m", "pytest", "-vv", "--strict-markers", *session.posargs)


@nox.session(python=["3.10", "3.11", "3.12"])
def property(session: nox.Session) -> None:
    install_with_constraints(session, "pytest", "hypothesis", ".")
    session.run("pytest", "-vv", "-m", "property", "--strict-markers", *session.posargs)


@nox.session(python="3.10")
def lint(session: nox.Session) -> None:
    install_with_constraints(session, "ruff")
    session.run("ruff", "check", "mtf", "tests")


@nox.session(python="3.10")
def typecheck(session: nox.Session) -> None:
    install_with_constraints(session, "mypy", "types-PyYAML", ".")
    session.run("mypy", "mtf")


@nox.session(python="3.10")
def coverage(session: nox.Session) -> None:
    install_with_constraints(session, "coverage[toml]")
    session.run("coverage", "combine")
    session.run("coverage", "report", "--fail-under=80")


@nox.session(python="3.10")
def lock(session: nox.Session) -> None:
    install_with_constraints(session, "pip-tools")
    session.run(
        "pip-compile",
        "--extra",
        "dev",
        "pyproject.toml",
        "--output-file",
        str(CONSTRAINTS),
        "--resolver=backtracking",
    )
