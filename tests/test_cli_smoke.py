import subprocess
import sys


def test_cli_help() -> None:
    cp = subprocess.run(
        [sys.executable, "-m", "svrefilter", "--help"],
        check=True,
        capture_output=True,
        text=True,
    )
    assert "svrefilter" in cp.stdout.lower()
    assert "refilter" in cp.stdout


def test_cli_version() -> None:
    from svrefilter import __version__

    cp = subprocess.run(
        [sys.executable, "-m", "svrefilter", "--version"],
        check=True,
        capture_output=True,
        text=True,
    )
    assert __version__ in cp.stdout
