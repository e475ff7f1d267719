"""
Version information for pricewatch.

The package version is read from pyproject.toml via importlib.metadata so
the project metadata stays the single source of truth.
"""

try:
    from importlib.metadata import version

    __version__ = version("pricewatch")
except Exception:
    # Fallback for development (package not installed)
    import tomllib
    from pathlib import Path

    try:
        pyproject_path = Path(__file__).parent.parent / "pyproject.toml"
        with open(pyproject_path, "rb") as f:
            pyproject = tomllib.load(f)
            __version__ = pyproject["project"]["version"]
    except Exception:
        __version__ = "0.0.0-dev"
