"""asyncrmrf - Non-blocking recursive directory deletion built on asyncio."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("asyncrmrf")
except PackageNotFoundError:
    # Running from a source checkout: pyproject.toml is the single source of truth
    try:
        import tomllib
        from pathlib import Path

        _pyproject = Path(__file__).parent.parent.parent / "pyproject.toml"
        if _pyproject.exists():
            with open(_pyproject, "rb") as f:
                __version__ = tomllib.load(f)["project"]["version"]
        else:
            __version__ = "unknown"
    except (ImportError, OSError, KeyError, ValueError):
        __version__ = "unknown"
