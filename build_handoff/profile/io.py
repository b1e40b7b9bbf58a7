"""Pipeline profile loading and rendering.

This module provides helpers for loading profiles from YAML/JSON files,
the built-in default profile, and rendering a profile back to YAML.
"""

import json
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from build_handoff.profile.schema import PipelineProfile

DEFAULT_PROFILE_RESOURCE = "default.yaml"


class ProfileError(Exception):
    """Raised when a profile cannot be loaded or validated."""

    def __init__(self, message: str, code: str = "profile_error") -> None:
        super().__init__(message)
        self.code = code


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_json(path: Path) -> dict[str, Any]:
    """Load a JSON file and return its contents as a dict.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
        ValueError: If the document is not an object.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def parse_profile_data(data: dict[str, Any]) -> PipelineProfile:
    """Validate profile data.

    Raises:
        pydantic.ValidationError: If data does not match the schema.
    """
    return PipelineProfile.model_validate(data)


def load_profile(path: Path) -> PipelineProfile:
    """Load and validate a profile, choosing the parser by file suffix.

    Args:
        path: Path to a .yaml/.yml or .json file.

    Returns:
        Validated PipelineProfile.

    Raises:
        ProfileError: If the file is missing, unparsable, or invalid.
    """
    suffix = path.suffix.lower()
    try:
        if suffix in (".yaml", ".yml"):
            data = load_yaml(path)
        elif suffix == ".json":
            data = load_json(path)
        else:
            raise ProfileError(
                f"Unsupported profile format: {path.suffix}",
                code="unsupported_format",
            )
        return parse_profile_data(data)
    except FileNotFoundError as e:
        raise ProfileError(f"Profile not found: {path}", code="not_found") from e
    except ValidationError as e:
        raise ProfileError(f"Invalid profile {path}:\n{e}", code="validation") from e
    except (yaml.YAMLError, json.JSONDecodeError, ValueError) as e:
        raise ProfileError(f"Failed to parse {path}: {e}", code="parse_error") from e


def default_profile() -> PipelineProfile:
    """Return the built-in profile shipped with the package."""
    text = (
        resources.files("build_handoff.profile")
        .joinpath(DEFAULT_PROFILE_RESOURCE)
        .read_text(encoding="utf-8")
    )
    return parse_profile_data(yaml.safe_load(text))


def resolve_profile(path: Path | None) -> PipelineProfile:
    """Load the profile at path, or the built-in profile if path is None."""
    if path is None:
        return default_profile()
    return load_profile(path)


def profile_to_yaml_string(profile: PipelineProfile) -> str:
    """Render a profile as YAML."""
    data = profile.model_dump(mode="json", exclude_none=True)
    return yaml.safe_dump(data, sort_keys=False, default_flow_style=False)


__all__ = [
    "ProfileError",
    "default_profile",
    "load_json",
    "load_profile",
    "load_yaml",
    "parse_profile_data",
    "profile_to_yaml_string",
    "resolve_profile",
]
