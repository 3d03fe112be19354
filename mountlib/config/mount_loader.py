from pathlib import Path
from typing import Any, Dict, Union

from uvicorn.importer import import_from_string

from .mount_config import MountConfig
from .yaml_loader import load_yaml

HOOK_KEYS = ("before_execution", "before_response", "after_response", "before_listen")


def _load_hooks(section: Dict[str, Any]) -> Dict[str, Any]:
    hooks: Dict[str, Any] = {}
    for key, ref in (section or {}).items():
        if key not in HOOK_KEYS:
            raise ValueError(f"Unknown hook {key!r}, expected one of {', '.join(HOOK_KEYS)}")
        hooks[key] = import_from_string(ref) if isinstance(ref, str) else ref
    return hooks


def load_mount_config(path: Union[str, Path]) -> MountConfig:
    """Load ``api_mount.yaml`` and return the shared :class:`MountConfig`.

    Parameters
    ----------
    path:
        File system path to the YAML configuration file.  Hooks are given as
        ``"package.module:attribute"`` import strings.
    """

    raw = load_yaml(path)
    section = raw.get("api_mount", {}) or {}
    port = section.get("port")
    return MountConfig(
        name=section.get("name"),
        base_path=section.get("base_path"),
        port=int(port) if port is not None else None,
        host=section.get("host"),
        **_load_hooks(section.get("hooks", {})),
    )
