from __future__ import annotations

import importlib.util
import logging
import sys
import types
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..domain.errors import HookFailed
from ..domain.models import AddonInfo

logger = logging.getLogger("addonhost.addons.hooks")

ENTRY_FILE = "addon.py"


class AddonHooks:
    """
    Capability set addon code may provide.

    install() and uninstall() always exist; enable() / disable() are optional
    (a subclass sets them). `hooks` lists host hook names the addon answers.
    """

    hooks: Iterable[str] = ()
    enable: Optional[Callable[[], Any]] = None
    disable: Optional[Callable[[], Any]] = None

    def __init__(self, info: Optional[AddonInfo] = None) -> None:
        self.info = info

    def install(self) -> None:
        return None

    def uninstall(self) -> None:
        return None

    def check_info(self) -> bool:
        return self.info is not None and bool(self.info.name)


class DefaultAddonHooks(AddonHooks):
    """Used when an addon ships no code of its own."""


def _load_module_from_path(module_name: str, path: Path) -> types.ModuleType | None:
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        return None
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)  # type: ignore[union-attr]
    return module


class HookRegistry:
    """
    Maps addon name -> hook implementation.

    Resolution order:
      1. explicit register(name, impl)
      2. <addon_dir>/addon.py exporting an `addon` object
      3. DefaultAddonHooks
    """

    def __init__(self) -> None:
        self._explicit: Dict[str, AddonHooks] = {}
        self._loaded: Dict[str, AddonHooks] = {}

    def register(self, name: str, impl: AddonHooks) -> None:
        self._explicit[name] = impl

    def forget(self, name: str) -> None:
        self._loaded.pop(name, None)
        sys.modules.pop(f"addonhost_addons.{name}", None)

    def resolve(self, name: str, addon_dir: Path, info: Optional[AddonInfo] = None) -> AddonHooks:
        if name in self._explicit:
            impl = self._explicit[name]
            if getattr(impl, "info", None) is None:
                impl.info = info
            return impl
        if name in self._loaded:
            return self._loaded[name]

        entry = addon_dir / ENTRY_FILE
        if not entry.is_file():
            return DefaultAddonHooks(info)

        module_name = f"addonhost_addons.{name}"
        try:
            module = _load_module_from_path(module_name, entry)
        except Exception as e:
            logger.exception("Failed loading hook module for addon '%s' from %s", name, entry)
            raise HookFailed(f"Addon '{name}' entry {ENTRY_FILE} failed to load: {e}") from e
        if module is None:
            raise HookFailed(f"Addon '{name}' entry {ENTRY_FILE} could not be loaded")

        impl = getattr(module, "addon", None)
        if impl is None:
            raise HookFailed(f"Addon '{name}' entry {ENTRY_FILE} has no 'addon' attribute")
        if getattr(impl, "info", None) is None:
            try:
                impl.info = info
            except AttributeError:
                pass
        self._loaded[name] = impl
        logger.info("Loaded hook implementation for addon '%s' from %s", name, entry)
        return impl

    def declared_hooks(self, impl: AddonHooks, info: AddonInfo) -> List[str]:
        names = set(getattr(impl, "hooks", ()) or ())
        names.update(info.declared_hooks)
        return sorted(names)


def call_hook(name: str, impl: Any, hook: str, *, required: bool = False) -> bool:
    """
    Invoke one lifecycle hook.

    Returns False when an optional hook is absent. Any exception raised by
    addon code becomes HookFailed with the original message.
    """
    fn = getattr(impl, hook, None)
    if fn is None:
        if required:
            raise HookFailed(f"Addon '{name}' does not implement {hook}()")
        return False
    logger.info("Running %s() hook for addon '%s'", hook, name)
    try:
        fn()
    except HookFailed:
        raise
    except Exception as e:
        logger.exception("%s() hook for addon '%s' failed", hook, name)
        raise HookFailed(f"{hook}() hook for addon '{name}' failed: {e}") from e
    return True
