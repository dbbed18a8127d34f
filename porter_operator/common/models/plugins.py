import re
from typing import Dict, List, Mapping, Optional
from urllib.parse import urlsplit
from porter_operator.common.models.labels import Labels
from porter_operator.types.models import Plugin
from porter_operator.utils.helpers import md5_hex

_UNSAFE_LABEL_CHARS = re.compile(r"[^a-zA-Z0-9._-]+")


def clean_url(url: str) -> str:
    """Strip the scheme and replace characters that are not allowed in label values."""
    scheme = urlsplit(url).scheme
    if scheme:
        url = url.replace(f"{scheme}://", "")
    return _UNSAFE_LABEL_CHARS.sub("_", url)


class PluginSet:
    """Normalised view of the plugins an AgentConfig installs.

    Plugins are ordered by name so that the derived label, claim name and
    install arguments do not depend on the order of the manifest.
    """

    PLUGIN_CLAIM_PREFIX = "porter-"

    DEFAULT_PLUGINS = {"kubernetes": Plugin(feed_url=None, url=None, mirror=None, version=None)}

    _plugins: Dict[str, Plugin]

    def __init__(self, plugins: Optional[Mapping[str, Plugin]] = None) -> None:
        self._plugins = {name: plugins[name] for name in sorted(plugins or {})}

    @classmethod
    def with_defaults(cls, plugins: Optional[Mapping[str, Plugin]]) -> "PluginSet":
        return cls(plugins or cls.DEFAULT_PLUGINS)

    @property
    def names(self) -> List[str]:
        return list(self._plugins)

    def get(self, name: str) -> Optional[Plugin]:
        return self._plugins.get(name)

    def is_empty(self) -> bool:
        return not self._plugins

    def label(self) -> str:
        parts = []
        for name, plugin in self._plugins.items():
            parts.append(name)
            if plugin.feed_url:
                parts.append(clean_url(plugin.feed_url))
            if plugin.url:
                parts.append(clean_url(plugin.url))
            if plugin.mirror:
                parts.append(clean_url(plugin.mirror))
            if plugin.version:
                parts.append(plugin.version)
        return "_".join(parts)

    @property
    def hash(self) -> str:
        return md5_hex(self.label())

    def claim_name(self, namespace: str) -> str:
        """Name of the claim holding this plugin set; empty when there are no plugins."""
        if self.is_empty():
            return ""
        return self.PLUGIN_CLAIM_PREFIX + md5_hex(self.label() + namespace)

    def selector_labels(self) -> Labels:
        return Labels.generate_plugin_labels(self.hash)

    def install_args(self) -> List[str]:
        """Porter arguments installing every plugin of the set."""
        args = ["plugins", "install"]
        for name, plugin in self._plugins.items():
            args.append(name)
            if plugin.feed_url:
                args.extend(["--feed-url", plugin.feed_url])
            if plugin.url:
                args.extend(["--url", plugin.url])
            if plugin.mirror:
                args.extend(["--mirror", plugin.mirror])
            if plugin.version:
                args.extend(["--version", plugin.version])
        return args

    def __len__(self) -> int:
        return len(self._plugins)

    def __repr__(self) -> str:
        return f"PluginSet<{', '.join(self.names)}>"
