"""Unit tests for operator labels and plugin sets."""

from porter_operator.common.models.labels import Labels
from porter_operator.common.models.plugins import PluginSet, clean_url
from porter_operator.types.models import Plugin
from porter_operator.utils.helpers import md5_hex


def plugin(feed_url=None, url=None, mirror=None, version=None):
    return Plugin(feed_url=feed_url, url=url, mirror=mirror, version=version)


class TestLabels:
    """Tests for the Labels builder."""

    def test_generate_resource_labels(self):
        """Resource labels carry kind, name, generation and retry."""
        labels = Labels.generate_resource_labels("Installation", "mysql", 2, "")
        assert labels.as_dict() == {
            "porter.sh/managed": "true",
            "porter.sh/resourceKind": "Installation",
            "porter.sh/resourceName": "mysql",
            "porter.sh/resourceGeneration": "2",
            "porter.sh/retry": "",
        }

    def test_as_str_is_a_selector(self):
        """as_str renders an equality selector in insertion order."""
        labels = Labels().include_managed().include_job_type(Labels.JOB_TYPE_AGENT)
        assert labels.as_str() == "porter.sh/managed=true,porter.sh/jobType=porter-agent"

    def test_as_sorted_str(self):
        """as_sorted_str sorts by key and separates with spaces."""
        labels = Labels({"b": "2", "a": "1"})
        assert labels.as_sorted_str() == "a=1 b=2"

    def test_include_missing_never_overrides(self):
        """User labels never replace operator labels."""
        labels = Labels().include_resource_kind("AgentAction").include_missing(
            {"porter.sh/resourceKind": "Installation", "team": "data"}
        )
        assert labels.get(Labels.RESOURCE_KIND_LABEL) == "AgentAction"
        assert labels.get("team") == "data"

    def test_contains(self):
        """contains checks every key and value of the other set."""
        labels = Labels({"a": "1", "b": "2"})
        assert labels.contains(Labels({"a": "1"}))
        assert not labels.contains(Labels({"a": "2"}))
        assert not labels.contains(Labels({"c": "1"}))

    def test_copy_is_independent(self):
        """Copies do not share state."""
        labels = Labels({"a": "1"})
        other = labels.copy().include("b", "2")
        assert labels != other
        assert labels.get("b") is None


class TestPluginSet:
    """Tests for the plugin set used to name plugin volume claims."""

    def test_defaults_to_kubernetes_plugin(self):
        """An AgentConfig without plugins installs the kubernetes plugin."""
        plugins = PluginSet.with_defaults(None)
        assert plugins.names == ["kubernetes"]
        assert plugins.label() == "kubernetes"
        assert plugins.install_args() == ["plugins", "install", "kubernetes"]

    def test_order_does_not_matter(self):
        """The same plugins in another order give the same hash and claim."""
        first = PluginSet({"kubernetes": plugin(version="v1.0.0"), "azure": plugin(version="v1.2.0")})
        second = PluginSet({"azure": plugin(version="v1.2.0"), "kubernetes": plugin(version="v1.0.0")})
        assert first.hash == second.hash
        assert first.claim_name("ns") == second.claim_name("ns")
        assert first.names == ["azure", "kubernetes"]

    def test_label_includes_sources_and_version(self):
        """Feed URL, URL, mirror and version all take part in the label."""
        plugins = PluginSet(
            {"azure": plugin(feed_url="https://cdn.porter.sh/plugins/atom.xml", version="v1.2.0")}
        )
        assert plugins.label() == "azure_cdn.porter.sh_plugins_atom.xml_v1.2.0"
        assert plugins.hash == md5_hex("azure_cdn.porter.sh_plugins_atom.xml_v1.2.0")

    def test_claim_name_depends_on_namespace(self):
        """Each namespace gets its own claim for one plugin set."""
        plugins = PluginSet.with_defaults(None)
        assert plugins.claim_name("a") != plugins.claim_name("b")
        assert plugins.claim_name("a") == "porter-" + md5_hex("kubernetes" + "a")

    def test_empty_set_has_no_claim(self):
        """No plugins means no claim."""
        assert PluginSet({}).claim_name("ns") == ""

    def test_install_args(self):
        """Every option of every plugin becomes a flag."""
        plugins = PluginSet(
            {
                "kubernetes": plugin(version="v1.0.0"),
                "azure": plugin(url="https://example.com/azure", mirror="https://mirror.example.com"),
            }
        )
        assert plugins.install_args() == [
            "plugins",
            "install",
            "azure",
            "--url",
            "https://example.com/azure",
            "--mirror",
            "https://mirror.example.com",
            "kubernetes",
            "--version",
            "v1.0.0",
        ]

    def test_selector_labels(self):
        """Claims of one plugin set are selected by the plugin hash."""
        plugins = PluginSet.with_defaults(None)
        assert plugins.selector_labels().as_dict() == {
            "porter.sh/managed": "true",
            "porter.sh/plugins": plugins.hash,
        }

    def test_clean_url(self):
        """Schemes are dropped and unsafe characters replaced."""
        assert clean_url("https://example.com/a b?c=d") == "example.com_a_b_c_d"
        assert clean_url("example.com") == "example.com"
