"""
Tests for the MkDocs binding of htmlwp.
"""

import logging
import os
import subprocess
import sys

import pytest
from mkdocs.exceptions import PluginError

from plugins.htmlwp.plugin import HtmlwpPlugin


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf8")
    return path


def _touch(path):
    """Move the mtime clearly forward so coarse filesystem clocks still register a change."""
    stamp = os.path.getmtime(path) + 10
    os.utime(path, (stamp, stamp))
    return path


@pytest.fixture
def project(tmp_path):
    _write(tmp_path / "src" / "index.html", '<html><head></head><body>{% include "nav.html" %}</body></html>')
    _write(tmp_path / "src" / "nav.html", "<nav>v1</nav>")
    _write(tmp_path / "src" / "about.html", "<html><head></head><body>About</body></html>")
    _write(tmp_path / "src" / "main.scss", ".main { color: red; }\n")
    _write(tmp_path / "src" / "static" / "robots.txt", "User-agent: *\n")
    return tmp_path


ENTRY = {
    "global": {"styles": [{"import": "src/main.scss", "filename": "css/[contenthash].css"}]},
    "index": {"import": "src/index.html", "filename": "index.html"},
    "about": {"import": "src/about.html", "filename": "about.html"},
    "static": {"srcPath": "src/static", "destPath": "static"},
}


def _configured(project, command="build", dirty=False, **options):
    plugin = HtmlwpPlugin()
    errors, _ = plugin.load_config({"entry": ENTRY, **options})
    assert errors == []
    plugin.on_startup(command=command, dirty=dirty)
    plugin.on_config({"config_file_path": str(project / "mkdocs.yml")})
    return plugin


class _RecordingServer:
    def __init__(self):
        self.watched = []

    def watch(self, path):
        self.watched.append(path)


class TestHtmlwpPlugin:
    """Test for the principal functions of the plugin."""

    def test_plugin_init(self):
        """Test: The plugin is initialized correctly."""
        plugin = HtmlwpPlugin()
        assert isinstance(plugin.config, dict)
        assert len(plugin.state.dependencies) == 0

    def test_entry_is_required(self):
        """Test: A configuration without `entry` is rejected by MkDocs validation."""
        plugin = HtmlwpPlugin()
        errors, _ = plugin.load_config({})
        assert errors

    def test_invalid_entry_fails_build(self, tmp_path):
        """Test: A malformed entry raises a PluginError from on_config."""
        plugin = HtmlwpPlugin()
        plugin.load_config({"entry": {"broken": {"import": "src/a.html"}}})
        with pytest.raises(PluginError):
            plugin.on_config({"config_file_path": str(tmp_path / "mkdocs.yml")})

    def test_mode_follows_command(self, project):
        """Test: `serve` builds for development, everything else for production."""
        assert _configured(project, command="serve").is_production() is False
        assert _configured(project, command="build").is_production() is True
        assert _configured(project, command="gh-deploy").is_production() is True

    def test_mode_option_wins(self, project):
        assert _configured(project, command="serve", mode="production").is_production() is True
        assert _configured(project, command="build", mode="development").is_production() is False

    def test_resolve_chunks(self, project):
        """Test: Chunk patterns expand to files that exist under the output root."""
        site = project / "site"
        _write(site / "js" / "main.1a2b.js", "1;")
        _write(site / "js" / "vendor.js", "2;")
        plugin = _configured(
            project,
            chunks={"main": "js/main.*.js", "vendor": ["/js/vendor.js"], "missing": "js/none.js"},
        )

        assert plugin.resolve_chunks(site) == {
            "main": ["js/main.1a2b.js"],
            "vendor": ["js/vendor.js"],
        }

    def test_post_build_full(self, project, caplog):
        """Test: on_post_build renders pages, styles and copies into site_dir."""
        caplog.set_level(logging.INFO)
        plugin = _configured(project)
        plugin.on_post_build(config={"site_dir": str(project / "site")})

        site = project / "site"
        index = (site / "index.html").read_text(encoding="utf8")
        assert "<nav>v1</nav>" in index
        assert '<link rel="stylesheet" href="/css/' in index
        assert len(list((site / "css").glob("*.css"))) == 1
        assert (site / "static" / "robots.txt").exists()
        assert "tracking" in caplog.text

    def test_include_prefix_namespaces_properties(self, project):
        """Test: `html_include_prefix` names the property namespace; includes stay `{% include %}`."""
        _write(
            project / "src" / "about.html",
            '<html><head></head><body>{{ site.name }}{% include "nav.html" %}</body></html>',
        )
        plugin = _configured(
            project,
            html_include_prefix="site",
            html_include_properties={"name": "Example"},
        )
        plugin.on_post_build(config={"site_dir": str(project / "site")})
        about = (project / "site" / "about.html").read_text(encoding="utf8")
        assert "Example" in about
        assert "<nav>v1</nav>" in about

    def test_output_path_option(self, project):
        plugin = _configured(project, output_path="public")
        plugin.on_post_build(config={"site_dir": str(project / "site")})
        assert (project / "public" / "about.html").exists()

    def test_modified_files_needs_dirty(self, project):
        """Test: Without --dirty every pass is a full build."""
        plugin = _configured(project, command="serve", dirty=False)
        plugin.on_post_build(config={"site_dir": str(project / "site")})
        assert plugin.modified_files() is None

    def test_serve_rebuilds_only_changed_page(self, project):
        """Test: With --dirty, a changed include only rebuilds its owning page."""
        site = project / "site"
        plugin = _configured(project, command="serve", dirty=True)
        assert plugin.modified_files() is None

        plugin.on_post_build(config={"site_dir": str(site)})
        about_mtime = (site / "about.html").stat().st_mtime_ns
        assert plugin.modified_files() == []

        nav = _write(project / "src" / "nav.html", "<nav>v2</nav>")
        stamp = os.path.getmtime(nav) + 10
        os.utime(nav, (stamp, stamp))
        assert plugin.modified_files() == [nav.resolve().as_posix()]

        plugin.on_post_build(config={"site_dir": str(site)})
        assert "<nav>v2</nav>" in (site / "index.html").read_text(encoding="utf8")
        assert (site / "about.html").stat().st_mtime_ns == about_mtime
        assert plugin.modified_files() == []

    def test_on_serve_watches_sources(self, project):
        """Test: Tracked sources and copy-entry folders are handed to the dev server."""
        plugin = _configured(project, command="serve")
        plugin.on_post_build(config={"site_dir": str(project / "site")})

        server = _RecordingServer()
        assert plugin.on_serve(server, config={}, builder=None) is server
        assert (project / "src" / "nav.html").resolve().as_posix() in server.watched
        assert (project / "src" / "main.scss").resolve().as_posix() in server.watched
        assert (project / "src" / "static").resolve().as_posix() in server.watched

    def test_new_dependency_is_watched(self, project):
        """Test: A file that becomes a dependency after on_serve is handed to the server too."""
        site = project / "site"
        plugin = _configured(project, command="serve", dirty=True)
        plugin.on_post_build(config={"site_dir": str(site)})

        server = _RecordingServer()
        plugin.on_serve(server, config={}, builder=None)
        footer = _write(project / "src" / "footer.html", "<footer>f</footer>").resolve().as_posix()
        assert footer not in server.watched

        about = _touch(_write(
            project / "src" / "about.html",
            '<html><head></head><body>About{% include "footer.html" %}</body></html>',
        ))
        plugin.on_post_build(config={"site_dir": str(site)})

        assert "<footer>f</footer>" in (site / "about.html").read_text(encoding="utf8")
        assert footer in server.watched
        assert server.watched.count(about.resolve().as_posix()) == 1

    def test_aborted_pass_is_retried(self, project, caplog):
        """Test: After a failed pass the failing change is still reported, so fixing it rebuilds the page."""
        caplog.set_level(logging.WARNING)
        site = project / "site"
        plugin = _configured(project, command="serve", dirty=True)
        plugin.on_post_build(config={"site_dir": str(site)})

        about = _touch(_write(
            project / "src" / "about.html",
            '<html><head></head><body>About{% include "missing.html" %}</body></html>',
        ))
        plugin.on_post_build(config={"site_dir": str(site)})
        assert "build pass aborted" in caplog.text
        assert plugin.modified_files() == [about.resolve().as_posix()]

        _write(project / "src" / "missing.html", "<aside>found</aside>")
        plugin.on_post_build(config={"site_dir": str(site)})

        assert "<aside>found</aside>" in (site / "about.html").read_text(encoding="utf8")
        assert plugin.modified_files() == []

    def test_integration_build(self, project):
        """Test: Complete integration with MkDocs build."""
        docs = project / "docs"
        docs.mkdir()
        (docs / "index.md").write_text("# Home\n\nWelcome.", encoding="utf8")

        config_content = """
site_name: Test Site
theme:
  name: mkdocs
plugins:
  - htmlwp:
      entry:
        global:
          styles:
            - import: src/main.scss
              filename: css/[contenthash].css
        about:
          import: src/about.html
          filename: about/page.html
"""
        config_file = project / "mkdocs.yml"
        config_file.write_text(config_content, encoding="utf8")

        site_dir = project / "site"
        site_dir.mkdir()

        try:
            subprocess.check_call(
                [
                    sys.executable,
                    "-m",
                    "mkdocs",
                    "build",
                    "-q",
                    "-f",
                    str(config_file),
                    "-d",
                    str(site_dir),
                ],
                cwd=str(project),
            )

            page = (site_dir / "about" / "page.html").read_text(encoding="utf8")
            assert '<link rel="stylesheet" href="/css/' in page
            assert "About" in page

        except subprocess.CalledProcessError:
            pytest.skip("MkDocs build failed in this environment")
