"""
An MkDocs plugin that bundles HTML pages and SCSS style sheets after each build,
injecting <link>/<script> tags and only rebuilding what changed while serving.
"""

import logging
import os
from pathlib import Path
from typing import Dict, List, Optional, Set

from mkdocs.config import config_options as c
from mkdocs.config.defaults import MkDocsConfig
from mkdocs.exceptions import PluginError
from mkdocs.plugins import BasePlugin

from plugins.htmlwp.bundler import DEFAULT_INCLUDE_PREFIX
from plugins.htmlwp.config import CopyEntry, Entry, HtmlwpConfigError, decode_entries
from plugins.htmlwp.files import resolve_source
from plugins.htmlwp.orchestrator import Compilation, IncrementalOrchestrator
from plugins.htmlwp.state import BuildState

# Use MkDocs' recommended plugin logger namespace so debug logs appear only with `--verbose`.
logger = logging.getLogger(f"mkdocs.plugins.{__name__}")

MODES = ("production", "development")


class HtmlwpPlugin(BasePlugin):
    """MkDocs plugin that runs the htmlwp pipeline on `on_post_build`.

    Configuration options:
    - entry (dict, required): page/style entries and copy entries, keyed by name.
    - output_path (str): write outputs here instead of `site_dir`.
    - htmlmin_opts (dict): merged over the default production minifier options.
    - html_include_prefix (str): namespace under which include properties are exposed
      (`{{ htmlwp.title }}`). Includes themselves always use Jinja's `{% include %}`.
    - html_include_properties (dict): substitution values available to every include.
    - chunks (dict): script chunk name -> path or glob (list) of emitted files under the output.
    - mode (production|development): defaults to development for `serve`, production otherwise.
    - clean_styles (bool): remove each style's output directory before a full build.
    - sass_include_paths (list): extra SCSS load paths.
    """

    config_scheme = (
        ('entry',                   c.Type(dict, required=True)),
        ('output_path',             c.Type(str, default=None)),
        ('htmlmin_opts',            c.Type(dict, default={})),
        ('html_include_prefix',     c.Type(str, default=DEFAULT_INCLUDE_PREFIX)),
        ('html_include_properties', c.Type(dict, default={})),
        ('chunks',                  c.Type(dict, default={})),
        ('mode',                    c.Choice(MODES, default=None)),
        ('clean_styles',            c.Type(bool, default=False)),
        ('sass_include_paths',      c.Type(list, default=[])),
        ('debug',                   c.Type(bool, default=False)),
    )

    def __init__(self):
        super().__init__()
        # Defining on_startup keeps this instance alive across `mkdocs serve` rebuilds,
        # so the indexes and the mtime snapshot below survive from one pass to the next.
        self.state = BuildState()
        self.command = "build"
        self.dirty = False
        self.entries: Dict[str, Entry] = {}
        self.base_dir = Path.cwd()
        self._orchestrator: Optional[IncrementalOrchestrator] = None
        self._mtimes: Dict[str, Optional[float]] = {}
        # Live-reload server handed over by `on_serve`, and the paths already given to it.
        self._server = None
        self._watched: Set[str] = set()

    # -------------------------------
    # Helpers
    # -------------------------------

    def _dbg(self, msg: str, *args) -> None:
        if self.config.get("debug", False):
            logger.debug("[htmlwp] " + msg, *args)

    def is_production(self) -> bool:
        mode = self.config.get("mode")
        if mode:
            return mode == "production"
        return self.command != "serve"

    @staticmethod
    def _mtime(file_path: str) -> Optional[float]:
        try:
            return os.path.getmtime(file_path)
        except OSError:
            return None

    def _snapshot(self, tracked_files: List[str]) -> None:
        self._mtimes = {f: self._mtime(f) for f in tracked_files}

    def modified_files(self) -> Optional[List[str]]:
        """Tracked files whose mtime moved since the last pass.

        None unless outputs survive between passes (`--dirty`) and a previous
        pass has been recorded.
        """
        if not self.dirty or not self._mtimes:
            return None
        return [f for f, mtime in self._mtimes.items() if self._mtime(f) != mtime]

    def resolve_chunks(self, output_root: Path) -> Dict[str, List[str]]:
        """Map chunk names to emitted files (relative to `output_root`), expanding globs."""
        named_chunks: Dict[str, List[str]] = {}
        for name, patterns in (self.config.get("chunks") or {}).items():
            if isinstance(patterns, str):
                patterns = [patterns]
            files: List[str] = []
            for pattern in patterns:
                pattern = str(pattern).lstrip("/")
                if "*" in pattern:
                    files.extend(p.relative_to(output_root).as_posix() for p in sorted(output_root.glob(pattern)))
                elif (output_root / pattern).exists():
                    files.append(pattern)
            if files:
                named_chunks[str(name)] = files
            else:
                self._dbg("chunk %s matched no files under %s", name, output_root.as_posix())
        return named_chunks

    def watch_targets(self) -> List[str]:
        """Tracked dependency files plus copy-entry source directories."""
        targets: List[str] = self.state.dependencies.all_files()
        for entry in self.entries.values():
            if isinstance(entry, CopyEntry):
                targets.append(resolve_source(self.base_dir, entry.src_path).as_posix())
        return targets

    def _watch_new_targets(self) -> None:
        if self._server is None:
            return
        for target in self.watch_targets():
            if target in self._watched or not os.path.exists(target):
                continue
            self._server.watch(target)
            self._watched.add(target)
            self._dbg("watching %s", target)

    # -------------------------------
    # MkDocs hooks
    # -------------------------------

    def on_startup(self, *, command: str, dirty: bool) -> None:
        self.command = command
        self.dirty = dirty

    def on_config(self, config: MkDocsConfig) -> MkDocsConfig:
        """Decode entries up front so a malformed entry fails the build immediately."""
        try:
            self.entries = decode_entries(self.config["entry"])
        except HtmlwpConfigError as e:
            raise PluginError(f"[htmlwp] invalid entry configuration: {e}") from e

        config_file_path = config.get("config_file_path")
        self.base_dir = Path(config_file_path).resolve().parent if config_file_path else Path.cwd()

        self._orchestrator = IncrementalOrchestrator(
            self.entries,
            self.state,
            base_dir=self.base_dir,
            output_path=self.config.get("output_path"),
            htmlmin_opts=self.config.get("htmlmin_opts"),
            include_prefix=self.config.get("html_include_prefix"),
            include_properties=self.config.get("html_include_properties"),
            sass_include_paths=self.config.get("sass_include_paths"),
            debug=self.config.get("debug", False),
        )
        self._dbg("configured %d entries (base_dir=%s)", len(self.entries), self.base_dir.as_posix())
        return config

    def on_post_build(self, *, config: MkDocsConfig) -> None:
        if self._orchestrator is None:
            return

        compilation = Compilation(
            output_path=config["site_dir"],
            production=self.is_production(),
            modified_files=self.modified_files(),
            clean=self.config.get("clean_styles", False),
        )
        compilation.named_chunks = self.resolve_chunks(self._orchestrator.output_root(compilation))

        self._dbg("post_build production=%s modified=%s", compilation.production, compilation.modified_files)
        tracked_files = self._orchestrator.run(compilation)
        if self._orchestrator.aborted:
            # Previous snapshot stays, so the files behind the failure still read as changed.
            logger.warning("[htmlwp] pass aborted; changes will be retried on the next rebuild")
        else:
            self._snapshot(tracked_files)
        self._watch_new_targets()
        logger.info(f"[htmlwp] tracking {len(tracked_files)} source file(s)")

    def on_serve(self, server, *, config: MkDocsConfig, builder):
        """Register tracked sources now; later passes add whatever they start depending on."""
        self._server = server
        self._watch_new_targets()
        return server
