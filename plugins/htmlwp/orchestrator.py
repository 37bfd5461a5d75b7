"""
Decides, for each finished host build, what htmlwp has to regenerate.

A pass is either a full build (every copy entry, every style, every page) or
an incremental build driven by a single changed file and the dependency index
recorded by earlier passes.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set

from plugins.htmlwp.bundler import IncludeBundler
from plugins.htmlwp.config import CopyEntry, Entry, PageEntry, StyleReference, global_entry
from plugins.htmlwp.files import AssetCopier, PathLike, Writer, resolve_source
from plugins.htmlwp.minify import minify_html
from plugins.htmlwp.state import BuildState
from plugins.htmlwp.styles import StyleCompiler
from plugins.htmlwp.tags import TagInjector

logger = logging.getLogger(f"mkdocs.plugins.{__name__}")


@dataclass
class Compilation:
    """What the host reports when one of its build passes has finished."""

    output_path: str
    production: bool = False
    # None when the host cannot tell what changed.
    modified_files: Optional[Sequence[str]] = None
    named_chunks: Dict[str, List[str]] = field(default_factory=dict)
    clean: bool = False

    def modified_file(self) -> Optional[str]:
        for file_path in self.modified_files or ():
            return file_path
        return None


class IncrementalOrchestrator:
    """Owns the pipeline collaborators and drives one pass per host build."""

    def __init__(
        self,
        entries: Mapping[str, Entry],
        state: Optional[BuildState] = None,
        *,
        base_dir: PathLike = ".",
        output_path: Optional[str] = None,
        htmlmin_opts: Optional[Mapping[str, Any]] = None,
        include_prefix: Optional[str] = None,
        include_properties: Optional[Mapping[str, str]] = None,
        sass_include_paths: Optional[Sequence[PathLike]] = None,
        debug: bool = False,
    ):
        self.entries = dict(entries)
        self.state = state if state is not None else BuildState()
        self.base_dir = Path(base_dir).resolve()
        self.output_path = output_path
        self.htmlmin_opts = dict(htmlmin_opts or {})
        self.debug = debug
        self.bundler = IncludeBundler(self.base_dir, include_prefix, include_properties)
        self.styles = StyleCompiler(self.state, self.base_dir, sass_include_paths)
        # True when the most recent pass ended on an error.
        self.aborted = False

    def _dbg(self, msg: str, *args) -> None:
        if self.debug:
            logger.debug("[htmlwp] " + msg, *args)

    @property
    def page_entries(self) -> List[PageEntry]:
        return [e for e in self.entries.values() if isinstance(e, PageEntry)]

    @property
    def copy_entries(self) -> List[CopyEntry]:
        return [e for e in self.entries.values() if isinstance(e, CopyEntry)]

    def output_root(self, compilation: Compilation) -> Path:
        return resolve_source(self.base_dir, self.output_path or compilation.output_path or "dist")

    # -------------------------------
    # Pass entry point
    # -------------------------------

    def run(self, compilation: Compilation) -> List[str]:
        """Process one finished host build.

        Errors end the pass and are logged; nothing is raised to the host.
        Returns every file the indexes track, for the host to watch, and sets
        `aborted` when the pass ended early.
        """
        self.aborted = False
        writer = Writer(self.output_root(compilation))
        injector = TagInjector(self.state.style_hashes, compilation.named_chunks)

        try:
            modified_file = compilation.modified_file()
            if modified_file:
                self._incremental_build(modified_file, compilation, writer, injector)
            else:
                self._full_build(compilation, writer, injector)
        except Exception as e:
            logger.error(f"[htmlwp] build pass aborted: {e}")
            self.aborted = True

        return self.state.dependencies.all_files()

    def _full_build(self, compilation: Compilation, writer: Writer, injector: TagInjector) -> None:
        self._dbg("full build into %s (production=%s)", writer.output_root, compilation.production)

        for entry in self.copy_entries:
            copier = AssetCopier(writer, production=compilation.production)
            copier.copy(resolve_source(self.base_dir, entry.src_path), entry.dest_path)

        self._build(compilation, writer, injector)

    def _incremental_build(
        self, modified_file: str, compilation: Compilation, writer: Writer, injector: TagInjector
    ) -> None:
        owners = self.state.dependencies.owners_of(modified_file)
        self._dbg("incremental build for %s -> %s", modified_file, owners or "nothing")
        for main_source in owners:
            self._build(compilation, writer, injector, main_source)

    # -------------------------------
    # Entry processing
    # -------------------------------

    def _build(
        self,
        compilation: Compilation,
        writer: Writer,
        injector: TagInjector,
        main_source: Optional[str] = None,
    ) -> bool:
        """Build everything, or only the first declaration of `main_source`.

        Returns True once a targeted rebuild found its declaration.
        """
        shared = global_entry(self.entries)
        cleaned: Set[Path] = set()

        # Shared styles go first so every page of a full pass links their fresh names.
        if main_source is None and shared is not None:
            for style in shared.styles:
                self._build_style(style, compilation, writer, cleaned)

        for entry in self.page_entries:
            for style in entry.styles:
                if main_source is None:
                    if entry is not shared:
                        self._build_style(style, compilation, writer, cleaned)
                    continue

                if style.import_path == main_source:
                    self.styles.build(style, writer, compilation.production)
                    return True

            if not entry.has_page:
                continue

            if main_source is None or entry.import_path == main_source:
                self._build_page(entry, shared, compilation, writer, injector)
                if main_source is not None:
                    return True

        return False

    def _build_style(
        self, style: StyleReference, compilation: Compilation, writer: Writer, cleaned: Set[Path]
    ) -> None:
        if compilation.clean:
            self._clean_style_dir(style.filename, writer, cleaned)
        self.styles.build(style, writer, compilation.production)

    def _clean_style_dir(self, filename: str, writer: Writer, cleaned: Set[Path]) -> None:
        directory = writer.resolve(filename).parent
        if directory in cleaned:
            return
        cleaned.add(directory)
        writer.clean_parent(filename)

    def _build_page(
        self,
        entry: PageEntry,
        shared: Optional[PageEntry],
        compilation: Compilation,
        writer: Writer,
        injector: TagInjector,
    ) -> None:
        result = self.bundler.bundle(entry.import_path)

        if compilation.production:
            result.source = minify_html(result.source, self.htmlmin_opts)

        styles = list(shared.styles if shared else []) + entry.styles
        jschunks = list(shared.jschunks if shared else []) + entry.jschunks
        result.source = injector.inject(result.source, styles, jschunks)

        self.state.dependencies.record(entry.import_path, result.file_paths)
        writer.write(entry.filename, result.source)
        self._dbg("page %s -> %s", entry.import_path, entry.filename)

