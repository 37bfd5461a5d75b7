"""
Flattens a page and its nested `{% include %}` templates into one HTML text,
recording every file that was read along the way.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence

from jinja2 import Environment, FileSystemLoader, TemplateNotFound

from plugins.htmlwp.config import HtmlwpError
from plugins.htmlwp.files import PathLike, resolve_source

logger = logging.getLogger(f"mkdocs.plugins.{__name__}")

DEFAULT_INCLUDE_PREFIX = "htmlwp"


class IncludeResolutionError(HtmlwpError):
    """A page or one of its includes could not be found."""


@dataclass
class BundleResult:
    source: str
    file_paths: List[str] = field(default_factory=list)


class RecordingLoader(FileSystemLoader):
    """FileSystemLoader that remembers, in order, every template file it served."""

    def __init__(self, searchpath: Sequence[PathLike]):
        super().__init__([str(p) for p in searchpath])
        self.loaded: List[str] = []

    def get_source(self, environment, template):
        source, filename, uptodate = super().get_source(environment, template)
        resolved = Path(filename).resolve().as_posix()
        if resolved not in self.loaded:
            self.loaded.append(resolved)
        return source, filename, uptodate


class IncludeBundler:
    """Render a page through Jinja2 so includes are expanded in place.

    Substitution properties are available both directly (`{{ title }}`) and
    under the include prefix (`{{ htmlwp.title }}`).
    """

    def __init__(
        self,
        base_dir: PathLike = ".",
        prefix: Optional[str] = None,
        properties: Optional[Mapping[str, str]] = None,
    ):
        self.base_dir = Path(base_dir).resolve()
        self.prefix = prefix or DEFAULT_INCLUDE_PREFIX
        self.properties: Dict[str, str] = dict(properties or {})

    def _context(self) -> Dict[str, object]:
        context: Dict[str, object] = dict(self.properties)
        context[self.prefix] = dict(self.properties)
        return context

    def bundle(self, import_path: PathLike) -> BundleResult:
        root = resolve_source(self.base_dir, import_path)
        if not root.is_file():
            raise IncludeResolutionError(f"page '{import_path}' not found at {root}")

        loader = RecordingLoader([root.parent, self.base_dir])
        # No template cache: every bundle must re-read, and so re-record, its files.
        env = Environment(
            loader=loader,
            cache_size=0,
            autoescape=False,
            keep_trailing_newline=True,
        )

        try:
            template = env.get_template(root.name)
            source = template.render(**self._context())
        except TemplateNotFound as e:
            raise IncludeResolutionError(
                f"include '{e.name}' referenced from '{import_path}' could not be resolved"
            ) from e

        root_path = root.as_posix()
        file_paths = [root_path] + [f for f in loader.loaded if f != root_path]
        logger.debug(f"[htmlwp] bundled {import_path} from {len(file_paths)} file(s)")
        return BundleResult(source=source, file_paths=file_paths)
