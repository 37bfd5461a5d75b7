"""
Output side of the pipeline: path normalisation, writing and directory copies.
"""

import json
import logging
import re
import shutil
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Optional, Union

logger = logging.getLogger(f"mkdocs.plugins.{__name__}")

SEPARATORS_RE = re.compile(r"[\\/]+")

PathLike = Union[str, Path]


def normalize_relative(part: PathLike) -> str:
    """Collapse `\\` and `/` runs into single `/` and drop leading/trailing separators."""
    return "/".join(p for p in SEPARATORS_RE.split(str(part)) if p)


def resolve_path(root: PathLike, *parts: PathLike) -> Path:
    """Join `parts` under `root`. Parts are always treated as relative, so "/css/a.css" stays inside root."""
    return Path(root).joinpath(*(normalize_relative(p) for p in parts)).resolve()


def resolve_source(base_dir: PathLike, file_path: PathLike) -> Path:
    """Resolve a configured source path against the project directory (absolute paths win)."""
    return (Path(base_dir) / file_path).resolve()


def url_path(filename: str) -> str:
    """Root-relative URL for an output filename, e.g. "css/a.css" -> "/css/a.css"."""
    return SEPARATORS_RE.sub("/", "/" + filename)


class Writer:
    """Writes finished artifacts under a single output root."""

    def __init__(self, output_root: PathLike):
        self.output_root = Path(output_root).resolve()

    def resolve(self, filename: PathLike) -> Path:
        return resolve_path(self.output_root, filename)

    def write(self, filename: PathLike, text: str) -> Optional[Path]:
        """Write `text` to `filename` under the output root. Errors are logged, not raised."""
        try:
            target = self.resolve(filename)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text, encoding="utf8")
        except OSError as e:
            logger.error(f"[htmlwp] failed to write '{filename}': {e}")
            return None
        logger.debug(f"[htmlwp] wrote {target}")
        return target

    def clean_parent(self, filename: PathLike) -> Optional[Path]:
        """Remove the directory that `filename` will be written into.

        The output root itself is never removed.
        """
        directory = self.resolve(filename).parent
        if directory == self.output_root:
            logger.debug(f"[htmlwp] not cleaning output root for '{filename}'")
            return None
        try:
            shutil.rmtree(directory)
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning(f"[htmlwp] could not clean '{directory}': {e}")
            return None
        logger.debug(f"[htmlwp] cleaned {directory}")
        return directory


class AssetCopier:
    """Mirror a source directory into the output, compacting JSON in production."""

    def __init__(self, writer: Writer, production: bool = False, max_workers: Optional[int] = None):
        self.writer = writer
        self.production = production
        self.max_workers = max_workers

    def copy(self, src_path: PathLike, dest_path: PathLike) -> bool:
        """Copy `src_path` to `dest_path` (relative to the output root).

        Returns False when the copy was aborted; the error has already been logged.
        """
        src = Path(src_path)
        dest = self.writer.resolve(dest_path)
        try:
            self._copy_dir(src, dest)
        except (OSError, ValueError) as e:
            logger.error(f"[htmlwp] failed to copy '{src}' to '{dest}': {e}")
            return False
        logger.info(f"[htmlwp] copied '{src}' to '{dest}'")
        return True

    def _copy_dir(self, src: Path, dest: Path) -> None:
        dest.mkdir(parents=True, exist_ok=True)

        children = sorted(src.iterdir())
        files = [child for child in children if not child.is_dir()]
        directories = [child for child in children if child.is_dir()]

        # One directory level at a time; files within a level are copied concurrently.
        if files:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                list(pool.map(lambda f: self._copy_file(f, dest / f.name), files))

        for directory in directories:
            self._copy_dir(directory, dest / directory.name)

    def _copy_file(self, src: Path, dest: Path) -> None:
        if self.production and src.name.endswith(".json"):
            data = json.loads(src.read_text(encoding="utf8"))
            dest.write_text(json.dumps(data, separators=(",", ":"), ensure_ascii=False), encoding="utf8")
        else:
            shutil.copyfile(src, dest)
