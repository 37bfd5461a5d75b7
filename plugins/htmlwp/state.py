"""
Cross-pass memory of the htmlwp pipeline.

Both indexes live as long as the build/serve process and are only written by
successful compiles.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional


def normalize_file_path(file_path: str) -> str:
    return Path(file_path).resolve().as_posix()


class DependencyIndex:
    """Main source (as declared in `entry`) -> files that made up its last build."""

    def __init__(self):
        self._files: Dict[str, List[str]] = {}

    def record(self, main_source: str, file_paths: Iterable[str]) -> None:
        # Replace, never merge: a dropped include must stop triggering rebuilds.
        self._files[main_source] = list(file_paths)

    def get(self, main_source: str) -> List[str]:
        return list(self._files.get(main_source, []))

    def owners_of(self, file_path: str) -> List[str]:
        """Return every main source whose last build read `file_path`."""
        target = normalize_file_path(file_path)
        return [main for main, files in self._files.items() if target in files]

    def all_files(self) -> List[str]:
        """Flattened, de-duplicated list of every tracked file."""
        seen = set()
        out: List[str] = []
        for files in self._files.values():
            for f in files:
                if f not in seen:
                    seen.add(f)
                    out.append(f)
        return out

    def __contains__(self, main_source: str) -> bool:
        return main_source in self._files

    def __len__(self) -> int:
        return len(self._files)


class StyleHashIndex:
    """Style import path -> the hash-bearing filename it was last written to."""

    def __init__(self):
        self._filenames: Dict[str, str] = {}

    def record(self, style_source: str, filename: str) -> None:
        self._filenames[style_source] = filename

    def resolve(self, style_source: str, default: Optional[str] = None) -> Optional[str]:
        return self._filenames.get(style_source, default)

    def __contains__(self, style_source: str) -> bool:
        return style_source in self._filenames

    def __len__(self) -> int:
        return len(self._filenames)


@dataclass
class BuildState:
    dependencies: DependencyIndex = field(default_factory=DependencyIndex)
    style_hashes: StyleHashIndex = field(default_factory=StyleHashIndex)
