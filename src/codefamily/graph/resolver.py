"""Resolve raw import strings to files inside the repository.

Relative imports are composed lexically against the importing file's
directory. Bare imports are matched by path suffix against the known file
set, preferring a module file over a package index file; anything that
matches nothing is an external package and produces no edge.
"""

from __future__ import annotations

import posixpath
from collections import defaultdict
from dataclasses import dataclass
from typing import Iterable, Optional

from ..exceptions import DataConsistencyError
from ..logging_config import get_logger

logger = get_logger(__name__)

_LANGUAGE_BY_EXTENSION = {
    ".py": "python",
    ".js": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".jsx": "jsx",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".go": "go",
}

_JS_FAMILY = frozenset({"javascript", "jsx", "typescript", "tsx"})
_JS_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx", ".mjs", ".cjs")
_JS_INDEX_FILES = ("index.ts", "index.tsx", "index.js", "index.jsx")

# Path aliases commonly configured in bundlers ("@/components/x")
_JS_ALIAS_PREFIXES = ("@/", "~/")


def language_for_path(path: str) -> Optional[str]:
    """Parser language tag for a path, or None when unsupported."""
    return _LANGUAGE_BY_EXTENSION.get(posixpath.splitext(path)[1].lower())


@dataclass(frozen=True)
class ResolvedImport:
    raw: str
    target: Optional[str]  # None = external or unresolvable


class DependencyResolver:
    """Import resolution against a fixed set of repository paths."""

    def __init__(self, known_files: Iterable[str] = ()):
        self.known_files: set[str] = set()
        self._go_packages: dict[str, list[str]] = defaultdict(list)
        self.add_known(known_files)

    def add_known(self, paths: Iterable[str]) -> None:
        """Extend the known file set (files first seen in a later commit)."""
        for path in paths:
            if path in self.known_files:
                continue
            self.known_files.add(path)
            if path.endswith(".go") and not path.endswith("_test.go"):
                package = self._go_packages[posixpath.dirname(path)]
                package.append(path)
                package.sort()

    def resolve(self, source_path: str, imports: Iterable[str], language: str) -> list[ResolvedImport]:
        """Resolve every import of one file.

        Imports that resolve back to ``source_path`` are logged and reported
        unresolved.
        """
        results = []
        for raw in imports:
            try:
                target = self.resolve_import(source_path, raw, language)
            except DataConsistencyError as e:
                logger.debug("Dropping import %r of %s: %s", raw, source_path, e.reason)
                target = None
            results.append(ResolvedImport(raw, target))
        return results

    def resolve_import(self, source_path: str, raw: str, language: str) -> Optional[str]:
        """Resolve one import.

        Raises:
            DataConsistencyError: if the import resolves to the importing file.
        """
        raw = raw.strip().strip("'\"")
        if not raw:
            return None

        if language == "python":
            target = self._resolve_python(source_path, raw)
        elif language in _JS_FAMILY:
            target = self._resolve_js(source_path, raw)
        elif language == "go":
            target = self._resolve_go(raw)
        else:
            return None

        if target == source_path:
            raise DataConsistencyError("self-referential import", source_path, target)
        return target

    # ── python ────────────────────────────────────────────────────

    def _resolve_python(self, source_path: str, raw: str) -> Optional[str]:
        if raw.startswith("."):
            dots = len(raw) - len(raw.lstrip("."))
            base = posixpath.dirname(source_path)
            # "." is the current package; each further dot climbs one level
            for _ in range(dots - 1):
                if not base:
                    return None
                base = posixpath.dirname(base)
            module = raw[dots:].replace(".", "/")
            if not module:
                return self._first_known([posixpath.join(base, "__init__.py")])
            stem = posixpath.join(base, module)
            return self._first_known([stem + ".py", posixpath.join(stem, "__init__.py")])

        module = raw.replace(".", "/")
        return self._suffix_match([module + ".py"]) or self._suffix_match([module + "/__init__.py"])

    # ── javascript / typescript ───────────────────────────────────

    def _resolve_js(self, source_path: str, raw: str) -> Optional[str]:
        if raw.startswith("./") or raw.startswith("../") or raw in (".", ".."):
            joined = posixpath.normpath(posixpath.join(posixpath.dirname(source_path), raw))
            if joined == ".." or joined.startswith("../") or joined.startswith("/"):
                return None
            return self._first_known(_js_candidates(joined))

        for prefix in _JS_ALIAS_PREFIXES:
            if raw.startswith(prefix):
                raw = raw[len(prefix):]
                break
        else:
            if raw.startswith("@"):
                # scoped npm package
                return None

        module = raw.rstrip("/")
        exact = [module] + [module + ext for ext in _JS_EXTENSIONS]
        index = [posixpath.join(module, name) for name in _JS_INDEX_FILES]
        return self._suffix_match(exact) or self._suffix_match(index)

    # ── go ────────────────────────────────────────────────────────

    def _resolve_go(self, raw: str) -> Optional[str]:
        """Match the longest import-path suffix naming a package directory."""
        parts = raw.strip("/").split("/")
        for start in range(len(parts)):
            package_dir = "/".join(parts[start:])
            files = self._go_packages.get(package_dir)
            if files:
                named = posixpath.join(package_dir, parts[-1] + ".go")
                return named if named in files else files[0]
        return None

    # ── helpers ───────────────────────────────────────────────────

    def _first_known(self, candidates: list[str]) -> Optional[str]:
        for candidate in candidates:
            if candidate in self.known_files:
                return candidate
        return None

    def _suffix_match(self, suffixes: list[str]) -> Optional[str]:
        """Shortest known path equal to, or ending in ``/`` + one of, ``suffixes``."""
        for suffix in suffixes:
            if suffix in self.known_files:
                return suffix
            tail = "/" + suffix
            matches = [p for p in self.known_files if p.endswith(tail)]
            if matches:
                return min(matches, key=lambda p: (len(p), p))
        return None


def _js_candidates(stem: str) -> list[str]:
    return [stem] + [stem + ext for ext in _JS_EXTENSIONS] + [posixpath.join(stem, n) for n in _JS_INDEX_FILES]
